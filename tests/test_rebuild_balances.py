from decimal import Decimal

import pytest
from sqlalchemy import update
from sqlalchemy.orm import sessionmaker

from migration.rebuild_balances import database_url, find_drift, main
from pointsledger import crud, ledger, models, schemas
from pointsledger.db import Base, make_engine


def create_ledger_db(path: str) -> int:
    engine = make_engine(f"sqlite:///{path}")
    Base.metadata.create_all(bind=engine)
    db = sessionmaker(bind=engine, expire_on_commit=False, future=True)()
    try:
        user = crud.create_user(db, schemas.UserCreate(utorid="drift", name="Drift", verified=True))
        cashier = crud.create_user(db, schemas.UserCreate(utorid="till", name="Till", role="cashier"))
        ledger.record_purchase(db, schemas.Actor(user_id=cashier.id, role="cashier"), user.id, Decimal("25.00"))
        ledger.create_redemption(db, schemas.Actor(user_id=user.id, role="regular"), 30)
        user_id = user.id

        # corrupt the cached counters behind the engine's back
        db.execute(update(models.User).where(models.User.id == user_id).values(points=500, reserved=0))
        db.commit()
        return user_id
    finally:
        db.close()
        engine.dispose()


def test_rebuild_repairs_drift(tmp_path, capsys):
    path = str(tmp_path / "ledger.db")
    user_id = create_ledger_db(path)

    assert main(["--db", path, "--check"]) == 1
    assert f"user {user_id}" in capsys.readouterr().out

    assert main(["--db", path]) == 0
    assert "repaired 1 user(s)" in capsys.readouterr().out

    assert main(["--db", path, "--check"]) == 0

    engine = make_engine(f"sqlite:///{path}")
    db = sessionmaker(bind=engine, expire_on_commit=False, future=True)()
    try:
        user = db.get(models.User, user_id)
        assert (user.points, user.reserved) == (100, 30)
        assert find_drift(db) == []
    finally:
        db.close()
        engine.dispose()


def test_missing_database_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        database_url(str(tmp_path / "nope.db"))
    assert database_url("postgresql://localhost/ledger") == "postgresql://localhost/ledger"

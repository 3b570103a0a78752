import itertools
from decimal import Decimal
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from pointsledger import crud, ledger, schemas
from pointsledger.db import Base, make_engine
from pointsledger.main import app, get_db


@pytest.fixture(scope="function")
def db_session() -> Generator:
    # Use in-memory SQLite with a single connection
    engine = make_engine("sqlite://", poolclass=StaticPool)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine, future=True)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        engine.dispose()


@pytest.fixture(scope="function")
def session_factory(tmp_path) -> Generator:
    # file-backed so each thread gets its own connection
    engine = make_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine, future=True)
    finally:
        engine.dispose()


@pytest.fixture(scope="function")
def client(db_session):
    # Override dependency to use the same session
    def override_get_db():
        try:
            yield db_session
        finally:
            pass
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def actor():
    def _actor(user) -> schemas.Actor:
        return schemas.Actor(user_id=user.id, role=user.role)
    return _actor


@pytest.fixture
def make_user(db_session):
    counter = itertools.count(1)

    def _make(role="regular", verified=True, utorid=None):
        n = next(counter)
        return crud.create_user(
            db_session,
            schemas.UserCreate(
                utorid=utorid or f"{role}{n:03d}", name=f"{role.title()} {n}", role=role, verified=verified
            ),
        )
    return _make


@pytest.fixture
def cashier(make_user):
    return make_user("cashier")


@pytest.fixture
def manager(make_user):
    return make_user("manager")


@pytest.fixture
def fund(db_session, cashier, actor):
    """Credit exactly ``points`` to a user with a plain purchase (one point per 25 cents)."""
    def _fund(user, points: int):
        return ledger.record_purchase(db_session, actor(cashier), user.id, Decimal(points) / 4)
    return _fund

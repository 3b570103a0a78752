"""
Rebuild cached balances from the ledger
- Recomputes users.points (credited) and users.reserved (pending redemptions)
  from the transactions table
- With --check, only reports users whose cached counters have drifted

Usage:
  python -m migration.rebuild_balances --db path/to/ledger.db [--check]
"""
import argparse
import os
import sys
from typing import NamedTuple

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from pointsledger import balance, models
from pointsledger.db import atomic, make_engine


class Drift(NamedTuple):
    user_id: int
    cached: balance.Balance
    projected: balance.Balance


def find_drift(db: Session) -> list[Drift]:
    drift = []
    for user in db.execute(select(models.User).order_by(models.User.id)).scalars():
        cached = balance.current(user)
        projected = balance.project_from_ledger(db, user.id)
        if cached != projected:
            drift.append(Drift(user.id, cached, projected))
    return drift


def rebuild(db: Session) -> list[Drift]:
    with atomic(db):
        drift = find_drift(db)
        for item in drift:
            user = db.get(models.User, item.user_id)
            user.points = item.projected.credited
            user.reserved = item.projected.pending_redemption
    for item in drift:
        logger.warning(
            "Repaired cached balance", user_id=item.user_id,
            points=f"{item.cached.credited}->{item.projected.credited}",
            reserved=f"{item.cached.pending_redemption}->{item.projected.pending_redemption}",
        )
    return drift


def database_url(db: str) -> str:
    if "://" in db:
        return db
    if not os.path.exists(db):
        raise FileNotFoundError(db)
    return f"sqlite:///{db}"


def main(argv=None) -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("--db", required=True, help="Path to SQLite database file or a database URL")
    parser.add_argument("--check", action="store_true", help="Report drift without repairing it")
    args = parser.parse_args(argv)

    engine = make_engine(database_url(args.db))
    session = sessionmaker(bind=engine, expire_on_commit=False, future=True)()
    try:
        if args.check:
            drift = find_drift(session)
            for item in drift:
                print(f"user {item.user_id}: cached {tuple(item.cached)[1:]} ledger {tuple(item.projected)[1:]}")
            return 1 if drift else 0
        drift = rebuild(session)
        print(f"repaired {len(drift)} user(s)")
        return 0
    finally:
        session.close()
        engine.dispose()


if __name__ == "__main__":
    sys.exit(main())

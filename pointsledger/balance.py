"""Balance projection.

A user's balance has two sources that must always agree: the cached counters
on the user row (``points`` credited, ``reserved`` pending redemptions) and
the ledger itself. The counters are what the engine checks under lock; the
ledger projection is the ground truth used for audits and repair.
"""
from typing import Iterable, NamedTuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from . import models
from .models import TransactionKind

HOLDABLE = (TransactionKind.PURCHASE, TransactionKind.ADJUSTMENT)


class Balance(NamedTuple):
    user_id: int
    credited: int
    pending_redemption: int

    @property
    def available(self) -> int:
        return self.credited - self.pending_redemption


def is_credited(txn: models.Transaction) -> bool:
    if txn.kind in HOLDABLE:
        return not txn.suspicious
    if txn.kind == TransactionKind.REDEMPTION:
        return txn.processed_by is not None
    return True


def is_reservation(txn: models.Transaction) -> bool:
    return txn.kind == TransactionKind.REDEMPTION and txn.processed_by is None


def project(user_id: int, transactions: Iterable[models.Transaction]) -> Balance:
    credited = 0
    pending = 0
    for txn in transactions:
        if is_credited(txn):
            credited += txn.amount
        elif is_reservation(txn):
            pending += txn.redeemed
    return Balance(user_id=user_id, credited=credited, pending_redemption=pending)


def project_from_ledger(db: Session, user_id: int) -> Balance:
    rows = db.execute(
        select(models.Transaction).where(models.Transaction.user_id == user_id)
    ).scalars()
    return project(user_id, rows)


def current(user: models.User) -> Balance:
    return Balance(user_id=user.id, credited=user.points, pending_redemption=user.reserved)


def available_balance(user: models.User) -> int:
    return user.points - user.reserved


def pending_redemption_total(user: models.User) -> int:
    return user.reserved

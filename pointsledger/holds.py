"""Suspicious holds on purchases and adjustments.

A held transaction is stored but contributes nothing to the credited balance.
Whether points count is always read off the current flag, so flipping it
back and forth moves the balance by exactly the transaction amount each way.
"""
from . import models
from .balance import HOLDABLE
from .errors import InvalidTransaction
from .models import TransactionKind


def stamp(creator: models.User, kind: TransactionKind) -> bool:
    # adjustments are manager-issued and never held
    return kind == TransactionKind.PURCHASE and bool(creator.suspicious)


def check_holdable(txn: models.Transaction):
    if txn.kind not in HOLDABLE:
        raise InvalidTransaction(f"{txn.kind} transactions cannot be marked suspicious")


def credit_delta(txn: models.Transaction, value: bool) -> int:
    """Change to the owner's credited points if the flag becomes ``value``."""
    if bool(txn.suspicious) == bool(value):
        return 0
    return -txn.amount if value else txn.amount

"""Construction of well-formed ledger rows, one builder per transaction kind.

Builders check structure and sign conventions only. Balances, budgets and
authorization belong to the transaction engine. Rows come back unsaved.
"""
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from uuid import uuid4

from . import models
from .errors import InvalidTransaction
from .models import TransactionKind
from .utils import sanitize_remark, utcnow


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _positive_points(value, what: str) -> int:
    if not _is_int(value) or value <= 0:
        raise InvalidTransaction(f"{what} must be a positive integer")
    return value


def validate_spent(spent) -> Decimal:
    try:
        value = Decimal(str(spent))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidTransaction("spent amount must be a number")
    if not value.is_finite() or value <= 0:
        raise InvalidTransaction("spent amount must be a positive number")
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _row(kind: TransactionKind, user_id: int, amount: int, created_by: int, remark, **fields) -> models.Transaction:
    if user_id is None or created_by is None:
        raise InvalidTransaction("owner and creator are required")
    return models.Transaction(
        kind=kind.value,
        user_id=user_id,
        amount=amount,
        created_by=created_by,
        remark=sanitize_remark(remark),
        created_at=utcnow(),
        **fields,
    )


def purchase(user_id, created_by, spent, earned, promotions=(), suspicious=False, remark="") -> models.Transaction:
    spent = validate_spent(spent)
    if not _is_int(earned) or earned < 0:
        raise InvalidTransaction("purchase points must be a non-negative integer")
    txn = _row(
        TransactionKind.PURCHASE, user_id, earned, created_by, remark,
        spent=spent, suspicious=bool(suspicious),
    )
    txn.promotions = list(promotions)
    return txn


def adjustment(user_id, created_by, amount, related_id, remark="") -> models.Transaction:
    if not _is_int(amount) or amount == 0:
        raise InvalidTransaction("adjustment amount must be a non-zero integer")
    if related_id is None:
        raise InvalidTransaction("adjustment requires the related transaction id")
    return _row(
        TransactionKind.ADJUSTMENT, user_id, amount, created_by, remark,
        related_id=related_id, suspicious=False,
    )


def redemption(user_id, amount, remark="") -> models.Transaction:
    redeemed = _positive_points(amount, "redemption amount")
    # the debit is recorded up front but only counts once processed
    return _row(
        TransactionKind.REDEMPTION, user_id, -redeemed, user_id, remark,
        redeemed=redeemed, processed_by=None,
    )


def transfer(sender_id, recipient_id, amount, remark="") -> tuple[models.Transaction, models.Transaction]:
    """Both rows of one transfer; the caller must persist them in one commit."""
    sent = _positive_points(amount, "transfer amount")
    if recipient_id is None:
        raise InvalidTransaction("transfer requires a recipient")
    if sender_id == recipient_id:
        raise InvalidTransaction("cannot transfer points to yourself")
    pair_id = uuid4().hex
    debit = _row(
        TransactionKind.TRANSFER, sender_id, -sent, sender_id, remark,
        related_id=recipient_id, pair_id=pair_id,
    )
    credit = _row(
        TransactionKind.TRANSFER, recipient_id, sent, sender_id, remark,
        related_id=sender_id, pair_id=pair_id,
    )
    credit.created_at = debit.created_at
    return debit, credit


def event_award(user_id, created_by, event_id, amount, remark="") -> models.Transaction:
    awarded = _positive_points(amount, "award amount")
    if event_id is None:
        raise InvalidTransaction("event award requires an event")
    return _row(
        TransactionKind.EVENT, user_id, awarded, created_by, remark,
        related_id=event_id, event_id=event_id,
    )

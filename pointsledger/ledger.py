"""Transaction engine: the only code that mutates ledger state.

Each operation runs as one atomic unit. Rows whose balance or budget is
checked are re-read under ``SELECT ... FOR UPDATE`` (``BEGIN IMMEDIATE`` on
SQLite) so the later of two racing requests sees the earlier one's commit.
Lock order is the transaction or event row first, then user rows by ascending id.
"""
from contextlib import contextmanager
from typing import Optional, Sequence

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import balance, entries, holds, models, promotions
from .db import atomic
from .errors import (
    AlreadyProcessed,
    AlreadyUsed,
    Forbidden,
    InsufficientFunds,
    InvalidTransaction,
    LedgerError,
    NotFound,
)
from .models import TransactionKind
from .permissions import can_award_event, can_view_transaction, require
from .utils import utcnow


@contextmanager
def _operation(db: Session, name: str, actor):
    try:
        with atomic(db):
            yield
    except LedgerError as e:
        logger.warning(
            "Rejected {}: {}", name, e,
            actor_id=actor.user_id, error=type(e).__name__,
        )
        raise


def _load_actor(db: Session, actor) -> models.User:
    user = db.get(models.User, actor.user_id)
    if not user:
        raise NotFound("acting user not found")
    return user


def _lock_users(db: Session, *user_ids: int) -> dict[int, models.User]:
    stmt = (
        select(models.User)
        .where(models.User.id.in_(sorted(set(user_ids))))
        .order_by(models.User.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return {u.id: u for u in db.execute(stmt).scalars()}


def _lock_user(db: Session, user_id: int) -> models.User:
    user = _lock_users(db, user_id).get(user_id)
    if not user:
        raise NotFound(f"user {user_id} not found")
    return user


def _lock_transaction(db: Session, transaction_id: int) -> models.Transaction:
    stmt = (
        select(models.Transaction)
        .where(models.Transaction.id == transaction_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    txn = db.execute(stmt).scalar_one_or_none()
    if not txn:
        raise NotFound(f"transaction {transaction_id} not found")
    return txn


def _lock_event(db: Session, event_id: int) -> models.Event:
    stmt = (
        select(models.Event)
        .where(models.Event.id == event_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    event = db.execute(stmt).scalar_one_or_none()
    if not event:
        raise NotFound(f"event {event_id} not found")
    return event


def record_purchase(
    db: Session,
    actor,
    user_id: int,
    spent,
    promotion_ids: Sequence[int] = (),
    remark: str = "",
) -> models.Transaction:
    with _operation(db, "record_purchase", actor):
        require(actor, "record_purchase")
        cashier = _load_actor(db, actor)
        spent = entries.validate_spent(spent)
        user = _lock_user(db, user_id)
        if not user.verified:
            raise Forbidden(f"user {user.utorid} is not verified")

        evaluation = promotions.evaluate(db, user.id, spent, promotion_ids)
        suspicious = holds.stamp(cashier, TransactionKind.PURCHASE)
        txn = entries.purchase(
            user.id, cashier.id, spent, evaluation.total,
            promotions=evaluation.promotions, suspicious=suspicious, remark=remark,
        )
        db.add(txn)
        if not suspicious:
            user.points += txn.amount
        db.flush()

        try:
            for promotion in evaluation.one_time:
                db.add(models.PromotionUsage(user_id=user.id, promotion_id=promotion.id, transaction_id=txn.id))
            db.flush()
        except IntegrityError as e:
            # another purchase consumed the same one-time promotion first
            raise AlreadyUsed("promotion already used") from e

    if txn.suspicious:
        logger.warning("Purchase held for review", transaction_id=txn.id, user_id=txn.user_id, cashier_id=txn.created_by)
    logger.info(
        "Recorded purchase", transaction_id=txn.id, user_id=txn.user_id,
        spent=str(txn.spent), points=txn.amount, promotions=txn.promotion_ids,
    )
    return txn


def record_adjustment(
    db: Session,
    actor,
    user_id: int,
    amount: int,
    related_id: int,
    remark: str = "",
) -> models.Transaction:
    with _operation(db, "record_adjustment", actor):
        require(actor, "record_adjustment")
        manager = _load_actor(db, actor)
        txn = entries.adjustment(user_id, manager.id, amount, related_id, remark)

        related = db.get(models.Transaction, related_id)
        if not related:
            raise NotFound(f"related transaction {related_id} not found")
        user = _lock_user(db, user_id)
        if related.user_id != user.id:
            raise InvalidTransaction(f"transaction {related_id} does not belong to user {user.utorid}")
        if balance.available_balance(user) + txn.amount < 0:
            raise InsufficientFunds(f"adjustment would leave user {user.utorid} with a negative balance")

        db.add(txn)
        user.points += txn.amount

    logger.info(
        "Recorded adjustment", transaction_id=txn.id, user_id=txn.user_id,
        amount=txn.amount, related_id=txn.related_id,
    )
    return txn


def create_redemption(db: Session, actor, amount: int, remark: str = "") -> models.Transaction:
    with _operation(db, "create_redemption", actor):
        require(actor, "create_redemption")
        txn = entries.redemption(actor.user_id, amount, remark)
        user = _lock_user(db, actor.user_id)
        if not user.verified:
            raise Forbidden("user must be verified to redeem points")
        if txn.redeemed > balance.available_balance(user):
            raise InsufficientFunds(f"requested {txn.redeemed} points, {balance.available_balance(user)} available")

        db.add(txn)
        user.reserved += txn.redeemed

    logger.info("Created redemption", transaction_id=txn.id, user_id=txn.user_id, redeemed=txn.redeemed)
    return txn


def process_redemption(db: Session, actor, transaction_id: int) -> models.Transaction:
    with _operation(db, "process_redemption", actor):
        require(actor, "process_redemption")
        cashier = _load_actor(db, actor)
        txn = _lock_transaction(db, transaction_id)
        if txn.kind != TransactionKind.REDEMPTION:
            raise InvalidTransaction(f"transaction {transaction_id} is not a redemption")
        if txn.processed_by is not None:
            raise AlreadyProcessed(f"redemption {transaction_id} has already been processed")

        user = _lock_user(db, txn.user_id)
        user.reserved -= txn.redeemed
        user.points -= txn.redeemed
        txn.processed_by = cashier.id
        txn.processed_at = utcnow()

    logger.info(
        "Processed redemption", transaction_id=txn.id, user_id=txn.user_id,
        redeemed=txn.redeemed, processed_by=txn.processed_by,
    )
    return txn


def create_transfer(
    db: Session,
    actor,
    recipient_id: int,
    amount: int,
    remark: str = "",
) -> tuple[models.Transaction, models.Transaction]:
    with _operation(db, "create_transfer", actor):
        require(actor, "create_transfer")
        debit, credit = entries.transfer(actor.user_id, recipient_id, amount, remark)
        users = _lock_users(db, actor.user_id, recipient_id)
        sender = users.get(actor.user_id)
        if not sender:
            raise NotFound("acting user not found")
        recipient = users.get(recipient_id)
        if not recipient:
            raise NotFound(f"recipient {recipient_id} not found")
        if not sender.verified:
            raise Forbidden("user must be verified to transfer points")
        if credit.amount > balance.available_balance(sender):
            raise InsufficientFunds(f"requested {credit.amount} points, {balance.available_balance(sender)} available")

        db.add_all([debit, credit])
        sender.points += debit.amount
        recipient.points += credit.amount

    logger.info(
        "Created transfer", pair_id=debit.pair_id, sender_id=debit.user_id,
        recipient_id=credit.user_id, amount=credit.amount,
    )
    return debit, credit


def award_event_points(
    db: Session,
    actor,
    event_id: int,
    user_id: Optional[int],
    amount: int,
    remark: str = "",
) -> list[models.Transaction]:
    """Award ``amount`` points to one guest, or to every guest when ``user_id`` is None.

    The whole batch commits or none of it does; the event budget is checked
    against the batch total.
    """
    with _operation(db, "award_event_points", actor):
        creator = _load_actor(db, actor)
        event = _lock_event(db, event_id)
        if not can_award_event(actor, event):
            raise Forbidden("only organizers or managers can award event points")

        if user_id is not None:
            if not db.get(models.User, user_id):
                raise NotFound(f"user {user_id} not found")
            if event.guest(user_id) is None:
                raise InvalidTransaction(f"user {user_id} is not a guest of this event")
            recipients = [user_id]
        else:
            recipients = [g.user_id for g in event.guests]
            if not recipients:
                raise InvalidTransaction("event has no guests to award")

        rows = [entries.event_award(uid, creator.id, event.id, amount, remark) for uid in recipients]
        total = sum(row.amount for row in rows)
        if total > event.points_remain:
            raise InsufficientFunds(f"event has {event.points_remain} points remaining, {total} requested")

        guests = _lock_users(db, *recipients)
        for row in rows:
            guests[row.user_id].points += row.amount
        event.points_remain -= total
        event.points_awarded += total
        db.add_all(rows)

    logger.info(
        "Awarded event points", event_id=event_id, recipients=len(rows),
        per_guest=amount, total=total,
    )
    return rows


def set_suspicious(db: Session, actor, transaction_id: int, value: bool) -> models.Transaction:
    with _operation(db, "set_suspicious", actor):
        require(actor, "set_suspicious")
        txn = _lock_transaction(db, transaction_id)
        holds.check_holdable(txn)
        delta = holds.credit_delta(txn, value)
        if delta:
            user = _lock_user(db, txn.user_id)
            if balance.available_balance(user) + delta < 0:
                raise InsufficientFunds(
                    f"holding transaction {transaction_id} would leave user {user.utorid} with a negative balance"
                )
            user.points += delta
            txn.suspicious = bool(value)

    if delta:
        logger.info("Changed suspicious flag", transaction_id=txn.id, suspicious=txn.suspicious, delta=delta)
    return txn


def get_balance(db: Session, user_id: int) -> balance.Balance:
    user = db.get(models.User, user_id)
    if not user:
        raise NotFound(f"user {user_id} not found")
    return balance.current(user)


def get_transaction(db: Session, transaction_id: int, actor=None) -> models.Transaction:
    txn = db.get(models.Transaction, transaction_id)
    if not txn:
        raise NotFound(f"transaction {transaction_id} not found")
    if actor is not None and not can_view_transaction(actor, txn):
        raise Forbidden("not allowed to view this transaction")
    return txn


def _kind(kind: str) -> str:
    try:
        return TransactionKind(kind).value
    except ValueError:
        raise InvalidTransaction(f"unknown transaction type {kind!r}")


def _paginate(stmt, page: int, limit: int):
    if page < 1:
        raise InvalidTransaction("page must be a positive integer")
    if limit < 1:
        raise InvalidTransaction("limit must be a positive integer")
    return stmt.offset((page - 1) * limit).limit(limit)


def _count(db: Session, stmt) -> int:
    return db.execute(select(func.count()).select_from(stmt.order_by(None).subquery())).scalar_one()


def list_transactions(
    db: Session,
    actor,
    kind: Optional[str] = None,
    user_id: Optional[int] = None,
    created_by: Optional[int] = None,
    suspicious: Optional[bool] = None,
    promotion_id: Optional[int] = None,
    related_id: Optional[int] = None,
    amount: Optional[int] = None,
    operator: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[int, list[models.Transaction]]:
    require(actor, "list_transactions")
    T = models.Transaction
    stmt = select(T)
    if kind is not None:
        stmt = stmt.where(T.kind == _kind(kind))
        # related_id means different things per kind
        if related_id is not None:
            stmt = stmt.where(T.related_id == related_id)
    if user_id is not None:
        stmt = stmt.where(T.user_id == user_id)
    if created_by is not None:
        stmt = stmt.where(T.created_by == created_by)
    if suspicious is not None:
        stmt = stmt.where(T.suspicious == suspicious)
    if promotion_id is not None:
        stmt = stmt.where(T.promotions.any(models.Promotion.id == promotion_id))
    if amount is not None and operator is not None:
        if operator == "gte":
            stmt = stmt.where(T.amount >= amount)
        elif operator == "lte":
            stmt = stmt.where(T.amount <= amount)
        else:
            raise InvalidTransaction("operator must be gte or lte")
    stmt = stmt.order_by(T.id)
    count = _count(db, stmt)
    return count, list(db.execute(_paginate(stmt, page, limit)).scalars())


def list_user_transactions(
    db: Session,
    actor,
    kind: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[int, list[models.Transaction]]:
    T = models.Transaction
    stmt = select(T).where(T.user_id == actor.user_id)
    if kind is not None:
        stmt = stmt.where(T.kind == _kind(kind))
    stmt = stmt.order_by(T.created_at.desc(), T.id.desc())
    count = _count(db, stmt)
    return count, list(db.execute(_paginate(stmt, page, limit)).scalars())

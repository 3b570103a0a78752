"""Staff-side records the ledger reads: users, promotions, events.

None of these touch point balances; only ``ledger`` does that.
"""
from decimal import Decimal
from typing import List

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models, schemas
from .errors import NotFound
from .models import PromotionType, Role
from .utils import to_naive_utc


def create_user(db: Session, user: schemas.UserCreate) -> models.User:
    db_user = models.User(
        utorid=user.utorid,
        name=user.name,
        role=Role(user.role).value,
        verified=user.verified,
    )
    db.add(db_user)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ValueError(f"utorid {user.utorid} already exists") from e
    db.refresh(db_user)
    logger.info("Created user", user_id=db_user.id, role=db_user.role)
    return db_user


def get_user(db: Session, user_id: int) -> models.User:
    user = db.get(models.User, user_id)
    if not user:
        raise NotFound(f"user {user_id} not found")
    return user


def get_user_by_utorid(db: Session, utorid: str) -> models.User | None:
    return db.execute(select(models.User).where(models.User.utorid == utorid)).scalar_one_or_none()


def list_users(db: Session) -> List[models.User]:
    return list(db.execute(select(models.User).order_by(models.User.id)).scalars())


def set_verified(db: Session, user_id: int, verified: bool = True) -> models.User:
    user = get_user(db, user_id)
    user.verified = verified
    db.commit()
    db.refresh(user)
    return user


def set_cashier_suspicious(db: Session, user_id: int, suspicious: bool) -> models.User:
    user = get_user(db, user_id)
    if user.role != Role.CASHIER:
        raise ValueError("only cashiers can be flagged suspicious")
    user.suspicious = suspicious
    db.commit()
    db.refresh(user)
    logger.info("Changed cashier suspicious flag", user_id=user.id, suspicious=suspicious)
    return user


def create_promotion(db: Session, promotion: schemas.PromotionCreate) -> models.Promotion:
    start = to_naive_utc(promotion.start_time)
    end = to_naive_utc(promotion.end_time)
    if start >= end:
        raise ValueError("end time must be after start time")
    if promotion.type == PromotionType.AUTOMATIC:
        if promotion.rate is None:
            raise ValueError("automatic promotions need a rate")
        if promotion.points is not None:
            raise ValueError("automatic promotions are rate based; points not allowed")
    else:
        if promotion.points is None:
            raise ValueError("one-time promotions need a points value")
        if promotion.rate is not None:
            raise ValueError("one-time promotions award fixed points; rate not allowed")

    db_promotion = models.Promotion(
        name=promotion.name,
        description=promotion.description,
        type=promotion.type,
        start_time=start,
        end_time=end,
        min_spending=promotion.min_spending,
        rate=Decimal(str(promotion.rate)) if promotion.rate is not None else None,
        points=promotion.points,
    )
    db.add(db_promotion)
    db.commit()
    db.refresh(db_promotion)
    logger.info("Created promotion", promotion_id=db_promotion.id, type=db_promotion.type)
    return db_promotion


def get_promotion(db: Session, promotion_id: int) -> models.Promotion:
    promotion = db.get(models.Promotion, promotion_id)
    if not promotion:
        raise NotFound(f"promotion {promotion_id} not found")
    return promotion


def create_event(db: Session, event: schemas.EventCreate) -> models.Event:
    db_event = models.Event(name=event.name, points_remain=event.points, points_awarded=0)
    db.add(db_event)
    db.commit()
    db.refresh(db_event)
    logger.info("Created event", event_id=db_event.id, budget=db_event.points_remain)
    return db_event


def get_event(db: Session, event_id: int) -> models.Event:
    event = db.get(models.Event, event_id)
    if not event:
        raise NotFound(f"event {event_id} not found")
    return event


def add_organizer(db: Session, event_id: int, user_id: int) -> models.Event:
    event = get_event(db, event_id)
    user = get_user(db, user_id)
    if event.guest(user.id) is not None:
        raise ValueError("a guest cannot also organize the event")
    if not event.is_organizer(user.id):
        event.organizers.append(user)
        db.commit()
    db.refresh(event)
    return event


def add_guest(db: Session, event_id: int, user_id: int) -> models.EventGuest:
    event = get_event(db, event_id)
    user = get_user(db, user_id)
    if event.is_organizer(user.id):
        raise ValueError("an organizer cannot also be a guest")
    guest = event.guest(user.id)
    if guest is None:
        guest = models.EventGuest(event_id=event.id, user_id=user.id, checked_in=False)
        event.guests.append(guest)
        db.commit()
        db.refresh(guest)
    return guest


def check_in_guest(db: Session, event_id: int, user_id: int) -> models.EventGuest:
    event = get_event(db, event_id)
    guest = event.guest(user_id)
    if guest is None:
        raise NotFound(f"user {user_id} is not a guest of event {event_id}")
    guest.checked_in = True
    db.commit()
    db.refresh(guest)
    return guest

"""Promotion evaluation and purchase point arithmetic.

Points are computed on whole cents with ``ROUND_HALF_UP``:

- base points: ``round(cents / CENTS_PER_POINT)`` (1 point per $0.25 by default)
- automatic promotion: ``round(cents * rate)``, rounded per promotion, then summed
- one-time promotion: its fixed ``points``

Evaluation has no side effects. Usage of one-time promotions is recorded by
the transaction engine inside the purchase's commit.
"""
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import NamedTuple, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from . import models
from .config import get_settings
from .errors import AlreadyUsed, Expired, IneligiblePromotion, InvalidTransaction, NotFound
from .utils import utcnow


def round_points(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_cents(spent) -> int:
    amount = Decimal(str(spent)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return int(amount * 100)


def base_points(spent, cents_per_point: int | None = None) -> int:
    per = cents_per_point or get_settings().cents_per_point
    return round_points(Decimal(to_cents(spent)) / Decimal(per))


def promotion_bonus(promotion: models.Promotion, spent) -> int:
    if promotion.type == models.PromotionType.AUTOMATIC:
        return round_points(Decimal(to_cents(spent)) * Decimal(str(promotion.rate)))
    return int(promotion.points or 0)


class Evaluation(NamedTuple):
    base: int
    bonus: int
    promotions: list

    @property
    def total(self) -> int:
        return self.base + self.bonus

    @property
    def one_time(self) -> list:
        return [p for p in self.promotions if p.type == models.PromotionType.ONE_TIME]


def used_promotion_ids(db: Session, user_id: int, promotion_ids: Sequence[int]) -> set[int]:
    if not promotion_ids:
        return set()
    rows = db.execute(
        select(models.PromotionUsage.promotion_id).where(
            models.PromotionUsage.user_id == user_id,
            models.PromotionUsage.promotion_id.in_(list(promotion_ids)),
        )
    ).scalars()
    return set(rows)


def evaluate(
    db: Session,
    user_id: int,
    spent,
    promotion_ids: Sequence[int] = (),
    now: datetime | None = None,
) -> Evaluation:
    """Validate the requested promotions for a purchase and total its points.

    Checks run in order across all requested promotions: existence, active
    window, minimum spend, then prior one-time usage by ``user_id``.
    """
    now = now or utcnow()
    ids = list(promotion_ids or [])
    if len(set(ids)) != len(ids):
        raise InvalidTransaction("promotion listed more than once")

    found = {}
    if ids:
        rows = db.execute(select(models.Promotion).where(models.Promotion.id.in_(ids))).scalars()
        found = {p.id: p for p in rows}
    missing = [pid for pid in ids if pid not in found]
    if missing:
        raise NotFound(f"promotion {missing[0]} not found")
    promotions = [found[pid] for pid in ids]

    for promotion in promotions:
        if not promotion.is_active(now):
            raise Expired(f"promotion {promotion.id} is not active")

    spent_value = Decimal(str(spent))
    for promotion in promotions:
        if promotion.min_spending is not None and spent_value < Decimal(str(promotion.min_spending)):
            raise IneligiblePromotion(
                f"promotion {promotion.id} requires a minimum spend of {promotion.min_spending}"
            )

    one_time_ids = [p.id for p in promotions if p.type == models.PromotionType.ONE_TIME]
    used = used_promotion_ids(db, user_id, one_time_ids)
    if used:
        raise AlreadyUsed(f"promotion {min(used)} already used")

    bonus = sum(promotion_bonus(p, spent_value) for p in promotions)
    return Evaluation(base=base_points(spent_value), bonus=bonus, promotions=promotions)

import enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Table,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .db import Base
from .utils import utcnow


class Role(str, enum.Enum):
    REGULAR = "regular"
    CASHIER = "cashier"
    MANAGER = "manager"
    SUPERUSER = "superuser"


class TransactionKind(str, enum.Enum):
    PURCHASE = "purchase"
    ADJUSTMENT = "adjustment"
    REDEMPTION = "redemption"
    TRANSFER = "transfer"
    EVENT = "event"


class PromotionType(str, enum.Enum):
    AUTOMATIC = "automatic"
    ONE_TIME = "one-time"


transaction_promotions = Table(
    "transaction_promotions",
    Base.metadata,
    Column("transaction_id", Integer, ForeignKey("transactions.id"), primary_key=True),
    Column("promotion_id", Integer, ForeignKey("promotions.id"), primary_key=True),
)

event_organizers = Table(
    "event_organizers",
    Base.metadata,
    Column("event_id", Integer, ForeignKey("events.id"), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id"), primary_key=True),
)


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("reserved >= 0", name="ck_users_reserved_non_negative"),
        CheckConstraint("points >= reserved", name="ck_users_available_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    utorid = Column(String(32), nullable=False, unique=True, index=True)
    name = Column(String(100), nullable=False)
    role = Column(String(20), nullable=False, default=Role.REGULAR.value, index=True)
    verified = Column(Boolean, nullable=False, default=False)
    # only meaningful for cashiers: their purchases are held for review
    suspicious = Column(Boolean, nullable=False, default=False)
    # cached projection of the ledger, written only by the transaction engine
    points = Column(Integer, nullable=False, default=0)
    reserved = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    transactions = relationship(
        "Transaction", back_populates="user", foreign_keys="Transaction.user_id"
    )


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    kind = Column(String(20), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    remark = Column(String(255), nullable=False, default="")
    suspicious = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    # purchase
    spent = Column(Numeric(10, 2), nullable=True)
    # adjustment: corrected transaction; transfer: counterparty user; event: event
    related_id = Column(Integer, nullable=True, index=True)
    # redemption
    redeemed = Column(Integer, nullable=True)
    processed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    processed_at = Column(DateTime, nullable=True)
    # transfer: both rows of one transfer share this
    pair_id = Column(String(32), nullable=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=True, index=True)

    user = relationship("User", back_populates="transactions", foreign_keys=[user_id])
    creator = relationship("User", foreign_keys=[created_by])
    processor = relationship("User", foreign_keys=[processed_by])
    promotions = relationship("Promotion", secondary=transaction_promotions, order_by="Promotion.id")

    @property
    def promotion_ids(self) -> list[int]:
        return [p.id for p in self.promotions]

    @property
    def earned(self) -> int | None:
        if self.kind != TransactionKind.PURCHASE:
            return None
        return 0 if self.suspicious else self.amount

    @property
    def processed(self) -> bool:
        return self.processed_by is not None


class Promotion(Base):
    __tablename__ = "promotions"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    description = Column(String(500), nullable=False, default="")
    type = Column(String(20), nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    min_spending = Column(Numeric(10, 2), nullable=True)
    # automatic: bonus points per cent spent
    rate = Column(Numeric(10, 4), nullable=True)
    # one-time: fixed bonus
    points = Column(Integer, nullable=True)

    def is_active(self, now) -> bool:
        return self.start_time <= now <= self.end_time


class PromotionUsage(Base):
    __tablename__ = "promotion_usages"
    __table_args__ = (UniqueConstraint("user_id", "promotion_id", name="uq_promotion_usage_user"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    promotion_id = Column(Integer, ForeignKey("promotions.id"), nullable=False, index=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id"), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class Event(Base):
    __tablename__ = "events"
    __table_args__ = (CheckConstraint("points_remain >= 0", name="ck_events_budget_non_negative"),)

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    points_remain = Column(Integer, nullable=False, default=0)
    points_awarded = Column(Integer, nullable=False, default=0)

    organizers = relationship("User", secondary=event_organizers, order_by="User.id")
    guests = relationship(
        "EventGuest", back_populates="event", cascade="all, delete-orphan", order_by="EventGuest.user_id"
    )

    def is_organizer(self, user_id: int) -> bool:
        return any(u.id == user_id for u in self.organizers)

    def guest(self, user_id: int):
        return next((g for g in self.guests if g.user_id == user_id), None)


class EventGuest(Base):
    __tablename__ = "event_guests"

    event_id = Column(Integer, ForeignKey("events.id"), primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    checked_in = Column(Boolean, nullable=False, default=False)

    event = relationship("Event", back_populates="guests")
    user = relationship("User")

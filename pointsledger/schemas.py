from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field, PositiveInt, field_validator
from pydantic.config import ConfigDict

from .models import Role


class Actor(BaseModel):
    """Verified identity handed to the ledger by the authentication layer."""

    user_id: PositiveInt
    role: Role

    model_config = ConfigDict(frozen=True)


class UserCreate(BaseModel):
    utorid: str = Field(..., min_length=1, max_length=32)
    name: str = Field(..., min_length=1, max_length=100)
    role: Role = Role.REGULAR
    verified: bool = False


class PromotionCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = ""
    type: Literal["automatic", "one-time"]
    start_time: datetime
    end_time: datetime
    min_spending: Optional[Decimal] = Field(default=None, ge=0)
    rate: Optional[Decimal] = Field(default=None, gt=0)
    points: Optional[int] = Field(default=None, ge=0)


class EventCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    points: int = Field(..., ge=0)


class TransactionCreate(BaseModel):
    # cashier/manager entry point: one body shape for purchases and adjustments
    type: Literal["purchase", "adjustment"]
    user_id: PositiveInt
    spent: Optional[Decimal] = None
    amount: Optional[int] = None
    related_id: Optional[PositiveInt] = None
    promotion_ids: list[int] = Field(default_factory=list)
    remark: str = ""


class RedemptionCreate(BaseModel):
    amount: int
    remark: str = ""


class TransferCreate(BaseModel):
    amount: int
    remark: str = ""


class EventAwardCreate(BaseModel):
    user_id: Optional[PositiveInt] = None
    amount: int
    remark: str = ""


class SuspiciousUpdate(BaseModel):
    suspicious: bool


class ProcessedUpdate(BaseModel):
    processed: bool

    @field_validator("processed")
    def must_be_true(cls, v: bool):
        if v is not True:
            raise ValueError("processed can only be set to true")
        return v


class TransactionRead(BaseModel):
    id: int
    kind: str
    user_id: int
    amount: int
    created_by: int
    remark: str
    suspicious: bool
    created_at: datetime
    spent: Optional[Decimal] = None
    earned: Optional[int] = None
    related_id: Optional[int] = None
    redeemed: Optional[int] = None
    processed_by: Optional[int] = None
    processed_at: Optional[datetime] = None
    pair_id: Optional[str] = None
    event_id: Optional[int] = None
    promotion_ids: list[int] = []

    model_config = ConfigDict(from_attributes=True)


class TransferRead(BaseModel):
    debit: TransactionRead
    credit: TransactionRead


class TransactionPage(BaseModel):
    count: int
    results: list[TransactionRead]


class BalanceRead(BaseModel):
    user_id: int
    credited: int
    pending_redemption: int
    available: int

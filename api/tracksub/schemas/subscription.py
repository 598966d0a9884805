import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field

BillingCycle = Literal["monthly", "yearly"]
Status = Literal["active", "inactive", "cancelled"]


class SubscriptionCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    billing_cycle: BillingCycle
    start_date: date
    next_payment_date: date | None = None   # computed from start_date when omitted
    amount: Decimal = Field(ge=0)
    category: str = "Other"
    status: Status = "active"


class SubscriptionUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    billing_cycle: BillingCycle | None = None
    start_date: date | None = None
    next_payment_date: date | None = None
    amount: Decimal | None = Field(default=None, ge=0)
    category: str | None = None
    status: Status | None = None


class SubscriptionResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    name: str
    billing_cycle: str
    start_date: date
    next_payment_date: date
    amount: Decimal
    category: str
    status: str
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class SpendingSummary(BaseModel):
    active_count: int
    monthly_total: Decimal
    yearly_total: Decimal
    by_category: dict[str, Decimal]

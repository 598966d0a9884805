import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field


class Candidate(BaseModel):
    """A proposed subscription built from bank transactions; not saved."""
    transaction_id: str                 # latest matching transaction, import key
    suggested_name: str
    suggested_billing_cycle: Literal["monthly", "yearly"]
    suggested_next_payment_date: date
    amount: Decimal
    currency: str
    description: str | None
    transacted_at: datetime
    occurrences: int = 1
    transaction_ids: list[str] = Field(default_factory=list)  # every charge in the group, oldest first


class CandidateList(BaseModel):
    candidates: list[Candidate]


class CandidateImportItem(BaseModel):
    """A reviewed candidate; everything but the transaction id may be edited."""
    transaction_id: str
    name: str = Field(min_length=1, max_length=255)
    billing_cycle: Literal["monthly", "yearly"]
    next_payment_date: date
    amount: Decimal = Field(ge=0)
    category: str = "Other"
    # Other charges of the same candidate, linked along with `transaction_id`
    transaction_ids: list[str] = Field(default_factory=list)


class CandidateImportRequest(BaseModel):
    subscriptions: list[CandidateImportItem]


class ImportResponse(BaseModel):
    created: list[uuid.UUID]
    skipped: list[str]                  # transaction ids already imported or unknown


class AccountAttach(BaseModel):
    public_token: str
    account_id: str


class LinkTokenResponse(BaseModel):
    link_token: str


class SyncResponse(BaseModel):
    message: str = "Sync completed"
    new_transactions: int
    syncs_remaining: int
    last_sync_at: datetime | None


class BillingState(BaseModel):
    plan: str
    financial_account_id: str | None
    financial_sync_month: str | None
    financial_sync_count: int
    financial_last_sync_at: datetime | None

    model_config = {"from_attributes": True}

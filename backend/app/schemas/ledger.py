"""Pydantic schemas for balance accounts and payments."""
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

AccountKind = Literal["supplier_advance", "milling_customer", "salary_advance", "wallet"]


class IssueAccountIn(BaseModel):
    kind: AccountKind
    owner_name: str = Field(min_length=1)
    owner_ref: str | None = None
    opening_amount: Decimal = Field(gt=0, decimal_places=2)
    minimum_payment: Decimal | None = Field(default=None, ge=0)
    issued_by: str = Field(min_length=1)


class PaymentIn(BaseModel):
    amount: Decimal = Field(gt=0, decimal_places=2)
    method: str = Field(min_length=1)
    actor: str = Field(min_length=1)
    idempotency_key: str | None = Field(default=None, max_length=200)
    notes: str | None = None


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    kind: str
    owner_name: str
    owner_ref: str | None
    opening_amount: Decimal
    current_outstanding: Decimal
    minimum_payment: Decimal | None
    status: str
    issued_at: datetime
    cleared_at: datetime | None
    source_request_id: uuid.UUID | None


class LedgerEventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    account_id: uuid.UUID
    amount: Decimal
    method: str
    applied_at: datetime
    applied_by: str
    previous_balance: Decimal
    new_balance: Decimal
    idempotency_key: str
    notes: str | None


class PaymentOut(BaseModel):
    event: LedgerEventOut
    new_outstanding: Decimal
    account_status: str
    replayed: bool


class StatementOut(BaseModel):
    account: AccountOut
    events: list[LedgerEventOut]
    total_paid: Decimal


class VerifyOut(BaseModel):
    account_id: uuid.UUID
    consistent: bool
    expected_outstanding: Decimal
    recorded_outstanding: Decimal
    chain_breaks: int

"""Pydantic schemas for request submission, decisions and read models.

``details`` is a discriminated union keyed by ``type``: every request type
has its own payload schema, validated at the boundary so the workflow core
never inspects untyped data.
"""
import enum
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

Priority = Literal["Low", "Medium", "High", "Urgent"]


class RequestKind(str, enum.Enum):
    approval = "approval"
    money = "money"
    withdrawal = "withdrawal"


# ─── Per-type payloads ───

class SalaryRequestDetails(BaseModel):
    type: Literal["SalaryRequest"]
    employee_email: str
    employee_name: str
    period: str  # e.g. "2025-01"
    payment_method: str = "Bank Transfer"
    advance_deduction: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)


class CashRequisitionDetails(BaseModel):
    type: Literal["CashRequisition"]
    purpose: str
    needed_by: date | None = None


class PersonalExpenseDetails(BaseModel):
    type: Literal["PersonalExpense"]
    category: str
    receipt_ref: str | None = None
    payment_id: str | None = None


class UserRegistrationDetails(BaseModel):
    type: Literal["UserRegistration"]
    name: str
    email: str
    phone: str | None = None
    department: str | None = None
    position: str | None = None
    role: str = "User"
    salary: Decimal = Field(default=Decimal("0"), ge=0)
    permissions: list[str] = Field(default_factory=list)


class LeaveRequestDetails(BaseModel):
    type: Literal["LeaveRequest"]
    leave_type: str
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def end_after_start(self) -> "LeaveRequestDetails":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class SalaryAdvanceDetails(BaseModel):
    type: Literal["SalaryAdvance"]
    employee_email: str
    employee_name: str
    reason: str
    minimum_payment: Decimal | None = Field(default=None, ge=0)


class SupplierAdvanceDetails(BaseModel):
    type: Literal["SupplierAdvance"]
    supplier_name: str
    supplier_code: str | None = None
    purpose: str | None = None


class PriceApprovalDetails(BaseModel):
    type: Literal["PriceApproval"]
    commodity_type: str
    proposed_price: Decimal = Field(gt=0)
    market_price: Decimal | None = None


class PaymentApprovalDetails(BaseModel):
    type: Literal["PaymentApproval"]
    payment_id: str
    supplier_name: str
    batch_number: str | None = None


RequestDetails = Annotated[
    Union[
        SalaryRequestDetails,
        CashRequisitionDetails,
        PersonalExpenseDetails,
        UserRegistrationDetails,
        LeaveRequestDetails,
        SalaryAdvanceDetails,
        SupplierAdvanceDetails,
        PriceApprovalDetails,
        PaymentApprovalDetails,
    ],
    Field(discriminator="type"),
]


# ─── Submission bodies ───

class SubmitRequestIn(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    department: str | None = None
    amount: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    requested_by: str = Field(min_length=1)
    priority: Priority = "Medium"
    requires_three_approvals: bool | None = None
    details: RequestDetails

    @property
    def type(self) -> str:
        return self.details.type


class MoneyRequestIn(BaseModel):
    request_type: str = Field(min_length=1)
    reason: str = Field(min_length=1)
    amount: Decimal = Field(gt=0, decimal_places=2)
    requested_by: str = Field(min_length=1)


class WithdrawalRequestIn(BaseModel):
    account_id: uuid.UUID
    amount: Decimal = Field(gt=0, decimal_places=2)
    requested_by: str = Field(min_length=1)
    phone_number: str | None = None
    channel: Literal["mobile_money", "cash", "bank"] = "mobile_money"


class DecisionIn(BaseModel):
    stage: Literal["finance", "admin", "admin1", "admin2"]
    approved: bool
    actor: str = Field(min_length=1)
    rejection_reason: str | None = None


class ResubmitIn(BaseModel):
    actor: str = Field(min_length=1)


# ─── Read models ───

class RequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    workflow_type: str
    status: str
    requires_three_approvals: bool
    requested_by: str
    requested_at: datetime
    amount: Decimal

    finance_approved: bool | None = None
    finance_approved_at: datetime | None = None
    finance_approved_by: str | None = None
    admin_approved: bool | None = None
    admin_approved_at: datetime | None = None
    admin_approved_by: str | None = None
    admin1_approved: bool | None = None
    admin1_approved_at: datetime | None = None
    admin1_approved_by: str | None = None
    admin2_approved: bool | None = None
    admin2_approved_at: datetime | None = None
    admin2_approved_by: str | None = None

    rejection_reason: str | None = None
    rejected_at: datetime | None = None
    rejected_by: str | None = None
    rejected_stage: str | None = None
    effect_applied_at: datetime | None = None
    version_id: int

    # Populated per table
    type: str | None = None
    title: str | None = None
    priority: str | None = None
    details: dict | None = None
    request_type: str | None = None
    reason: str | None = None
    account_id: uuid.UUID | None = None
    resubmitted_from_id: uuid.UUID | None = None


class RequestListResponse(BaseModel):
    items: list[RequestOut]
    total: int


class DecisionOut(BaseModel):
    request: RequestOut
    status: str
    fully_approved: bool

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, JSON, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, TimestampMixin, UUIDMixin


class ApprovalStagesMixin:
    """Stage sub-state shared by every table that goes through approval.

    One approved/at/by triple per stage; all null until the stage acts.
    """

    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default="Pending", index=True
    )  # Pending, FinanceApproved, Admin1Approved, Approved, Rejected
    requires_three_approvals: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    finance_approved: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    finance_approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finance_approved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    admin_approved: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    admin_approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    admin_approved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    admin1_approved: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    admin1_approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    admin1_approved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    admin2_approved: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    admin2_approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    admin2_approved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    rejected_stage: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Set once the approved effect (ledger / inventory / account) has run
    effect_applied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    effect_error: Mapped[str | None] = mapped_column(Text, nullable=True)


class ApprovalRequest(Base, UUIDMixin, TimestampMixin, ApprovalStagesMixin):
    """A typed request (salary, expense, advance, registration, ...) awaiting approval."""

    __tablename__ = "approval_requests"

    type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    department: Mapped[str | None] = mapped_column(String(100), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=0)
    requested_by: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default="Medium")
    details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    resubmitted_from_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("approval_requests.id"), nullable=True
    )

    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def workflow_type(self) -> str:
        return self.type


class MoneyRequest(Base, UUIDMixin, TimestampMixin, ApprovalStagesMixin):
    """Cash / allowance request raised by an employee (two-stage flow)."""

    __tablename__ = "money_requests"

    request_type: Mapped[str] = mapped_column(String(50), nullable=False)  # lunch_refreshment, transport, airtime, ...
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    requested_by: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    workflow_type = "MoneyRequest"


class WithdrawalRequest(Base, UUIDMixin, TimestampMixin, ApprovalStagesMixin):
    """Withdrawal from a wallet balance account (two-stage flow)."""

    __tablename__ = "withdrawal_requests"

    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("balance_accounts.id"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    phone_number: Mapped[str | None] = mapped_column(String(30), nullable=True)
    channel: Mapped[str] = mapped_column(String(30), nullable=False, default="mobile_money")  # mobile_money, cash, bank
    request_ref: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    requested_by: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    workflow_type = "WithdrawalRequest"


REQUEST_MODELS: dict[str, type] = {
    "approval": ApprovalRequest,
    "money": MoneyRequest,
    "withdrawal": WithdrawalRequest,
}

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, TimestampMixin, UUIDMixin


class BalanceAccount(Base, UUIDMixin, TimestampMixin):
    """Outstanding balance owed on an advance, credit or wallet."""

    __tablename__ = "balance_accounts"
    __table_args__ = (CheckConstraint("current_outstanding >= 0", name="ck_balance_accounts_non_negative"),)

    kind: Mapped[str] = mapped_column(
        String(30), nullable=False, index=True
    )  # supplier_advance, milling_customer, salary_advance, wallet
    owner_name: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_ref: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)  # supplier code / employee email
    opening_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    current_outstanding: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    minimum_payment: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="Active", index=True)  # Active, Cleared
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    issued_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    cleared_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    source_request_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, unique=True, nullable=True)

    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    events: Mapped[list["LedgerEvent"]] = relationship(
        "LedgerEvent", back_populates="account", order_by="LedgerEvent.applied_at"
    )


class LedgerEvent(Base, UUIDMixin, TimestampMixin):
    """One payment / clearing applied to a BalanceAccount. Append-only."""

    __tablename__ = "ledger_events"

    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("balance_accounts.id"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    method: Mapped[str] = mapped_column(String(50), nullable=False)  # Cash, Bank Transfer, Mobile Money, Salary Deduction
    applied_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    applied_by: Mapped[str] = mapped_column(String(255), nullable=False)
    previous_balance: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    new_balance: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    account: Mapped["BalanceAccount"] = relationship("BalanceAccount", back_populates="events")

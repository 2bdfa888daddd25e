import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Integer, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, TimestampMixin, UUIDMixin


class InventoryBatch(Base, UUIDMixin, TimestampMixin):
    """A dated stock batch of one coffee type, filled by purchases and drawn down FIFO by sales."""

    __tablename__ = "inventory_batches"
    __table_args__ = (CheckConstraint("remaining_kilograms >= 0", name="ck_inventory_batches_non_negative"),)

    batch_code: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)  # ARA-B001
    commodity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    target_capacity: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_kilograms: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    remaining_kilograms: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="filling", index=True
    )  # filling, active, selling, sold_out
    batch_date: Mapped[date] = mapped_column(Date, nullable=False)
    sold_out_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    sources: Mapped[list["BatchSource"]] = relationship(
        "BatchSource", back_populates="batch", order_by="BatchSource.purchase_date"
    )
    sales: Mapped[list["BatchSale"]] = relationship(
        "BatchSale", back_populates="batch", order_by="BatchSale.sale_date"
    )


class BatchSource(Base, UUIDMixin, TimestampMixin):
    """Inbound stock added to a batch (one purchase / store record)."""

    __tablename__ = "batch_sources"

    batch_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("inventory_batches.id"), nullable=False, index=True
    )
    source_record_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    kilograms: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    supplier_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    purchase_date: Mapped[date] = mapped_column(Date, nullable=False)

    batch: Mapped["InventoryBatch"] = relationship("InventoryBatch", back_populates="sources")


class BatchSale(Base, UUIDMixin, TimestampMixin):
    """One FIFO slice deducted from a batch by an allocation."""

    __tablename__ = "batch_sales"

    batch_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("inventory_batches.id"), nullable=False, index=True
    )
    allocation_ref: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    kilograms_deducted: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    counterparty_name: Mapped[str] = mapped_column(String(255), nullable=False)
    sale_date: Mapped[date] = mapped_column(Date, nullable=False)
    allocated_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    batch: Mapped["InventoryBatch"] = relationship("InventoryBatch", back_populates="sales")

"""Pydantic schemas for inventory batches and FIFO allocations."""
import uuid
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class AddToBatchIn(BaseModel):
    source_record_id: str = Field(min_length=1)
    commodity_type: str = Field(min_length=1)
    kilograms: Decimal = Field(gt=0, decimal_places=2)
    supplier_name: str | None = None
    purchase_date: date | None = None
    actor: str | None = None


class AllocateIn(BaseModel):
    commodity_type: str = Field(min_length=1)
    kilograms: Decimal = Field(gt=0, decimal_places=2)
    counterparty_name: str = Field(min_length=1)
    allocation_ref: str | None = Field(default=None, max_length=100)
    actor: str | None = None


class BatchOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    batch_code: str
    commodity_type: str
    target_capacity: Decimal
    total_kilograms: Decimal
    remaining_kilograms: Decimal
    status: str
    batch_date: date
    sold_out_at: datetime | None
    created_at: datetime


class AllocationOut(BaseModel):
    batch_id: uuid.UUID
    batch_code: str
    kilograms: Decimal


class AllocateOut(BaseModel):
    allocation_ref: str
    allocations: list[AllocationOut]
    total_kilograms: Decimal
    replayed: bool


class InventorySummaryOut(BaseModel):
    active_batches: int
    sold_out_batches: int
    total_remaining_kg: Decimal
    total_capacity_kg: Decimal
    utilization_pct: float
    by_commodity: dict[str, Decimal]

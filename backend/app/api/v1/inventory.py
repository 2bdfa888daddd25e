"""Inventory batch endpoints — fill batches, FIFO allocation, summary."""
from fastapi import APIRouter, Query, status

from app.core.deps import DbSession
from app.models.inventory import InventoryBatch
from app.schemas.inventory import (
    AddToBatchIn,
    AllocateIn,
    AllocateOut,
    AllocationOut,
    BatchOut,
    InventorySummaryOut,
)
from app.services import inventory as inventory_svc

router = APIRouter()


@router.post(
    "/sources",
    response_model=BatchOut,
    status_code=status.HTTP_201_CREATED,
    summary="Add purchased stock to the open batch of its type",
)
def add_to_batch(body: AddToBatchIn, db: DbSession):
    source = inventory_svc.add_to_batch(
        db,
        source_record_id=body.source_record_id,
        commodity_type=body.commodity_type,
        kilograms=body.kilograms,
        supplier_name=body.supplier_name,
        purchase_date=body.purchase_date,
        actor=body.actor,
    )
    return BatchOut.model_validate(db.get(InventoryBatch, source.batch_id))


@router.post(
    "/allocations",
    response_model=AllocateOut,
    summary="Allocate stock across batches, oldest first (all-or-nothing)",
)
def allocate_stock(body: AllocateIn, db: DbSession):
    result = inventory_svc.allocate(
        db,
        commodity_type=body.commodity_type,
        requested_kilograms=body.kilograms,
        counterparty_name=body.counterparty_name,
        allocation_ref=body.allocation_ref,
        actor=body.actor,
    )
    return AllocateOut(
        allocation_ref=result.allocation_ref,
        allocations=[
            AllocationOut(batch_id=a.batch_id, batch_code=a.batch_code, kilograms=a.kilograms)
            for a in result.allocations
        ],
        total_kilograms=result.total_kilograms,
        replayed=result.replayed,
    )


@router.get("/batches", response_model=list[BatchOut], summary="List batches, oldest first")
def list_batches(
    db: DbSession,
    commodity_type: str | None = Query(None),
    include_sold_out: bool = Query(True),
):
    batches = inventory_svc.list_batches(db, commodity_type, include_sold_out)
    return [BatchOut.model_validate(b) for b in batches]


@router.get("/summary", response_model=InventorySummaryOut, summary="Stock and capacity summary")
def get_summary(db: DbSession):
    return InventorySummaryOut(**inventory_svc.inventory_summary(db))

"""Batch / inventory allocator.

Purchases fill dated batches (``add_to_batch``); sales draw them down
oldest-first (``allocate``). Batch status only ever moves forward:

    filling → active (total reaches target capacity)
            → selling (first kilogram sold)
            → sold_out (remaining reaches zero)

Allocation is all-or-nothing and runs in one relational transaction with
a version check on every batch it touches.
"""
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    ConcurrentModificationError,
    InsufficientStockError,
    WorkflowValidationError,
)
from app.models.inventory import BatchSale, BatchSource, InventoryBatch
from app.rules.fifo import plan_fifo
from app.services import audit as audit_svc
from app.services.request_store import run_with_retry

logger = logging.getLogger(__name__)

FILLING = "filling"
ACTIVE = "active"
SELLING = "selling"
SOLD_OUT = "sold_out"

STATUS_RANK = {FILLING: 0, ACTIVE: 1, SELLING: 2, SOLD_OUT: 3}
OPEN_STATUSES = (FILLING, ACTIVE)
ALLOCATABLE_STATUSES = (FILLING, ACTIVE, SELLING)

ZERO = Decimal("0")
CENTIGRAM = Decimal("0.01")


@dataclass(frozen=True)
class Allocation:
    batch_id: uuid.UUID
    batch_code: str
    kilograms: Decimal


@dataclass
class AllocationResult:
    allocation_ref: str
    allocations: list[Allocation] = field(default_factory=list)
    replayed: bool = False

    @property
    def total_kilograms(self) -> Decimal:
        return sum((a.kilograms for a in self.allocations), ZERO)


# ─── Helpers ───

def normalize_commodity(commodity_type: str) -> str:
    if not commodity_type or not commodity_type.strip():
        raise WorkflowValidationError("commodity_type is required.")
    return commodity_type.strip().title()


def _kilograms(value) -> Decimal:
    try:
        kg = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise WorkflowValidationError("kilograms must be a number.") from None
    if not kg.is_finite() or kg <= 0:
        raise WorkflowValidationError("kilograms must be greater than zero.")
    if kg != kg.quantize(CENTIGRAM):
        raise WorkflowValidationError("kilograms must have at most two decimal places.")
    return kg


def _advance_status(batch: InventoryBatch, status: str) -> None:
    """Move a batch forward; never back."""
    if STATUS_RANK[status] > STATUS_RANK[batch.status]:
        batch.status = status


def _next_batch_code(db: Session, commodity_type: str) -> str:
    prefix = commodity_type[:3].upper()
    codes = db.execute(
        select(InventoryBatch.batch_code).where(InventoryBatch.batch_code.like(f"{prefix}-B%"))
    ).scalars().all()
    highest = 0
    for code in codes:
        match = re.search(r"-B(\d+)$", code or "")
        if match:
            highest = max(highest, int(match.group(1)))
    return f"{prefix}-B{highest + 1:03d}"


def _snapshot(batch: InventoryBatch) -> dict:
    return {
        "batch_code": batch.batch_code,
        "total_kilograms": str(batch.total_kilograms),
        "remaining_kilograms": str(batch.remaining_kilograms),
        "status": batch.status,
    }


# ─── Add to batch ───

def add_to_batch(
    db: Session,
    source_record_id: str,
    commodity_type: str,
    kilograms,
    supplier_name: str | None = None,
    purchase_date: date | None = None,
    actor: str | None = None,
) -> BatchSource:
    """Add purchased stock to the open batch of its type, opening a new one if needed.

    Idempotent on ``source_record_id``. Performs the filling → active
    transition when the batch reaches its target capacity.
    """
    if not source_record_id:
        raise WorkflowValidationError("source_record_id is required.")
    commodity = normalize_commodity(commodity_type)
    kg = _kilograms(kilograms)
    purchase_date = purchase_date or date.today()

    def existing_source() -> BatchSource | None:
        return db.execute(
            select(BatchSource).where(BatchSource.source_record_id == source_record_id)
        ).scalars().first()

    def attempt() -> BatchSource:
        found = existing_source()
        if found is not None:
            return found

        target = Decimal(str(settings.BATCH_TARGET_CAPACITY_KG))
        batch = db.execute(
            select(InventoryBatch)
            .where(
                InventoryBatch.commodity_type == commodity,
                InventoryBatch.status.in_(OPEN_STATUSES),
                InventoryBatch.total_kilograms < InventoryBatch.target_capacity,
            )
            .order_by(InventoryBatch.batch_date.desc(), InventoryBatch.created_at.desc())
            .execution_options(populate_existing=True)
        ).scalars().first()

        if batch is None:
            batch = InventoryBatch(
                batch_code=_next_batch_code(db, commodity),
                commodity_type=commodity,
                target_capacity=target,
                total_kilograms=ZERO,
                remaining_kilograms=ZERO,
                status=FILLING,
                batch_date=purchase_date,
            )
            db.add(batch)
            db.flush()
            logger.info("Opened batch %s for %s", batch.batch_code, commodity)

        before = _snapshot(batch)
        batch.total_kilograms = Decimal(batch.total_kilograms) + kg
        batch.remaining_kilograms = Decimal(batch.remaining_kilograms) + kg
        if batch.total_kilograms >= Decimal(batch.target_capacity):
            _advance_status(batch, ACTIVE)

        source = BatchSource(
            batch_id=batch.id,
            source_record_id=source_record_id,
            kilograms=kg,
            supplier_name=supplier_name,
            purchase_date=purchase_date,
        )
        db.add(source)
        db.flush()

        audit_svc.log(
            db=db,
            action="inventory.batch_filled",
            entity_type="inventory_batch",
            entity_id=batch.id,
            actor=actor,
            before=before,
            after=_snapshot(batch),
            notes=f"+{kg}kg from {supplier_name or 'unknown supplier'} ({source_record_id})",
        )
        db.commit()
        return source

    try:
        return run_with_retry(db, attempt, entity="inventory batch")
    except IntegrityError as exc:
        found = existing_source()
        if found is not None:
            return found
        # Two writers opened the same next batch code
        raise ConcurrentModificationError("inventory batch") from exc


# ─── FIFO allocation ───

def _replay_allocation(db: Session, allocation_ref: str) -> list[Allocation]:
    rows = db.execute(
        select(BatchSale, InventoryBatch.batch_code)
        .join(InventoryBatch, InventoryBatch.id == BatchSale.batch_id)
        .where(BatchSale.allocation_ref == allocation_ref)
        .order_by(InventoryBatch.batch_date, InventoryBatch.created_at)
    ).all()
    return [
        Allocation(batch_id=sale.batch_id, batch_code=code, kilograms=Decimal(sale.kilograms_deducted))
        for sale, code in rows
    ]


def allocate(
    db: Session,
    commodity_type: str,
    requested_kilograms,
    counterparty_name: str,
    allocation_ref: str | None = None,
    actor: str | None = None,
    sale_date: date | None = None,
) -> AllocationResult:
    """Draw ``requested_kilograms`` from the oldest eligible batches first.

    Eligible: same commodity, remaining > 0, status filling/active/selling,
    ordered by (batch_date, created_at). If the eligible total is short the
    call is refused and no batch changes. Replaying ``allocation_ref``
    returns the recorded allocation without deducting again.

    Raises:
        WorkflowValidationError, InsufficientStockError, ConcurrentModificationError
    """
    commodity = normalize_commodity(commodity_type)
    kg = _kilograms(requested_kilograms)
    if not counterparty_name or not counterparty_name.strip():
        raise WorkflowValidationError("counterparty_name is required.")
    ref = allocation_ref or f"alloc-{uuid.uuid4().hex[:16]}"
    sale_date = sale_date or date.today()

    def attempt() -> AllocationResult:
        recorded = _replay_allocation(db, ref)
        if recorded:
            total = sum((a.kilograms for a in recorded), ZERO)
            if total != kg:
                raise WorkflowValidationError(
                    f"Allocation reference '{ref}' was already used for {total}kg."
                )
            return AllocationResult(allocation_ref=ref, allocations=recorded, replayed=True)

        batches = db.execute(
            select(InventoryBatch)
            .where(
                InventoryBatch.commodity_type == commodity,
                InventoryBatch.remaining_kilograms > 0,
                InventoryBatch.status.in_(ALLOCATABLE_STATUSES),
            )
            .order_by(InventoryBatch.batch_date, InventoryBatch.created_at)
            .execution_options(populate_existing=True)
        ).scalars().all()
        by_id = {b.id: b for b in batches}

        slices = plan_fifo(
            [(b.id, Decimal(b.remaining_kilograms)) for b in batches],
            kg,
            InsufficientStockError,
        )

        now = datetime.now(timezone.utc)
        allocations: list[Allocation] = []
        for part in slices:
            batch = by_id[part.key]
            before = _snapshot(batch)
            remaining = Decimal(batch.remaining_kilograms) - part.quantity
            batch.remaining_kilograms = remaining
            if remaining == ZERO:
                _advance_status(batch, SOLD_OUT)
                batch.sold_out_at = now
            else:
                _advance_status(batch, SELLING)

            db.add(BatchSale(
                batch_id=batch.id,
                allocation_ref=ref,
                kilograms_deducted=part.quantity,
                counterparty_name=counterparty_name,
                sale_date=sale_date,
                allocated_by=actor,
            ))
            audit_svc.log(
                db=db,
                action="inventory.batch_allocated",
                entity_type="inventory_batch",
                entity_id=batch.id,
                actor=actor,
                before=before,
                after=_snapshot(batch),
                notes=f"-{part.quantity}kg to {counterparty_name} ({ref})",
            )
            allocations.append(Allocation(batch.id, batch.batch_code, part.quantity))

        db.flush()
        db.commit()
        return AllocationResult(allocation_ref=ref, allocations=allocations)

    result = run_with_retry(db, attempt, entity="inventory batch")
    logger.info(
        "Allocated %skg %s to %s from %d batch(es) ref=%s replayed=%s",
        kg, commodity, counterparty_name, len(result.allocations), ref, result.replayed,
    )
    return result


# ─── Read side ───

def list_batches(
    db: Session,
    commodity_type: str | None = None,
    include_sold_out: bool = True,
) -> list[InventoryBatch]:
    stmt = select(InventoryBatch)
    if commodity_type:
        stmt = stmt.where(InventoryBatch.commodity_type == normalize_commodity(commodity_type))
    if not include_sold_out:
        stmt = stmt.where(InventoryBatch.status != SOLD_OUT)
    return list(db.execute(
        stmt.order_by(InventoryBatch.batch_date, InventoryBatch.created_at)
    ).scalars().all())


def inventory_summary(db: Session) -> dict:
    """Batch counts, remaining stock and capacity utilisation across all types."""
    batches = list_batches(db)
    open_batches = [b for b in batches if b.status != SOLD_OUT]
    remaining = sum((Decimal(b.remaining_kilograms) for b in open_batches), ZERO)
    capacity = sum((Decimal(b.target_capacity) for b in open_batches), ZERO)

    by_commodity: dict[str, Decimal] = {}
    for b in open_batches:
        by_commodity[b.commodity_type] = by_commodity.get(b.commodity_type, ZERO) + Decimal(b.remaining_kilograms)

    return {
        "active_batches": len(open_batches),
        "sold_out_batches": len(batches) - len(open_batches),
        "total_remaining_kg": remaining,
        "total_capacity_kg": capacity,
        "utilization_pct": round(float(remaining / capacity * 100), 1) if capacity else 0.0,
        "by_commodity": by_commodity,
    }

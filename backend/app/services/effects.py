"""Effect executor — what happens once a request is fully approved.

The approval state machine never moves money or stock itself. When a
request reaches Approved it hands ``(kind, request_id)`` to
``dispatch_effects``, which runs inline or on Celery depending on
EFFECTS_DISPATCH_MODE. Delivery is at-least-once:

  * every handler is idempotent (accounts keyed on source_request_id,
    payments on an idempotency key, employees on email);
  * ``effect_applied_at`` is stamped only after the handler succeeds, and
    the beat sweep re-runs approved requests that still lack the stamp;
  * a business-rule refusal (e.g. the wallet no longer covers the
    withdrawal) is recorded in ``effect_error`` and not retried.
"""
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import WorkflowError
from app.models.approval_request import REQUEST_MODELS
from app.rules.approval_flows import RequestStatus, flow_for, get_policy, stage_fields
from app.schemas.requests import (
    PriceApprovalDetails,
    SalaryAdvanceDetails,
    SalaryRequestDetails,
    SupplierAdvanceDetails,
    UserRegistrationDetails,
)
from app.services import employee_sync, ledger
from app.services.document_store import DocumentStore, write_auxiliary
from app.services.request_store import RequestStore, run_with_retry

logger = logging.getLogger(__name__)


def final_approver(request) -> str | None:
    last = flow_for(request.requires_three_approvals)[-1]
    return getattr(request, stage_fields(last)[2])


# ─── Handlers ───

def _salary_request(db: Session, request, documents: DocumentStore | None) -> None:
    details = SalaryRequestDetails.model_validate(request.details)
    if details.advance_deduction <= 0:
        return
    ledger.apply_payment_fifo(
        db,
        owner_ref=details.employee_email.strip().lower(),
        kind="salary_advance",
        amount=details.advance_deduction,
        method="Salary Deduction",
        actor=final_approver(request) or "system",
        idempotency_key=f"salary-request:{request.id}",
        notes=f"Deducted from {details.period} salary",
        documents=documents,
    )


def _issue_salary_advance(db: Session, request, documents: DocumentStore | None) -> None:
    details = SalaryAdvanceDetails.model_validate(request.details)
    ledger.issue_account(
        db,
        kind="salary_advance",
        owner_name=details.employee_name,
        owner_ref=details.employee_email.strip().lower(),
        opening_amount=request.amount,
        minimum_payment=details.minimum_payment,
        issued_by=final_approver(request) or "system",
        source_request_id=request.id,
    )


def _issue_supplier_advance(db: Session, request, documents: DocumentStore | None) -> None:
    details = SupplierAdvanceDetails.model_validate(request.details)
    ledger.issue_account(
        db,
        kind="supplier_advance",
        owner_name=details.supplier_name,
        owner_ref=details.supplier_code,
        opening_amount=request.amount,
        issued_by=final_approver(request) or "system",
        source_request_id=request.id,
    )


def _publish_price(db: Session, request, documents: DocumentStore | None) -> None:
    details = PriceApprovalDetails.model_validate(request.details)
    if documents is None:
        return
    write_auxiliary(db, documents, "price_approvals", f"price-{request.id}", {
        "commodity_type": details.commodity_type,
        "price": str(details.proposed_price),
        "market_price": str(details.market_price) if details.market_price is not None else None,
        "approved_by": final_approver(request),
        "request_id": str(request.id),
    })


def _create_employee(db: Session, request, documents: DocumentStore | None) -> None:
    details = UserRegistrationDetails.model_validate(request.details)
    employee_sync.create_employee(
        db,
        details.model_dump(exclude={"type"}),
        actor=final_approver(request),
        documents=documents,
    )


def _wallet_withdrawal(db: Session, request, documents: DocumentStore | None) -> None:
    ledger.apply_payment(
        db,
        account_id=request.account_id,
        amount=request.amount,
        method=f"Withdrawal ({request.channel})",
        actor=final_approver(request) or "system",
        idempotency_key=f"withdrawal:{request.id}",
        notes=request.request_ref,
        documents=documents,
    )


EFFECT_HANDLERS: dict[str, Callable[[Session, object, DocumentStore | None], None]] = {
    "salary_request": _salary_request,
    "issue_salary_advance": _issue_salary_advance,
    "issue_supplier_advance": _issue_supplier_advance,
    "publish_price": _publish_price,
    "create_employee": _create_employee,
    "wallet_withdrawal": _wallet_withdrawal,
}


# ─── Executor ───

def apply_request_effects(
    db: Session,
    kind: str,
    request_id: uuid.UUID,
    documents: DocumentStore | None = None,
) -> bool:
    """Run the approved effect for one request. Returns True once applied.

    Safe to call any number of times for the same request.
    """
    store = RequestStore(db, REQUEST_MODELS[kind])
    request = store.get_by_id(request_id)
    if request.status != RequestStatus.approved.value:
        logger.warning("Effects skipped for %s %s: status is %s", kind, request_id, request.status)
        return False
    if request.effect_applied_at is not None:
        return True

    policy = get_policy(request.workflow_type)
    handler = EFFECT_HANDLERS.get(policy.effect) if policy.effect else None
    if handler is not None:
        try:
            handler(db, request, documents)
        except WorkflowError as exc:
            db.rollback()
            logger.warning("Effect %s refused for %s %s: %s", policy.effect, kind, request_id, exc)
            run_with_retry(db, lambda: _stamp(store, request_id, {"effect_error": str(exc)}), entity=kind)
            return False

    run_with_retry(
        db,
        lambda: _stamp(store, request_id, {"effect_applied_at": datetime.now(timezone.utc), "effect_error": None}),
        entity=kind,
    )
    logger.info("Effects applied for %s %s (%s)", kind, request_id, policy.effect or "none")

    if documents is not None:
        write_auxiliary(db, documents, "daily_tasks", f"approval-{kind}-{request_id}", {
            "task_type": "Approval",
            "description": f"{request.workflow_type} approved for {request.requested_by}",
            "amount": str(Decimal(request.amount)),
            "completed_by": final_approver(request),
            "completed_at": datetime.now(timezone.utc).isoformat(),
            "department": getattr(request, "department", None) or "Finance",
        })
    return True


def _stamp(store: RequestStore, request_id: uuid.UUID, partial: dict):
    record = store.update(request_id, partial)
    store.db.commit()
    return record


def dispatch_effects(
    db: Session,
    kind: str,
    request_id: uuid.UUID,
    documents: DocumentStore | None = None,
) -> None:
    """Hand a freshly approved request to the effect executor.

    Failures are logged, never raised: the approval itself has already
    committed and the sweep task retries unapplied effects.
    """
    if settings.EFFECTS_DISPATCH_MODE == "celery":
        from app.workers.effect_tasks import apply_request_effects_task

        try:
            apply_request_effects_task.delay(kind, str(request_id))
        except Exception as exc:
            logger.warning("Could not enqueue effects for %s %s, sweep will retry: %s", kind, request_id, exc)
        return

    try:
        apply_request_effects(db, kind, request_id, documents)
    except Exception:
        db.rollback()
        logger.error("Effects failed for %s %s, sweep will retry", kind, request_id, exc_info=True)


def sweep_unapplied_effects(
    db: Session,
    documents: DocumentStore | None = None,
    limit: int | None = None,
) -> dict:
    """Re-run effects for approved requests that were never stamped."""
    limit = limit or settings.EFFECT_SWEEP_BATCH_SIZE
    stats = {"applied": 0, "refused": 0, "failed": 0}
    for kind, model in REQUEST_MODELS.items():
        ids = db.execute(
            select(model.id)
            .where(
                model.status == RequestStatus.approved.value,
                model.effect_applied_at.is_(None),
                model.effect_error.is_(None),
            )
            .order_by(model.updated_at)
            .limit(limit)
        ).scalars().all()
        for request_id in ids:
            try:
                if apply_request_effects(db, kind, request_id, documents):
                    stats["applied"] += 1
                else:
                    stats["refused"] += 1
            except Exception:
                db.rollback()
                stats["failed"] += 1
                logger.error("Sweep: effects failed for %s %s", kind, request_id, exc_info=True)
    return stats

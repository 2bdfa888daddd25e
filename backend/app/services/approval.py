"""Approval request lifecycle service.

Submission, ordered stage decisions, resubmission and review queues for the
three request tables (approval / money / withdrawal). Every decision is
evaluated against a fresh read of the request and written with a version
compare-and-swap, so two reviewers racing on the same request cannot both
act on stale stage state.

All functions accept a sync SQLAlchemy Session — safe to call from
Celery tasks as well as the API threadpool.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    InsufficientBalanceError,
    RecordNotFoundError,
    WorkflowValidationError,
)
from app.models.approval_request import (
    REQUEST_MODELS,
    ApprovalRequest,
    MoneyRequest,
    WithdrawalRequest,
)
from app.models.ledger import BalanceAccount
from app.rules.approval_flows import (
    TERMINAL_STATUSES,
    Decision,
    RequestStatus,
    Stage,
    evaluate_decision,
    get_policy,
    pending_stage,
    select_flow,
    stage_fields,
)
from app.schemas.requests import MoneyRequestIn, SubmitRequestIn, WithdrawalRequestIn
from app.services import audit as audit_svc
from app.services import notifications
from app.services.document_store import DocumentStore, write_auxiliary
from app.services.effects import dispatch_effects
from app.services.request_store import RequestStore, run_with_retry

logger = logging.getLogger(__name__)


@dataclass
class ApprovalOutcome:
    request: object
    decision: Decision

    @property
    def status(self) -> str:
        return self.request.status


def model_for(kind: str) -> type:
    try:
        return REQUEST_MODELS[kind]
    except KeyError:
        raise WorkflowValidationError(
            f"Unknown request kind '{kind}'. Must be one of: {', '.join(REQUEST_MODELS)}."
        ) from None


def _stage_snapshot(record) -> dict:
    snap = {"status": record.status, "version_id": record.version_id}
    for stage in Stage:
        flag, at, by = stage_fields(stage)
        snap[flag] = getattr(record, flag)
        snap[at] = getattr(record, at)
        snap[by] = getattr(record, by)
    return snap


# ─── Submission ───

def submit_request(db: Session, payload: SubmitRequestIn) -> ApprovalRequest:
    """Persist a typed request as Pending and return it.

    The approval flow (two or three stages) is fixed here and never
    changes afterwards.
    """
    policy = get_policy(payload.type)
    three = select_flow(
        policy,
        payload.amount,
        payload.requires_three_approvals,
        Decimal(str(settings.THREE_APPROVAL_THRESHOLD)),
    )
    record = ApprovalRequest(
        type=payload.type,
        title=payload.title,
        description=payload.description,
        department=payload.department,
        amount=payload.amount,
        requested_by=payload.requested_by.strip(),
        requested_at=datetime.now(timezone.utc),
        priority=payload.priority,
        details=payload.details.model_dump(mode="json"),
        requires_three_approvals=three,
        status=RequestStatus.pending.value,
    )
    RequestStore(db, ApprovalRequest).create(record)
    audit_svc.log(
        db=db,
        action="request.submitted",
        entity_type="approval_request",
        entity_id=record.id,
        actor=record.requested_by,
        after={"type": record.type, "amount": str(record.amount), "three_stage": three},
    )
    db.commit()
    logger.info(
        "Request submitted: id=%s type=%s amount=%s three_stage=%s by=%s",
        record.id, record.type, record.amount, three, record.requested_by,
    )
    return record


def submit_money_request(db: Session, payload: MoneyRequestIn) -> MoneyRequest:
    record = MoneyRequest(
        request_type=payload.request_type,
        reason=payload.reason,
        amount=payload.amount,
        requested_by=payload.requested_by.strip(),
        requested_at=datetime.now(timezone.utc),
        requires_three_approvals=False,
        status=RequestStatus.pending.value,
    )
    RequestStore(db, MoneyRequest).create(record)
    audit_svc.log(
        db=db,
        action="request.submitted",
        entity_type="money_request",
        entity_id=record.id,
        actor=record.requested_by,
        after={"request_type": record.request_type, "amount": str(record.amount)},
    )
    db.commit()
    logger.info("Money request submitted: id=%s amount=%s by=%s", record.id, record.amount, record.requested_by)
    return record


def submit_withdrawal(db: Session, payload: WithdrawalRequestIn) -> WithdrawalRequest:
    """Queue a wallet withdrawal for approval.

    The amount is checked against the wallet here, at the input boundary;
    the debit itself only happens once the request is fully approved.
    """
    account = db.get(BalanceAccount, payload.account_id)
    if account is None:
        raise RecordNotFoundError("balance_account", payload.account_id)
    if account.kind != "wallet":
        raise WorkflowValidationError("Withdrawals can only be made from wallet accounts.")
    available = Decimal(account.current_outstanding)
    if account.status != "Active" or payload.amount > available:
        raise InsufficientBalanceError(payload.amount, available)

    record = WithdrawalRequest(
        account_id=account.id,
        amount=payload.amount,
        phone_number=payload.phone_number,
        channel=payload.channel,
        request_ref=f"WD-{uuid.uuid4().hex[:10].upper()}",
        requested_by=payload.requested_by.strip(),
        requested_at=datetime.now(timezone.utc),
        requires_three_approvals=False,
        status=RequestStatus.pending.value,
    )
    RequestStore(db, WithdrawalRequest).create(record)
    audit_svc.log(
        db=db,
        action="request.submitted",
        entity_type="withdrawal_request",
        entity_id=record.id,
        actor=record.requested_by,
        after={"account_id": str(account.id), "amount": str(record.amount), "ref": record.request_ref},
    )
    db.commit()
    logger.info("Withdrawal requested: ref=%s amount=%s by=%s", record.request_ref, record.amount, record.requested_by)
    return record


# ─── Decisions ───

def record_approval(
    db: Session,
    kind: str,
    request_id: uuid.UUID,
    stage: str,
    approved: bool,
    actor: str,
    rejection_reason: str | None = None,
    documents: DocumentStore | None = None,
) -> ApprovalOutcome:
    """Apply one reviewer's approve / reject decision at ``stage``.

    Args:
        db: Sync SQLAlchemy session.
        kind: "approval", "money" or "withdrawal".
        request_id: PK of the request.
        stage: finance, admin, admin1 or admin2 — must be in the request's flow.
        approved: True to approve, False to reject.
        actor: Identity of the reviewer.
        rejection_reason: Stored on rejection.
        documents: Document store for the auxiliary writes (optional).

    Returns:
        ApprovalOutcome with the persisted request and the applied decision.

    Raises:
        ApprovalOrderError: a preceding stage has not approved yet.
        TerminalStateError: the request is already Approved or Rejected.
        StageAlreadyApprovedError: the stage has already approved.
        SelfApprovalError: the workflow forbids approving your own request.
        ConcurrentModificationError: lost the race on every retry.
    """
    model = model_for(kind)
    store = RequestStore(db, model)

    def attempt():
        record = store.get_by_id(request_id)
        policy = get_policy(record.workflow_type)
        decision = evaluate_decision(record, policy, stage, approved, actor, rejection_reason)
        before = _stage_snapshot(record)
        store.update(request_id, decision.changes, expected_version=record.version_id)
        audit_svc.log(
            db=db,
            action="request.rejected" if decision.rejected else "request.stage_approved",
            entity_type=f"{kind}_request",
            entity_id=record.id,
            actor=actor,
            before=before,
            after=_stage_snapshot(record),
            notes=f"stage={stage}" + (f" reason={rejection_reason}" if rejection_reason else ""),
        )
        db.commit()
        return record, decision

    record, decision = run_with_retry(db, attempt, entity=model.__tablename__)
    logger.info(
        "Approval decision: %s %s stage=%s approved=%s actor=%s -> %s",
        kind, request_id, stage, approved, actor, record.status,
    )
    notifications.notify_decision(record, kind, stage, approved, actor)

    if decision.fully_approved:
        dispatch_effects(db, kind, record.id, documents)
        record = store.get_by_id(request_id)
    elif decision.rejected and documents is not None:
        _route_rejection(db, documents, kind, record)

    return ApprovalOutcome(request=record, decision=decision)


def _route_rejection(db: Session, documents: DocumentStore, kind: str, record) -> None:
    """Send rejected payment-linked requests back to Finance for modification."""
    payment_id = (getattr(record, "details", None) or {}).get("payment_id")
    if not payment_id:
        return
    write_auxiliary(db, documents, "modification_requests", f"rejection-{kind}-{record.id}", {
        "original_payment_id": payment_id,
        "request_id": str(record.id),
        "target_department": "Finance",
        "reason": record.rejection_reason,
        "requested_by": record.rejected_by,
        "status": "pending",
    })


# ─── Resubmission ───

def resubmit_request(db: Session, request_id: uuid.UUID, actor: str) -> ApprovalRequest:
    """Create a fresh Pending copy of a rejected request.

    The rejected original stays untouched (rejection is terminal); the copy
    starts with no approvals and points back via ``resubmitted_from_id``.
    Only the original requester may resubmit. Repeating the call returns
    the copy created the first time.
    """
    original = RequestStore(db, ApprovalRequest).get_by_id(request_id)
    if original.status != RequestStatus.rejected.value:
        raise WorkflowValidationError(
            f"Only rejected requests can be resubmitted (current status: {original.status})."
        )
    if (actor or "").strip().lower() != original.requested_by.strip().lower():
        raise WorkflowValidationError("Only the original requester can resubmit a request.")

    existing = db.execute(
        select(ApprovalRequest).where(ApprovalRequest.resubmitted_from_id == original.id)
    ).scalars().first()
    if existing is not None:
        return existing

    copy = ApprovalRequest(
        type=original.type,
        title=original.title,
        description=original.description,
        department=original.department,
        amount=original.amount,
        requested_by=original.requested_by,
        requested_at=datetime.now(timezone.utc),
        priority=original.priority,
        details=dict(original.details or {}),
        requires_three_approvals=original.requires_three_approvals,
        status=RequestStatus.pending.value,
        resubmitted_from_id=original.id,
    )
    RequestStore(db, ApprovalRequest).create(copy)
    audit_svc.log(
        db=db,
        action="request.resubmitted",
        entity_type="approval_request",
        entity_id=copy.id,
        actor=actor,
        after={"resubmitted_from_id": str(original.id)},
    )
    db.commit()
    logger.info("Request %s resubmitted as %s", original.id, copy.id)
    return copy


# ─── Queries ───

def get_request(db: Session, kind: str, request_id: uuid.UUID):
    return RequestStore(db, model_for(kind)).get_by_id(request_id, fresh=False)


def list_requests(
    db: Session,
    kind: str,
    status: str | None = None,
    requested_by: str | None = None,
) -> list:
    filters = {}
    if status:
        filters["status"] = status
    if requested_by:
        filters["requested_by"] = requested_by
    model = model_for(kind)
    return RequestStore(db, model).list_by_filter(order_by=model.requested_at.desc(), **filters)


def list_pending_for_stage(db: Session, kind: str, stage: str) -> list:
    """Requests whose next required decision is ``stage``, oldest first."""
    try:
        stage = Stage(stage)
    except ValueError:
        raise WorkflowValidationError(f"Unknown stage '{stage}'.") from None
    model = model_for(kind)
    candidates = RequestStore(db, model).list_by_filter(
        model.status.notin_(list(TERMINAL_STATUSES)),
        order_by=model.requested_at,
    )
    return [r for r in candidates if pending_stage(r) == stage]

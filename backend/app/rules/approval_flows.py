"""Approval flows — ordered stage lists and per-workflow policy, as data.

Architecture principle: the stage order is configuration, not conditionals.
Adding a stage or a workflow variant means editing FLOWS / POLICIES below;
``evaluate_decision`` stays untouched.

Everything in this module is pure: it takes the current stage state of a
request plus the reviewer's input and returns the field changes to persist.
It never reads or writes the store.
"""
import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from app.core.exceptions import (
    ApprovalOrderError,
    SelfApprovalError,
    StageAlreadyApprovedError,
    TerminalStateError,
    WorkflowValidationError,
)


class Stage(str, enum.Enum):
    finance = "finance"
    admin = "admin"
    admin1 = "admin1"
    admin2 = "admin2"


class RequestStatus(str, enum.Enum):
    pending = "Pending"
    finance_approved = "FinanceApproved"
    admin1_approved = "Admin1Approved"
    approved = "Approved"
    rejected = "Rejected"


TERMINAL_STATUSES = frozenset({RequestStatus.approved.value, RequestStatus.rejected.value})

TWO_STAGE: tuple[Stage, ...] = (Stage.finance, Stage.admin)
THREE_STAGE: tuple[Stage, ...] = (Stage.finance, Stage.admin1, Stage.admin2)

# Status reported once a non-final stage has approved
INTERMEDIATE_STATUS = {
    Stage.finance: RequestStatus.finance_approved,
    Stage.admin1: RequestStatus.admin1_approved,
}


@dataclass(frozen=True)
class WorkflowPolicy:
    request_type: str
    allowed_flows: tuple[tuple[Stage, ...], ...] = (TWO_STAGE, THREE_STAGE)
    forbid_self_approval: bool = True
    effect: str | None = None  # key into services.effects.EFFECT_HANDLERS


POLICIES: dict[str, WorkflowPolicy] = {
    p.request_type: p
    for p in (
        WorkflowPolicy("SalaryRequest", effect="salary_request"),
        WorkflowPolicy("CashRequisition"),
        WorkflowPolicy("PersonalExpense"),
        WorkflowPolicy("SalaryAdvance", effect="issue_salary_advance"),
        WorkflowPolicy("SupplierAdvance", effect="issue_supplier_advance"),
        WorkflowPolicy("PriceApproval", allowed_flows=(TWO_STAGE,), effect="publish_price"),
        WorkflowPolicy("PaymentApproval"),
        WorkflowPolicy(
            "UserRegistration",
            allowed_flows=(TWO_STAGE,),
            forbid_self_approval=False,
            effect="create_employee",
        ),
        WorkflowPolicy("LeaveRequest", allowed_flows=(TWO_STAGE,), forbid_self_approval=False),
        # Non-typed request tables
        WorkflowPolicy("MoneyRequest", allowed_flows=(TWO_STAGE,)),
        WorkflowPolicy("WithdrawalRequest", allowed_flows=(TWO_STAGE,), effect="wallet_withdrawal"),
    )
}


def get_policy(request_type: str) -> WorkflowPolicy:
    try:
        return POLICIES[request_type]
    except KeyError:
        raise WorkflowValidationError(f"Unknown request type '{request_type}'.") from None


def flow_for(requires_three_approvals: bool) -> tuple[Stage, ...]:
    return THREE_STAGE if requires_three_approvals else TWO_STAGE


def select_flow(
    policy: WorkflowPolicy,
    amount,
    requires_three_approvals: bool | None,
    threshold,
) -> bool:
    """Decide ``requires_three_approvals`` at submission time.

    An explicit choice from the submitter wins if the policy allows it;
    otherwise amounts at or above ``threshold`` go through three stages
    where the policy permits.
    """
    three_allowed = THREE_STAGE in policy.allowed_flows
    if requires_three_approvals is None:
        return three_allowed and amount >= threshold
    if requires_three_approvals and not three_allowed:
        raise WorkflowValidationError(
            f"{policy.request_type} requests only support the two-stage flow."
        )
    if not requires_three_approvals and TWO_STAGE not in policy.allowed_flows:
        raise WorkflowValidationError(
            f"{policy.request_type} requests require three approvals."
        )
    return requires_three_approvals


# ─── Stage state helpers ───

def stage_fields(stage: Stage | str) -> tuple[str, str, str]:
    name = Stage(stage).value
    return f"{name}_approved", f"{name}_approved_at", f"{name}_approved_by"


def approved_at(record: Any, stage: Stage) -> datetime | None:
    return getattr(record, stage_fields(stage)[1])


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def missing_prior_stage(record: Any, flow: tuple[Stage, ...], stage: Stage) -> Stage | None:
    """Return the first preceding stage in ``flow`` that has not approved yet."""
    for prior in flow[: flow.index(stage)]:
        if approved_at(record, prior) is None:
            return prior
    return None


def derive_status(record: Any, flow: tuple[Stage, ...]) -> RequestStatus:
    """Compute the status implied by the approvals recorded on ``record``."""
    status = RequestStatus.pending
    for stage in flow:
        if approved_at(record, stage) is None:
            break
        status = INTERMEDIATE_STATUS.get(stage, RequestStatus.approved)
    return status


def pending_stage(record: Any) -> Stage | None:
    """The next stage waiting for a decision, or None for terminal requests."""
    if record.status in TERMINAL_STATUSES:
        return None
    flow = flow_for(record.requires_three_approvals)
    for stage in flow:
        if approved_at(record, stage) is None:
            return stage
    return None


# ─── Decision evaluation ───

@dataclass
class Decision:
    changes: dict[str, Any] = field(default_factory=dict)
    status: RequestStatus = RequestStatus.pending
    fully_approved: bool = False
    rejected: bool = False


def evaluate_decision(
    record: Any,
    policy: WorkflowPolicy,
    stage: Stage | str,
    approved: bool,
    actor: str,
    rejection_reason: str | None = None,
    now: datetime | None = None,
) -> Decision:
    """Validate a reviewer decision against ``record`` and compute its effect.

    Raises a WorkflowError subclass (and changes nothing) when the decision
    is not allowed. ``record`` is only read, never mutated.
    """
    if not actor or not actor.strip():
        raise WorkflowValidationError("An approving actor is required.")
    try:
        stage = Stage(stage)
    except ValueError:
        raise WorkflowValidationError(
            f"Unknown stage '{stage}'. Must be one of: {', '.join(s.value for s in Stage)}."
        ) from None

    if record.status in TERMINAL_STATUSES:
        raise TerminalStateError(record.id, record.status)

    flow = flow_for(record.requires_three_approvals)
    if stage not in flow:
        raise WorkflowValidationError(
            f"Stage '{stage.value}' is not part of this request's "
            f"{'three' if record.requires_three_approvals else 'two'}-stage flow."
        )

    now = now or datetime.now(timezone.utc)
    flag_col, at_col, by_col = stage_fields(stage)

    if not approved:
        return Decision(
            changes={
                "status": RequestStatus.rejected.value,
                flag_col: False,
                at_col: None,
                by_col: None,
                "rejection_reason": rejection_reason,
                "rejected_at": now,
                "rejected_by": actor,
                "rejected_stage": stage.value,
            },
            status=RequestStatus.rejected,
            rejected=True,
        )

    missing = missing_prior_stage(record, flow, stage)
    if missing is not None:
        raise ApprovalOrderError(stage.value, missing.value)

    if approved_at(record, stage) is not None:
        raise StageAlreadyApprovedError(stage.value, getattr(record, by_col))

    if policy.forbid_self_approval and actor.strip().lower() == (record.requested_by or "").strip().lower():
        raise SelfApprovalError(actor)

    # Approval timestamps must strictly increase along the flow
    position = flow.index(stage)
    if position > 0:
        previous = _as_utc(approved_at(record, flow[position - 1]))
        if now <= previous:
            now = previous + timedelta(microseconds=1)

    changes = {flag_col: True, at_col: now, by_col: actor}
    fully_approved = position == len(flow) - 1
    status = RequestStatus.approved if fully_approved else INTERMEDIATE_STATUS[stage]
    changes["status"] = status.value
    return Decision(changes=changes, status=status, fully_approved=fully_approved)

"""Unit tests for the approval flow rules.

Pure functions only: records are plain namespaces, nothing touches a store.
"""
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from app.core.exceptions import (
    ApprovalOrderError,
    SelfApprovalError,
    StageAlreadyApprovedError,
    TerminalStateError,
    WorkflowValidationError,
)
from app.rules.approval_flows import (
    THREE_STAGE,
    TWO_STAGE,
    RequestStatus,
    Stage,
    derive_status,
    evaluate_decision,
    get_policy,
    pending_stage,
    select_flow,
)


# ─── Helpers ──────────────────────────────────────────────────────────────────

def _record(three: bool = False, status: str = "Pending", requested_by: str = "carol", **stages):
    rec = SimpleNamespace(
        id=uuid.uuid4(),
        status=status,
        requires_three_approvals=three,
        requested_by=requested_by,
    )
    for stage in Stage:
        setattr(rec, f"{stage.value}_approved", None)
        setattr(rec, f"{stage.value}_approved_at", None)
        setattr(rec, f"{stage.value}_approved_by", None)
    for name, value in stages.items():
        setattr(rec, name, value)
    return rec


def _apply(rec, decision):
    for name, value in decision.changes.items():
        setattr(rec, name, value)
    return rec


CASH = get_policy("CashRequisition")
LEAVE = get_policy("LeaveRequest")


# ─── Ordering ─────────────────────────────────────────────────────────────────

def test_admin_before_finance_is_refused_with_missing_stage():
    rec = _record()
    with pytest.raises(ApprovalOrderError) as exc_info:
        evaluate_decision(rec, CASH, "admin", True, "alice")
    assert exc_info.value.missing_stage == "finance"
    assert exc_info.value.to_dict()["missing_stage"] == "finance"


def test_two_stage_flow_reaches_approved():
    rec = _record()
    first = evaluate_decision(rec, CASH, "finance", True, "bob")
    assert first.status == RequestStatus.finance_approved
    assert not first.fully_approved
    _apply(rec, first)

    second = evaluate_decision(rec, CASH, "admin", True, "alice")
    assert second.status == RequestStatus.approved
    assert second.fully_approved
    assert second.changes["admin_approved_by"] == "alice"


def test_three_stage_requires_admin1_before_admin2():
    rec = _record(three=True)
    _apply(rec, evaluate_decision(rec, CASH, "finance", True, "bob"))
    with pytest.raises(ApprovalOrderError) as exc_info:
        evaluate_decision(rec, CASH, "admin2", True, "dave")
    assert exc_info.value.missing_stage == "admin1"


def test_three_stage_timestamps_strictly_increase():
    """Even with an identical clock reading, later stages are stamped later."""
    now = datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)
    rec = _record(three=True)
    _apply(rec, evaluate_decision(rec, CASH, "finance", True, "bob", now=now))
    _apply(rec, evaluate_decision(rec, CASH, "admin1", True, "alice", now=now))
    final = evaluate_decision(rec, CASH, "admin2", True, "dave", now=now)
    _apply(rec, final)

    assert final.status == RequestStatus.approved
    assert rec.finance_approved_at < rec.admin1_approved_at < rec.admin2_approved_at


def test_naive_prior_timestamp_is_treated_as_utc():
    earlier = datetime(2025, 1, 1, 9, 0)  # as returned by SQLite
    rec = _record(finance_approved=True, finance_approved_at=earlier, finance_approved_by="bob",
                  status="FinanceApproved")
    decision = evaluate_decision(rec, CASH, "admin", True, "alice",
                                 now=datetime(2025, 1, 1, 8, 0, tzinfo=timezone.utc))
    assert decision.changes["admin_approved_at"] > earlier.replace(tzinfo=timezone.utc)


def test_stage_outside_flow_is_a_validation_error():
    with pytest.raises(WorkflowValidationError):
        evaluate_decision(_record(three=False), CASH, "admin1", True, "alice")
    with pytest.raises(WorkflowValidationError):
        evaluate_decision(_record(three=True), CASH, "admin", True, "alice")


def test_unknown_stage_and_blank_actor_are_validation_errors():
    with pytest.raises(WorkflowValidationError):
        evaluate_decision(_record(), CASH, "ceo", True, "alice")
    with pytest.raises(WorkflowValidationError):
        evaluate_decision(_record(), CASH, "finance", True, "  ")


def test_already_approved_stage_is_refused():
    rec = _record()
    _apply(rec, evaluate_decision(rec, CASH, "finance", True, "bob"))
    with pytest.raises(StageAlreadyApprovedError):
        evaluate_decision(rec, CASH, "finance", True, "erin")


# ─── Terminal states and rejection ────────────────────────────────────────────

@pytest.mark.parametrize("status", ["Approved", "Rejected"])
def test_terminal_requests_refuse_every_decision(status):
    rec = _record(status=status)
    with pytest.raises(TerminalStateError):
        evaluate_decision(rec, CASH, "finance", True, "bob")
    with pytest.raises(TerminalStateError):
        evaluate_decision(rec, CASH, "finance", False, "bob")


def test_rejection_keeps_earlier_approvals():
    rec = _record(three=True)
    _apply(rec, evaluate_decision(rec, CASH, "finance", True, "bob"))
    decision = evaluate_decision(rec, CASH, "admin1", False, "alice", rejection_reason="Over budget")
    _apply(rec, decision)

    assert decision.rejected
    assert rec.status == "Rejected"
    assert rec.rejection_reason == "Over budget"
    assert rec.rejected_stage == "admin1"
    assert rec.admin1_approved is False
    assert rec.finance_approved is True
    assert rec.finance_approved_by == "bob"


def test_rejection_does_not_require_prior_stages():
    decision = evaluate_decision(_record(), CASH, "admin", False, "alice")
    assert decision.status == RequestStatus.rejected


# ─── Self-approval policy ─────────────────────────────────────────────────────

def test_self_approval_refused_case_insensitively():
    rec = _record(requested_by="Carol@Factory.example")
    with pytest.raises(SelfApprovalError):
        evaluate_decision(rec, CASH, "finance", True, "carol@factory.example")


def test_self_approval_allowed_where_policy_permits():
    rec = _record(requested_by="carol")
    decision = evaluate_decision(rec, LEAVE, "finance", True, "carol")
    assert decision.status == RequestStatus.finance_approved


def test_self_rejection_is_allowed():
    rec = _record(requested_by="carol")
    assert evaluate_decision(rec, CASH, "finance", False, "carol").rejected


# ─── Flow selection and derived state ─────────────────────────────────────────

def test_select_flow_uses_threshold_when_submitter_does_not_choose():
    threshold = Decimal("5000000")
    assert select_flow(CASH, Decimal("4999999.99"), None, threshold) is False
    assert select_flow(CASH, Decimal("5000000"), None, threshold) is True


def test_select_flow_honours_explicit_choice_within_policy():
    threshold = Decimal("5000000")
    assert select_flow(CASH, Decimal("10"), True, threshold) is True
    assert select_flow(CASH, Decimal("9000000"), False, threshold) is False
    with pytest.raises(WorkflowValidationError):
        select_flow(get_policy("PriceApproval"), Decimal("10"), True, threshold)


def test_two_stage_only_policy_never_picks_three_stages():
    assert select_flow(LEAVE, Decimal("9000000"), None, Decimal("5000000")) is False


def test_unknown_request_type():
    with pytest.raises(WorkflowValidationError):
        get_policy("Bonus")


def test_pending_stage_walks_the_flow():
    rec = _record(three=True)
    assert pending_stage(rec) == Stage.finance
    _apply(rec, evaluate_decision(rec, CASH, "finance", True, "bob"))
    assert pending_stage(rec) == Stage.admin1
    assert pending_stage(_record(status="Rejected")) is None


def test_derive_status_matches_recorded_approvals():
    at = datetime(2025, 1, 1, tzinfo=timezone.utc)
    rec = _record(three=True, finance_approved_at=at, admin1_approved_at=at + timedelta(seconds=1))
    assert derive_status(rec, THREE_STAGE) == RequestStatus.admin1_approved
    assert derive_status(_record(), TWO_STAGE) == RequestStatus.pending

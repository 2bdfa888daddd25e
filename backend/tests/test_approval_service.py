"""Service tests for the approval lifecycle against a real SQLite session.

Covers the ordered stage decisions, terminal states, resubmission, review
queues and the effects that fire once a request is fully approved.
"""
import json
import uuid
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
from pydantic import ValidationError
from sqlalchemy import select

from app.core.exceptions import (
    ApprovalOrderError,
    InsufficientBalanceError,
    SelfApprovalError,
    TerminalStateError,
    WorkflowValidationError,
)
from app.models.audit import AuditLog, DocumentOutbox
from app.models.employee import Employee
from app.models.ledger import BalanceAccount
from app.schemas.requests import MoneyRequestIn, SubmitRequestIn, WithdrawalRequestIn
from app.services import approval as approval_svc
from app.services import effects as effects_svc
from app.services import ledger as ledger_svc


# ─── Helpers ──────────────────────────────────────────────────────────────────

CASH_PAYLOAD = {
    "title": "Generator fuel",
    "requested_by": "carol",
    "details": {"type": "CashRequisition", "purpose": "Diesel"},
}


def _submit(db, amount="500000", requested_by="carol", three=None, details=None, title="Generator fuel"):
    payload = SubmitRequestIn.model_validate({
        "title": title,
        "amount": amount,
        "requested_by": requested_by,
        "requires_three_approvals": three,
        "details": details or {"type": "CashRequisition", "purpose": "Diesel"},
    })
    return approval_svc.submit_request(db, payload)


def _decide(db, request_id, stage, approved, actor, kind="approval", documents=None, reason=None):
    return approval_svc.record_approval(
        db, kind, request_id, stage, approved, actor, rejection_reason=reason, documents=documents
    )


# ─── Ordered approvals ────────────────────────────────────────────────────────

def test_admin_before_finance_then_in_order(db):
    """Admin first is refused; finance then admin approves the request."""
    request = _submit(db)
    assert request.status == "Pending"
    assert request.requires_three_approvals is False

    with pytest.raises(ApprovalOrderError) as exc_info:
        _decide(db, request.id, "admin", True, "alice")
    assert exc_info.value.missing_stage == "finance"
    assert approval_svc.get_request(db, "approval", request.id).status == "Pending"

    outcome = _decide(db, request.id, "finance", True, "bob")
    assert outcome.status == "FinanceApproved"

    outcome = _decide(db, request.id, "admin", True, "alice")
    assert outcome.status == "Approved"
    assert outcome.decision.fully_approved
    assert outcome.request.finance_approved_by == "bob"
    assert outcome.request.admin_approved_by == "alice"
    assert outcome.request.effect_applied_at is not None


def test_refused_decision_leaves_record_unchanged(db):
    request = _submit(db)
    version = request.version_id
    with pytest.raises(ApprovalOrderError):
        _decide(db, request.id, "admin", True, "alice")
    fresh = approval_svc.get_request(db, "approval", request.id)
    assert fresh.version_id == version
    assert fresh.admin_approved_at is None


def test_three_stage_rejected_at_admin1_is_terminal(db):
    request = _submit(db, three=True)
    _decide(db, request.id, "finance", True, "bob")
    outcome = _decide(db, request.id, "admin1", False, "alice", reason="Not budgeted")

    assert outcome.status == "Rejected"
    assert outcome.request.rejection_reason == "Not budgeted"
    assert outcome.request.rejected_by == "alice"
    assert outcome.request.finance_approved is True

    with pytest.raises(TerminalStateError):
        _decide(db, request.id, "admin2", True, "dave")
    assert approval_svc.get_request(db, "approval", request.id).status == "Rejected"


def test_three_stage_approval_order_of_timestamps(db):
    request = _submit(db, amount="7500000")
    assert request.requires_three_approvals is True  # over the threshold

    _decide(db, request.id, "finance", True, "bob")
    _decide(db, request.id, "admin1", True, "alice")
    outcome = _decide(db, request.id, "admin2", True, "dave")

    rec = outcome.request
    assert rec.status == "Approved"
    assert rec.finance_approved_at < rec.admin1_approved_at < rec.admin2_approved_at


def test_approved_request_is_terminal(db):
    request = _submit(db)
    _decide(db, request.id, "finance", True, "bob")
    _decide(db, request.id, "admin", True, "alice")
    with pytest.raises(TerminalStateError):
        _decide(db, request.id, "admin", False, "alice")


def test_self_approval_is_refused(db):
    request = _submit(db, requested_by="bob")
    with pytest.raises(SelfApprovalError):
        _decide(db, request.id, "finance", True, "Bob")


def test_every_decision_is_audited(db):
    request = _submit(db)
    _decide(db, request.id, "finance", True, "bob")
    actions = db.execute(
        select(AuditLog.action).where(AuditLog.entity_id == request.id).order_by(AuditLog.created_at)
    ).scalars().all()
    assert actions == ["request.submitted", "request.stage_approved"]


# ─── Money and withdrawal requests ────────────────────────────────────────────

def test_money_request_two_stage(db):
    record = approval_svc.submit_money_request(db, MoneyRequestIn(
        request_type="transport", reason="Site visit", amount=Decimal("20000"), requested_by="carol",
    ))
    _decide(db, record.id, "finance", True, "bob", kind="money")
    outcome = _decide(db, record.id, "admin", True, "alice", kind="money")
    assert outcome.status == "Approved"
    assert outcome.request.effect_applied_at is not None


def test_withdrawal_debits_wallet_once_approved(db, documents):
    wallet = ledger_svc.issue_account(db, "wallet", "Peter Clerk", Decimal("150000"), "seed",
                                      owner_ref="peter@factory.example")
    record = approval_svc.submit_withdrawal(db, WithdrawalRequestIn(
        account_id=wallet.id, amount=Decimal("50000"), requested_by="peter@factory.example",
        phone_number="+256700000000",
    ))
    assert record.request_ref.startswith("WD-")

    _decide(db, record.id, "finance", True, "bob", kind="withdrawal", documents=documents)
    outcome = _decide(db, record.id, "admin", True, "alice", kind="withdrawal", documents=documents)

    assert outcome.request.effect_applied_at is not None
    account = ledger_svc.get_account(db, wallet.id)
    assert account.current_outstanding == Decimal("100000")
    assert documents.query("daily_tasks", task_type="Payment")


def test_withdrawal_over_wallet_balance_is_refused_at_submission(db):
    wallet = ledger_svc.issue_account(db, "wallet", "Peter Clerk", Decimal("1000"), "seed")
    with pytest.raises(InsufficientBalanceError) as exc_info:
        approval_svc.submit_withdrawal(db, WithdrawalRequestIn(
            account_id=wallet.id, amount=Decimal("5000"), requested_by="peter",
        ))
    assert exc_info.value.available == Decimal("1000")


def test_amounts_beyond_two_decimals_are_refused_not_rounded():
    with pytest.raises(ValidationError):
        SubmitRequestIn.model_validate({**CASH_PAYLOAD, "amount": "10.005"})
    with pytest.raises(ValidationError):
        MoneyRequestIn(request_type="transport", reason="Site visit", amount="10.005", requested_by="carol")
    with pytest.raises(ValidationError):
        WithdrawalRequestIn(account_id=uuid.uuid4(), amount="0.001", requested_by="peter")
    assert SubmitRequestIn.model_validate({**CASH_PAYLOAD, "amount": "10.50"}).amount == Decimal("10.50")


# ─── Effects ──────────────────────────────────────────────────────────────────

def test_salary_advance_issues_an_account_once(db):
    request = _submit(db, amount="300000", details={
        "type": "SalaryAdvance", "employee_email": "Peter@Factory.example",
        "employee_name": "Peter Clerk", "reason": "School fees",
    })
    _decide(db, request.id, "finance", True, "bob")
    _decide(db, request.id, "admin", True, "alice")

    # Replaying the effect must not issue a second account
    assert effects_svc.apply_request_effects(db, "approval", request.id) is True

    accounts = db.execute(
        select(BalanceAccount).where(BalanceAccount.source_request_id == request.id)
    ).scalars().all()
    assert len(accounts) == 1
    assert accounts[0].kind == "salary_advance"
    assert accounts[0].owner_ref == "peter@factory.example"
    assert accounts[0].current_outstanding == Decimal("300000")


def test_salary_request_deducts_outstanding_advance(db):
    advance = ledger_svc.issue_account(db, "salary_advance", "Peter Clerk", Decimal("200000"), "seed",
                                       owner_ref="peter@factory.example")
    request = _submit(db, amount="900000", details={
        "type": "SalaryRequest", "employee_email": "peter@factory.example",
        "employee_name": "Peter Clerk", "period": "2025-03", "advance_deduction": "50000",
    })
    _decide(db, request.id, "finance", True, "bob")
    _decide(db, request.id, "admin", True, "alice")

    assert ledger_svc.get_account(db, advance.id).current_outstanding == Decimal("150000")


def test_refused_effect_is_recorded_not_retried(db):
    """A salary deduction with no open advance is recorded as an effect error."""
    request = _submit(db, amount="900000", details={
        "type": "SalaryRequest", "employee_email": "nobody@factory.example",
        "employee_name": "Nobody", "period": "2025-03", "advance_deduction": "50000",
    })
    _decide(db, request.id, "finance", True, "bob")
    outcome = _decide(db, request.id, "admin", True, "alice")

    assert outcome.status == "Approved"
    assert outcome.request.effect_applied_at is None
    assert "exceeds outstanding balance" in outcome.request.effect_error
    assert effects_svc.sweep_unapplied_effects(db) == {"applied": 0, "refused": 0, "failed": 0}


def test_user_registration_creates_and_syncs_employee(db, documents):
    request = _submit(db, amount="0", requested_by="hr@factory.example", details={
        "type": "UserRegistration", "name": "New Hire", "email": "New.Hire@factory.example",
        "role": "User", "permissions": ["store:read"],
    })
    _decide(db, request.id, "finance", True, "hr@factory.example", documents=documents)
    _decide(db, request.id, "admin", True, "alice", documents=documents)

    employee = db.execute(
        select(Employee).where(Employee.email == "new.hire@factory.example")
    ).scalars().one()
    assert employee.permissions == ["store:read"]
    assert documents.get("employees", "new.hire@factory.example")["role"] == "User"


def test_sweep_applies_effects_missed_by_dispatch(db):
    request = _submit(db, amount="300000", details={
        "type": "SupplierAdvance", "supplier_name": "Kasese Growers", "supplier_code": "SUP-001",
    })
    _decide(db, request.id, "finance", True, "bob")
    with patch.object(effects_svc, "apply_request_effects", side_effect=RuntimeError("boom")):
        outcome = _decide(db, request.id, "admin", True, "alice")
    assert outcome.status == "Approved"
    assert outcome.request.effect_applied_at is None

    stats = effects_svc.sweep_unapplied_effects(db)
    assert stats["applied"] == 1
    assert approval_svc.get_request(db, "approval", request.id).effect_applied_at is not None
    assert ledger_svc.list_accounts(db, kind="supplier_advance", owner_ref="SUP-001")


# ─── Rejection routing and resubmission ───────────────────────────────────────

def test_rejected_payment_request_is_routed_to_finance(db, documents):
    request = _submit(db, details={
        "type": "PersonalExpense", "category": "Travel", "payment_id": "PAY-42",
    })
    _decide(db, request.id, "finance", False, "bob", documents=documents, reason="No receipt")
    doc = documents.get("modification_requests", f"rejection-approval-{request.id}")
    assert doc["original_payment_id"] == "PAY-42"
    assert doc["target_department"] == "Finance"


def test_failed_document_write_is_queued_not_raised(db):
    broken = MagicMock()
    broken.upsert.side_effect = ConnectionError("document store down")
    request = _submit(db, details={
        "type": "PersonalExpense", "category": "Travel", "payment_id": "PAY-43",
    })
    outcome = _decide(db, request.id, "finance", False, "bob", documents=broken)

    assert outcome.status == "Rejected"
    queued = db.execute(select(DocumentOutbox)).scalars().one()
    assert queued.collection == "modification_requests"
    assert json.loads(queued.payload)["original_payment_id"] == "PAY-43"


def test_resubmit_creates_fresh_pending_copy(db):
    request = _submit(db)
    _decide(db, request.id, "finance", True, "bob")
    _decide(db, request.id, "admin", False, "alice", reason="Wrong amount")

    copy = approval_svc.resubmit_request(db, request.id, "carol")
    assert copy.id != request.id
    assert copy.status == "Pending"
    assert copy.resubmitted_from_id == request.id
    assert copy.finance_approved_at is None

    # Idempotent, and the original stays rejected
    assert approval_svc.resubmit_request(db, request.id, "carol").id == copy.id
    assert approval_svc.get_request(db, "approval", request.id).status == "Rejected"


def test_resubmit_only_by_requester_and_only_when_rejected(db):
    request = _submit(db)
    with pytest.raises(WorkflowValidationError):
        approval_svc.resubmit_request(db, request.id, "carol")
    _decide(db, request.id, "finance", False, "bob")
    with pytest.raises(WorkflowValidationError):
        approval_svc.resubmit_request(db, request.id, "mallory")


# ─── Queues ───────────────────────────────────────────────────────────────────

def test_pending_queue_per_stage(db):
    waiting_finance = _submit(db, title="A")
    waiting_admin = _submit(db, title="B")
    _decide(db, waiting_admin.id, "finance", True, "bob")
    waiting_admin1 = _submit(db, title="C", three=True)

    finance_queue = approval_svc.list_pending_for_stage(db, "approval", "finance")
    admin_queue = approval_svc.list_pending_for_stage(db, "approval", "admin")

    assert {r.id for r in finance_queue} == {waiting_finance.id, waiting_admin1.id}
    assert [r.id for r in admin_queue] == [waiting_admin.id]


def test_list_requests_filters_by_status(db):
    _submit(db, title="A")
    rejected = _submit(db, title="B")
    _decide(db, rejected.id, "finance", False, "bob")
    rows = approval_svc.list_requests(db, "approval", status="Rejected")
    assert [r.id for r in rows] == [rejected.id]


def test_unknown_kind_is_a_validation_error(db):
    with pytest.raises(WorkflowValidationError):
        approval_svc.list_requests(db, "bonus")

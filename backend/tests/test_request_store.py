"""Tests for the request store adapter and the bounded retry loop.

The race tests use a file-backed SQLite database so two sessions hold
independent connections, like two API workers.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.exceptions import (
    ConcurrentModificationError,
    RecordNotFoundError,
    StageAlreadyApprovedError,
    StoreUnavailableError,
    TerminalStateError,
)
from app.models.approval_request import MoneyRequest
from app.services import approval as approval_svc
from app.services.request_store import RequestStore, run_with_retry


# ─── Helpers ──────────────────────────────────────────────────────────────────

def _money_request(db, requested_by="carol", amount="20000"):
    record = MoneyRequest(
        request_type="airtime",
        reason="Field calls",
        amount=Decimal(amount),
        requested_by=requested_by,
        requested_at=datetime.now(timezone.utc),
        requires_three_approvals=False,
        status="Pending",
    )
    RequestStore(db, MoneyRequest).create(record)
    db.commit()
    return record


# ─── run_with_retry ───────────────────────────────────────────────────────────

def test_retry_succeeds_after_a_lost_race():
    db = MagicMock()
    operation = MagicMock(side_effect=[StaleDataError("moved"), "done"])
    assert run_with_retry(db, operation, attempts=3, backoff=0) == "done"
    assert operation.call_count == 2
    db.rollback.assert_called_once()


def test_retry_exhaustion_reports_concurrent_modification():
    db = MagicMock()
    operation = MagicMock(side_effect=StaleDataError("moved"))
    with pytest.raises(ConcurrentModificationError):
        run_with_retry(db, operation, entity="money_requests", attempts=3, backoff=0)
    assert operation.call_count == 3


def test_transient_store_errors_are_retried_then_surface():
    db = MagicMock()
    error = OperationalError("SELECT 1", {}, Exception("connection reset"))
    operation = MagicMock(side_effect=[error, error])
    with pytest.raises(StoreUnavailableError):
        run_with_retry(db, operation, attempts=2, backoff=0)
    assert operation.call_count == 2


def test_business_errors_are_not_retried():
    db = MagicMock()
    operation = MagicMock(side_effect=TerminalStateError("abc", "Approved"))
    with pytest.raises(TerminalStateError):
        run_with_retry(db, operation, attempts=3, backoff=0)
    assert operation.call_count == 1
    db.rollback.assert_called_once()


# ─── Adapter ──────────────────────────────────────────────────────────────────

def test_get_by_id_missing_record(db):
    with pytest.raises(RecordNotFoundError):
        RequestStore(db, MoneyRequest).get_by_id(uuid.uuid4())


def test_update_bumps_version(db):
    record = _money_request(db)
    assert record.version_id == 1
    store = RequestStore(db, MoneyRequest)
    store.update(record.id, {"status": "FinanceApproved"}, expected_version=1)
    db.commit()
    assert store.get_by_id(record.id).version_id == 2


def test_update_with_outdated_version_is_refused(db):
    record = _money_request(db)
    store = RequestStore(db, MoneyRequest)
    store.update(record.id, {"reason": "changed"})
    db.commit()
    with pytest.raises(ConcurrentModificationError):
        store.update(record.id, {"status": "Approved"}, expected_version=1)


def test_list_by_filter(db):
    _money_request(db, requested_by="carol")
    _money_request(db, requested_by="dave")
    rows = RequestStore(db, MoneyRequest).list_by_filter(requested_by="dave")
    assert [r.requested_by for r in rows] == ["dave"]


# ─── Two writers ──────────────────────────────────────────────────────────────

def test_stale_write_from_second_session_is_detected(file_engine):
    """Both sessions read version 1; the slower writer must not overwrite."""
    with Session(file_engine, expire_on_commit=False) as setup:
        record = _money_request(setup)

    with Session(file_engine) as first, Session(file_engine) as second:
        mine = first.get(MoneyRequest, record.id)
        theirs = second.get(MoneyRequest, record.id)

        theirs.finance_approved = True
        theirs.finance_approved_by = "bob"
        second.commit()

        mine.finance_approved = True
        mine.finance_approved_by = "erin"
        with pytest.raises(StaleDataError):
            first.commit()

    with Session(file_engine) as check:
        stored = check.get(MoneyRequest, record.id)
        assert stored.finance_approved_by == "bob"
        assert stored.version_id == 2


def test_racing_approval_retries_against_fresh_state(file_engine):
    """A decision that loses the race is re-evaluated and sees the winner's write."""
    with Session(file_engine, expire_on_commit=False) as setup:
        record = _money_request(setup)

    with Session(file_engine, expire_on_commit=False) as loser, Session(file_engine) as winner:

        class RacingStore(RequestStore):
            raced = False

            def update(self, record_id, partial, expected_version=None):
                # Another reviewer commits between our read and our write
                if not RacingStore.raced:
                    RacingStore.raced = True
                    competitor = winner.get(MoneyRequest, record_id)
                    competitor.finance_approved = True
                    competitor.finance_approved_at = datetime.now(timezone.utc)
                    competitor.finance_approved_by = "bob"
                    competitor.status = "FinanceApproved"
                    winner.commit()
                return super().update(record_id, partial, expected_version)

        with patch.object(approval_svc, "RequestStore", RacingStore):
            with pytest.raises(StageAlreadyApprovedError):
                approval_svc.record_approval(loser, "money", record.id, "finance", True, "erin")

    with Session(file_engine) as check:
        stored = check.get(MoneyRequest, record.id)
        assert stored.finance_approved_by == "bob"
        assert stored.status == "FinanceApproved"

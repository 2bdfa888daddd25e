"""Tests for Celery task wiring: effect dispatch, sweeps and ledger checks.

Tasks are called directly (no broker); the production session factory and
document store are patched to the SQLite fixtures.
"""
from decimal import Decimal
from unittest.mock import patch

import pytest

from app.core.config import settings
from app.schemas.requests import SubmitRequestIn
from app.services import approval as approval_svc
from app.services import effects as effects_svc
from app.services import ledger as ledger_svc
from app.services.document_store import write_auxiliary
from app.workers import effect_tasks, sync_tasks
from app.workers.celery_app import celery_app


@pytest.fixture
def worker_stores(session_factory, documents):
    with patch("app.db.session.get_sessionmaker", return_value=session_factory), \
         patch("app.services.document_store.get_document_store", return_value=documents):
        yield


def _approved_supplier_advance(db):
    request = approval_svc.submit_request(db, SubmitRequestIn.model_validate({
        "title": "Advance for Masaka Traders",
        "amount": "400000",
        "requested_by": "carol",
        "details": {"type": "SupplierAdvance", "supplier_name": "Masaka Traders", "supplier_code": "SUP-7"},
    }))
    approval_svc.record_approval(db, "approval", request.id, "finance", True, "bob")
    approval_svc.record_approval(db, "approval", request.id, "admin", True, "alice")
    return request


def test_beat_schedule_covers_sweeps():
    tasks = {entry["task"] for entry in celery_app.conf.beat_schedule.values()}
    assert tasks == {
        "app.workers.effect_tasks.sweep_unapplied_effects",
        "app.workers.sync_tasks.flush_document_outbox",
        "app.workers.effect_tasks.verify_open_ledgers",
    }


def test_celery_mode_enqueues_instead_of_running_inline(db, monkeypatch):
    monkeypatch.setattr(settings, "EFFECTS_DISPATCH_MODE", "celery")
    with patch.object(effect_tasks.apply_request_effects_task, "delay") as delay:
        request = _approved_supplier_advance(db)

    delay.assert_called_once_with("approval", str(request.id))
    assert approval_svc.get_request(db, "approval", request.id).effect_applied_at is None


def test_effect_task_applies_effect(db, worker_stores, monkeypatch):
    monkeypatch.setattr(settings, "EFFECTS_DISPATCH_MODE", "celery")
    with patch.object(effect_tasks.apply_request_effects_task, "delay"):
        request = _approved_supplier_advance(db)

    result = effect_tasks.apply_request_effects_task.apply(args=("approval", str(request.id))).get()
    assert result["applied"] is True
    assert ledger_svc.list_accounts(db, kind="supplier_advance", owner_ref="SUP-7")


def test_sweep_task(db, worker_stores, monkeypatch):
    monkeypatch.setattr(settings, "EFFECTS_DISPATCH_MODE", "celery")
    with patch.object(effect_tasks.apply_request_effects_task, "delay"):
        _approved_supplier_advance(db)

    assert effect_tasks.sweep_unapplied_effects() == {"applied": 1, "refused": 0, "failed": 0}
    assert effects_svc.sweep_unapplied_effects(db) == {"applied": 0, "refused": 0, "failed": 0}


def test_verify_open_ledgers_task(db, worker_stores):
    account = ledger_svc.issue_account(db, "wallet", "Peter", Decimal("5000"), "alice")
    ledger_svc.apply_payment(db, account.id, Decimal("1000"), "Cash", "bob")
    assert effect_tasks.verify_open_ledgers() == {"checked": 1, "inconsistent": 0}


def test_flush_document_outbox_task(db, worker_stores, documents):
    class Down:
        def upsert(self, *args, **kwargs):
            raise ConnectionError("down")

    write_auxiliary(db, Down(), "daily_tasks", "t-1", {"amount": "1"})
    assert sync_tasks.flush_document_outbox() == {"delivered": 1, "failed": 0}
    assert documents.get("daily_tasks", "t-1") == {"amount": "1"}

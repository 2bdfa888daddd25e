"""Celery tasks for approved-request effects and ledger checks."""
import logging
import uuid

from app.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="app.workers.effect_tasks.apply_request_effects", max_retries=3)
def apply_request_effects_task(self, kind: str, request_id: str) -> dict:
    """Run the effect for one approved request (idempotent; safe to redeliver)."""
    from app.db.session import get_sessionmaker
    from app.services.document_store import get_document_store
    from app.services.effects import apply_request_effects

    logger.info("apply_request_effects started: %s %s", kind, request_id)
    with get_sessionmaker()() as db:
        try:
            applied = apply_request_effects(db, kind, uuid.UUID(request_id), get_document_store())
        except Exception as exc:
            db.rollback()
            logger.warning("apply_request_effects failed for %s %s: %s", kind, request_id, exc)
            raise self.retry(exc=exc, countdown=30)
    return {"kind": kind, "request_id": request_id, "applied": applied}


@celery_app.task(name="app.workers.effect_tasks.sweep_unapplied_effects")
def sweep_unapplied_effects() -> dict:
    """Re-run effects for approved requests that never got their stamp.

    Runs every 5 minutes; covers crashes between the approval commit and
    the effect, and lost Celery messages.
    """
    from app.db.session import get_sessionmaker
    from app.services.document_store import get_document_store
    from app.services import effects as effects_svc

    with get_sessionmaker()() as db:
        stats = effects_svc.sweep_unapplied_effects(db, get_document_store())
    logger.info("sweep_unapplied_effects: %s", stats)
    return stats


@celery_app.task(name="app.workers.effect_tasks.verify_open_ledgers")
def verify_open_ledgers() -> dict:
    """Nightly: recompute every active account from its events and report drift."""
    from app.db.session import get_sessionmaker
    from app.services import ledger as ledger_svc

    stats = {"checked": 0, "inconsistent": 0}
    with get_sessionmaker()() as db:
        for account in ledger_svc.list_accounts(db, status=ledger_svc.STATUS_ACTIVE):
            stats["checked"] += 1
            if not ledger_svc.verify_account(db, account.id)["consistent"]:
                stats["inconsistent"] += 1
    logger.info("verify_open_ledgers: %s", stats)
    return stats

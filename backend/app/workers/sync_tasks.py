"""Celery tasks for cross-store sync (relational → document store)."""
import logging
import uuid

from app.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="app.workers.sync_tasks.flush_document_outbox")
def flush_document_outbox(limit: int = 100) -> dict:
    """Replay auxiliary document writes that failed on the request path."""
    from app.db.session import get_sessionmaker
    from app.services.document_store import flush_outbox, get_document_store

    with get_sessionmaker()() as db:
        stats = flush_outbox(db, get_document_store(), limit=limit)
    if stats["delivered"] or stats["failed"]:
        logger.info("flush_document_outbox: %s", stats)
    return stats


@celery_app.task(name="app.workers.sync_tasks.sync_employee")
def sync_employee(employee_id: str) -> dict:
    """Push one employee's profile and permissions to the document store."""
    from app.db.session import get_sessionmaker
    from app.models.employee import Employee
    from app.services.document_store import get_document_store
    from app.services.employee_sync import sync_employee as sync_svc

    with get_sessionmaker()() as db:
        employee = db.get(Employee, uuid.UUID(employee_id))
        if employee is None:
            logger.warning("sync_employee: employee %s not found", employee_id)
            return {"employee_id": employee_id, "synced": False}
        synced = sync_svc(db, get_document_store(), employee)
    return {"employee_id": employee_id, "synced": synced}

"""Audit log API endpoints."""
import csv
import io
import uuid
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Query
from fastapi.responses import StreamingResponse
from sqlalchemy import select

from app.core.deps import DbSession
from app.models.audit import AuditLog
from app.schemas.audit import AuditLogOut

router = APIRouter()


def _filtered(
    entity_type: str | None,
    entity_id: uuid.UUID | None,
    start_date: datetime | None,
    end_date: datetime | None,
):
    query = select(AuditLog)
    if entity_type:
        query = query.where(AuditLog.entity_type == entity_type)
    if entity_id:
        query = query.where(AuditLog.entity_id == entity_id)
    if start_date:
        query = query.where(AuditLog.created_at >= start_date)
    if end_date:
        query = query.where(AuditLog.created_at <= end_date)
    return query.order_by(AuditLog.created_at.asc())


@router.get("", response_model=list[AuditLogOut], summary="Audit trail, oldest first")
def list_audit_logs(
    db: DbSession,
    entity_type: Annotated[str | None, Query(description="e.g. 'approval_request', 'balance_account'")] = None,
    entity_id: Annotated[uuid.UUID | None, Query()] = None,
    limit: Annotated[int, Query(ge=1, le=1000)] = 200,
):
    logs = db.execute(_filtered(entity_type, entity_id, None, None).limit(limit)).scalars().all()
    return [AuditLogOut.model_validate(log) for log in logs]


@router.get(
    "/export",
    summary="Export audit logs as CSV",
    description="Stream audit logs as CSV file with optional filters.",
)
def export_audit_logs(
    db: DbSession,
    start_date: Annotated[datetime | None, Query(description="Filter logs from this date (ISO 8601)")] = None,
    end_date: Annotated[datetime | None, Query(description="Filter logs until this date (ISO 8601)")] = None,
    entity_type: Annotated[str | None, Query(description="Filter by entity type")] = None,
):
    """Export audit logs as CSV.

    Columns: id, action, entity_type, entity_id, actor, created_at, notes
    """
    logs = db.execute(_filtered(entity_type, None, start_date, end_date)).scalars().all()

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(["id", "action", "entity_type", "entity_id", "actor", "created_at", "notes"])
    for log in logs:
        writer.writerow([
            str(log.id),
            log.action,
            log.entity_type,
            str(log.entity_id) if log.entity_id else "",
            log.actor or "",
            log.created_at.isoformat() if log.created_at else "",
            log.notes or "",
        ])

    output.seek(0)
    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=audit_logs.csv"},
    )

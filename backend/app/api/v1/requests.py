"""Approval request API endpoints.

  POST /requests                          — submit a typed request
  POST /requests/money                    — submit a money request
  POST /requests/withdrawals              — submit a wallet withdrawal
  GET  /requests/{kind}                   — list requests
  GET  /requests/{kind}/pending?stage=    — review queue for one stage
  GET  /requests/{kind}/{id}              — request detail
  POST /requests/{kind}/{id}/decisions    — approve / reject at a stage
  POST /requests/approval/{id}/resubmit   — resubmit a rejected request

Business-rule failures raise WorkflowError subclasses, which the app-level
handler turns into JSON error responses.
"""
import logging
import uuid

from fastapi import APIRouter, Query, Request, status

from app.core.config import settings
from app.core.deps import DbSession, Documents
from app.core.limiter import limiter
from app.rules.approval_flows import Stage
from app.schemas.requests import (
    DecisionIn,
    DecisionOut,
    MoneyRequestIn,
    RequestKind,
    RequestListResponse,
    RequestOut,
    ResubmitIn,
    SubmitRequestIn,
    WithdrawalRequestIn,
)
from app.services import approval as approval_svc

logger = logging.getLogger(__name__)

router = APIRouter()


# ─── Submission ───

@router.post(
    "",
    response_model=RequestOut,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a typed approval request",
)
@limiter.limit(settings.SUBMIT_RATE_LIMIT)
def submit_request(request: Request, body: SubmitRequestIn, db: DbSession):
    record = approval_svc.submit_request(db, body)
    return RequestOut.model_validate(record)


@router.post(
    "/money",
    response_model=RequestOut,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a money request",
)
@limiter.limit(settings.SUBMIT_RATE_LIMIT)
def submit_money_request(request: Request, body: MoneyRequestIn, db: DbSession):
    record = approval_svc.submit_money_request(db, body)
    return RequestOut.model_validate(record)


@router.post(
    "/withdrawals",
    response_model=RequestOut,
    status_code=status.HTTP_201_CREATED,
    summary="Request a withdrawal from a wallet account",
)
@limiter.limit(settings.SUBMIT_RATE_LIMIT)
def submit_withdrawal(request: Request, body: WithdrawalRequestIn, db: DbSession):
    record = approval_svc.submit_withdrawal(db, body)
    return RequestOut.model_validate(record)


# ─── Reads ───

@router.get("/{kind}", response_model=RequestListResponse, summary="List requests")
def list_requests(
    kind: RequestKind,
    db: DbSession,
    status_filter: str | None = Query(None, alias="status"),
    requested_by: str | None = Query(None),
):
    records = approval_svc.list_requests(db, kind.value, status=status_filter, requested_by=requested_by)
    items = [RequestOut.model_validate(r) for r in records]
    return RequestListResponse(items=items, total=len(items))


@router.get(
    "/{kind}/pending",
    response_model=RequestListResponse,
    summary="Requests waiting on a given stage",
)
def list_pending(kind: RequestKind, db: DbSession, stage: Stage = Query(...)):
    records = approval_svc.list_pending_for_stage(db, kind.value, stage.value)
    items = [RequestOut.model_validate(r) for r in records]
    return RequestListResponse(items=items, total=len(items))


@router.get("/{kind}/{request_id}", response_model=RequestOut, summary="Request detail")
def get_request(kind: RequestKind, request_id: uuid.UUID, db: DbSession):
    return RequestOut.model_validate(approval_svc.get_request(db, kind.value, request_id))


# ─── Decisions ───

@router.post(
    "/{kind}/{request_id}/decisions",
    response_model=DecisionOut,
    summary="Approve or reject a request at one stage",
)
def record_decision(
    kind: RequestKind,
    request_id: uuid.UUID,
    body: DecisionIn,
    db: DbSession,
    documents: Documents,
):
    outcome = approval_svc.record_approval(
        db,
        kind=kind.value,
        request_id=request_id,
        stage=body.stage,
        approved=body.approved,
        actor=body.actor,
        rejection_reason=body.rejection_reason,
        documents=documents,
    )
    return DecisionOut(
        request=RequestOut.model_validate(outcome.request),
        status=outcome.status,
        fully_approved=outcome.decision.fully_approved,
    )


@router.post(
    "/approval/{request_id}/resubmit",
    response_model=RequestOut,
    status_code=status.HTTP_201_CREATED,
    summary="Resubmit a rejected request as a fresh Pending request",
)
def resubmit_request(request_id: uuid.UUID, body: ResubmitIn, db: DbSession):
    record = approval_svc.resubmit_request(db, request_id, body.actor)
    return RequestOut.model_validate(record)

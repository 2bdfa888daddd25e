"""Balance account endpoints — issue, pay down, statement, verification."""
import uuid

from fastapi import APIRouter, Query, status

from app.core.deps import DbSession, Documents
from app.schemas.ledger import (
    AccountOut,
    IssueAccountIn,
    LedgerEventOut,
    PaymentIn,
    PaymentOut,
    StatementOut,
    VerifyOut,
)
from app.services import ledger as ledger_svc

router = APIRouter()


@router.post(
    "",
    response_model=AccountOut,
    status_code=status.HTTP_201_CREATED,
    summary="Issue an advance / credit / wallet account",
)
def issue_account(body: IssueAccountIn, db: DbSession):
    account = ledger_svc.issue_account(
        db,
        kind=body.kind,
        owner_name=body.owner_name,
        owner_ref=body.owner_ref,
        opening_amount=body.opening_amount,
        minimum_payment=body.minimum_payment,
        issued_by=body.issued_by,
    )
    return AccountOut.model_validate(account)


@router.get("", response_model=list[AccountOut], summary="List balance accounts")
def list_accounts(
    db: DbSession,
    kind: str | None = Query(None),
    status_filter: str | None = Query(None, alias="status"),
    owner_ref: str | None = Query(None),
):
    accounts = ledger_svc.list_accounts(db, kind=kind, status=status_filter, owner_ref=owner_ref)
    return [AccountOut.model_validate(a) for a in accounts]


@router.get("/{account_id}", response_model=AccountOut, summary="Account detail")
def get_account(account_id: uuid.UUID, db: DbSession):
    return AccountOut.model_validate(ledger_svc.get_account(db, account_id))


@router.post(
    "/{account_id}/payments",
    response_model=PaymentOut,
    summary="Apply a payment / clearing amount against the outstanding balance",
)
def apply_payment(account_id: uuid.UUID, body: PaymentIn, db: DbSession, documents: Documents):
    result = ledger_svc.apply_payment(
        db,
        account_id=account_id,
        amount=body.amount,
        method=body.method,
        actor=body.actor,
        idempotency_key=body.idempotency_key,
        notes=body.notes,
        documents=documents,
    )
    return PaymentOut(
        event=LedgerEventOut.model_validate(result.event),
        new_outstanding=result.new_outstanding,
        account_status=result.account.status,
        replayed=result.replayed,
    )


@router.get("/{account_id}/statement", response_model=StatementOut, summary="Payment history")
def get_statement(account_id: uuid.UUID, db: DbSession):
    account, events, total_paid = ledger_svc.get_account_statement(db, account_id)
    return StatementOut(
        account=AccountOut.model_validate(account),
        events=[LedgerEventOut.model_validate(e) for e in events],
        total_paid=total_paid,
    )


@router.get("/{account_id}/verify", response_model=VerifyOut, summary="Recompute balance from events")
def verify_account(account_id: uuid.UUID, db: DbSession):
    return VerifyOut(**ledger_svc.verify_account(db, account_id))

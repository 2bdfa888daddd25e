"""Balance Ledger — advance clearing, customer payments and wallet debits.

Invariant per account:
    current_outstanding == opening_amount - sum(applied event amounts) >= 0

Each payment is one relational transaction: the account row (versioned,
compare-and-swap) and its LedgerEvent commit together. The event's unique
``idempotency_key`` makes a replayed payment return the original event
instead of deducting twice. Finance-transaction and daily-task documents
are written afterwards, best-effort, keyed on the event id.

All functions accept a sync SQLAlchemy Session.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.exceptions import (
    InsufficientBalanceError,
    RecordNotFoundError,
    WorkflowValidationError,
)
from app.models.ledger import BalanceAccount, LedgerEvent
from app.rules.fifo import plan_fifo
from app.services import audit as audit_svc
from app.services.document_store import DocumentStore, write_auxiliary
from app.services.request_store import RequestStore, run_with_retry

logger = logging.getLogger(__name__)

ACCOUNT_KINDS = ("supplier_advance", "milling_customer", "salary_advance", "wallet")
STATUS_ACTIVE = "Active"
STATUS_CLEARED = "Cleared"

CENT = Decimal("0.01")
ZERO = Decimal("0")


@dataclass
class PaymentResult:
    event: LedgerEvent
    account: BalanceAccount
    replayed: bool = False

    @property
    def new_outstanding(self) -> Decimal:
        return Decimal(self.account.current_outstanding)


def _money(value, field: str = "amount") -> Decimal:
    """Coerce to a positive two-decimal Decimal or raise a validation error."""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise WorkflowValidationError(f"{field} must be a number.") from None
    if not amount.is_finite() or amount <= 0:
        raise WorkflowValidationError(f"{field} must be greater than zero.")
    if amount != amount.quantize(CENT):
        raise WorkflowValidationError(f"{field} must have at most two decimal places.")
    return amount


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _snapshot(account: BalanceAccount) -> dict:
    return {
        "current_outstanding": str(account.current_outstanding),
        "status": account.status,
        "version_id": account.version_id,
    }


# ─── Issue ───

def issue_account(
    db: Session,
    kind: str,
    owner_name: str,
    opening_amount,
    issued_by: str,
    owner_ref: str | None = None,
    minimum_payment=None,
    source_request_id: uuid.UUID | None = None,
) -> BalanceAccount:
    """Open a balance account with ``current_outstanding == opening_amount``.

    Idempotent on ``source_request_id``: re-issuing for the same approved
    request returns the account created the first time.
    """
    if kind not in ACCOUNT_KINDS:
        raise WorkflowValidationError(
            f"Invalid account kind '{kind}'. Must be one of: {', '.join(ACCOUNT_KINDS)}."
        )
    if not owner_name or not owner_name.strip():
        raise WorkflowValidationError("owner_name is required.")
    opening = _money(opening_amount, "opening_amount")

    if source_request_id is not None:
        existing = _account_for_request(db, source_request_id)
        if existing is not None:
            logger.info("Account for request %s already issued (%s)", source_request_id, existing.id)
            return existing

    account = BalanceAccount(
        kind=kind,
        owner_name=owner_name.strip(),
        owner_ref=owner_ref,
        opening_amount=opening,
        current_outstanding=opening,
        minimum_payment=Decimal(str(minimum_payment)) if minimum_payment is not None else None,
        status=STATUS_ACTIVE,
        issued_at=datetime.now(timezone.utc),
        issued_by=issued_by,
        source_request_id=source_request_id,
    )
    try:
        db.add(account)
        db.flush()
        audit_svc.log(
            db=db,
            action="ledger.account_issued",
            entity_type="balance_account",
            entity_id=account.id,
            actor=issued_by,
            after={"kind": kind, "owner_name": owner_name, "opening_amount": str(opening)},
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = _account_for_request(db, source_request_id) if source_request_id else None
        if existing is None:
            raise
        return existing

    logger.info("Issued %s account %s for %s: %s", kind, account.id, owner_name, opening)
    return account


def _account_for_request(db: Session, request_id: uuid.UUID) -> BalanceAccount | None:
    return db.execute(
        select(BalanceAccount).where(BalanceAccount.source_request_id == request_id)
    ).scalars().first()


# ─── Apply payment ───

def _find_event(db: Session, idempotency_key: str) -> LedgerEvent | None:
    return db.execute(
        select(LedgerEvent).where(LedgerEvent.idempotency_key == idempotency_key)
    ).scalars().first()


def _debit(
    db: Session,
    account: BalanceAccount,
    amount: Decimal,
    method: str,
    actor: str,
    idempotency_key: str,
    notes: str | None,
) -> LedgerEvent:
    """Deduct ``amount`` from an already-loaded account and stage its event.

    Flushes but does not commit. Refuses (without mutating) any amount
    above the current outstanding; the caller must not clamp.
    """
    outstanding = Decimal(account.current_outstanding)
    if account.status == STATUS_CLEARED or amount > outstanding:
        raise InsufficientBalanceError(amount, outstanding)

    before = _snapshot(account)
    now = datetime.now(timezone.utc)
    new_balance = outstanding - amount

    account.current_outstanding = new_balance
    if new_balance == ZERO:
        account.status = STATUS_CLEARED
        account.cleared_at = now

    event = LedgerEvent(
        account_id=account.id,
        amount=amount,
        method=method,
        applied_at=now,
        applied_by=actor,
        previous_balance=outstanding,
        new_balance=new_balance,
        idempotency_key=idempotency_key,
        notes=notes,
    )
    db.add(event)
    db.flush()  # raises StaleDataError if the account row moved

    audit_svc.log(
        db=db,
        action="ledger.payment_applied",
        entity_type="balance_account",
        entity_id=account.id,
        actor=actor,
        before=before,
        after={**_snapshot(account), "event_id": str(event.id), "amount": str(amount)},
        notes=f"{method} payment of {amount}",
    )
    return event


def apply_payment(
    db: Session,
    account_id: uuid.UUID,
    amount,
    method: str,
    actor: str,
    idempotency_key: str | None = None,
    notes: str | None = None,
    documents: DocumentStore | None = None,
) -> PaymentResult:
    """Apply one payment / clearing amount against an account.

    Args:
        amount: 0 < amount <= current outstanding.
        idempotency_key: Replaying a key returns the original event unchanged.
        documents: When given, finance-transaction and daily-task documents
            are written after commit (best-effort, replay-safe).

    Raises:
        WorkflowValidationError: bad amount / method / actor (before any read).
        RecordNotFoundError: unknown account.
        InsufficientBalanceError: amount exceeds the outstanding balance.
        ConcurrentModificationError: lost the optimistic race on every retry.
    """
    amount = _money(amount)
    if not method or not method.strip():
        raise WorkflowValidationError("Payment method is required.")
    if not actor or not actor.strip():
        raise WorkflowValidationError("actor is required.")
    key = idempotency_key or f"payment:{uuid.uuid4().hex}"
    store = RequestStore(db, BalanceAccount)

    def attempt() -> PaymentResult:
        replay = _find_event(db, key)
        if replay is not None:
            return _replayed(replay, account_id)
        account = store.get_by_id(account_id)
        event = _debit(db, account, amount, method, actor, key, notes)
        db.commit()
        return PaymentResult(event=event, account=account)

    try:
        result = run_with_retry(db, attempt, entity="balance account")
    except IntegrityError:
        # A concurrent replay of the same key won the insert
        replay = _find_event(db, key)
        if replay is None:
            raise
        result = _replayed(replay, account_id)

    if result.replayed:
        logger.info("Payment %s replayed; balance untouched", key)
    else:
        logger.info(
            "Payment applied: account=%s amount=%s outstanding=%s status=%s",
            account_id, amount, result.account.current_outstanding, result.account.status,
        )
    if documents is not None:
        record_payment_documents(db, documents, result.event, result.account)
    return result


def _replayed(event: LedgerEvent, account_id: uuid.UUID) -> PaymentResult:
    if event.account_id != account_id:
        raise WorkflowValidationError(
            f"Idempotency key '{event.idempotency_key}' was already used for another account."
        )
    return PaymentResult(event=event, account=event.account, replayed=True)


def apply_payment_fifo(
    db: Session,
    owner_ref: str,
    kind: str,
    amount,
    method: str,
    actor: str,
    idempotency_key: str | None = None,
    notes: str | None = None,
    documents: DocumentStore | None = None,
) -> list[PaymentResult]:
    """Spread one deduction across an owner's open accounts, oldest first.

    All-or-nothing: if the combined outstanding is short the whole call is
    refused. Each slice gets its own event keyed ``<key>:<account_id>``.
    """
    amount = _money(amount)
    key = idempotency_key or f"fifo:{uuid.uuid4().hex}"

    def attempt() -> list[PaymentResult]:
        replays = [
            e for e in db.execute(
                select(LedgerEvent)
                .where(LedgerEvent.idempotency_key.like(f"{_escape_like(key)}:%", escape="\\"))
                .order_by(LedgerEvent.applied_at)
            ).scalars()
            if e.idempotency_key.rsplit(":", 1)[0] == key
        ]
        if replays:
            return [PaymentResult(event=e, account=e.account, replayed=True) for e in replays]

        accounts = db.execute(
            select(BalanceAccount)
            .where(
                BalanceAccount.kind == kind,
                BalanceAccount.owner_ref == owner_ref,
                BalanceAccount.status == STATUS_ACTIVE,
                BalanceAccount.current_outstanding > 0,
            )
            .order_by(BalanceAccount.issued_at, BalanceAccount.created_at)
            .execution_options(populate_existing=True)
        ).scalars().all()
        by_id = {a.id: a for a in accounts}
        slices = plan_fifo(
            [(a.id, Decimal(a.current_outstanding)) for a in accounts],
            amount,
            InsufficientBalanceError,
        )
        results = []
        for part in slices:
            account = by_id[part.key]
            event = _debit(db, account, part.quantity, method, actor, f"{key}:{account.id}", notes)
            results.append(PaymentResult(event=event, account=account))
        db.commit()
        return results

    results = run_with_retry(db, attempt, entity="balance account")
    logger.info(
        "FIFO deduction %s for %s/%s across %d account(s)", amount, kind, owner_ref, len(results)
    )
    if documents is not None:
        for result in results:
            record_payment_documents(db, documents, result.event, result.account)
    return results


def record_payment_documents(
    db: Session,
    documents: DocumentStore,
    event: LedgerEvent,
    account: BalanceAccount,
) -> None:
    """Mirror a ledger event into the finance-transaction and daily-task collections."""
    description = (
        f"{account.kind.replace('_', ' ').title()} payment for {account.owner_name} "
        f"- {event.amount} via {event.method}"
    )
    write_auxiliary(db, documents, "finance_transactions", f"ledger-{event.id}", {
        "type": "Advance Clearing" if account.kind.endswith("advance") else "Balance Payment",
        "description": description,
        "amount": str(-Decimal(event.amount)),
        "account_id": str(account.id),
        "ledger_event_id": str(event.id),
        "method": event.method,
        "time": event.applied_at.isoformat(),
    })
    write_auxiliary(db, documents, "daily_tasks", f"ledger-{event.id}", {
        "task_type": "Payment",
        "description": description,
        "amount": str(event.amount),
        "completed_by": event.applied_by,
        "completed_at": event.applied_at.isoformat(),
        "department": "Finance",
    })


# ─── Read side ───

def get_account(db: Session, account_id: uuid.UUID) -> BalanceAccount:
    account = db.get(BalanceAccount, account_id)
    if account is None:
        raise RecordNotFoundError("balance_account", account_id)
    return account


def list_accounts(
    db: Session,
    kind: str | None = None,
    status: str | None = None,
    owner_ref: str | None = None,
) -> list[BalanceAccount]:
    stmt = select(BalanceAccount)
    if kind:
        stmt = stmt.where(BalanceAccount.kind == kind)
    if status:
        stmt = stmt.where(BalanceAccount.status == status)
    if owner_ref:
        stmt = stmt.where(BalanceAccount.owner_ref == owner_ref)
    return list(db.execute(stmt.order_by(BalanceAccount.issued_at)).scalars().all())


def _events_for(db: Session, account_id: uuid.UUID) -> list[LedgerEvent]:
    return list(db.execute(
        select(LedgerEvent)
        .where(LedgerEvent.account_id == account_id)
        .order_by(LedgerEvent.applied_at, LedgerEvent.created_at)
    ).scalars().all())


def get_account_statement(db: Session, account_id: uuid.UUID) -> tuple[BalanceAccount, list[LedgerEvent], Decimal]:
    """Return (account, events oldest-first, total paid)."""
    account = get_account(db, account_id)
    events = _events_for(db, account_id)
    total_paid = sum((Decimal(e.amount) for e in events), ZERO)
    return account, events, total_paid


def verify_account(db: Session, account_id: uuid.UUID) -> dict:
    """Recompute the outstanding balance from the event history.

    Checks ``opening - sum(events) == current_outstanding`` and that every
    event's previous_balance chains from the prior event's new_balance.
    """
    account, events, total_paid = get_account_statement(db, account_id)
    expected = Decimal(account.opening_amount) - total_paid
    recorded = Decimal(account.current_outstanding)

    chain_breaks = 0
    running = Decimal(account.opening_amount)
    for event in events:
        if Decimal(event.previous_balance) != running:
            chain_breaks += 1
        running = Decimal(event.new_balance)

    consistent = expected == recorded and recorded >= ZERO and chain_breaks == 0
    if not consistent:
        logger.warning(
            "Ledger mismatch on account %s: expected=%s recorded=%s chain_breaks=%d",
            account_id, expected, recorded, chain_breaks,
        )
    return {
        "account_id": account.id,
        "consistent": consistent,
        "expected_outstanding": expected,
        "recorded_outstanding": recorded,
        "chain_breaks": chain_breaks,
    }

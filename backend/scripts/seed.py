"""Seed script: creates employees, balance accounts, stock batches and a few requests.

Idempotent: every write goes through a service that is keyed on a natural id
(employee email, source record id, source request id) or is checked first.
Run: docker exec coffee-workflow-backend-1 python scripts/seed.py
"""
import sys
import os
from datetime import date, timedelta
from decimal import Decimal

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from sqlalchemy import select

from app.db.base import Base
from app.db.session import get_engine, get_sessionmaker
from app.models.approval_request import ApprovalRequest
from app.models.ledger import BalanceAccount
from app.schemas.requests import SubmitRequestIn
from app.services import approval as approval_svc
from app.services import employee_sync
from app.services import inventory as inventory_svc
from app.services import ledger as ledger_svc
from app.services.document_store import get_document_store

TODAY = date.today()


# ─── Helpers ─────────────────────────────────────────────────────────────────

def _seed_account(db, kind: str, owner_name: str, owner_ref: str, amount: str) -> BalanceAccount:
    existing = db.execute(
        select(BalanceAccount).where(
            BalanceAccount.kind == kind, BalanceAccount.owner_ref == owner_ref
        )
    ).scalars().first()
    if existing:
        print(f"  [skip] {kind} account for {owner_name}")
        return existing
    account = ledger_svc.issue_account(
        db, kind=kind, owner_name=owner_name, owner_ref=owner_ref,
        opening_amount=Decimal(amount), issued_by="seed",
    )
    print(f"  [new]  {kind} account for {owner_name}: {amount}")
    return account


def _seed_request(db, payload: dict) -> ApprovalRequest:
    existing = db.execute(
        select(ApprovalRequest).where(ApprovalRequest.title == payload["title"])
    ).scalars().first()
    if existing:
        print(f"  [skip] Request {payload['title']!r}")
        return existing
    record = approval_svc.submit_request(db, SubmitRequestIn.model_validate(payload))
    print(f"  [new]  Request {record.title!r} ({record.type})")
    return record


# ─── Main ────────────────────────────────────────────────────────────────────

def seed() -> None:
    Base.metadata.create_all(get_engine())
    documents = get_document_store()
    documents.ensure_schema()

    with get_sessionmaker()() as db:
        print("Employees")
        for email, name, role, department, salary in [
            ("finance@factory.example", "Grace Finance", "Manager", "Finance", "1800000"),
            ("admin@factory.example", "Samuel Admin", "Administrator", "Administration", "2500000"),
            ("md@factory.example", "Ruth Director", "Super Admin", "Administration", "4000000"),
            ("clerk@factory.example", "Peter Clerk", "User", "Store", "900000"),
        ]:
            employee_sync.create_employee(
                db,
                {"email": email, "name": name, "role": role, "department": department,
                 "salary": Decimal(salary)},
                actor="seed",
                documents=documents,
            )
            print(f"  [ok]   Employee {email}")

        print("Balance accounts")
        _seed_account(db, "supplier_advance", "Kasese Growers Co-op", "SUP-001", "3000000")
        _seed_account(db, "milling_customer", "Bugisu Millers", "CUST-014", "850000")
        _seed_account(db, "salary_advance", "Peter Clerk", "clerk@factory.example", "200000")
        _seed_account(db, "wallet", "Peter Clerk", "clerk@factory.example", "150000")

        print("Inventory")
        purchases = [
            ("PUR-0001", "Arabica", "2600", "Kasese Growers Co-op", 12),
            ("PUR-0002", "Arabica", "2500", "Mbale Farmers", 10),
            ("PUR-0003", "Arabica", "1200", "Kasese Growers Co-op", 6),
            ("PUR-0004", "Robusta", "4000", "Masaka Traders", 8),
        ]
        for ref, commodity, kg, supplier, days_ago in purchases:
            source = inventory_svc.add_to_batch(
                db, source_record_id=ref, commodity_type=commodity, kilograms=Decimal(kg),
                supplier_name=supplier, purchase_date=TODAY - timedelta(days=days_ago), actor="seed",
            )
            print(f"  [ok]   {ref} -> batch {source.batch_id}")

        print("Requests")
        _seed_request(db, {
            "title": "March salary - Peter Clerk",
            "amount": "900000",
            "requested_by": "clerk@factory.example",
            "department": "Store",
            "details": {
                "type": "SalaryRequest",
                "employee_email": "clerk@factory.example",
                "employee_name": "Peter Clerk",
                "period": TODAY.strftime("%Y-%m"),
                "advance_deduction": "50000",
            },
        })
        _seed_request(db, {
            "title": "Generator fuel",
            "amount": "350000",
            "requested_by": "clerk@factory.example",
            "details": {"type": "CashRequisition", "purpose": "Diesel for the huller generator"},
        })
        _seed_request(db, {
            "title": "Advance for Kasese Growers Co-op",
            "amount": "6000000",
            "requested_by": "finance@factory.example",
            "details": {"type": "SupplierAdvance", "supplier_name": "Kasese Growers Co-op",
                        "supplier_code": "SUP-001"},
        })

    print("Seed complete.")


if __name__ == "__main__":
    seed()

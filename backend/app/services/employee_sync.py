"""Employee records and best-effort permission sync to the document store.

The relational ``employees`` row is the source of truth. After it commits,
the role / permission set is mirrored to the ``employees`` document
collection (doc id = lower-cased email). A failed mirror is logged and
queued for replay; it never fails the employee write.
"""
import logging
import uuid

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.exceptions import RecordNotFoundError, WorkflowValidationError
from app.models.employee import Employee
from app.services import audit as audit_svc
from app.services.document_store import DocumentStore, write_auxiliary

logger = logging.getLogger(__name__)

SYNCED_FIELDS = ("name", "email", "phone", "department", "position", "role", "permissions", "status")


def _doc_id(employee: Employee) -> str:
    return employee.email.strip().lower()


def _snapshot(employee: Employee) -> dict:
    return {f: getattr(employee, f) for f in SYNCED_FIELDS} | {"salary": str(employee.salary)}


def get_employee_by_email(db: Session, email: str) -> Employee | None:
    return db.execute(
        select(Employee).where(Employee.email == email.strip().lower())
    ).scalars().first()


def sync_employee(db: Session, documents: DocumentStore, employee: Employee) -> bool:
    """Mirror an employee's profile and permissions into the document store."""
    data = {f: getattr(employee, f) for f in SYNCED_FIELDS}
    data["employee_id"] = str(employee.id)
    data["salary"] = str(employee.salary)
    delivered = write_auxiliary(db, documents, "employees", _doc_id(employee), data)
    if delivered:
        logger.info("Synced employee %s to document store", employee.email)
    return delivered


def create_employee(
    db: Session,
    data: dict,
    actor: str | None = None,
    documents: DocumentStore | None = None,
) -> Employee:
    """Create an employee; returns the existing row if the email is already registered."""
    email = (data.get("email") or "").strip().lower()
    if not email or "@" not in email:
        raise WorkflowValidationError("A valid employee email is required.")
    if not data.get("name"):
        raise WorkflowValidationError("Employee name is required.")

    existing = get_employee_by_email(db, email)
    if existing is not None:
        logger.info("Employee %s already exists; skipping create", email)
        return existing

    employee = Employee(
        email=email,
        name=data["name"],
        phone=data.get("phone"),
        department=data.get("department"),
        position=data.get("position"),
        role=data.get("role") or "User",
        permissions=list(data.get("permissions") or []),
        salary=data.get("salary") or 0,
        status="Active",
    )
    try:
        db.add(employee)
        db.flush()
        audit_svc.log(
            db=db,
            action="employee.created",
            entity_type="employee",
            entity_id=employee.id,
            actor=actor,
            after=_snapshot(employee),
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = get_employee_by_email(db, email)
        if existing is None:
            raise
        return existing

    logger.info("Created employee %s (%s)", email, employee.role)
    if documents is not None:
        sync_employee(db, documents, employee)
    return employee


def update_employee(
    db: Session,
    employee_id: uuid.UUID,
    changes: dict,
    actor: str | None = None,
    documents: DocumentStore | None = None,
) -> Employee:
    """Apply profile / permission changes, then mirror them best-effort."""
    employee = db.get(Employee, employee_id)
    if employee is None:
        raise RecordNotFoundError("employee", employee_id)

    before = _snapshot(employee)
    for name, value in changes.items():
        if value is None:
            continue
        if name == "email":
            raise WorkflowValidationError("Employee email cannot be changed.")
        if not hasattr(Employee, name):
            raise WorkflowValidationError(f"Unknown employee field '{name}'.")
        setattr(employee, name, list(value) if name == "permissions" else value)
    db.flush()
    audit_svc.log(
        db=db,
        action="employee.updated",
        entity_type="employee",
        entity_id=employee.id,
        actor=actor,
        before=before,
        after=_snapshot(employee),
    )
    db.commit()

    if documents is not None:
        sync_employee(db, documents, employee)
    return employee

"""Employee endpoints. Writes go to the relational store and are mirrored best-effort."""
import uuid

from fastapi import APIRouter, status

from app.core.deps import DbSession, Documents
from app.core.exceptions import RecordNotFoundError
from app.models.employee import Employee
from app.schemas.employee import EmployeeCreate, EmployeeOut, EmployeeUpdate
from app.services import employee_sync

router = APIRouter()


@router.post("", response_model=EmployeeOut, status_code=status.HTTP_201_CREATED)
def create_employee(body: EmployeeCreate, db: DbSession, documents: Documents):
    employee = employee_sync.create_employee(db, body.model_dump(), documents=documents)
    return EmployeeOut.model_validate(employee)


@router.get("/{employee_id}", response_model=EmployeeOut)
def get_employee(employee_id: uuid.UUID, db: DbSession):
    employee = db.get(Employee, employee_id)
    if employee is None:
        raise RecordNotFoundError("employee", employee_id)
    return EmployeeOut.model_validate(employee)


@router.patch("/{employee_id}", response_model=EmployeeOut)
def update_employee(employee_id: uuid.UUID, body: EmployeeUpdate, db: DbSession, documents: Documents):
    employee = employee_sync.update_employee(
        db, employee_id, body.model_dump(exclude_unset=True), documents=documents
    )
    return EmployeeOut.model_validate(employee)

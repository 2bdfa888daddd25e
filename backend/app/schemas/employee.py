import uuid
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class EmployeeCreate(BaseModel):
    email: str = Field(min_length=3)
    name: str = Field(min_length=1)
    phone: str | None = None
    department: str | None = None
    position: str | None = None
    role: str = "User"
    permissions: list[str] = Field(default_factory=list)
    salary: Decimal = Field(default=Decimal("0"), ge=0)


class EmployeeUpdate(BaseModel):
    name: str | None = None
    phone: str | None = None
    department: str | None = None
    position: str | None = None
    role: str | None = None
    permissions: list[str] | None = None
    salary: Decimal | None = Field(default=None, ge=0)
    status: str | None = None


class EmployeeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    email: str
    name: str
    phone: str | None
    department: str | None
    position: str | None
    role: str
    permissions: list[str]
    salary: Decimal
    status: str

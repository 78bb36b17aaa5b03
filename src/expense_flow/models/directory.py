import uuid
from enum import Enum

from pydantic import BaseModel, Field


def new_id() -> str:
    return str(uuid.uuid4())


class UserStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class User(BaseModel):
    id: str = Field(default_factory=new_id)
    company_id: str
    name: str
    email: str | None = None
    status: UserStatus = UserStatus.ACTIVE
    role_ids: list[str] = Field(default_factory=list)
    department_id: str | None = None
    manager_id: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE


class Role(BaseModel):
    id: str = Field(default_factory=new_id)
    company_id: str
    name: str
    type: str = "CUSTOM"  # e.g. MANAGER, BUSINESS_HEAD, ACCOUNTANT


class Department(BaseModel):
    id: str = Field(default_factory=new_id)
    company_id: str
    name: str
    code: str | None = None


class Project(BaseModel):
    id: str = Field(default_factory=new_id)
    company_id: str
    name: str
    code: str | None = None
    budget: float = 0.0
    spent_amount: float = 0.0
    status: str = "ACTIVE"


class CostCentre(BaseModel):
    id: str = Field(default_factory=new_id)
    company_id: str
    name: str
    code: str | None = None
    budget: float = 0.0
    spent_amount: float = 0.0
    status: str = "ACTIVE"

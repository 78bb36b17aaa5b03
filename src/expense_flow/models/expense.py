from datetime import date, datetime, UTC
from enum import Enum

from pydantic import BaseModel, Field

from .directory import new_id


class ExpenseStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class DuplicateFlag(str, Enum):
    POTENTIAL_DUPLICATE = "POTENTIAL_DUPLICATE"
    STRONG_DUPLICATE = "STRONG_DUPLICATE"


class ReportStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


PENDING_APPROVAL_PREFIX = "PENDING_APPROVAL_L"

# Statuses that take an expense (or its report) out of duplicate matching
EXCLUDED_FROM_MATCHING = {"REJECTED", "CANCELLED"}


def pending_status(level: int) -> str:
    """Report status while waiting on ``level`` (PENDING_APPROVAL_L1, L2, ...)"""
    return f"{PENDING_APPROVAL_PREFIX}{level}"


def is_pending_status(status: str) -> bool:
    return status.startswith(PENDING_APPROVAL_PREFIX)


class Expense(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    report_id: str | None = None
    vendor: str = ""
    amount: float = 0.0
    currency: str = "INR"
    original_amount: float | None = None
    original_currency: str | None = None
    expense_date: datetime | None = None
    invoice_id: str | None = None
    invoice_date: datetime | None = None
    invoice_fingerprint: str | None = None
    category_id: str | None = None
    category_name: str | None = None
    status: ExpenseStatus = ExpenseStatus.DRAFT
    duplicate_flag: DuplicateFlag | None = None
    duplicate_reason: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ExpenseDraft(BaseModel):
    """Unpersisted expense as received from the create/update hooks"""
    user_id: str | None = None
    vendor: str | None = None
    amount: float | None = None
    currency: str | None = None
    original_amount: float | None = None
    original_currency: str | None = None
    expense_date: datetime | date | str | None = None
    invoice_id: str | None = None
    invoice_date: datetime | date | str | None = None


class ApproverDecision(BaseModel):
    level: int
    approver_id: str
    role_id: str | None = None
    decision: str
    decided_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    comment: str | None = None


class ExpenseReport(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    name: str
    status: str = ReportStatus.DRAFT.value
    from_date: date | None = None
    to_date: date | None = None
    total_amount: float | None = 0.0
    currency: str | None = "INR"
    project_id: str | None = None
    cost_centre_id: str | None = None
    approvers: list[ApproverDecision] = Field(default_factory=list)
    submitted_at: datetime | None = None
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def upsert_decision(self, decision: ApproverDecision) -> None:
        """Record a decision, replacing any earlier one at the same level"""
        self.approvers = [a for a in self.approvers if a.level != decision.level]
        self.approvers.append(decision)
        self.approvers.sort(key=lambda a: a.level)


class DuplicateCheckResult(BaseModel):
    flag: DuplicateFlag | None = None
    reason: str | None = None
    matched_expense_id: str | None = None
    # set by the pre-save gate for the caller to store with the new record
    invoice_fingerprint: str | None = None

    @property
    def is_duplicate(self) -> bool:
        return self.flag is not None

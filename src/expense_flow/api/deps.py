from datetime import date, datetime

from pydantic import BaseModel

from ..models import ExpenseDraft
from ..services.analytics import AnalyticsService
from ..services.approval_workflow import ApprovalWorkflowService
from ..services.currency import get_currency_service
from ..services.duplicate_detection import DuplicateDetectionService
from ..services.notifications import get_notification_queue
from ..services.role_resolver import ApprovalRoleResolver
from ..services.storage import get_store


class DuplicateCheckRequest(BaseModel):
    """Body for the pre-save duplicate gate"""
    company_id: str | None = None
    exclude_id: str | None = None
    expense: ExpenseDraft


class DuplicateCheckResponse(BaseModel):
    duplicate_flag: str | None = None
    duplicate_reason: str | None = None
    matched_expense_id: str | None = None
    invoice_fingerprint: str | None = None


class SubmitRequest(BaseModel):
    submitted_by: str | None = None


class DecisionRequest(BaseModel):
    level_number: int
    approver_id: str
    decision: str
    comment: str | None = None


class AdditionalApprover(BaseModel):
    user_id: str
    role: str | None = None
    trigger_reason: str | None = None


class AdditionalApproversRequest(BaseModel):
    approvers: list[AdditionalApprover]


class DateRange(BaseModel):
    from_date: datetime | date | None = None
    to_date: datetime | date | None = None


# ----- service wiring (override with app.dependency_overrides in tests) -----

def get_duplicate_service() -> DuplicateDetectionService:
    return DuplicateDetectionService(get_store())


def get_workflow_service() -> ApprovalWorkflowService:
    store = get_store()
    return ApprovalWorkflowService(
        store=store,
        resolver=ApprovalRoleResolver(store),
        queue=get_notification_queue(),
        duplicates=DuplicateDetectionService(store),
    )


def get_analytics_service() -> AnalyticsService:
    return AnalyticsService(get_store(), get_currency_service())

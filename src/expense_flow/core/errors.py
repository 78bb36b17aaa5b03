"""
Typed exceptions for the expense workflow core.

Every workflow error carries a machine-readable ``code`` so callers (the API
layer, batch jobs) can react by type instead of parsing messages:

    ExpenseFlowError
    +-- WorkflowValidationError      rejected transition, no side effect
    |   +-- ApprovalConflictError    lost the optimistic-concurrency race
    +-- NotificationDeliveryError    transport failure inside the queue
    +-- AggregationError             dashboard query failed
"""

from enum import Enum
from typing import Any


class ReasonCode(str, Enum):
    INSTANCE_NOT_FOUND = "INSTANCE_NOT_FOUND"
    REPORT_NOT_FOUND = "REPORT_NOT_FOUND"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    INVALID_STATE = "INVALID_STATE"
    WRONG_LEVEL = "WRONG_LEVEL"
    NOT_AUTHORIZED = "NOT_AUTHORIZED"
    INVALID_DECISION = "INVALID_DECISION"
    NO_ACTIVE_MATRIX = "NO_ACTIVE_MATRIX"
    LEVEL_NOT_CONFIGURED = "LEVEL_NOT_CONFIGURED"
    CONFLICT = "CONFLICT"


class ExpenseFlowError(Exception):
    """Base class for all expense-flow errors"""


class WorkflowValidationError(ExpenseFlowError):
    """
    A requested state transition was rejected.

    Raised before anything is written, so the persisted state is unchanged.
    """

    def __init__(self, code: ReasonCode, message: str, **details: Any):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"code": self.code.value, "message": self.message, "details": self.details}


class ApprovalConflictError(WorkflowValidationError):
    """Another decision committed first; re-read the instance and retry"""

    def __init__(self, message: str, **details: Any):
        super().__init__(ReasonCode.CONFLICT, message, **details)


class NotificationDeliveryError(ExpenseFlowError):
    """A notification transport failed; the queue decides whether to retry"""

    def __init__(self, channel: str, message: str, recipients: list[str] | None = None):
        super().__init__(message)
        self.channel = channel
        self.recipients = recipients or []


class AggregationError(ExpenseFlowError):
    """A dashboard/aggregation query could not be completed"""

    def __init__(self, query: str, company_id: str, message: str):
        super().__init__(message)
        self.query = query
        self.company_id = company_id

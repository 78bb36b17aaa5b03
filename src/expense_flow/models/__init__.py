from .approval import (
    ApprovalCondition,
    ApprovalHistoryEntry,
    ApprovalInstance,
    ApprovalLevelConfig,
    ApprovalMatrix,
    ApprovalStatus,
    ConditionAction,
    ConditionOperator,
    ConditionType,
    Decision,
)
from .directory import CostCentre, Department, Project, Role, User, UserStatus
from .expense import (
    ApproverDecision,
    DuplicateCheckResult,
    DuplicateFlag,
    Expense,
    ExpenseDraft,
    ExpenseReport,
    ExpenseStatus,
    ReportStatus,
    is_pending_status,
    pending_status,
)
from .notification import InAppNotification

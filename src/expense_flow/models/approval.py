from datetime import datetime, UTC
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from .directory import new_id


class ApprovalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"
    SKIPPED = "SKIPPED"


class Decision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    CHANGES_REQUESTED = "changes_requested"

    @property
    def resulting_status(self) -> ApprovalStatus:
        return {
            Decision.APPROVE: ApprovalStatus.APPROVED,
            Decision.REJECT: ApprovalStatus.REJECTED,
            Decision.CHANGES_REQUESTED: ApprovalStatus.CHANGES_REQUESTED,
        }[self]


class ConditionType(str, Enum):
    AMOUNT = "AMOUNT"


class ConditionOperator(str, Enum):
    GT = ">"
    LT = "<"
    GTE = ">="
    LTE = "<="
    EQ = "=="


class ConditionAction(str, Enum):
    ACTIVATE = "ACTIVATE"
    SKIP = "SKIP"


class ApprovalCondition(BaseModel):
    type: ConditionType = ConditionType.AMOUNT
    operator: ConditionOperator
    value: float
    action: ConditionAction = ConditionAction.ACTIVATE


class ApprovalLevelConfig(BaseModel):
    level_number: int
    enabled: bool = True
    approver_role_ids: list[str] = Field(default_factory=list)
    approver_user_ids: list[str] = Field(default_factory=list)
    conditions: list[ApprovalCondition] = Field(default_factory=list)


class ApprovalMatrix(BaseModel):
    id: str = Field(default_factory=new_id)
    company_id: str
    name: str
    is_active: bool = True
    levels: list[ApprovalLevelConfig] = Field(default_factory=list)

    def level(self, level_number: int) -> ApprovalLevelConfig | None:
        for level in self.levels:
            if level.level_number == level_number:
                return level
        return None

    def ordered_levels(self) -> list[ApprovalLevelConfig]:
        return sorted(self.levels, key=lambda lv: lv.level_number)


class ApprovalHistoryEntry(BaseModel):
    """
    One decision (or system skip) in an approval instance.

    Entries are never edited once appended. A later decision at the same level
    points at the entry it replaces through ``supersedes``.
    """
    model_config = {"frozen": True}

    sequence: int
    level_number: int
    status: ApprovalStatus
    approver_id: str | None = None
    role_id: str | None = None
    comment: str | None = None
    supersedes: int | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ApprovalInstance(BaseModel):
    id: str = Field(default_factory=new_id)
    company_id: str
    matrix_id: str
    request_id: str
    request_type: str = "EXPENSE_REPORT"
    current_level: int = 1
    status: ApprovalStatus = ApprovalStatus.PENDING
    history: list[ApprovalHistoryEntry] = Field(default_factory=list)
    request_data: dict[str, Any] = Field(default_factory=dict)
    version: int = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def _superseded(self) -> set[int]:
        return {e.supersedes for e in self.history if e.supersedes is not None}

    def effective_history(self) -> list[ApprovalHistoryEntry]:
        """History with superseded entries filtered out, original order kept"""
        superseded = self._superseded()
        return [e for e in self.history if e.sequence not in superseded]

    def decision_for_level(self, level_number: int) -> ApprovalHistoryEntry | None:
        for entry in reversed(self.effective_history()):
            if entry.level_number == level_number:
                return entry
        return None

    def append_entry(self, level_number: int, status: ApprovalStatus, **fields) -> ApprovalHistoryEntry:
        previous = self.decision_for_level(level_number)
        entry = ApprovalHistoryEntry(
            sequence=len(self.history) + 1,
            level_number=level_number,
            status=status,
            supersedes=previous.sequence if previous else None,
            **fields,
        )
        self.history.append(entry)
        return entry

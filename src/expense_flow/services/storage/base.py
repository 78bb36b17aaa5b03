"""
Abstract base class for expense-flow persistence.

Defines the interface that all stores must implement, enabling dependency
injection and easy swapping of storage backends.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from ...models import (
    ApprovalInstance,
    ApprovalMatrix,
    ApproverDecision,
    CostCentre,
    Department,
    DuplicateFlag,
    Expense,
    ExpenseReport,
    ExpenseStatus,
    InAppNotification,
    Project,
    Role,
    User,
)


class ExpenseStoreBase(ABC):
    """
    Abstract base class for expense, report and approval persistence.

    Implementations can use:
    - In-memory storage (for testing/demo)
    - SQLite (for single-instance deployments)
    - PostgreSQL / MongoDB (for production)

    Every getter returns a detached copy: mutating a returned record has no
    effect until it is written back.
    """

    # ----- directory -----

    @abstractmethod
    def add_user(self, user: User) -> User:
        pass

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[User]:
        pass

    @abstractmethod
    def list_users(self, company_id: str, active_only: bool = False) -> list[User]:
        """Users of a company in insertion order"""
        pass

    @abstractmethod
    def add_role(self, role: Role) -> Role:
        pass

    @abstractmethod
    def list_roles(self, company_id: str) -> list[Role]:
        pass

    @abstractmethod
    def add_department(self, department: Department) -> Department:
        pass

    @abstractmethod
    def list_departments(self, company_id: str) -> list[Department]:
        pass

    @abstractmethod
    def add_project(self, project: Project) -> Project:
        pass

    @abstractmethod
    def list_projects(self, company_id: str) -> list[Project]:
        pass

    @abstractmethod
    def add_cost_centre(self, cost_centre: CostCentre) -> CostCentre:
        pass

    @abstractmethod
    def list_cost_centres(self, company_id: str) -> list[CostCentre]:
        pass

    # ----- expenses -----

    @abstractmethod
    def add_expense(self, expense: Expense) -> Expense:
        pass

    @abstractmethod
    def get_expense(self, expense_id: str) -> Optional[Expense]:
        pass

    @abstractmethod
    def list_expenses_for_report(self, report_id: str) -> list[Expense]:
        pass

    @abstractmethod
    def list_expenses_for_users(self, user_ids: list[str]) -> list[Expense]:
        pass

    @abstractmethod
    def find_expenses_in_window(
        self,
        user_ids: list[str],
        start: datetime,
        end: datetime,
        exclude_id: Optional[str] = None,
    ) -> list[Expense]:
        """
        Expenses owned by ``user_ids`` whose expense_date or invoice_date is in [start, end).

        Results come back in insertion order, which is the duplicate engine's
        "query order".
        """
        pass

    @abstractmethod
    def set_duplicate_flag(
        self, expense_id: str, flag: Optional[DuplicateFlag], reason: Optional[str]
    ) -> bool:
        """Write (or clear, when flag is None) the advisory duplicate fields"""
        pass

    # ----- reports -----

    @abstractmethod
    def add_report(self, report: ExpenseReport) -> ExpenseReport:
        pass

    @abstractmethod
    def get_report(self, report_id: str) -> Optional[ExpenseReport]:
        pass

    @abstractmethod
    def save_report(self, report: ExpenseReport) -> bool:
        pass

    @abstractmethod
    def list_reports_for_users(self, user_ids: list[str]) -> list[ExpenseReport]:
        pass

    # ----- approval matrix / instances -----

    @abstractmethod
    def save_matrix(self, matrix: ApprovalMatrix) -> ApprovalMatrix:
        pass

    @abstractmethod
    def get_matrix(self, matrix_id: str) -> Optional[ApprovalMatrix]:
        pass

    @abstractmethod
    def get_active_matrix(self, company_id: str) -> Optional[ApprovalMatrix]:
        pass

    @abstractmethod
    def get_instance(self, instance_id: str) -> Optional[ApprovalInstance]:
        pass

    @abstractmethod
    def get_instance_for_request(self, request_id: str) -> Optional[ApprovalInstance]:
        pass

    @abstractmethod
    def list_instances(self, company_id: str, status: Optional[str] = None) -> list[ApprovalInstance]:
        pass

    @abstractmethod
    def apply_transition(
        self,
        instance: ApprovalInstance,
        expected_version: Optional[int],
        report_status: Optional[str] = None,
        report_decision: Optional[ApproverDecision] = None,
        report_fields: Optional[dict] = None,
        expense_status: Optional[ExpenseStatus] = None,
    ) -> bool:
        """
        Atomically persist an instance transition and mirror it onto the report.

        ``expected_version`` is the version the caller read; None means the
        instance must not exist yet. On success the stored version becomes
        ``expected_version + 1`` (``instance.version`` is updated in place).
        Returns False, writing nothing, when the stored version differs.
        """
        pass

    # ----- in-app notifications -----

    @abstractmethod
    def add_notification(self, notification: InAppNotification) -> InAppNotification:
        pass

    @abstractmethod
    def list_notifications(self, user_id: str) -> list[InAppNotification]:
        pass

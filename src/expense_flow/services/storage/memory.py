"""
In-memory persistence (for demo purposes and tests).
In production, use a database (SQLite below, PostgreSQL, MongoDB, etc.)
"""
import threading
from datetime import datetime, UTC
from typing import Dict, Optional

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
from ..similarity import in_window
from .base import ExpenseStoreBase


def _copy(model):
    return model.model_copy(deep=True) if model is not None else None


class InMemoryExpenseStore(ExpenseStoreBase):
    def __init__(self):
        # dicts keep insertion order, which doubles as query order
        self._users: Dict[str, User] = {}
        self._roles: Dict[str, Role] = {}
        self._departments: Dict[str, Department] = {}
        self._projects: Dict[str, Project] = {}
        self._cost_centres: Dict[str, CostCentre] = {}
        self._expenses: Dict[str, Expense] = {}
        self._reports: Dict[str, ExpenseReport] = {}
        self._matrices: Dict[str, ApprovalMatrix] = {}
        self._instances: Dict[str, ApprovalInstance] = {}
        self._notifications: Dict[str, InAppNotification] = {}
        self._lock = threading.RLock()

    def clear(self):
        """Drop everything (for tests)"""
        with self._lock:
            for table in (
                self._users, self._roles, self._departments, self._projects,
                self._cost_centres, self._expenses, self._reports,
                self._matrices, self._instances, self._notifications,
            ):
                table.clear()

    # ----- directory -----

    def add_user(self, user: User) -> User:
        with self._lock:
            self._users[user.id] = _copy(user)
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        return _copy(self._users.get(user_id))

    def list_users(self, company_id: str, active_only: bool = False) -> list[User]:
        with self._lock:
            return [
                _copy(u) for u in self._users.values()
                if u.company_id == company_id and (u.is_active or not active_only)
            ]

    def add_role(self, role: Role) -> Role:
        with self._lock:
            self._roles[role.id] = _copy(role)
        return role

    def list_roles(self, company_id: str) -> list[Role]:
        return [_copy(r) for r in self._roles.values() if r.company_id == company_id]

    def add_department(self, department: Department) -> Department:
        with self._lock:
            self._departments[department.id] = _copy(department)
        return department

    def list_departments(self, company_id: str) -> list[Department]:
        return [_copy(d) for d in self._departments.values() if d.company_id == company_id]

    def add_project(self, project: Project) -> Project:
        with self._lock:
            self._projects[project.id] = _copy(project)
        return project

    def list_projects(self, company_id: str) -> list[Project]:
        return [_copy(p) for p in self._projects.values() if p.company_id == company_id]

    def add_cost_centre(self, cost_centre: CostCentre) -> CostCentre:
        with self._lock:
            self._cost_centres[cost_centre.id] = _copy(cost_centre)
        return cost_centre

    def list_cost_centres(self, company_id: str) -> list[CostCentre]:
        return [_copy(c) for c in self._cost_centres.values() if c.company_id == company_id]

    # ----- expenses -----

    def add_expense(self, expense: Expense) -> Expense:
        with self._lock:
            self._expenses[expense.id] = _copy(expense)
        return expense

    def get_expense(self, expense_id: str) -> Optional[Expense]:
        return _copy(self._expenses.get(expense_id))

    def list_expenses_for_report(self, report_id: str) -> list[Expense]:
        with self._lock:
            return [_copy(e) for e in self._expenses.values() if e.report_id == report_id]

    def list_expenses_for_users(self, user_ids: list[str]) -> list[Expense]:
        wanted = set(user_ids)
        with self._lock:
            return [_copy(e) for e in self._expenses.values() if e.user_id in wanted]

    def find_expenses_in_window(
        self,
        user_ids: list[str],
        start: datetime,
        end: datetime,
        exclude_id: Optional[str] = None,
    ) -> list[Expense]:
        wanted = set(user_ids)
        bounds = (start, end)
        with self._lock:
            return [
                _copy(e) for e in self._expenses.values()
                if e.user_id in wanted
                and e.id != exclude_id
                and (in_window(e.expense_date, bounds) or in_window(e.invoice_date, bounds))
            ]

    def set_duplicate_flag(
        self, expense_id: str, flag: Optional[DuplicateFlag], reason: Optional[str]
    ) -> bool:
        with self._lock:
            expense = self._expenses.get(expense_id)
            if expense is None:
                return False
            expense.duplicate_flag = flag
            expense.duplicate_reason = reason if flag is not None else None
            return True

    # ----- reports -----

    def add_report(self, report: ExpenseReport) -> ExpenseReport:
        with self._lock:
            self._reports[report.id] = _copy(report)
        return report

    def get_report(self, report_id: str) -> Optional[ExpenseReport]:
        return _copy(self._reports.get(report_id))

    def save_report(self, report: ExpenseReport) -> bool:
        with self._lock:
            if report.id not in self._reports:
                return False
            self._reports[report.id] = _copy(report)
            return True

    def list_reports_for_users(self, user_ids: list[str]) -> list[ExpenseReport]:
        wanted = set(user_ids)
        with self._lock:
            return [_copy(r) for r in self._reports.values() if r.user_id in wanted]

    # ----- approval matrix / instances -----

    def save_matrix(self, matrix: ApprovalMatrix) -> ApprovalMatrix:
        with self._lock:
            self._matrices[matrix.id] = _copy(matrix)
        return matrix

    def get_matrix(self, matrix_id: str) -> Optional[ApprovalMatrix]:
        return _copy(self._matrices.get(matrix_id))

    def get_active_matrix(self, company_id: str) -> Optional[ApprovalMatrix]:
        with self._lock:
            for matrix in self._matrices.values():
                if matrix.company_id == company_id and matrix.is_active:
                    return _copy(matrix)
        return None

    def get_instance(self, instance_id: str) -> Optional[ApprovalInstance]:
        return _copy(self._instances.get(instance_id))

    def get_instance_for_request(self, request_id: str) -> Optional[ApprovalInstance]:
        with self._lock:
            for instance in self._instances.values():
                if instance.request_id == request_id:
                    return _copy(instance)
        return None

    def list_instances(self, company_id: str, status: Optional[str] = None) -> list[ApprovalInstance]:
        with self._lock:
            return [
                _copy(i) for i in self._instances.values()
                if i.company_id == company_id and (status is None or i.status == status)
            ]

    def apply_transition(
        self,
        instance: ApprovalInstance,
        expected_version: Optional[int],
        report_status: Optional[str] = None,
        report_decision: Optional[ApproverDecision] = None,
        report_fields: Optional[dict] = None,
        expense_status: Optional[ExpenseStatus] = None,
    ) -> bool:
        with self._lock:
            stored = self._instances.get(instance.id)
            if expected_version is None:
                if stored is not None:
                    return False
            elif stored is None or stored.version != expected_version:
                return False

            instance.version = 0 if expected_version is None else expected_version + 1
            instance.updated_at = datetime.now(UTC)
            self._instances[instance.id] = _copy(instance)

            report = self._reports.get(instance.request_id)
            if report is not None:
                if report_status is not None:
                    report.status = report_status
                if report_decision is not None:
                    report.upsert_decision(report_decision)
                for field, value in (report_fields or {}).items():
                    setattr(report, field, value)
                if expense_status is not None:
                    for expense in self._expenses.values():
                        if expense.report_id == report.id:
                            expense.status = expense_status
            return True

    # ----- in-app notifications -----

    def add_notification(self, notification: InAppNotification) -> InAppNotification:
        with self._lock:
            self._notifications[notification.id] = _copy(notification)
        return notification

    def list_notifications(self, user_id: str) -> list[InAppNotification]:
        return [_copy(n) for n in self._notifications.values() if n.user_id == user_id]

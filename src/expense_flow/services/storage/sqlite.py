"""
SQLite-based persistence for single-instance deployments.

Each entity is stored as a JSON document next to the columns needed for
filtering (company, owner, report, dates, version). Approval transitions are
written inside a single ``BEGIN IMMEDIATE`` transaction guarded by the
instance version.
"""

import sqlite3
from datetime import datetime, UTC
from typing import Optional, Type, TypeVar

from pydantic import BaseModel

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
from ..similarity import parse_date
from .base import ExpenseStoreBase

M = TypeVar("M", bound=BaseModel)

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        company_id TEXT NOT NULL,
        status TEXT NOT NULL,
        data TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_users_company ON users(company_id)",
    """
    CREATE TABLE IF NOT EXISTS roles (
        id TEXT PRIMARY KEY,
        company_id TEXT NOT NULL,
        data TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS departments (
        id TEXT PRIMARY KEY,
        company_id TEXT NOT NULL,
        data TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS projects (
        id TEXT PRIMARY KEY,
        company_id TEXT NOT NULL,
        data TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS cost_centres (
        id TEXT PRIMARY KEY,
        company_id TEXT NOT NULL,
        data TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS expenses (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        report_id TEXT,
        expense_date TEXT,
        invoice_date TEXT,
        data TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_expenses_user ON expenses(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_expenses_report ON expenses(report_id)",
    "CREATE INDEX IF NOT EXISTS idx_expenses_expense_date ON expenses(expense_date)",
    "CREATE INDEX IF NOT EXISTS idx_expenses_invoice_date ON expenses(invoice_date)",
    """
    CREATE TABLE IF NOT EXISTS reports (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        data TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_reports_user ON reports(user_id)",
    """
    CREATE TABLE IF NOT EXISTS matrices (
        id TEXT PRIMARY KEY,
        company_id TEXT NOT NULL,
        is_active INTEGER NOT NULL DEFAULT 1,
        data TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS instances (
        id TEXT PRIMARY KEY,
        company_id TEXT NOT NULL,
        request_id TEXT NOT NULL UNIQUE,
        status TEXT NOT NULL,
        version INTEGER NOT NULL DEFAULT 0,
        data TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_instances_company_status ON instances(company_id, status)",
    """
    CREATE TABLE IF NOT EXISTS notifications (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        data TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications(user_id)",
]


def _date_key(value) -> Optional[str]:
    """UTC timestamp text that sorts lexicographically in time order"""
    dt = parse_date(value)
    if dt is None:
        return None
    return dt.strftime("%Y-%m-%dT%H:%M:%S.%f")


class SQLiteExpenseStore(ExpenseStoreBase):
    """
    SQLite-backed store with persistent storage.

    Features:
    - Persistent storage across application restarts
    - Indexed company / owner / date lookups
    - Optimistic-concurrency guard on approval instances
    """

    def __init__(self, db_path: str = "expense_flow.db"):
        """
        Initialize store with database path.

        Args:
            db_path: Path to SQLite database file (default: expense_flow.db)
        """
        self.db_path = db_path
        self._init_database()

    def _init_database(self):
        """Create tables if they don't exist"""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()
        for statement in _SCHEMA:
            cursor.execute(statement)
        conn.commit()
        conn.close()

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection with row factory"""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _upsert(self, table: str, model: BaseModel, **columns):
        names = ["id", *columns.keys(), "data"]
        values = [model.id, *columns.values(), model.model_dump_json()]
        placeholders = ", ".join("?" for _ in names)
        updates = ", ".join(f"{n} = excluded.{n}" for n in names if n != "id")

        conn = self._get_connection()
        conn.execute(
            f"INSERT INTO {table} ({', '.join(names)}) VALUES ({placeholders}) "
            f"ON CONFLICT(id) DO UPDATE SET {updates}",
            values,
        )
        conn.commit()
        conn.close()

    def _fetch_one(self, cls: Type[M], sql: str, params: tuple) -> Optional[M]:
        conn = self._get_connection()
        row = conn.execute(sql, params).fetchone()
        conn.close()
        if row is None:
            return None
        return cls.model_validate_json(row["data"])

    def _fetch_all(self, cls: Type[M], sql: str, params: tuple = ()) -> list[M]:
        conn = self._get_connection()
        rows = conn.execute(sql, params).fetchall()
        conn.close()
        return [cls.model_validate_json(row["data"]) for row in rows]

    # ----- directory -----

    def add_user(self, user: User) -> User:
        self._upsert("users", user, company_id=user.company_id, status=user.status.value)
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        return self._fetch_one(User, "SELECT data FROM users WHERE id = ?", (user_id,))

    def list_users(self, company_id: str, active_only: bool = False) -> list[User]:
        sql = "SELECT data FROM users WHERE company_id = ?"
        if active_only:
            sql += " AND status = 'ACTIVE'"
        return self._fetch_all(User, sql + " ORDER BY rowid", (company_id,))

    def add_role(self, role: Role) -> Role:
        self._upsert("roles", role, company_id=role.company_id)
        return role

    def list_roles(self, company_id: str) -> list[Role]:
        return self._fetch_all(Role, "SELECT data FROM roles WHERE company_id = ? ORDER BY rowid", (company_id,))

    def add_department(self, department: Department) -> Department:
        self._upsert("departments", department, company_id=department.company_id)
        return department

    def list_departments(self, company_id: str) -> list[Department]:
        return self._fetch_all(
            Department, "SELECT data FROM departments WHERE company_id = ? ORDER BY rowid", (company_id,)
        )

    def add_project(self, project: Project) -> Project:
        self._upsert("projects", project, company_id=project.company_id)
        return project

    def list_projects(self, company_id: str) -> list[Project]:
        return self._fetch_all(
            Project, "SELECT data FROM projects WHERE company_id = ? ORDER BY rowid", (company_id,)
        )

    def add_cost_centre(self, cost_centre: CostCentre) -> CostCentre:
        self._upsert("cost_centres", cost_centre, company_id=cost_centre.company_id)
        return cost_centre

    def list_cost_centres(self, company_id: str) -> list[CostCentre]:
        return self._fetch_all(
            CostCentre, "SELECT data FROM cost_centres WHERE company_id = ? ORDER BY rowid", (company_id,)
        )

    # ----- expenses -----

    def _expense_columns(self, expense: Expense) -> dict:
        return {
            "user_id": expense.user_id,
            "report_id": expense.report_id,
            "expense_date": _date_key(expense.expense_date),
            "invoice_date": _date_key(expense.invoice_date),
        }

    def add_expense(self, expense: Expense) -> Expense:
        self._upsert("expenses", expense, **self._expense_columns(expense))
        return expense

    def get_expense(self, expense_id: str) -> Optional[Expense]:
        return self._fetch_one(Expense, "SELECT data FROM expenses WHERE id = ?", (expense_id,))

    def list_expenses_for_report(self, report_id: str) -> list[Expense]:
        return self._fetch_all(
            Expense, "SELECT data FROM expenses WHERE report_id = ? ORDER BY rowid", (report_id,)
        )

    def list_expenses_for_users(self, user_ids: list[str]) -> list[Expense]:
        if not user_ids:
            return []
        marks = ", ".join("?" for _ in user_ids)
        return self._fetch_all(
            Expense, f"SELECT data FROM expenses WHERE user_id IN ({marks}) ORDER BY rowid", tuple(user_ids)
        )

    def find_expenses_in_window(
        self,
        user_ids: list[str],
        start: datetime,
        end: datetime,
        exclude_id: Optional[str] = None,
    ) -> list[Expense]:
        if not user_ids:
            return []
        marks = ", ".join("?" for _ in user_ids)
        lo, hi = _date_key(start), _date_key(end)
        return self._fetch_all(
            Expense,
            f"""
            SELECT data FROM expenses
            WHERE user_id IN ({marks})
              AND id != ?
              AND ((expense_date >= ? AND expense_date < ?)
                   OR (invoice_date >= ? AND invoice_date < ?))
            ORDER BY rowid
            """,
            (*user_ids, exclude_id or "", lo, hi, lo, hi),
        )

    def _load_expense_for_update(self, conn: sqlite3.Connection, expense_id: str) -> Optional[Expense]:
        row = conn.execute("SELECT data FROM expenses WHERE id = ?", (expense_id,)).fetchone()
        if row is None:
            return None
        return Expense.model_validate_json(row["data"])

    def set_duplicate_flag(
        self, expense_id: str, flag: Optional[DuplicateFlag], reason: Optional[str]
    ) -> bool:
        # read-modify-write under one write lock; a concurrent transition cannot interleave
        conn = sqlite3.connect(self.db_path, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("BEGIN IMMEDIATE")
            expense = self._load_expense_for_update(conn, expense_id)
            if expense is None:
                conn.execute("ROLLBACK")
                return False
            expense.duplicate_flag = flag
            expense.duplicate_reason = reason if flag is not None else None
            conn.execute("UPDATE expenses SET data = ? WHERE id = ?", (expense.model_dump_json(), expense_id))
            conn.execute("COMMIT")
        except Exception:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()
        return True

    # ----- reports -----

    def add_report(self, report: ExpenseReport) -> ExpenseReport:
        self._upsert("reports", report, user_id=report.user_id)
        return report

    def get_report(self, report_id: str) -> Optional[ExpenseReport]:
        return self._fetch_one(ExpenseReport, "SELECT data FROM reports WHERE id = ?", (report_id,))

    def save_report(self, report: ExpenseReport) -> bool:
        conn = self._get_connection()
        cursor = conn.execute(
            "UPDATE reports SET data = ? WHERE id = ?", (report.model_dump_json(), report.id)
        )
        rows_affected = cursor.rowcount
        conn.commit()
        conn.close()
        return rows_affected > 0

    def list_reports_for_users(self, user_ids: list[str]) -> list[ExpenseReport]:
        if not user_ids:
            return []
        marks = ", ".join("?" for _ in user_ids)
        return self._fetch_all(
            ExpenseReport, f"SELECT data FROM reports WHERE user_id IN ({marks}) ORDER BY rowid", tuple(user_ids)
        )

    # ----- approval matrix / instances -----

    def save_matrix(self, matrix: ApprovalMatrix) -> ApprovalMatrix:
        self._upsert("matrices", matrix, company_id=matrix.company_id, is_active=int(matrix.is_active))
        return matrix

    def get_matrix(self, matrix_id: str) -> Optional[ApprovalMatrix]:
        return self._fetch_one(ApprovalMatrix, "SELECT data FROM matrices WHERE id = ?", (matrix_id,))

    def get_active_matrix(self, company_id: str) -> Optional[ApprovalMatrix]:
        return self._fetch_one(
            ApprovalMatrix,
            "SELECT data FROM matrices WHERE company_id = ? AND is_active = 1 ORDER BY rowid LIMIT 1",
            (company_id,),
        )

    def get_instance(self, instance_id: str) -> Optional[ApprovalInstance]:
        return self._fetch_one(ApprovalInstance, "SELECT data FROM instances WHERE id = ?", (instance_id,))

    def get_instance_for_request(self, request_id: str) -> Optional[ApprovalInstance]:
        return self._fetch_one(
            ApprovalInstance, "SELECT data FROM instances WHERE request_id = ?", (request_id,)
        )

    def list_instances(self, company_id: str, status: Optional[str] = None) -> list[ApprovalInstance]:
        if status is None:
            return self._fetch_all(
                ApprovalInstance,
                "SELECT data FROM instances WHERE company_id = ? ORDER BY rowid",
                (company_id,),
            )
        return self._fetch_all(
            ApprovalInstance,
            "SELECT data FROM instances WHERE company_id = ? AND status = ? ORDER BY rowid",
            (company_id, str(getattr(status, "value", status))),
        )

    def apply_transition(
        self,
        instance: ApprovalInstance,
        expected_version: Optional[int],
        report_status: Optional[str] = None,
        report_decision: Optional[ApproverDecision] = None,
        report_fields: Optional[dict] = None,
        expense_status: Optional[ExpenseStatus] = None,
    ) -> bool:
        new_version = 0 if expected_version is None else expected_version + 1
        staged = instance.model_copy(deep=True)
        staged.version = new_version
        staged.updated_at = datetime.now(UTC)

        conn = sqlite3.connect(self.db_path, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("BEGIN IMMEDIATE")

            if expected_version is None:
                cursor = conn.execute(
                    "INSERT OR IGNORE INTO instances (id, company_id, request_id, status, version, data) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (staged.id, staged.company_id, staged.request_id, staged.status.value,
                     new_version, staged.model_dump_json()),
                )
            else:
                cursor = conn.execute(
                    "UPDATE instances SET status = ?, version = ?, data = ? WHERE id = ? AND version = ?",
                    (staged.status.value, new_version, staged.model_dump_json(), staged.id, expected_version),
                )
            if cursor.rowcount != 1:
                conn.execute("ROLLBACK")
                return False

            row = conn.execute("SELECT data FROM reports WHERE id = ?", (staged.request_id,)).fetchone()
            if row is not None:
                report = ExpenseReport.model_validate_json(row["data"])
                if report_status is not None:
                    report.status = report_status
                if report_decision is not None:
                    report.upsert_decision(report_decision)
                for field, value in (report_fields or {}).items():
                    setattr(report, field, value)
                conn.execute("UPDATE reports SET data = ? WHERE id = ?", (report.model_dump_json(), report.id))

                if expense_status is not None:
                    rows = conn.execute(
                        "SELECT data FROM expenses WHERE report_id = ?", (report.id,)
                    ).fetchall()
                    for expense_row in rows:
                        expense = Expense.model_validate_json(expense_row["data"])
                        expense.status = expense_status
                        conn.execute(
                            "UPDATE expenses SET data = ? WHERE id = ?", (expense.model_dump_json(), expense.id)
                        )

            conn.execute("COMMIT")
        except Exception:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

        instance.version = staged.version
        instance.updated_at = staged.updated_at
        return True

    # ----- in-app notifications -----

    def add_notification(self, notification: InAppNotification) -> InAppNotification:
        self._upsert("notifications", notification, user_id=notification.user_id)
        return notification

    def list_notifications(self, user_id: str) -> list[InAppNotification]:
        return self._fetch_all(
            InAppNotification, "SELECT data FROM notifications WHERE user_id = ? ORDER BY rowid", (user_id,)
        )

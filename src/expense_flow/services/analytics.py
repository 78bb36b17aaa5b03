"""
Read-only dashboard aggregations over committed reports and expenses.

Spend always means APPROVED report totals converted to INR. Unlike the
advisory paths (duplicate checks, notifications), a failing query is raised
to the caller as AggregationError.
"""

from datetime import datetime, UTC
from functools import wraps
from typing import Optional

from loguru import logger

from ..core.errors import AggregationError
from ..models import ExpenseReport, ExpenseStatus, ReportStatus, is_pending_status
from .currency import CurrencyService
from .similarity import parse_date
from .storage import ExpenseStoreBase

CATEGORY_STATUSES = {ExpenseStatus.PENDING, ExpenseStatus.SUBMITTED, ExpenseStatus.APPROVED}


def aggregation(query: str):
    """Log and wrap any failure of an aggregation method in AggregationError"""

    def decorator(fn):
        @wraps(fn)
        def wrapper(self, company_id: str, *args, **kwargs):
            try:
                return fn(self, company_id, *args, **kwargs)
            except AggregationError:
                raise
            except Exception as exc:
                logger.exception("Aggregation failed", query=query, company_id=company_id)
                raise AggregationError(query, company_id, f"{query} failed: {exc}") from exc

        return wrapper

    return decorator


def _in_range(value: Optional[datetime], from_date: Optional[datetime], to_date: Optional[datetime]) -> bool:
    if from_date is None and to_date is None:
        return True
    if value is None:
        return False
    value = parse_date(value)
    if from_date is not None and value < parse_date(from_date):
        return False
    if to_date is not None and value > parse_date(to_date):
        return False
    return True


def _month_start(year: int, month: int) -> datetime:
    # month may run past 12 or below 1
    year += (month - 1) // 12
    month = (month - 1) % 12 + 1
    return datetime(year, month, 1, tzinfo=UTC)


class AnalyticsService:
    def __init__(self, store: ExpenseStoreBase, currency: CurrencyService):
        self.store = store
        self.currency = currency

    def _company_user_ids(self, company_id: str) -> list[str]:
        return [u.id for u in self.store.list_users(company_id)]

    def _approved_reports(
        self,
        user_ids: list[str],
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
    ) -> list[ExpenseReport]:
        if not user_ids:
            return []
        return [
            r
            for r in self.store.list_reports_for_users(user_ids)
            if r.status == ReportStatus.APPROVED.value and _in_range(r.approved_at, from_date, to_date)
        ]

    def _spend(self, reports: list[ExpenseReport]) -> float:
        return sum(self.currency.convert_to_inr(r.total_amount or 0, r.currency or "INR") for r in reports)

    @aggregation("dashboard_summary")
    def get_dashboard_summary(
        self,
        company_id: str,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
    ) -> dict:
        user_ids = self._company_user_ids(company_id)
        if not user_ids:
            return {
                "total_spend": 0.0,
                "total_reports": 0,
                "total_expenses": 0,
                "pending_reports": 0,
                "approved_reports": 0,
                "total_users": 0,
                "flagged_duplicates": 0,
            }

        reports = self.store.list_reports_for_users(user_ids)
        expenses = self.store.list_expenses_for_users(user_ids)
        approved = self._approved_reports(user_ids, from_date, to_date)

        return {
            "total_spend": self._spend(approved),
            "total_reports": len(reports),
            "total_expenses": len(expenses),
            "pending_reports": sum(
                1 for r in reports if r.status == ReportStatus.SUBMITTED.value or is_pending_status(r.status)
            ),
            "approved_reports": len(approved),
            "total_users": len(self.store.list_users(company_id, active_only=True)),
            "flagged_duplicates": sum(1 for e in expenses if e.duplicate_flag is not None),
        }

    @aggregation("department_wise_expenses")
    def get_department_wise_expenses(
        self,
        company_id: str,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
    ) -> list[dict]:
        active_users = self.store.list_users(company_id, active_only=True)
        rows = []
        for dept in self.store.list_departments(company_id):
            user_ids = [u.id for u in active_users if u.department_id == dept.id]
            if not user_ids:
                continue
            reports = self._approved_reports(user_ids, from_date, to_date)
            rows.append({
                "department_id": dept.id,
                "department_name": dept.name,
                "total_spend": self._spend(reports),
                "report_count": len(reports),
            })
        return sorted(rows, key=lambda r: r["total_spend"], reverse=True)

    def _budget_rows(self, key: str, units, reports: list[ExpenseReport]) -> list[dict]:
        rows = []
        for unit in units:
            if unit.status != "ACTIVE":
                continue
            matched = [r for r in reports if getattr(r, f"{key}_id") == unit.id]
            budget = unit.budget or 0
            spent = unit.spent_amount or 0
            rows.append({
                f"{key}_id": unit.id,
                f"{key}_name": unit.name,
                f"{key}_code": unit.code,
                "total_spend": self._spend(matched),
                "budget": budget,
                "spent_amount": spent,
                "budget_utilization": (spent / budget) * 100 if budget > 0 else 0.0,
                "report_count": len(matched),
            })
        return sorted(rows, key=lambda r: r["total_spend"], reverse=True)

    @aggregation("project_wise_expenses")
    def get_project_wise_expenses(
        self,
        company_id: str,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
    ) -> list[dict]:
        reports = self._approved_reports(self._company_user_ids(company_id), from_date, to_date)
        return self._budget_rows("project", self.store.list_projects(company_id), reports)

    @aggregation("cost_centre_wise_expenses")
    def get_cost_centre_wise_expenses(
        self,
        company_id: str,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
    ) -> list[dict]:
        reports = self._approved_reports(self._company_user_ids(company_id), from_date, to_date)
        return self._budget_rows("cost_centre", self.store.list_cost_centres(company_id), reports)

    @aggregation("category_wise_expenses")
    def get_category_wise_expenses(
        self,
        company_id: str,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
    ) -> list[dict]:
        """Expense-level rollup by category; the date filter applies to expense_date"""
        user_ids = self._company_user_ids(company_id)
        if not user_ids:
            return []

        categories: dict[str, dict] = {}
        for expense in self.store.list_expenses_for_users(user_ids):
            if not expense.category_id or expense.status not in CATEGORY_STATUSES:
                continue
            if not _in_range(expense.expense_date, from_date, to_date):
                continue
            entry = categories.setdefault(expense.category_id, {
                "category_id": expense.category_id,
                "category_name": expense.category_name or "Unknown",
                "total_spend": 0.0,
                "expense_count": 0,
            })
            entry["expense_count"] += 1
            entry["total_spend"] += self.currency.convert_to_inr(expense.amount or 0, expense.currency or "INR")

        return sorted(categories.values(), key=lambda r: r["total_spend"], reverse=True)

    @aggregation("monthly_trends")
    def get_monthly_trends(self, company_id: str, months: int = 12, now: Optional[datetime] = None) -> list[dict]:
        """One row per calendar month (UTC), oldest first, ending with the month of ``now``"""
        user_ids = self._company_user_ids(company_id)
        if not user_ids:
            return []

        now = parse_date(now) if now is not None else datetime.now(UTC)
        approved = self._approved_reports(user_ids)

        trends = []
        for offset in range(months - 1, -1, -1):
            start = _month_start(now.year, now.month - offset)
            end = _month_start(now.year, now.month - offset + 1)
            in_month = [r for r in approved if r.approved_at is not None and start <= parse_date(r.approved_at) < end]
            trends.append({
                "month": start.strftime("%Y-%m"),
                "month_name": start.strftime("%b %Y"),
                "total_spend": self._spend(in_month),
                "report_count": len(in_month),
            })
        return trends

from datetime import datetime, UTC
from unittest.mock import Mock

import pytest

from expense_flow.core.errors import AggregationError
from expense_flow.models import (
    CostCentre,
    Department,
    DuplicateFlag,
    Expense,
    ExpenseReport,
    ExpenseStatus,
    Project,
    User,
    UserStatus,
)
from expense_flow.services.analytics import AnalyticsService
from expense_flow.services.currency import CurrencyService

RATES = {"USD": 1.0, "INR": 80.0, "EUR": 0.8}


@pytest.fixture
def analytics(store):
    return AnalyticsService(store, CurrencyService(rates=RATES))


@pytest.fixture
def seeded(store, company):
    sales = store.add_department(Department(id="d-sales", company_id=company.id, name="Sales"))
    ops = store.add_department(Department(id="d-ops", company_id=company.id, name="Ops"))
    store.add_department(Department(id="d-empty", company_id=company.id, name="Empty"))
    store.add_user(company.employee.model_copy(update={"department_id": sales.id}))
    store.add_user(company.manager.model_copy(update={"department_id": ops.id}))

    project = store.add_project(Project(id="p-1", company_id=company.id, name="Apollo", code="APL", budget=10000, spent_amount=2500))
    store.add_project(Project(id="p-2", company_id=company.id, name="Closed", status="INACTIVE"))
    centre = store.add_cost_centre(CostCentre(id="cc-1", company_id=company.id, name="HQ", budget=0))

    def approved(report_id, user_id, amount, currency, when, **fields):
        return store.add_report(ExpenseReport(
            id=report_id, user_id=user_id, name=report_id, status="APPROVED",
            total_amount=amount, currency=currency, approved_at=when, **fields,
        ))

    approved("r-jan", company.employee.id, 1000, "INR", datetime(2025, 1, 15, tzinfo=UTC), project_id=project.id)
    approved("r-feb", company.employee.id, 10, "USD", datetime(2025, 2, 3, tzinfo=UTC), cost_centre_id=centre.id)
    approved("r-mar", company.manager.id, 100, "EUR", datetime(2025, 3, 20, tzinfo=UTC), project_id=project.id)
    store.add_report(ExpenseReport(id="r-pending", user_id=company.employee.id, name="p", status="PENDING_APPROVAL_L2", total_amount=999))
    store.add_report(ExpenseReport(id="r-sub", user_id=company.manager.id, name="s", status="SUBMITTED", total_amount=5))
    store.add_report(ExpenseReport(id="r-draft", user_id=company.manager.id, name="d", total_amount=None, currency=None))

    store.add_expense(Expense(user_id=company.employee.id, vendor="Uber", amount=300, category_id="cat-travel",
                              category_name="Travel", status=ExpenseStatus.APPROVED,
                              expense_date=datetime(2025, 1, 10, tzinfo=UTC)))
    store.add_expense(Expense(user_id=company.manager.id, vendor="Ola", amount=5, currency="USD", category_id="cat-travel",
                              category_name="Travel", status=ExpenseStatus.PENDING,
                              expense_date=datetime(2025, 2, 10, tzinfo=UTC)))
    store.add_expense(Expense(user_id=company.employee.id, vendor="Cafe", amount=50, category_id="cat-food",
                              category_name="Meals", status=ExpenseStatus.SUBMITTED,
                              expense_date=datetime(2025, 3, 1, tzinfo=UTC),
                              duplicate_flag=DuplicateFlag.POTENTIAL_DUPLICATE))
    store.add_expense(Expense(user_id=company.employee.id, vendor="Bar", amount=70, category_id="cat-food",
                              status=ExpenseStatus.REJECTED, expense_date=datetime(2025, 3, 1, tzinfo=UTC)))
    return company


def test_dashboard_summary(analytics, seeded):
    summary = analytics.get_dashboard_summary(seeded.id)

    # 1000 INR + 10 USD (800) + 100 EUR (10000)
    assert summary["total_spend"] == pytest.approx(11800.0)
    assert summary["total_reports"] == 6
    assert summary["total_expenses"] == 4
    assert summary["pending_reports"] == 2
    assert summary["approved_reports"] == 3
    assert summary["total_users"] == 4
    assert summary["flagged_duplicates"] == 1


def test_dashboard_summary_date_filter_on_approved_at(analytics, seeded):
    summary = analytics.get_dashboard_summary(
        seeded.id, from_date=datetime(2025, 2, 1, tzinfo=UTC), to_date=datetime(2025, 2, 28, tzinfo=UTC),
    )

    assert summary["approved_reports"] == 1
    assert summary["total_spend"] == pytest.approx(800.0)


def test_dashboard_summary_unknown_company(analytics):
    summary = analytics.get_dashboard_summary("nobody")
    assert summary["total_spend"] == 0.0
    assert summary["total_users"] == 0


def test_department_rollup_sorted_by_spend(analytics, seeded):
    rows = analytics.get_department_wise_expenses(seeded.id)

    assert [r["department_name"] for r in rows] == ["Ops", "Sales"]
    assert rows[0]["total_spend"] == pytest.approx(10000.0)
    assert rows[1]["report_count"] == 2


def test_inactive_users_leave_department_rollup(store, analytics, seeded):
    store.add_user(seeded.manager.model_copy(update={"department_id": "d-ops", "status": UserStatus.INACTIVE}))

    assert [r["department_name"] for r in analytics.get_department_wise_expenses(seeded.id)] == ["Sales"]


def test_project_rollup_with_budget_utilisation(analytics, seeded):
    [row] = analytics.get_project_wise_expenses(seeded.id)

    assert row["project_name"] == "Apollo"
    assert row["project_code"] == "APL"
    assert row["total_spend"] == pytest.approx(11000.0)
    assert row["budget_utilization"] == pytest.approx(25.0)
    assert row["report_count"] == 2


def test_cost_centre_rollup_zero_budget(analytics, seeded):
    [row] = analytics.get_cost_centre_wise_expenses(seeded.id)

    assert row["total_spend"] == pytest.approx(800.0)
    assert row["budget_utilization"] == 0.0


def test_category_rollup_converts_each_expense(analytics, seeded):
    rows = analytics.get_category_wise_expenses(seeded.id)

    assert [(r["category_id"], r["expense_count"]) for r in rows] == [("cat-travel", 2), ("cat-food", 1)]
    assert rows[0]["total_spend"] == pytest.approx(700.0)
    assert rows[1]["category_name"] == "Meals"


def test_monthly_trends_oldest_first(analytics, seeded):
    trends = analytics.get_monthly_trends(seeded.id, months=4, now=datetime(2025, 3, 31, tzinfo=UTC))

    assert [t["month"] for t in trends] == ["2024-12", "2025-01", "2025-02", "2025-03"]
    assert [t["report_count"] for t in trends] == [0, 1, 1, 1]
    assert trends[1]["total_spend"] == pytest.approx(1000.0)
    assert trends[3]["month_name"] == "Mar 2025"


def test_failures_raise_aggregation_error():
    broken = Mock()
    broken.list_users.side_effect = RuntimeError("connection reset")
    analytics = AnalyticsService(broken, CurrencyService(rates=RATES))

    with pytest.raises(AggregationError) as exc:
        analytics.get_dashboard_summary("company-1")

    assert exc.value.query == "dashboard_summary"
    assert exc.value.company_id == "company-1"
    assert isinstance(exc.value.__cause__, RuntimeError)

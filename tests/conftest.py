"""
Pytest configuration and shared fixtures.

Registers the integration marker/option and builds a small seeded company:
an employee, two managers, a finance approver and a two-level matrix.
"""

from datetime import datetime, UTC
from types import SimpleNamespace
from unittest.mock import Mock

import pytest

from expense_flow.models import (
    ApprovalLevelConfig,
    ApprovalMatrix,
    Expense,
    ExpenseReport,
    Role,
    User,
)
from expense_flow.services.approval_workflow import ApprovalWorkflowService
from expense_flow.services.duplicate_detection import DuplicateDetectionService
from expense_flow.services.notifications.queue import NotificationQueue
from expense_flow.services.role_resolver import ApprovalRoleResolver
from expense_flow.services.storage import InMemoryExpenseStore


def pytest_addoption(parser):
    """Add custom command-line options"""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests against real HTTP endpoints"
    )


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test requiring network access"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --run-integration is specified"""
    if config.getoption("--run-integration"):
        return

    skip_integration = pytest.mark.skip(reason="need --run-integration option to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


COMPANY_ID = "company-1"


@pytest.fixture
def store():
    return InMemoryExpenseStore()


@pytest.fixture
def company(store):
    """Seed users, roles and a two-level matrix (manager -> finance)"""
    manager_role = store.add_role(Role(id="role-manager", company_id=COMPANY_ID, name="Manager", type="MANAGER"))
    finance_role = store.add_role(Role(id="role-finance", company_id=COMPANY_ID, name="Finance", type="ACCOUNTANT"))

    employee = store.add_user(User(id="emp-1", company_id=COMPANY_ID, name="Asha Rao", email="asha@example.com"))
    manager = store.add_user(User(
        id="mgr-1", company_id=COMPANY_ID, name="Vikram Shah", email="vikram@example.com",
        role_ids=[manager_role.id],
    ))
    manager2 = store.add_user(User(
        id="mgr-2", company_id=COMPANY_ID, name="Meera Iyer", email="meera@example.com",
        role_ids=[manager_role.id],
    ))
    finance = store.add_user(User(
        id="fin-1", company_id=COMPANY_ID, name="Rahul Nair", email="rahul@example.com",
        role_ids=[finance_role.id],
    ))

    matrix = store.save_matrix(ApprovalMatrix(
        id="matrix-1",
        company_id=COMPANY_ID,
        name="Default",
        levels=[
            ApprovalLevelConfig(level_number=1, approver_role_ids=[manager_role.id]),
            ApprovalLevelConfig(level_number=2, approver_role_ids=[finance_role.id]),
        ],
    ))

    return SimpleNamespace(
        id=COMPANY_ID,
        employee=employee,
        manager=manager,
        manager2=manager2,
        finance=finance,
        manager_role=manager_role,
        finance_role=finance_role,
        matrix=matrix,
    )


@pytest.fixture
def report(store, company):
    """Draft report with two expenses owned by the employee"""
    report = store.add_report(ExpenseReport(
        id="report-1", user_id=company.employee.id, name="Client visit", total_amount=1500.0, currency="INR",
    ))
    for vendor, amount in (("Uber", 500.0), ("Taj Hotel", 1000.0)):
        store.add_expense(Expense(
            user_id=company.employee.id,
            report_id=report.id,
            vendor=vendor,
            amount=amount,
            expense_date=datetime(2025, 3, 10, 9, 0, tzinfo=UTC),
        ))
    return report


@pytest.fixture
def queue():
    """Mock queue that records enqueue calls"""
    q = Mock(spec=NotificationQueue)
    q.enqueue.side_effect = lambda task_type, payload: f"{getattr(task_type, 'value', task_type)}_task"
    return q


@pytest.fixture
def workflow(store, queue):
    return ApprovalWorkflowService(
        store=store,
        resolver=ApprovalRoleResolver(store),
        queue=queue,
        duplicates=DuplicateDetectionService(store),
    )

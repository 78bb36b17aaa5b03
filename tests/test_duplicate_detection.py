"""
Tests for duplicate expense detection.

Covers both entry points (pre-save draft gate and post-save reconciliation),
classification priority, candidate scoping and the fail-open behaviour.
"""

from datetime import datetime, UTC
from unittest.mock import Mock

import pytest

from expense_flow.models import DuplicateFlag, Expense, ExpenseDraft, ExpenseReport, ExpenseStatus, User
from expense_flow.services.duplicate_detection import DuplicateDetectionService, classify
from expense_flow.services.similarity import day_bounds

MARCH_10 = datetime(2025, 3, 10, 9, 0, tzinfo=UTC)
MARCH_11 = datetime(2025, 3, 11, 18, 0, tzinfo=UTC)


@pytest.fixture
def duplicates(store):
    return DuplicateDetectionService(store)


def _expense(company, **fields):
    defaults = {"user_id": company.employee.id, "vendor": "uber technologies", "amount": 100.0, "expense_date": MARCH_10}
    defaults.update(fields)
    return Expense(**defaults)


def test_potential_duplicate_vendor_amount_date(store, company, duplicates):
    """Scenario: punctuation-only vendor difference, same amount, one day apart"""
    original = store.add_expense(_expense(company))
    subject = store.add_expense(_expense(company, vendor="Uber Technologies!!", expense_date=MARCH_11))

    result = duplicates.run_duplicate_check(subject.id)

    assert result.flag == DuplicateFlag.POTENTIAL_DUPLICATE
    assert result.reason == "vendor + amount + date"
    assert result.matched_expense_id == original.id

    stored = store.get_expense(subject.id)
    assert stored.duplicate_flag == DuplicateFlag.POTENTIAL_DUPLICATE
    assert stored.duplicate_reason == "vendor + amount + date"


def test_strong_duplicate_on_invoice_id(store, company, duplicates):
    """Scenario: invoice ids equal after normalization win over everything else"""
    store.add_expense(_expense(company, invoice_id="INV-001"))
    subject = store.add_expense(_expense(
        company, vendor="Uber Technologies!!", expense_date=MARCH_11, invoice_id="inv 001",
    ))

    result = duplicates.run_duplicate_check(subject.id)

    assert result.flag == DuplicateFlag.STRONG_DUPLICATE
    assert result.reason == "invoice_id"


def test_strong_duplicate_short_circuits_earlier_potential(store, company):
    """An invoice match on a later candidate beats a potential match found first"""
    subject = _expense(company, invoice_id="A-9")
    potential = _expense(company)
    strong = _expense(company, vendor="someone else", amount=1.0, invoice_id="a9")

    result = classify(subject, [potential, strong], day_bounds(MARCH_10))

    assert result.flag == DuplicateFlag.STRONG_DUPLICATE
    assert result.matched_expense_id == strong.id


def test_first_potential_candidate_in_query_order_wins(store, company):
    subject = _expense(company)
    first = _expense(company, amount=999.0, invoice_id=None)  # vendor + date only
    second = _expense(company)
    third = _expense(company)

    result = classify(subject, [first, second, third], day_bounds(MARCH_10))

    assert result.matched_expense_id == second.id


def test_empty_vendor_is_never_flagged(store, company, duplicates):
    """Scenario: blank vendor returns no flag even with an identical expense stored"""
    store.add_expense(_expense(company, vendor=""))
    subject = store.add_expense(_expense(company, vendor=""))

    result = duplicates.run_duplicate_check(subject.id)

    assert result.flag is None
    assert result.reason is None


def test_missing_date_is_never_flagged(company, duplicates):
    draft = ExpenseDraft(user_id=company.employee.id, vendor="Uber", amount=10.0)
    assert duplicates.check_for_duplicate_before_save(draft, company.id).flag is None


def test_unparseable_date_is_never_flagged(store, company, duplicates):
    """An otherwise identical stored expense is ignored when the date cannot be read"""
    store.add_expense(_expense(company, invoice_id="INV-1"))
    draft = ExpenseDraft(
        user_id=company.employee.id, vendor="uber technologies", amount=100.0,
        expense_date="not-a-date", invoice_id="INV-1",
    )

    result = duplicates.check_for_duplicate_before_save(draft, company.id)

    assert result.flag is None
    assert result.reason is None


def test_stored_expense_never_matches_itself(store, company, duplicates):
    subject = store.add_expense(_expense(company, invoice_id="INV-1"))

    result = duplicates.check(subject, company.id)

    assert result.flag is None
    assert result.matched_expense_id is None


def test_check_is_deterministic(store, company, duplicates):
    store.add_expense(_expense(company, amount=250.0))
    store.add_expense(_expense(company, vendor="Uber Technologies!!", expense_date=MARCH_11))
    store.add_expense(_expense(company, invoice_id="X-1"))
    draft = ExpenseDraft(
        user_id=company.employee.id, vendor="Uber Technologies", amount=100.0, expense_date="2025-03-10",
    )

    first = duplicates.check(draft, company.id)
    second = duplicates.check(draft, company.id)

    assert first.flag == DuplicateFlag.POTENTIAL_DUPLICATE
    assert (second.flag, second.reason, second.matched_expense_id) == (
        first.flag, first.reason, first.matched_expense_id,
    )


def test_two_signals_are_not_enough(store, company, duplicates):
    store.add_expense(_expense(company, amount=250.0))
    subject = store.add_expense(_expense(company))

    assert duplicates.run_duplicate_check(subject.id).flag is None


def test_outside_window_is_not_a_match(store, company, duplicates):
    store.add_expense(_expense(company, expense_date=datetime(2025, 3, 7, tzinfo=UTC)))
    subject = store.add_expense(_expense(company))

    assert duplicates.run_duplicate_check(subject.id).flag is None


def test_previous_flag_is_cleared(store, company, duplicates):
    subject = store.add_expense(_expense(company))
    store.set_duplicate_flag(subject.id, DuplicateFlag.POTENTIAL_DUPLICATE, "vendor + amount + date")

    result = duplicates.run_duplicate_check(subject.id)

    assert result.flag is None
    stored = store.get_expense(subject.id)
    assert stored.duplicate_flag is None
    assert stored.duplicate_reason is None


def test_pre_save_gate_matches_post_save_semantics(store, company, duplicates):
    store.add_expense(_expense(company))
    draft = ExpenseDraft(
        user_id=company.employee.id, vendor="UBER-Technologies", amount=100.0, expense_date="2025-03-11",
    )

    result = duplicates.check_for_duplicate_before_save(draft, company.id)

    assert result.flag == DuplicateFlag.POTENTIAL_DUPLICATE
    assert result.reason == "vendor + amount + date"


def test_pre_save_gate_excludes_record_being_updated(store, company, duplicates):
    existing = store.add_expense(_expense(company))
    draft = ExpenseDraft(user_id=company.employee.id, vendor="uber technologies", amount=100.0, expense_date=MARCH_10)

    assert duplicates.check_for_duplicate_before_save(draft, company.id, exclude_id=existing.id).flag is None


def test_candidates_span_company_users_only(store, company, duplicates):
    store.add_expense(_expense(company, user_id=company.manager.id))
    outsider = store.add_user(User(id="other-1", company_id="company-2", name="Other"))
    store.add_expense(_expense(company, user_id=outsider.id, invoice_id="X-1"))
    subject = store.add_expense(_expense(company, invoice_id="X-1"))

    result = duplicates.run_duplicate_check(subject.id)

    # colleague's expense matches on three signals; the other company's invoice match is invisible
    assert result.flag == DuplicateFlag.POTENTIAL_DUPLICATE


def test_rejected_and_cancelled_candidates_are_ignored(store, company, duplicates):
    store.add_expense(_expense(company, status=ExpenseStatus.REJECTED))
    cancelled = store.add_report(ExpenseReport(user_id=company.employee.id, name="old", status="CANCELLED"))
    store.add_expense(_expense(company, report_id=cancelled.id))
    subject = store.add_expense(_expense(company))

    assert duplicates.run_duplicate_check(subject.id).flag is None


def test_draft_candidates_are_included(store, company, duplicates):
    store.add_expense(_expense(company, status=ExpenseStatus.DRAFT))
    subject = store.add_expense(_expense(company))

    assert duplicates.run_duplicate_check(subject.id).is_duplicate


def test_original_amount_is_compared_before_conversion(store, company, duplicates):
    store.add_expense(_expense(company, amount=8300.0, currency="INR", original_amount=100.0, original_currency="USD"))
    subject = store.add_expense(_expense(company, amount=8312.5, original_amount=100.0, original_currency="USD"))

    assert duplicates.run_duplicate_check(subject.id).reason == "vendor + amount + date"


def test_check_fails_open_when_store_errors(company):
    broken = Mock()
    broken.list_users.side_effect = RuntimeError("database down")
    duplicates = DuplicateDetectionService(broken)
    draft = ExpenseDraft(user_id=company.employee.id, vendor="Uber", amount=1.0, expense_date=MARCH_10)

    result = duplicates.check_for_duplicate_before_save(draft, company.id)

    assert result.flag is None


def test_run_duplicate_check_unknown_expense(duplicates):
    assert duplicates.run_duplicate_check("missing").flag is None


def test_report_batch_checks_every_expense(store, company, duplicates, report):
    store.add_expense(_expense(company, vendor="Uber", amount=500.0))

    results = duplicates.run_report_duplicate_check(report.id, company.id)

    assert len(results) == 2
    assert [r.is_duplicate for r in results] == [True, False]

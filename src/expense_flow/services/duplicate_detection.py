"""
Duplicate expense detection (flag-only; never blocks submission).

Matching signals, compared on normalized values:
- vendor (normalize_vendor)
- amount (2 decimals; pre-conversion amount preferred)
- date (invoice date, else expense date, within a UTC +/-1 day window)
- invoice_id (only when both sides carry one)

Classification:
- invoice_id match on any candidate -> STRONG_DUPLICATE
- any 3 of the 4 signals on a candidate -> POTENTIAL_DUPLICATE
"""

from typing import Optional, Union

from loguru import logger

from ..models import DuplicateCheckResult, DuplicateFlag, Expense, ExpenseDraft
from ..models.expense import EXCLUDED_FROM_MATCHING
from .similarity import (
    compute_invoice_fingerprint,
    day_bounds,
    in_window,
    normalize_amount,
    normalize_invoice_id,
    normalize_vendor,
    parse_date,
)
from .storage import ExpenseStoreBase

SIGNAL_ORDER = ("vendor", "amount", "date", "invoice_id")
MIN_SIGNALS_FOR_POTENTIAL = 3

Subject = Union[Expense, ExpenseDraft]


def _status_value(status) -> str:
    return str(getattr(status, "value", status) or "")


def _comparison_amount(item) -> float | None:
    return item.original_amount if item.original_amount is not None else item.amount


def _comparison_date(item):
    return item.invoice_date if item.invoice_date else item.expense_date


def match_signals(subject: Subject, candidate: Expense, bounds) -> dict[str, bool]:
    """Evaluate the four duplicate signals of ``candidate`` against ``subject``"""
    subject_invoice = normalize_invoice_id(subject.invoice_id)
    candidate_invoice = normalize_invoice_id(candidate.invoice_id)
    return {
        "vendor": normalize_vendor(candidate.vendor) == normalize_vendor(subject.vendor),
        "amount": normalize_amount(_comparison_amount(candidate)) == normalize_amount(_comparison_amount(subject)),
        "date": in_window(_comparison_date(candidate), bounds),
        "invoice_id": bool(subject_invoice) and bool(candidate_invoice) and subject_invoice == candidate_invoice,
    }


def classify(subject: Subject, candidates: list[Expense], bounds) -> DuplicateCheckResult:
    """
    Pure classification of ``subject`` against an ordered candidate list.

    The first invoice-id match wins outright; otherwise the first candidate
    with at least three signals sets the reason.
    """
    potential: Optional[DuplicateCheckResult] = None

    for candidate in candidates:
        if parse_date(_comparison_date(candidate)) is None:
            continue

        signals = match_signals(subject, candidate, bounds)
        if signals["invoice_id"]:
            return DuplicateCheckResult(
                flag=DuplicateFlag.STRONG_DUPLICATE,
                reason="invoice_id",
                matched_expense_id=candidate.id,
            )

        matched = [name for name in SIGNAL_ORDER if signals[name]]
        if potential is None and len(matched) >= MIN_SIGNALS_FOR_POTENTIAL:
            potential = DuplicateCheckResult(
                flag=DuplicateFlag.POTENTIAL_DUPLICATE,
                reason=" + ".join(matched[:MIN_SIGNALS_FOR_POTENTIAL]),
                matched_expense_id=candidate.id,
            )

    return potential or DuplicateCheckResult()


class DuplicateDetectionService:
    """
    Company-scoped duplicate detection for expenses.

    Used both as a pre-save gate on drafts and as post-save reconciliation on
    stored expenses; both paths share ``check`` so matching is identical.
    Detection is advisory: errors are logged and reported as "no duplicate".
    """

    def __init__(self, store: ExpenseStoreBase):
        self.store = store

    def _candidates(self, subject: Subject, company_id: Optional[str], bounds, exclude_id: Optional[str]) -> list[Expense]:
        if company_id:
            user_ids = [u.id for u in self.store.list_users(company_id)]
        elif subject.user_id:
            user_ids = [subject.user_id]
        else:
            user_ids = []

        start, end = bounds
        found = self.store.find_expenses_in_window(user_ids, start, end, exclude_id=exclude_id)

        report_status: dict[str, str] = {}
        candidates = []
        for expense in found:
            if _status_value(expense.status) in EXCLUDED_FROM_MATCHING:
                continue
            if expense.report_id:
                if expense.report_id not in report_status:
                    report = self.store.get_report(expense.report_id)
                    report_status[expense.report_id] = _status_value(report.status) if report else ""
                if report_status[expense.report_id] in EXCLUDED_FROM_MATCHING:
                    continue
            candidates.append(expense)
        return candidates

    def check(
        self,
        subject: Subject,
        company_id: Optional[str],
        exclude_id: Optional[str] = None,
    ) -> DuplicateCheckResult:
        """
        Classify ``subject`` against the company's expenses.

        Args:
            subject: Stored expense or unpersisted draft
            company_id: Company whose users' expenses are candidates
                (falls back to the subject's owner when None)
            exclude_id: Expense id to leave out; defaults to a stored subject's own id

        Returns:
            DuplicateCheckResult; flag/reason are None when nothing matched,
            when vendor or date is missing, or when the check itself failed
        """
        if exclude_id is None and isinstance(subject, Expense):
            exclude_id = subject.id

        try:
            if not normalize_vendor(subject.vendor):
                logger.debug("Duplicate check skipped: missing vendor", exclude_id=exclude_id)
                return DuplicateCheckResult()

            bounds = day_bounds(_comparison_date(subject))
            if bounds is None:
                logger.debug("Duplicate check skipped: missing or unparseable date", exclude_id=exclude_id)
                return DuplicateCheckResult()

            candidates = self._candidates(subject, company_id, bounds, exclude_id)
            return classify(subject, candidates, bounds)
        except Exception:
            logger.exception("Duplicate check failed", company_id=company_id, exclude_id=exclude_id)
            return DuplicateCheckResult()

    def check_for_duplicate_before_save(
        self,
        draft: ExpenseDraft,
        company_id: Optional[str],
        exclude_id: Optional[str] = None,
    ) -> DuplicateCheckResult:
        """Pre-save gate: classify a draft; the caller stores the flag and fingerprint with the new record"""
        result = self.check(draft, company_id, exclude_id=exclude_id)
        result.invoice_fingerprint = compute_invoice_fingerprint(
            draft.invoice_id, draft.vendor, _comparison_date(draft), _comparison_amount(draft)
        )
        if result.is_duplicate:
            logger.info(
                "Duplicate detected before save",
                company_id=company_id,
                flag=result.flag.value,
                reason=result.reason,
                matched_expense_id=result.matched_expense_id,
            )
        return result

    def run_duplicate_check(self, expense_id: str, company_id: Optional[str] = None) -> DuplicateCheckResult:
        """
        Post-save reconciliation: re-check a stored expense and write or clear its flag.

        Never raises.
        """
        try:
            expense = self.store.get_expense(expense_id)
            if expense is None:
                logger.warning("Duplicate check: expense not found", expense_id=expense_id)
                return DuplicateCheckResult()

            if company_id is None:
                owner = self.store.get_user(expense.user_id)
                company_id = owner.company_id if owner else None

            result = self.check(expense, company_id, exclude_id=expense.id)

            self.store.set_duplicate_flag(expense.id, result.flag, result.reason)
            if result.is_duplicate:
                logger.info(
                    "Duplicate detected",
                    expense_id=expense.id,
                    flag=result.flag.value,
                    reason=result.reason,
                    matched_expense_id=result.matched_expense_id,
                )
            elif expense.duplicate_flag is not None:
                logger.info("Duplicate flag cleared", expense_id=expense.id)
            else:
                logger.debug("No duplicate found", expense_id=expense.id)
            return result
        except Exception:
            logger.exception("Duplicate reconciliation failed", expense_id=expense_id)
            return DuplicateCheckResult()

    def run_report_duplicate_check(
        self, report_id: str, company_id: Optional[str] = None
    ) -> list[DuplicateCheckResult]:
        """Run ``run_duplicate_check`` sequentially for every expense in a report"""
        try:
            expenses = self.store.list_expenses_for_report(report_id)
        except Exception:
            logger.exception("Report duplicate check failed", report_id=report_id)
            return []

        results = [self.run_duplicate_check(e.id, company_id) for e in expenses]
        flagged = sum(1 for r in results if r.is_duplicate)
        logger.info("Report duplicate check finished", report_id=report_id, expenses=len(results), flagged=flagged)
        return results

from fastapi import APIRouter, Depends

from ...services.duplicate_detection import DuplicateDetectionService
from ..deps import DuplicateCheckRequest, DuplicateCheckResponse, get_duplicate_service

router = APIRouter(prefix="/expenses", tags=["expenses"])


def _response(result) -> DuplicateCheckResponse:
    return DuplicateCheckResponse(
        duplicate_flag=result.flag.value if result.flag else None,
        duplicate_reason=result.reason,
        matched_expense_id=result.matched_expense_id,
        invoice_fingerprint=result.invoice_fingerprint,
    )


@router.post("/duplicate-check", response_model=DuplicateCheckResponse)
def duplicate_check(
    req: DuplicateCheckRequest,
    duplicates: DuplicateDetectionService = Depends(get_duplicate_service),
):
    """
    Pre-save duplicate gate for an expense draft.

    Advisory only: the caller decides whether to warn the user. Never fails
    because of detection problems (those come back as "no duplicate").
    """
    result = duplicates.check_for_duplicate_before_save(req.expense, req.company_id, req.exclude_id)
    return _response(result)


@router.post("/{expense_id}/duplicate-check", response_model=DuplicateCheckResponse)
def reconcile_duplicate_flag(
    expense_id: str,
    duplicates: DuplicateDetectionService = Depends(get_duplicate_service),
):
    """Post-save reconciliation: recompute and store the flag on a saved expense"""
    return _response(duplicates.run_duplicate_check(expense_id))

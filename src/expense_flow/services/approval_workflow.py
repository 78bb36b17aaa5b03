"""
Multi-level approval state machine for expense reports.

Report lifecycle:
    DRAFT -> PENDING_APPROVAL_L1 -> ... -> PENDING_APPROVAL_Ln -> APPROVED
    any pending level -> REJECTED (terminal)
    any pending level -> CHANGES_REQUESTED -> (edit) -> resubmit at level 1

Every transition is written through ``store.apply_transition`` in one atomic,
version-guarded update. Notifications are enqueued only after that commit.
"""

import operator
from datetime import datetime, UTC
from typing import Any, Optional

from loguru import logger

from ..core.errors import ApprovalConflictError, ReasonCode, WorkflowValidationError
from ..models import (
    ApprovalCondition,
    ApprovalInstance,
    ApprovalLevelConfig,
    ApprovalMatrix,
    ApprovalStatus,
    ApproverDecision,
    ConditionAction,
    ConditionOperator,
    Decision,
    ExpenseReport,
    ExpenseStatus,
    ReportStatus,
    pending_status,
)
from .duplicate_detection import DuplicateDetectionService
from .notifications.queue import NotificationQueue, NotificationType
from .role_resolver import ApprovalRoleResolver
from .storage import ExpenseStoreBase

REPORT_REQUEST_TYPE = "EXPENSE_REPORT"

SUBMITTABLE_STATUSES = {ReportStatus.DRAFT.value, ReportStatus.CHANGES_REQUESTED.value}

_OPERATORS = {
    ConditionOperator.GT: operator.gt,
    ConditionOperator.LT: operator.lt,
    ConditionOperator.GTE: operator.ge,
    ConditionOperator.LTE: operator.le,
    ConditionOperator.EQ: operator.eq,
}


def condition_matches(condition: ApprovalCondition, amount: float) -> bool:
    return _OPERATORS[condition.operator](amount, condition.value)


def is_level_active(level: ApprovalLevelConfig, amount: float) -> bool:
    """
    Whether a level takes part in this request.

    A disabled level never does. A matching SKIP condition removes the level.
    When ACTIVATE conditions exist, at least one of them must match.
    A level without conditions is always active.
    """
    if not level.enabled:
        return False
    skips = [c for c in level.conditions if c.action == ConditionAction.SKIP]
    activates = [c for c in level.conditions if c.action == ConditionAction.ACTIVATE]
    if any(condition_matches(c, amount) for c in skips):
        return False
    if activates:
        return any(condition_matches(c, amount) for c in activates)
    return True


class ApprovalWorkflowService:
    """Submits reports and records approver decisions"""

    def __init__(
        self,
        store: ExpenseStoreBase,
        resolver: ApprovalRoleResolver,
        queue: NotificationQueue,
        duplicates: Optional[DuplicateDetectionService] = None,
    ):
        self.store = store
        self.resolver = resolver
        self.queue = queue
        self.duplicates = duplicates

    # ----- helpers -----

    @staticmethod
    def _amount(instance: ApprovalInstance) -> float:
        return float(instance.request_data.get("total_amount") or 0)

    def _matrix_for(self, instance: ApprovalInstance) -> ApprovalMatrix:
        matrix = self.store.get_matrix(instance.matrix_id)
        if matrix is None:
            raise WorkflowValidationError(
                ReasonCode.NO_ACTIVE_MATRIX,
                "Approval matrix for this instance no longer exists",
                instance_id=instance.id,
                matrix_id=instance.matrix_id,
            )
        return matrix

    def _next_active_level(
        self, instance: ApprovalInstance, matrix: ApprovalMatrix, after: int
    ) -> Optional[ApprovalLevelConfig]:
        """
        Walk levels above ``after`` and return the first active one.

        Inactive levels passed on the way get a SKIPPED history entry.
        """
        amount = self._amount(instance)
        for level in matrix.ordered_levels():
            if level.level_number <= after:
                continue
            if is_level_active(level, amount):
                return level
            instance.append_entry(
                level.level_number,
                ApprovalStatus.SKIPPED,
                comment="Level disabled" if not level.enabled else "Level conditions not met",
            )
            logger.info(
                "Approval level skipped",
                instance_id=instance.id,
                level=level.level_number,
                enabled=level.enabled,
            )
        return None

    def _resolve_approver_ids(self, level: ApprovalLevelConfig, instance: ApprovalInstance) -> list[str]:
        approvers = self.resolver.resolve(level, instance.company_id)
        if not approvers:
            logger.warning(
                "No eligible approvers at level - needs manual escalation",
                instance_id=instance.id,
                request_id=instance.request_id,
                level=level.level_number,
                company_id=instance.company_id,
            )
        return [u.id for u in approvers]

    def _payload(self, instance: ApprovalInstance, **extra: Any) -> dict:
        data = instance.request_data
        payload = {
            "instance_id": instance.id,
            "request_id": instance.request_id,
            "request_type": instance.request_type,
            "company_id": instance.company_id,
            "level": instance.current_level,
            "request_name": data.get("request_name"),
            "requester_id": data.get("requester_id"),
            "total_amount": data.get("total_amount"),
            "currency": data.get("currency"),
            "duplicate_flags": data.get("duplicate_flags"),
        }
        payload.update(extra)
        return payload

    def _notify(self, task_type: NotificationType, payload: dict) -> Optional[str]:
        """Enqueue after commit; a queue failure is logged and never reaches the caller"""
        try:
            return self.queue.enqueue(task_type, payload)
        except Exception:
            logger.exception(
                "Failed to enqueue notification",
                type=task_type.value,
                instance_id=payload.get("instance_id"),
            )
            return None

    def _commit(self, instance: ApprovalInstance, expected_version: Optional[int], **changes) -> None:
        is_report = instance.request_type == REPORT_REQUEST_TYPE
        if not is_report:
            changes = {}
        if not self.store.apply_transition(instance, expected_version, **changes):
            logger.warning(
                "Approval transition lost a concurrent update",
                instance_id=instance.id,
                expected_version=expected_version,
            )
            raise ApprovalConflictError(
                "Approval instance was modified concurrently",
                instance_id=instance.id,
                expected_version=expected_version,
            )

    def _enter_first_level(self, instance: ApprovalInstance, matrix: ApprovalMatrix) -> Optional[list[str]]:
        """
        Position a fresh or restarted instance on its first active level.

        Returns the approver ids for that level, or None when no level is
        active and the request is approved straight away.
        """
        first = self._next_active_level(instance, matrix, after=0)
        if first is None:
            instance.status = ApprovalStatus.APPROVED
            instance.current_level = max((lv.level_number for lv in matrix.levels), default=1)
            return None
        instance.status = ApprovalStatus.PENDING
        instance.current_level = first.level_number
        return self._resolve_approver_ids(first, instance)

    # ----- submission -----

    def submit_report(self, report_id: str, submitted_by: Optional[str] = None) -> ApprovalInstance:
        report = self.store.get_report(report_id)
        if report is None:
            raise WorkflowValidationError(ReasonCode.REPORT_NOT_FOUND, "Report not found", report_id=report_id)
        if report.status not in SUBMITTABLE_STATUSES:
            raise WorkflowValidationError(
                ReasonCode.INVALID_STATE,
                f"Report cannot be submitted from status {report.status}",
                report_id=report_id,
                status=report.status,
            )
        if submitted_by is not None and submitted_by != report.user_id:
            raise WorkflowValidationError(
                ReasonCode.NOT_AUTHORIZED,
                "Only the report owner can submit it",
                report_id=report_id,
                user_id=submitted_by,
            )

        owner = self.store.get_user(report.user_id)
        if owner is None:
            raise WorkflowValidationError(ReasonCode.USER_NOT_FOUND, "Report owner not found", user_id=report.user_id)

        matrix = self.store.get_active_matrix(owner.company_id)
        if matrix is None:
            raise WorkflowValidationError(
                ReasonCode.NO_ACTIVE_MATRIX,
                "No active approval matrix for company",
                company_id=owner.company_id,
            )

        if self.duplicates is not None:
            # advisory: flags are stored on the expenses, submission continues regardless
            self.duplicates.run_report_duplicate_check(report.id, owner.company_id)

        request_data = self._report_request_data(report)
        existing = self.store.get_instance_for_request(report.id)
        if existing is not None:
            instance = existing
            expected_version = existing.version
            instance.matrix_id = matrix.id
            instance.request_data = request_data
        else:
            instance = ApprovalInstance(
                company_id=owner.company_id,
                matrix_id=matrix.id,
                request_id=report.id,
                request_type=REPORT_REQUEST_TYPE,
                request_data=request_data,
            )
            expected_version = None

        approver_ids = self._enter_first_level(instance, matrix)
        now = datetime.now(UTC)

        if approver_ids is None:
            self._commit(
                instance,
                expected_version,
                report_status=ReportStatus.APPROVED.value,
                report_fields={"submitted_at": now, "approved_at": now},
                expense_status=ExpenseStatus.APPROVED,
            )
            logger.info("Report auto-approved: no active approval levels", report_id=report.id, instance_id=instance.id)
            self._notify(NotificationType.STATUS_CHANGE, self._payload(instance, status=ReportStatus.APPROVED.value))
            return instance

        self._commit(
            instance,
            expected_version,
            report_status=pending_status(instance.current_level),
            report_fields={"submitted_at": now, "approved_at": None, "rejected_at": None},
            expense_status=ExpenseStatus.SUBMITTED,
        )
        logger.info(
            "Report submitted for approval",
            report_id=report.id,
            instance_id=instance.id,
            level=instance.current_level,
            resubmission=expected_version is not None,
        )
        self._notify(
            NotificationType.APPROVAL_REQUIRED,
            self._payload(instance, approver_user_ids=approver_ids),
        )
        return instance

    def _report_request_data(self, report: ExpenseReport) -> dict:
        flagged = [
            e.duplicate_flag.value
            for e in self.store.list_expenses_for_report(report.id)
            if e.duplicate_flag is not None
        ]
        return {
            "request_name": report.name,
            "requester_id": report.user_id,
            "total_amount": report.total_amount or 0,
            "currency": report.currency or "INR",
            "duplicate_flags": len(flagged),
        }

    def initiate_approval(
        self,
        company_id: str,
        request_id: str,
        request_type: str,
        request_data: Optional[dict] = None,
    ) -> ApprovalInstance:
        """Start an approval for a request that is not an expense report"""
        matrix = self.store.get_active_matrix(company_id)
        if matrix is None:
            raise WorkflowValidationError(
                ReasonCode.NO_ACTIVE_MATRIX, "No active approval matrix for company", company_id=company_id
            )
        if self.store.get_instance_for_request(request_id) is not None:
            raise WorkflowValidationError(
                ReasonCode.INVALID_STATE, "Approval already initiated for request", request_id=request_id
            )

        instance = ApprovalInstance(
            company_id=company_id,
            matrix_id=matrix.id,
            request_id=request_id,
            request_type=request_type,
            request_data=dict(request_data or {}),
        )
        approver_ids = self._enter_first_level(instance, matrix)
        self._commit(instance, None)

        if approver_ids is None:
            self._notify(NotificationType.STATUS_CHANGE, self._payload(instance, status=ApprovalStatus.APPROVED.value))
        else:
            self._notify(NotificationType.APPROVAL_REQUIRED, self._payload(instance, approver_user_ids=approver_ids))
        logger.info("Approval initiated", instance_id=instance.id, request_id=request_id, request_type=request_type)
        return instance

    # ----- decisions -----

    def decide(
        self,
        instance_id: str,
        level_number: int,
        approver_id: str,
        decision: Decision | str,
        comment: Optional[str] = None,
    ) -> ApprovalInstance:
        """
        Record an approver's decision on the instance's current level.

        Raises:
            WorkflowValidationError: the decision is not allowed; nothing was written
            ApprovalConflictError: a concurrent decision committed first
        """
        instance = self.store.get_instance(instance_id)
        if instance is None:
            raise WorkflowValidationError(
                ReasonCode.INSTANCE_NOT_FOUND, "Approval instance not found", instance_id=instance_id
            )
        if instance.status != ApprovalStatus.PENDING:
            raise WorkflowValidationError(
                ReasonCode.INVALID_STATE,
                f"Approval instance is {instance.status.value}",
                instance_id=instance_id,
                status=instance.status.value,
            )
        if level_number != instance.current_level:
            raise WorkflowValidationError(
                ReasonCode.WRONG_LEVEL,
                f"Instance is waiting on level {instance.current_level}",
                instance_id=instance_id,
                level=level_number,
                current_level=instance.current_level,
            )
        try:
            decision = Decision(decision)
        except ValueError:
            raise WorkflowValidationError(
                ReasonCode.INVALID_DECISION, f"Unknown decision {decision!r}", instance_id=instance_id
            ) from None

        matrix = self._matrix_for(instance)
        level = matrix.level(level_number)
        if level is None:
            raise WorkflowValidationError(
                ReasonCode.LEVEL_NOT_CONFIGURED,
                "Level is not configured in the approval matrix",
                instance_id=instance_id,
                level=level_number,
            )

        # role membership may have changed since the request was routed
        if not self.resolver.is_eligible(level, instance.company_id, approver_id):
            raise WorkflowValidationError(
                ReasonCode.NOT_AUTHORIZED,
                "User is not an eligible approver for this level",
                instance_id=instance_id,
                level=level_number,
                approver_id=approver_id,
            )

        approver = self.store.get_user(approver_id)
        role_id = self.resolver.matching_role_id(level, approver) if approver else None
        expected_version = instance.version
        now = datetime.now(UTC)

        instance.append_entry(
            level_number,
            decision.resulting_status,
            approver_id=approver_id,
            role_id=role_id,
            comment=comment,
            timestamp=now,
        )
        report_decision = ApproverDecision(
            level=level_number,
            approver_id=approver_id,
            role_id=role_id,
            decision=decision.resulting_status.value,
            decided_at=now,
            comment=comment,
        )

        if decision == Decision.REJECT:
            instance.status = ApprovalStatus.REJECTED
            self._commit(
                instance,
                expected_version,
                report_status=ReportStatus.REJECTED.value,
                report_decision=report_decision,
                report_fields={"rejected_at": now},
                expense_status=ExpenseStatus.REJECTED,
            )
            task = (NotificationType.STATUS_CHANGE, self._payload(instance, status="REJECTED", comment=comment))

        elif decision == Decision.CHANGES_REQUESTED:
            instance.status = ApprovalStatus.CHANGES_REQUESTED
            self._commit(
                instance,
                expected_version,
                report_status=ReportStatus.CHANGES_REQUESTED.value,
                report_decision=report_decision,
                expense_status=ExpenseStatus.DRAFT,
            )
            task = (
                NotificationType.STATUS_CHANGE,
                self._payload(instance, status="CHANGES_REQUESTED", comment=comment),
            )

        else:
            next_level = self._next_active_level(instance, matrix, after=level_number)
            if next_level is None:
                instance.status = ApprovalStatus.APPROVED
                self._commit(
                    instance,
                    expected_version,
                    report_status=ReportStatus.APPROVED.value,
                    report_decision=report_decision,
                    report_fields={"approved_at": now},
                    expense_status=ExpenseStatus.APPROVED,
                )
                task = (NotificationType.STATUS_CHANGE, self._payload(instance, status="APPROVED", comment=comment))
            else:
                instance.current_level = next_level.level_number
                approver_ids = self._resolve_approver_ids(next_level, instance)
                self._commit(
                    instance,
                    expected_version,
                    report_status=pending_status(next_level.level_number),
                    report_decision=report_decision,
                )
                task = (
                    NotificationType.APPROVAL_REQUIRED,
                    self._payload(instance, approver_user_ids=approver_ids),
                )

        logger.info(
            "Approval decision recorded",
            instance_id=instance.id,
            level=level_number,
            approver_id=approver_id,
            decision=decision.value,
            status=instance.status.value,
            current_level=instance.current_level,
        )
        self._notify(*task)
        return instance

    # ----- queries / extras -----

    def get_pending_approvals_for_user(self, user_id: str) -> list[ApprovalInstance]:
        """
        PENDING instances whose current level this user may act on.

        Any decision on a level moves the instance off it, so a listed level
        has no decision yet in the current submission round.
        """
        user = self.store.get_user(user_id)
        if user is None or not user.is_active:
            return []

        pending = []
        matrices: dict[str, Optional[ApprovalMatrix]] = {}
        for instance in self.store.list_instances(user.company_id, status=ApprovalStatus.PENDING.value):
            if instance.matrix_id not in matrices:
                matrices[instance.matrix_id] = self.store.get_matrix(instance.matrix_id)
            matrix = matrices[instance.matrix_id]
            level = matrix.level(instance.current_level) if matrix else None
            if level is None:
                continue
            if self.resolver.is_eligible(level, instance.company_id, user_id):
                pending.append(instance)
        return pending

    def add_additional_approvers(self, report_id: str, approvers: list[dict]) -> Optional[str]:
        """
        Notify extra approvers attached to a report (e.g. by a business rule).

        Each approver is ``{"user_id": ..., "role": ..., "trigger_reason": ...}``.
        """
        report = self.store.get_report(report_id)
        if report is None:
            raise WorkflowValidationError(ReasonCode.REPORT_NOT_FOUND, "Report not found", report_id=report_id)
        approvers = [a for a in approvers if a.get("user_id")]
        if not approvers:
            return None

        owner = self.store.get_user(report.user_id)
        instance = self.store.get_instance_for_request(report_id)
        payload = {
            "instance_id": instance.id if instance else None,
            "request_id": report.id,
            "request_type": REPORT_REQUEST_TYPE,
            "company_id": owner.company_id if owner else None,
            "request_name": report.name,
            "requester_id": report.user_id,
            "approvers": approvers,
        }
        logger.info("Additional approvers added", report_id=report_id, count=len(approvers))
        return self._notify(NotificationType.ADDITIONAL_APPROVER, payload)

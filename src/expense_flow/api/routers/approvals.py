from fastapi import APIRouter, Depends, HTTPException

from ...services.approval_workflow import ApprovalWorkflowService
from ...services.notifications import get_notification_queue
from ..deps import AdditionalApproversRequest, DecisionRequest, SubmitRequest, get_workflow_service

router = APIRouter(tags=["approvals"])


@router.post("/reports/{report_id}/submit")
def submit_report(
    report_id: str,
    req: SubmitRequest | None = None,
    workflow: ApprovalWorkflowService = Depends(get_workflow_service),
):
    """Submit (or resubmit after changes were requested) a report for approval"""
    instance = workflow.submit_report(report_id, submitted_by=req.submitted_by if req else None)
    report = workflow.store.get_report(report_id)
    return {"instance": instance.model_dump(mode="json"), "report_status": report.status if report else None}


@router.post("/reports/{report_id}/additional-approvers")
def add_additional_approvers(
    report_id: str,
    req: AdditionalApproversRequest,
    workflow: ApprovalWorkflowService = Depends(get_workflow_service),
):
    task_id = workflow.add_additional_approvers(report_id, [a.model_dump() for a in req.approvers])
    return {"task_id": task_id}


@router.get("/approvals/pending")
def pending_approvals(user_id: str, workflow: ApprovalWorkflowService = Depends(get_workflow_service)):
    """Instances waiting on a level this user can decide"""
    instances = workflow.get_pending_approvals_for_user(user_id)
    return {"total": len(instances), "approvals": [i.model_dump(mode="json") for i in instances]}


@router.get("/approvals/queue/status")
async def notification_queue_status():
    return get_notification_queue().status()


@router.get("/approvals/{instance_id}")
def get_approval(instance_id: str, workflow: ApprovalWorkflowService = Depends(get_workflow_service)):
    instance = workflow.store.get_instance(instance_id)
    if not instance:
        raise HTTPException(status_code=404, detail="Approval instance not found")
    return instance.model_dump(mode="json")


@router.post("/approvals/{instance_id}/decide")
def decide(
    instance_id: str,
    req: DecisionRequest,
    workflow: ApprovalWorkflowService = Depends(get_workflow_service),
):
    """
    Record approve / reject / changes_requested on the current level.

    Rejected decisions come back as 4xx with a reason code (see main.py).
    """
    instance = workflow.decide(instance_id, req.level_number, req.approver_id, req.decision, req.comment)
    report = workflow.store.get_report(instance.request_id)
    return {"instance": instance.model_dump(mode="json"), "report_status": report.status if report else None}

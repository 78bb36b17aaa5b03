"""
Turns queued notification tasks into push, in-app, email and Teams messages.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from loguru import logger

from ...core.errors import NotificationDeliveryError
from ...models import InAppNotification
from ..storage import ExpenseStoreBase
from .queue import NotificationTask, NotificationType
from .teams import post_approval_card
from .transports import EmailSender, InAppNotificationWriter, PushSender

STATUS_TITLES = {
    "APPROVED": "Report Approved",
    "REJECTED": "Report Rejected",
    "CHANGES_REQUESTED": "Changes Requested",
}


@dataclass
class OutboundMessage:
    user_id: str
    title: str
    body: str
    inbox_type: str
    template: str
    data: dict[str, Any] = field(default_factory=dict)
    link: Optional[str] = None


class NotificationDispatcher:
    """
    Handler and fallback for NotificationQueue.

    ``handle`` writes an in-app record and sends a push to every recipient.
    Recipients reached on an earlier attempt are remembered on the task, so a
    retry only pushes to the ones that failed. ``fallback`` emails whoever is
    still unreached.
    """

    def __init__(
        self,
        store: ExpenseStoreBase,
        push: PushSender,
        email: EmailSender,
        in_app: Optional[InAppNotificationWriter] = None,
        teams_enabled: bool = False,
    ):
        self.store = store
        self.push = push
        self.email = email
        self.in_app = in_app or InAppNotificationWriter(store)
        self.teams_enabled = teams_enabled

    def _display_name(self, user_id: Optional[str], default: str = "An employee") -> str:
        if not user_id:
            return default
        user = self.store.get_user(user_id)
        if user is None:
            return default
        return user.name or user.email or default

    def compose(self, task: NotificationTask) -> list[OutboundMessage]:
        p = task.payload
        request_name = p.get("request_name") or "Unnamed Request"
        base_data = {
            "type": task.type.value,
            "instance_id": p.get("instance_id"),
            "request_id": p.get("request_id"),
            "request_type": p.get("request_type"),
            "company_id": p.get("company_id"),
        }

        if task.type == NotificationType.APPROVAL_REQUIRED:
            requester = self._display_name(p.get("requester_id"))
            level = p.get("level")
            return [
                OutboundMessage(
                    user_id=user_id,
                    title="New Approval Required",
                    body=f'Expense Report "{request_name}" submitted by {requester} requires your approval (level {level})',
                    inbox_type="REPORT_PENDING_APPROVAL",
                    template="approval_required",
                    data={**base_data, "level": str(level)},
                    link="/approvals",
                )
                for user_id in p.get("approver_user_ids", [])
            ]

        if task.type == NotificationType.STATUS_CHANGE:
            status = p.get("status", "")
            if not p.get("requester_id"):
                return []
            if status == "CHANGES_REQUESTED":
                body = f'Changes were requested on "{request_name}"'
            elif status == "APPROVED":
                body = f'Your report "{request_name}" has been approved'
            elif status == "REJECTED":
                body = f'Your report "{request_name}" has been rejected'
            else:
                body = f'"{request_name}" moved to approval level {p.get("level")}'
            if p.get("comment"):
                body += f': {p["comment"]}'
            return [
                OutboundMessage(
                    user_id=p["requester_id"],
                    title=STATUS_TITLES.get(status, "Report Updated"),
                    body=body,
                    inbox_type=f"REPORT_{status}" if status else "REPORT_UPDATED",
                    template="status_changed",
                    data={**base_data, "status": status, "level": str(p.get("level"))},
                    link=f"/reports/{p.get('request_id')}",
                )
            ]

        if task.type == NotificationType.ADDITIONAL_APPROVER:
            return [
                OutboundMessage(
                    user_id=approver["user_id"],
                    title="Additional Approval Required",
                    body=f'You were added as an approver on "{request_name}"'
                    + (f' ({approver["trigger_reason"]})' if approver.get("trigger_reason") else ""),
                    inbox_type="REPORT_PENDING_APPROVAL",
                    template="additional_approver",
                    data={**base_data, "role": approver.get("role")},
                    link="/approvals",
                )
                for approver in p.get("approvers", [])
                if approver.get("user_id")
            ]

        logger.warning("Unknown notification type", task_id=task.id, type=str(task.type))
        return []

    async def _write_inbox(self, task: NotificationTask, message: OutboundMessage) -> None:
        try:
            await self.in_app.write(
                InAppNotification(
                    user_id=message.user_id,
                    company_id=task.payload.get("company_id"),
                    type=message.inbox_type,
                    title=message.title,
                    description=message.body,
                    link=message.link,
                    metadata=message.data,
                )
            )
        except Exception as exc:
            # an inbox write failure never fails the task
            logger.warning("In-app notification write failed", task_id=task.id, user_id=message.user_id, error=str(exc))

    async def _post_teams_card(self, task: NotificationTask) -> None:
        p = task.payload
        try:
            result = await post_approval_card(
                {
                    "request_name": p.get("request_name"),
                    "requester_name": self._display_name(p.get("requester_id")),
                    "level": p.get("level"),
                    "total_amount": p.get("total_amount"),
                    "currency": p.get("currency"),
                    "duplicate_flags": p.get("duplicate_flags") or None,
                },
                p.get("instance_id", ""),
            )
            logger.info("Teams approval card posted", task_id=task.id, result=result)
        except Exception as exc:
            logger.warning("Teams approval card failed", task_id=task.id, error=str(exc))

    async def handle(self, task: NotificationTask) -> None:
        messages = self.compose(task)
        if not messages:
            logger.warning(
                "Notification has no recipients",
                task_id=task.id,
                type=task.type.value,
                request_id=task.payload.get("request_id"),
            )
            return

        delivered = set(task.payload.get("_delivered", []))
        written = set(task.payload.get("_inbox_written", []))
        failed = []

        for message in messages:
            if message.user_id in delivered:
                continue
            if message.user_id not in written:
                await self._write_inbox(task, message)
                written.add(message.user_id)
            try:
                await self.push.send(message.user_id, message.title, message.body, message.data)
                delivered.add(message.user_id)
                logger.debug("Push notification sent", task_id=task.id, user_id=message.user_id)
            except Exception as exc:
                logger.warning("Push notification failed", task_id=task.id, user_id=message.user_id, error=str(exc))
                failed.append(message.user_id)

        task.payload["_delivered"] = sorted(delivered)
        task.payload["_inbox_written"] = sorted(written)

        if (
            self.teams_enabled
            and task.type == NotificationType.APPROVAL_REQUIRED
            and not task.payload.get("_teams_posted")
        ):
            task.payload["_teams_posted"] = True
            await self._post_teams_card(task)

        if failed:
            raise NotificationDeliveryError("push", f"push failed for {len(failed)} recipient(s)", recipients=failed)

    async def fallback(self, task: NotificationTask) -> None:
        """Email every recipient the push channel never reached"""
        delivered = set(task.payload.get("_delivered", []))
        failed = []

        for message in self.compose(task):
            if message.user_id in delivered:
                continue
            user = self.store.get_user(message.user_id)
            if user is None or not user.email:
                logger.warning("Fallback email skipped: no address", task_id=task.id, user_id=message.user_id)
                continue
            try:
                await self.email.send(
                    user.email,
                    message.template,
                    {"title": message.title, "body": message.body, "link": message.link, **message.data},
                )
            except Exception as exc:
                logger.error("Fallback email failed", task_id=task.id, user_id=message.user_id, error=str(exc))
                failed.append(message.user_id)

        if failed:
            raise NotificationDeliveryError("email", f"email failed for {len(failed)} recipient(s)", recipients=failed)

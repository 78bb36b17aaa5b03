from .dispatcher import NotificationDispatcher
from .queue import NotificationQueue, NotificationTask, NotificationType
from .transports import HttpEmailSender, InAppNotificationWriter, WebhookPushSender

_default_queue: NotificationQueue | None = None


def build_notification_queue(store) -> NotificationQueue:
    """Queue wired to the configured push gateway, email API and Teams webhook"""
    from ...core.config import settings

    dispatcher = NotificationDispatcher(
        store=store,
        push=WebhookPushSender(settings.push_gateway_url, settings.push_gateway_token),
        email=HttpEmailSender(settings.email_api_url, settings.email_api_key, settings.email_from),
        teams_enabled=bool(settings.teams_webhook_url),
    )
    return NotificationQueue(
        handler=dispatcher.handle,
        fallback=dispatcher.fallback,
        max_retries=settings.notification_max_retries,
        retry_delays=settings.retry_delays(),
    )


def get_notification_queue() -> NotificationQueue:
    """
    Get the process-wide notification queue.

    Returns:
        NotificationQueue bound to the default store
    """
    global _default_queue
    if _default_queue is None:
        from ..storage import get_store

        _default_queue = build_notification_queue(get_store())
    return _default_queue


def set_notification_queue(queue: NotificationQueue | None) -> None:
    global _default_queue
    _default_queue = queue

"""
Notification transports: push gateway, email API and the in-app inbox.

Each transport can fail independently. The queue decides what a failure means;
transports just raise.
"""

from typing import Any, Optional, Protocol

import httpx
from loguru import logger

from ...models import InAppNotification
from ..storage import ExpenseStoreBase


class PushSender(Protocol):
    async def send(self, user_id: str, title: str, body: str, data: dict[str, Any]) -> dict:
        ...


class EmailSender(Protocol):
    async def send(self, to: str, template: str, data: dict[str, Any]) -> dict:
        ...


class WebhookPushSender:
    """Posts push notifications to an HTTP push gateway (FCM relay, OneSignal proxy, ...)"""

    def __init__(self, url: Optional[str], token: Optional[str] = None, timeout: float = 10):
        self.url = url
        self.token = token
        self.timeout = timeout

    async def send(self, user_id: str, title: str, body: str, data: dict[str, Any]) -> dict:
        if not self.url:
            logger.debug("Push skipped: PUSH_GATEWAY_URL not set", user_id=user_id)
            return {"status": "skipped", "reason": "PUSH_GATEWAY_URL not set"}

        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        message = {"user_id": user_id, "title": title, "body": body, "data": data}

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            r = await client.post(self.url, json=message, headers=headers)
            r.raise_for_status()
            return {"status": "sent", "http_status": r.status_code}


class HttpEmailSender:
    """Sends templated email through an HTTP email API"""

    def __init__(self, api_url: Optional[str], api_key: Optional[str] = None,
                 from_address: str = "no-reply@expense-flow.local", timeout: float = 10):
        self.api_url = api_url
        self.api_key = api_key
        self.from_address = from_address
        self.timeout = timeout

    async def send(self, to: str, template: str, data: dict[str, Any]) -> dict:
        if not self.api_url:
            logger.debug("Email skipped: EMAIL_API_URL not set", to=to, template=template)
            return {"status": "skipped", "reason": "EMAIL_API_URL not set"}

        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        message = {"from": self.from_address, "to": [to], "template": template, "data": data}

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            r = await client.post(self.api_url, json=message, headers=headers)
            r.raise_for_status()
            return {"status": "sent", "http_status": r.status_code}


class InAppNotificationWriter:
    """Writes notification inbox records through the store"""

    def __init__(self, store: ExpenseStoreBase):
        self.store = store

    async def write(self, notification: InAppNotification) -> InAppNotification:
        return self.store.add_notification(notification)

"""
In-process notification queue with retry and backoff.

Notifications are enqueued AFTER approval transitions are persisted, which means:
1. Approval records are the source of truth
2. Notification failures never block or roll back a transition
3. Failed deliveries are retried (1s, 5s, 15s by default), then sent through
   a fallback channel once and dropped
4. Every attempt and outcome is logged with the task id and type
"""

import asyncio
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, UTC
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, Optional

from loguru import logger


class NotificationType(str, Enum):
    APPROVAL_REQUIRED = "APPROVAL_REQUIRED"
    STATUS_CHANGE = "STATUS_CHANGE"
    ADDITIONAL_APPROVER = "ADDITIONAL_APPROVER"


@dataclass
class NotificationTask:
    """Ephemeral unit of notification work (never persisted)"""

    id: str
    type: NotificationType
    payload: Dict[str, Any]
    retry_count: int = 0
    max_retries: int = 3
    attempts: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_attempt: Optional[datetime] = None
    retry_delays: list = field(default_factory=list)


TaskHandler = Callable[[NotificationTask], Awaitable[None]]


class NotificationQueue:
    """
    FIFO queue drained by a single asyncio task, one notification at a time.

    A failed task is put back on the queue by a ``loop.call_later`` timer, so
    its backoff never stalls the tasks queued behind it.

    Usage:
        queue = NotificationQueue(handler=dispatcher.handle, fallback=dispatcher.fallback)
        task_id = queue.enqueue(NotificationType.STATUS_CHANGE, {...})  # returns immediately
        await queue.join()  # tests / graceful shutdown
    """

    MAX_RETRIES = 3
    RETRY_DELAYS = (1.0, 5.0, 15.0)

    def __init__(
        self,
        handler: Optional[TaskHandler] = None,
        fallback: Optional[TaskHandler] = None,
        max_retries: int = MAX_RETRIES,
        retry_delays: tuple = RETRY_DELAYS,
    ):
        self.handler = handler
        self.fallback = fallback
        self.max_retries = max_retries
        self.retry_delays = tuple(retry_delays) or (0.0,)

        self._queue: Deque[NotificationTask] = deque()
        self._processing = False
        self._scheduled: Dict[str, asyncio.TimerHandle] = {}
        self._drain_task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    # ----- producer side -----

    def enqueue(self, task_type: NotificationType | str, payload: Dict[str, Any]) -> str:
        """
        Add a notification task and return its id without waiting for delivery.

        Works from inside the event loop or from a worker thread once
        ``start()`` has bound the queue to a loop. With no loop at all the task
        waits until ``process_queue()`` is awaited.
        """
        task_type = NotificationType(task_type)
        task_id = f"{task_type.value}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"
        task = NotificationTask(
            id=task_id,
            type=task_type,
            payload=dict(payload),
            max_retries=self.max_retries,
        )
        self._queue.append(task)

        logger.info(
            "Notification task enqueued",
            task_id=task_id,
            type=task_type.value,
            queue_length=len(self._queue),
        )
        self._kick()
        return task_id

    def start(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Bind to the running loop so enqueue() from other threads can wake the drain"""
        self._loop = loop or asyncio.get_running_loop()
        self._kick()

    def _kick(self) -> None:
        if self._processing:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None:
            if self._drain_task is None or self._drain_task.done():
                self._drain_task = loop.create_task(self.process_queue())
        elif self._loop is not None and self._loop.is_running():
            self._loop.call_soon_threadsafe(self._kick)

    # ----- consumer side -----

    async def process_queue(self) -> None:
        """Drain the queue sequentially; re-entrant calls return immediately"""
        if self._processing:
            return

        self._processing = True
        try:
            while self._queue:
                task = self._queue.popleft()
                try:
                    await self._process_task(task)
                except Exception as exc:
                    await self._handle_failure(task, exc)
        finally:
            self._processing = False

    async def _process_task(self, task: NotificationTask) -> None:
        task.attempts += 1
        task.last_attempt = datetime.now(UTC)
        logger.info(
            "Processing notification task",
            task_id=task.id,
            type=task.type.value,
            retry_count=task.retry_count,
        )

        if self.handler is None:
            logger.warning("No notification handler registered, dropping task", task_id=task.id, type=task.type.value)
            return

        await self.handler(task)

        logger.info(
            "Notification task completed",
            task_id=task.id,
            type=task.type.value,
            retry_count=task.retry_count,
        )

    async def _handle_failure(self, task: NotificationTask, exc: Exception) -> None:
        logger.error(
            "Error processing notification task",
            task_id=task.id,
            type=task.type.value,
            error=str(exc),
        )

        if task.retry_count < task.max_retries:
            delay = self.retry_delays[min(task.retry_count, len(self.retry_delays) - 1)]
            if task.retry_delays:
                delay = max(delay, task.retry_delays[-1])
            task.retry_count += 1
            task.retry_delays.append(delay)

            logger.warning(
                "Scheduling notification retry",
                task_id=task.id,
                type=task.type.value,
                retry_count=task.retry_count,
                retry_delay=delay,
            )
            loop = asyncio.get_running_loop()
            self._scheduled[task.id] = loop.call_later(delay, self._requeue, task)
            return

        logger.critical(
            "Notification failed after max retries - falling back",
            task_id=task.id,
            type=task.type.value,
            retry_count=task.retry_count,
            error=str(exc),
        )
        await self._run_fallback(task)

    def _requeue(self, task: NotificationTask) -> None:
        self._scheduled.pop(task.id, None)
        self._queue.append(task)
        self._kick()

    async def _run_fallback(self, task: NotificationTask) -> None:
        if self.fallback is None:
            logger.critical("No fallback channel configured, notification dropped", task_id=task.id, type=task.type.value)
            return
        try:
            logger.warning("Attempting fallback notification", task_id=task.id, type=task.type.value)
            await self.fallback(task)
            logger.info("Fallback notification sent", task_id=task.id, type=task.type.value)
        except Exception as exc:
            logger.critical(
                "Fallback notification also failed",
                task_id=task.id,
                type=task.type.value,
                error=str(exc),
            )

    # ----- monitoring -----

    def status(self) -> dict:
        return {
            "queue_length": len(self._queue),
            "scheduled_retries": len(self._scheduled),
            "processing": self._processing,
        }

    @property
    def is_idle(self) -> bool:
        return not self._queue and not self._scheduled and not self._processing

    async def join(self, poll_interval: float = 0.01, timeout: Optional[float] = None) -> None:
        """Wait until nothing is queued, processing or waiting on a retry timer"""
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        self._kick()
        while not self.is_idle:
            if deadline is not None and loop.time() > deadline:
                raise TimeoutError(f"notification queue not idle after {timeout}s: {self.status()}")
            await asyncio.sleep(poll_interval)

    async def shutdown(self) -> None:
        """Cancel pending retry timers; queued tasks that never ran are logged and dropped"""
        for handle in self._scheduled.values():
            handle.cancel()
        dropped = len(self._scheduled) + len(self._queue)
        self._scheduled.clear()
        self._queue.clear()
        if dropped:
            logger.warning("Notification queue shut down with undelivered tasks", dropped=dropped)

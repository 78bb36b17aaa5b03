from fastapi import APIRouter

from ...core.config import settings
from ...services.notifications import get_notification_queue

router = APIRouter(tags=["health"])


@router.get("/health")
async def health():
    return {
        "status": "ok",
        "app": settings.app_name,
        "env": settings.app_env,
        "notification_queue": get_notification_queue().status(),
    }

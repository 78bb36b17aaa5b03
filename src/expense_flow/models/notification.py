from datetime import datetime, UTC
from typing import Any

from pydantic import BaseModel, Field

from .directory import new_id


class InAppNotification(BaseModel):
    """Row in a user's notification inbox"""
    id: str = Field(default_factory=new_id)
    user_id: str
    company_id: str | None = None
    type: str
    title: str
    description: str
    link: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    read: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

"""Notification Pydantic schemas."""

from typing import Optional

from pydantic import BaseModel, Field

from campusnotes.database import MAX_ID
from campusnotes.models.notification import NotificationType, RelatedType


class NotificationCreate(BaseModel):
    recipient: int = Field(ge=1, le=MAX_ID)
    sender: Optional[int] = Field(None, ge=1, le=MAX_ID)
    type: NotificationType
    title: str = Field(min_length=1, max_length=100)
    message: str = Field(min_length=1, max_length=500)
    related_type: Optional[RelatedType] = None
    related_id: Optional[int] = Field(None, ge=1, le=MAX_ID)

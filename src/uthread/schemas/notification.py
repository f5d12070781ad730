"""Notification schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from .user import UserProfile


class NotificationResponse(BaseModel):
    """Notification payload for the HTTP API and the ``notification`` event."""

    id: int
    recipient_id: str
    sender_id: str
    kind: str
    post_id: str | None = None
    read: bool
    message: str
    created_at: datetime
    sender: UserProfile | None = None

    model_config = ConfigDict(from_attributes=True)

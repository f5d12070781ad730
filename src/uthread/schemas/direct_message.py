"""Direct message-related Pydantic schemas."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from .user import UserProfile


class MediaAttachment(BaseModel):
    """A single attachment of a direct message."""

    type: Literal["image", "video", "audio"]
    url: str = Field(..., min_length=1)
    caption: str = ""


class DirectMessageCreate(BaseModel):
    """Payload for sending a direct message over either channel."""

    receiver_id: str | None = Field(None, description="Identifier of the recipient")
    content: str | None = Field("", description="Message text; may be empty when media is present")
    media: list[MediaAttachment] = Field(default_factory=list)


class DirectMessageResponse(BaseModel):
    """Schema for direct message information returned by the API."""

    id: int
    sender_id: str
    receiver_id: str
    content: str
    media: list[MediaAttachment]
    is_read: bool
    created_at: datetime
    sender: UserProfile | None = None

    model_config = ConfigDict(from_attributes=True)


class MarkReadEvent(BaseModel):
    """Inbound ``mark_read`` frame."""

    message_id: int | None = None
    conversation_id: int | None = None


class TypingEvent(BaseModel):
    """Inbound ``typing`` frame."""

    receiver_id: str | None = None
    is_typing: bool = False

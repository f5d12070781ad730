"""Conversation view schemas."""

from datetime import datetime

from pydantic import BaseModel

from .direct_message import DirectMessageResponse
from .user import UserProfile


class ConversationView(BaseModel):
    """A conversation as seen by one of its participants."""

    id: int
    participants: list[UserProfile]
    last_message: DirectMessageResponse | None = None
    last_message_text: str
    last_message_date: datetime
    created_at: datetime
    updated_at: datetime
    other_participant: UserProfile | None = None
    unread_count: int = 0
    is_pinned: bool = False
    is_muted: bool = False

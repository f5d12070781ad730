# src/uthread/schemas/__init__.py
"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .common import Pagination
from .conversation import ConversationView
from .direct_message import (
    DirectMessageCreate,
    DirectMessageResponse,
    MarkReadEvent,
    MediaAttachment,
    TypingEvent,
)
from .notification import NotificationResponse
from .push import PushKeys, SubscribeRequest, SubscriptionDescriptor, UnsubscribeRequest
from .user import UserProfile

__all__ = [
    "Pagination",
    "ConversationView",
    "DirectMessageCreate", "DirectMessageResponse", "MarkReadEvent", "MediaAttachment",
    "TypingEvent",
    "NotificationResponse",
    "PushKeys", "SubscribeRequest", "SubscriptionDescriptor", "UnsubscribeRequest",
    "UserProfile",
]

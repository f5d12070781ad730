# src/uthread/models/__init__.py
"""SQLAlchemy models for the UThread realtime service."""

from .conversation import Conversation, ConversationParticipant
from .direct_message import DirectMessage
from .notification import Notification
from .push_subscription import PushSubscription
from .user import User

__all__ = [
    "Conversation", "ConversationParticipant",
    "DirectMessage",
    "Notification",
    "PushSubscription",
    "User",
]

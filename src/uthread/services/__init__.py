# src/uthread/services/__init__.py
"""Presence, messaging and notification-delivery services."""

from .delivery import DeliveryRouter, TypingTracker, send_direct_message
from .notifications import NotificationFanout
from .presence import SessionRegistry
from .push import PushChannel, PushDeliveryError

__all__ = [
    "DeliveryRouter",
    "NotificationFanout",
    "PushChannel",
    "PushDeliveryError",
    "SessionRegistry",
    "TypingTracker",
    "send_direct_message",
]

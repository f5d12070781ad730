"""Web Push delivery for users without a live connection.

Each subscription row is attempted independently and concurrently. An
endpoint answering 404 or 410 is gone for good and its row is pruned; every
other failure is logged. ``PushChannel.send`` never raises, so a failed push
cannot fail the message send or notification that triggered it.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any

from pywebpush import WebPushException, webpush
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from uthread.core.settings import settings
from uthread.db.time import utcnow
from uthread.models import Conversation, DirectMessage, Notification, PushSubscription
from uthread.schemas.push import SubscriptionDescriptor
from uthread.schemas.user import UserProfile
from uthread.services.exceptions import InvalidRequestError

logger = logging.getLogger(__name__)

# Endpoint status codes meaning the subscription no longer exists
GONE_STATUS_CODES = frozenset({404, 410})

PushTransport = Callable[[dict[str, Any], str, dict[str, Any]], Any]


class PushDeliveryError(RuntimeError):
    """A push service rejected a delivery attempt."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def webpush_transport(subscription_info: dict[str, Any], data: str, options: dict[str, Any]) -> Any:
    """Deliver one encrypted payload through pywebpush (blocking).

    Raises:
        PushDeliveryError: Carrying the push service status code, if any
    """
    try:
        return webpush(
            subscription_info=subscription_info,
            data=data,
            vapid_private_key=settings.vapid_private_key,
            vapid_claims={"sub": settings.vapid_subject},
            ttl=options.get("ttl", settings.push_ttl_seconds),
            headers={"Urgency": options.get("urgency", settings.push_urgency)},
        )
    except WebPushException as exc:
        status_code = exc.response.status_code if exc.response is not None else None
        raise PushDeliveryError(str(exc), status_code=status_code) from exc


def notification_url(notification: Notification) -> str:
    """Return the client route a notification should open."""
    if notification.kind in ("like", "reply", "mention"):
        return f"/post/{notification.post_id}"
    if notification.kind == "follow":
        return f"/profile/{notification.sender_id}"
    return "/notifications"


def build_notification_payload(notification: Notification) -> dict[str, Any]:
    """Format a social-action notification for Web Push."""
    return {
        "title": settings.push_title,
        "body": notification.message,
        "icon": settings.push_icon,
        "badge": settings.push_badge,
        "tag": str(notification.id),
        "data": {
            "url": notification_url(notification),
            "notificationId": str(notification.id),
        },
    }


def build_message_payload(
    message: DirectMessage,
    conversation: Conversation,
    sender: UserProfile | None,
) -> dict[str, Any]:
    """Format a direct message for Web Push; the body is the conversation summary."""
    sender_name = (sender.display_name or sender.username) if sender is not None else None
    return {
        "title": f"New message from {sender_name}" if sender_name else settings.push_title,
        "body": conversation.last_message_text,
        "icon": settings.push_icon,
        "badge": settings.push_badge,
        "tag": str(message.id),
        "data": {
            "url": f"/messages/{conversation.id}",
            "messageId": str(message.id),
            "conversationId": str(conversation.id),
        },
    }


class PushChannel:
    """Subscription lifecycle and fan-out delivery for one user's endpoints."""

    def __init__(
        self,
        transport: PushTransport | None = None,
        *,
        ttl: int | None = None,
        urgency: str | None = None,
    ) -> None:
        """Initialize the channel.

        Args:
            transport: Blocking callable performing one delivery. Defaults to
                pywebpush, which is only used when VAPID keys are configured.
            ttl: Seconds the push service keeps an undelivered message.
            urgency: Web Push urgency hint.
        """
        self._transport = transport or webpush_transport
        self.enabled = transport is not None or settings.push_enabled
        self.options = {
            "ttl": ttl if ttl is not None else settings.push_ttl_seconds,
            "urgency": urgency or settings.push_urgency,
        }

    @property
    def public_key(self) -> str:
        """VAPID public key clients need to subscribe."""
        return settings.vapid_public_key

    def subscribe(
        self, db: Session, user_id: str, descriptor: SubscriptionDescriptor
    ) -> PushSubscription:
        """Insert the (user, endpoint) subscription or refresh its keys."""
        if not descriptor.endpoint:
            raise InvalidRequestError("Invalid subscription data")

        keys = descriptor.keys.model_dump() if descriptor.keys is not None else {}
        subscription = (
            db.query(PushSubscription)
            .filter(
                PushSubscription.user_id == user_id,
                PushSubscription.endpoint == descriptor.endpoint,
            )
            .first()
        )
        if subscription is None:
            subscription = PushSubscription(
                user_id=user_id,
                endpoint=descriptor.endpoint,
                keys=keys,
                expiration_time=descriptor.expiration_time,
            )
            db.add(subscription)
        else:
            subscription.keys = keys
            subscription.expiration_time = descriptor.expiration_time
            subscription.updated_at = utcnow()

        db.commit()
        db.refresh(subscription)
        return subscription

    def unsubscribe(self, db: Session, user_id: str, endpoint: str) -> bool:
        """Delete the (user, endpoint) subscription.

        Returns:
            True if a row was removed, False if there was nothing to remove
        """
        removed = (
            db.query(PushSubscription)
            .filter(PushSubscription.user_id == user_id, PushSubscription.endpoint == endpoint)
            .delete(synchronize_session=False)
        )
        db.commit()
        return removed > 0

    async def send(self, db: Session, user_id: str, payload: dict[str, Any]) -> int:
        """Deliver ``payload`` to every subscription of ``user_id``.

        Returns:
            Number of endpoints that accepted the payload
        """
        if not self.enabled:
            logger.debug("Push delivery disabled; dropping payload for %s", user_id)
            return 0

        try:
            subscriptions = db.query(PushSubscription).filter(PushSubscription.user_id == user_id).all()
        except SQLAlchemyError:
            logger.exception("Could not load push subscriptions for %s", user_id)
            return 0
        if not subscriptions:
            return 0

        body = json.dumps(payload)
        outcomes = await asyncio.gather(
            *(self._attempt(subscription, body) for subscription in subscriptions)
        )

        gone = [sub.id for sub, outcome in zip(subscriptions, outcomes) if outcome == "gone"]
        if gone:
            self._prune(db, user_id, gone)
        return sum(1 for outcome in outcomes if outcome == "sent")

    async def _attempt(self, subscription: PushSubscription, body: str) -> str:
        info = subscription.subscription_info()
        try:
            await asyncio.to_thread(self._transport, info, body, dict(self.options))
        except PushDeliveryError as exc:
            if exc.status_code in GONE_STATUS_CODES:
                return "gone"
            logger.warning(
                "Push delivery to subscription %s failed (status %s): %s",
                subscription.id,
                exc.status_code,
                exc,
            )
            return "failed"
        except Exception as exc:  # noqa: BLE001
            logger.warning("Push delivery to subscription %s failed: %s", subscription.id, exc)
            return "failed"
        return "sent"

    def _prune(self, db: Session, user_id: str, subscription_ids: list[int]) -> None:
        try:
            db.query(PushSubscription).filter(PushSubscription.id.in_(subscription_ids)).delete(
                synchronize_session=False
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Could not prune stale push subscriptions for %s", user_id)
            return
        logger.info("Deleted %d invalid push subscription(s) for user %s", len(subscription_ids), user_id)

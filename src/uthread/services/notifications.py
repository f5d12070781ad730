"""Social-action notifications and their live/push fan-out."""

from __future__ import annotations

import logging
import re
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from uthread.models import Notification, User
from uthread.models.notification import DEFAULT_MESSAGES, FALLBACK_MESSAGE, NOTIFICATION_KINDS
from uthread.schemas.notification import NotificationResponse
from uthread.services.delivery import DeliveryRouter
from uthread.services.exceptions import InvalidRequestError, NotFoundError, NotParticipantError
from uthread.services.profiles import resolve_profile
from uthread.services.push import build_notification_payload

logger = logging.getLogger(__name__)

MENTION_PATTERN = re.compile(r"@(\w+)")


def unread_notification_count(db: Session, user_id: str) -> int:
    """Return how many unread notifications ``user_id`` has."""
    return (
        db.query(func.count(Notification.id))
        .filter(Notification.recipient_id == user_id, Notification.read.is_(False))
        .scalar()
        or 0
    )


def serialize_notification(db: Session, notification: Notification) -> dict[str, Any]:
    """Render a notification with its sender's profile joined."""
    response = NotificationResponse.model_validate(notification)
    response.sender = resolve_profile(db, notification.sender_id)
    return response.model_dump(mode="json")


def get_owned_notification(db: Session, notification_id: int, user_id: str) -> Notification:
    """Return a notification after checking it is addressed to ``user_id``.

    Raises:
        NotFoundError: If it does not exist
        NotParticipantError: If it belongs to someone else
    """
    notification = db.get(Notification, notification_id)
    if notification is None:
        raise NotFoundError("Notification not found")
    if notification.recipient_id != user_id:
        raise NotParticipantError("Not authorized")
    return notification


class NotificationFanout:
    """Creates notifications and delivers them live or through Web Push.

    The live/push decision is delegated to the delivery router so messages
    and notifications share one presence check and one failure policy.
    """

    def __init__(self, router: DeliveryRouter) -> None:
        self.router = router

    async def create_notification(
        self,
        db: Session,
        *,
        recipient_id: str,
        sender_id: str,
        kind: str,
        post_id: str | None = None,
        message: str | None = None,
    ) -> Notification | None:
        """Persist a notification and deliver it.

        Returns:
            The stored notification, or None when sender and recipient are
            the same user (nobody is notified of their own actions)
        """
        if str(sender_id) == str(recipient_id):
            return None
        if kind not in NOTIFICATION_KINDS:
            raise InvalidRequestError(f"Unknown notification kind: {kind}")

        notification = Notification(
            recipient_id=recipient_id,
            sender_id=sender_id,
            kind=kind,
            post_id=post_id,
            message=message or DEFAULT_MESSAGES.get(kind, FALLBACK_MESSAGE),
            read=False,
        )
        db.add(notification)
        db.commit()
        db.refresh(notification)

        await self.deliver(db, recipient_id, notification)
        return notification

    async def deliver(self, db: Session, recipient_id: str, notification: Notification) -> str:
        """Send a stored notification to its recipient.

        Online recipients receive the notification and a refreshed unread
        count; offline ones get a Web Push payload. Never raises.
        """

        def live_events() -> list[tuple[str, Any]]:
            return [
                ("notification", serialize_notification(db, notification)),
                ("unread_count", {"count": unread_notification_count(db, recipient_id)}),
            ]

        def push_payload() -> dict[str, Any]:
            return build_notification_payload(notification)

        outcome = await self.router.deliver(db, recipient_id, live_events, push_payload)
        logger.debug("Notification %s delivery outcome: %s", notification.id, outcome)
        return outcome

    async def notify_like(
        self, db: Session, user_id: str, post_id: str, post_author_id: str
    ) -> Notification | None:
        return await self.create_notification(
            db, recipient_id=post_author_id, sender_id=user_id, kind="like", post_id=post_id
        )

    async def notify_reply(
        self, db: Session, user_id: str, post_id: str, post_author_id: str
    ) -> Notification | None:
        return await self.create_notification(
            db, recipient_id=post_author_id, sender_id=user_id, kind="reply", post_id=post_id
        )

    async def notify_follow(
        self, db: Session, follower_id: str, followed_id: str
    ) -> Notification | None:
        return await self.create_notification(
            db, recipient_id=followed_id, sender_id=follower_id, kind="follow"
        )

    async def notify_mention(
        self, db: Session, user_id: str, post_id: str, mentioned_user_id: str
    ) -> Notification | None:
        return await self.create_notification(
            db, recipient_id=mentioned_user_id, sender_id=user_id, kind="mention", post_id=post_id
        )

    async def process_mentions(
        self, db: Session, content: str, post_id: str, author_id: str
    ) -> list[Notification]:
        """Notify every existing user mentioned as ``@username`` in ``content``."""
        usernames = list(dict.fromkeys(MENTION_PATTERN.findall(content or "")))
        if not usernames:
            return []

        users = db.query(User).filter(User.username.in_(usernames)).all()
        created = []
        for user in users:
            notification = await self.notify_mention(db, author_id, post_id, user.id)
            if notification is not None:
                created.append(notification)
        return created

"""Delivery router for direct messages, read receipts and typing indicators.

Every send is persisted (message row plus conversation update, one commit)
before any delivery is attempted, so a receiver never sees a message that is
not yet stored. Delivery then goes live when the receiver has a session in
this process and falls back to Web Push otherwise. Delivery failures are
logged and never undo or fail the persisted write.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from uthread.models import Conversation, DirectMessage
from uthread.schemas.direct_message import DirectMessageCreate, DirectMessageResponse
from uthread.schemas.user import UserProfile
from uthread.services.conversations import (
    build_view,
    find_conversation,
    find_or_create_conversation,
    get_conversation_for_participant,
    record_message,
    reset_unread,
)
from uthread.services.exceptions import (
    InvalidMessageError,
    InvalidRequestError,
    MessagingError,
    NotFoundError,
    NotParticipantError,
)
from uthread.services.message_log import (
    append_message,
    get_message,
    mark_message_read,
    mark_thread_read,
)
from uthread.services.presence import ConnectionHandle, SessionRegistry, send_to_handle
from uthread.services.profiles import get_user, resolve_profile
from uthread.services.push import PushChannel, build_message_payload

logger = logging.getLogger(__name__)

# Outcomes reported by DeliveryRouter.deliver
DELIVERED_LIVE = "live"
DELIVERED_PUSH = "push"
NOT_DELIVERED = "dropped"
DELIVERY_FAILED = "failed"

LiveEvents = Callable[[], list[tuple[str, Any]]]
PushPayload = Callable[[], dict[str, Any]]


def validate_message(
    db: Session,
    sender_id: str,
    receiver_id: str | None,
    payload: DirectMessageCreate,
) -> str:
    """Reject a send before anything is written.

    Returns:
        The receiver identifier

    Raises:
        InvalidMessageError: If there is no recipient, no text or media, or
            the sender is messaging themselves
        NotFoundError: If the recipient does not exist
    """
    if not receiver_id:
        raise InvalidMessageError("Recipient not specified")
    if not (payload.content or "").strip() and not payload.media:
        raise InvalidMessageError("Message cannot be empty")
    if get_user(db, receiver_id) is None:
        raise NotFoundError("Recipient not found")
    if receiver_id == sender_id:
        raise InvalidMessageError("Cannot send message to yourself")
    return receiver_id


def persist_direct_message(
    db: Session,
    sender_id: str,
    receiver_id: str | None,
    payload: DirectMessageCreate,
) -> tuple[DirectMessage, Conversation]:
    """Store a message and fold it into the pair's conversation.

    This is the single write path shared by the live router and the direct
    persistence fallback.
    """
    receiver_id = validate_message(db, sender_id, receiver_id, payload)

    message = append_message(
        db,
        sender_id,
        receiver_id,
        payload.content,
        [attachment.model_dump() for attachment in payload.media],
    )
    conversation = find_or_create_conversation(db, sender_id, receiver_id)
    record_message(db, conversation, message)
    db.commit()
    logger.debug("Stored message %s from %s to %s", message.id, sender_id, receiver_id)
    return message, conversation


def serialize_message(message: DirectMessage, sender: UserProfile | None = None) -> dict[str, Any]:
    """Render a message as an event payload, optionally with the sender's profile."""
    response = DirectMessageResponse.model_validate(message)
    response.sender = sender
    return response.model_dump(mode="json")


class TypingTracker:
    """Transient record of who is typing to whom, keyed by (sender, receiver)."""

    def __init__(self) -> None:
        self._started: dict[tuple[str, str], float] = {}

    def update(self, sender_id: str, receiver_id: str, is_typing: bool) -> None:
        key = (sender_id, receiver_id)
        if is_typing:
            self._started[key] = time.monotonic()
        else:
            self._started.pop(key, None)

    def is_typing(self, sender_id: str, receiver_id: str) -> bool:
        return (sender_id, receiver_id) in self._started

    def clear_sender(self, sender_id: str) -> list[str]:
        """Forget every indicator started by ``sender_id``; return the receivers."""
        keys = [key for key in self._started if key[0] == sender_id]
        for key in keys:
            del self._started[key]
        return [receiver_id for _, receiver_id in keys]


class DeliveryRouter:
    """Chooses between live delivery and Web Push for outbound events."""

    def __init__(
        self,
        registry: SessionRegistry,
        push_channel: PushChannel,
        typing: TypingTracker | None = None,
    ) -> None:
        self.registry = registry
        self.push_channel = push_channel
        self.typing = typing or TypingTracker()

    async def deliver(
        self,
        db: Session,
        recipient_id: str,
        live_events: LiveEvents,
        push_payload: PushPayload | None = None,
    ) -> str:
        """Push events to a live session, else hand a payload to the push channel.

        Payloads are built lazily so only the chosen path pays for profile
        lookups. Never raises.

        Returns:
            One of ``live``, ``push``, ``dropped`` or ``failed``
        """
        try:
            if self.registry.is_online(recipient_id):
                for event, data in live_events():
                    await self.registry.emit(recipient_id, event, data)
                return DELIVERED_LIVE

            if push_payload is None:
                return NOT_DELIVERED
            sent = await self.push_channel.send(db, recipient_id, push_payload())
            return DELIVERED_PUSH if sent else NOT_DELIVERED
        except Exception:  # noqa: BLE001
            logger.exception("Delivery to %s failed", recipient_id)
            return DELIVERY_FAILED

    async def route_direct_message(
        self,
        db: Session,
        sender_id: str,
        receiver_id: str | None,
        payload: DirectMessageCreate,
        *,
        origin: ConnectionHandle | None = None,
    ) -> DirectMessage:
        """Persist a direct message, then deliver it.

        Args:
            db: Database session
            sender_id: Sending user
            receiver_id: Receiving user
            payload: Text and media of the message
            origin: The sender's own connection when the send arrived over
                the realtime channel; it receives ``message_sent`` and its
                own ``conversation_update``.

        Returns:
            The stored message

        Raises:
            InvalidMessageError: If the message has no recipient, no content or
                is addressed to the sender
            NotFoundError: If the recipient does not exist
        """
        message, conversation = persist_direct_message(db, sender_id, receiver_id, payload)
        receiver = message.receiver_id

        def live_events() -> list[tuple[str, Any]]:
            sender = resolve_profile(db, sender_id)
            return [
                ("new_message", serialize_message(message, sender)),
                ("conversation_update", build_view(db, conversation, receiver).model_dump(mode="json")),
            ]

        def push_payload() -> dict[str, Any]:
            return build_message_payload(message, conversation, resolve_profile(db, sender_id))

        outcome = await self.deliver(db, receiver, live_events, push_payload)
        logger.debug("Message %s delivery outcome: %s", message.id, outcome)

        if origin is not None:
            await self._acknowledge(db, origin, message, conversation, sender_id)
        return message

    async def _acknowledge(
        self,
        db: Session,
        origin: ConnectionHandle,
        message: DirectMessage,
        conversation: Conversation,
        sender_id: str,
    ) -> None:
        await send_to_handle(origin, "message_sent", serialize_message(message))
        try:
            view = build_view(db, conversation, sender_id).model_dump(mode="json")
        except SQLAlchemyError:
            logger.exception("Could not render conversation %s for its sender", conversation.id)
            return
        await send_to_handle(origin, "conversation_update", view)

    async def route_read_receipt(
        self,
        db: Session,
        reader_id: str,
        *,
        conversation_id: int | None = None,
        message_id: int | None = None,
        origin: ConnectionHandle | None = None,
    ) -> Conversation | None:
        """Mark a message or a whole conversation read for ``reader_id``.

        The reader's unread count drops to zero; repeating the call is
        harmless. The other participant gets ``messages_read`` only if
        online; read state is never sent through Web Push.

        Raises:
            InvalidRequestError: If neither identifier is given
            NotFoundError: If the message or conversation does not exist
            NotParticipantError: If the reader is not the message's receiver
                or not a participant of the conversation
        """
        if conversation_id is None and message_id is None:
            raise InvalidRequestError("Nothing to mark as read")

        conversation: Conversation | None = None
        other_id: str | None = None
        notice: dict[str, Any] = {"read_by": reader_id}

        if message_id is not None:
            message = get_message(db, message_id)
            if message.receiver_id != reader_id:
                raise NotParticipantError("Not authorized")
            mark_message_read(db, message)
            conversation = find_conversation(db, message.sender_id, message.receiver_id)
            other_id = message.sender_id
            notice["message_id"] = message.id

        if conversation_id is not None:
            conversation = get_conversation_for_participant(db, conversation_id, reader_id)
            other_id = conversation.other_participant(reader_id)
            mark_thread_read(db, reader_id, other_id)

        if conversation is not None:
            reset_unread(db, conversation, reader_id)
            notice["conversation_id"] = conversation.id
        db.commit()

        if other_id is not None and other_id != reader_id and self.registry.is_online(other_id):
            await self.registry.emit(other_id, "messages_read", notice)

        if origin is not None:
            await send_to_handle(
                origin,
                "read_confirmed",
                {"message_id": message_id, "conversation_id": conversation_id},
            )
        return conversation

    async def route_typing_indicator(
        self, sender_id: str, receiver_id: str | None, is_typing: bool
    ) -> bool:
        """Forward a typing indicator if the receiver is online; drop it otherwise.

        Returns:
            True if the indicator reached at least one connection
        """
        if not receiver_id:
            return False
        self.typing.update(sender_id, receiver_id, is_typing)
        if not self.registry.is_online(receiver_id):
            return False
        reached = await self.registry.emit(
            receiver_id,
            "user_typing",
            {"sender_id": sender_id, "is_typing": is_typing},
        )
        return reached > 0

    def clear_typing(self, user_id: str) -> int:
        """Drop every typing indicator started by ``user_id``."""
        return len(self.typing.clear_sender(user_id))


async def send_direct_message(
    db: Session,
    router: DeliveryRouter | None,
    sender_id: str,
    receiver_id: str | None,
    payload: DirectMessageCreate,
) -> DirectMessage:
    """Send through the live router, falling back to direct persistence.

    Both tiers write through ``persist_direct_message``. Validation errors
    are never retried; a storage failure on the fallback propagates.
    """
    if router is not None:
        try:
            return await router.route_direct_message(db, sender_id, receiver_id, payload)
        except MessagingError:
            raise
        except SQLAlchemyError:
            logger.exception(
                "Live send %s -> %s failed; falling back to direct persistence",
                sender_id,
                receiver_id,
            )
            db.rollback()

    message, _ = persist_direct_message(db, sender_id, receiver_id, payload)
    return message

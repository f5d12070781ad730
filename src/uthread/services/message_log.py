"""Append-only log of direct messages.

Messages are inserted once per send; the only later mutation is flipping
``is_read``. Nothing here deletes messages.
"""
from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from sqlalchemy import and_, or_, update
from sqlalchemy.orm import Session

from uthread.models import DirectMessage
from uthread.services.exceptions import NotFoundError

MEDIA_ONLY_SUMMARY = "Sent media"


def summary_text(content: str | None, media: Sequence[Any] | None) -> str:
    """Return the text shown in conversation lists for a message."""
    if content:
        return content
    return MEDIA_ONLY_SUMMARY if media else ""


def append_message(
    db: Session,
    sender_id: str,
    receiver_id: str,
    content: str | None,
    media: Sequence[dict[str, Any]] | None = None,
) -> DirectMessage:
    """Insert a new unread message and flush it so it has an id."""
    message = DirectMessage(
        sender_id=sender_id,
        receiver_id=receiver_id,
        content=content or "",
        media=list(media or []),
        is_read=False,
    )
    db.add(message)
    db.flush()
    return message


def get_message(db: Session, message_id: int) -> DirectMessage:
    """Return a message by id.

    Raises:
        NotFoundError: If no such message exists
    """
    message = db.get(DirectMessage, message_id)
    if message is None:
        raise NotFoundError("Message not found")
    return message


def mark_message_read(db: Session, message: DirectMessage) -> None:
    """Flip the read flag of a single message."""
    message.is_read = True
    db.flush()


def mark_thread_read(db: Session, reader_id: str, other_id: str) -> int:
    """Mark every unread message from ``other_id`` to ``reader_id`` as read.

    Returns:
        Number of messages that changed
    """
    result = db.execute(
        update(DirectMessage)
        .where(
            DirectMessage.sender_id == other_id,
            DirectMessage.receiver_id == reader_id,
            DirectMessage.is_read.is_(False),
        )
        .values(is_read=True)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount or 0


def _thread_filter(first_user_id: str, second_user_id: str):
    return or_(
        and_(DirectMessage.sender_id == first_user_id, DirectMessage.receiver_id == second_user_id),
        and_(DirectMessage.sender_id == second_user_id, DirectMessage.receiver_id == first_user_id),
    )


def message_history(
    db: Session,
    first_user_id: str,
    second_user_id: str,
    *,
    page: int,
    limit: int,
) -> tuple[list[DirectMessage], int]:
    """Return one page of the pair's messages, newest first, and the total count."""
    query = db.query(DirectMessage).filter(_thread_filter(first_user_id, second_user_id))
    total = query.count()
    messages = (
        query.order_by(DirectMessage.created_at.desc(), DirectMessage.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return messages, total

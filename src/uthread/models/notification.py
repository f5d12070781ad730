# src/uthread/models/notification.py
"""Social-action notifications (likes, replies, mentions, follows)."""

from datetime import datetime

from sqlalchemy import ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from uthread.db.session import Base
from uthread.db.time import utcnow

NOTIFICATION_KINDS = ("like", "reply", "mention", "follow")

DEFAULT_MESSAGES = {
    "like": "liked your post",
    "reply": "replied to your post",
    "mention": "mentioned you in a post",
    "follow": "started following you",
}
FALLBACK_MESSAGE = "sent you a notification"


class Notification(Base):
    """Notification addressed to ``recipient_id`` about an action by ``sender_id``."""

    __tablename__ = "notification"
    __table_args__ = (
        Index("ix_notification_recipient_read", "recipient_id", "read", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    recipient_id: Mapped[str] = mapped_column(String(64), ForeignKey("user_account.id"), nullable=False)
    sender_id: Mapped[str] = mapped_column(String(64), ForeignKey("user_account.id"), nullable=False)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    # Posts are owned by the content service; only the identifier is kept.
    post_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    read: Mapped[bool] = mapped_column(default=False, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)

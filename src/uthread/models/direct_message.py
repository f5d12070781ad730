# src/uthread/models/direct_message.py
"""Models describing direct messages between users."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from uthread.db.session import Base
from uthread.db.time import utcnow


class DirectMessage(Base):
    """A message exchanged between two users.

    Rows are written once per send and only ``is_read`` changes afterwards.
    """

    __tablename__ = "direct_message"
    __table_args__ = (
        Index("ix_direct_message_pair", "sender_id", "receiver_id"),
        Index("ix_direct_message_created", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    sender_id: Mapped[str] = mapped_column(String(64), ForeignKey("user_account.id"), nullable=False)
    receiver_id: Mapped[str] = mapped_column(String(64), ForeignKey("user_account.id"), nullable=False)

    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # Ordered list of {"type": image|video|audio, "url": ..., "caption": ...}
    media: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    is_read: Mapped[bool] = mapped_column(default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)

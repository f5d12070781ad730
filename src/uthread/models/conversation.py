# src/uthread/models/conversation.py
"""Models describing the per-pair conversation aggregate."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from uthread.db.session import Base
from uthread.db.time import utcnow


def pair_key(first_user_id: str, second_user_id: str) -> tuple[str, str]:
    """Return the canonical (low, high) ordering of an unordered user pair."""
    if first_user_id <= second_user_id:
        return first_user_id, second_user_id
    return second_user_id, first_user_id


class Conversation(Base):
    """Latest-message summary shared by exactly two participants.

    At most one row exists per unordered pair; the pair is stored sorted so
    the unique constraint covers both orderings.
    """

    __tablename__ = "conversation"
    __table_args__ = (
        UniqueConstraint("participant_low", "participant_high", name="uq_conversation_pair"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    participant_low: Mapped[str] = mapped_column(
        String(64), ForeignKey("user_account.id"), nullable=False, index=True
    )
    participant_high: Mapped[str] = mapped_column(
        String(64), ForeignKey("user_account.id"), nullable=False, index=True
    )

    # Denormalized for list rendering without a join.
    last_message_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("direct_message.id", ondelete="SET NULL"), nullable=True
    )
    last_message_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    last_message_date: Mapped[datetime] = mapped_column(default=utcnow)

    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow)

    participant_states: Mapped[list[ConversationParticipant]] = relationship(
        "ConversationParticipant",
        back_populates="conversation",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def participants(self) -> tuple[str, str]:
        """Return both participant identifiers."""
        return self.participant_low, self.participant_high

    def has_participant(self, user_id: str) -> bool:
        """Return True if ``user_id`` is one of the two participants."""
        return user_id in self.participants

    def other_participant(self, user_id: str) -> str:
        """Return the identifier of the participant that is not ``user_id``."""
        return self.participant_high if user_id == self.participant_low else self.participant_low

    def state_for(self, user_id: str) -> ConversationParticipant | None:
        """Return the private view state row of ``user_id``, if present."""
        for state in self.participant_states:
            if state.user_id == user_id:
                return state
        return None


class ConversationParticipant(Base):
    """One participant's private view of a conversation."""

    __tablename__ = "conversation_participant"

    conversation_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("conversation.id", ondelete="CASCADE"),
        primary_key=True,
    )
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("user_account.id"), primary_key=True
    )
    unread_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_pinned: Mapped[bool] = mapped_column(default=False, nullable=False)
    is_muted: Mapped[bool] = mapped_column(default=False, nullable=False)

    conversation: Mapped[Conversation] = relationship(
        "Conversation", back_populates="participant_states"
    )

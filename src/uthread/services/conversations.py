"""Conversation store: one aggregate per unordered pair of participants.

Functions here flush but never commit; the caller owns the transaction so a
message insert and its conversation update land together.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy import not_, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from uthread.db.time import utcnow
from uthread.models import Conversation, ConversationParticipant, DirectMessage
from uthread.models.conversation import pair_key
from uthread.schemas.conversation import ConversationView
from uthread.schemas.direct_message import DirectMessageResponse
from uthread.schemas.user import UserProfile
from uthread.services.exceptions import NotFoundError, NotParticipantError
from uthread.services.message_log import summary_text
from uthread.services.profiles import resolve_profiles

logger = logging.getLogger(__name__)


def get_conversation(db: Session, conversation_id: int) -> Conversation:
    """Return a conversation by id.

    Raises:
        NotFoundError: If no such conversation exists
    """
    conversation = db.get(Conversation, conversation_id)
    if conversation is None:
        raise NotFoundError("Conversation not found")
    return conversation


def get_conversation_for_participant(
    db: Session, conversation_id: int, user_id: str
) -> Conversation:
    """Return a conversation after checking ``user_id`` takes part in it.

    Raises:
        NotFoundError: If no such conversation exists
        NotParticipantError: If ``user_id`` is not one of its participants
    """
    conversation = get_conversation(db, conversation_id)
    if not conversation.has_participant(user_id):
        raise NotParticipantError("Not authorized")
    return conversation


def find_conversation(db: Session, first_user_id: str, second_user_id: str) -> Conversation | None:
    """Return the conversation of an unordered pair, if one exists."""
    low, high = pair_key(first_user_id, second_user_id)
    return (
        db.query(Conversation)
        .filter(Conversation.participant_low == low, Conversation.participant_high == high)
        .first()
    )


def find_or_create_conversation(db: Session, first_user_id: str, second_user_id: str) -> Conversation:
    """Return the pair's conversation, creating it on first contact.

    Creation runs inside a savepoint; losing a race against a concurrent
    creator trips the pair's unique constraint and the winner's row is reused.
    """
    conversation = find_conversation(db, first_user_id, second_user_id)
    if conversation is not None:
        return conversation

    low, high = pair_key(first_user_id, second_user_id)
    try:
        with db.begin_nested():
            conversation = Conversation(
                participant_low=low,
                participant_high=high,
                participant_states=[
                    ConversationParticipant(user_id=user_id) for user_id in dict.fromkeys((low, high))
                ],
            )
            db.add(conversation)
    except IntegrityError:
        logger.info("Conversation %s/%s created concurrently; reusing it", low, high)
        conversation = find_conversation(db, low, high)
        if conversation is None:
            raise
    return conversation


def list_conversations(db: Session, user_id: str) -> list[Conversation]:
    """Return every conversation ``user_id`` participates in, most recent first."""
    return (
        db.query(Conversation)
        .filter(or_(Conversation.participant_low == user_id, Conversation.participant_high == user_id))
        .order_by(Conversation.updated_at.desc(), Conversation.id.desc())
        .all()
    )


def record_message(db: Session, conversation: Conversation, message: DirectMessage) -> None:
    """Point the conversation at ``message`` and bump the receiver's unread count.

    The increment is a single UPDATE evaluated by the database, so concurrent
    sends to the same receiver cannot lose a count.
    """
    now = utcnow()
    conversation.last_message_id = message.id
    conversation.last_message_text = summary_text(message.content, message.media)
    conversation.last_message_date = message.created_at or now
    conversation.updated_at = now
    _ensure_state(db, conversation, message.receiver_id)
    db.flush()

    db.execute(
        update(ConversationParticipant)
        .where(
            ConversationParticipant.conversation_id == conversation.id,
            ConversationParticipant.user_id == message.receiver_id,
        )
        .values(unread_count=ConversationParticipant.unread_count + 1)
        .execution_options(synchronize_session="fetch")
    )


def reset_unread(db: Session, conversation: Conversation, user_id: str) -> None:
    """Set ``user_id``'s unread count on the conversation to zero."""
    state = _ensure_state(db, conversation, user_id)
    state.unread_count = 0
    db.flush()


def toggle_pinned(db: Session, conversation: Conversation, user_id: str) -> bool:
    """Flip the pinned flag for ``user_id`` only and return the new value."""
    return _toggle(db, conversation, user_id, "is_pinned")


def toggle_muted(db: Session, conversation: Conversation, user_id: str) -> bool:
    """Flip the muted flag for ``user_id`` only and return the new value."""
    return _toggle(db, conversation, user_id, "is_muted")


def delete_conversation(db: Session, conversation: Conversation) -> None:
    """Remove the whole conversation; the message log is left untouched."""
    db.delete(conversation)
    db.flush()


def project_conversation(
    conversation: Conversation,
    viewer_id: str,
    profiles: dict[str, UserProfile],
    last_message: DirectMessageResponse | None = None,
) -> ConversationView:
    """Build ``viewer_id``'s view of a conversation.

    Pure read-side transform: unread/pinned/muted come from the viewer's own
    state row and default to 0/False when the viewer has none.
    """
    state = conversation.state_for(viewer_id)
    other_id = conversation.other_participant(viewer_id)
    return ConversationView(
        id=conversation.id,
        participants=[profiles[p] for p in conversation.participants if p in profiles],
        last_message=last_message,
        last_message_text=conversation.last_message_text or "",
        last_message_date=conversation.last_message_date,
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
        other_participant=profiles.get(other_id),
        unread_count=state.unread_count if state is not None else 0,
        is_pinned=state.is_pinned if state is not None else False,
        is_muted=state.is_muted if state is not None else False,
    )


def build_views(
    db: Session, conversations: Sequence[Conversation], viewer_id: str
) -> list[ConversationView]:
    """Project several conversations for ``viewer_id`` with joined profiles.

    The result is ordered pinned first, then by last-message date descending.
    """
    user_ids = {user_id for conversation in conversations for user_id in conversation.participants}
    profiles = resolve_profiles(db, user_ids)

    message_ids = [c.last_message_id for c in conversations if c.last_message_id is not None]
    messages = (
        {m.id: m for m in db.query(DirectMessage).filter(DirectMessage.id.in_(message_ids)).all()}
        if message_ids
        else {}
    )

    views = []
    for conversation in conversations:
        last = messages.get(conversation.last_message_id) if conversation.last_message_id else None
        last_view = None
        if last is not None:
            last_view = DirectMessageResponse.model_validate(last)
            last_view.sender = profiles.get(last.sender_id)
        views.append(project_conversation(conversation, viewer_id, profiles, last_view))

    views.sort(key=lambda view: view.last_message_date.replace(tzinfo=None), reverse=True)
    views.sort(key=lambda view: not view.is_pinned)
    return views


def build_view(db: Session, conversation: Conversation, viewer_id: str) -> ConversationView:
    """Project a single conversation for ``viewer_id``."""
    return build_views(db, [conversation], viewer_id)[0]


def _ensure_state(db: Session, conversation: Conversation, user_id: str) -> ConversationParticipant:
    state = conversation.state_for(user_id)
    if state is None:
        if not conversation.has_participant(user_id):
            raise NotParticipantError("Not authorized")
        state = ConversationParticipant(user_id=user_id)
        conversation.participant_states.append(state)
        db.flush()
    return state


def _toggle(db: Session, conversation: Conversation, user_id: str, flag: str) -> bool:
    state = _ensure_state(db, conversation, user_id)
    column = getattr(ConversationParticipant, flag)
    db.execute(
        update(ConversationParticipant)
        .where(
            ConversationParticipant.conversation_id == conversation.id,
            ConversationParticipant.user_id == user_id,
        )
        .values({flag: not_(column)})
        .execution_options(synchronize_session="fetch")
    )
    db.refresh(state)
    return bool(getattr(state, flag))

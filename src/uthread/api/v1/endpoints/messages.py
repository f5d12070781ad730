# src/uthread/api/v1/endpoints/messages.py
"""Direct message and conversation endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Query, status

from uthread.core.settings import settings
from uthread.schemas.common import Pagination
from uthread.schemas.direct_message import DirectMessageCreate
from uthread.services import conversations as conversation_store
from uthread.services.delivery import (
    send_direct_message,
    serialize_message,
)
from uthread.services.exceptions import MessagingError
from uthread.services.message_log import message_history
from uthread.services.profiles import get_user, resolve_profile, resolve_profiles

from ..dependencies import (
    CurrentUserDep,
    OptionalRouterDep,
    RegistryDep,
    RouterDep,
    SessionDep,
    http_error,
)

router = APIRouter(prefix="/messages", tags=["messages"])


def _page_size(limit: int | None, default: int) -> int:
    return min(limit or default, settings.max_page_size)


@router.get("/conversations")
async def list_conversations(
    current_user: CurrentUserDep,
    db: SessionDep,
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1),
) -> dict[str, Any]:
    """List the caller's conversations, pinned first, then most recent."""
    limit = _page_size(limit, settings.conversations_page_size)
    conversations = conversation_store.list_conversations(db, current_user.id)
    views = conversation_store.build_views(db, conversations, current_user.id)

    skip = (page - 1) * limit
    page_views = views[skip:skip + limit]
    pagination = Pagination.build(total=len(views), page=page, limit=limit, returned=len(page_views))
    return {
        "conversations": [view.model_dump(mode="json") for view in page_views],
        "pagination": pagination.model_dump(by_alias=True),
    }


@router.get("/conversations/with/{user_id}")
async def get_or_create_conversation(
    user_id: str,
    current_user: CurrentUserDep,
    db: SessionDep,
) -> dict[str, Any]:
    """Return the conversation with ``user_id``, creating an empty one if needed."""
    if get_user(db, user_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if user_id == current_user.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot message yourself",
        )

    conversation = conversation_store.find_or_create_conversation(db, current_user.id, user_id)
    db.commit()
    return conversation_store.build_view(db, conversation, current_user.id).model_dump(mode="json")


@router.get("/conversations/{conversation_id}")
async def get_conversation(
    conversation_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
) -> dict[str, Any]:
    """Return one conversation as seen by the caller."""
    try:
        conversation = conversation_store.get_conversation_for_participant(
            db, conversation_id, current_user.id
        )
    except MessagingError as exc:
        raise http_error(exc) from exc
    return conversation_store.build_view(db, conversation, current_user.id).model_dump(mode="json")


@router.put("/conversations/{conversation_id}/read")
async def mark_conversation_read(
    conversation_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    delivery_router: RouterDep,
) -> dict[str, bool]:
    """Mark every message of the conversation addressed to the caller as read."""
    try:
        await delivery_router.route_read_receipt(
            db, current_user.id, conversation_id=conversation_id
        )
    except MessagingError as exc:
        raise http_error(exc) from exc
    return {"success": True}


@router.put("/conversations/{conversation_id}/pin")
async def toggle_pin(
    conversation_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
) -> dict[str, bool]:
    """Toggle the caller's pinned flag; the other participant's flag is untouched."""
    try:
        conversation = conversation_store.get_conversation_for_participant(
            db, conversation_id, current_user.id
        )
    except MessagingError as exc:
        raise http_error(exc) from exc
    is_pinned = conversation_store.toggle_pinned(db, conversation, current_user.id)
    db.commit()
    return {"success": True, "is_pinned": is_pinned}


@router.put("/conversations/{conversation_id}/mute")
async def toggle_mute(
    conversation_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
) -> dict[str, bool]:
    """Toggle the caller's muted flag; the other participant's flag is untouched."""
    try:
        conversation = conversation_store.get_conversation_for_participant(
            db, conversation_id, current_user.id
        )
    except MessagingError as exc:
        raise http_error(exc) from exc
    is_muted = conversation_store.toggle_muted(db, conversation, current_user.id)
    db.commit()
    return {"success": True, "is_muted": is_muted}


@router.delete("/conversations/{conversation_id}")
async def delete_conversation(
    conversation_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
) -> dict[str, bool]:
    """Delete the conversation for both participants; messages are kept."""
    try:
        conversation = conversation_store.get_conversation_for_participant(
            db, conversation_id, current_user.id
        )
    except MessagingError as exc:
        raise http_error(exc) from exc
    conversation_store.delete_conversation(db, conversation)
    db.commit()
    return {"success": True}


@router.get("/online")
async def online_status(
    current_user: CurrentUserDep,
    registry: RegistryDep,
    user_ids: str = Query(..., description="Comma-separated user identifiers"),
) -> dict[str, bool]:
    """Return whether each requested user is currently connected."""
    wanted = [user_id.strip() for user_id in user_ids.split(",") if user_id.strip()]
    return registry.online_status_batch(wanted)


@router.get("/{conversation_id}")
async def get_messages(
    conversation_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    delivery_router: RouterDep,
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1),
) -> dict[str, Any]:
    """Return a page of the conversation's history, oldest first within the page.

    Fetching messages addressed to the caller that are still unread marks the
    conversation read and tells the other participant.
    """
    limit = _page_size(limit, settings.messages_page_size)
    try:
        conversation = conversation_store.get_conversation_for_participant(
            db, conversation_id, current_user.id
        )
    except MessagingError as exc:
        raise http_error(exc) from exc

    other_id = conversation.other_participant(current_user.id)
    messages, total = message_history(db, current_user.id, other_id, page=page, limit=limit)
    profiles = resolve_profiles(db, {current_user.id, other_id})
    payload = [serialize_message(message, profiles.get(message.sender_id)) for message in reversed(messages)]

    if any(not m.is_read and m.receiver_id == current_user.id for m in messages):
        await delivery_router.route_read_receipt(db, current_user.id, conversation_id=conversation.id)

    pagination = Pagination.build(total=total, page=page, limit=limit, returned=len(messages))
    return {"messages": payload, "pagination": pagination.model_dump(by_alias=True)}


@router.post("/", status_code=status.HTTP_201_CREATED)
async def send_message(
    message_data: DirectMessageCreate,
    current_user: CurrentUserDep,
    db: SessionDep,
    delivery_router: OptionalRouterDep,
) -> dict[str, Any]:
    """Send a direct message through the live router, or store it directly."""
    try:
        message = await send_direct_message(
            db, delivery_router, current_user.id, message_data.receiver_id, message_data
        )
    except MessagingError as exc:
        raise http_error(exc) from exc
    return serialize_message(message, resolve_profile(db, current_user.id))


@router.put("/{message_id}/read")
async def mark_message_read(
    message_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    delivery_router: RouterDep,
) -> dict[str, bool]:
    """Mark a single received message as read."""
    try:
        await delivery_router.route_read_receipt(db, current_user.id, message_id=message_id)
    except MessagingError as exc:
        raise http_error(exc) from exc
    return {"success": True}

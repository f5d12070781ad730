# src/uthread/api/v1/endpoints/notifications.py
"""Notification inbox endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query

from uthread.core.settings import settings
from uthread.models import Notification
from uthread.schemas.common import Pagination
from uthread.services.exceptions import MessagingError
from uthread.services.notifications import (
    get_owned_notification,
    serialize_notification,
    unread_notification_count,
)

from ..dependencies import CurrentUserDep, SessionDep, http_error

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("/")
async def list_notifications(
    current_user: CurrentUserDep,
    db: SessionDep,
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1),
    read: bool | None = Query(None),
) -> dict[str, Any]:
    """List the caller's notifications, newest first, optionally filtered by read state."""
    limit = min(limit or settings.notifications_page_size, settings.max_page_size)
    query = db.query(Notification).filter(Notification.recipient_id == current_user.id)
    if read is not None:
        query = query.filter(Notification.read.is_(read))

    total = query.count()
    notifications = (
        query.order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    pagination = Pagination.build(total=total, page=page, limit=limit, returned=len(notifications))
    return {
        "notifications": [serialize_notification(db, n) for n in notifications],
        "pagination": pagination.model_dump(by_alias=True),
    }


@router.get("/count")
async def get_unread_count(current_user: CurrentUserDep, db: SessionDep) -> dict[str, int]:
    """Return the caller's unread notification count."""
    return {"count": unread_notification_count(db, current_user.id)}


@router.put("/read")
async def mark_all_read(current_user: CurrentUserDep, db: SessionDep) -> dict[str, Any]:
    """Mark every notification of the caller as read."""
    db.query(Notification).filter(
        Notification.recipient_id == current_user.id,
        Notification.read.is_(False),
    ).update({Notification.read: True}, synchronize_session=False)
    db.commit()
    return {"success": True, "message": "All notifications marked as read"}


@router.put("/{notification_id}/read")
async def mark_read(
    notification_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
) -> dict[str, Any]:
    """Mark one of the caller's notifications as read."""
    try:
        notification = get_owned_notification(db, notification_id, current_user.id)
    except MessagingError as exc:
        raise http_error(exc) from exc
    notification.read = True
    db.commit()
    db.refresh(notification)
    return serialize_notification(db, notification)


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
) -> dict[str, Any]:
    """Delete one of the caller's notifications."""
    try:
        notification = get_owned_notification(db, notification_id, current_user.id)
    except MessagingError as exc:
        raise http_error(exc) from exc
    db.delete(notification)
    db.commit()
    return {"success": True, "message": "Notification removed"}


@router.delete("/")
async def delete_all_notifications(current_user: CurrentUserDep, db: SessionDep) -> dict[str, Any]:
    """Delete every notification of the caller."""
    db.query(Notification).filter(Notification.recipient_id == current_user.id).delete(
        synchronize_session=False
    )
    db.commit()
    return {"success": True, "message": "All notifications deleted"}

# src/uthread/api/v1/endpoints/push.py
"""Web Push subscription endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, status

from uthread.schemas.push import SubscribeRequest, SubscriptionResponse, UnsubscribeRequest
from uthread.services.exceptions import MessagingError

from ..dependencies import CurrentUserDep, PushChannelDep, SessionDep, http_error

router = APIRouter(prefix="/push", tags=["push"])


@router.get("/vapid-public-key")
async def get_vapid_public_key(push_channel: PushChannelDep) -> dict[str, str]:
    """Return the VAPID public key browsers need to subscribe."""
    return {"public_key": push_channel.public_key}


@router.post("/subscribe")
async def subscribe(
    request: SubscribeRequest,
    current_user: CurrentUserDep,
    db: SessionDep,
    push_channel: PushChannelDep,
) -> dict[str, Any]:
    """Store (or refresh) a push subscription for the caller."""
    if request.subscription is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid subscription data",
        )
    try:
        subscription = push_channel.subscribe(db, current_user.id, request.subscription)
    except MessagingError as exc:
        raise http_error(exc) from exc
    return {
        "success": True,
        "subscription": SubscriptionResponse.model_validate(subscription).model_dump(),
    }


@router.delete("/unsubscribe")
async def unsubscribe(
    request: UnsubscribeRequest,
    current_user: CurrentUserDep,
    db: SessionDep,
    push_channel: PushChannelDep,
) -> dict[str, Any]:
    """Remove one of the caller's push subscriptions."""
    if not request.endpoint:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Endpoint is required")
    if not push_channel.unsubscribe(db, current_user.id, request.endpoint):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subscription not found")
    return {"success": True, "message": "Subscription deleted"}

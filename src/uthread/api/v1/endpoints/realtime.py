# src/uthread/api/v1/endpoints/realtime.py
"""WebSocket channel for messaging, read receipts, typing and presence.

Frames are JSON objects ``{"event": ..., "data": {...}}`` in both directions.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from uthread.schemas.direct_message import DirectMessageCreate, MarkReadEvent, TypingEvent
from uthread.services.delivery import DeliveryRouter
from uthread.services.exceptions import AuthenticationError, MessagingError
from uthread.services.presence import send_to_handle

from ..dependencies import SessionFactoryDep, authenticate_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


async def _report_error(websocket: WebSocket, error: str) -> None:
    await send_to_handle(websocket, "message_error", {"error": error})


async def _handle_send_message(
    websocket: WebSocket, db: Session, delivery_router: DeliveryRouter, user_id: str, data: Any
) -> None:
    try:
        payload = DirectMessageCreate.model_validate(data)
        await delivery_router.route_direct_message(
            db, user_id, payload.receiver_id, payload, origin=websocket
        )
    except ValidationError:
        await _report_error(websocket, "Invalid message payload")
    except MessagingError as exc:
        await _report_error(websocket, str(exc))
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Error sending message from %s", user_id)
        await _report_error(websocket, "Failed to send message")


async def _handle_mark_read(
    websocket: WebSocket, db: Session, delivery_router: DeliveryRouter, user_id: str, data: Any
) -> None:
    try:
        event = MarkReadEvent.model_validate(data)
        await delivery_router.route_read_receipt(
            db,
            user_id,
            conversation_id=event.conversation_id,
            message_id=event.message_id,
            origin=websocket,
        )
    except ValidationError:
        await _report_error(websocket, "Invalid read receipt")
    except MessagingError as exc:
        await _report_error(websocket, str(exc))
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Error marking messages as read for %s", user_id)
        await _report_error(websocket, "Failed to mark messages as read")


async def _handle_typing(
    websocket: WebSocket, db: Session, delivery_router: DeliveryRouter, user_id: str, data: Any
) -> None:
    try:
        event = TypingEvent.model_validate(data)
    except ValidationError:
        return
    await delivery_router.route_typing_indicator(user_id, event.receiver_id, event.is_typing)


_HANDLERS = {
    "send_message": _handle_send_message,
    "mark_read": _handle_mark_read,
    "typing": _handle_typing,
}


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket, session_factory: SessionFactoryDep) -> None:
    """Authenticate, register the session and dispatch inbound events until disconnect.

    Each inbound event runs in its own database session so that no transaction
    stays open while the socket waits for the next frame.
    """
    try:
        with session_factory() as db:
            user = authenticate_token(db, websocket.query_params.get("token"))
            user_id, username = user.id, user.username
    except AuthenticationError as exc:
        logger.info("Socket auth failed: %s", exc)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=str(exc))
        return

    registry = websocket.app.state.session_registry
    delivery_router: DeliveryRouter = websocket.app.state.delivery_router

    await websocket.accept()
    await registry.register_session(user_id, websocket)
    await send_to_handle(websocket, "auth_success", {"user_id": user_id, "username": username})

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                await _report_error(websocket, "Invalid JSON message")
                continue

            event = frame.get("event") if isinstance(frame, dict) else None
            handler = _HANDLERS.get(event) if isinstance(event, str) else None
            if handler is None:
                await _report_error(websocket, f"Unknown event: {event}")
                continue
            with session_factory() as db:
                await handler(websocket, db, delivery_router, user_id, frame.get("data") or {})
    except WebSocketDisconnect:
        logger.info("Socket closed for user %s", user_id)
    finally:
        delivery_router.clear_typing(user_id)
        await registry.remove_session(user_id, websocket)

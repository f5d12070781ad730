"""In-process registry of live connections.

The registry is the single source of truth for whether a user is online in
this process. It is constructed at application start and held on
``app.state``; nothing here is persisted, so a restart empties it and every
client has to reconnect. Running several server processes requires sticky
routing per user or a shared presence store behind the same interface.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Any, Protocol

from uthread.db.time import utcnow

logger = logging.getLogger(__name__)


class ConnectionHandle(Protocol):
    """Anything that can push a JSON frame to one connected client."""

    async def send_json(self, data: Any) -> None:  # pragma: no cover - protocol
        ...


def make_frame(event: str, data: Any) -> dict[str, Any]:
    """Wrap an outbound event in the wire envelope."""
    return {"event": event, "data": data}


async def send_to_handle(handle: ConnectionHandle, event: str, data: Any) -> bool:
    """Push one event to one connection, reporting instead of raising on failure."""
    try:
        await handle.send_json(make_frame(event, data))
    except Exception as exc:  # noqa: BLE001
        logger.warning("Failed to deliver %s event: %s", event, exc)
        return False
    return True


class SessionRegistry:
    """Maps user identifiers to their active connection handles.

    A user may be connected from several devices. Presence flips to online on
    the first registered handle and to offline when the last one is removed;
    ``user_status`` events are broadcast to every other connected user on
    those two transitions only.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, list[ConnectionHandle]] = {}
        self._joined_at: dict[str, datetime] = {}

    async def register_session(self, user_id: str, handle: ConnectionHandle) -> bool:
        """Record ``handle`` for ``user_id``; re-registering the same handle is a no-op.

        Returns:
            True if the user just came online
        """
        handles = self._sessions.setdefault(user_id, [])
        came_online = not handles
        if handle not in handles:
            handles.append(handle)

        if came_online:
            self._joined_at[user_id] = utcnow()
            logger.info("User connected: %s", user_id)
            await self.broadcast(
                "user_status",
                {"user_id": user_id, "status": "online"},
                exclude=user_id,
            )
        return came_online

    async def remove_session(self, user_id: str, handle: ConnectionHandle | None = None) -> bool:
        """Drop one handle (or all of them when ``handle`` is None).

        Returns:
            True if the user just went offline
        """
        handles = self._sessions.get(user_id)
        if not handles:
            return False

        if handle is None:
            handles.clear()
        elif handle in handles:
            handles.remove(handle)

        if handles:
            return False

        del self._sessions[user_id]
        self._joined_at.pop(user_id, None)
        logger.info("User disconnected: %s", user_id)
        await self.broadcast(
            "user_status",
            {"user_id": user_id, "status": "offline"},
            exclude=user_id,
        )
        return True

    def is_online(self, user_id: str) -> bool:
        """Return True if ``user_id`` has at least one live connection."""
        return bool(self._sessions.get(user_id))

    def online_status_batch(self, user_ids: Iterable[str]) -> dict[str, bool]:
        """Return a map of each requested user identifier to its presence."""
        return {user_id: self.is_online(user_id) for user_id in user_ids}

    def joined_at(self, user_id: str) -> datetime | None:
        """Return when the user's current presence began."""
        return self._joined_at.get(user_id)

    def connections(self, user_id: str) -> list[ConnectionHandle]:
        """Return a snapshot of the user's connection handles."""
        return list(self._sessions.get(user_id, ()))

    @property
    def online_users(self) -> list[str]:
        """Identifiers of every user currently online."""
        return list(self._sessions)

    async def emit(self, user_id: str, event: str, data: Any) -> int:
        """Send an event to every connection of ``user_id``.

        Returns:
            Number of connections the event reached
        """
        delivered = 0
        for handle in self.connections(user_id):
            if await send_to_handle(handle, event, data):
                delivered += 1
        return delivered

    async def broadcast(self, event: str, data: Any, *, exclude: str | None = None) -> None:
        """Send an event to every connected user except ``exclude``."""
        for user_id in self.online_users:
            if user_id == exclude:
                continue
            await self.emit(user_id, event, data)

# tests/services/test_presence.py
"""Tests for the in-process session registry."""

import pytest

from uthread.services.presence import SessionRegistry, make_frame, send_to_handle


@pytest.mark.asyncio
async def test_register_broadcasts_online_to_others_only(registry: SessionRegistry, make_handle) -> None:
    alice, bob = make_handle(), make_handle()

    assert await registry.register_session("alice", alice) is True
    assert alice.frames == []

    assert await registry.register_session("bob", bob) is True
    assert alice.payloads("user_status") == [{"user_id": "bob", "status": "online"}]
    assert bob.frames == []
    assert registry.is_online("alice") and registry.is_online("bob")
    assert registry.joined_at("bob") is not None


@pytest.mark.asyncio
async def test_multi_device_presence_flips_on_first_and_last(registry: SessionRegistry, make_handle) -> None:
    watcher = make_handle()
    phone, laptop = make_handle(), make_handle()
    await registry.register_session("watcher", watcher)

    assert await registry.register_session("alice", phone) is True
    assert await registry.register_session("alice", laptop) is False
    assert len(registry.connections("alice")) == 2

    assert await registry.remove_session("alice", phone) is False
    assert registry.is_online("alice")

    assert await registry.remove_session("alice", laptop) is True
    assert not registry.is_online("alice")
    assert watcher.payloads("user_status") == [
        {"user_id": "alice", "status": "online"},
        {"user_id": "alice", "status": "offline"},
    ]


@pytest.mark.asyncio
async def test_register_same_handle_twice_is_noop(registry: SessionRegistry, make_handle) -> None:
    handle = make_handle()
    await registry.register_session("alice", handle)
    await registry.register_session("alice", handle)

    assert registry.connections("alice") == [handle]


@pytest.mark.asyncio
async def test_remove_unknown_user_is_harmless(registry: SessionRegistry, make_handle) -> None:
    assert await registry.remove_session("ghost") is False
    assert registry.online_users == []


@pytest.mark.asyncio
async def test_remove_without_handle_drops_every_connection(registry: SessionRegistry, make_handle) -> None:
    await registry.register_session("alice", make_handle())
    await registry.register_session("alice", make_handle())

    assert await registry.remove_session("alice") is True
    assert registry.connections("alice") == []


@pytest.mark.asyncio
async def test_online_status_batch(registry: SessionRegistry, make_handle) -> None:
    await registry.register_session("alice", make_handle())

    assert registry.online_status_batch(["alice", "bob"]) == {"alice": True, "bob": False}


@pytest.mark.asyncio
async def test_emit_counts_reached_connections_and_survives_failures(registry: SessionRegistry, make_handle) -> None:
    healthy, broken = make_handle(), make_handle(fail=True)
    await registry.register_session("alice", healthy)
    await registry.register_session("alice", broken)

    reached = await registry.emit("alice", "ping", {"n": 1})

    assert reached == 1
    assert healthy.frames == [make_frame("ping", {"n": 1})]


@pytest.mark.asyncio
async def test_send_to_handle_reports_failure(make_handle) -> None:
    assert await send_to_handle(make_handle(fail=True), "ping", {}) is False
    assert await send_to_handle(make_handle(), "ping", {}) is True

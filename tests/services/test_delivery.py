# tests/services/test_delivery.py
"""Tests for the delivery router: live vs push, read receipts and typing."""

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from uthread.models import Conversation, DirectMessage, PushSubscription, User
from uthread.schemas.direct_message import DirectMessageCreate
from uthread.services import conversations as store
from uthread.services.delivery import (
    DELIVERED_LIVE,
    DELIVERY_FAILED,
    NOT_DELIVERED,
    DeliveryRouter,
    TypingTracker,
    send_direct_message,
)
from uthread.services.exceptions import (
    InvalidMessageError,
    InvalidRequestError,
    NotFoundError,
    NotParticipantError,
)


def _payload(receiver: User, content: str = "hello", **kwargs) -> DirectMessageCreate:
    return DirectMessageCreate(receiver_id=receiver.id, content=content, **kwargs)


@pytest.mark.asyncio
async def test_offline_receiver_gets_one_push_tagged_with_message_id(
    db_session: Session, router: DeliveryRouter, push_transport, subscribe, test_user: User, other_user: User
) -> None:
    subscribe(other_user.id, "https://push.example/bob")

    message = await router.route_direct_message(
        db_session, test_user.id, other_user.id, _payload(other_user, "hello")
    )

    conversation = store.find_conversation(db_session, test_user.id, other_user.id)
    assert len(push_transport.payloads) == 1
    payload = push_transport.payloads[0]
    assert payload["tag"] == str(message.id)
    assert payload["body"] == "hello"
    assert payload["data"]["url"] == f"/messages/{conversation.id}"
    assert payload["data"]["messageId"] == str(message.id)
    assert conversation.state_for(other_user.id).unread_count == 1


@pytest.mark.asyncio
async def test_online_receiver_gets_profile_joined_message_and_view(
    db_session: Session, router: DeliveryRouter, push_transport, subscribe, make_handle,
    test_user: User, other_user: User,
) -> None:
    subscribe(other_user.id, "https://push.example/bob")
    bob = make_handle()
    await router.registry.register_session(other_user.id, bob)

    await router.route_direct_message(db_session, test_user.id, other_user.id, _payload(other_user, "one"))
    await router.route_direct_message(db_session, test_user.id, other_user.id, _payload(other_user, "two"))

    assert push_transport.calls == []
    assert bob.events() == ["new_message", "conversation_update"] * 2
    new_message = bob.payloads("new_message")[-1]
    assert new_message["content"] == "two"
    assert new_message["sender"]["username"] == test_user.username
    view = bob.payloads("conversation_update")[-1]
    assert view["unread_count"] == 2
    assert view["last_message_text"] == "two"
    assert view["other_participant"]["id"] == test_user.id


@pytest.mark.asyncio
async def test_origin_receives_acknowledgement_and_own_view(
    db_session: Session, router: DeliveryRouter, make_handle, test_user: User, other_user: User
) -> None:
    origin = make_handle()

    message = await router.route_direct_message(
        db_session, test_user.id, other_user.id, _payload(other_user), origin=origin
    )

    assert origin.events() == ["message_sent", "conversation_update"]
    assert origin.payloads("message_sent")[0]["id"] == message.id
    assert origin.payloads("conversation_update")[0]["unread_count"] == 0


@pytest.mark.asyncio
async def test_gone_subscription_is_pruned_and_send_still_succeeds(
    db_session: Session, router: DeliveryRouter, push_transport, subscribe, test_user: User, other_user: User
) -> None:
    subscribe(other_user.id, "https://push.example/gone")
    subscribe(other_user.id, "https://push.example/alive")
    push_transport.statuses["https://push.example/gone"] = 410

    message = await router.route_direct_message(
        db_session, test_user.id, other_user.id, _payload(other_user)
    )

    assert db_session.get(DirectMessage, message.id) is not None
    remaining = db_session.query(PushSubscription).filter(PushSubscription.user_id == other_user.id).all()
    assert [sub.endpoint for sub in remaining] == ["https://push.example/alive"]
    assert len(push_transport.calls) == 2


@pytest.mark.asyncio
async def test_empty_message_is_rejected_before_anything_is_stored(
    db_session: Session, router: DeliveryRouter, test_user: User, other_user: User
) -> None:
    with pytest.raises(InvalidMessageError, match="Message cannot be empty"):
        await router.route_direct_message(
            db_session, test_user.id, other_user.id, _payload(other_user, "   ")
        )
    with pytest.raises(InvalidMessageError, match="Recipient not specified"):
        await router.route_direct_message(
            db_session, test_user.id, None, DirectMessageCreate(content="hi")
        )

    assert db_session.query(DirectMessage).count() == 0
    assert store.find_conversation(db_session, test_user.id, other_user.id) is None


@pytest.mark.asyncio
async def test_unknown_or_self_recipient_is_rejected_before_anything_is_stored(
    db_session: Session, router: DeliveryRouter, registry, make_handle, test_user: User
) -> None:
    handle = make_handle()
    await registry.register_session(test_user.id, handle)

    with pytest.raises(NotFoundError, match="Recipient not found"):
        await router.route_direct_message(
            db_session, test_user.id, "ghost", DirectMessageCreate(receiver_id="ghost", content="hi")
        )
    with pytest.raises(InvalidMessageError, match="Cannot send message to yourself"):
        await router.route_direct_message(
            db_session, test_user.id, test_user.id, _payload(test_user), origin=handle
        )

    assert db_session.query(DirectMessage).count() == 0
    assert db_session.query(Conversation).count() == 0
    assert "message_sent" not in handle.events()


@pytest.mark.asyncio
async def test_media_only_message_is_accepted(
    db_session: Session, router: DeliveryRouter, test_user: User, other_user: User
) -> None:
    payload = _payload(
        other_user, "", media=[{"type": "image", "url": "https://cdn.example/cat.png"}]
    )

    message = await router.route_direct_message(db_session, test_user.id, other_user.id, payload)

    assert message.media[0]["type"] == "image"
    conversation = store.find_conversation(db_session, test_user.id, other_user.id)
    assert conversation.last_message_text == "Sent media"


@pytest.mark.asyncio
async def test_read_receipt_for_conversation(
    db_session: Session, router: DeliveryRouter, push_transport, subscribe, make_handle,
    test_user: User, other_user: User,
) -> None:
    await router.route_direct_message(db_session, test_user.id, other_user.id, _payload(other_user))
    await router.route_direct_message(db_session, test_user.id, other_user.id, _payload(other_user))
    conversation = store.find_conversation(db_session, test_user.id, other_user.id)
    alice, origin = make_handle(), make_handle()
    await router.registry.register_session(test_user.id, alice)

    await router.route_read_receipt(
        db_session, other_user.id, conversation_id=conversation.id, origin=origin
    )
    # Repeating is harmless.
    await router.route_read_receipt(db_session, other_user.id, conversation_id=conversation.id)

    db_session.refresh(conversation)
    assert conversation.state_for(other_user.id).unread_count == 0
    assert db_session.query(DirectMessage).filter(DirectMessage.is_read.is_(False)).count() == 0
    assert alice.payloads("messages_read")[0] == {
        "read_by": other_user.id,
        "conversation_id": conversation.id,
    }
    assert origin.payloads("read_confirmed") == [{"message_id": None, "conversation_id": conversation.id}]


@pytest.mark.asyncio
async def test_read_receipt_is_never_pushed(
    db_session: Session, router: DeliveryRouter, push_transport, subscribe, test_user: User, other_user: User
) -> None:
    message = await router.route_direct_message(
        db_session, other_user.id, test_user.id, _payload(test_user)
    )
    subscribe(other_user.id, "https://push.example/bob")

    await router.route_read_receipt(db_session, test_user.id, message_id=message.id)

    assert push_transport.calls == []
    db_session.refresh(message)
    assert message.is_read is True


@pytest.mark.asyncio
async def test_read_receipt_requires_the_receiver(
    db_session: Session, router: DeliveryRouter, test_user: User, other_user: User
) -> None:
    message = await router.route_direct_message(
        db_session, test_user.id, other_user.id, _payload(other_user)
    )

    with pytest.raises(NotParticipantError):
        await router.route_read_receipt(db_session, test_user.id, message_id=message.id)
    with pytest.raises(InvalidRequestError):
        await router.route_read_receipt(db_session, test_user.id)


@pytest.mark.asyncio
async def test_typing_indicator_is_forwarded_only_when_online(
    router: DeliveryRouter, push_transport, make_handle
) -> None:
    assert await router.route_typing_indicator("alice", "bob", True) is False

    bob = make_handle()
    await router.registry.register_session("bob", bob)
    assert await router.route_typing_indicator("alice", "bob", True) is True

    assert bob.payloads("user_typing") == [{"sender_id": "alice", "is_typing": True}]
    assert push_transport.calls == []
    assert router.clear_typing("alice") == 1
    assert not router.typing.is_typing("alice", "bob")


def test_typing_tracker_stop_clears_entry() -> None:
    tracker = TypingTracker()
    tracker.update("alice", "bob", True)
    tracker.update("alice", "bob", False)

    assert not tracker.is_typing("alice", "bob")
    assert tracker.clear_sender("alice") == []


@pytest.mark.asyncio
async def test_deliver_reports_failure_without_raising(
    db_session: Session, router: DeliveryRouter, mocker
) -> None:
    mocker.patch.object(router.push_channel, "send", side_effect=RuntimeError("boom"))

    outcome = await router.deliver(db_session, "bob", lambda: [], lambda: {"title": "x"})

    assert outcome == DELIVERY_FAILED
    assert await router.deliver(db_session, "bob", lambda: []) == NOT_DELIVERED


@pytest.mark.asyncio
async def test_deliver_goes_live_for_connected_user(
    db_session: Session, router: DeliveryRouter, make_handle
) -> None:
    bob = make_handle()
    await router.registry.register_session("bob", bob)

    outcome = await router.deliver(db_session, "bob", lambda: [("ping", {"n": 1})])

    assert outcome == DELIVERED_LIVE
    assert bob.payloads("ping") == [{"n": 1}]


@pytest.mark.asyncio
async def test_send_falls_back_to_direct_persistence(
    db_session: Session, router: DeliveryRouter, mocker, test_user: User, other_user: User
) -> None:
    mocker.patch.object(
        router,
        "route_direct_message",
        side_effect=OperationalError("INSERT", {}, Exception("database is locked")),
    )

    message = await send_direct_message(db_session, router, test_user.id, other_user.id, _payload(other_user))

    assert db_session.get(DirectMessage, message.id) is not None
    conversation = store.find_conversation(db_session, test_user.id, other_user.id)
    assert conversation.last_message_id == message.id


@pytest.mark.asyncio
async def test_send_does_not_retry_validation_errors(
    db_session: Session, router: DeliveryRouter, test_user: User, other_user: User
) -> None:
    with pytest.raises(InvalidMessageError):
        await send_direct_message(db_session, router, test_user.id, other_user.id, _payload(other_user, ""))
    with pytest.raises(NotFoundError):
        await send_direct_message(
            db_session, router, test_user.id, "ghost", DirectMessageCreate(receiver_id="ghost", content="hi")
        )
    assert db_session.query(Conversation).count() == 0
    assert db_session.query(DirectMessage).count() == 0


@pytest.mark.asyncio
async def test_send_without_router_persists_directly(
    db_session: Session, test_user: User, other_user: User
) -> None:
    message = await send_direct_message(db_session, None, test_user.id, other_user.id, _payload(other_user))

    conversation = store.find_conversation(db_session, test_user.id, other_user.id)
    assert conversation.last_message_id == message.id
    assert conversation.state_for(other_user.id).unread_count == 1

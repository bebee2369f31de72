"""Tests for the presence registry and inbound live frames."""

import json
from uuid import uuid4

import pytest

from speaker_portal.realtime.events import EventType, conversation_topic, user_topic
from speaker_portal.realtime.presence import PresenceRegistry

from fakes import RecordingChannel


def test_attach_subscribes_personal_topic():
    registry = PresenceRegistry()
    user_id = uuid4()
    channel = RecordingChannel(user_id)

    registry.attach(channel)

    assert registry.is_online(user_id)
    assert registry.subscribers(user_topic(user_id)) == [channel]
    assert registry.topics_of(channel) == {user_topic(user_id)}
    assert len(registry) == 1


def test_detach_drops_every_membership():
    registry = PresenceRegistry()
    user_id = uuid4()
    conversation_id = uuid4()
    first = RecordingChannel(user_id)
    second = RecordingChannel(user_id)
    registry.attach(first)
    registry.attach(second)
    registry.join(first, conversation_id)

    registry.detach(first)

    assert registry.subscribers(conversation_topic(conversation_id)) == []
    assert registry.subscribers(user_topic(user_id)) == [second]
    assert registry.topics_of(first) == set()

    registry.detach(second)
    registry.detach(second)
    assert not registry.is_online(user_id)
    assert len(registry) == 0


def test_join_after_detach_is_refused():
    registry = PresenceRegistry()
    channel = RecordingChannel(uuid4())
    registry.attach(channel)
    registry.detach(channel)

    assert registry.join(channel, uuid4()) is False
    assert registry.topics_of(channel) == set()


def test_leave_keeps_other_members():
    registry = PresenceRegistry()
    conversation_id = uuid4()
    first = RecordingChannel(uuid4())
    second = RecordingChannel(uuid4())
    for channel in (first, second):
        registry.attach(channel)
        registry.join(channel, conversation_id)

    registry.leave(first, conversation_id)

    assert not registry.is_member(first, conversation_id)
    assert registry.subscribers(conversation_topic(conversation_id)) == [second]


@pytest.mark.asyncio
async def test_join_frame_requires_participation(portal, new_user):
    alice = await new_user(portal.store, "Alice")
    bob = await new_user(portal.store, "Bob")
    mallory = await new_user(portal.store, "Mallory")
    conversation_id = await portal.resolver.resolve(alice.id, receiver_id=bob.id)

    intruder = RecordingChannel(mallory.id, mallory.name)
    portal.gateway.connect(intruder)
    await portal.gateway.handle(
        intruder, {"type": "join_conversation", "conversation_id": str(conversation_id)}
    )

    assert intruder.types() == [EventType.ERROR.value]
    assert intruder.events[0]["payload"]["code"] == "NotAuthorized"
    assert not portal.registry.is_member(intruder, conversation_id)

    member = RecordingChannel(bob.id, bob.name)
    portal.gateway.connect(member)
    await portal.gateway.handle(
        member, {"type": "join_conversation", "conversation_id": str(conversation_id)}
    )
    assert member.types() == [EventType.ROOMS_JOINED.value]
    assert member.events[0]["payload"]["conversation_ids"] == [str(conversation_id)]


@pytest.mark.asyncio
async def test_join_conversations_joins_every_room(portal, new_user):
    alice = await new_user(portal.store, "Alice")
    bob = await new_user(portal.store, "Bob")
    carol = await new_user(portal.store, "Carol")
    direct = await portal.resolver.resolve(alice.id, receiver_id=bob.id)
    group = await portal.conversations.create_group(alice.id, [bob.id, carol.id])

    channel = RecordingChannel(alice.id, alice.name)
    portal.gateway.connect(channel)
    await portal.gateway.handle_text(channel, json.dumps({"type": "join_conversations"}))

    assert portal.registry.is_member(channel, direct)
    assert portal.registry.is_member(channel, group.id)
    ack = channel.of_type(EventType.ROOMS_JOINED.value)[0]
    assert set(ack["payload"]["conversation_ids"]) == {str(direct), str(group.id)}


@pytest.mark.asyncio
async def test_typing_goes_to_other_members_only(portal, new_user):
    alice = await new_user(portal.store, "Alice")
    bob = await new_user(portal.store, "Bob")
    conversation_id = await portal.resolver.resolve(alice.id, receiver_id=bob.id)

    alice_channel = RecordingChannel(alice.id, alice.name)
    bob_channel = RecordingChannel(bob.id, bob.name)
    for channel in (alice_channel, bob_channel):
        portal.gateway.connect(channel)
        await portal.gateway.join(channel, conversation_id)

    frame = {"conversation_id": str(conversation_id)}
    await portal.gateway.handle(alice_channel, {"type": "typing_start", **frame})
    await portal.gateway.handle(alice_channel, {"type": "typing_stop", **frame})
    await portal.delivery.wait_idle()

    assert bob_channel.types() == [
        EventType.ROOMS_JOINED.value,
        EventType.USER_TYPING.value,
        EventType.USER_STOPPED_TYPING.value,
    ]
    typing = bob_channel.of_type(EventType.USER_TYPING.value)[0]
    assert typing["payload"] == {
        "conversation_id": str(conversation_id),
        "user_id": str(alice.id),
        "user_name": "Alice",
    }
    assert alice_channel.types() == [EventType.ROOMS_JOINED.value]


@pytest.mark.asyncio
async def test_typing_without_join_is_rejected(portal, new_user):
    alice = await new_user(portal.store, "Alice")
    bob = await new_user(portal.store, "Bob")
    conversation_id = await portal.resolver.resolve(alice.id, receiver_id=bob.id)
    alice_channel = RecordingChannel(alice.id, alice.name)
    bob_channel = RecordingChannel(bob.id, bob.name)
    portal.gateway.connect(alice_channel)
    portal.gateway.connect(bob_channel)
    await portal.gateway.join(bob_channel, conversation_id)

    await portal.gateway.handle(
        alice_channel, {"type": "typing_start", "conversation_id": str(conversation_id)}
    )
    await portal.delivery.wait_idle()

    assert alice_channel.types() == [EventType.ERROR.value]
    assert EventType.USER_TYPING.value not in bob_channel.types()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "text",
    [
        "not json",
        json.dumps(["a", "list"]),
        json.dumps({"type": "shout"}),
        json.dumps({"type": "join_conversation"}),
        json.dumps({"type": "leave_conversation", "conversation_id": "nope"}),
    ],
)
async def test_malformed_frames_get_error_events(portal, new_user, text):
    ada = await new_user(portal.store, "Ada")
    channel = RecordingChannel(ada.id, ada.name)
    portal.gateway.connect(channel)

    await portal.gateway.handle_text(channel, text)

    assert channel.types() == [EventType.ERROR.value]
    assert portal.registry.topics_of(channel) == {user_topic(ada.id)}

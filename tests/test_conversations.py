"""Tests for conversation resolution and the view-driven read path."""

import asyncio
from uuid import uuid4

import pydantic
import pytest

from speaker_portal.domain.errors import NotAuthorized, NotFound, ValidationError
from speaker_portal.domain.models import Conversation, Participant


@pytest.mark.asyncio
async def test_resolve_reuses_direct_conversation(portal, new_user):
    """Repeated resolves for a pair, from either side, hit one conversation."""
    alice = await new_user(portal.store, "Alice")
    bob = await new_user(portal.store, "Bob")

    first = await portal.resolver.resolve(alice.id, receiver_id=bob.id)
    second = await portal.resolver.resolve(alice.id, receiver_id=bob.id)
    reverse = await portal.resolver.resolve(bob.id, receiver_id=alice.id)

    assert first == second == reverse
    conversations = await portal.store.list_conversations_for_user(alice.id)
    assert [c.id for c in conversations] == [first]
    assert conversations[0].is_group is False
    assert conversations[0].participant_ids == {alice.id, bob.id}


@pytest.mark.asyncio
async def test_concurrent_first_resolves_create_one_conversation(portal, new_user):
    alice = await new_user(portal.store, "Alice")
    bob = await new_user(portal.store, "Bob")

    results = await asyncio.gather(
        *[portal.resolver.resolve(alice.id, receiver_id=bob.id) for _ in range(10)],
        *[portal.resolver.resolve(bob.id, receiver_id=alice.id) for _ in range(10)],
    )

    assert len(set(results)) == 1
    assert len(await portal.store.list_conversations_for_user(bob.id)) == 1


@pytest.mark.asyncio
async def test_resolve_existing_conversation_checks_membership(portal, new_user):
    alice = await new_user(portal.store, "Alice")
    bob = await new_user(portal.store, "Bob")
    mallory = await new_user(portal.store, "Mallory")
    conversation_id = await portal.resolver.resolve(alice.id, receiver_id=bob.id)

    assert await portal.resolver.resolve(bob.id, conversation_id=conversation_id) == conversation_id
    with pytest.raises(NotAuthorized):
        await portal.resolver.resolve(mallory.id, conversation_id=conversation_id)
    with pytest.raises(NotFound):
        await portal.resolver.resolve(alice.id, conversation_id=uuid4())


@pytest.mark.asyncio
async def test_resolve_rejects_bad_receivers(portal, new_user):
    alice = await new_user(portal.store, "Alice")

    with pytest.raises(ValidationError):
        await portal.resolver.resolve(alice.id)
    with pytest.raises(ValidationError):
        await portal.resolver.resolve(alice.id, receiver_id=alice.id)
    with pytest.raises(NotFound):
        await portal.resolver.resolve(alice.id, receiver_id=uuid4())


@pytest.mark.asyncio
async def test_send_requires_exactly_one_target(portal, new_user):
    alice = await new_user(portal.store, "Alice")
    bob = await new_user(portal.store, "Bob")
    conversation_id = await portal.resolver.resolve(alice.id, receiver_id=bob.id)

    with pytest.raises(ValidationError):
        await portal.conversations.send_message(alice.id, "hello")
    with pytest.raises(ValidationError):
        await portal.conversations.send_message(
            alice.id, "hello", conversation_id=conversation_id, receiver_id=bob.id
        )
    with pytest.raises(ValidationError):
        await portal.conversations.send_message(alice.id, "   ", receiver_id=bob.id)


@pytest.mark.asyncio
async def test_unread_counts_follow_reads(portal, new_user):
    """Three messages make three unread for the receiver and none for the sender."""
    alice = await new_user(portal.store, "Alice")
    bob = await new_user(portal.store, "Bob")

    sent = [
        await portal.conversations.send_message(alice.id, f"Message {i}", receiver_id=bob.id)
        for i in range(3)
    ]
    conversation_id = sent[0].conversation_id

    assert await portal.conversations.unread_count(bob.id, conversation_id) == 3
    assert await portal.conversations.unread_count(alice.id, conversation_id) == 0

    messages = await portal.conversations.get_messages(bob.id, conversation_id)
    assert [m.content for m in messages] == ["Message 0", "Message 1", "Message 2"]
    assert all(m.is_read for m in messages)
    assert await portal.conversations.unread_count(bob.id, conversation_id) == 0

    reply = await portal.conversations.send_message(
        bob.id, "Got them", conversation_id=conversation_id
    )
    assert await portal.conversations.unread_count(alice.id, conversation_id) == 1

    # Bob viewing again does not mark his own reply as read.
    await portal.conversations.get_messages(bob.id, conversation_id)
    stored = await portal.store.get_messages(conversation_id)
    assert next(m for m in stored if m.id == reply.id).is_read is False
    assert await portal.conversations.unread_count(alice.id, conversation_id) == 1


@pytest.mark.asyncio
async def test_last_read_never_moves_backwards(portal, new_user):
    alice = await new_user(portal.store, "Alice")
    bob = await new_user(portal.store, "Bob")
    message = await portal.conversations.send_message(alice.id, "hi", receiver_id=bob.id)

    await portal.conversations.get_messages(bob.id, message.conversation_id)
    conversation = await portal.store.get_conversation(message.conversation_id)
    first_read = conversation.participant(bob.id).last_read_at
    assert first_read is not None

    await portal.store.read_messages(
        message.conversation_id, bob.id, read_at=first_read.replace(year=2000)
    )
    conversation = await portal.store.get_conversation(message.conversation_id)
    assert conversation.participant(bob.id).last_read_at == first_read


@pytest.mark.asyncio
async def test_get_messages_requires_participation(portal, new_user):
    alice = await new_user(portal.store, "Alice")
    bob = await new_user(portal.store, "Bob")
    mallory = await new_user(portal.store, "Mallory")
    message = await portal.conversations.send_message(alice.id, "private", receiver_id=bob.id)

    with pytest.raises(NotAuthorized):
        await portal.conversations.get_messages(mallory.id, message.conversation_id)
    with pytest.raises(NotFound):
        await portal.conversations.get_messages(alice.id, uuid4())
    # The refused read left the message unread.
    assert await portal.conversations.unread_count(bob.id, message.conversation_id) == 1


@pytest.mark.asyncio
async def test_message_pages_count_from_newest(portal, new_user):
    alice = await new_user(portal.store, "Alice")
    bob = await new_user(portal.store, "Bob")
    for i in range(5):
        message = await portal.conversations.send_message(alice.id, f"m{i}", receiver_id=bob.id)

    newest = await portal.conversations.get_messages(bob.id, message.conversation_id, page=1, limit=2)
    older = await portal.conversations.get_messages(bob.id, message.conversation_id, page=2, limit=2)

    assert [m.content for m in newest] == ["m3", "m4"]
    assert [m.content for m in older] == ["m1", "m2"]


@pytest.mark.asyncio
async def test_list_conversations_summaries(portal, new_user):
    alice = await new_user(portal.store, "Alice")
    bob = await new_user(portal.store, "Bob")
    carol = await new_user(portal.store, "Carol")

    with_bob = await portal.conversations.send_message(alice.id, "to bob", receiver_id=bob.id)
    await portal.conversations.send_message(carol.id, "from carol", receiver_id=alice.id)
    await portal.conversations.send_message(carol.id, "again", receiver_id=alice.id)

    summaries = await portal.conversations.list_conversations(alice.id)

    assert len(summaries) == 2
    latest, older = summaries
    assert latest.participant_ids == [carol.id]
    assert latest.unread_count == 2
    assert latest.last_message.content == "again"
    assert older.id == with_bob.conversation_id
    assert older.unread_count == 0


@pytest.mark.asyncio
async def test_create_group(portal, new_user):
    alice = await new_user(portal.store, "Alice")
    bob = await new_user(portal.store, "Bob")
    carol = await new_user(portal.store, "Carol")

    group = await portal.conversations.create_group(
        alice.id, [bob.id, carol.id, bob.id, alice.id], title="Panel prep"
    )

    assert group.is_group is True
    assert group.title == "Panel prep"
    assert group.participant_ids == {alice.id, bob.id, carol.id}

    with pytest.raises(ValidationError):
        await portal.conversations.create_group(alice.id, [alice.id])
    with pytest.raises(NotFound):
        await portal.conversations.create_group(alice.id, [uuid4()])


@pytest.mark.asyncio
async def test_group_read_flag_is_shared_by_members(portal, new_user):
    alice = await new_user(portal.store, "Alice")
    bob = await new_user(portal.store, "Bob")
    carol = await new_user(portal.store, "Carol")
    group = await portal.conversations.create_group(alice.id, [bob.id, carol.id])

    await portal.conversations.send_message(alice.id, "welcome", conversation_id=group.id)
    await portal.conversations.get_messages(bob.id, group.id)

    # Read flags are per message, so Bob's view clears the message for Carol too.
    assert await portal.conversations.unread_count(carol.id, group.id) == 0
    assert await portal.conversations.unread_count(alice.id, group.id) == 0


def test_direct_conversation_needs_two_participants():
    conversation_id = uuid4()
    with pytest.raises(pydantic.ValidationError):
        Conversation(
            id=conversation_id,
            is_group=False,
            participants=[Participant(conversation_id=conversation_id, user_id=uuid4())],
        )

    user_id = uuid4()
    with pytest.raises(pydantic.ValidationError):
        Conversation(
            id=conversation_id,
            is_group=True,
            participants=[
                Participant(conversation_id=conversation_id, user_id=user_id),
                Participant(conversation_id=conversation_id, user_id=user_id),
            ],
        )

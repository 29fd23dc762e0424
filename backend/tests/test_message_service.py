"""Message store: append rules, history pagination, edit and delete."""

import pytest

from rendezvous.crud import crud
from rendezvous.events import EventType
from rendezvous.exceptions import InvalidOperation
from rendezvous.exceptions import NotFound
from rendezvous.exceptions import PermissionDenied
from rendezvous.exceptions import ValidationError
from rendezvous.models.enums import MessageType
from rendezvous.models.enums import NotificationType
from rendezvous.models.models import Message
from rendezvous.models.models import MessageRead
from rendezvous.services import conversation_service
from rendezvous.services import message_service
from rendezvous.services import read_state


async def _direct_pair(db, make_user):
    """Two users and their direct conversation."""

    u1, u2 = make_user(), make_user()
    conversation, _ = await conversation_service.get_or_create_direct(db, u1.id, u2.id)
    return u1, u2, conversation


async def _send_many(db, conversation_id, sender_id, count, prefix="m"):
    return [await message_service.append(db, conversation_id, sender_id, f"{prefix}{i}") for i in range(count)]


# ---------------------------------------------------------------------------
# Append
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_append_assigns_ids_and_bumps_activity(db_session, make_user, captured_events):
    u1, u2, conversation = await _direct_pair(db_session, make_user)
    before = conversation.last_activity_at

    message = await message_service.append(db_session, conversation.id, u1.id, "  hello  ")

    assert message.id is not None
    assert message.content == "hello"
    assert message.message_type == MessageType.TEXT
    assert message.is_edited is False

    refreshed = crud.get_conversation(db_session, conversation.id)
    assert refreshed.last_activity_at >= before
    assert refreshed.last_activity_at == message.created_at

    created = [e for e in captured_events if e["event_type"] == EventType.MESSAGE_CREATED]
    assert len(created) == 1
    assert created[0]["audience"] == sorted([u1.id, u2.id])
    assert created[0]["conversation_id"] == conversation.id
    assert created[0]["data"]["content"] == "hello"


@pytest.mark.asyncio
async def test_append_notifies_other_participants_only(db_session, make_user):
    u1, u2, conversation = await _direct_pair(db_session, make_user)

    message = await message_service.append(db_session, conversation.id, u1.id, "ping")

    assert crud.get_notifications(db_session, u1.id) == []
    (notification,) = crud.get_notifications(db_session, u2.id)
    assert notification.type == NotificationType.MESSAGE
    assert notification.actor_id == u1.id
    assert notification.payload["conversation_id"] == conversation.id
    assert notification.payload["message_id"] == message.id


@pytest.mark.asyncio
async def test_non_participant_cannot_append_or_read(db_session, make_user):
    _, _, conversation = await _direct_pair(db_session, make_user)
    outsider = make_user()

    with pytest.raises(PermissionDenied):
        await message_service.append(db_session, conversation.id, outsider.id, "let me in")
    with pytest.raises(PermissionDenied):
        message_service.page(db_session, conversation.id, outsider.id)
    with pytest.raises(NotFound):
        message_service.page(db_session, 999, outsider.id)

    assert db_session.query(Message).count() == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("content", ["", "   ", None])
async def test_text_message_requires_content(db_session, make_user, content):
    u1, _, conversation = await _direct_pair(db_session, make_user)
    with pytest.raises(ValidationError):
        await message_service.append(db_session, conversation.id, u1.id, content)


@pytest.mark.asyncio
async def test_overlong_message_rejected(db_session, make_user):
    u1, _, conversation = await _direct_pair(db_session, make_user)
    with pytest.raises(ValidationError):
        await message_service.append(db_session, conversation.id, u1.id, "x" * 10_000)


@pytest.mark.asyncio
async def test_attachment_messages_need_a_reference(db_session, make_user):
    u1, _, conversation = await _direct_pair(db_session, make_user)

    with pytest.raises(ValidationError):
        await message_service.append(db_session, conversation.id, u1.id, "", message_type=MessageType.IMAGE)

    image = await message_service.append(
        db_session,
        conversation.id,
        u1.id,
        "",
        message_type=MessageType.IMAGE,
        attachment_ref="uploads/cat.png",
    )
    assert image.message_type == MessageType.IMAGE
    assert image.attachment_ref == "uploads/cat.png"
    assert image.content == ""


@pytest.mark.asyncio
async def test_reply_must_target_same_conversation(db_session, make_user):
    u1, u2, u3 = make_user(), make_user(), make_user()
    first, _ = await conversation_service.get_or_create_direct(db_session, u1.id, u2.id)
    second, _ = await conversation_service.get_or_create_direct(db_session, u1.id, u3.id)

    elsewhere = await message_service.append(db_session, second.id, u1.id, "hi carol")

    with pytest.raises(NotFound):
        await message_service.append(db_session, first.id, u1.id, "re", reply_to_id=elsewhere.id)

    parent = await message_service.append(db_session, first.id, u2.id, "question?")
    reply = await message_service.append(db_session, first.id, u1.id, "answer", reply_to_id=parent.id)
    assert reply.reply_to_id == parent.id


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_pages_walk_full_history_despite_concurrent_appends(db_session, make_user):
    u1, u2, conversation = await _direct_pair(db_session, make_user)
    originals = await _send_many(db_session, conversation.id, u1.id, 7)

    seen = []
    page = message_service.page(db_session, conversation.id, u2.id, limit=3)
    while page:
        # Oldest first within each page.
        assert [m.id for m in page] == sorted(m.id for m in page)
        seen = [m.id for m in page] + seen
        # New traffic lands between page fetches.
        await message_service.append(db_session, conversation.id, u2.id, "interleaved")
        page = message_service.page(db_session, conversation.id, u2.id, limit=3, before_id=page[0].id)

    assert seen == [m.id for m in originals]


@pytest.mark.asyncio
async def test_page_limit_is_clamped(db_session, make_user):
    u1, u2, conversation = await _direct_pair(db_session, make_user)
    await _send_many(db_session, conversation.id, u1.id, 3)

    assert len(message_service.page(db_session, conversation.id, u2.id, limit=0)) == 1
    assert len(message_service.page(db_session, conversation.id, u2.id, limit=10_000)) == 3
    assert len(message_service.page(db_session, conversation.id, u2.id)) == 3


@pytest.mark.asyncio
async def test_unknown_or_foreign_cursor_is_not_found(db_session, make_user):
    u1, u2, u3 = make_user(), make_user(), make_user()
    first, _ = await conversation_service.get_or_create_direct(db_session, u1.id, u2.id)
    second, _ = await conversation_service.get_or_create_direct(db_session, u1.id, u3.id)
    foreign = await message_service.append(db_session, second.id, u1.id, "not yours")

    with pytest.raises(NotFound):
        message_service.page(db_session, first.id, u1.id, before_id=12345)
    with pytest.raises(NotFound):
        message_service.page(db_session, first.id, u1.id, before_id=foreign.id)


# ---------------------------------------------------------------------------
# Edit / delete
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_only_sender_may_edit(db_session, make_user, captured_events):
    u1, u2, conversation = await _direct_pair(db_session, make_user)
    message = await message_service.append(db_session, conversation.id, u1.id, "typo")

    with pytest.raises(PermissionDenied):
        await message_service.edit(db_session, message.id, u2.id, "hijack")

    edited = await message_service.edit(db_session, message.id, u1.id, "fixed")
    assert edited.content == "fixed"
    assert edited.is_edited is True
    assert edited.updated_at >= edited.created_at

    updates = [e for e in captured_events if e["event_type"] == EventType.MESSAGE_UPDATED]
    assert [e["entity_id"] for e in updates] == [message.id]

    with pytest.raises(ValidationError):
        await message_service.edit(db_session, message.id, u1.id, "   ")
    with pytest.raises(NotFound):
        await message_service.edit(db_session, 4040, u1.id, "nope")


@pytest.mark.asyncio
async def test_delete_clears_reads_and_replies(db_session, make_user, captured_events):
    u1, u2, conversation = await _direct_pair(db_session, make_user)
    parent = await message_service.append(db_session, conversation.id, u1.id, "original")
    reply = await message_service.append(db_session, conversation.id, u2.id, "reply", reply_to_id=parent.id)
    await read_state.mark_read(db_session, u2.id, [parent.id])

    with pytest.raises(PermissionDenied):
        await message_service.delete(db_session, parent.id, u2.id)

    await message_service.delete(db_session, parent.id, u1.id)

    assert crud.get_message(db_session, parent.id) is None
    assert db_session.query(MessageRead).filter(MessageRead.message_id == parent.id).count() == 0
    db_session.refresh(reply)
    assert reply.reply_to_id is None

    deleted = [e for e in captured_events if e["event_type"] == EventType.MESSAGE_DELETED]
    assert deleted[-1]["data"] == {"id": parent.id, "conversation_id": conversation.id}
    assert deleted[-1]["audience"] == sorted([u1.id, u2.id])


@pytest.mark.asyncio
async def test_archived_group_rejects_new_messages(db_session, make_user):
    u1, u2 = make_user(), make_user()
    group = await conversation_service.create_group(db_session, u1.id, "Pair", [u2.id])
    await message_service.append(db_session, group.id, u2.id, "bye")
    await conversation_service.leave_group(db_session, group.id, u2.id)

    with pytest.raises(InvalidOperation):
        await message_service.append(db_session, group.id, u1.id, "hello?")

    # History stays readable for the remaining participant.
    assert [m.content for m in message_service.page(db_session, group.id, u1.id)] == ["bye"]


@pytest.mark.asyncio
async def test_message_length_limit_follows_settings(db_session, make_user, monkeypatch):
    u1, _, conversation = await _direct_pair(db_session, make_user)
    monkeypatch.setenv("MAX_MESSAGE_LENGTH", "10")

    with pytest.raises(ValidationError):
        await message_service.append(db_session, conversation.id, u1.id, "x" * 11)
    assert (await message_service.append(db_session, conversation.id, u1.id, "x" * 10)).content == "x" * 10

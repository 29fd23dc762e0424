"""Read-state ledger: derived unread counters and idempotent read marks."""

import pytest

from rendezvous.crud import crud
from rendezvous.events import EventType
from rendezvous.exceptions import NotFound
from rendezvous.exceptions import PermissionDenied
from rendezvous.models.enums import NotificationType
from rendezvous.models.models import MessageRead
from rendezvous.services import conversation_service
from rendezvous.services import message_service
from rendezvous.services import notification_service
from rendezvous.services import read_state


@pytest.mark.asyncio
async def test_two_user_scenario(db_session, make_user):
    u1, u2 = make_user(), make_user()
    conversation, _ = await conversation_service.get_or_create_direct(db_session, u1.id, u2.id)

    first = await message_service.append(db_session, conversation.id, u2.id, "one")
    second = await message_service.append(db_session, conversation.id, u2.id, "two")

    assert read_state.unread_message_count(db_session, u1.id) == 2
    assert read_state.unread_conversation_count(db_session, u1.id) == 1
    assert read_state.unread_count_for_conversation(db_session, u1.id, conversation.id) == 2
    # Own messages are never unread for their sender.
    assert read_state.unread_message_count(db_session, u2.id) == 0

    assert await read_state.mark_read(db_session, u1.id, [first.id]) == 1
    assert read_state.unread_message_count(db_session, u1.id) == 1

    assert await read_state.mark_read(db_session, u1.id, [first.id, second.id]) == 1
    assert read_state.unread_message_count(db_session, u1.id) == 0
    assert read_state.unread_conversation_count(db_session, u1.id) == 0


@pytest.mark.asyncio
async def test_mark_read_is_idempotent(db_session, make_user, captured_events):
    u1, u2 = make_user(), make_user()
    conversation, _ = await conversation_service.get_or_create_direct(db_session, u1.id, u2.id)
    message = await message_service.append(db_session, conversation.id, u2.id, "hey")

    assert await read_state.mark_read(db_session, u1.id, [message.id, message.id]) == 1
    assert await read_state.mark_read(db_session, u1.id, [message.id]) == 0

    marks = db_session.query(MessageRead).filter(MessageRead.user_id == u1.id).all()
    assert [m.message_id for m in marks] == [message.id]

    # Only the call that inserted something is announced, and only to the reader.
    read_events = [e for e in captured_events if e["event_type"] == EventType.MESSAGES_READ]
    assert len(read_events) == 1
    assert read_events[0]["audience"] == [u1.id]
    assert read_events[0]["data"]["message_ids"] == [message.id]


@pytest.mark.asyncio
async def test_mark_read_skips_own_and_foreign_messages(db_session, make_user):
    u1, u2, u3 = make_user(), make_user(), make_user()
    ours, _ = await conversation_service.get_or_create_direct(db_session, u1.id, u2.id)
    theirs, _ = await conversation_service.get_or_create_direct(db_session, u2.id, u3.id)

    own = await message_service.append(db_session, ours.id, u1.id, "mine")
    foreign = await message_service.append(db_session, theirs.id, u3.id, "private")

    assert await read_state.mark_read(db_session, u1.id, [own.id, foreign.id, 999]) == 0
    assert db_session.query(MessageRead).count() == 0


@pytest.mark.asyncio
async def test_mark_conversation_read(db_session, make_user):
    u1, u2, u3 = make_user(), make_user(), make_user()
    group = await conversation_service.create_group(db_session, u1.id, "Trip", [u2.id])
    for text in ("a", "b", "c"):
        await message_service.append(db_session, group.id, u2.id, text)

    with pytest.raises(PermissionDenied):
        await read_state.mark_conversation_read(db_session, u3.id, group.id)

    assert await read_state.mark_conversation_read(db_session, u1.id, group.id) == 3
    assert await read_state.mark_conversation_read(db_session, u1.id, group.id) == 0
    assert read_state.unread_by_conversation(db_session, u1.id) == {}


@pytest.mark.asyncio
async def test_unread_by_conversation_groups_counts(db_session, make_user):
    u1, u2, u3 = make_user(), make_user(), make_user()
    with_bob, _ = await conversation_service.get_or_create_direct(db_session, u1.id, u2.id)
    with_carol, _ = await conversation_service.get_or_create_direct(db_session, u1.id, u3.id)

    await message_service.append(db_session, with_bob.id, u2.id, "1")
    await message_service.append(db_session, with_bob.id, u2.id, "2")
    await message_service.append(db_session, with_carol.id, u3.id, "3")

    assert read_state.unread_by_conversation(db_session, u1.id) == {with_bob.id: 2, with_carol.id: 1}

    counts = read_state.counts(db_session, u1.id)
    assert counts["unread_messages"] == 3
    assert counts["unread_conversations"] == 2
    assert counts["notifications"]["by_type"][NotificationType.MESSAGE.value] == 3


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_notification_counts_are_zero_filled(db_session, make_user):
    u1, u2 = make_user(), make_user()

    counts = read_state.notification_counts(db_session, u1.id)
    assert counts == {"total": 0, "by_type": {t.value: 0 for t in NotificationType}}

    await notification_service.notify_follow(db_session, u1.id, u2.id)
    await notification_service.notify_like(db_session, u1.id, "post-1", actor_id=u2.id)

    counts = read_state.notification_counts(db_session, u1.id)
    assert counts["total"] == 2
    assert counts["by_type"] == {"follow": 1, "message": 0, "like": 1, "comment": 0}


@pytest.mark.asyncio
async def test_mark_single_notification_read(db_session, make_user, captured_events):
    u1, u2 = make_user(), make_user()
    notification = await notification_service.notify_follow(db_session, u1.id, u2.id)

    with pytest.raises(NotFound):
        await read_state.mark_notification_read(db_session, u2.id, notification.id)

    assert await read_state.mark_notification_read(db_session, u1.id, notification.id) is True
    assert await read_state.mark_notification_read(db_session, u1.id, notification.id) is False

    row = crud.get_notification(db_session, notification.id, u1.id)
    assert row.is_read is True
    assert row.read_at is not None

    updates = [e for e in captured_events if e["event_type"] == EventType.NOTIFICATION_UPDATED]
    assert len(updates) == 1


@pytest.mark.asyncio
async def test_mark_all_read_respects_up_to_id(db_session, make_user, captured_events):
    u1, u2, u3 = make_user(), make_user(), make_user()
    older = await notification_service.notify_follow(db_session, u1.id, u2.id)
    shown = await notification_service.notify_like(db_session, u1.id, "p1", actor_id=u2.id)
    # Arrives after the client last fetched its list.
    newer = await notification_service.notify_follow(db_session, u1.id, u3.id)
    # Someone else's notification is never touched.
    other = await notification_service.notify_follow(db_session, u2.id, u3.id)

    assert await read_state.mark_all_notifications_read(db_session, u1.id, up_to_id=shown.id) == 2

    states = {n.id: n.is_read for n in crud.get_notifications(db_session, u1.id)}
    assert states == {older.id: True, shown.id: True, newer.id: False}
    assert crud.get_notification(db_session, other.id, u2.id).is_read is False

    batched = [e for e in captured_events if e["event_type"] == EventType.NOTIFICATION_UPDATED]
    assert len(batched) == 1
    assert batched[0]["data"] == {"ids": sorted([older.id, shown.id]), "is_read": True}

    assert await read_state.mark_all_notifications_read(db_session, u1.id) == 1
    assert await read_state.mark_all_notifications_read(db_session, u1.id) == 0
    assert read_state.notification_counts(db_session, u1.id)["total"] == 0

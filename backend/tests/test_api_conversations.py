"""HTTP surface for conversations, participants and messages."""

BASE = "/api/conversations"


def _direct(client, other_id):
    return client.post(f"{BASE}/direct", json={"user_id": other_id})


def test_direct_conversation_create_then_reuse(act_as, make_user):
    u1, u2 = make_user(), make_user()

    first = _direct(act_as(u1), u2.id)
    assert first.status_code == 201
    body = first.json()
    assert body["created"] is True
    assert body["conversation"]["kind"] == "direct"
    assert sorted(p["user_id"] for p in body["conversation"]["participants"]) == [u1.id, u2.id]

    again = _direct(act_as(u2), u1.id)
    assert again.status_code == 200
    assert again.json()["created"] is False
    assert again.json()["conversation"]["id"] == body["conversation"]["id"]


def test_direct_conversation_errors(act_as, make_user):
    u1 = make_user()
    client = act_as(u1)

    self_chat = _direct(client, u1.id)
    assert self_chat.status_code == 400
    assert self_chat.json()["error"] == "InvalidParticipant"

    missing = _direct(client, 999)
    assert missing.status_code == 404
    assert missing.json()["error"] == "NotFound"

    assert _direct(client, 0).status_code == 422


def test_group_lifecycle(act_as, make_user):
    u1, u2, u3, u4 = make_user(), make_user(), make_user(), make_user()

    created = act_as(u1).post(f"{BASE}/group", json={"name": "Trip", "member_ids": [u2.id, u3.id]})
    assert created.status_code == 201
    group_id = created.json()["id"]

    listing = act_as(u2).get(BASE)
    assert listing.status_code == 200
    assert [(c["display_name"], c["participant_count"]) for c in listing.json()] == [("Trip", 3)]

    denied = act_as(u2).post(f"{BASE}/{group_id}/participants", json={"user_id": u4.id})
    assert denied.status_code == 403

    added = act_as(u1).post(f"{BASE}/{group_id}/participants", json={"user_id": u4.id})
    assert added.status_code == 201
    assert added.json()["role"] == "member"

    roster = act_as(u4).get(f"{BASE}/{group_id}/participants")
    assert len(roster.json()) == 4

    promoted = act_as(u1).put(f"{BASE}/{group_id}/participants/{u2.id}/role", json={"role": "admin"})
    assert promoted.status_code == 200
    assert promoted.json()["role"] == "admin"

    renamed = act_as(u2).patch(f"{BASE}/{group_id}", json={"name": "Road trip"})
    assert renamed.status_code == 200
    assert renamed.json()["name"] == "Road trip"

    assert act_as(u1).delete(f"{BASE}/{group_id}/participants/{u4.id}").status_code == 204
    assert act_as(u3).post(f"{BASE}/{group_id}/leave").status_code == 204
    assert act_as(u3).get(f"{BASE}/{group_id}").status_code == 403

    # Two left: removing another would break the group.
    conflict = act_as(u1).delete(f"{BASE}/{group_id}/participants/{u2.id}")
    assert conflict.status_code == 409


def test_group_validation_errors(act_as, make_user):
    u1, u2 = make_user(), make_user()
    client = act_as(u1)

    assert client.post(f"{BASE}/group", json={"name": "  ", "member_ids": [u2.id]}).status_code == 400
    assert client.post(f"{BASE}/group", json={"name": "Solo", "member_ids": []}).status_code == 400
    assert client.post(f"{BASE}/group", json={"name": "Ghost", "member_ids": [404]}).status_code == 404


def test_direct_conversation_rejects_roster_changes(act_as, make_user):
    u1, u2, u3 = make_user(), make_user(), make_user()
    conversation_id = _direct(act_as(u1), u2.id).json()["conversation"]["id"]

    response = act_as(u1).post(f"{BASE}/{conversation_id}/participants", json={"user_id": u3.id})
    assert response.status_code == 409
    assert response.json()["error"] == "InvalidOperation"


def test_conversation_not_found(act_as, make_user):
    u1 = make_user()
    response = act_as(u1).get(f"{BASE}/12345")
    assert response.status_code == 404
    assert response.json()["context"] == {"conversation_id": 12345}


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


def test_send_and_page_messages(act_as, make_user):
    u1, u2 = make_user(), make_user()
    conversation_id = _direct(act_as(u1), u2.id).json()["conversation"]["id"]

    sent = [act_as(u1).post(f"{BASE}/{conversation_id}/messages", json={"content": f"msg {i}"}) for i in range(5)]
    assert all(r.status_code == 201 for r in sent)
    ids = [r.json()["id"] for r in sent]

    client = act_as(u2)
    newest = client.get(f"{BASE}/{conversation_id}/messages", params={"limit": 2, "mark_read": False})
    assert [m["id"] for m in newest.json()] == ids[-2:]

    older = client.get(
        f"{BASE}/{conversation_id}/messages",
        params={"limit": 10, "before_id": ids[-2], "mark_read": False},
    )
    assert [m["id"] for m in older.json()] == ids[:-2]

    assert client.get("/api/counts").json()["unread_messages"] == 5

    # Fetching with the default marks the returned page read.
    client.get(f"{BASE}/{conversation_id}/messages", params={"limit": 2})
    assert client.get("/api/counts").json()["unread_messages"] == 3

    unknown_cursor = client.get(f"{BASE}/{conversation_id}/messages", params={"before_id": 9999})
    assert unknown_cursor.status_code == 404


def test_message_permissions(act_as, make_user):
    u1, u2, outsider = make_user(), make_user(), make_user()
    conversation_id = _direct(act_as(u1), u2.id).json()["conversation"]["id"]

    forbidden = act_as(outsider).post(f"{BASE}/{conversation_id}/messages", json={"content": "hi"})
    assert forbidden.status_code == 403
    assert act_as(outsider).get(f"{BASE}/{conversation_id}/messages").status_code == 403

    empty = act_as(u1).post(f"{BASE}/{conversation_id}/messages", json={"content": "   "})
    assert empty.status_code == 400

    message_id = act_as(u1).post(f"{BASE}/{conversation_id}/messages", json={"content": "draft"}).json()["id"]

    assert act_as(u2).patch(f"/api/messages/{message_id}", json={"content": "nope"}).status_code == 403
    assert act_as(u2).delete(f"/api/messages/{message_id}").status_code == 403

    edited = act_as(u1).patch(f"/api/messages/{message_id}", json={"content": "final"})
    assert edited.status_code == 200
    assert edited.json()["is_edited"] is True
    assert edited.json()["content"] == "final"

    assert act_as(u1).delete(f"/api/messages/{message_id}").status_code == 204
    assert act_as(u1).delete(f"/api/messages/{message_id}").status_code == 404


def test_mark_read_endpoints(act_as, make_user):
    u1, u2 = make_user(), make_user()
    conversation_id = _direct(act_as(u1), u2.id).json()["conversation"]["id"]
    ids = [
        act_as(u1).post(f"{BASE}/{conversation_id}/messages", json={"content": text}).json()["id"]
        for text in ("a", "b", "c")
    ]

    client = act_as(u2)
    first = client.post("/api/messages/read", json={"message_ids": [ids[0], ids[0]]})
    assert first.json() == {"marked": 1}
    assert client.post("/api/messages/read", json={"message_ids": [ids[0]]}).json() == {"marked": 0}

    rest = client.post(f"{BASE}/{conversation_id}/read")
    assert rest.json() == {"marked": 2}

    counts = client.get("/api/counts").json()
    assert counts["unread_messages"] == 0
    assert counts["unread_conversations"] == 0

    listing = client.get(BASE).json()
    assert listing[0]["unread_count"] == 0
    assert listing[0]["last_message"]["content"] == "c"

from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from campusnotes.models.chat import TOMBSTONE, ChatMessage
from campusnotes.models.user import RoleEnum
from campusnotes.realtime.events import ChatBroker
from campusnotes.services import chat


@pytest.fixture
async def room3(make_user, connect):
    """Alice and Bob in semester 3, Carol in semester 4, all connected."""
    alice = await make_user(semester="3", name="Alice")
    bob = await make_user(semester="3", name="Bob")
    carol = await make_user(semester="4", name="Carol")
    sockets = {}
    conns = {}
    for name, user in (("alice", alice), ("bob", bob), ("carol", carol)):
        conns[name], sockets[name] = await connect(user)
    return {"users": {"alice": alice, "bob": bob, "carol": carol}, "conns": conns, "sockets": sockets}


def _clear(sockets):
    for socket in sockets.values():
        socket.clear()


async def _send(broker, conn, room, body):
    await broker.dispatch(conn, {"event": "send-message", "data": {"room": room, "message": body}})


# ── send-message ──

async def test_message_reaches_semester_room_only(broker, room3):
    conns, sockets = room3["conns"], room3["sockets"]

    await _send(broker, conns["alice"], "3", "hello")

    for name in ("alice", "bob"):
        [frame] = sockets[name].events("new-message")
        assert frame["data"]["message"] == "hello"
        assert frame["data"]["sender"]["name"] == "Alice"
        assert frame["data"]["sender"]["avatar"] == room3["users"]["alice"].avatar_url
    assert sockets["carol"].sent == []


async def test_general_message_reaches_everyone(broker, room3):
    await _send(broker, room3["conns"]["carol"], "general", "hi all")

    for socket in room3["sockets"].values():
        assert [f["data"]["message"] for f in socket.events("new-message")] == ["hi all"]


async def test_send_to_foreign_semester_errors_caller_only(db, broker, room3):
    conns, sockets = room3["conns"], room3["sockets"]

    await _send(broker, conns["alice"], "4", "sneaky")

    assert sockets["alice"].sent == [{"event": "error", "data": {"message": "Access denied to this room"}}]
    assert sockets["bob"].sent == []
    assert sockets["carol"].sent == []
    assert (await db.execute(ChatMessage.__table__.select())).all() == []


async def test_client_claimed_room_cannot_bypass_profile(broker, room3):
    conns, sockets = room3["conns"], room3["sockets"]
    await broker.dispatch(conns["alice"], {"event": "send-message",
                                           "data": {"semesterId": "semester-4", "message": "hi"}})
    assert sockets["carol"].sent == []
    assert sockets["alice"].events("error")


async def test_empty_message_is_a_validation_error(broker, room3):
    await _send(broker, room3["conns"]["alice"], "3", "   ")
    assert room3["sockets"]["alice"].sent == [{"event": "error", "data": {"message": "Message cannot be empty"}}]
    assert room3["sockets"]["bob"].sent == []


# ── edit-message ──

async def test_edit_broadcasts_updated_message(broker, room3):
    conns, sockets = room3["conns"], room3["sockets"]
    await _send(broker, conns["alice"], "3", "helo")
    message_id = sockets["alice"].events("new-message")[0]["data"]["id"]
    _clear(sockets)

    await broker.dispatch(conns["alice"], {"event": "edit-message",
                                           "data": {"messageId": message_id, "newMessage": "hello"}})

    for name in ("alice", "bob"):
        [frame] = sockets[name].events("message-edited")
        assert frame["data"]["message"] == "hello"
        assert frame["data"]["isEdited"] is True
    assert sockets["carol"].sent == []


async def test_edit_after_sixteen_minutes_is_rejected(db, broker, room3):
    conns, sockets = room3["conns"], room3["sockets"]
    await _send(broker, conns["alice"], "3", "hello")
    message_id = sockets["alice"].events("new-message")[0]["data"]["id"]
    _clear(sockets)

    message = await db.get(ChatMessage, message_id)
    message.created_at = message.created_at - timedelta(minutes=16)
    await db.commit()

    await broker.dispatch(conns["alice"], {"event": "edit-message",
                                           "data": {"messageId": message_id, "newMessage": "changed"}})

    assert sockets["alice"].sent == [{"event": "error", "data": {"message": "Edit window expired"}}]
    assert sockets["bob"].sent == []
    assert (await chat.get_message(db, message_id)).body == "hello"


async def test_editing_someone_elses_message_is_rejected(broker, room3):
    conns, sockets = room3["conns"], room3["sockets"]
    await _send(broker, conns["alice"], "3", "hello")
    message_id = sockets["alice"].events("new-message")[0]["data"]["id"]
    _clear(sockets)

    await broker.dispatch(conns["bob"], {"event": "edit-message",
                                         "data": {"messageId": message_id, "newMessage": "mine now"}})

    assert sockets["bob"].events("error")[0]["data"]["message"] == "You can only edit your own messages"
    assert sockets["alice"].sent == []


# ── delete-message ──

async def test_delete_broadcasts_id_and_room(db, broker, room3):
    conns, sockets = room3["conns"], room3["sockets"]
    await _send(broker, conns["alice"], "3", "oops")
    message_id = sockets["alice"].events("new-message")[0]["data"]["id"]
    _clear(sockets)

    await broker.dispatch(conns["alice"], {"event": "delete-message", "data": {"messageId": message_id}})

    expected = {"event": "message-deleted", "data": {"messageId": message_id, "room": "3"}}
    assert sockets["alice"].sent == [expected]
    assert sockets["bob"].sent == [expected]
    assert sockets["carol"].sent == []
    assert (await chat.get_message(db, message_id)).body == TOMBSTONE


async def test_admin_delete_in_own_semester(make_user, connect, broker, room3):
    admin = await make_user(semester="3", role=RoleEnum.ADMIN)
    admin_conn, admin_socket = await connect(admin)
    conns, sockets = room3["conns"], room3["sockets"]
    await _send(broker, conns["bob"], "3", "spam")
    message_id = sockets["bob"].events("new-message")[0]["data"]["id"]

    await broker.dispatch(admin_conn, {"event": "delete-message", "data": {"messageId": message_id}})

    assert admin_socket.events("message-deleted")
    assert sockets["bob"].events("message-deleted")


async def test_delete_missing_message_is_not_found(broker, room3):
    await broker.dispatch(room3["conns"]["alice"], {"event": "delete-message", "data": {"messageId": 999}})
    assert room3["sockets"]["alice"].sent == [{"event": "error", "data": {"message": "Message not found"}}]


# ── add-reaction ──

async def test_double_reaction_nets_to_removed(broker, room3):
    conns, sockets = room3["conns"], room3["sockets"]
    await _send(broker, conns["alice"], "3", "hello")
    message_id = sockets["alice"].events("new-message")[0]["data"]["id"]
    bob_id = room3["users"]["bob"].id
    _clear(sockets)

    react = {"event": "add-reaction", "data": {"messageId": message_id, "emoji": "👍"}}
    await broker.dispatch(conns["bob"], react)
    await broker.dispatch(conns["bob"], react)

    first, last = sockets["alice"].events("reaction-updated")
    assert [(r["userId"], r["emoji"]) for r in first["data"]["reactions"]] == [(bob_id, "👍")]
    assert last["data"]["messageId"] == message_id
    assert not any(r["userId"] == bob_id and r["emoji"] == "👍" for r in last["data"]["reactions"])
    assert sockets["carol"].sent == []


# ── typing ──

async def test_typing_goes_to_room_excluding_caller(broker, room3):
    conns, sockets = room3["conns"], room3["sockets"]
    alice = room3["users"]["alice"]

    await broker.dispatch(conns["alice"], {"event": "typing-start", "data": {"room": "3"}})
    await broker.dispatch(conns["alice"], {"event": "typing-stop", "data": {"room": "3"}})

    assert sockets["alice"].sent == []
    assert [f["data"] for f in sockets["bob"].events("user-typing")] == [
        {"userId": alice.id, "userName": "Alice", "isTyping": True},
        {"userId": alice.id, "userName": "Alice", "isTyping": False},
    ]
    assert sockets["carol"].sent == []


async def test_typing_into_foreign_room_is_rejected(broker, room3):
    conns, sockets = room3["conns"], room3["sockets"]
    await broker.dispatch(conns["alice"], {"event": "typing-start", "data": {"room": "4"}})
    assert sockets["alice"].events("error")
    assert sockets["carol"].sent == []


# ── rooms & presence ──

async def test_join_own_rooms_and_silently_ignore_others(broker, room3):
    conn, socket = room3["conns"]["alice"], room3["sockets"]["alice"]
    broker.connections.leave(conn, "semester-3")

    await broker.dispatch(conn, {"event": "join-room", "data": "semester-4"})
    await broker.dispatch(conn, {"event": "join-room", "data": "user-99"})
    await broker.dispatch(conn, {"event": "join-room", "data": "3"})

    assert "semester-4" not in conn.rooms
    assert "user-99" not in conn.rooms
    assert "semester-3" in conn.rooms
    assert socket.sent == []


async def test_leave_room(broker, room3):
    conns, sockets = room3["conns"], room3["sockets"]

    await broker.dispatch(conns["bob"], {"event": "leave-room", "data": "semester-3"})
    await _send(broker, conns["alice"], "3", "anyone?")

    assert "semester-3" not in conns["bob"].rooms
    assert sockets["bob"].sent == []


async def test_presence_goes_to_semester_room_only(broker, make_user, connect, room3):
    sockets = room3["sockets"]
    dave = await make_user(semester="3", name="Dave")
    dave_conn, dave_socket = await connect(dave)

    await broker.on_connect(dave_conn)
    await broker.on_disconnect(dave_conn)

    expected = {"userId": dave.id, "userName": "Dave"}
    assert [f["data"] for f in sockets["alice"].events("user-connected")] == [expected]
    assert [f["data"] for f in sockets["bob"].events("user-disconnected")] == [expected]
    assert sockets["carol"].sent == []
    assert dave_socket.sent == []
    assert dave_conn.rooms == set()


# ── dispatcher failures ──

async def test_unknown_event_and_bad_payload(broker, room3):
    conn, socket = room3["conns"]["alice"], room3["sockets"]["alice"]

    await broker.dispatch(conn, {"event": "self-destruct", "data": {}})
    await broker.dispatch(conn, {"event": "edit-message", "data": {"messageId": "abc"}})
    await broker.dispatch(conn, ["not", "a", "frame"])

    assert [f["data"]["message"] for f in socket.sent] == [
        "Unknown event: self-destruct",
        "Invalid payload",
        "Malformed event",
    ]


async def test_persistence_failure_is_isolated_to_caller(connections, room3, connect, make_user):
    def broken_session():
        raise OperationalError("INSERT", {}, Exception("database is unavailable"))

    failing = ChatBroker(connections, session_factory=broken_session)
    conns, sockets = room3["conns"], room3["sockets"]

    await _send(failing, conns["alice"], "3", "hello")

    assert sockets["alice"].sent == [{"event": "error", "data": {"message": "Action failed"}}]
    assert sockets["bob"].sent == []


async def test_numeric_semester_id_is_accepted(broker, room3):
    conns, sockets = room3["conns"], room3["sockets"]
    await broker.dispatch(conns["alice"], {"event": "send-message", "data": {"semesterId": 3, "message": "hi"}})
    assert [f["data"]["room"] for f in sockets["bob"].events("new-message")] == ["3"]


async def test_non_string_event_name_is_malformed(broker, room3):
    conn, socket = room3["conns"]["alice"], room3["sockets"]["alice"]
    await broker.dispatch(conn, {"event": ["send-message"], "data": {}})
    assert socket.sent == [{"event": "error", "data": {"message": "Malformed event"}}]


async def test_out_of_range_message_id_is_an_invalid_payload(broker, room3):
    conn, socket = room3["conns"]["alice"], room3["sockets"]["alice"]
    await broker.dispatch(conn, {"event": "delete-message", "data": {"messageId": 2**70}})
    assert socket.sent == [{"event": "error", "data": {"message": "Invalid payload"}}]


async def test_unexpected_handler_error_is_isolated_to_caller(connections, room3):
    def exploding_session():
        raise RuntimeError("boom")

    failing = ChatBroker(connections, session_factory=exploding_session)
    conns, sockets = room3["conns"], room3["sockets"]

    await _send(failing, conns["alice"], "3", "hello")

    assert sockets["alice"].sent == [{"event": "error", "data": {"message": "Action failed"}}]
    assert sockets["bob"].sent == []
    # the connection stays registered and usable
    assert "semester-3" in conns["alice"].rooms
    await failing.dispatch(conns["alice"], {"event": "typing-start", "data": {"room": "3"}})
    assert sockets["bob"].events("user-typing")

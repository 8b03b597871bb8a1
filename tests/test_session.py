import time

import pytest
import requests

from social_chat.client.models import MessageStatus
from social_chat.client.session import ChatSession
from social_chat.shared import protocol


class FakeRealtime:
    def __init__(self):
        self.handlers = {}
        self.emitted = []

    def on(self, event, handler):
        self.handlers.setdefault(event, []).append(handler)

    def off(self, event, handler):
        self.handlers[event].remove(handler)

    def on_open(self, hook):
        hook()

    def emit(self, event, data=None):
        self.emitted.append((event, data))
        return True

    def fire(self, event, data):
        for handler in list(self.handlers.get(event, [])):
            handler(data)


class FakeApi:
    def __init__(self, realtime, history=()):
        self.realtime = realtime
        self.history = list(history)
        self.stored = []
        self.deleted = []
        self.fail_send = False
        self.fail_delete = False
        self.fail_status = False
        self.echo_first = False
        self.status = {"user_id": "u2", "username": "bob", "is_online": False, "last_seen": "2024-05-01T09:00:00"}

    def get_conversation(self, user_id, peer_id):
        return {"receiver": {"id": peer_id, "username": "bob", "profile_picture": ""}, "messages": self.history}

    def get_user_status(self, user_id):
        if self.fail_status:
            raise requests.ConnectionError("offline")
        return self.status

    def send_message(self, payload):
        if self.fail_send:
            raise requests.Timeout("too slow")
        record = {
            "id": f"m{len(self.stored) + 1}",
            "sender": payload["sender"],
            "receiver": payload["receiver"],
            "text": payload["text"],
            "client_temp_id": payload["client_temp_id"],
            "created_at": "2024-05-01T10:00:00",
        }
        self.stored.append(record)
        if self.echo_first:
            self.realtime.fire(protocol.MESSAGE, record)
        return record

    def delete_message(self, message_id):
        if self.fail_delete:
            raise requests.HTTPError("500 Server Error")
        self.deleted.append(message_id)
        return {"id": message_id, "client_temp_id": None}


def peer_record(id, text="hey"):
    return {"id": id, "sender": "u2", "receiver": "u1", "text": text, "created_at": "2024-05-01T10:05:00"}


@pytest.fixture
def realtime():
    return FakeRealtime()


@pytest.fixture
def api(realtime):
    return FakeApi(realtime, history=[peer_record("h1", "earlier")])


@pytest.fixture
def changes():
    return []


@pytest.fixture
def session(api, realtime, changes):
    chat = ChatSession(api, realtime, "u1", "u2", send_timeout=8, view_height=3, on_change=lambda kind, entry: changes.append(kind))
    chat.open()
    return chat


def test_open_loads_history_and_joins_room(session, realtime):
    assert [m.text for m in session.messages] == ["earlier"]
    assert session.peer.username == "bob"
    assert realtime.emitted == [
        (protocol.ADD_USER, {"user_id": "u1"}),
        (protocol.JOIN_ROOM, {"room_id": "u1::u2", "user_id": "u1"}),
    ]
    assert session.peer_status.is_online is False
    assert session.peer_status.last_seen is not None


def test_send_reconciles_with_rest_response(session, realtime, api):
    entry = session.send("hello")
    assert entry.status == MessageStatus.SENT
    assert entry.id == "m1"

    realtime.fire(protocol.MESSAGE, api.stored[0])
    assert [m.text for m in session.messages] == ["earlier", "hello"]


def test_echo_before_rest_response_is_not_duplicated(session, api):
    api.echo_first = True
    entry = session.send("fast echo")
    assert entry.status == MessageStatus.SENT
    assert len(session.messages) == 2


def test_failed_send_then_retry(session, api, changes):
    api.fail_send = True
    entry = session.send("flaky")
    assert entry.status == MessageStatus.FAILED
    assert "failed" in changes

    api.fail_send = False
    assert session.retry(entry.client_temp_id) is entry
    assert entry.status == MessageStatus.SENT
    assert session.retry(entry.key) is None


def test_empty_message_is_refused(session):
    with pytest.raises(ValueError):
        session.send("   ")


def test_incoming_peer_message(session, realtime, changes):
    realtime.fire(protocol.MESSAGE, peer_record("p1"))
    realtime.fire(protocol.MESSAGE, peer_record("p1"))
    realtime.fire(protocol.MESSAGE, {**peer_record("x1"), "receiver": "u3"})
    assert [m.id for m in session.messages] == ["h1", "p1"]
    assert changes.count("appended") == 1


def test_delete_persisted_message(session, api):
    entry = session.send("regret")
    assert session.delete(entry.id) is True
    assert api.deleted == [entry.id]
    assert [m.id for m in session.messages] == ["h1"]


def test_failed_delete_restores_entry(session, api, changes):
    entry = session.send("keep me")
    api.fail_delete = True
    assert session.delete(entry.id) is False
    assert entry.deleting is False
    assert entry in session.messages
    assert changes[-1] == "restored"


def test_delete_before_confirmation_unsends(session, api, realtime):
    api.fail_send = True
    entry = session.send("oops")
    assert session.delete(entry.client_temp_id) is True
    assert realtime.emitted[-1] == (protocol.UNSEND_TEMP, {"client_temp_id": entry.client_temp_id})
    assert api.deleted == []

    late = {**peer_record("m7"), "sender": "u1", "receiver": "u2", "client_temp_id": entry.client_temp_id}
    realtime.fire(protocol.MESSAGE, late)
    assert realtime.emitted[-1] == (protocol.UNSEND_TEMP, {"client_temp_id": entry.client_temp_id})
    assert [m.id for m in session.messages] == ["h1"]


def test_deleted_broadcast_removes_message(session, realtime):
    realtime.fire(protocol.MESSAGE_DELETED, {"id": "h1", "client_temp_id": None})
    assert session.messages == []


def test_presence_events(session, realtime):
    realtime.fire(protocol.GET_USERS, {"user_ids": ["u1", "u2"]})
    assert session.peer_status.is_online is True
    assert session.online_user_ids == {"u1", "u2"}

    realtime.fire(protocol.USER_STATUS_CHANGED, {"user_id": "u3", "is_online": True, "last_seen": None})
    assert session.peer_status.is_online is True

    realtime.fire(protocol.USER_STATUS_CHANGED, {"user_id": "u2", "is_online": False, "last_seen": "2024-06-01T08:00:00"})
    assert session.peer_status.is_online is False
    assert session.peer_status.last_seen.month == 6


def test_status_poll_failure_keeps_last_known(session, api):
    api.status = {"user_id": "u2", "username": "bob", "is_online": True, "last_seen": None}
    assert session.refresh_status().is_online is True
    api.fail_status = True
    assert session.refresh_status().is_online is True


def test_stuck_send_expires(session):
    entry = session.state.append_optimistic("stuck", now=time.monotonic() - 60)
    assert session.expire_pending() == [entry]
    assert entry.status == MessageStatus.FAILED


def test_viewport_follows_only_when_pinned(session, realtime):
    for n in range(60):
        realtime.fire(protocol.MESSAGE, peer_record(f"p{n}"))
    assert session.viewport.offset == session.viewport.max_offset == 58

    session.scroll_to(0)
    realtime.fire(protocol.MESSAGE, peer_record("late"))
    assert session.viewport.offset == 0
    assert session.viewport.show_jump_button
    session.jump_to_bottom()
    assert session.viewport.offset == 59


def test_close_leaves_room(session, realtime):
    session.close()
    assert realtime.emitted[-1] == (protocol.LEAVE_ROOM, {"room_id": "u1::u2"})
    assert all(not handlers for handlers in realtime.handlers.values())

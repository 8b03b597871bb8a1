from datetime import datetime

import pytest

from social_chat.shared.protocol import Frame
from social_chat.shared.utils import conversation_id, is_password_strong, is_valid_identifier, parse_conversation_id


def test_conversation_id_is_order_independent():
    assert conversation_id("u2", "u1") == conversation_id("u1", "u2") == "u1::u2"


def test_conversation_id_with_self():
    assert conversation_id("u1", "u1") == "u1::u1"


def test_conversation_id_sorts_as_text():
    assert conversation_id("10", "9") == "10::9"
    assert conversation_id("B", "a") == "B::a"


def test_parse_conversation_id():
    assert parse_conversation_id("u1::u2") == ("u1", "u2")
    for bad in ("u2::u1", "u1", "u1::u2::u3", "::u1", "u1::", None, "u 1::u2"):
        with pytest.raises(ValueError):
            parse_conversation_id(bad)


def test_identifiers():
    assert is_valid_identifier("64f0c2e1a9b8")
    assert is_valid_identifier("user_1-a")
    assert not is_valid_identifier("")
    assert not is_valid_identifier("a::b")
    assert not is_valid_identifier("x" * 65)
    assert not is_valid_identifier(42)


def test_password_policy():
    assert is_password_strong("a sensible passphrase")
    assert not is_password_strong("short")
    assert not is_password_strong("12345678901")
    assert not is_password_strong("password", min_length=4)


def test_frame_from_json():
    frame = Frame.from_json('{"event":"join_room","data":{"room_id":"a::b"}}')
    assert frame == Frame("join_room", {"room_id": "a::b"})
    assert Frame.from_json('{"event":"ping"}').data == {}


@pytest.mark.parametrize("raw", ["", "[]", '{"data":{}}', '{"event":1}', '{"event":"x","data":[1]}', "{oops"])
def test_frame_rejects_garbage(raw):
    with pytest.raises(ValueError):
        Frame.from_json(raw)


def test_frame_serializes_datetimes():
    raw = Frame("user_status_changed", {"last_seen": datetime(2024, 5, 1, 8, 30)}).to_json()
    assert raw == '{"event":"user_status_changed","data":{"last_seen":"2024-05-01 08:30:00"}}'

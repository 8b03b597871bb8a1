"""Shared utility functions."""
import re
from datetime import datetime, timezone
from typing import Tuple

ROOM_SEPARATOR = "::"
IDENTIFIER_RE = re.compile(r"[A-Za-z0-9_-]{1,64}")

PASSWORD_BLACKLIST = {
    "123456",
    "123456789",
    "password",
    "qwerty",
    "111111",
    "12345678",
}


def is_valid_identifier(value) -> bool:
    """Return True if value can be used as a user or message identifier."""
    return isinstance(value, str) and IDENTIFIER_RE.fullmatch(value) is not None


def conversation_id(user_a: str, user_b: str) -> str:
    """Return the room name shared by two participants, whatever their order."""
    first, second = sorted([str(user_a), str(user_b)])
    return f"{first}{ROOM_SEPARATOR}{second}"


def parse_conversation_id(room_id: str) -> Tuple[str, str]:
    parts = room_id.split(ROOM_SEPARATOR) if isinstance(room_id, str) else []
    if len(parts) != 2 or not all(is_valid_identifier(p) for p in parts):
        raise ValueError(f"Malformed room id: {room_id!r}")
    if conversation_id(*parts) != room_id:
        raise ValueError(f"Room id is not in canonical order: {room_id!r}")
    return parts[0], parts[1]


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the database columns store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def is_password_strong(password: str, min_length: int = 10) -> bool:
    """Return True if password meets simple strength requirements."""
    if len(password) < min_length:
        return False
    if password.lower() in PASSWORD_BLACKLIST:
        return False
    if re.fullmatch(r"\d+", password):
        return False
    return True

"""Client settings and session state kept in a small JSON file."""
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

STORAGE_FILE = Path(os.getenv("SOCIAL_CHAT_STATE", Path.home() / ".social_chat_client.json"))
SEND_TIMEOUT_SECONDS = float(os.getenv("SOCIAL_CHAT_SEND_TIMEOUT", 8))

AUTH_KEYS = ("token", "user", "last_peer")


def load_state() -> Dict[str, Any]:
    try:
        raw = STORAGE_FILE.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    try:
        state = json.loads(raw)
    except ValueError:
        logger.warning("Ignoring unreadable client state in %s", STORAGE_FILE)
        return {}
    return state if isinstance(state, dict) else {}


def update_state(**changes: Any) -> Dict[str, Any]:
    """Merge ``changes`` into the stored state; a value of None removes the key."""
    state = load_state()
    for key, value in changes.items():
        if value is None:
            state.pop(key, None)
        else:
            state[key] = value
    STORAGE_FILE.parent.mkdir(parents=True, exist_ok=True)
    scratch = STORAGE_FILE.with_suffix(".tmp")
    scratch.write_text(json.dumps(state, indent=2), encoding="utf-8")
    os.replace(scratch, STORAGE_FILE)
    return state


def store_server_url(url: str) -> None:
    update_state(server_url=url.rstrip("/"))


def get_server_url() -> Optional[str]:
    return load_state().get("server_url")


def store_auth(token: str, user: Dict[str, Any]) -> None:
    update_state(token=token, user=user)


def clear_auth() -> None:
    update_state(**dict.fromkeys(AUTH_KEYS))


def get_token() -> Optional[str]:
    return load_state().get("token")


def get_user() -> Optional[Dict[str, Any]]:
    return load_state().get("user")


def remember_peer(username: str) -> None:
    update_state(last_peer=username)


def last_peer() -> Optional[str]:
    return load_state().get("last_peer")

import os
import tempfile
from pathlib import Path

# Settings are read at import time; keep test runs away from the package directory.
_RUN_DIR = Path(tempfile.mkdtemp(prefix="social_chat_tests_"))
os.environ.setdefault("LOG_FILE", str(_RUN_DIR / "server.log"))
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_RUN_DIR / 'default.db'}")
os.environ.setdefault("UPLOAD_DIR", str(_RUN_DIR / "uploads"))
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from social_chat.server.auth import TOKEN_STORE, hash_password, issue_token
from social_chat.server.database import Base
from social_chat.server.main import Settings, create_app
from social_chat.server.models import User
from social_chat.shared.protocol import Frame

PASSWORD = "correct-horse-battery"


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'chat.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def users(session_factory):
    db = session_factory()
    password_hash = hash_password(PASSWORD, rounds=4)
    for user_id, username in (("u1", "alice"), ("u2", "bob"), ("u3", "carol")):
        db.add(User(id=user_id, username=username, email=f"{username}@example.com", password_hash=password_hash))
    db.commit()
    db.close()
    return ["u1", "u2", "u3"]


@pytest.fixture
def tokens(users):
    issued = {user_id: issue_token(user_id) for user_id in users}
    yield issued
    for token in issued.values():
        TOKEN_STORE.pop(token, None)


@pytest.fixture
def upload_dir(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture
def app(session_factory, users, upload_dir):
    return create_app(session_factory, Settings(upload_dir=upload_dir, max_upload_bytes=1024))


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def channel(app):
    return app.state.channel


def auth_header(token):
    return {"Authorization": f"Bearer {token}"}


def send_event(ws, event, **data):
    ws.send_text(Frame(event, data).to_json())


def receive_until(ws, event, limit=20):
    """Read frames until one named ``event`` arrives and return its data."""
    for _ in range(limit):
        frame = Frame.from_json(ws.receive_text())
        if frame.event == event:
            return frame.data
    raise AssertionError(f"no {event} frame within {limit} frames")


def events_until(ws, event, limit=20):
    """Read frames up to and including ``event``; returns the event names seen."""
    seen = []
    for _ in range(limit):
        frame = Frame.from_json(ws.receive_text())
        seen.append(frame.event)
        if frame.event == event:
            return seen
    raise AssertionError(f"no {event} frame within {limit} frames")

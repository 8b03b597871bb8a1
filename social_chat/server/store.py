"""Persistence gateways used by the realtime channel and the REST routes.

Both gateways open their own short-lived sessions from a session factory so
they can be called from a worker thread while the event loop keeps serving
other connections.
"""
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional

from fastapi import Request
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from . import schemas
from .logging_config import configure_logging
from .models import Message, User

logger = configure_logging("store")


class UserNotFound(LookupError):
    """Raised when a message names a participant the directory does not know."""

    def __init__(self, user_id: str):
        super().__init__(f"User not found: {user_id}")
        self.user_id = user_id


class _Gateway:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    @contextmanager
    def session(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


class MessageStore(_Gateway):
    def create(
        self,
        sender_id: str,
        receiver_id: str,
        text: str = "",
        image: Optional[str] = None,
        voice: Optional[str] = None,
        client_temp_id: Optional[str] = None,
    ) -> schemas.MessageOut:
        """Persist a message, or return the existing one for a repeated temp id."""
        with self.session() as db:
            for user_id in (sender_id, receiver_id):
                if db.get(User, user_id) is None:
                    raise UserNotFound(user_id)

            if client_temp_id:
                existing = self._by_temp_id(db, sender_id, client_temp_id)
                if existing is not None:
                    return self._duplicate(existing)

            message = Message(
                sender_id=sender_id,
                receiver_id=receiver_id,
                text=text or "",
                image=image,
                voice=voice,
                client_temp_id=client_temp_id,
            )
            db.add(message)
            try:
                db.commit()
            except IntegrityError:
                # Another request stored the same temp id after our lookup.
                db.rollback()
                existing = self._by_temp_id(db, sender_id, client_temp_id) if client_temp_id else None
                if existing is None:
                    raise
                return self._duplicate(existing)
            db.refresh(message)
            logger.info(
                "MESSAGE_SENT sender_id=%s receiver_id=%s message_id=%s",
                sender_id,
                receiver_id,
                message.id,
            )
            return schemas.MessageOut.model_validate(message)

    def find_by_id(self, message_id: str) -> Optional[schemas.MessageOut]:
        with self.session() as db:
            message = db.get(Message, message_id)
            return schemas.MessageOut.model_validate(message) if message else None

    def find_by_temp_id(self, sender_id: str, client_temp_id: str) -> Optional[schemas.MessageOut]:
        with self.session() as db:
            message = self._by_temp_id(db, sender_id, client_temp_id)
            return schemas.MessageOut.model_validate(message) if message else None

    def delete(self, message_id: str) -> Optional[schemas.MessageOut]:
        """Delete a message and return what was deleted, or None if it did not exist."""
        with self.session() as db:
            message = db.get(Message, message_id)
            if message is None:
                return None
            record = schemas.MessageOut.model_validate(message)
            db.delete(message)
            db.commit()
            logger.info("MESSAGE_DELETED message_id=%s sender_id=%s", record.id, record.sender)
            return record

    def list_between(self, user_a: str, user_b: str) -> List[schemas.MessageOut]:
        with self.session() as db:
            messages = (
                db.query(Message)
                .filter(
                    or_(
                        (Message.sender_id == user_a) & (Message.receiver_id == user_b),
                        (Message.sender_id == user_b) & (Message.receiver_id == user_a),
                    )
                )
                .order_by(Message.created_at)
                .all()
            )
            return [schemas.MessageOut.model_validate(m) for m in messages]

    @staticmethod
    def _duplicate(existing: Message) -> schemas.MessageOut:
        logger.info(
            "MESSAGE_DUPLICATE_TEMP sender_id=%s client_temp_id=%s message_id=%s",
            existing.sender_id,
            existing.client_temp_id,
            existing.id,
        )
        return schemas.MessageOut.model_validate(existing)

    @staticmethod
    def _by_temp_id(db: Session, sender_id: str, client_temp_id: str) -> Optional[Message]:
        return (
            db.query(Message)
            .filter(Message.sender_id == sender_id, Message.client_temp_id == client_temp_id)
            .first()
        )


class UserDirectory(_Gateway):
    def find_by_id(self, user_id: str) -> Optional[schemas.UserOut]:
        with self.session() as db:
            user = db.get(User, user_id)
            return schemas.UserOut.model_validate(user) if user else None

    def list_users(self) -> List[schemas.UserOut]:
        with self.session() as db:
            return [schemas.UserOut.model_validate(u) for u in db.query(User).order_by(User.username).all()]

    def last_seen(self, user_id: str) -> Optional[datetime]:
        with self.session() as db:
            user = db.get(User, user_id)
            return user.last_seen if user else None

    def set_online_status(self, user_id: str, is_online: bool, last_seen: Optional[datetime]) -> bool:
        with self.session() as db:
            user = db.get(User, user_id)
            if user is None:
                logger.warning("PRESENCE_PROJECTION_SKIPPED user_id=%s reason=not_found", user_id)
                return False
            user.is_online = is_online
            user.last_seen = last_seen
            db.commit()
            return True

    def reset_online_flags(self) -> int:
        """Mark every user offline; used at startup when the registry is empty."""
        with self.session() as db:
            count = db.query(User).filter(User.is_online.is_(True)).update(
                {User.is_online: False}, synchronize_session=False
            )
            db.commit()
            if count:
                logger.info("PRESENCE_RESET users=%s", count)
            return count


def get_message_store(request: Request) -> MessageStore:
    return request.app.state.message_store


def get_user_directory(request: Request) -> UserDirectory:
    return request.app.state.user_directory

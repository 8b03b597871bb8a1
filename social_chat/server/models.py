"""Database models for the social chat server."""
import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import relationship

from ..shared.utils import utcnow
from .database import Base


def new_id() -> str:
    return uuid.uuid4().hex


class User(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True, default=new_id)
    username = Column(String, unique=True, index=True, nullable=False)
    email = Column(String, unique=True, index=True, nullable=True)
    password_hash = Column(String, nullable=False)
    profile_picture = Column(String, default="")
    # Projection of the in-memory presence registry; never read back into it.
    is_online = Column(Boolean, default=False, nullable=False)
    last_seen = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    sent_messages = relationship("Message", back_populates="sender", foreign_keys="Message.sender_id")
    received_messages = relationship("Message", back_populates="receiver", foreign_keys="Message.receiver_id")


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (Index("ix_messages_sender_temp", "sender_id", "client_temp_id", unique=True),)

    id = Column(String(64), primary_key=True, default=new_id)
    sender_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    receiver_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    text = Column(Text, nullable=False, default="")
    image = Column(String, nullable=True)
    voice = Column(String, nullable=True)
    client_temp_id = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)

    sender = relationship("User", back_populates="sent_messages", foreign_keys=[sender_id])
    receiver = relationship("User", back_populates="received_messages", foreign_keys=[receiver_id])

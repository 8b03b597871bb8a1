"""Pydantic schemas for request and response bodies."""
from datetime import datetime
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=32)
    password: str
    email: Optional[str] = None


class LoginRequest(BaseModel):
    identifier: str = Field(..., description="Username or email")
    password: str


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    username: str
    profile_picture: str = ""


class LoginResponse(BaseModel):
    token: str
    user: UserOut


class UserStatusOut(BaseModel):
    user_id: str
    username: str
    is_online: bool
    last_seen: Optional[datetime] = None


class MessageCreate(BaseModel):
    sender: str
    receiver: str
    text: str = ""
    client_temp_id: Optional[str] = Field(None, max_length=128)


class MessageOut(BaseModel):
    """Canonical message record, as persisted and as broadcast."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    sender: str = Field(validation_alias=AliasChoices("sender_id", "sender"))
    receiver: str = Field(validation_alias=AliasChoices("receiver_id", "receiver"))
    text: str = ""
    image: Optional[str] = None
    voice: Optional[str] = None
    client_temp_id: Optional[str] = None
    created_at: datetime


class ConversationOut(BaseModel):
    receiver: Optional[UserOut] = None
    messages: List[MessageOut]


class MessageDeletedOut(BaseModel):
    id: Optional[str] = None
    client_temp_id: Optional[str] = None

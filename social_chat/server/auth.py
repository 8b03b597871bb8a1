"""Authentication utilities and routes."""
from datetime import datetime, timedelta
from typing import Dict, Optional

import bcrypt
import secrets
from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy import or_
from sqlalchemy.orm import Session

from . import schemas
from ..shared.utils import is_password_strong, utcnow
from .config import BCRYPT_ROUNDS, TOKEN_EXPIRY_MINUTES
from .database import get_db
from .logging_config import configure_logging
from .models import User

router = APIRouter(prefix="/auth", tags=["auth"])
logger = configure_logging("auth")

# In-memory token store: token -> {"user_id": str, "expires": datetime}
TOKEN_STORE: Dict[str, Dict[str, datetime | str]] = {}


def hash_password(password: str, rounds: int = BCRYPT_ROUNDS) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=rounds)).decode()


def issue_token(user_id: str) -> str:
    token = secrets.token_urlsafe(32)
    TOKEN_STORE[token] = {"user_id": user_id, "expires": utcnow() + timedelta(minutes=TOKEN_EXPIRY_MINUTES)}
    return token


def resolve_token(token: str) -> Optional[str]:
    """Return the user id a token belongs to, or None if it is unknown or expired."""
    token_data = TOKEN_STORE.get(token)
    if not token_data:
        return None
    if token_data["expires"] < utcnow():
        TOKEN_STORE.pop(token, None)
        return None
    return str(token_data["user_id"])


@router.post("/register", status_code=201, response_model=schemas.UserOut)
def register(payload: schemas.RegisterRequest, db: Session = Depends(get_db)):
    clauses = [User.username == payload.username]
    if payload.email:
        clauses.append(User.email == payload.email.lower())
    if db.query(User).filter(or_(*clauses)).first():
        raise HTTPException(status_code=400, detail="Username or email already exists")
    if not is_password_strong(payload.password):
        raise HTTPException(status_code=400, detail="Password does not meet policy requirements")

    user = User(
        username=payload.username,
        email=payload.email.lower() if payload.email else None,
        password_hash=hash_password(payload.password),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("REGISTER_SUCCESS username=%s user_id=%s", user.username, user.id)
    return user


@router.post("/login", response_model=schemas.LoginResponse)
def login(payload: schemas.LoginRequest, db: Session = Depends(get_db)):
    user: Optional[User] = (
        db.query(User)
        .filter(or_(User.username == payload.identifier, User.email == payload.identifier.lower()))
        .first()
    )
    if not user:
        logger.info("LOGIN_FAIL identifier=%s reason=not_found", payload.identifier)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not bcrypt.checkpw(payload.password.encode(), user.password_hash.encode()):
        logger.info("LOGIN_FAIL identifier=%s reason=bad_password", payload.identifier)
        raise HTTPException(status_code=401, detail="Invalid credentials")

    token = issue_token(user.id)
    logger.info("LOGIN_SUCCESS username=%s user_id=%s", user.username, user.id)
    return schemas.LoginResponse(token=token, user=user)


def _bearer_token(header: str | None) -> str:
    if not header or not header.startswith("Bearer "):
        logger.warning("UNAUTHORIZED_ACCESS reason=missing_token")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")
    return header.split(" ", 1)[1]


def get_current_user_id(authorization: str | None = Header(default=None)) -> str:
    """FastAPI dependency returning authenticated user's id."""
    user_id = resolve_token(_bearer_token(authorization))
    if user_id is None:
        logger.warning("UNAUTHORIZED_ACCESS reason=unknown_or_expired_token")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")
    return user_id


@router.post("/logout")
def logout(authorization: str | None = Header(default=None)):
    token = _bearer_token(authorization)
    token_data = TOKEN_STORE.pop(token, None)
    if token_data:
        logger.info("LOGOUT user_id=%s", token_data["user_id"])
    return {"message": "Logged out"}

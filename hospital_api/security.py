"""
security.py
===========
Authentication helpers: password hashing, bearer tokens and the
`get_current_user` dependency used by every protected route.
"""

import hashlib
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt  # PyJWT
from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from .config import Settings
from .db import get_db
from .errors import Unauthorized
from .models import User

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

ACCESS = "access"
RESET = "reset"


@dataclass(frozen=True)
class CurrentUser:
    """Authenticated identity handed to the coordinator."""
    user_id: int
    role: str


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        # unrecognised or malformed hash
        return False


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def password_fingerprint(password_hash: str) -> str:
    """Short digest of the stored hash; changes whenever the password does."""
    return hashlib.sha256(password_hash.encode()).hexdigest()[:16]


def normalize_answer(answer: str) -> str:
    return " ".join(answer.split()).lower()


def create_token(data: dict, settings: Settings, purpose: str = ACCESS,
                 expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    if expires_delta is None:
        minutes = settings.access_token_expire_minutes if purpose == ACCESS else settings.reset_token_expire_minutes
        expires_delta = timedelta(minutes=minutes)
    to_encode.update({"exp": datetime.now(timezone.utc) + expires_delta, "purpose": purpose})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def create_access_token(user: User, settings: Settings) -> str:
    return create_token({"sub": str(user.id), "role": user.role.value}, settings)


def decode_token(token: str, settings: Settings, purpose: str = ACCESS) -> dict:
    """Decode and check a token, raising `Unauthorized` on any problem."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token has expired")
    except jwt.PyJWTError:
        raise Unauthorized("Could not validate credentials")
    if payload.get("purpose") != purpose or payload.get("sub") is None:
        raise Unauthorized("Could not validate credentials")
    return payload


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_optional_user(
    token: Optional[str] = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Optional[CurrentUser]:
    """Resolve the bearer token to a live user account, or None when no token was sent."""
    if not token:
        return None
    payload = decode_token(token, settings)
    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise Unauthorized("Could not validate credentials")

    user = db.query(User).filter_by(id=user_id).first()
    if user is None:
        raise Unauthorized("User no longer exists")
    return CurrentUser(user_id=user.id, role=user.role.value)


def get_current_user(current: Optional[CurrentUser] = Depends(get_optional_user)) -> CurrentUser:
    if current is None:
        raise Unauthorized("Not authorized, no token")
    return current

"""
Credential helpers: bcrypt password hashing and signed access/refresh tokens.
"""

import uuid
from datetime import datetime, timedelta
from typing import Optional

import jwt
from passlib.context import CryptContext

from config import Settings, get_settings
from errors import Unauthorized

ACCESS = "access"
REFRESH = "refresh"

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=get_settings().BCRYPT_ROUNDS,
)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not password or not hashed:
        return False
    try:
        return pwd_context.verify(password, hashed)
    except ValueError:
        # Malformed or unknown hash format
        return False


def _encode(payload: dict, secret: str, ttl: timedelta, settings: Settings) -> str:
    now = datetime.utcnow()
    claims = {
        **payload,
        "jti": uuid.uuid4().hex,
        "iat": now,
        "exp": now + ttl,
    }
    return jwt.encode(claims, secret, algorithm=settings.JWT_ALGORITHM)


def create_access_token(user: dict, settings: Optional[Settings] = None) -> str:
    """Short-lived token carrying the user's public identity."""
    settings = settings or get_settings()
    payload = {
        "_id": str(user["_id"]),
        "email": user.get("email"),
        "username": user.get("username"),
        "fullName": user.get("fullName"),
        "type": ACCESS,
    }
    return _encode(payload, settings.ACCESS_TOKEN_SECRET,
                   timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES), settings)


def create_refresh_token(user_id, settings: Optional[Settings] = None) -> str:
    """Long-lived token; only the value persisted on the user stays valid."""
    settings = settings or get_settings()
    return _encode({"_id": str(user_id), "type": REFRESH}, settings.REFRESH_TOKEN_SECRET,
                   timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS), settings)


def decode_token(token: Optional[str], kind: str = ACCESS, settings: Optional[Settings] = None) -> dict:
    settings = settings or get_settings()
    if not token:
        raise Unauthorized("Unauthorized request")
    secret = settings.ACCESS_TOKEN_SECRET if kind == ACCESS else settings.REFRESH_TOKEN_SECRET
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token expired")
    except jwt.InvalidTokenError:
        raise Unauthorized(f"Invalid {kind} token")
    if payload.get("type") != kind or not payload.get("_id"):
        raise Unauthorized(f"Invalid {kind} token")
    return payload

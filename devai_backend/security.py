"""
Password hashing, JWT issuing/verification and the `get_current_user`
dependency.
"""

from __future__ import annotations

import hashlib
import logging
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .cache import get_cache
from .config import AppConfig, load_config
from .database import get_db
from .errors import AuthError
from .models import User

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
JWT_ISSUER = "devai-agent"
JWT_AUDIENCE = "devai-users"

bearer = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=load_config().bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def _encode(user: User, token_type: str, secret: str, minutes: int) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user.id,
        "email": user.email,
        "username": user.username,
        "type": token_type,
        "iat": now,
        "exp": now + timedelta(minutes=minutes),
        "iss": JWT_ISSUER,
        "aud": JWT_AUDIENCE,
        # Two tokens minted in the same second must still differ.
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def create_token_pair(user: User, config: Optional[AppConfig] = None, cache: Any = None) -> Dict[str, Any]:
    """Issue access + refresh tokens and remember the refresh token for the user."""
    config = config or load_config()
    cache = cache if cache is not None else get_cache()
    access = _encode(user, "access", config.jwt_secret, config.jwt_expires_minutes)
    refresh = _encode(user, "refresh", config.jwt_refresh_secret, config.jwt_refresh_expires_minutes)
    cache.set(f"jwt:refresh:{user.id}", refresh, config.jwt_refresh_expires_minutes * 60)
    return {
        "access_token": access,
        "refresh_token": refresh,
        "token_type": "bearer",
        "expires_in": config.jwt_expires_minutes * 60,
    }


def decode_token(token: str, token_type: str = "access", config: Optional[AppConfig] = None) -> Dict[str, Any]:
    config = config or load_config()
    secret = config.jwt_secret if token_type == "access" else config.jwt_refresh_secret
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[JWT_ALGORITHM],
            audience=JWT_AUDIENCE,
            issuer=JWT_ISSUER,
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthError("Token expired", code="token_expired") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthError("Invalid token", code="invalid_token") from exc

    if payload.get("type") != token_type:
        raise AuthError("Invalid token type", code="invalid_token")
    return payload


def _blacklist_key(token: str) -> str:
    return "jwt:blacklist:" + hashlib.sha256(token.encode("utf-8")).hexdigest()


def blacklist_token(token: str, payload: Dict[str, Any], cache: Any = None) -> None:
    cache = cache if cache is not None else get_cache()
    remaining = int(payload.get("exp", 0) - time.time())
    if remaining > 0:
        cache.set(_blacklist_key(token), True, remaining)


def is_blacklisted(token: str, cache: Any = None) -> bool:
    cache = cache if cache is not None else get_cache()
    return bool(cache.get(_blacklist_key(token)))


def refresh_tokens(refresh_token: str, db: Session) -> Dict[str, Any]:
    cache = get_cache()
    payload = decode_token(refresh_token, "refresh")
    user = db.get(User, payload["sub"])
    if user is None or not user.is_active:
        raise AuthError("User not found or inactive")
    if cache.get(f"jwt:refresh:{user.id}") != refresh_token:
        logger.warning("[AUTH] Refresh token mismatch for user %s", user.id)
        raise AuthError("Refresh token is no longer valid", code="invalid_token")
    return create_token_pair(user, cache=cache)


def revoke_tokens(access_token: str, payload: Dict[str, Any]) -> None:
    cache = get_cache()
    blacklist_token(access_token, payload, cache)
    cache.delete(f"jwt:refresh:{payload['sub']}")


def get_token_payload(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> Dict[str, Any]:
    if credentials is None or not credentials.credentials:
        raise AuthError("Access token required", code="token_missing")
    token = credentials.credentials
    if is_blacklisted(token):
        raise AuthError("Token has been revoked", code="token_revoked")
    payload = decode_token(token, "access")
    payload["_raw"] = token
    return payload


def get_current_user(
    payload: Dict[str, Any] = Depends(get_token_payload),
    db: Session = Depends(get_db),
) -> User:
    user = db.get(User, payload["sub"])
    if user is None:
        raise AuthError("User not found", code="user_not_found")
    if not user.is_active:
        raise AuthError("Account is disabled", code="account_disabled")
    return user


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db: Session = Depends(get_db),
) -> Optional[User]:
    """Like `get_current_user`, but anonymous callers get None."""
    if credentials is None:
        return None
    return get_current_user(get_token_payload(credentials), db)

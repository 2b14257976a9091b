from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from .errors import AuthError, ConflictError, NotFoundError, ValidationFailed
from .file_service import remove_user_files
from .models import User, utcnow
from .security import create_token_pair, hash_password, verify_password

logger = logging.getLogger(__name__)


def _ensure_unique(db: Session, *, email: Optional[str], username: Optional[str], exclude_id: Optional[str] = None) -> None:
    if email:
        query = select(User).where(User.email == email)
        if exclude_id:
            query = query.where(User.id != exclude_id)
        if db.scalar(query) is not None:
            raise ConflictError("An account with this email already exists", code="email_taken")
    if username:
        query = select(User).where(User.username == username)
        if exclude_id:
            query = query.where(User.id != exclude_id)
        if db.scalar(query) is not None:
            raise ConflictError("This username is already taken", code="username_taken")


def register_user(db: Session, *, email: str, username: str, password: str, name: Optional[str] = None) -> tuple[User, Dict[str, Any]]:
    _ensure_unique(db, email=email, username=username)
    user = User(email=email, username=username, name=name, password_hash=hash_password(password))
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("[AUTH] User registered: %s", user.username)
    return user, create_token_pair(user)


def authenticate(db: Session, *, email: Optional[str], username: Optional[str], password: str) -> tuple[User, Dict[str, Any]]:
    conditions = []
    if email:
        conditions.append(User.email == email.strip().lower())
    if username:
        conditions.append(User.username == username)
    user = db.scalar(select(User).where(or_(*conditions)))

    if user is None or not verify_password(password, user.password_hash):
        logger.warning("[AUTH] Failed login for %s", email or username)
        raise AuthError("Invalid credentials", code="invalid_credentials")
    if not user.is_active:
        raise AuthError("Account is disabled", code="account_disabled")

    user.last_login_at = utcnow()
    db.commit()
    db.refresh(user)
    logger.info("[AUTH] User logged in: %s", user.username)
    return user, create_token_pair(user)


def update_profile(db: Session, user: User, changes: Dict[str, Any]) -> User:
    if "email" in changes and changes["email"]:
        changes["email"] = changes["email"].strip().lower()
    _ensure_unique(db, email=changes.get("email"), username=changes.get("username"), exclude_id=user.id)
    for field, value in changes.items():
        setattr(user, field, value)
    db.commit()
    db.refresh(user)
    return user


def change_password(db: Session, user: User, current_password: str, new_password: str) -> None:
    if not verify_password(current_password, user.password_hash):
        raise ValidationFailed("Current password is incorrect", code="invalid_password")
    if current_password == new_password:
        raise ValidationFailed("New password must differ from the current one")
    user.password_hash = hash_password(new_password)
    db.commit()
    logger.info("[AUTH] Password changed for %s", user.username)


def delete_account(db: Session, user: User) -> None:
    logger.info("[AUTH] Deleting account %s", user.username)
    remove_user_files(user)
    db.delete(user)
    db.commit()


def search_users(db: Session, query: str, limit: int = 10) -> List[User]:
    if len(query.strip()) < 2:
        raise ValidationFailed("Search query must be at least 2 characters")
    pattern = f"%{query.strip()}%"
    return list(
        db.scalars(
            select(User)
            .where(User.is_active.is_(True))
            .where(or_(User.username.ilike(pattern), User.name.ilike(pattern)))
            .order_by(User.username)
            .limit(limit)
        )
    )


def get_user(db: Session, user_id: str) -> User:
    user = db.get(User, user_id)
    if user is None or not user.is_active:
        raise NotFoundError("User not found")
    return user

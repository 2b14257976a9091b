from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from .errors import NotFoundError, ValidationFailed
from .models import Conversation, Message, Project, User, utcnow
from .schemas import MessageOut
from .settings_store import get_settings
from .utils import unique_slug

logger = logging.getLogger(__name__)

SORT_FIELDS = {"created_at", "updated_at", "title"}
HISTORY_LIMIT = 20


def _slug_for(db: Session, user_id: str, title: str, exclude_id: Optional[str] = None) -> str:
    def exists(slug: str) -> bool:
        query = select(Conversation.id).where(Conversation.user_id == user_id, Conversation.slug == slug)
        if exclude_id:
            query = query.where(Conversation.id != exclude_id)
        return db.scalar(query) is not None

    return unique_slug(title, exists)


def _check_project(db: Session, user: User, project_id: Optional[str]) -> None:
    if not project_id:
        return
    project = db.get(Project, project_id)
    if project is None or project.user_id != user.id:
        raise NotFoundError("Project not found or not owned by you")


def create_conversation(db: Session, user: User, data: Dict[str, Any]) -> Conversation:
    _check_project(db, user, data.get("project_id"))
    conversation = Conversation(
        user_id=user.id,
        project_id=data.get("project_id"),
        title=data["title"],
        slug=_slug_for(db, user.id, data["title"]),
        description=data.get("description"),
        ai_provider=data.get("ai_provider") or get_settings().default_provider,
        model_name=data.get("model_name"),
        system_prompt=data.get("system_prompt"),
        meta=data.get("metadata") or {},
    )
    db.add(conversation)
    db.commit()
    db.refresh(conversation)
    logger.info("[CONVERSATIONS] Created %s", conversation.id)
    return conversation


def list_conversations(
    db: Session,
    user: User,
    *,
    offset: int,
    limit: int,
    search: Optional[str] = None,
    status: Optional[str] = None,
    project_id: Optional[str] = None,
    sort_by: str = "updated_at",
    sort_order: str = "desc",
) -> Tuple[List[Dict[str, Any]], int]:
    if sort_by not in SORT_FIELDS:
        raise ValidationFailed(f"sort_by must be one of: {', '.join(sorted(SORT_FIELDS))}")

    query = select(Conversation).where(Conversation.user_id == user.id)
    if status:
        query = query.where(Conversation.status == status)
    if project_id:
        query = query.where(Conversation.project_id == project_id)
    if search:
        pattern = f"%{search}%"
        matching = select(Message.conversation_id).where(Message.content.ilike(pattern))
        query = query.where(or_(Conversation.title.ilike(pattern), Conversation.id.in_(matching)))

    total = db.scalar(select(func.count()).select_from(query.subquery())) or 0
    column = getattr(Conversation, sort_by)
    query = query.order_by(column.asc() if sort_order == "asc" else column.desc())
    conversations = list(db.scalars(query.offset(offset).limit(limit)))

    items = []
    for conversation in conversations:
        count = db.scalar(select(func.count()).where(Message.conversation_id == conversation.id)) or 0
        last = db.scalar(
            select(Message)
            .where(Message.conversation_id == conversation.id)
            .order_by(Message.position.desc())
            .limit(1)
        )
        items.append(
            {
                "conversation": conversation,
                "message_count": count,
                "last_message": MessageOut.model_validate(last).model_dump() if last else None,
            }
        )
    return items, total


def get_conversation(db: Session, user: User, conversation_id: str) -> Conversation:
    conversation = db.get(Conversation, conversation_id)
    if conversation is None or conversation.user_id != user.id:
        raise NotFoundError("Conversation not found")
    return conversation


def recent_messages(db: Session, conversation: Conversation, limit: int) -> List[Message]:
    latest = list(
        db.scalars(
            select(Message)
            .where(Message.conversation_id == conversation.id)
            .order_by(Message.position.desc())
            .limit(limit)
        )
    )
    return list(reversed(latest))


def update_conversation(db: Session, user: User, conversation_id: str, changes: Dict[str, Any]) -> Conversation:
    conversation = get_conversation(db, user, conversation_id)
    if "project_id" in changes:
        _check_project(db, user, changes["project_id"])
    if "title" in changes and changes["title"] != conversation.title:
        conversation.slug = _slug_for(db, user.id, changes["title"], exclude_id=conversation.id)
    if "metadata" in changes:
        conversation.meta = changes.pop("metadata") or {}
    for field, value in changes.items():
        setattr(conversation, field, value)
    db.commit()
    db.refresh(conversation)
    return conversation


def delete_conversation(db: Session, user: User, conversation_id: str) -> None:
    conversation = get_conversation(db, user, conversation_id)
    db.delete(conversation)
    db.commit()
    logger.info("[CONVERSATIONS] Deleted %s", conversation_id)


# -- messages ----------------------------------------------------------------


def _next_position(db: Session, conversation_id: str) -> int:
    current = db.scalar(select(func.max(Message.position)).where(Message.conversation_id == conversation_id))
    return (current or 0) + 1


def add_message(
    db: Session,
    conversation: Conversation,
    *,
    user_id: str,
    role: str,
    content: str,
    status: str = "completed",
    metadata: Optional[Dict[str, Any]] = None,
    token_count: Optional[int] = None,
) -> Message:
    message = Message(
        conversation_id=conversation.id,
        user_id=user_id,
        role=role,
        content=content,
        status=status,
        meta=metadata or {},
        token_count=token_count,
        position=_next_position(db, conversation.id),
    )
    db.add(message)
    # Touch the conversation so "recently updated" sorting follows activity.
    conversation.updated_at = utcnow()
    db.commit()
    db.refresh(message)
    return message


def list_messages(db: Session, user: User, conversation_id: str, *, offset: int, limit: int) -> Tuple[List[Message], int]:
    conversation = get_conversation(db, user, conversation_id)
    total = db.scalar(select(func.count()).where(Message.conversation_id == conversation.id)) or 0
    messages = list(
        db.scalars(
            select(Message)
            .where(Message.conversation_id == conversation.id)
            .order_by(Message.position.asc())
            .offset(offset)
            .limit(limit)
        )
    )
    return messages, total


def get_message(db: Session, user: User, message_id: str) -> Message:
    message = db.get(Message, message_id)
    if message is None or message.conversation.user_id != user.id:
        raise NotFoundError("Message not found")
    return message


def delete_message(db: Session, user: User, conversation_id: str, message_id: str) -> None:
    message = get_message(db, user, message_id)
    if message.conversation_id != conversation_id:
        raise NotFoundError("Message not found")
    db.delete(message)
    db.commit()


def history_for(messages: List[Message]) -> List[Dict[str, str]]:
    """
    Usable history for a model call: completed messages with content, at
    most the last HISTORY_LIMIT of them.
    """
    usable = [
        {"role": m.role, "content": m.content}
        for m in messages
        if m.status == "completed" and m.content and m.role in ("user", "assistant")
    ]
    return usable[-HISTORY_LIMIT:]

from __future__ import annotations

from typing import Any, Dict

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .ai_service import AIService
from .errors import ValidationFailed
from .models import Conversation, File, Message, Project, User
from .utils import GRANULARITIES, bucket_counts, format_file_size, timeframe_start


def _count(db: Session, model: Any, user_id: str, since: Any = None) -> int:
    query = select(func.count()).select_from(model).where(model.user_id == user_id)
    if since is not None:
        query = query.where(model.created_at >= since)
    return db.scalar(query) or 0


def dashboard(db: Session, user: User, timeframe: str = "30d") -> Dict[str, Any]:
    since = timeframe_start(timeframe)
    storage = db.scalar(select(func.coalesce(func.sum(File.size), 0)).where(File.user_id == user.id)) or 0
    return {
        "timeframe": timeframe,
        "totals": {
            "projects": _count(db, Project, user.id),
            "conversations": _count(db, Conversation, user.id),
            "messages": _count(db, Message, user.id),
            "files": _count(db, File, user.id),
            "storage_used": int(storage),
            "storage_used_formatted": format_file_size(int(storage)),
        },
        "recent": {
            "projects": _count(db, Project, user.id, since),
            "conversations": _count(db, Conversation, user.id, since),
            "messages": _count(db, Message, user.id, since),
            "files": _count(db, File, user.id, since),
        },
    }


def usage(db: Session, user: User, timeframe: str = "30d", granularity: str = "day") -> Dict[str, Any]:
    if granularity not in GRANULARITIES:
        raise ValidationFailed(f"Invalid granularity '{granularity}'. Use one of: {', '.join(GRANULARITIES)}")
    since = timeframe_start(timeframe)
    message_times = list(
        db.scalars(select(Message.created_at).where(Message.user_id == user.id, Message.created_at >= since))
    )
    conversation_times = list(
        db.scalars(
            select(Conversation.created_at).where(Conversation.user_id == user.id, Conversation.created_at >= since)
        )
    )
    return {
        "timeframe": timeframe,
        "granularity": granularity,
        "messages": bucket_counts(message_times, granularity),
        "conversations": bucket_counts(conversation_times, granularity),
    }


def ai_usage(db: Session, user: User, service: AIService, timeframe: str = "30d") -> Dict[str, Any]:
    """Assistant message counts and token totals per provider/model."""
    since = timeframe_start(timeframe)
    messages = db.scalars(
        select(Message).where(
            Message.user_id == user.id,
            Message.role == "assistant",
            Message.status == "completed",
            Message.created_at >= since,
        )
    )

    by_provider: Dict[str, Dict[str, Any]] = {}
    for message in messages:
        meta = message.meta or {}
        provider = meta.get("provider", "unknown")
        model = meta.get("model", "unknown")
        tokens = message.token_count or 0
        entry = by_provider.setdefault(provider, {"messages": 0, "tokens": 0, "models": {}})
        entry["messages"] += 1
        entry["tokens"] += tokens
        model_entry = entry["models"].setdefault(model, {"messages": 0, "tokens": 0})
        model_entry["messages"] += 1
        model_entry["tokens"] += tokens

    return {
        "timeframe": timeframe,
        "by_provider": by_provider,
        "total_messages": sum(e["messages"] for e in by_provider.values()),
        "total_tokens": sum(e["tokens"] for e in by_provider.values()),
        "live_stats": service.user_stats(user.id),
    }

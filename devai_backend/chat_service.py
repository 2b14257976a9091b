"""
AI chat over persisted conversations.

A chat turn stores the user message and an assistant placeholder in the
`processing` state, asks the router for a reply, and then either completes
the placeholder or marks it `failed`. Failures never fall back to the
canned response here: the caller gets the error and the conversation keeps
a visible failed message.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterator, Optional, Tuple

from sqlalchemy.orm import Session

from . import database
from .ai_service import AIRequest, AIResult, AIService, ResponseStream
from .conversation_service import (
    HISTORY_LIMIT,
    add_message,
    get_conversation,
    get_message,
    history_for,
    recent_messages,
)
from .errors import AIGenerationError, AppError, ValidationFailed
from .llm_providers import ProviderError
from .models import Conversation, Message, User
from .schemas import ChatRequest, MessageOut, RegenerateRequest

logger = logging.getLogger(__name__)

FAILED_REPLY = "Sorry, I could not generate a response right now. Please try again."


def _target(
    conversation: Conversation,
    provider: Optional[str],
    model: Optional[str],
    *,
    fallback_provider: Optional[str] = None,
    fallback_model: Optional[str] = None,
) -> Tuple[str, Optional[str]]:
    name = provider or fallback_provider or conversation.ai_provider
    if model:
        return name, model
    if name == fallback_provider and fallback_model:
        return name, fallback_model
    if name == conversation.ai_provider:
        return name, conversation.model_name
    return name, None


def ai_payload(result: AIResult) -> Dict[str, Any]:
    return {
        "provider": result.provider,
        "model": result.model,
        "usage": result.usage.model_dump() if result.usage else None,
        "token_count": result.token_count,
        "response_time_ms": result.response_time_ms,
        "from_cache": result.from_cache,
        "fallback_from": result.fallback_from,
    }


def complete_message(db: Session, message: Message, result: AIResult) -> Message:
    message.content = result.content
    message.status = "completed"
    message.token_count = result.token_count
    message.meta = {
        **(message.meta or {}),
        **ai_payload(result),
        "finish_reason": result.finish_reason,
    }
    db.commit()
    db.refresh(message)
    return message


def fail_message(db: Session, message: Message, error: Exception) -> Message:
    message.content = FAILED_REPLY
    message.status = "failed"
    message.meta = {**(message.meta or {}), "error": str(error)}
    db.commit()
    db.refresh(message)
    logger.warning("[CHAT] Message %s failed: %s", message.id, error)
    return message


def _start_turn(
    db: Session, user: User, request: ChatRequest, service: AIService
) -> Tuple[Conversation, Message, Message, AIRequest]:
    conversation = get_conversation(db, user, request.conversation_id)
    # Reject an unusable provider before anything is stored.
    provider, model = service.resolve_target(*_target(conversation, request.provider, request.model))

    user_message = add_message(db, conversation, user_id=user.id, role="user", content=request.message)
    history = history_for(recent_messages(db, conversation, HISTORY_LIMIT * 2))
    assistant = add_message(
        db,
        conversation,
        user_id=user.id,
        role="assistant",
        content="",
        status="processing",
        metadata={"provider": provider, "model": model},
    )
    ai_request = AIRequest(
        messages=history,
        provider=provider,
        model=model,
        system_prompt=request.system_prompt or conversation.system_prompt,
        settings=request.settings.model_dump(exclude_none=True),
        user_id=user.id,
        conversation_id=conversation.id,
    )
    return conversation, user_message, assistant, ai_request


def chat(db: Session, user: User, request: ChatRequest, service: AIService) -> Dict[str, Any]:
    conversation, user_message, assistant, ai_request = _start_turn(db, user, request, service)
    try:
        result = service.generate_response(ai_request)
    except AppError as exc:
        fail_message(db, assistant, exc)
        raise
    except Exception as exc:
        logger.exception("[CHAT] Unexpected error while generating")
        fail_message(db, assistant, exc)
        raise AIGenerationError(f"AI generation failed: {exc}") from exc

    complete_message(db, assistant, result)
    logger.info("[CHAT] Reply in %s via %s/%s", conversation.id, result.provider, result.model)
    return {
        "conversation_id": conversation.id,
        "user_message": MessageOut.model_validate(user_message).model_dump(),
        "assistant_message": MessageOut.model_validate(assistant).model_dump(),
        "ai": ai_payload(result),
    }


def _sse(event: str, payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps({'type': event, **payload}, default=str)}\n\n"


def open_stream(db: Session, user: User, request: ChatRequest, service: AIService) -> Iterator[str]:
    """
    Start a streamed chat turn and return the server-sent event iterator.

    Validation and rate-limit errors are raised here so they still become
    normal error responses.
    """
    conversation, user_message, assistant, ai_request = _start_turn(db, user, request, service)
    try:
        stream = service.stream_response(ai_request)
    except AppError as exc:
        fail_message(db, assistant, exc)
        raise
    return _stream_events(stream, conversation.id, user_message.id, assistant.id)


def _stream_events(stream: ResponseStream, conversation_id: str, user_message_id: str, assistant_id: str) -> Iterator[str]:
    yield _sse("start", {"conversation_id": conversation_id, "user_message_id": user_message_id})
    try:
        for chunk in stream:
            yield _sse("chunk", {"content": chunk})
    except Exception as exc:
        if not isinstance(exc, (ProviderError, AppError)):
            logger.exception("[CHAT] Unexpected error while streaming")
        # The request session is gone once streaming starts.
        with database.SessionLocal() as db:
            message = db.get(Message, assistant_id)
            if message is not None:
                fail_message(db, message, exc)
        yield _sse("error", {"error": str(exc)})
        return

    with database.SessionLocal() as db:
        message = db.get(Message, assistant_id)
        complete_message(db, message, stream.result)
        payload = MessageOut.model_validate(message).model_dump()
    yield _sse("complete", {"message": payload, "ai": ai_payload(stream.result)})


def regenerate(db: Session, user: User, message_id: str, request: RegenerateRequest, service: AIService) -> Dict[str, Any]:
    message = get_message(db, user, message_id)
    if message.role != "assistant":
        raise ValidationFailed("Only assistant messages can be regenerated")

    conversation = message.conversation
    earlier = [m for m in conversation.messages if m.position < message.position]
    history = history_for(earlier)
    if not any(m["role"] == "user" for m in history):
        raise ValidationFailed("No user message to answer")

    meta = dict(message.meta or {})
    provider, model = service.resolve_target(
        *_target(
            conversation,
            request.provider,
            request.model,
            fallback_provider=meta.get("provider"),
            fallback_model=meta.get("model"),
        )
    )
    message.status = "processing"
    db.commit()

    ai_request = AIRequest(
        messages=history,
        provider=provider,
        model=model,
        system_prompt=conversation.system_prompt,
        settings=request.settings.model_dump(exclude_none=True),
        user_id=user.id,
        conversation_id=conversation.id,
    )
    try:
        result = service.generate_response(ai_request)
    except AppError as exc:
        fail_message(db, message, exc)
        raise
    except Exception as exc:
        logger.exception("[CHAT] Unexpected error while generating")
        fail_message(db, message, exc)
        raise AIGenerationError(f"AI generation failed: {exc}") from exc

    meta.pop("error", None)
    message.meta = {**meta, "regenerated": True}
    complete_message(db, message, result)
    return {
        "message": MessageOut.model_validate(message).model_dump(),
        "ai": ai_payload(result),
    }

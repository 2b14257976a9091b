from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from .. import chat_service
from ..ai_service import AIService, get_ai_service
from ..database import get_db
from ..limiter import AI_LIMIT, REGENERATE_LIMIT, limiter
from ..models import User
from ..schemas import ChatRequest, CompleteRequest, RegenerateRequest
from ..security import get_current_user, get_optional_user
from ..settings_store import get_settings

router = APIRouter()


@router.post("/chat")
@limiter.limit(AI_LIMIT)
def chat(
    request: Request,
    body: ChatRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: AIService = Depends(get_ai_service),
) -> Any:
    if body.stream:
        events = chat_service.open_stream(db, user, body, service)
        return StreamingResponse(
            events,
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )
    return {"ok": True, "data": chat_service.chat(db, user, body, service)}


@router.post("/regenerate/{message_id}")
@limiter.limit(REGENERATE_LIMIT)
def regenerate(
    request: Request,
    message_id: str,
    body: Optional[RegenerateRequest] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: AIService = Depends(get_ai_service),
) -> Dict[str, Any]:
    data = chat_service.regenerate(db, user, message_id, body or RegenerateRequest(), service)
    return {"ok": True, "data": data}


@router.post("/complete")
@limiter.limit(AI_LIMIT)
def complete(
    request: Request,
    body: CompleteRequest,
    user: Optional[User] = Depends(get_optional_user),
    service: AIService = Depends(get_ai_service),
) -> Dict[str, Any]:
    result = service.complete_direct(
        [m.model_dump() for m in body.messages],
        provider=body.provider,
        model=body.model,
        api_key=body.api_key,
        is_mobile=body.is_mobile,
        settings=body.settings.model_dump(exclude_none=True),
        user_id=user.id if user else None,
    )
    return {"ok": True, "data": result.model_dump()}


@router.get("/providers")
def providers(
    is_mobile: bool = False,
    service: AIService = Depends(get_ai_service),
) -> Dict[str, Any]:
    settings = get_settings()
    return {
        "ok": True,
        "data": {
            "providers": service.available_providers(),
            "device_providers": service.provider_names_for_device(is_mobile),
            "optimal": service.optimal_provider(is_mobile),
            "default_provider": settings.default_provider,
            "fallback_provider": settings.fallback_provider,
        },
    }


@router.get("/models")
def models(
    provider: Optional[str] = Query(None),
    service: AIService = Depends(get_ai_service),
) -> Dict[str, Any]:
    if provider:
        adapter = service.require_provider(provider)
        data: Dict[str, Any] = {
            provider: {"models": adapter.available_models(), "default_model": adapter.default_model}
        }
    else:
        data = {
            name: {"models": adapter.available_models(), "default_model": adapter.default_model}
            for name, adapter in service.providers.items()
        }
    return {"ok": True, "data": data}


@router.get("/health")
def health(user: User = Depends(get_current_user), service: AIService = Depends(get_ai_service)) -> Dict[str, Any]:
    return {"ok": True, "data": service.providers_health()}


@router.get("/stats")
def stats(user: User = Depends(get_current_user), service: AIService = Depends(get_ai_service)) -> Dict[str, Any]:
    return {"ok": True, "data": service.user_stats(user.id)}

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from .. import database
from ..cache import get_cache

router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("")
def health() -> Dict[str, Any]:
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/ready")
def ready() -> Any:
    checks = {"database": database.ping(), "cache": get_cache().ping()}
    body = {"status": "ready" if all(checks.values()) else "not_ready", "checks": checks}
    if not all(checks.values()):
        return JSONResponse(status_code=503, content=body)
    return body


@router.get("/alive")
def alive() -> Dict[str, Any]:
    return {"status": "alive"}

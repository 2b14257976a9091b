from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import analytics_service
from ..ai_service import AIService, get_ai_service
from ..database import get_db
from ..models import User
from ..security import get_current_user

router = APIRouter()


@router.get("/dashboard")
def dashboard(
    timeframe: str = "30d",
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    return {"ok": True, "data": analytics_service.dashboard(db, user, timeframe)}


@router.get("/usage")
def usage(
    timeframe: str = "30d",
    granularity: str = "day",
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    return {"ok": True, "data": analytics_service.usage(db, user, timeframe, granularity)}


@router.get("/ai")
def ai_usage(
    timeframe: str = "30d",
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: AIService = Depends(get_ai_service),
) -> Dict[str, Any]:
    return {"ok": True, "data": analytics_service.ai_usage(db, user, service, timeframe)}

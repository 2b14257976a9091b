from typing import Any, Dict

from fastapi import APIRouter, Depends

from ..config import load_config
from ..errors import ForbiddenError
from ..models import User
from ..schemas import AISettingsUpdate
from ..security import get_current_user
from ..settings_store import get_settings, update_settings

router = APIRouter()


def settings_admin(user: User = Depends(get_current_user)) -> User:
    admins = load_config().settings_admins
    if admins and user.username not in admins:
        raise ForbiddenError("Only settings administrators can change AI settings")
    return user


@router.get("")
def read_settings() -> Dict[str, Any]:
    return {"ok": True, "data": get_settings().model_dump()}


@router.put("")
def write_settings(body: AISettingsUpdate, user: User = Depends(settings_admin)) -> Dict[str, Any]:
    patch = body.model_dump(exclude_unset=True)
    # Only the fallback provider and default model may be cleared.
    patch = {k: v for k, v in patch.items() if v is not None or k in ("fallback_provider", "default_model")}
    return {"ok": True, "data": update_settings(patch).model_dump()}

from typing import Any, Dict

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import user_service
from ..database import get_db
from ..models import User
from ..schemas import PasswordChange, ProfileUpdate, PublicUserOut, UserOut
from ..security import get_current_user

router = APIRouter()


@router.get("/profile")
def get_profile(user: User = Depends(get_current_user)) -> Dict[str, Any]:
    return {"ok": True, "data": UserOut.model_validate(user).model_dump()}


@router.put("/profile")
def update_profile(
    body: ProfileUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    updated = user_service.update_profile(db, user, body.model_dump(exclude_unset=True))
    return {"ok": True, "data": UserOut.model_validate(updated).model_dump()}


@router.delete("/profile")
def delete_profile(user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> Dict[str, Any]:
    user_service.delete_account(db, user)
    return {"ok": True, "data": {"message": "Account deleted"}}


@router.put("/password")
def change_password(
    body: PasswordChange,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    user_service.change_password(db, user, body.current_password, body.new_password)
    return {"ok": True, "data": {"message": "Password updated"}}


@router.get("/search")
def search(
    q: str = Query(..., min_length=1),
    limit: int = Query(10, ge=1, le=50),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    users = user_service.search_users(db, q, limit)
    return {"ok": True, "data": [PublicUserOut.model_validate(u).model_dump() for u in users]}


@router.get("/{user_id}")
def get_user(user_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> Dict[str, Any]:
    found = user_service.get_user(db, user_id)
    return {"ok": True, "data": PublicUserOut.model_validate(found).model_dump()}

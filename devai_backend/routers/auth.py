from typing import Any, Dict

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from .. import user_service
from ..database import get_db
from ..limiter import AUTH_LIMIT, limiter
from ..models import User
from ..schemas import LoginRequest, RefreshRequest, RegisterRequest, UserOut
from ..security import get_current_user, get_token_payload, refresh_tokens, revoke_tokens

router = APIRouter()


@router.post("/register", status_code=status.HTTP_201_CREATED)
@limiter.limit(AUTH_LIMIT)
def register(request: Request, body: RegisterRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    user, tokens = user_service.register_user(db, **body.model_dump())
    return {"ok": True, "data": {"user": UserOut.model_validate(user).model_dump(), "tokens": tokens}}


@router.post("/login")
@limiter.limit(AUTH_LIMIT)
def login(request: Request, body: LoginRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    user, tokens = user_service.authenticate(db, email=body.email, username=body.username, password=body.password)
    return {"ok": True, "data": {"user": UserOut.model_validate(user).model_dump(), "tokens": tokens}}


@router.post("/refresh")
def refresh(body: RefreshRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    return {"ok": True, "data": {"tokens": refresh_tokens(body.refresh_token, db)}}


@router.post("/logout")
def logout(payload: Dict[str, Any] = Depends(get_token_payload)) -> Dict[str, Any]:
    revoke_tokens(payload["_raw"], payload)
    return {"ok": True, "data": {"message": "Logged out"}}


@router.get("/profile")
def profile(user: User = Depends(get_current_user)) -> Dict[str, Any]:
    return {"ok": True, "data": UserOut.model_validate(user).model_dump()}


@router.get("/verify")
def verify(user: User = Depends(get_current_user)) -> Dict[str, Any]:
    return {"ok": True, "data": {"valid": True, "user": UserOut.model_validate(user).model_dump()}}

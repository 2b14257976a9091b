from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import conversation_service
from ..database import get_db
from ..models import User
from ..schemas import ConversationCreate, ConversationOut, ConversationUpdate, MessageCreate, MessageOut
from ..security import get_current_user
from ..utils import calculate_pagination, page_params

router = APIRouter()


def _out(conversation: Any) -> Dict[str, Any]:
    return ConversationOut.model_validate(conversation).model_dump()


@router.post("", status_code=status.HTTP_201_CREATED)
def create_conversation(
    body: ConversationCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    conversation = conversation_service.create_conversation(db, user, body.model_dump())
    return {"ok": True, "data": _out(conversation)}


@router.get("")
def list_conversations(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
    status: Optional[Literal["active", "archived"]] = None,
    project_id: Optional[str] = None,
    sort_by: str = "updated_at",
    sort_order: Literal["asc", "desc"] = "desc",
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    page, limit, offset = page_params(page, limit)
    items, total = conversation_service.list_conversations(
        db,
        user,
        offset=offset,
        limit=limit,
        search=search,
        status=status,
        project_id=project_id,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    data = [
        {**_out(item["conversation"]), "message_count": item["message_count"], "last_message": item["last_message"]}
        for item in items
    ]
    return {"ok": True, "data": data, "pagination": calculate_pagination(page, limit, total)}


@router.get("/{conversation_id}")
def get_conversation(
    conversation_id: str,
    include_messages: bool = True,
    message_limit: int = Query(50, ge=1, le=500),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    conversation = conversation_service.get_conversation(db, user, conversation_id)
    data = _out(conversation)
    if include_messages:
        messages = conversation_service.recent_messages(db, conversation, message_limit)
        data["messages"] = [MessageOut.model_validate(m).model_dump() for m in messages]
    return {"ok": True, "data": data}


@router.put("/{conversation_id}")
def update_conversation(
    conversation_id: str,
    body: ConversationUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    conversation = conversation_service.update_conversation(
        db, user, conversation_id, body.model_dump(exclude_unset=True)
    )
    return {"ok": True, "data": _out(conversation)}


@router.delete("/{conversation_id}")
def delete_conversation(
    conversation_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)
) -> Dict[str, Any]:
    conversation_service.delete_conversation(db, user, conversation_id)
    return {"ok": True, "data": {"message": "Conversation deleted"}}


@router.put("/{conversation_id}/archive")
def archive_conversation(
    conversation_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)
) -> Dict[str, Any]:
    conversation = conversation_service.update_conversation(db, user, conversation_id, {"status": "archived"})
    return {"ok": True, "data": _out(conversation)}


@router.put("/{conversation_id}/restore")
def restore_conversation(
    conversation_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)
) -> Dict[str, Any]:
    conversation = conversation_service.update_conversation(db, user, conversation_id, {"status": "active"})
    return {"ok": True, "data": _out(conversation)}


@router.get("/{conversation_id}/messages")
def list_messages(
    conversation_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    page, limit, offset = page_params(page, limit)
    messages, total = conversation_service.list_messages(db, user, conversation_id, offset=offset, limit=limit)
    return {
        "ok": True,
        "data": [MessageOut.model_validate(m).model_dump() for m in messages],
        "pagination": calculate_pagination(page, limit, total),
    }


@router.post("/{conversation_id}/messages", status_code=status.HTTP_201_CREATED)
def add_message(
    conversation_id: str,
    body: MessageCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    conversation = conversation_service.get_conversation(db, user, conversation_id)
    message = conversation_service.add_message(
        db, conversation, user_id=user.id, role=body.role, content=body.content, metadata=body.metadata
    )
    return {"ok": True, "data": MessageOut.model_validate(message).model_dump()}


@router.delete("/{conversation_id}/messages/{message_id}")
def delete_message(
    conversation_id: str,
    message_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    conversation_service.delete_message(db, user, conversation_id, message_id)
    return {"ok": True, "data": {"message": "Message deleted"}}

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from .. import file_service
from ..database import get_db
from ..models import User
from ..schemas import FileOut, FileUpdate
from ..security import get_current_user
from ..utils import calculate_pagination, format_file_size, page_params

router = APIRouter()


def _out(record: Any) -> Dict[str, Any]:
    data = FileOut.model_validate(record).model_dump()
    data["size_formatted"] = format_file_size(record.size)
    return data


@router.post("/upload", status_code=status.HTTP_201_CREATED)
def upload(
    file: UploadFile = File(...),
    project_id: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    record = file_service.save_upload(
        db,
        user,
        filename=file.filename or "",
        content=file.file.read(),
        content_type=file.content_type,
        project_id=project_id or None,
        description=description,
    )
    return {"ok": True, "data": _out(record)}


@router.get("")
def list_files(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    project_id: Optional[str] = None,
    type: Optional[str] = Query(None, description="Extension filter, e.g. py or .py"),
    search: Optional[str] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    page, limit, offset = page_params(page, limit)
    files, total = file_service.list_files(
        db, user, offset=offset, limit=limit, project_id=project_id, file_type=type, search=search
    )
    return {"ok": True, "data": [_out(f) for f in files], "pagination": calculate_pagination(page, limit, total)}


@router.get("/stats")
def stats(user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> Dict[str, Any]:
    return {"ok": True, "data": file_service.file_stats(db, user)}


@router.get("/{file_id}")
def get_file(file_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> Dict[str, Any]:
    return {"ok": True, "data": _out(file_service.get_file(db, user, file_id))}


@router.get("/{file_id}/download")
def download(file_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> FileResponse:
    record = file_service.get_file(db, user, file_id)
    return FileResponse(
        file_service.file_path(record),
        media_type=record.mime_type,
        filename=record.original_name,
    )


@router.put("/{file_id}")
def update_file(
    file_id: str,
    body: FileUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    record = file_service.update_file(db, user, file_id, body.model_dump(exclude_unset=True))
    return {"ok": True, "data": _out(record)}


@router.delete("/{file_id}")
def delete_file(file_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> Dict[str, Any]:
    file_service.delete_file(db, user, file_id)
    return {"ok": True, "data": {"message": "File deleted"}}

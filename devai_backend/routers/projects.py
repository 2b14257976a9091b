from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import project_service
from ..database import get_db
from ..models import User
from ..schemas import ProjectCreate, ProjectOut, ProjectUpdate
from ..security import get_current_user
from ..utils import calculate_pagination, page_params

router = APIRouter()


def _out(project: Any) -> Dict[str, Any]:
    return ProjectOut.model_validate(project).model_dump()


@router.post("", status_code=status.HTTP_201_CREATED)
def create_project(
    body: ProjectCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    return {"ok": True, "data": _out(project_service.create_project(db, user, body.model_dump()))}


@router.get("")
def list_projects(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
    status: Optional[Literal["active", "archived"]] = None,
    sort_by: str = "updated_at",
    sort_order: Literal["asc", "desc"] = "desc",
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    page, limit, offset = page_params(page, limit)
    projects, total = project_service.list_projects(
        db,
        user,
        offset=offset,
        limit=limit,
        search=search,
        status=status,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return {
        "ok": True,
        "data": [_out(p) for p in projects],
        "pagination": calculate_pagination(page, limit, total),
    }


@router.get("/{project_id}")
def get_project(project_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> Dict[str, Any]:
    return {"ok": True, "data": _out(project_service.get_project(db, user, project_id))}


@router.put("/{project_id}")
def update_project(
    project_id: str,
    body: ProjectUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    project = project_service.update_project(db, user, project_id, body.model_dump(exclude_unset=True))
    return {"ok": True, "data": _out(project)}


@router.delete("/{project_id}")
def delete_project(project_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> Dict[str, Any]:
    project_service.delete_project(db, user, project_id)
    return {"ok": True, "data": {"message": "Project deleted"}}


@router.put("/{project_id}/archive")
def archive_project(project_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> Dict[str, Any]:
    return {"ok": True, "data": _out(project_service.set_status(db, user, project_id, "archived"))}


@router.put("/{project_id}/restore")
def restore_project(project_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> Dict[str, Any]:
    return {"ok": True, "data": _out(project_service.set_status(db, user, project_id, "active"))}


@router.get("/{project_id}/stats")
def project_stats(project_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> Dict[str, Any]:
    return {"ok": True, "data": project_service.project_stats(db, user, project_id)}

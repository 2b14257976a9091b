from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from .errors import ForbiddenError, NotFoundError, ValidationFailed
from .models import Conversation, File, Project, User, utcnow
from .utils import unique_slug

logger = logging.getLogger(__name__)

SORT_FIELDS = {"created_at", "updated_at", "name"}


def _slug_for(db: Session, user_id: str, name: str, exclude_id: Optional[str] = None) -> str:
    def exists(slug: str) -> bool:
        query = select(Project.id).where(Project.user_id == user_id, Project.slug == slug)
        if exclude_id:
            query = query.where(Project.id != exclude_id)
        return db.scalar(query) is not None

    return unique_slug(name, exists)


def create_project(db: Session, user: User, data: Dict[str, Any]) -> Project:
    project = Project(user_id=user.id, slug=_slug_for(db, user.id, data["name"]), **data)
    db.add(project)
    db.commit()
    db.refresh(project)
    logger.info("[PROJECTS] Created %s for %s", project.slug, user.username)
    return project


def list_projects(
    db: Session,
    user: User,
    *,
    offset: int,
    limit: int,
    search: Optional[str] = None,
    status: Optional[str] = None,
    sort_by: str = "updated_at",
    sort_order: str = "desc",
) -> Tuple[List[Project], int]:
    if sort_by not in SORT_FIELDS:
        raise ValidationFailed(f"sort_by must be one of: {', '.join(sorted(SORT_FIELDS))}")

    query = select(Project).where(Project.user_id == user.id)
    if status:
        query = query.where(Project.status == status)
    if search:
        pattern = f"%{search}%"
        query = query.where(or_(Project.name.ilike(pattern), Project.description.ilike(pattern)))

    total = db.scalar(select(func.count()).select_from(query.subquery())) or 0
    column = getattr(Project, sort_by)
    query = query.order_by(column.asc() if sort_order == "asc" else column.desc())
    return list(db.scalars(query.offset(offset).limit(limit))), total


def get_project(db: Session, user: User, project_id: str, *, write: bool = False) -> Project:
    """Owners may read and write; anyone may read a public project."""
    project = db.get(Project, project_id)
    if project is None:
        raise NotFoundError("Project not found")
    if project.user_id != user.id:
        if write or not project.is_public:
            raise ForbiddenError("You do not have access to this project")
    return project


def update_project(db: Session, user: User, project_id: str, changes: Dict[str, Any]) -> Project:
    project = get_project(db, user, project_id, write=True)
    if "name" in changes and changes["name"] != project.name:
        project.slug = _slug_for(db, user.id, changes["name"], exclude_id=project.id)
    for field, value in changes.items():
        setattr(project, field, value)
    db.commit()
    db.refresh(project)
    return project


def set_status(db: Session, user: User, project_id: str, status: str) -> Project:
    return update_project(db, user, project_id, {"status": status})


def delete_project(db: Session, user: User, project_id: str) -> None:
    project = get_project(db, user, project_id, write=True)
    db.delete(project)
    db.commit()
    logger.info("[PROJECTS] Deleted %s", project_id)


def project_stats(db: Session, user: User, project_id: str) -> Dict[str, Any]:
    project = get_project(db, user, project_id)
    since = utcnow() - timedelta(days=30)

    by_status = dict(
        db.execute(
            select(Conversation.status, func.count())
            .where(Conversation.project_id == project.id)
            .group_by(Conversation.status)
        ).all()
    )
    file_count, total_size = db.execute(
        select(func.count(File.id), func.coalesce(func.sum(File.size), 0)).where(File.project_id == project.id)
    ).one()
    by_type = dict(
        db.execute(
            select(File.extension, func.count()).where(File.project_id == project.id).group_by(File.extension)
        ).all()
    )
    recent_conversations = db.scalar(
        select(func.count()).where(Conversation.project_id == project.id, Conversation.created_at >= since)
    )
    recent_files = db.scalar(select(func.count()).where(File.project_id == project.id, File.created_at >= since))

    return {
        "conversations": {"total": sum(by_status.values()), "by_status": by_status},
        "files": {"total": file_count, "total_size": int(total_size), "by_type": by_type},
        "recent_activity": {
            "conversations_last_30_days": recent_conversations or 0,
            "files_last_30_days": recent_files or 0,
        },
    }

from __future__ import annotations

import logging
import mimetypes
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .config import AppConfig, load_config
from .errors import NotFoundError, ValidationFailed
from .models import File, Project, User
from .utils import format_file_size

logger = logging.getLogger(__name__)

CATEGORIES: Dict[str, List[str]] = {
    "code": [
        ".js", ".jsx", ".ts", ".tsx", ".py", ".java", ".c", ".cpp", ".h", ".hpp", ".cs",
        ".go", ".rs", ".rb", ".php", ".swift", ".kt", ".scala", ".sh", ".sql", ".vue",
    ],
    "markup": [".html", ".htm", ".css", ".scss", ".sass", ".less", ".xml", ".svg"],
    "config": [".json", ".yaml", ".yml", ".toml", ".ini", ".env", ".conf", ".cfg"],
    "document": [".md", ".txt", ".rst", ".csv", ".log"],
}
SUPPORTED_EXTENSIONS = {ext for exts in CATEGORIES.values() for ext in exts}


def category_for(extension: str) -> str:
    for category, extensions in CATEGORIES.items():
        if extension in extensions:
            return category
    return "other"


def _extension(filename: str) -> str:
    name = Path(filename).name
    # ".env" has no suffix according to pathlib
    if name.startswith(".") and name.count(".") == 1:
        return name.lower()
    return Path(name).suffix.lower()


def _owned_project(db: Session, user: User, project_id: Optional[str]) -> None:
    if not project_id:
        return
    project = db.get(Project, project_id)
    if project is None or project.user_id != user.id:
        raise NotFoundError("Project not found or not owned by you")


def save_upload(
    db: Session,
    user: User,
    *,
    filename: str,
    content: bytes,
    content_type: Optional[str] = None,
    project_id: Optional[str] = None,
    description: Optional[str] = None,
    config: Optional[AppConfig] = None,
) -> File:
    config = config or load_config()
    extension = _extension(filename or "")
    if extension not in SUPPORTED_EXTENSIONS:
        raise ValidationFailed(f"File type '{extension or 'unknown'}' is not supported", code="unsupported_file_type")
    if not content:
        raise ValidationFailed("Uploaded file is empty", code="empty_file")
    if len(content) > config.max_upload_bytes:
        raise ValidationFailed(
            f"File exceeds the maximum size of {format_file_size(config.max_upload_bytes)}",
            code="file_too_large",
        )
    _owned_project(db, user, project_id)

    directory = Path(config.upload_dir) / user.id
    directory.mkdir(parents=True, exist_ok=True)
    stored_name = f"{uuid.uuid4().hex}{extension}"
    path = directory / stored_name
    path.write_bytes(content)

    record = File(
        user_id=user.id,
        project_id=project_id,
        original_name=Path(filename).name,
        stored_name=stored_name,
        mime_type=content_type or mimetypes.guess_type(filename)[0] or "text/plain",
        extension=extension,
        size=len(content),
        category=category_for(extension),
        description=description,
        path=str(path),
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    logger.info("[FILES] Stored %s (%s) for %s", record.original_name, format_file_size(record.size), user.username)
    return record


def list_files(
    db: Session,
    user: User,
    *,
    offset: int,
    limit: int,
    project_id: Optional[str] = None,
    file_type: Optional[str] = None,
    search: Optional[str] = None,
) -> Tuple[List[File], int]:
    query = select(File).where(File.user_id == user.id)
    if project_id:
        query = query.where(File.project_id == project_id)
    if file_type:
        ext = file_type.lower() if file_type.startswith(".") else f".{file_type.lower()}"
        query = query.where(File.extension == ext)
    if search:
        query = query.where(File.original_name.ilike(f"%{search}%"))

    total = db.scalar(select(func.count()).select_from(query.subquery())) or 0
    files = list(db.scalars(query.order_by(File.created_at.desc()).offset(offset).limit(limit)))
    return files, total


def get_file(db: Session, user: User, file_id: str) -> File:
    record = db.get(File, file_id)
    if record is None or record.user_id != user.id:
        raise NotFoundError("File not found")
    return record


def file_path(record: File) -> Path:
    path = Path(record.path)
    if not path.exists():
        raise NotFoundError("File is missing from storage")
    return path


def update_file(db: Session, user: User, file_id: str, changes: Dict[str, Any]) -> File:
    record = get_file(db, user, file_id)
    if "project_id" in changes:
        _owned_project(db, user, changes["project_id"])
    for field, value in changes.items():
        setattr(record, field, value)
    db.commit()
    db.refresh(record)
    return record


def remove_stored(record: File) -> None:
    path = Path(record.path)
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("[FILES] Could not remove %s: %s", path, exc)


def remove_user_files(user: User) -> None:
    """Delete every stored upload of `user`; the rows go with the account cascade."""
    for record in user.files:
        remove_stored(record)
    directory = Path(load_config().upload_dir) / user.id
    if directory.is_dir() and not any(directory.iterdir()):
        directory.rmdir()


def delete_file(db: Session, user: User, file_id: str) -> None:
    record = get_file(db, user, file_id)
    remove_stored(record)
    db.delete(record)
    db.commit()
    logger.info("[FILES] Deleted %s", file_id)


def file_stats(db: Session, user: User) -> Dict[str, Any]:
    count, total_size = db.execute(
        select(func.count(File.id), func.coalesce(func.sum(File.size), 0)).where(File.user_id == user.id)
    ).one()
    by_type = {
        ext: {"count": n, "size": int(size)}
        for ext, n, size in db.execute(
            select(File.extension, func.count(), func.coalesce(func.sum(File.size), 0))
            .where(File.user_id == user.id)
            .group_by(File.extension)
        ).all()
    }
    return {
        "total_files": count,
        "total_size": int(total_size),
        "total_size_formatted": format_file_size(int(total_size)),
        "by_type": by_type,
    }

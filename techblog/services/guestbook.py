"""Guestbook entries."""

import logging
from typing import Any, Dict

from sqlalchemy.orm import Session, selectinload

from techblog.errors import NotFoundError, PermissionDenied, ServiceError
from techblog.models import Guestbook

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 500


def _serialize(entry: Guestbook) -> Dict[str, Any]:
    user = entry.user
    return {
        "id": entry.id,
        "message": entry.message,
        "createdAt": entry.created_at.isoformat(),
        "author": {
            "id": user.id,
            "name": user.name,
            "avatar": user.avatar or "",
            "isAdmin": bool(user.is_admin),
        },
    }


def list_entries(db: Session, page: int = 1, limit: int = 20) -> Dict[str, Any]:
    page = max(1, page)
    limit = max(1, min(100, limit))
    total = db.query(Guestbook).count()
    entries = (
        db.query(Guestbook)
        .options(selectinload(Guestbook.user))
        .order_by(Guestbook.created_at.desc(), Guestbook.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {"entries": [_serialize(e) for e in entries], "total": total, "page": page, "limit": limit}


def create_entry(db: Session, user_id: int, message: str) -> Dict[str, Any]:
    if not message or not message.strip():
        raise ServiceError("Message cannot be empty")
    if len(message) > MAX_MESSAGE_LENGTH:
        raise ServiceError(f"Message must be at most {MAX_MESSAGE_LENGTH} characters")

    entry = Guestbook(user_id=user_id, message=message.strip())
    db.add(entry)
    db.flush()
    db.refresh(entry)
    return _serialize(entry)


def delete_entry(db: Session, entry_id: int, user_id: int, is_admin: bool) -> None:
    entry = db.get(Guestbook, entry_id)
    if entry is None:
        raise NotFoundError("Entry not found")
    if not is_admin and entry.user_id != user_id:
        raise PermissionDenied("You cannot delete this entry")
    db.delete(entry)
    db.flush()
    logger.info(f"Guestbook entry {entry_id} deleted by user {user_id}")

"""Guestbook routes."""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Path, Query

from techblog.db import get_session
from techblog.routes.deps import ok, require_user
from techblog.schemas import GuestbookRequest
from techblog.services.auth import CurrentUser
from techblog.services.guestbook import create_entry, delete_entry, list_entries

router = APIRouter(prefix="/guestbook", tags=["guestbook"])


@router.get("")
def guestbook_index(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100)) -> Dict[str, Any]:
    with get_session() as db:
        return ok(list_entries(db, page=page, limit=limit))


@router.post("", status_code=201)
def guestbook_create(body: GuestbookRequest, user: CurrentUser = Depends(require_user)) -> Dict[str, Any]:
    with get_session() as db:
        return ok(create_entry(db, user.id, body.message), "Message posted")


@router.delete("/{entry_id}")
def guestbook_delete(
    entry_id: int = Path(..., ge=1),
    user: CurrentUser = Depends(require_user),
) -> Dict[str, Any]:
    with get_session() as db:
        delete_entry(db, entry_id, user.id, user.is_admin)
    return ok(message="Message deleted")

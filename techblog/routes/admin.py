"""Admin routes: dashboard, settings, comment moderation and user management."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Path, Query

from techblog.db import get_session
from techblog.errors import ServiceError
from techblog.routes.deps import ok, require_admin
from techblog.schemas import UserUpdateRequest
from techblog.services.auth import CurrentUser
from techblog.services.comments import list_comments_admin
from techblog.services.dashboard import delete_user, get_dashboard_stats, get_user_detail, list_users, update_user
from techblog.services.settings import get_all_settings, update_setting, update_settings

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/dashboard/stats")
def dashboard_stats() -> Dict[str, Any]:
    with get_session() as db:
        return ok(get_dashboard_stats(db))


@router.get("/comments")
def comments_index(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    post_id: Optional[int] = Query(None, alias="postId"),
) -> Dict[str, Any]:
    with get_session() as db:
        return ok(list_comments_admin(db, page=page, limit=limit, post_id=post_id))


@router.get("/settings")
def settings_index() -> Dict[str, Any]:
    with get_session() as db:
        return ok(get_all_settings(db))


@router.put("/settings")
def settings_update(data: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    """
    Accepts {"key": k, "value": v} for a single setting, {"settings": {...}},
    or a plain {key: value} mapping.
    """
    with get_session() as db:
        if "key" in data and "value" in data:
            return ok(update_setting(db, data["key"], data["value"]), "Setting saved")
        values = data.get("settings", data)
        if not isinstance(values, dict) or not values:
            raise ServiceError("No settings given")
        return ok(update_settings(db, values), "Settings saved")


@router.get("/users")
def users_index() -> Dict[str, Any]:
    with get_session() as db:
        return ok(list_users(db))


@router.get("/users/{user_id}")
def user_detail(user_id: int = Path(..., ge=1)) -> Dict[str, Any]:
    with get_session() as db:
        return ok(get_user_detail(db, user_id))


@router.patch("/users/{user_id}")
def user_update(body: UserUpdateRequest, user_id: int = Path(..., ge=1),
                admin: CurrentUser = Depends(require_admin)) -> Dict[str, Any]:
    if user_id == admin.id and (body.is_admin is False or body.is_banned):
        raise ServiceError("You cannot demote or ban yourself")
    with get_session() as db:
        updated = update_user(db, user_id, is_admin=body.is_admin, is_banned=body.is_banned,
                              banned_reason=body.banned_reason)
        return ok(updated, "User updated")


@router.delete("/users/{user_id}")
def user_delete(user_id: int = Path(..., ge=1)) -> Dict[str, Any]:
    with get_session() as db:
        delete_user(db, user_id)
    return ok(message="User deleted")

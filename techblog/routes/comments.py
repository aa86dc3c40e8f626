"""Comment routes: threaded listing, posting, likes, recall and moderation."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from techblog.db import get_session
from techblog.errors import ServiceError
from techblog.routes.deps import ok, optional_user, require_admin, require_user
from techblog.schemas import CommentCreateRequest, CommentUpdateRequest
from techblog.services.auth import CurrentUser
from techblog.services.comments import (
    create_comment,
    delete_comment,
    get_comment_tree,
    get_recent_comments,
    update_comment,
)

router = APIRouter(prefix="/comments", tags=["comments"])


@router.get("")
def comment_tree(
    post_id: Optional[int] = Query(None, alias="postId", description="ID of the post"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: Optional[CurrentUser] = Depends(optional_user),
) -> Dict[str, Any]:
    """
    Top-level comments of a post, newest first, each with its nested replies.

    Returns the comment list plus total, page, limit, maxDepth and
    hasHiddenComments.
    """
    if not post_id:
        raise ServiceError("postId is required")
    with get_session() as db:
        tree = get_comment_tree(db, post_id, page=page, limit=limit, user_id=user.id if user else None)
    return ok(
        tree.comments,
        total=tree.total,
        page=tree.page,
        limit=tree.limit,
        maxDepth=tree.max_depth,
        hasHiddenComments=tree.has_hidden_comments,
    )


@router.get("/recent")
def recent_comments(limit: int = Query(5, ge=1, le=50)) -> Dict[str, Any]:
    with get_session() as db:
        return ok(get_recent_comments(db, limit=limit))


@router.post("", status_code=201)
def comment_create(body: CommentCreateRequest, user: CurrentUser = Depends(require_user)) -> Dict[str, Any]:
    with get_session() as db:
        comment = create_comment(db, user.id, body.post_id, body.content, parent_id=body.parent_id)
        return ok(comment, "Comment posted")


@router.put("")
def comment_update(body: CommentUpdateRequest, user: CurrentUser = Depends(require_user)) -> Dict[str, Any]:
    with get_session() as db:
        return ok(update_comment(db, user.id, body.id, action=body.action, content=body.content))


@router.delete("")
def comment_delete(
    comment_id: Optional[int] = Query(None, alias="id"),
    user: CurrentUser = Depends(require_admin),
) -> Dict[str, Any]:
    with get_session() as db:
        delete_comment(db, comment_id)
    return ok(message="Comment deleted")

"""Blog post routes."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Path, Query

from techblog.db import get_session
from techblog.errors import ServiceError
from techblog.routes.deps import ok, optional_user, require_admin, require_user
from techblog.schemas import PostActionRequest, PostCreateRequest
from techblog.services.auth import CurrentUser
from techblog.services.posts import (
    create_post,
    delete_post,
    get_categories,
    get_post,
    get_tags,
    list_posts,
    toggle_bookmark,
    toggle_like,
    update_post,
)

router = APIRouter(prefix="/posts", tags=["posts"])


@router.get("")
def posts_index(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    category: Optional[str] = Query(None),
    tag: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Matched against title, excerpt and content"),
    sort_by: str = Query("createdAt", alias="sortBy", description="createdAt, views or lastCommentAt"),
) -> Dict[str, Any]:
    with get_session() as db:
        return ok(list_posts(db, page=page, limit=limit, category=category, tag=tag, search=search, sort_by=sort_by))


@router.post("", status_code=201)
def posts_create(body: PostCreateRequest, user: CurrentUser = Depends(require_admin)) -> Dict[str, Any]:
    with get_session() as db:
        post = create_post(
            db,
            author_id=user.id,
            title=body.title,
            content=body.content,
            excerpt=body.excerpt,
            category=body.category,
            tags=body.tags,
            cover_image=body.cover_image,
            published=body.published,
        )
        return ok(post, "Post created")


@router.get("/categories")
def categories() -> Dict[str, Any]:
    with get_session() as db:
        return ok(get_categories(db))


@router.get("/tags")
def tags() -> Dict[str, Any]:
    with get_session() as db:
        return ok(get_tags(db))


@router.get("/{slug}")
def post_detail(
    slug: str = Path(..., description="Post slug"),
    user: Optional[CurrentUser] = Depends(optional_user),
) -> Dict[str, Any]:
    with get_session() as db:
        return ok(get_post(db, slug, user_id=user.id if user else None))


@router.put("/{slug}")
def post_update(slug: str, body: PostCreateRequest, user: CurrentUser = Depends(require_admin)) -> Dict[str, Any]:
    changes = body.model_dump(by_alias=True, exclude_unset=True)
    with get_session() as db:
        return ok(update_post(db, slug, changes), "Post updated")


@router.delete("/{slug}")
def post_delete(slug: str, user: CurrentUser = Depends(require_admin)) -> Dict[str, Any]:
    with get_session() as db:
        delete_post(db, slug)
    return ok(message="Post deleted")


@router.patch("/{slug}")
def post_action(slug: str, body: PostActionRequest, user: CurrentUser = Depends(require_user)) -> Dict[str, Any]:
    """Toggle a like or bookmark for the current user."""
    with get_session() as db:
        if body.action == "like":
            return ok(toggle_like(db, slug, user.id))
        if body.action == "bookmark":
            return ok(toggle_bookmark(db, slug, user.id))
    raise ServiceError("action must be like or bookmark")

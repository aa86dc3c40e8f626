# techblog/services/posts.py
"""Blog post queries, authoring and reader interactions."""

import logging
import re
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, selectinload

from techblog.errors import NotFoundError, ServiceError
from techblog.models import Comment, Post, PostBookmark, PostLike, PostTag

logger = logging.getLogger(__name__)

SORT_FIELDS = ("createdAt", "views", "lastCommentAt")
EXCERPT_LENGTH = 150


def generate_slug(title: str) -> str:
    slug = title.strip().lower()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[\s_-]+", "-", slug)
    return slug.strip("-")


def generate_excerpt(content: str, max_length: int = EXCERPT_LENGTH) -> str:
    """Strip common markdown markup and truncate to max_length characters."""
    text = re.sub(r"#{1,6}\s", "", content)
    text = text.replace("**", "").replace("*", "").replace("`", "")
    text = re.sub(r"\[([^\]]+)\]\([^)]+\)", r"\1", text)
    text = text.replace("\n", " ").strip()
    if len(text) <= max_length:
        return text
    return text[:max_length].strip() + "..."


def _unique_slug(db: Session, title: str, exclude_id: Optional[int] = None) -> str:
    base = generate_slug(title) or f"post-{int(time.time() * 1000)}"
    slug, n = base, 2
    while True:
        q = db.query(Post.id).filter(Post.slug == slug)
        if exclude_id is not None:
            q = q.filter(Post.id != exclude_id)
        if q.first() is None:
            return slug
        slug = f"{base}-{n}"
        n += 1


def _clean_tags(tags: Optional[List[str]]) -> List[str]:
    if not tags:
        return []
    cleaned = [str(t).strip() for t in tags if str(t).strip()]
    return list(dict.fromkeys(cleaned))


def serialize_post(post: Post, last_comment_at: Optional[datetime] = None, with_content: bool = True) -> Dict[str, Any]:
    data = {
        "id": post.id,
        "slug": post.slug,
        "title": post.title,
        "excerpt": post.excerpt,
        "category": post.category,
        "tags": [t.name for t in post.tags],
        "coverImage": post.cover_image,
        "authorId": post.author_id,
        "authorName": post.author.name if post.author else None,
        "published": post.published,
        "views": post.views,
        "likes": post.likes,
        "createdAt": post.created_at.isoformat(),
        "updatedAt": post.updated_at.isoformat() if post.updated_at else None,
        "lastCommentAt": last_comment_at.isoformat() if last_comment_at else None,
    }
    if with_content:
        data["content"] = post.content
    return data


def list_posts(
    db: Session,
    page: int = 1,
    limit: int = 10,
    category: Optional[str] = None,
    tag: Optional[str] = None,
    search: Optional[str] = None,
    sort_by: str = "createdAt",
) -> Dict[str, Any]:
    """
    List published posts with filtering, sorting and pagination.

    Args:
        db: Database session
        page: 1-based page number
        limit: Page size
        category: Only posts in this category
        tag: Only posts carrying this tag
        search: Substring matched against title, excerpt and content
        sort_by: createdAt, views or lastCommentAt

    Returns:
        Dict with posts, total, page and limit
    """
    page = max(1, page)
    limit = max(1, min(100, limit))
    if sort_by not in SORT_FIELDS:
        sort_by = "createdAt"

    last_comment = (
        db.query(Comment.post_id.label("post_id"), func.max(Comment.created_at).label("last_at"))
        .group_by(Comment.post_id)
        .subquery()
    )

    q = (
        db.query(Post, last_comment.c.last_at)
        .outerjoin(last_comment, last_comment.c.post_id == Post.id)
        .options(selectinload(Post.tags), selectinload(Post.author))
        .filter(Post.published.is_(True))
    )
    if category:
        q = q.filter(Post.category == category)
    if tag:
        q = q.filter(Post.tags.any(PostTag.name == tag))
    if search:
        q = q.filter(or_(
            Post.title.contains(search, autoescape=True),
            Post.excerpt.contains(search, autoescape=True),
            Post.content.contains(search, autoescape=True),
        ))

    total = q.count()

    if sort_by == "views":
        q = q.order_by(Post.views.desc(), Post.created_at.desc())
    elif sort_by == "lastCommentAt":
        # posts with comments first, most recently discussed first
        q = q.order_by(last_comment.c.last_at.is_(None), last_comment.c.last_at.desc(), Post.created_at.desc())
    else:
        q = q.order_by(Post.created_at.desc())

    rows = q.offset((page - 1) * limit).limit(limit).all()
    return {
        "posts": [serialize_post(post, last_at) for post, last_at in rows],
        "total": total,
        "page": page,
        "limit": limit,
    }


def _get_post(db: Session, slug: str) -> Post:
    post = db.query(Post).filter(Post.slug == slug).first()
    if post is None:
        raise NotFoundError("Post not found")
    return post


def get_post(db: Session, slug: str, user_id: Optional[int] = None, count_view: bool = True) -> Dict[str, Any]:
    post = _get_post(db, slug)
    if count_view:
        db.query(Post).filter(Post.id == post.id).update({Post.views: Post.views + 1}, synchronize_session=False)
        db.refresh(post)

    liked = bookmarked = False
    if user_id is not None:
        liked = db.query(PostLike.id).filter_by(post_id=post.id, user_id=user_id).first() is not None
        bookmarked = db.query(PostBookmark.id).filter_by(post_id=post.id, user_id=user_id).first() is not None

    last_at = db.query(func.max(Comment.created_at)).filter(Comment.post_id == post.id).scalar()
    data = serialize_post(post, last_at)
    data.update({"liked": liked, "bookmarked": bookmarked})
    return data


def create_post(
    db: Session,
    author_id: int,
    title: str,
    content: str,
    excerpt: Optional[str] = None,
    category: Optional[str] = None,
    tags: Optional[List[str]] = None,
    cover_image: Optional[str] = None,
    published: bool = True,
) -> Dict[str, Any]:
    title = (title or "").strip()
    if not title or not content:
        raise ServiceError("Title and content are required")

    post = Post(
        slug=_unique_slug(db, title),
        title=title,
        content=content,
        excerpt=excerpt or generate_excerpt(content),
        category=category,
        cover_image=cover_image,
        published=published,
        author_id=author_id,
    )
    post.tags = [PostTag(name=name) for name in _clean_tags(tags)]
    db.add(post)
    db.flush()
    logger.info(f"Post {post.id} created with slug {post.slug}")
    return serialize_post(post)


def update_post(db: Session, slug: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    """Apply a partial update. A new title regenerates the slug; tags are replaced wholesale."""
    post = _get_post(db, slug)

    title = changes.get("title")
    if title is not None:
        title = title.strip()
        if not title:
            raise ServiceError("Title cannot be empty")
        if title != post.title:
            post.slug = _unique_slug(db, title, exclude_id=post.id)
        post.title = title
    if changes.get("content") is not None:
        post.content = changes["content"]
    for field, attr in (("excerpt", "excerpt"), ("category", "category"),
                        ("coverImage", "cover_image"), ("published", "published")):
        if field in changes and changes[field] is not None:
            setattr(post, attr, changes[field])
    if changes.get("tags") is not None:
        # removals must reach the database before re-inserting names under uq_post_tag
        post.tags = []
        db.flush()
        post.tags = [PostTag(name=name) for name in _clean_tags(changes["tags"])]

    post.updated_at = datetime.utcnow()
    db.flush()
    return serialize_post(post)


def delete_post(db: Session, slug: str) -> None:
    post = _get_post(db, slug)
    db.delete(post)
    db.flush()
    logger.info(f"Post {slug} deleted")


def toggle_like(db: Session, slug: str, user_id: int) -> Dict[str, Any]:
    post = _get_post(db, slug)
    existing = db.query(PostLike).filter_by(post_id=post.id, user_id=user_id).first()
    if existing:
        db.delete(existing)
        delta, liked = -1, False
    else:
        db.add(PostLike(post_id=post.id, user_id=user_id))
        delta, liked = 1, True
    db.query(Post).filter(Post.id == post.id).update({Post.likes: Post.likes + delta}, synchronize_session=False)
    db.flush()
    db.refresh(post)
    return {"liked": liked, "likes": max(0, post.likes)}


def toggle_bookmark(db: Session, slug: str, user_id: int) -> Dict[str, Any]:
    post = _get_post(db, slug)
    existing = db.query(PostBookmark).filter_by(post_id=post.id, user_id=user_id).first()
    if existing:
        db.delete(existing)
        bookmarked = False
    else:
        db.add(PostBookmark(post_id=post.id, user_id=user_id))
        bookmarked = True
    db.flush()
    return {"bookmarked": bookmarked}


def get_categories(db: Session) -> List[str]:
    rows = (
        db.query(Post.category)
        .filter(Post.published.is_(True), Post.category.isnot(None), Post.category != "")
        .distinct()
        .order_by(Post.category)
        .all()
    )
    return [r[0] for r in rows]


def get_tags(db: Session) -> List[str]:
    rows = db.query(PostTag.name).distinct().order_by(PostTag.name).all()
    return [r[0] for r in rows]

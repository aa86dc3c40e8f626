# techblog/services/comments.py
"""Comment service: nested comment trees, posting, likes and recall."""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from techblog.errors import NotFoundError, PermissionDenied, ServiceError
from techblog.models import Comment, CommentLike, Post
from techblog.services.settings import get_int_setting, get_setting

logger = logging.getLogger(__name__)

RECALLED_PLACEHOLDER = "This comment has been recalled"
DEFAULT_MAX_DEPTH = 3
MIN_DEPTH, MAX_DEPTH = 1, 5
RECENT_PREVIEW_LENGTH = 100


@dataclass
class CommentTreePage:
    """One page of top-level comments with their nested replies."""
    post_id: int
    comments: List[Dict[str, Any]]
    total: int
    page: int
    limit: int
    max_depth: int
    has_hidden_comments: bool = False


@dataclass
class CommentTreeBuilder:
    """
    Builds nested comment dicts from a flat list of comments.

    Top-level comments sit at depth 1; replies below max_depth are cut off and
    reported through has_hidden.
    """
    max_depth: int = DEFAULT_MAX_DEPTH
    liked_ids: Set[int] = field(default_factory=set)
    has_hidden: bool = False
    _children: Dict[int, List[Any]] = field(default_factory=dict)

    def index(self, comments: Iterable[Any]) -> None:
        """Group replies by parent id, oldest first."""
        self._children.clear()
        for comment in sorted(comments, key=lambda c: (c.created_at, c.id)):
            if comment.parent_id is not None:
                self._children.setdefault(comment.parent_id, []).append(comment)

    def children_of(self, comment_id: int) -> List[Any]:
        return self._children.get(comment_id, [])

    def build_tree_node(self, comment: Any, depth: int = 1) -> Dict[str, Any]:
        """
        Recursively format a comment and its replies.

        Args:
            comment: Comment model (or any object with the same attributes)
            depth: Depth of this comment, 1 for top-level

        Returns:
            Nested dict for the API
        """
        children = self.children_of(comment.id)
        if depth >= self.max_depth:
            if children:
                self.has_hidden = True
            replies = []
        else:
            replies = [self.build_tree_node(child, depth + 1) for child in children]

        author = comment.author
        return {
            "id": comment.id,
            "parentId": comment.parent_id,
            "content": RECALLED_PLACEHOLDER if comment.is_recalled else comment.content,
            "createdAt": comment.created_at.isoformat(),
            "likes": comment.likes,
            "isRecalled": bool(comment.is_recalled),
            "isLiked": comment.id in self.liked_ids,
            "author": {
                "id": author.id,
                "name": author.name,
                "avatar": author.avatar,
                "isAdmin": bool(author.is_admin),
            } if author is not None else None,
            "replies": replies,
        }

    def build(self, roots: Iterable[Any]) -> List[Dict[str, Any]]:
        self.has_hidden = False
        return [self.build_tree_node(root) for root in roots]


def get_max_depth(db: Session) -> int:
    return get_int_setting(db, "comment_max_depth", DEFAULT_MAX_DEPTH, MIN_DEPTH, MAX_DEPTH)


def comment_depth(db: Session, comment: Comment) -> int:
    """Depth of an existing comment, 1 for top-level."""
    depth = 1
    parent_id = comment.parent_id
    while parent_id is not None:
        depth += 1
        parent_id = db.query(Comment.parent_id).filter(Comment.id == parent_id).scalar()
    return depth


def filter_words(db: Session, content: str) -> str:
    """Mask every configured filter word with asterisks, case-insensitively."""
    raw = get_setting(db, "comment_filter_words") or ""
    words = [w.strip() for w in raw.split(",") if w.strip()]
    for word in words:
        content = re.sub(re.escape(word), "*" * len(word), content, flags=re.IGNORECASE)
    return content


def get_comment_tree(
    db: Session,
    post_id: int,
    page: int = 1,
    limit: int = 20,
    user_id: Optional[int] = None,
) -> CommentTreePage:
    """
    Load one page of a post's comment tree.

    Top-level comments are paged newest first. All replies of the post are
    loaded in a single query and attached in memory.

    Args:
        db: Database session
        post_id: ID of the post
        page: 1-based page of top-level comments
        limit: Top-level comments per page
        user_id: Current user, for isLiked

    Returns:
        CommentTreePage
    """
    page = max(1, page)
    limit = max(1, min(100, limit))
    max_depth = get_max_depth(db)

    top_q = db.query(Comment).filter(Comment.post_id == post_id, Comment.parent_id.is_(None))
    total = top_q.count()
    roots = (
        top_q.options(selectinload(Comment.author))
        .order_by(Comment.created_at.desc(), Comment.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    replies = (
        db.query(Comment)
        .options(selectinload(Comment.author))
        .filter(Comment.post_id == post_id, Comment.parent_id.isnot(None))
        .all()
    ) if roots else []

    liked: Set[int] = set()
    if user_id is not None and roots:
        rows = (
            db.query(CommentLike.comment_id)
            .join(Comment, Comment.id == CommentLike.comment_id)
            .filter(Comment.post_id == post_id, CommentLike.user_id == user_id)
            .all()
        )
        liked = {r[0] for r in rows}

    builder = CommentTreeBuilder(max_depth=max_depth, liked_ids=liked)
    builder.index(replies)
    tree = builder.build(roots)

    return CommentTreePage(
        post_id=post_id,
        comments=tree,
        total=total,
        page=page,
        limit=limit,
        max_depth=max_depth,
        has_hidden_comments=builder.has_hidden,
    )


def create_comment(db: Session, user_id: int, post_id: int, content: str,
                   parent_id: Optional[int] = None) -> Dict[str, Any]:
    content = (content or "").strip()
    if not post_id or not content:
        raise ServiceError("postId and content are required")

    if db.get(Post, post_id) is None:
        raise NotFoundError("Post not found")

    if parent_id:
        parent = db.get(Comment, parent_id)
        if parent is None:
            raise NotFoundError("Parent comment not found")
        if parent.post_id != post_id:
            raise ServiceError("Parent comment belongs to another post")
        if comment_depth(db, parent) >= get_max_depth(db):
            raise ServiceError("Reply depth limit reached")
    else:
        parent_id = None

    comment = Comment(
        post_id=post_id,
        author_id=user_id,
        parent_id=parent_id,
        content=filter_words(db, content),
    )
    db.add(comment)
    db.flush()
    db.refresh(comment)
    logger.info(f"Comment {comment.id} added to post {post_id} by user {user_id}")

    builder = CommentTreeBuilder(max_depth=MAX_DEPTH)
    return builder.build_tree_node(comment)


def _get_comment(db: Session, comment_id: Optional[int]) -> Comment:
    if not comment_id:
        raise ServiceError("Comment id is required")
    comment = db.get(Comment, comment_id)
    if comment is None:
        raise NotFoundError("Comment not found")
    return comment


def like_comment(db: Session, comment_id: int, user_id: int) -> Dict[str, Any]:
    comment = _get_comment(db, comment_id)
    exists = db.query(CommentLike.id).filter_by(comment_id=comment.id, user_id=user_id).first()
    if exists:
        raise ServiceError("You have already liked this comment")

    try:
        db.add(CommentLike(comment_id=comment.id, user_id=user_id))
        db.flush()
    except IntegrityError:
        # concurrent like won the uq_comment_like race; the session rolls back
        raise ServiceError("You have already liked this comment")

    db.query(Comment).filter(Comment.id == comment.id).update(
        {Comment.likes: Comment.likes + 1}, synchronize_session=False
    )
    db.flush()
    db.refresh(comment)
    return {"id": comment.id, "likes": comment.likes, "isLiked": True}


def unlike_comment(db: Session, comment_id: int, user_id: int) -> Dict[str, Any]:
    comment = _get_comment(db, comment_id)
    like = db.query(CommentLike).filter_by(comment_id=comment.id, user_id=user_id).first()
    if like is None:
        raise ServiceError("You have not liked this comment")

    db.delete(like)
    db.query(Comment).filter(Comment.id == comment.id, Comment.likes > 0).update(
        {Comment.likes: Comment.likes - 1}, synchronize_session=False
    )
    db.flush()
    db.refresh(comment)
    return {"id": comment.id, "likes": comment.likes, "isLiked": False}


def recall_comment(db: Session, comment_id: int, user_id: int) -> Dict[str, Any]:
    comment = _get_comment(db, comment_id)
    if comment.author_id != user_id:
        raise PermissionDenied("Only the author can recall this comment")
    if comment.is_recalled:
        raise ServiceError("Comment is already recalled")

    comment.is_recalled = True
    comment.recalled_at = datetime.utcnow()
    db.flush()
    return {"id": comment.id, "isRecalled": True, "content": RECALLED_PLACEHOLDER}


def edit_comment(db: Session, comment_id: int, user_id: int, content: Optional[str]) -> Dict[str, Any]:
    comment = _get_comment(db, comment_id)
    if comment.author_id != user_id:
        raise PermissionDenied("Only the author can edit this comment")
    if comment.is_recalled:
        raise ServiceError("A recalled comment cannot be edited")
    content = (content or "").strip()
    if not content:
        raise ServiceError("Content is required")

    comment.content = filter_words(db, content)
    comment.updated_at = datetime.utcnow()
    db.flush()
    return CommentTreeBuilder(max_depth=MIN_DEPTH).build_tree_node(comment)


def update_comment(db: Session, user_id: int, comment_id: Optional[int], action: Optional[str] = None,
                   content: Optional[str] = None) -> Dict[str, Any]:
    """Dispatch a PUT on a comment: like, unlike, recall or (no action) edit."""
    if action == "like":
        return like_comment(db, comment_id, user_id)
    if action == "unlike":
        return unlike_comment(db, comment_id, user_id)
    if action == "recall":
        return recall_comment(db, comment_id, user_id)
    if action:
        raise ServiceError(f"Unknown action: {action}")
    return edit_comment(db, comment_id, user_id, content)


def delete_comment(db: Session, comment_id: Optional[int]) -> None:
    """Delete a comment with its likes and its whole reply subtree."""
    comment = _get_comment(db, comment_id)
    db.delete(comment)
    db.flush()
    logger.info(f"Comment {comment_id} deleted")


def get_recent_comments(db: Session, limit: int = 5) -> List[Dict[str, Any]]:
    limit = max(1, min(50, limit))
    comments = (
        db.query(Comment)
        .options(selectinload(Comment.author), selectinload(Comment.post))
        .filter(Comment.is_recalled.is_(False))
        .order_by(Comment.created_at.desc(), Comment.id.desc())
        .limit(limit)
        .all()
    )
    result = []
    for c in comments:
        content = c.content
        if len(content) > RECENT_PREVIEW_LENGTH:
            content = content[:RECENT_PREVIEW_LENGTH] + "..."
        result.append({
            "id": c.id,
            "content": content,
            "createdAt": c.created_at.isoformat(),
            "author": {"id": c.author.id, "name": c.author.name, "avatar": c.author.avatar} if c.author else None,
            "post": {"id": c.post.id, "slug": c.post.slug, "title": c.post.title},
        })
    return result


def list_comments_admin(db: Session, page: int = 1, limit: int = 20, post_id: Optional[int] = None) -> Dict[str, Any]:
    """Flat, paginated comment list for moderation."""
    page = max(1, page)
    limit = max(1, min(100, limit))

    q = db.query(Comment)
    if post_id:
        q = q.filter(Comment.post_id == post_id)
    total = q.count()
    comments = (
        q.options(selectinload(Comment.author), selectinload(Comment.post))
        .order_by(Comment.created_at.desc(), Comment.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    ids = [c.id for c in comments]
    reply_counts = dict(
        db.query(Comment.parent_id, func.count(Comment.id))
        .filter(Comment.parent_id.in_(ids))
        .group_by(Comment.parent_id)
        .all()
    ) if ids else {}

    return {
        "comments": [
            {
                "id": c.id,
                "content": c.content,
                "isRecalled": bool(c.is_recalled),
                "likes": c.likes,
                "parentId": c.parent_id,
                "replyCount": reply_counts.get(c.id, 0),
                "createdAt": c.created_at.isoformat(),
                "author": {"id": c.author.id, "name": c.author.name, "email": c.author.email} if c.author else None,
                "post": {"id": c.post.id, "slug": c.post.slug, "title": c.post.title},
            }
            for c in comments
        ],
        "total": total,
        "page": page,
        "limit": limit,
    }

"""Admin dashboard statistics and user management."""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload
from tenacity import retry, stop_after_attempt, wait_exponential

from techblog.config import DB_RETRY_ATTEMPTS, DB_RETRY_MAX_WAIT, DB_RETRY_MIN_WAIT
from techblog.errors import NotFoundError, PermissionDenied
from techblog.models import Comment, Guestbook, Order, Post, Product, User, UserMembership
from techblog.services.cache import redis_client

logger = logging.getLogger(__name__)

STATS_CACHE_KEY = "dashboard:stats"
RECENT_LIMIT = 5


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _revenue(db: Session, start: Optional[datetime] = None, end: Optional[datetime] = None) -> float:
    q = db.query(func.coalesce(func.sum(Order.amount), 0)).filter(Order.status == "paid")
    if start is not None:
        q = q.filter(Order.payment_time >= start)
    if end is not None:
        q = q.filter(Order.payment_time < end)
    return round(float(q.scalar() or 0), 2)


def _count_between(db: Session, column, start: datetime, end: datetime) -> int:
    return db.query(func.count()).filter(column >= start, column < end).scalar()


def _chart(db: Session, today: datetime, days: int = 7) -> List[Dict[str, Any]]:
    rows = []
    for offset in range(days - 1, -1, -1):
        start = today - timedelta(days=offset)
        end = start + timedelta(days=1)
        rows.append({
            "date": start.strftime("%Y-%m-%d"),
            "displayDate": f"{start.month}/{start.day}",
            "posts": _count_between(db, Post.created_at, start, end),
            "users": _count_between(db, User.created_at, start, end),
            "comments": _count_between(db, Comment.created_at, start, end),
            "orders": _count_between(db, Order.created_at, start, end),
            "revenue": _revenue(db, start, end),
        })
    return rows


@retry(
    stop=stop_after_attempt(DB_RETRY_ATTEMPTS),
    wait=wait_exponential(multiplier=1, min=DB_RETRY_MIN_WAIT, max=DB_RETRY_MAX_WAIT),
    reraise=True,
)
def compute_dashboard_stats(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Aggregate the numbers shown on the admin dashboard.

    Args:
        db: Database session
        now: Reference time, defaults to utcnow

    Returns:
        Dict with overview, today, recent, popularPosts, chartData,
        categoryStats and orderStatusStats
    """
    now = now or datetime.utcnow()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    tomorrow = today + timedelta(days=1)

    overview = {
        "postsCount": db.query(func.count(Post.id)).scalar(),
        "usersCount": db.query(func.count(User.id)).scalar(),
        "commentsCount": db.query(func.count(Comment.id)).scalar(),
        "ordersCount": db.query(func.count(Order.id)).scalar(),
        "productsCount": db.query(func.count(Product.id)).scalar(),
        "totalRevenue": _revenue(db),
        "pendingOrders": db.query(func.count(Order.id)).filter(Order.status == "pending").scalar(),
        "publishedPosts": db.query(func.count(Post.id)).filter(Post.published.is_(True)).scalar(),
    }
    today_stats = {
        "newUsers": _count_between(db, User.created_at, today, tomorrow),
        "newComments": _count_between(db, Comment.created_at, today, tomorrow),
        "newOrders": _count_between(db, Order.created_at, today, tomorrow),
        "revenue": _revenue(db, today, tomorrow),
    }

    recent_posts = (
        db.query(Post).options(selectinload(Post.author))
        .order_by(Post.created_at.desc()).limit(RECENT_LIMIT).all()
    )
    recent_comments = (
        db.query(Comment).options(selectinload(Comment.author), selectinload(Comment.post))
        .order_by(Comment.created_at.desc()).limit(RECENT_LIMIT).all()
    )
    recent_users = db.query(User).order_by(User.created_at.desc()).limit(RECENT_LIMIT).all()
    recent_orders = (
        db.query(Order).options(selectinload(Order.user), selectinload(Order.product))
        .order_by(Order.created_at.desc()).limit(RECENT_LIMIT).all()
    )

    comment_counts = (
        db.query(Comment.post_id.label("post_id"), func.count(Comment.id).label("n"))
        .group_by(Comment.post_id).subquery()
    )
    popular = (
        db.query(Post, func.coalesce(comment_counts.c.n, 0))
        .outerjoin(comment_counts, comment_counts.c.post_id == Post.id)
        .order_by(Post.views.desc()).limit(RECENT_LIMIT).all()
    )

    category_stats = (
        db.query(Post.category, func.count(Post.id).label("n"))
        .group_by(Post.category).order_by(func.count(Post.id).desc()).limit(10).all()
    )
    order_status_stats = db.query(Order.status, func.count(Order.id)).group_by(Order.status).all()

    return {
        "overview": overview,
        "today": today_stats,
        "recent": {
            "posts": [
                {
                    "id": p.id, "title": p.title, "slug": p.slug, "createdAt": _iso(p.created_at),
                    "viewCount": p.views, "published": p.published,
                    "author": p.author.name if p.author else "Unknown",
                }
                for p in recent_posts
            ],
            "comments": [
                {
                    "id": c.id,
                    "content": c.content[:100] + ("..." if len(c.content) > 100 else ""),
                    "createdAt": _iso(c.created_at),
                    "author": {"id": c.author.id, "name": c.author.name, "avatar": c.author.avatar}
                    if c.author else None,
                    "post": {"id": c.post.id, "title": c.post.title, "slug": c.post.slug} if c.post else None,
                }
                for c in recent_comments
            ],
            "users": [
                {
                    "id": u.id, "name": u.name, "email": u.email, "avatar": u.avatar,
                    "createdAt": _iso(u.created_at), "isAdmin": u.is_admin,
                }
                for u in recent_users
            ],
            "orders": [
                {
                    "id": o.id, "orderNo": o.order_no, "amount": o.amount, "status": o.status,
                    "createdAt": _iso(o.created_at), "paymentMethod": o.payment_method,
                    "user": {"id": o.user.id, "name": o.user.name, "email": o.user.email} if o.user else None,
                    "product": {"id": o.product.id, "name": o.product.name} if o.product else None,
                }
                for o in recent_orders
            ],
        },
        "popularPosts": [
            {
                "id": p.id, "title": p.title, "slug": p.slug, "viewCount": p.views,
                "likeCount": p.likes, "commentCount": n,
            }
            for p, n in popular
        ],
        "chartData": _chart(db, today),
        "categoryStats": [{"category": c or "Uncategorized", "count": n} for c, n in category_stats],
        "orderStatusStats": [{"status": s, "count": n} for s, n in order_status_stats],
    }


def get_dashboard_stats(db: Session) -> Dict[str, Any]:
    """Dashboard stats, served from redis when cached."""
    cached = redis_client.get_json(STATS_CACHE_KEY)
    if cached is not None:
        return cached
    stats = compute_dashboard_stats(db)
    redis_client.set_json(STATS_CACHE_KEY, stats)
    return stats


# Users

def list_users(db: Session) -> List[Dict[str, Any]]:
    post_counts = db.query(Post.author_id.label("uid"), func.count(Post.id).label("n")).group_by(Post.author_id).subquery()
    comment_counts = (
        db.query(Comment.author_id.label("uid"), func.count(Comment.id).label("n"))
        .group_by(Comment.author_id).subquery()
    )
    rows = (
        db.query(User, func.coalesce(post_counts.c.n, 0), func.coalesce(comment_counts.c.n, 0))
        .outerjoin(post_counts, post_counts.c.uid == User.id)
        .outerjoin(comment_counts, comment_counts.c.uid == User.id)
        .order_by(User.created_at.desc(), User.id.desc())
        .all()
    )
    return [
        {
            "id": u.id, "name": u.name, "email": u.email, "avatar": u.avatar, "bio": u.bio,
            "isAdmin": u.is_admin, "isBanned": u.is_banned, "createdAt": _iso(u.created_at),
            "_count": {"posts": posts, "comments": comments},
        }
        for u, posts, comments in rows
    ]


def _get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def _ban_fields(user: User) -> Dict[str, Any]:
    return {
        "isAdmin": user.is_admin,
        "isBanned": user.is_banned,
        "bannedReason": user.banned_reason,
        "bannedAt": _iso(user.banned_at),
    }


def get_user_detail(db: Session, user_id: int) -> Dict[str, Any]:
    user = _get_user(db, user_id)
    counts = {
        "posts": db.query(func.count(Post.id)).filter(Post.author_id == user.id).scalar(),
        "comments": db.query(func.count(Comment.id)).filter(Comment.author_id == user.id).scalar(),
        "orders": db.query(func.count(Order.id)).filter(Order.user_id == user.id).scalar(),
        "guestbooks": db.query(func.count(Guestbook.id)).filter(Guestbook.user_id == user.id).scalar(),
    }
    orders = (
        db.query(Order).options(selectinload(Order.product)).filter(Order.user_id == user.id)
        .order_by(Order.created_at.desc(), Order.id.desc()).limit(10).all()
    )
    membership = db.query(UserMembership).filter(UserMembership.user_id == user.id).first()
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "avatar": user.avatar,
        "bio": user.bio,
        **_ban_fields(user),
        "createdAt": _iso(user.created_at),
        "updatedAt": _iso(user.updated_at),
        "_count": counts,
        "orders": [
            {
                "id": o.id, "orderNo": o.order_no, "amount": o.amount, "status": o.status,
                "createdAt": _iso(o.created_at), "product": {"name": o.product.name} if o.product else None,
            }
            for o in orders
        ],
        "membership": {
            "type": membership.type,
            "startDate": _iso(membership.start_date),
            "endDate": _iso(membership.end_date),
            "active": membership.status == "active" and membership.end_date >= datetime.utcnow(),
        } if membership else None,
    }


def update_user(db: Session, user_id: int, is_admin: Optional[bool] = None, is_banned: Optional[bool] = None,
                banned_reason: Optional[str] = None) -> Dict[str, Any]:
    """Change admin/ban flags; banning stamps banned_at, unbanning clears the ban fields."""
    user = _get_user(db, user_id)
    if is_admin is not None:
        user.is_admin = bool(is_admin)
    if is_banned is not None:
        user.is_banned = bool(is_banned)
        if is_banned:
            user.banned_at = datetime.utcnow()
            user.banned_reason = banned_reason or None
        else:
            user.banned_at = None
            user.banned_reason = None
    db.flush()
    logger.info(f"User {user.id} updated: admin={user.is_admin} banned={user.is_banned}")
    return {"id": user.id, "name": user.name, "email": user.email, **_ban_fields(user)}


def delete_user(db: Session, user_id: int) -> None:
    user = _get_user(db, user_id)
    if user.is_admin:
        raise PermissionDenied("Admin users cannot be deleted")
    db.delete(user)
    db.flush()
    logger.info(f"User {user_id} deleted")

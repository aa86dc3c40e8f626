"""
Trending topics: time-boxed community votes with denormalized vote and heat
counters.

Binary topics take up/down votes; multiple-choice topics take one option per
user. Voting the same way twice withdraws the vote, voting differently
switches it.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from techblog.errors import NotFoundError, ServiceError
from techblog.models import TopicComment, TopicVote, TrendingTopic, User

logger = logging.getLogger(__name__)

DIRECTIONS = ("up", "down")
SORT_OPTIONS = ("votes", "heat", "comments")
TOPIC_LIFETIME_HOURS = 24
VOTE_HEAT = 2
COMMENT_HEAT = 1
LATEST_COMMENTS = 10
MAX_COMMENT_LENGTH = 500
DEFAULT_CATEGORY = "General"


@dataclass
class VoteChange:
    """Effect of one vote request on the stored vote and the topic counters."""
    action: str  # created | cancelled | switched
    vote_delta: int
    heat_delta: int


def compute_vote_change(previous: Optional[str], requested: str, binary: bool = True) -> VoteChange:
    """
    Decide how a vote request changes the topic.

    Args:
        previous: The user's current choice (direction or option id), None if not voted
        requested: The requested direction or option id
        binary: True for up/down topics, False for multiple-choice

    Returns:
        VoteChange with the vote and heat deltas to apply
    """
    weight = {"up": 1, "down": -1}.get(requested, 1) if binary else 1

    if previous is None:
        return VoteChange("created", weight, VOTE_HEAT)
    if previous == requested:
        return VoteChange("cancelled", -weight, -VOTE_HEAT)
    # switching an up/down vote moves the balance twice; switching options keeps the total
    return VoteChange("switched", 2 * weight if binary else 0, VOTE_HEAT)


def _parse_options(text: Any) -> Optional[List[Dict[str, Any]]]:
    if not text:
        return None
    if isinstance(text, list):
        lines = [str(o) for o in text]
    else:
        lines = str(text).split("\n")
    lines = [line.strip() for line in lines if line.strip()]
    return [{"id": f"opt_{i}", "text": line, "count": 0} for i, line in enumerate(lines)]


def _hours_left(end_time: datetime, now: datetime) -> int:
    return max(0, math.ceil((end_time - now).total_seconds() / 3600))


def list_topics(db: Session, sort_by: str = "votes", category: Optional[str] = None,
                user_id: Optional[int] = None) -> List[Dict[str, Any]]:
    """
    List active, unexpired topics.

    Args:
        db: Database session
        sort_by: votes, heat or comments
        category: Optional category filter
        user_id: Current user, for userVote

    Returns:
        List of topic dicts
    """
    now = datetime.utcnow()
    comment_counts = (
        db.query(TopicComment.topic_id.label("topic_id"), func.count(TopicComment.id).label("n"))
        .group_by(TopicComment.topic_id)
        .subquery()
    )
    q = (
        db.query(TrendingTopic, func.coalesce(comment_counts.c.n, 0))
        .outerjoin(comment_counts, comment_counts.c.topic_id == TrendingTopic.id)
        .options(selectinload(TrendingTopic.comments).selectinload(TopicComment.user))
        .filter(TrendingTopic.status == "active", TrendingTopic.end_time >= now)
    )
    if category:
        q = q.filter(TrendingTopic.category == category)

    if sort_by == "heat":
        q = q.order_by(TrendingTopic.heat.desc(), TrendingTopic.created_at.desc())
    elif sort_by == "comments":
        q = q.order_by(func.coalesce(comment_counts.c.n, 0).desc(), TrendingTopic.created_at.desc())
    else:
        q = q.order_by(TrendingTopic.votes.desc(), TrendingTopic.created_at.desc())

    rows = q.all()
    topic_ids = [t.id for t, _ in rows]
    if not topic_ids:
        return []

    # up/down tallies for every listed topic in one query
    tallies: Dict[int, Dict[str, int]] = {}
    for topic_id, direction, n in (
        db.query(TopicVote.topic_id, TopicVote.direction, func.count(TopicVote.id))
        .filter(TopicVote.topic_id.in_(topic_ids), TopicVote.direction.isnot(None))
        .group_by(TopicVote.topic_id, TopicVote.direction)
        .all()
    ):
        tallies.setdefault(topic_id, {})[direction] = n

    user_votes: Dict[int, str] = {}
    if user_id is not None:
        for vote in db.query(TopicVote).filter(TopicVote.topic_id.in_(topic_ids), TopicVote.user_id == user_id):
            user_votes[vote.topic_id] = vote.direction or vote.option_id

    proposer_names = dict(
        db.query(User.id, User.name)
        .filter(User.id.in_({t.proposed_by for t, _ in rows if t.proposed_by}))
        .all()
    )

    result = []
    for topic, comment_count in rows:
        latest = topic.comments[:LATEST_COMMENTS]
        result.append({
            "id": topic.id,
            "title": topic.title,
            "description": topic.description,
            "category": topic.category,
            "voteType": topic.vote_type or "binary",
            "options": topic.options,
            "upvotes": tallies.get(topic.id, {}).get("up", 0),
            "downvotes": tallies.get(topic.id, {}).get("down", 0),
            "votes": topic.votes,
            "heat": topic.heat,
            "tags": topic.tags or [],
            "proposedBy": proposer_names.get(topic.proposed_by),
            "hoursLeft": _hours_left(topic.end_time, now),
            "endTime": topic.end_time.isoformat(),
            "comments": [
                {
                    "id": c.id,
                    "author": c.user.name if c.user else None,
                    "content": c.content,
                    "createdAt": c.created_at.isoformat(),
                }
                for c in latest
            ],
            "commentCount": comment_count,
            "userVote": user_votes.get(topic.id),
        })
    return result


def propose_topic(db: Session, user_id: int, title: str, description: str, category: Optional[str] = None,
                  tags: Optional[List[str]] = None, vote_type: str = "binary", options: Any = None) -> Dict[str, Any]:
    title = (title or "").strip()
    description = (description or "").strip()
    if not title or not description:
        raise ServiceError("title and description are required")

    vote_type = vote_type or "binary"
    if vote_type not in ("binary", "multiple"):
        raise ServiceError("voteType must be binary or multiple")
    parsed = _parse_options(options) if vote_type == "multiple" else None
    if vote_type == "multiple" and (not parsed or len(parsed) < 2):
        raise ServiceError("A multiple-choice topic needs at least two options")

    topic = TrendingTopic(
        title=title,
        description=description,
        category=category or DEFAULT_CATEGORY,
        tags=list(tags) if tags else None,
        vote_type=vote_type,
        options=parsed,
        votes=0,
        heat=1,
        status="active",
        end_time=datetime.utcnow() + timedelta(hours=TOPIC_LIFETIME_HOURS),
        proposed_by=user_id,
    )
    db.add(topic)
    db.flush()
    logger.info(f"Topic {topic.id} proposed by user {user_id}")
    return {"id": topic.id}


def _get_open_topic(db: Session, topic_id: Optional[int], lock: bool = False) -> TrendingTopic:
    if not topic_id:
        raise ServiceError("topicId is required")
    q = db.query(TrendingTopic).filter(TrendingTopic.id == topic_id)
    if lock:
        q = q.with_for_update()
    topic = q.first()
    if topic is None:
        raise NotFoundError("Topic not found")
    if topic.status != "active" or topic.end_time < datetime.utcnow():
        raise ServiceError("This topic is closed")
    return topic


def cast_vote(db: Session, user_id: int, topic_id: int, direction: Optional[str] = None,
              option_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Create, withdraw or switch the user's vote on a topic.

    Args:
        db: Database session
        user_id: Voting user
        topic_id: Topic to vote on
        direction: up or down, for binary topics
        option_id: Option id, for multiple-choice topics

    Returns:
        Dict with userVote, votes and heat after the change
    """
    topic = _get_open_topic(db, topic_id, lock=True)
    binary = (topic.vote_type or "binary") == "binary"

    if binary:
        if direction not in DIRECTIONS:
            raise ServiceError("direction must be up or down")
        requested = direction
    else:
        options = topic.options or []
        if option_id not in {o["id"] for o in options}:
            raise ServiceError("Invalid option")
        requested = option_id

    existing = db.query(TopicVote).filter_by(topic_id=topic.id, user_id=user_id).first()
    previous = None
    if existing is not None:
        previous = existing.direction if binary else existing.option_id

    change = compute_vote_change(previous, requested, binary=binary)

    if change.action == "created":
        db.add(TopicVote(
            topic_id=topic.id,
            user_id=user_id,
            direction=requested if binary else None,
            option_id=None if binary else requested,
        ))
        user_vote = requested
    elif change.action == "cancelled":
        db.delete(existing)
        user_vote = None
    else:
        if binary:
            existing.direction = requested
        else:
            existing.option_id = requested
        user_vote = requested

    if not binary:
        counts = {o["id"]: o for o in (dict(o) for o in topic.options)}
        if change.action in ("cancelled", "switched") and previous in counts:
            counts[previous]["count"] = max(0, counts[previous]["count"] - 1)
        if change.action in ("created", "switched"):
            counts[requested]["count"] += 1
        # reassign so the JSON column is marked dirty
        topic.options = list(counts.values())

    topic.votes += change.vote_delta
    topic.heat = max(0, topic.heat + change.heat_delta)
    db.flush()
    logger.debug(f"Vote on topic {topic.id} by user {user_id}: {change.action}")

    return {"userVote": user_vote, "votes": topic.votes, "heat": topic.heat, "options": topic.options}


def add_topic_comment(db: Session, user_id: int, topic_id: int, content: str) -> Dict[str, Any]:
    topic = _get_open_topic(db, topic_id)
    content = (content or "").strip()
    if not content:
        raise ServiceError("Content is required")
    if len(content) > MAX_COMMENT_LENGTH:
        raise ServiceError(f"Comment must be at most {MAX_COMMENT_LENGTH} characters")

    comment = TopicComment(topic_id=topic.id, user_id=user_id, content=content)
    db.add(comment)
    topic.heat += COMMENT_HEAT
    db.flush()
    return {"id": comment.id, "content": comment.content, "createdAt": comment.created_at.isoformat()}


def expire_topics(db: Session, now: Optional[datetime] = None) -> int:
    """Close active topics whose voting window has ended. Returns the number closed."""
    now = now or datetime.utcnow()
    closed = (
        db.query(TrendingTopic)
        .filter(TrendingTopic.status == "active", TrendingTopic.end_time < now)
        .update({TrendingTopic.status: "closed"}, synchronize_session=False)
    )
    if closed:
        logger.info(f"Closed {closed} expired topics")
    return closed

"""Trending topic routes: listing, proposals, votes and topic comments."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from techblog.db import get_session
from techblog.routes.deps import ok, optional_user, require_user
from techblog.schemas import TrendingRequest
from techblog.services.auth import CurrentUser
from techblog.services.trending import add_topic_comment, cast_vote, list_topics, propose_topic

router = APIRouter(prefix="/trending", tags=["trending"])


@router.get("")
def topics_index(
    sort_by: str = Query("votes", alias="sortBy", description="votes, heat or comments"),
    category: Optional[str] = Query(None),
    user: Optional[CurrentUser] = Depends(optional_user),
) -> Dict[str, Any]:
    with get_session() as db:
        return ok(list_topics(db, sort_by=sort_by, category=category, user_id=user.id if user else None))


@router.post("")
def topics_action(body: TrendingRequest, user: CurrentUser = Depends(require_user)) -> Dict[str, Any]:
    """
    Dispatch on body.action.

    - propose: create a topic
    - comment: add a comment to an active topic
    - anything else: vote (direction for binary topics, optionId for multiple choice)
    """
    with get_session() as db:
        if body.action == "propose":
            topic = propose_topic(
                db,
                user.id,
                body.title,
                body.description,
                category=body.category,
                tags=body.tags,
                vote_type=body.vote_type or "binary",
                options=body.options,
            )
            return ok(topic, "Topic proposed")
        if body.action == "comment":
            return ok(add_topic_comment(db, user.id, body.topic_id, body.content), "Comment added")
        return ok(cast_vote(db, user.id, body.topic_id, direction=body.direction, option_id=body.option_id))

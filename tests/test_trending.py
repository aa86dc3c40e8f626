# tests/test_trending.py
"""Tests for trending topics: vote arithmetic, proposals, votes and comments."""

from datetime import datetime, timedelta

import pytest

from conftest import future, past
from techblog.db import get_session
from techblog.models import TopicVote, TrendingTopic
from techblog.services.trending import compute_vote_change, expire_topics


class TestComputeVoteChange:
    """Pure vote arithmetic."""

    @pytest.mark.parametrize("previous,requested,expected", [
        (None, "up", ("created", 1, 2)),
        (None, "down", ("created", -1, 2)),
        ("up", "up", ("cancelled", -1, -2)),
        ("down", "down", ("cancelled", 1, -2)),
        ("down", "up", ("switched", 2, 2)),
        ("up", "down", ("switched", -2, 2)),
    ])
    def test_binary(self, previous, requested, expected):
        change = compute_vote_change(previous, requested)
        assert (change.action, change.vote_delta, change.heat_delta) == expected

    def test_multiple_choice(self):
        assert compute_vote_change(None, "opt_1", binary=False).vote_delta == 1
        assert compute_vote_change("opt_1", "opt_1", binary=False).vote_delta == -1
        switched = compute_vote_change("opt_0", "opt_1", binary=False)
        assert (switched.action, switched.vote_delta) == ("switched", 0)


def _topic(vote_type="binary", end_time=None, status="active", options=None, category="General"):
    with get_session() as db:
        topic = TrendingTopic(
            title="Tabs or spaces?", description="Settle it", category=category, vote_type=vote_type,
            options=options, votes=0, heat=1, status=status, end_time=end_time or future(hours=5),
        )
        db.add(topic)
        db.flush()
        return topic.id


class TestTrendingEndpoints:
    """HTTP behaviour of /api/trending."""

    def test_propose_defaults(self, client, user):
        response = client.post("/api/trending", json={"action": "propose", "title": "Rust in the kernel?",
                                                       "description": "Discuss"}, headers=user["headers"])
        assert response.status_code == 200

        topics = client.get("/api/trending").json()["data"]
        assert len(topics) == 1
        topic = topics[0]
        assert topic["category"] == "General"
        assert topic["voteType"] == "binary"
        assert topic["heat"] == 1
        assert topic["votes"] == 0
        assert topic["proposedBy"] == "alice"
        assert 23 <= topic["hoursLeft"] <= 24
        assert topic["userVote"] is None

    def test_propose_multiple_choice_needs_two_options(self, client, user):
        bad = client.post("/api/trending", json={"action": "propose", "title": "Pick", "description": "d",
                                                 "voteType": "multiple", "options": "only one"},
                          headers=user["headers"])
        assert bad.status_code == 400

        good = client.post("/api/trending", json={"action": "propose", "title": "Pick", "description": "d",
                                                  "voteType": "multiple", "options": "Vim\nEmacs\n\n"},
                           headers=user["headers"])
        assert good.status_code == 200
        options = client.get("/api/trending").json()["data"][0]["options"]
        assert [o["text"] for o in options] == ["Vim", "Emacs"]
        assert all(o["count"] == 0 for o in options)

    def test_binary_vote_cycle(self, client, user):
        topic_id = _topic()

        def vote(direction):
            return client.post("/api/trending", json={"topicId": topic_id, "direction": direction},
                               headers=user["headers"]).json()["data"]

        assert vote("up") == {"userVote": "up", "votes": 1, "heat": 3, "options": None}
        switched = vote("down")
        assert (switched["votes"], switched["heat"]) == (-1, 5)
        cancelled = vote("down")
        assert (cancelled["userVote"], cancelled["votes"], cancelled["heat"]) == (None, 0, 3)
        with get_session() as db:
            assert db.query(TopicVote).count() == 0

    def test_up_and_down_tallies(self, client, user, other_user):
        topic_id = _topic()
        client.post("/api/trending", json={"topicId": topic_id, "direction": "up"}, headers=user["headers"])
        client.post("/api/trending", json={"topicId": topic_id, "direction": "down"}, headers=other_user["headers"])

        topic = client.get("/api/trending", headers=user["headers"]).json()["data"][0]
        assert (topic["upvotes"], topic["downvotes"], topic["votes"]) == (1, 1, 0)
        assert topic["userVote"] == "up"

    def test_multiple_choice_vote_moves_counts(self, client, user):
        options = [{"id": "opt_0", "text": "A", "count": 0}, {"id": "opt_1", "text": "B", "count": 0}]
        topic_id = _topic(vote_type="multiple", options=options)

        def vote(option_id):
            return client.post("/api/trending", json={"topicId": topic_id, "optionId": option_id},
                               headers=user["headers"])

        first = vote("opt_0").json()["data"]
        assert first["votes"] == 1
        assert [o["count"] for o in first["options"]] == [1, 0]

        moved = vote("opt_1").json()["data"]
        assert moved["votes"] == 1
        assert [o["count"] for o in moved["options"]] == [0, 1]

        cancelled = vote("opt_1").json()["data"]
        assert cancelled["votes"] == 0
        assert cancelled["userVote"] is None
        assert [o["count"] for o in cancelled["options"]] == [0, 0]

        assert vote("opt_9").status_code == 400

    def test_vote_errors(self, client, user):
        closed = _topic(end_time=past(hours=1))
        assert client.post("/api/trending", json={"topicId": 999, "direction": "up"},
                           headers=user["headers"]).status_code == 404
        assert client.post("/api/trending", json={"topicId": closed, "direction": "up"},
                           headers=user["headers"]).status_code == 400
        open_topic = _topic()
        assert client.post("/api/trending", json={"topicId": open_topic, "direction": "sideways"},
                           headers=user["headers"]).status_code == 400
        assert client.post("/api/trending", json={"topicId": open_topic, "direction": "up"}).status_code == 401

    def test_comment_adds_heat(self, client, user):
        topic_id = _topic()
        response = client.post("/api/trending", json={"action": "comment", "topicId": topic_id, "content": "Spaces"},
                               headers=user["headers"])
        assert response.status_code == 200

        topic = client.get("/api/trending").json()["data"][0]
        assert topic["heat"] == 2
        assert topic["commentCount"] == 1
        assert topic["comments"][0]["content"] == "Spaces"

        too_long = client.post("/api/trending", json={"action": "comment", "topicId": topic_id, "content": "x" * 501},
                               headers=user["headers"])
        assert too_long.status_code == 400

    def test_listing_filters_and_sorting(self, client, user):
        hot = _topic(category="Tools")
        _topic(category="Languages")
        _topic(end_time=past(minutes=1))
        _topic(status="closed")
        with get_session() as db:
            db.get(TrendingTopic, hot).heat = 50

        by_heat = client.get("/api/trending", params={"sortBy": "heat"}).json()["data"]
        assert len(by_heat) == 2
        assert by_heat[0]["id"] == hot

        tools = client.get("/api/trending", params={"category": "Tools"}).json()["data"]
        assert [t["id"] for t in tools] == [hot]

    def test_expire_topics(self):
        expired = _topic(end_time=past(hours=2))
        alive = _topic()
        with get_session() as db:
            assert expire_topics(db) == 1
        with get_session() as db:
            assert db.get(TrendingTopic, expired).status == "closed"
            assert db.get(TrendingTopic, alive).status == "active"

    def test_hours_left_rounds_up(self, client):
        _topic(end_time=datetime.utcnow() + timedelta(hours=1, minutes=5))
        assert client.get("/api/trending").json()["data"][0]["hoursLeft"] == 2

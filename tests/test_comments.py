# tests/test_comments.py
"""Tests for threaded comments."""

from datetime import datetime, timedelta

import pytest

from conftest import create_post
from techblog.db import get_session
from techblog.models import Comment, CommentLike, SystemSetting
from techblog.services.comments import RECALLED_PLACEHOLDER, CommentTreeBuilder


class MockAuthor:
    def __init__(self, id: int = 1, name: str = "alice"):
        self.id = id
        self.name = name
        self.avatar = "A"
        self.is_admin = False


class MockComment:
    """Mock comment for testing without database."""

    def __init__(self, id: int, parent_id: int = None, minutes: int = 0, is_recalled: bool = False):
        self.id = id
        self.parent_id = parent_id
        self.content = f"Comment {id} body"
        self.likes = 0
        self.is_recalled = is_recalled
        self.author = MockAuthor()
        self.created_at = datetime(2024, 1, 1) + timedelta(minutes=minutes)


class TestCommentTreeBuilder:
    """Test the in-memory tree builder directly."""

    def test_replies_nest_oldest_first(self):
        root = MockComment(1)
        replies = [MockComment(3, parent_id=1, minutes=5), MockComment(2, parent_id=1, minutes=1)]
        builder = CommentTreeBuilder(max_depth=3)
        builder.index(replies)

        tree = builder.build([root])

        assert [r["id"] for r in tree[0]["replies"]] == [2, 3]
        assert builder.has_hidden is False

    def test_depth_limit_hides_deeper_replies(self):
        chain = [MockComment(2, parent_id=1), MockComment(3, parent_id=2), MockComment(4, parent_id=3)]
        builder = CommentTreeBuilder(max_depth=2)
        builder.index(chain)

        tree = builder.build([MockComment(1)])

        level2 = tree[0]["replies"][0]
        assert level2["id"] == 2
        assert level2["replies"] == []
        assert builder.has_hidden is True

    def test_recalled_placeholder_and_likes(self):
        builder = CommentTreeBuilder(liked_ids={1})
        node = builder.build_tree_node(MockComment(1, is_recalled=True))

        assert node["content"] == RECALLED_PLACEHOLDER
        assert node["isRecalled"] is True
        assert node["isLiked"] is True
        assert node["author"]["name"] == "alice"


def _add_comment(post_id, author_id, content="hi", parent_id=None, minutes=0):
    with get_session() as db:
        c = Comment(post_id=post_id, author_id=author_id, content=content, parent_id=parent_id,
                    created_at=datetime.utcnow() + timedelta(minutes=minutes))
        db.add(c)
        db.flush()
        return c.id


class TestCommentEndpoints:
    """HTTP behaviour of /api/comments."""

    @pytest.fixture
    def post_id(self, admin):
        return create_post(admin["id"])

    def test_tree_page(self, client, user, post_id):
        first = _add_comment(post_id, user["id"], "first", minutes=0)
        second = _add_comment(post_id, user["id"], "second", minutes=1)
        _add_comment(post_id, user["id"], "reply", parent_id=first, minutes=2)

        body = client.get("/api/comments", params={"postId": post_id}).json()

        assert body["success"] is True
        assert [c["id"] for c in body["data"]] == [second, first]
        assert body["data"][1]["replies"][0]["content"] == "reply"
        assert body["total"] == 2
        assert body["page"] == 1
        assert body["limit"] == 20
        assert body["maxDepth"] == 3
        assert body["hasHiddenComments"] is False

    def test_tree_requires_post_id(self, client):
        assert client.get("/api/comments").status_code == 400

    def test_max_depth_setting_is_clamped(self, client, user, post_id):
        with get_session() as db:
            db.add(SystemSetting(key="comment_max_depth", value="9"))
        assert client.get("/api/comments", params={"postId": post_id}).json()["maxDepth"] == 5

    def test_create_and_filter_words(self, client, user, post_id):
        with get_session() as db:
            db.add(SystemSetting(key="comment_filter_words", value="darn, heck"))

        response = client.post("/api/comments", json={"postId": post_id, "content": "  Darn it, what the heck "},
                               headers=user["headers"])

        assert response.status_code == 201
        assert response.json()["data"]["content"] == "**** it, what the ****"

    def test_create_validation(self, client, user, post_id):
        assert client.post("/api/comments", json={"postId": post_id, "content": "   "},
                           headers=user["headers"]).status_code == 400
        assert client.post("/api/comments", json={"postId": 999, "content": "x"},
                           headers=user["headers"]).status_code == 404
        assert client.post("/api/comments", json={"postId": post_id, "content": "x", "parentId": 999},
                           headers=user["headers"]).status_code == 404
        assert client.post("/api/comments", json={"postId": post_id, "content": "x"}).status_code == 401

    def test_reply_to_other_post_rejected(self, client, admin, user, post_id):
        other_post = create_post(admin["id"], slug="other")
        parent = _add_comment(other_post, user["id"])

        response = client.post("/api/comments", json={"postId": post_id, "content": "x", "parentId": parent},
                               headers=user["headers"])
        assert response.status_code == 400

    def test_reply_depth_limit(self, client, user, post_id):
        level1 = _add_comment(post_id, user["id"])
        level2 = _add_comment(post_id, user["id"], parent_id=level1)
        level3 = _add_comment(post_id, user["id"], parent_id=level2)

        ok = client.post("/api/comments", json={"postId": post_id, "content": "x", "parentId": level2},
                         headers=user["headers"])
        too_deep = client.post("/api/comments", json={"postId": post_id, "content": "x", "parentId": level3},
                               headers=user["headers"])

        assert ok.status_code == 201
        assert too_deep.status_code == 400
        assert too_deep.json()["error"] == "Reply depth limit reached"

    def test_like_unlike(self, client, user, other_user, post_id):
        comment_id = _add_comment(post_id, user["id"])

        liked = client.put("/api/comments", json={"id": comment_id, "action": "like"}, headers=other_user["headers"])
        again = client.put("/api/comments", json={"id": comment_id, "action": "like"}, headers=other_user["headers"])

        assert liked.json()["data"]["likes"] == 1
        assert again.status_code == 400

        tree = client.get("/api/comments", params={"postId": post_id}, headers=other_user["headers"]).json()
        assert tree["data"][0]["isLiked"] is True

        unliked = client.put("/api/comments", json={"id": comment_id, "action": "unlike"},
                             headers=other_user["headers"])
        assert unliked.json()["data"]["likes"] == 0
        assert client.put("/api/comments", json={"id": comment_id, "action": "unlike"},
                          headers=other_user["headers"]).status_code == 400
        with get_session() as db:
            assert db.query(CommentLike).count() == 0

    def test_recall_and_edit_rules(self, client, user, other_user, post_id):
        comment_id = _add_comment(post_id, user["id"])

        assert client.put("/api/comments", json={"id": comment_id, "content": "edit"},
                          headers=other_user["headers"]).status_code == 403
        edited = client.put("/api/comments", json={"id": comment_id, "content": "edited"}, headers=user["headers"])
        assert edited.status_code == 200

        assert client.put("/api/comments", json={"id": comment_id, "action": "recall"},
                          headers=other_user["headers"]).status_code == 403
        assert client.put("/api/comments", json={"id": comment_id, "action": "recall"},
                          headers=user["headers"]).status_code == 200
        assert client.put("/api/comments", json={"id": comment_id, "action": "recall"},
                          headers=user["headers"]).status_code == 400
        assert client.put("/api/comments", json={"id": comment_id, "content": "again"},
                          headers=user["headers"]).status_code == 400

        tree = client.get("/api/comments", params={"postId": post_id}).json()
        assert tree["data"][0]["content"] == RECALLED_PLACEHOLDER

    def test_update_missing_comment(self, client, user):
        assert client.put("/api/comments", json={"action": "like"}, headers=user["headers"]).status_code == 400
        assert client.put("/api/comments", json={"id": 42, "action": "like"}, headers=user["headers"]).status_code == 404

    def test_delete_is_admin_only_and_cascades(self, client, admin, user, post_id):
        root = _add_comment(post_id, user["id"])
        child = _add_comment(post_id, user["id"], parent_id=root)
        _add_comment(post_id, user["id"], parent_id=child)

        assert client.delete("/api/comments", params={"id": root}, headers=user["headers"]).status_code == 403
        assert client.delete("/api/comments", params={"id": root}, headers=admin["headers"]).status_code == 200
        with get_session() as db:
            assert db.query(Comment).count() == 0

    def test_recent_comments(self, client, user, post_id):
        _add_comment(post_id, user["id"], "x" * 150, minutes=1)
        recalled = _add_comment(post_id, user["id"], "gone", minutes=2)
        with get_session() as db:
            db.get(Comment, recalled).is_recalled = True

        recent = client.get("/api/comments/recent").json()["data"]

        assert len(recent) == 1
        assert recent[0]["content"] == "x" * 100 + "..."
        assert recent[0]["post"]["slug"] == "hello-world"

    def test_admin_comment_list(self, client, admin, user, post_id):
        root = _add_comment(post_id, user["id"])
        _add_comment(post_id, user["id"], parent_id=root)

        assert client.get("/api/admin/comments", headers=user["headers"]).status_code == 403
        data = client.get("/api/admin/comments", params={"postId": post_id}, headers=admin["headers"]).json()["data"]

        assert data["total"] == 2
        by_id = {c["id"]: c for c in data["comments"]}
        assert by_id[root]["replyCount"] == 1

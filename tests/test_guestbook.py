"""Tests for the guestbook."""

from techblog.db import get_session
from techblog.models import Guestbook


class TestGuestbookEndpoints:
    """HTTP behaviour of /api/guestbook."""

    def test_post_and_list(self, client, user):
        created = client.post("/api/guestbook", json={"message": "  Nice blog!  "}, headers=user["headers"])
        assert created.status_code == 201
        assert created.json()["data"]["message"] == "Nice blog!"

        listing = client.get("/api/guestbook").json()["data"]
        assert listing["total"] == 1
        assert listing["entries"][0]["author"]["name"] == "alice"

    def test_newest_first(self, client, user):
        for text in ("one", "two", "three"):
            client.post("/api/guestbook", json={"message": text}, headers=user["headers"])
        entries = client.get("/api/guestbook", params={"limit": 2}).json()["data"]["entries"]
        assert [e["message"] for e in entries] == ["three", "two"]

    def test_validation(self, client, user):
        assert client.post("/api/guestbook", json={"message": "   "}, headers=user["headers"]).status_code == 400
        assert client.post("/api/guestbook", json={"message": "x" * 501}, headers=user["headers"]).status_code == 400
        assert client.post("/api/guestbook", json={"message": "hi"}).status_code == 401

    def test_delete_permissions(self, client, user, other_user, admin):
        entry_id = client.post("/api/guestbook", json={"message": "mine"}, headers=user["headers"]).json()["data"]["id"]

        assert client.delete(f"/api/guestbook/{entry_id}", headers=other_user["headers"]).status_code == 403
        assert client.delete(f"/api/guestbook/{entry_id}", headers=admin["headers"]).status_code == 200
        assert client.delete(f"/api/guestbook/{entry_id}", headers=admin["headers"]).status_code == 404
        with get_session() as db:
            assert db.query(Guestbook).count() == 0

    def test_author_can_delete(self, client, user):
        entry_id = client.post("/api/guestbook", json={"message": "mine"}, headers=user["headers"]).json()["data"]["id"]
        assert client.delete(f"/api/guestbook/{entry_id}", headers=user["headers"]).status_code == 200

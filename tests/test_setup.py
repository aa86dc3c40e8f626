"""Tests for first-run setup."""

from unittest.mock import patch

from techblog.db import engine, get_session, schema_exists
from techblog.models import Base, User


class TestSetupEndpoints:
    """HTTP behaviour of /api/setup."""

    def test_status_with_admin(self, client, admin):
        assert client.get("/api/setup/status").json()["data"]["needsSetup"] is False

    def test_status_without_admin(self, client):
        data = client.get("/api/setup/status").json()["data"]
        assert data["needsSetup"] is True
        assert data["defaultEmail"] == "admin@example.com"

    def test_status_does_not_create_schema(self, client):
        Base.metadata.drop_all(bind=engine)

        with patch("techblog.routes.setup.init_db") as mock_init:
            data = client.get("/api/setup/status").json()["data"]

        assert data["needsSetup"] is True
        mock_init.assert_not_called()
        assert schema_exists() is False

    def test_create_first_admin(self, client):
        response = client.post("/api/setup", json={"email": "Root@Example.com", "password": "secret123",
                                                   "name": "Root"})

        assert response.status_code == 200
        assert response.json()["data"]["isAdmin"] is True
        with get_session() as db:
            admin = db.query(User).one()
            assert admin.email == "root@example.com"
            assert admin.avatar == "R"

        again = client.post("/api/setup", json={"email": "x@example.com", "password": "secret123", "name": "X2"})
        assert again.status_code == 400
        assert again.json()["error"] == "Administrator already exists. Setup is not needed."

    def test_validation(self, client):
        short = client.post("/api/setup", json={"email": "root@example.com", "password": "123", "name": "Root"})
        bad_email = client.post("/api/setup", json={"email": "nope", "password": "secret123", "name": "Root"})

        assert short.status_code == 400
        assert bad_email.json()["error"] == "Invalid email format"

    def test_existing_email_conflicts(self, client, user):
        response = client.post("/api/setup", json={"email": "alice@example.com", "password": "secret123",
                                                   "name": "Alice"})
        assert response.status_code == 400

"""Tests for accounts: registration, login, tokens and profile changes."""

from unittest.mock import patch

import pytest

from conftest import auth, create_user
from techblog.db import get_session
from techblog.errors import AuthenticationError, ConflictError, PermissionDenied, ServiceError
from techblog.models import SystemSetting, User
from techblog.services.auth import (
    authenticate,
    create_token,
    get_user_from_token,
    make_initials,
    register_user,
)


class TestAuthService:
    """Service-level account rules."""

    def test_make_initials(self):
        assert make_initials("john doe") == "JD"
        assert make_initials("alice") == "A"
        assert make_initials("a_b_c") == "AB"

    def test_register_normalises_email_and_sets_avatar(self):
        with get_session() as db:
            user = register_user(db, "  Carol@Example.COM ", "secret123", "carol smith")
            assert user.email == "carol@example.com"
            assert user.avatar == "CS"
            assert user.password_hash != "secret123"
            assert user.is_admin is False

    @pytest.mark.parametrize("email,password,name", [
        ("not-an-email", "secret123", "carol"),
        ("carol@example.com", "short", "carol"),
        ("carol@example.com", "secret123", "c"),
        ("carol@example.com", "secret123", "x" * 21),
        ("", "secret123", "carol"),
    ])
    def test_register_validation(self, email, password, name):
        with pytest.raises(ServiceError) as exc:
            with get_session() as db:
                register_user(db, email, password, name)
        assert exc.value.status_code == 400

    def test_register_duplicate_email(self, user):
        with pytest.raises(ConflictError):
            with get_session() as db:
                register_user(db, "alice@example.com", "secret123", "alice2")

    def test_register_closed(self):
        with get_session() as db:
            db.add(SystemSetting(key="allow_registration", value="false"))
        with pytest.raises(PermissionDenied):
            with get_session() as db:
                register_user(db, "carol@example.com", "secret123", "carol")

    def test_authenticate(self, user):
        with get_session() as db:
            assert authenticate(db, "ALICE@example.com", "secret123").id == user["id"]
        with pytest.raises(AuthenticationError):
            with get_session() as db:
                authenticate(db, "alice@example.com", "wrong")

    def test_authenticate_banned(self):
        create_user(email="banned@example.com", name="banned", is_banned=True)
        with pytest.raises(PermissionDenied):
            with get_session() as db:
                authenticate(db, "banned@example.com", "secret123")

    def test_token_resolves_live_user_only(self, user):
        with get_session() as db:
            assert get_user_from_token(db, user["token"]).id == user["id"]
            assert get_user_from_token(db, "garbage") is None
            assert get_user_from_token(db, None) is None

            db.get(User, user["id"]).is_banned = True
            db.flush()
            assert get_user_from_token(db, user["token"]) is None

    def test_token_for_deleted_user(self):
        token = create_token(User(id=999, email="ghost@example.com", name="ghost", password_hash="x"))
        with get_session() as db:
            assert get_user_from_token(db, token) is None


class TestAuthEndpoints:
    """HTTP behaviour of /api/auth."""

    def test_register_sets_cookie(self, client):
        response = client.post("/api/auth/register", json={
            "email": "dave@example.com", "password": "secret123", "name": "dave"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["user"]["email"] == "dave@example.com"
        assert body["data"]["token"]
        cookie = response.headers["set-cookie"]
        assert "auth_token=" in cookie
        assert "HttpOnly" in cookie
        assert "samesite=lax" in cookie.lower()

    def test_register_bad_input(self, client):
        response = client.post("/api/auth/register", json={"email": "bad", "password": "secret123", "name": "dave"})
        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Invalid email address"}

    def test_login_and_me(self, client, user):
        response = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "secret123"})
        assert response.status_code == 200
        token = response.json()["data"]["token"]

        me = client.get("/api/auth/me", headers=auth(token))
        assert me.status_code == 200
        assert me.json()["data"]["id"] == user["id"]

    def test_me_from_cookie(self, client, user):
        client.cookies.set("auth_token", user["token"])
        assert client.get("/api/auth/me").json()["data"]["name"] == "alice"

    def test_me_from_legacy_cookie(self, client, user):
        client.cookies.set("token", user["token"])
        assert client.get("/api/auth/me").status_code == 200

    def test_login_wrong_password(self, client, user):
        response = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "nope"})
        assert response.status_code == 401
        assert response.json()["success"] is False

    def test_me_requires_login(self, client):
        response = client.get("/api/auth/me")
        assert response.status_code == 401
        assert response.json()["error"] == "Please log in first"

    def test_logout_clears_cookie(self, client):
        response = client.post("/api/auth/logout")
        assert response.status_code == 200
        assert 'auth_token=""' in response.headers["set-cookie"] or "Max-Age=0" in response.headers["set-cookie"]

    def test_profile_update(self, client, user, other_user):
        response = client.put("/api/auth/profile", json={"name": "bob", "bio": "hi"}, headers=user["headers"])
        assert response.status_code == 400

        response = client.put("/api/auth/profile", json={"name": "alice2", "bio": "hi"}, headers=user["headers"])
        assert response.status_code == 200
        assert response.json()["data"]["name"] == "alice2"

    def test_change_password(self, client, user):
        wrong = client.put("/api/auth/password", json={"old_password": "bad", "new_password": "newsecret"},
                           headers=user["headers"])
        assert wrong.status_code == 400

        response = client.put("/api/auth/password", json={"oldPassword": "secret123", "newPassword": "newsecret"},
                              headers=user["headers"])
        assert response.status_code == 200

        login = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "newsecret"})
        assert login.status_code == 200

    def test_unexpected_error_renders_envelope(self, user):
        from fastapi.testclient import TestClient
        from techblog.main import app

        client = TestClient(app, raise_server_exceptions=False)
        with patch("techblog.routes.auth.update_profile", side_effect=RuntimeError("boom")):
            response = client.put("/api/auth/profile", json={"name": "x"}, headers=user["headers"])
        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "Internal server error"}

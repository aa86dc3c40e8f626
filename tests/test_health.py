"""
Tests for health check endpoints, the redis cache and retry behaviour.
"""

import json
from unittest.mock import MagicMock, Mock, patch

import pytest
import redis
import requests
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from techblog.db import get_session
from techblog.services.cache import RedisCache, redis_client
from techblog.services.dashboard import STATS_CACHE_KEY, compute_dashboard_stats, get_dashboard_stats
from techblog.services.payments.base import http_post
from techblog.services.settings import PUBLIC_CACHE_KEY, get_public_settings


class TestHealthEndpoints:
    """Test health check endpoints."""

    def test_root_health_check_healthy(self, client):
        """Test root health endpoint when all services are healthy."""
        with patch("techblog.routes.health.check_database_health") as mock_db, \
             patch("techblog.routes.health.check_redis_health") as mock_redis:

            mock_db.return_value = {"status": "ok"}
            mock_redis.return_value = {"status": "ok"}

            response = client.get("/health/")

            assert response.status_code == 200
            data = response.json()
            assert data["status"] == "ok"
            assert data["db"]["status"] == "ok"
            assert data["redis"]["status"] == "ok"
            assert data["version"] == "1.0.0"
            assert "timestamp" in data

    def test_root_health_check_db_down(self, client):
        """Test health endpoint when database is down."""
        with patch("techblog.routes.health.check_database_health") as mock_db, \
             patch("techblog.routes.health.check_redis_health") as mock_redis:

            mock_db.return_value = {"status": "down", "error": "Connection failed"}
            mock_redis.return_value = {"status": "ok"}

            data = client.get("/health/").json()

            assert data["status"] == "down"
            assert "error" in data["db"]

    def test_root_health_check_redis_down(self, client):
        """Redis down only degrades the service."""
        with patch("techblog.routes.health.check_database_health") as mock_db, \
             patch("techblog.routes.health.check_redis_health") as mock_redis:

            mock_db.return_value = {"status": "ok"}
            mock_redis.return_value = {"status": "down", "error": "Redis unreachable"}

            data = client.get("/health/").json()

            assert data["status"] == "degraded"
            assert data["redis"]["status"] == "down"

    def test_root_health_check_real_components(self, client):
        """In-memory database is up and redis is disabled in tests."""
        data = client.get("/health/").json()

        assert data["status"] == "ok"
        assert data["db"] == {"status": "ok"}
        assert data["redis"] == {"status": "disabled"}

    def test_database_health_table_counts(self, client, user, admin):
        data = client.get("/health/db").json()

        assert data["status"] == "ok"
        assert data["tables"] == {"users": 2, "posts": 0, "comments": 0, "products": 0, "orders": 0, "topics": 0}

    def test_database_health_mocked_counts(self, client):
        """Table counts come from one COUNT query per table."""
        with patch("techblog.routes.health.check_database_health", return_value={"status": "ok"}), \
             patch("techblog.routes.health.get_session") as mock_session:

            mock_db = Mock()
            mock_db.query.return_value.scalar.side_effect = [100, 50, 40, 8, 25, 3]
            mock_session.return_value.__enter__.return_value = mock_db

            data = client.get("/health/db").json()

            assert data["tables"] == {"users": 100, "posts": 50, "comments": 40, "products": 8, "orders": 25, "topics": 3}

    def test_database_health_connection_error(self, client):
        with patch("techblog.routes.health.check_database_health") as mock_health_check:
            mock_health_check.return_value = {"status": "down", "error": "Connection failed"}

            data = client.get("/health/db").json()

            assert data["status"] == "down"
            assert "tables" not in data

    def test_redis_health_operations(self, client):
        """Test Redis health with a set/get/delete round trip."""
        with patch.object(redis_client, "_enabled", True), \
             patch.object(redis_client, "_client", Mock()), \
             patch.object(redis_client, "set", return_value=True), \
             patch.object(redis_client, "get", return_value="test_value"), \
             patch.object(redis_client, "delete", return_value=True), \
             patch.object(redis_client, "ping", return_value=True):

            data = client.get("/health/redis").json()

            assert data["status"] == "ok"
            assert data["operations"] == {"set": True, "get": True, "delete": True}

    def test_redis_health_disabled(self, client):
        with patch.object(redis_client, "_enabled", False):
            data = client.get("/health/redis").json()

            assert data["status"] == "disabled"
            assert "operations" not in data

    def test_payments_health(self, client, admin):
        assert client.get("/health/payments").json()["enabled"] == []

        client.put("/api/shop/payment-channels", json={"code": "epay", "enabled": True, "config": {"pid": "1"}},
                   headers=admin["headers"])
        data = client.get("/health/payments").json()

        assert data["status"] == "degraded"
        assert data["enabled"] == ["epay"]
        assert data["misconfigured"] == ["epay"]


class TestRedisCache:
    """Test the JSON cache wrapper."""

    @pytest.fixture
    def cache(self):
        cache = RedisCache(enabled=True, prefix="test:")
        cache._client = Mock()
        return cache

    def test_disabled_cache_is_noop(self):
        cache = RedisCache(enabled=False)
        assert cache.get_json("k") is None
        assert cache.set_json("k", {"a": 1}) is False
        assert cache.ping() is False

    def test_hit_uses_prefix(self, cache):
        cache._client.get.return_value = json.dumps({"a": 1})

        assert cache.get_json("k") == {"a": 1}
        cache._client.get.assert_called_once_with("test:k")

    def test_set_json_with_ttl(self, cache):
        cache._client.set.return_value = True

        assert cache.set_json("k", [1, 2], ttl=30) is True
        cache._client.set.assert_called_once_with("test:k", "[1, 2]", ex=30)

    def test_corrupt_entry_is_dropped(self, cache):
        cache._client.get.return_value = "{not json"

        assert cache.get_json("k") is None
        cache._client.delete.assert_called_once_with("test:k")

    def test_redis_errors_degrade(self, cache):
        cache._client.get.side_effect = redis.ConnectionError("down")
        cache._client.ping.side_effect = redis.ConnectionError("down")

        assert cache.get("k") is None
        assert cache.ping() is False

    def test_public_settings_cache_hit(self):
        with patch.object(redis_client, "get_json", return_value={"site_title": "Cached"}) as mock_get, \
             patch.object(redis_client, "set_json") as mock_set:
            with get_session() as db:
                assert get_public_settings(db) == {"site_title": "Cached"}

            mock_get.assert_called_once_with(PUBLIC_CACHE_KEY)
            mock_set.assert_not_called()

    def test_public_settings_cache_miss_populates(self):
        with patch.object(redis_client, "get_json", return_value=None), \
             patch.object(redis_client, "set_json") as mock_set:
            with get_session() as db:
                result = get_public_settings(db)

            mock_set.assert_called_once_with(PUBLIC_CACHE_KEY, result)

    def test_setting_update_invalidates_public_cache(self, client, admin):
        with patch.object(redis_client, "delete") as mock_delete:
            client.put("/api/admin/settings", json={"key": "site_title", "value": "New"}, headers=admin["headers"])

            mock_delete.assert_called_once_with(PUBLIC_CACHE_KEY)

    def test_dashboard_stats_cached(self):
        with patch.object(redis_client, "get_json", return_value={"overview": {}}) as mock_get:
            with get_session() as db:
                assert get_dashboard_stats(db) == {"overview": {}}
            mock_get.assert_called_once_with(STATS_CACHE_KEY)


class TestRetryLogic:
    """Test tenacity retries on the database and gateway HTTP paths."""

    def _flaky_query(self, db, failures):
        real_query = db.query
        calls = {"n": 0}

        def query(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] <= failures:
                raise OperationalError("SELECT", {}, Exception("transient"))
            return real_query(*args, **kwargs)

        return query

    def test_dashboard_retry_success(self):
        """Succeeds after two transient database errors."""
        with get_session() as db:
            with patch.object(db, "query", side_effect=self._flaky_query(db, 2)), \
                 patch.object(compute_dashboard_stats.retry, "sleep") as mock_sleep:
                stats = compute_dashboard_stats(db)

        assert stats["overview"]["postsCount"] == 0
        assert mock_sleep.call_count == 2

    def test_dashboard_retry_exhausted(self):
        with pytest.raises(SQLAlchemyError):
            with get_session() as db:
                with patch.object(db, "query", side_effect=OperationalError("SELECT", {}, Exception("down"))), \
                     patch.object(compute_dashboard_stats.retry, "sleep"):
                    compute_dashboard_stats(db)

    def test_http_post_retries_connection_errors(self):
        response = MagicMock()
        with patch("techblog.services.payments.base.requests.post",
                   side_effect=[requests.ConnectionError(), response]) as mock_post, \
             patch.object(http_post.retry, "sleep"):
            assert http_post("https://gateway.example.com", data={"a": 1}) is response

        assert mock_post.call_count == 2
        response.raise_for_status.assert_called_once()

    def test_http_post_does_not_retry_http_errors(self):
        response = MagicMock()
        response.raise_for_status.side_effect = requests.HTTPError("502")
        with patch("techblog.services.payments.base.requests.post", return_value=response) as mock_post:
            with pytest.raises(requests.HTTPError):
                http_post("https://gateway.example.com")

        assert mock_post.call_count == 1


class TestExceptionHandlers:
    """Test global exception handlers."""

    def test_sqlalchemy_exception_handler(self, client):
        with patch("techblog.routes.health.check_database_health") as mock_check:
            mock_check.side_effect = SQLAlchemyError("Database connection failed")

            response = client.get("/health/db")

            assert response.status_code == 500
            assert response.json() == {"success": False, "error": "Database operation failed"}

    def test_validation_errors_are_400(self, client):
        response = client.get("/api/posts", params={"page": "first"})

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_unknown_route(self, client):
        response = client.get("/api/nope")

        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Not Found"}

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

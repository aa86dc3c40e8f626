"""
Health check endpoints for monitoring system status.
"""

import logging
from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter
from sqlalchemy import func, text
from sqlalchemy.exc import SQLAlchemyError

from techblog.db import get_session
from techblog.models import Comment, Order, Post, Product, TrendingTopic, User
from techblog.services.cache import redis_client
from techblog.services.payment_channels import list_channels

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])

API_VERSION = "1.0.0"

# reported name -> primary key column counted
COUNTED_TABLES = {
    "users": User.id,
    "posts": Post.id,
    "comments": Comment.id,
    "products": Product.id,
    "orders": Order.id,
    "topics": TrendingTopic.id,
}


def check_database_health() -> Dict[str, str]:
    """
    Check database connectivity and health.

    Returns:
        Dict with status and optional error details
    """
    try:
        with get_session() as db:
            if db.execute(text("SELECT 1")).scalar() == 1:
                return {"status": "ok"}
            return {"status": "down", "error": "Unexpected query result"}
    except SQLAlchemyError as e:
        logger.warning(f"Database health check failed: {e}")
        return {"status": "down", "error": f"Database error: {e}"}


def check_redis_health() -> Dict[str, str]:
    """Redis status; "disabled" when the cache is switched off."""
    if not redis_client.enabled:
        return {"status": "disabled"}
    if not redis_client.is_available:
        return {"status": "down", "error": "Redis client not available"}
    if not redis_client.ping():
        return {"status": "down", "error": "Redis ping failed"}
    return {"status": "ok"}


@router.get("/")
def health_check() -> Dict[str, Any]:
    """
    Overall health: "ok", "degraded" when only redis is down, "down" when
    the database is unreachable.
    """
    db_health = check_database_health()
    redis_health = check_redis_health()

    if db_health["status"] == "down":
        overall = "down"
    elif redis_health["status"] == "down":
        overall = "degraded"
    else:
        overall = "ok"

    return {
        "status": overall,
        "db": db_health,
        "redis": redis_health,
        "version": API_VERSION,
        "timestamp": datetime.utcnow().isoformat(),
    }


@router.get("/db")
def database_health() -> Dict[str, Any]:
    """Database status plus row counts of the main tables."""
    status: Dict[str, Any] = check_database_health()
    if status["status"] != "ok":
        return status

    try:
        with get_session() as db:
            status["tables"] = {name: db.query(func.count(column)).scalar() for name, column in COUNTED_TABLES.items()}
    except SQLAlchemyError as e:
        status["error"] = f"Table counts failed: {e}"
    status["timestamp"] = datetime.utcnow().isoformat()
    return status


@router.get("/redis")
def redis_health() -> Dict[str, Any]:
    """Redis status plus a set/get/delete round trip."""
    status: Dict[str, Any] = check_redis_health()
    if not redis_client.is_available:
        return status

    probe_key, probe_value = "health_check_test", "test_value"
    status["operations"] = {
        "set": redis_client.set(probe_key, probe_value, 60),
        "get": redis_client.get(probe_key) == probe_value,
        "delete": redis_client.delete(probe_key),
    }
    status["timestamp"] = datetime.utcnow().isoformat()
    return status


@router.get("/payments")
def payments_health() -> Dict[str, Any]:
    """Enabled payment channels and whether their stored config is complete."""
    with get_session() as db:
        channels = [c for c in list_channels(db) if c["enabled"]]

    misconfigured = [c["code"] for c in channels if not c["configValid"]]
    return {
        "status": "degraded" if misconfigured else "ok",
        "enabled": [c["code"] for c in channels],
        "misconfigured": misconfigured,
        "timestamp": datetime.utcnow().isoformat(),
    }

"""Shared fixtures: in-memory SQLite schema, API client and user factories."""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["ENABLE_REDIS_CACHE"] = "false"
os.environ["PAYMENT_TEST_MODE"] = "false"

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from techblog.db import engine, get_session
from techblog.models import Base, Post, PostTag, Product, ProductKey, User
from techblog.services.auth import create_token, hash_password, make_initials


@pytest.fixture(autouse=True)
def database():
    """Fresh schema for every test."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client():
    from techblog.main import app

    return TestClient(app)


def create_user(email="alice@example.com", name="alice", password="secret123", is_admin=False, is_banned=False):
    """Insert a user and return (id, token)."""
    with get_session() as db:
        user = User(
            email=email,
            name=name,
            password_hash=hash_password(password),
            avatar=make_initials(name),
            bio="",
            is_admin=is_admin,
            is_banned=is_banned,
        )
        db.add(user)
        db.flush()
        return user.id, create_token(user)


def auth(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user():
    user_id, token = create_user()
    return {"id": user_id, "token": token, "headers": auth(token)}


@pytest.fixture
def other_user():
    user_id, token = create_user(email="bob@example.com", name="bob")
    return {"id": user_id, "token": token, "headers": auth(token)}


@pytest.fixture
def admin():
    user_id, token = create_user(email="admin@example.com", name="admin", is_admin=True)
    return {"id": user_id, "token": token, "headers": auth(token)}


def create_post(author_id, title="Hello World", slug="hello-world", category="Backend", tags=("python",),
                published=True, created_at=None):
    with get_session() as db:
        created = created_at or datetime.utcnow()
        post = Post(slug=slug, title=title, content="Some **markdown** content", excerpt="Some markdown content",
                    category=category, published=published, author_id=author_id,
                    created_at=created, updated_at=created)
        post.tags = [PostTag(name=t) for t in tags]
        db.add(post)
        db.flush()
        return post.id


def create_product(name="License", price=49.0, type="serial_key", stock=2, keys=("KEY-1", "KEY-2"), duration=None,
                   status="active"):
    with get_session() as db:
        product = Product(name=name, description="", price=price, type=type, stock=stock,
                          duration=duration, status=status, sort_order=0)
        db.add(product)
        db.flush()
        for value in keys:
            db.add(ProductKey(product_id=product.id, key_value=value))
        db.flush()
        return product.id


def past(**kwargs):
    return datetime.utcnow() - timedelta(**kwargs)


def future(**kwargs):
    return datetime.utcnow() + timedelta(**kwargs)

"""First-run setup: schema creation and the initial administrator."""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from techblog.config import ADMIN_EMAIL, ADMIN_NAME, ADMIN_PASSWORD
from techblog.errors import ConflictError, ServiceError
from techblog.models import User
from techblog.services.auth import EMAIL_RE, MIN_PASSWORD_LENGTH, hash_password, make_initials

logger = logging.getLogger(__name__)


def has_admin(db: Session) -> bool:
    return db.query(User.id).filter(User.is_admin.is_(True)).first() is not None


def get_setup_status(db: Optional[Session]) -> Dict[str, Any]:
    """Setup state; pass no session when the schema has not been created yet."""
    return {
        "needsSetup": db is None or not has_admin(db),
        "defaultEmail": ADMIN_EMAIL or None,
        "defaultName": ADMIN_NAME or None,
        "hasDefaultPassword": bool(ADMIN_PASSWORD),
    }


def create_first_admin(db: Session, email: Optional[str] = None, password: Optional[str] = None,
                       name: Optional[str] = None) -> User:
    """
    Create the first administrator, falling back to the ADMIN_* environment values.

    Args:
        db: Database session
        email: Admin email
        password: Admin password, at least 6 characters
        name: Display name

    Returns:
        The new admin User
    """
    if has_admin(db):
        raise ServiceError("Administrator already exists. Setup is not needed.")

    email = (email or ADMIN_EMAIL or "").strip().lower()
    password = password or ADMIN_PASSWORD or ""
    name = (name or ADMIN_NAME or "").strip()

    if not email or not password or not name:
        raise ServiceError("Email, password, and name are required")
    if not EMAIL_RE.match(email):
        raise ServiceError("Invalid email format")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ServiceError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(name) < 2:
        raise ServiceError("Name must be at least 2 characters")

    existing = db.query(User).filter(User.email == email).first()
    if existing is not None:
        raise ConflictError("A user with this email already exists")

    admin = User(
        email=email,
        name=name,
        password_hash=hash_password(password),
        avatar=make_initials(name),
        bio="",
        is_admin=True,
    )
    db.add(admin)
    db.flush()
    logger.info(f"Created first administrator {admin.id} <{email}>")
    return admin

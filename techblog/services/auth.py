"""
Account service: password hashing, JWT session tokens and profile updates.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from techblog.config import JWT_ALGORITHM, JWT_SECRET, TOKEN_EXPIRE_DAYS
from techblog.errors import AuthenticationError, ConflictError, PermissionDenied, ServiceError
from techblog.models import User
from techblog.services.settings import get_setting

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 6
NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 20


@dataclass
class CurrentUser:
    """Detached snapshot of the authenticated user for one request."""
    id: int
    email: str
    name: str
    is_admin: bool
    avatar: Optional[str] = None
    bio: Optional[str] = None

    @classmethod
    def from_model(cls, user: User) -> "CurrentUser":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            is_admin=bool(user.is_admin),
            avatar=user.avatar,
            bio=user.bio,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "isAdmin": self.is_admin,
            "avatar": self.avatar,
            "bio": self.bio,
        }


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return check_password_hash(password_hash, password)


def make_initials(name: str) -> str:
    parts = [p for p in re.split(r"[_\s]+", name) if p]
    return "".join(p[0] for p in parts).upper()[:2]


def create_token(user: User) -> str:
    """Issue a signed session token for the user."""
    now = datetime.utcnow()
    payload = {
        "userId": user.id,
        "email": user.email,
        "name": user.name,
        "isAdmin": bool(user.is_admin),
        "iat": now,
        "exp": now + timedelta(days=TOKEN_EXPIRE_DAYS),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> Optional[Dict[str, Any]]:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        logger.debug(f"Token rejected: {e}")
        return None


def get_user_from_token(db: Session, token: Optional[str]) -> Optional[User]:
    """
    Resolve a token to a live user.

    The user is re-read from the database so deleted or banned accounts lose
    access before their token expires.
    """
    if not token:
        return None
    payload = decode_token(token)
    if not payload or "userId" not in payload:
        return None
    user = db.get(User, payload["userId"])
    if user is None or user.is_banned:
        return None
    return user


def serialize_user(user: User) -> Dict[str, Any]:
    return CurrentUser.from_model(user).to_dict()


def register_user(db: Session, email: str, password: str, name: str) -> User:
    """
    Create a new account.

    Args:
        db: Database session
        email: Login email
        password: Plain-text password
        name: Display name, 2-20 characters

    Returns:
        The new User
    """
    email = (email or "").strip().lower()
    name = (name or "").strip()
    password = password or ""

    if not email or not password or not name:
        raise ServiceError("email, password and name are required")
    if get_setting(db, "allow_registration") == "false":
        raise PermissionDenied("Registration is closed")
    if not EMAIL_RE.match(email):
        raise ServiceError("Invalid email address")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ServiceError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if not NAME_MIN_LENGTH <= len(name) <= NAME_MAX_LENGTH:
        raise ServiceError(f"Name must be {NAME_MIN_LENGTH}-{NAME_MAX_LENGTH} characters")
    if db.query(User).filter(User.email == email).first():
        raise ConflictError("Email is already registered")

    user = User(
        email=email,
        name=name,
        password_hash=hash_password(password),
        avatar=make_initials(name),
        bio="",
        is_admin=False,
    )
    db.add(user)
    db.flush()
    logger.info(f"Registered user {user.id} <{email}>")
    return user


def authenticate(db: Session, email: str, password: str) -> User:
    email = (email or "").strip().lower()
    if not email or not password:
        raise ServiceError("email and password are required")

    user = db.query(User).filter(User.email == email).first()
    if user is None or not verify_password(password, user.password_hash):
        raise AuthenticationError("Invalid email or password")
    if user.is_banned:
        raise PermissionDenied("This account has been banned")
    return user


def update_profile(db: Session, user_id: int, name: str, bio: Optional[str]) -> User:
    name = (name or "").strip()
    if not name:
        raise ServiceError("Name is required")
    if not NAME_MIN_LENGTH <= len(name) <= NAME_MAX_LENGTH:
        raise ServiceError(f"Name must be {NAME_MIN_LENGTH}-{NAME_MAX_LENGTH} characters")

    taken = db.query(User).filter(User.name == name, User.id != user_id).first()
    if taken:
        raise ConflictError("Name is already taken")

    user = db.get(User, user_id)
    user.name = name
    user.bio = (bio or "").strip()
    db.flush()
    return user


def change_password(db: Session, user_id: int, old_password: str, new_password: str) -> None:
    if not old_password or not new_password:
        raise ServiceError("Old and new passwords are required")
    if len(new_password) < MIN_PASSWORD_LENGTH:
        raise ServiceError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    user = db.get(User, user_id)
    if not verify_password(old_password, user.password_hash):
        raise ServiceError("Current password is incorrect")
    user.password_hash = hash_password(new_password)
    db.flush()

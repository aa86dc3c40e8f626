"""Request dependencies resolving the logged-in user from the session token."""

from typing import Any, Dict, Optional

from fastapi import Depends, Request

from techblog.config import AUTH_COOKIE_NAME
from techblog.db import get_session
from techblog.errors import AuthenticationError, PermissionDenied
from techblog.services.auth import CurrentUser, get_user_from_token


def token_from_request(request: Request) -> Optional[str]:
    """Bearer header first, then the auth_token (or legacy token) cookie."""
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return request.cookies.get(AUTH_COOKIE_NAME) or request.cookies.get("token")


def optional_user(request: Request) -> Optional[CurrentUser]:
    token = token_from_request(request)
    if not token:
        return None
    with get_session() as db:
        user = get_user_from_token(db, token)
        return CurrentUser.from_model(user) if user else None


def require_user(user: Optional[CurrentUser] = Depends(optional_user)) -> CurrentUser:
    if user is None:
        raise AuthenticationError("Please log in first")
    return user


def require_admin(user: CurrentUser = Depends(require_user)) -> CurrentUser:
    if not user.is_admin:
        raise PermissionDenied("Admin access required")
    return user


def ok(data: Any = None, message: Optional[str] = None, **extra: Any) -> Dict[str, Any]:
    """The success envelope every JSON endpoint returns."""
    body: Dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    body.update(extra)
    return body

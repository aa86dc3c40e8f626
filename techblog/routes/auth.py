"""Account routes: register, login, logout, profile and password."""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Response

from techblog.config import AUTH_COOKIE_NAME, COOKIE_SECURE, TOKEN_EXPIRE_DAYS
from techblog.db import get_session
from techblog.routes.deps import ok, require_user
from techblog.schemas import LoginRequest, PasswordRequest, ProfileRequest, RegisterRequest
from techblog.services.auth import (
    CurrentUser,
    authenticate,
    change_password,
    create_token,
    register_user,
    serialize_user,
    update_profile,
)

router = APIRouter(prefix="/auth", tags=["auth"])


def set_auth_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        AUTH_COOKIE_NAME,
        token,
        max_age=TOKEN_EXPIRE_DAYS * 24 * 60 * 60,
        httponly=True,
        samesite="lax",
        secure=COOKIE_SECURE,
        path="/",
    )


@router.post("/register")
def register(body: RegisterRequest, response: Response) -> Dict[str, Any]:
    with get_session() as db:
        user = register_user(db, body.email, body.password, body.name)
        token = create_token(user)
        data = {"user": serialize_user(user), "token": token}
    set_auth_cookie(response, token)
    return ok(data, "Registration successful")


@router.post("/login")
def login(body: LoginRequest, response: Response) -> Dict[str, Any]:
    with get_session() as db:
        user = authenticate(db, body.email, body.password)
        token = create_token(user)
        data = {"user": serialize_user(user), "token": token}
    set_auth_cookie(response, token)
    return ok(data, "Login successful")


@router.post("/logout")
def logout(response: Response) -> Dict[str, Any]:
    response.delete_cookie(AUTH_COOKIE_NAME, path="/")
    return ok(message="Logged out")


@router.get("/me")
def me(user: CurrentUser = Depends(require_user)) -> Dict[str, Any]:
    return ok(user.to_dict())


@router.put("/profile")
def profile(body: ProfileRequest, user: CurrentUser = Depends(require_user)) -> Dict[str, Any]:
    with get_session() as db:
        updated = update_profile(db, user.id, body.name, body.bio)
        return ok(serialize_user(updated), "Profile updated")


@router.put("/password")
def password(body: PasswordRequest, user: CurrentUser = Depends(require_user)) -> Dict[str, Any]:
    with get_session() as db:
        change_password(db, user.id, body.old_password, body.new_password)
    return ok(message="Password changed")

"""Public site settings."""

from typing import Any, Dict

from fastapi import APIRouter

from techblog.db import get_session
from techblog.routes.deps import ok
from techblog.services.settings import get_public_settings

router = APIRouter(prefix="/settings", tags=["settings"])


@router.get("/public")
def public_settings() -> Dict[str, Any]:
    with get_session() as db:
        return ok(get_public_settings(db))

"""First-run setup routes."""

from typing import Any, Dict

from fastapi import APIRouter

from techblog.db import get_session, init_db, schema_exists
from techblog.routes.deps import ok
from techblog.schemas import SetupRequest
from techblog.services.auth import serialize_user
from techblog.services.setup import create_first_admin, get_setup_status

router = APIRouter(prefix="/setup", tags=["setup"])


@router.get("/status")
def setup_status() -> Dict[str, Any]:
    if not schema_exists():
        return ok(get_setup_status(None))
    with get_session() as db:
        return ok(get_setup_status(db))


@router.post("")
def setup(body: SetupRequest) -> Dict[str, Any]:
    """Create the schema and the first administrator."""
    init_db()
    with get_session() as db:
        admin = create_first_admin(db, body.email, body.password, body.name)
        return ok(serialize_user(admin), "Administrator created")

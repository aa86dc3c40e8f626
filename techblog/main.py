"""
Main FastAPI application for the tech blog, shop and trending topics API.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from techblog.config import CORS_ORIGINS, configure_logging
from techblog.errors import ServiceError
from techblog.routes.admin import router as admin_router
from techblog.routes.auth import router as auth_router
from techblog.routes.comments import router as comments_router
from techblog.routes.guestbook import router as guestbook_router
from techblog.routes.health import router as health_router
from techblog.routes.payments import router as payments_router
from techblog.routes.posts import router as posts_router
from techblog.routes.settings import router as settings_router
from techblog.routes.setup import router as setup_router
from techblog.routes.shop import router as shop_router
from techblog.routes.trending import router as trending_router

logger = logging.getLogger(__name__)

API_ROUTERS = (
    auth_router,
    posts_router,
    comments_router,
    guestbook_router,
    trending_router,
    shop_router,
    payments_router,
    admin_router,
    settings_router,
    setup_router,
)


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    return f"{location}: {first.get('msg')}" if location else str(first.get("msg"))


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI app instance
    """
    configure_logging()

    app = FastAPI(
        title="TechBlog API",
        description="Tech blog, shop and trending topics",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        """Rejected operations from the service layer."""
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return error_response(exc.status_code, exc.message)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Malformed bodies and query parameters are client errors (400)."""
        return error_response(400, _validation_message(exc))

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError):
        """Handle SQLAlchemy database errors."""
        logger.exception(f"Database error on {request.method} {request.url.path}")
        return error_response(500, "Database operation failed")

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle all other unhandled exceptions."""
        logger.exception(f"Unhandled exception on {request.method} {request.url.path}")
        return error_response(500, "Internal server error")

    for router in API_ROUTERS:
        app.include_router(router, prefix="/api")
    app.include_router(health_router)

    @app.get("/")
    def root():
        return {"message": "TechBlog API", "status": "healthy", "version": "1.0.0"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("techblog.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")

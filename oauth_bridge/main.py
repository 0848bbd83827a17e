"""
FastAPI application entrypoint for the OAuth bridge.
"""

from __future__ import annotations

from fastapi import FastAPI
from starlette.middleware.sessions import SessionMiddleware

from oauth_bridge.api.error_handling import register_exception_handlers
from oauth_bridge.api.routes import router
from oauth_bridge.core.config import get_settings
from oauth_bridge.core.logging import configure_logging


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="OAuth Bridge",
        version="0.1.0",
        description=(
            "Stores tenant OAuth tokens, keeps them fresh and uses them for "
            "server-to-server calls authorized by signed identity assertions."
        ),
    )
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session.secret_key,
        session_cookie=settings.session.cookie_name,
        max_age=settings.session.max_age_seconds,
        https_only=settings.environment == "production",
    )
    register_exception_handlers(app)
    app.include_router(router)
    return app


app = create_app()

__all__ = ["app", "create_app"]

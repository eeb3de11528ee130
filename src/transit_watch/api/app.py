"""FastAPI application factory.

Creates and configures the FastAPI application with the auth routes and
middleware.

## Usage

```python
from transit_watch.api import create_app

app = create_app()

# Run with uvicorn
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
```

## Configuration

Settings are loaded once here and handed to every component that needs
them. Missing required settings raise `ConfigurationError` from
`create_app()`, before the server accepts a single request.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from transit_watch.auth.discord import DiscordOAuth
from transit_watch.auth.errors import AuthError, FailureKind
from transit_watch.auth.service import SignInService
from transit_watch.auth.session import SessionTokenCodec
from transit_watch.config import Settings, get_settings
from transit_watch.database.connection import close_db, init_db
from transit_watch.database.users import SqlAlchemyUserStore, UserStore

logger = logging.getLogger(__name__)

FAILURE_STATUS = {
    FailureKind.PROVIDER_REJECTED: status.HTTP_400_BAD_REQUEST,
    FailureKind.INCOMPLETE_IDENTITY: status.HTTP_400_BAD_REQUEST,
    FailureKind.MALFORMED: status.HTTP_401_UNAUTHORIZED,
    FailureKind.TAMPERED: status.HTTP_401_UNAUTHORIZED,
    FailureKind.EXPIRED: status.HTTP_401_UNAUTHORIZED,
    FailureKind.USER_NOT_FOUND: status.HTTP_401_UNAUTHORIZED,
    FailureKind.CONFIGURATION_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render a classified auth failure, keeping its kind."""
    status_code = FAILURE_STATUS.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)

    if exc.kind == FailureKind.TAMPERED:
        client = request.client.host if request.client else "unknown"
        logger.warning(f"Tampered session token presented from {client} on {request.url.path}")

    headers = None
    if status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}

    return JSONResponse(
        status_code=status_code,
        content={"error": exc.kind.value, "detail": exc.message},
        headers=headers,
    )


def create_app(
    settings: Settings | None = None,
    store: UserStore | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to use (loaded from the environment if omitted)
        store: UserStore to use (SQLAlchemy store on DATABASE_URL if omitted)
        transport: httpx transport for calls to Discord (tests)

    Returns:
        Configured FastAPI application

    Raises:
        ConfigurationError: If required settings are missing
    """
    settings = settings or get_settings()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    oauth = DiscordOAuth.from_settings(settings, transport=transport)
    codec = SessionTokenCodec.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan manager.

        Opens the database (unless a store was injected) and builds the
        sign-in service.
        """
        logger.info(f"Starting {settings.app_name} v{settings.app_version}")

        user_store = store
        if user_store is None:
            session_factory = await init_db(settings)
            user_store = SqlAlchemyUserStore(session_factory)

        app.state.sign_in_service = SignInService(oauth, user_store, codec)

        yield

        logger.info("Shutting down")
        if store is None:
            await close_db()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Discord sign-in and sessions for Transit Watch",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AuthError, auth_error_handler)

    from transit_watch.api.routes import auth

    app.include_router(auth.router, prefix="/auth", tags=["Authentication"])

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "version": settings.app_version}

    return app

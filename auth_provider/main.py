from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from auth_provider.api_routers.api import api_router
from auth_provider.features.health.routes.health import router as health_router
from auth_provider.platform.config import Settings
from auth_provider.platform.db.session import Database
from auth_provider.platform.exceptions import add_exception_handlers
from auth_provider.platform.logger import configure_logging, get_logger


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the API around one Settings instance.

    Routes reach settings and the database through `app.state`, never through
    module globals, so tests can build as many apps as they like.
    """
    settings = settings or Settings()
    configure_logging(settings.LOG_DIR, debug=settings.DEBUG)
    logger = get_logger("main")

    database = Database(settings.DATABASE_URL, echo=settings.DEBUG) if settings.DATABASE_URL else None
    if database is None:
        logger.warning("DATABASE_URL is not set; database-backed routes will fail")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if database is not None and settings.DATABASE_AUTO_CREATE:
            await database.create_all()
        yield
        if database is not None:
            await database.dispose()

    app = FastAPI(
        title=settings.APP_NAME,
        description="Email verification, OAuth 2 authorization, onboarding and mail tools for F3 Nation sign-in",
        version="1.0.0",
        debug=settings.DEBUG,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.database = database

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    add_exception_handlers(app)

    @app.get("/", tags=["Info"])
    def root():
        return {
            "app_name": settings.APP_NAME,
            "version": "1.0.0",
            "docs_url": "/docs",
            "api_base": "/api",
        }

    app.include_router(health_router)
    app.include_router(api_router, prefix="/api")

    return app

"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mentalspace.config import settings
from mentalspace.db.engine import async_session, engine
from mentalspace.db.models import Base
from mentalspace.middleware import RequestContextMiddleware, install_error_handlers

# Routers
from mentalspace.api.admin import router as admin_router
from mentalspace.api.auth import router as auth_router
from mentalspace.api.clients import router as clients_router
from mentalspace.api.sessions import router as sessions_router

from mentalspace.utils.logger import setup_logger
setup_logger(log_format=settings.LOG_FORMAT, log_level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL)
logger = logging.getLogger("mentalspace")


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine.begin() as conn:
        # PostgreSQL deployments may manage the schema externally; create_all is a no-op for existing tables
        await conn.run_sync(Base.metadata.create_all)
    if settings.SEED_DEFAULT_ADMIN:
        from mentalspace.services.user_service import ensure_default_admin

        async with async_session() as db:
            await ensure_default_admin(db)
    logger.info("Application startup complete (db=%s)", settings.DB_DIALECT)
    try:
        yield
    finally:
        await engine.dispose()


app = FastAPI(
    title="MentalSpace EHR",
    description="Practice management and clinical records API",
    version="0.1.0",
    lifespan=lifespan,
)

# Starlette middleware order: last added = outermost
app.add_middleware(RequestContextMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)

install_error_handlers(app)

# Mount routers
app.include_router(auth_router, prefix="/api/auth", tags=["auth"])
app.include_router(admin_router, prefix="/api/admin", tags=["admin"])
app.include_router(clients_router, prefix="/api/clients", tags=["clients"])
app.include_router(sessions_router, prefix="/api/sessions", tags=["sessions"])


@app.get("/api/health")
async def health():
    return {"status": "ok"}


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    uvicorn.run(
        "mentalspace.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_config=None,  # keep the handlers installed by setup_logger
    )

"""
AutoLeads Intake - Main FastAPI Application
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from autoleads.api.webhooks.whatsapp import router as whatsapp_router
from autoleads.core.config import settings
from autoleads.core.locks import KeyedLock, create_conversation_lock
from autoleads.core.logging import get_logger, setup_logging
from autoleads.core.middleware import setup_exception_handlers, setup_middleware
from autoleads.core.redis_client import close_redis, redis_status
from autoleads.db.database import create_engine_from_settings, create_session_factory, init_models
from autoleads.domain.services.llm import close_llm_provider, get_llm_provider
from autoleads.domain.services.media_service import MediaStorageService
from autoleads.state_machine.handlers import IntakeServices

logger = get_logger(__name__)

_OPENAPI_TAGS = [
    {"name": "Webhooks", "description": "Inbound WhatsApp messages for the admin intake bot."},
    {"name": "Health", "description": "Liveness and database connectivity."},
]


def build_intake_services() -> IntakeServices:
    return IntakeServices(
        llm_provider=get_llm_provider(),
        media_store=MediaStorageService(),
        conversation_lock=create_conversation_lock(),
        code_locks=KeyedLock(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    setup_logging(
        level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
        json_format=not settings.DEBUG,
    )
    logger.info("Starting application", extra_data={"app_name": settings.APP_NAME})

    engine = create_engine_from_settings()
    await init_models(engine)
    logger.info("Database tables initialized")

    app.state.engine = engine
    app.state.session_factory = create_session_factory(engine)
    app.state.intake_services = build_intake_services()
    if app.state.intake_services.llm_provider is None:
        logger.warning("No LLM provider configured, using parser and template copy only")

    try:
        yield
    finally:
        logger.info("Shutting down application")
        await close_llm_provider()
        await close_redis()
        await engine.dispose()
        logger.info("Database connections disposed")


def create_app(*, use_lifespan: bool = True) -> FastAPI:
    """Build the application. Tests pass use_lifespan=False and fill app.state themselves."""
    app = FastAPI(
        title=settings.APP_NAME,
        version="1.0.0",
        description="WhatsApp admin bot that turns chat messages into vehicle listings.",
        openapi_tags=_OPENAPI_TAGS,
        lifespan=lifespan if use_lifespan else None,
    )

    setup_middleware(app)
    setup_exception_handlers(app)

    app.include_router(whatsapp_router, prefix="/api/webhooks", tags=["Webhooks"])
    # stored photos are referenced as /uploads/tenant-{id}/{filename}
    app.mount("/uploads", StaticFiles(directory=settings.UPLOAD_DIR, check_dir=False), name="uploads")

    @app.get("/health", tags=["Health"], summary="Database (and Redis lease backend) connectivity")
    async def health_check(request: Request):
        checks = {"db": "ok"}
        try:
            async with request.app.state.session_factory() as session:
                await session.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            logger.warning("Database health check failed", extra_data={"error": str(exc)})
            checks["db"] = "error"

        if settings.CONVERSATION_LOCK_BACKEND == "redis":
            checks["redis"] = await redis_status()

        if any(value != "ok" for value in checks.values()):
            return JSONResponse(status_code=503, content={"status": "degraded", **checks})
        return {"status": "healthy", **checks}

    return app


app = create_app()

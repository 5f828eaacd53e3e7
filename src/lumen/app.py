"""FastAPI application factory."""

import asyncio
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Optional

import structlog
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from lumen.api.routes import auth, callbacks, credits, generations, members, uploads
# Import timezone enforcement (sets TZ=UTC)
from lumen.core import timezone  # noqa: F401
from lumen.core.config import Settings, configure_logging
from lumen.core.database import setup_db_session
from lumen.services.auth import AuthService
from lumen.services.billing.ledger import CreditLedgerService
from lumen.services.generation.orchestrator import GenerationOrchestrator, OrchestratorSettings
from lumen.services.generation.tasks import PipelineSupervisor
from lumen.services.providers.factory import build_registry
from lumen.services.storage.blob_store import create_blob_store
from lumen.services.uploads import UploadService
from lumen.uow import create_uow_factory
from lumen.workers.stuck_job_reaper import run_stuck_job_reaper

logger = structlog.get_logger()

RESTART_DELAY = 1


def create_resilient_worker(
    coro_factory: Callable[[], Awaitable[None]],
    worker_name: str,
    shutdown_event: asyncio.Event,
) -> asyncio.Task:
    """Create a worker with automatic restart on failure.

    Args:
        coro_factory: Zero-argument callable returning the worker coroutine
        worker_name: Human-readable worker name for logging
        shutdown_event: Event to signal graceful shutdown

    Returns:
        Initial task handle (will be auto-recreated on crash)
    """

    def on_worker_done(task: asyncio.Task):
        if shutdown_event.is_set():
            logger.info("worker.shutdown_complete", worker=worker_name)
            return

        if task.cancelled():
            logger.info("worker.cancelled", worker=worker_name)
            return

        exc = task.exception()
        if exc:
            logger.error(
                "worker.crashed",
                worker=worker_name,
                error=str(exc),
                error_type=type(exc).__name__,
                retry_in_seconds=RESTART_DELAY,
                exc_info=exc,
            )
        else:
            logger.warning(
                "worker.stopped_unexpectedly",
                worker=worker_name,
                retry_in_seconds=RESTART_DELAY,
            )

        async def restart_worker():
            await asyncio.sleep(RESTART_DELAY)

            if shutdown_event.is_set():
                return

            logger.info("worker.restarting", worker=worker_name)
            new_task = asyncio.create_task(coro_factory())
            new_task.add_done_callback(on_worker_done)

        asyncio.create_task(restart_worker())

    task = asyncio.create_task(coro_factory())
    task.add_done_callback(on_worker_done)
    return task


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Startup: session factory, provider registry (frozen), ledger, pipeline
    supervisor, blob storage, orchestrator and the stuck job reaper.
    Shutdown: stop the reaper, cancel in-flight pipelines, dispose the engine.
    """
    settings: Settings = app.state.settings
    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    async with await uow_factory() as uow:
        providers = await uow.providers.list_active()
    registry = build_registry(providers)

    blob_store = create_blob_store(settings)
    if blob_store is None:
        logger.warning("storage.disabled", reason="R2 credentials not configured")
    upload_service = UploadService(blob_store)

    ledger = CreditLedgerService(uow_factory)
    supervisor = PipelineSupervisor()
    orchestrator = GenerationOrchestrator(
        uow_factory,
        registry,
        ledger,
        supervisor,
        settings=OrchestratorSettings.from_settings(settings),
        uploads=upload_service if upload_service.enabled else None,
    )

    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.registry = registry
    app.state.ledger = ledger
    app.state.supervisor = supervisor
    app.state.upload_service = upload_service
    app.state.auth_service = AuthService(uow_factory, hash_rounds=settings.password_hash_rounds)
    app.state.orchestrator = orchestrator

    shutdown_event = asyncio.Event()
    reaper_task: Optional[asyncio.Task] = None
    if settings.job_timeout_seconds > 0:
        reaper_task = create_resilient_worker(
            lambda: run_stuck_job_reaper(orchestrator, uow_factory, settings),
            "stuck_job_reaper",
            shutdown_event,
        )

    logger.info(
        "application.startup",
        db_url=settings.database_url.split("@")[-1],
        vision_providers=len(registry.vision_providers()),
        llm_providers=len(registry.llm_providers()),
        image_providers=len(registry.image_providers()),
    )

    yield

    logger.info("application.shutdown", in_flight=len(supervisor))
    shutdown_event.set()

    if reaper_task is not None:
        reaper_task.cancel()
        await asyncio.gather(reaper_task, return_exceptions=True)

    await supervisor.shutdown()
    await session_factory.kw["bind"].dispose()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        settings: Settings to use; loaded from the environment when omitted

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="Lumen Backend API",
        description="Multi-tenant AI image generation",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth.router)
    app.include_router(members.router)
    app.include_router(generations.router)
    app.include_router(callbacks.router)
    app.include_router(uploads.router)
    app.include_router(credits.router)

    @app.get("/health")
    async def health_check(response: Response):
        """Health check endpoint with database connectivity test.

        Returns:
            200: {"status": "healthy"} if database connection succeeds
            503: {"status": "unhealthy", "error": {...}} if database connection fails
        """
        try:
            async with app.state.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()

            logger.debug("health_check.success")
            return {"status": "healthy"}

        except Exception as e:
            logger.error(
                "health_check.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "error": {
                    "type": type(e).__name__,
                    "message": str(e),
                },
            }

    return app


# Create app instance for uvicorn
app = create_app()

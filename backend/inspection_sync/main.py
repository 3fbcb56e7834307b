import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from inspection_sync.api.v1 import api_router
from inspection_sync.config import settings
from inspection_sync.core.error_handlers import register_error_handlers
from inspection_sync.core.middleware import RequestIDMiddleware
from inspection_sync.database import build_session_factory, engine as default_engine, init_models
from inspection_sync.services.connectivity import ConnectivityMonitor
from inspection_sync.services.draft_cache import DraftCache
from inspection_sync.services.mutation_queue import MutationQueue
from inspection_sync.services.remote import (
    MediaStore,
    RemoteServiceClient,
    ReportStore,
    TemplateSource,
)
from inspection_sync.services.session import InspectionSessionController
from inspection_sync.services.sync import QueueReplayer

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_models(app.state.engine)
    unsubscribe = app.state.replayer.start_auto_sync()
    logger.info("%s %s ready", settings.APP_NAME, settings.APP_VERSION)
    yield
    unsubscribe()
    # Let pending draft writes land before the engine goes away
    await app.state.controller.writer.flush()
    await app.state.replayer.wait_idle()
    await app.state.engine.dispose()


def create_app(
    engine: AsyncEngine | None = None,
    templates: TemplateSource | None = None,
    reports: ReportStore | None = None,
    media: MediaStore | None = None,
    connectivity: ConnectivityMonitor | None = None,
) -> FastAPI:
    """Build the app and wire the sync engine onto ``app.state``.

    Collaborators default to the HTTP client and the configured local
    database. Tests pass in-memory fakes.
    """
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        docs_url="/api/docs",
        openapi_url="/api/openapi.json",
        lifespan=lifespan,
    )

    engine = engine or default_engine
    session_factory = build_session_factory(engine)
    client = RemoteServiceClient()
    connectivity = connectivity or ConnectivityMonitor()

    draft_cache = DraftCache(session_factory)
    queue = MutationQueue(session_factory)
    reports = reports or client

    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.connectivity = connectivity
    app.state.draft_cache = draft_cache
    app.state.queue = queue
    app.state.controller = InspectionSessionController(
        templates=templates or client,
        reports=reports,
        media=media or client,
        connectivity=connectivity,
        draft_cache=draft_cache,
        queue=queue,
    )
    app.state.replayer = QueueReplayer(queue, reports, connectivity)

    # --- Middleware ---
    app.add_middleware(RequestIDMiddleware)

    # --- Error handlers ---
    register_error_handlers(app)

    # --- Routes ---
    app.include_router(api_router)

    @app.get("/api/health")
    async def health_check():
        """Local cache reachability and the cached connectivity state."""
        checks: dict = {"version": settings.APP_VERSION}
        healthy = True

        start = time.monotonic()
        try:
            async with app.state.session_factory() as session:
                await session.execute(text("SELECT 1"))
            checks["local_cache"] = {
                "status": "ok",
                "latency_ms": round((time.monotonic() - start) * 1000, 1),
            }
        except Exception as exc:
            healthy = False
            checks["local_cache"] = {"status": "error", "detail": str(exc)[:200]}

        checks["online"] = app.state.connectivity.is_online()
        checks["pending_mutations"] = await app.state.queue.count()
        checks["status"] = "healthy" if healthy else "degraded"

        return JSONResponse(content=checks, status_code=200 if healthy else 503)

    return app


configure_logging()
app = create_app()

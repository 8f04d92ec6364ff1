from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from contextlib import asynccontextmanager, suppress
from typing import Any, Optional
import asyncio
import logging
import os

from .middleware import TracingMiddleware
from .logging_config import setup_logging
from .api.batches import router as batches_router
from .api.documents import router as documents_router
from .api.entities import router as entities_router
from .api.health import router as health_router
from .api.jobs import router as jobs_router
from .api.logs import router as logs_router
from .api.prometheus import router as prometheus_router
from .api.ratelimit import router as ratelimit_router
from .db import SessionLocal, engine, init_db
from .services.container import Services, build_services
from .config import (
    API_PREFIX, API_VERSION, BACKGROUND_LOOPS_ENABLED, EXPORT_SWEEP_INTERVAL_SEC,
    SHUTDOWN_DRAIN_TIMEOUT_SEC, WORKER_POLL_INTERVAL_SEC
)

# Configure logging at import time
setup_logging()

logger = logging.getLogger("app")


async def worker_poll_loop(services: Services, interval: float):
    """Picks up jobs whose fire-and-forget trigger never ran"""
    while True:
        try:
            await services.worker.run_pending()
        except Exception:
            logger.exception("Worker poll failed", extra={"component": "worker"})
        await asyncio.sleep(interval)


async def export_sweep_loop(services: Services, interval: float):
    while True:
        await asyncio.sleep(interval)
        try:
            services.tracker.fail_stale_exports()
        except Exception:
            logger.exception("Export timeout sweep failed", extra={"component": "batch_tracker"})


@asynccontextmanager
async def lifespan(application: FastAPI):
    services: Services = application.state.services
    if application.state.init_schema:
        init_db(engine)

    application.state.loop_tasks = []
    if application.state.background_loops:
        application.state.loop_tasks = [
            asyncio.create_task(worker_poll_loop(services, WORKER_POLL_INTERVAL_SEC)),
            asyncio.create_task(export_sweep_loop(services, EXPORT_SWEEP_INTERVAL_SEC)),
        ]

    logger.info("Document intake scheduler ready", extra={
        "component": "api",
        "version": API_VERSION,
        "loops": len(application.state.loop_tasks)
    })

    try:
        yield
    finally:
        for t in application.state.loop_tasks:
            t.cancel()
        for t in application.state.loop_tasks:
            with suppress(asyncio.CancelledError):
                await t
        # Give extraction calls that outlived their soft timeout a chance to land
        if services.dispatcher.pending_late_completions:
            with suppress(asyncio.TimeoutError):
                await asyncio.wait_for(services.dispatcher.drain(), SHUTDOWN_DRAIN_TIMEOUT_SEC)
        logger.info("Document intake scheduler shutting down", extra={"component": "api"})


class ApiVersionHeaderMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-API-Version"] = "v1"
        return response


def create_app(session_factory=None, extractor: Optional[Any] = None,
               background_loops: bool = BACKGROUND_LOOPS_ENABLED,
               trigger_enabled: Optional[bool] = None) -> FastAPI:
    application = FastAPI(title="Document Intake Batch Scheduler", version=API_VERSION, lifespan=lifespan)
    application.state.services = build_services(session_factory or SessionLocal, extractor,
                                                trigger_enabled=trigger_enabled)
    application.state.init_schema = session_factory is None
    application.state.background_loops = background_loops

    application.add_middleware(
        CORSMiddleware,
        allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_middleware(TracingMiddleware)
    application.add_middleware(ApiVersionHeaderMiddleware)

    for router in (health_router, jobs_router, ratelimit_router, batches_router,
                   documents_router, entities_router, logs_router, prometheus_router):
        application.include_router(router, prefix=API_PREFIX)
    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn
    from .config import APP_PORT

    logger.info(f"Starting document intake scheduler on port {APP_PORT}")
    uvicorn.run(
        "docintake.main:app",
        host="0.0.0.0",
        port=APP_PORT,
        reload=False,
        access_log=True
    )

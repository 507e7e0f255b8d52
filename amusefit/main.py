from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, get_settings
from .api.routers import auth as auth_router
from .api.routers import health as health_router
from .observability.logging import setup_logging
from .observability.metrics import MetricsHTTPMiddleware, metrics_endpoint
from .middleware.request_context import RequestContextMiddleware
from .repos.code_records import InMemoryRecordStore, RecordStore, RedisRecordStore
from .services.code_store import CodeStore, utcnow
from .services.dispatcher import Dispatcher, build_dispatcher
from .workers.code_sweeper import CodeSweeper

settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


def build_record_store(settings: Settings) -> RecordStore:
    if settings.CODE_STORE_BACKEND == "redis":
        return RedisRecordStore.from_url(settings.REDIS_URL)  # type: ignore[arg-type]
    return InMemoryRecordStore(utcnow)


def create_app(
    settings: Settings = settings,
    *,
    records: Optional[RecordStore] = None,
    code_store: Optional[CodeStore] = None,
    dispatcher: Optional[Dispatcher] = None,
    start_sweeper: bool = True,
) -> FastAPI:
    """Build the app. Tests pass their own store/dispatcher; production wires them from settings."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        http = httpx.AsyncClient(timeout=settings.PROVIDER_TIMEOUT_SEC)
        rec = records or (code_store.records if code_store else build_record_store(settings))
        store = code_store or CodeStore(
            rec,
            max_attempts=settings.CODE_MAX_ATTEMPTS,
            cooldown_sec=settings.CODE_RESEND_COOLDOWN_SEC,
        )
        sweeper = CodeSweeper(store, settings.CODE_SWEEP_INTERVAL_SEC)

        app.state.settings = settings
        app.state.records = rec
        app.state.code_store = store
        app.state.dispatcher = dispatcher or build_dispatcher(settings, http)
        app.state.sweeper = sweeper
        if start_sweeper:
            sweeper.start()
        logger.info(
            "verification service started env=%s backend=%s providers=%s",
            settings.ENV, settings.CODE_STORE_BACKEND, app.state.dispatcher.status(),
        )
        try:
            yield
        finally:
            await sweeper.stop()
            await http.aclose()
            await rec.close()

    app = FastAPI(title=settings.APP_NAME, debug=settings.DEBUG, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.FRONTEND_ORIGIN],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[settings.REQUEST_ID_HEADER],
    )

    app.add_middleware(RequestContextMiddleware, header=settings.REQUEST_ID_HEADER)
    app.add_middleware(MetricsHTTPMiddleware)

    app.include_router(health_router.router)
    app.include_router(auth_router.router)
    app.add_api_route("/metrics", metrics_endpoint, methods=["GET"], include_in_schema=False)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("amusefit.main:app", host=settings.APP_HOST, port=settings.APP_PORT, reload=settings.ENV == "dev")

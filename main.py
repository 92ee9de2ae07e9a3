# main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from adapters.entry.http.dependencies import get_swaps_use_case
from adapters.entry.http.envelope import install_error_handlers
from adapters.entry.http.views.alerts_view import router as alerts_router
from adapters.entry.http.views.dca_view import router as dca_router
from adapters.entry.http.views.health_view import router as health_router
from adapters.entry.http.views.limit_orders_view import router as limit_orders_router
from adapters.entry.http.views.operator.operator_view import router as operator_router
from adapters.entry.http.views.quotes_view import router as quotes_router
from adapters.entry.http.views.swaps_view import router as swaps_router
from adapters.external.database.indexes import init_mongo_indexes
from adapters.external.database.mongo_client import close_mongo_client
from config import configure_logging, get_settings

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    FastAPI lifespan context.

    Runs once on startup (before the first request) and once on shutdown.
    Indexes must exist before traffic, since idempotent creates rely on
    unique keys.
    """
    configure_logging()
    await init_mongo_indexes()

    # the API enqueues monitor jobs; confirmations are applied by the worker
    swaps = get_swaps_use_case()
    swaps.monitor.set_listener(swaps)

    logger.info("api ready (%s)", get_settings().ENV)
    yield
    await close_mongo_client()


def create_app() -> FastAPI:
    """
    Application factory for the OmniSwap API.
    """
    st = get_settings()
    app = FastAPI(
        title="OmniSwap API",
        version=st.API_VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=st.CORS_ORIGINS,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(app)

    app.include_router(health_router, prefix=API_PREFIX)
    app.include_router(quotes_router, prefix=API_PREFIX)
    app.include_router(swaps_router, prefix=API_PREFIX)
    app.include_router(alerts_router, prefix=API_PREFIX)
    app.include_router(limit_orders_router, prefix=API_PREFIX)
    app.include_router(dca_router, prefix=API_PREFIX)
    app.include_router(operator_router, prefix=API_PREFIX)

    return app


app = create_app()

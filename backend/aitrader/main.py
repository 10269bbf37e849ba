"""
AI Trader — FastAPI Application Entry Point

Thin HTTP surface over the signal core.

Run:
    uvicorn aitrader.main:app --app-dir backend
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI

from aitrader.config import get_settings
from aitrader.engines.analysis_engine import SignalEngine
from aitrader.error_handlers import register_error_handlers
from aitrader.middleware import RequestLoggerMiddleware
from aitrader.routes import analysis_router, get_engine, health_router, model_router, set_engine

log = structlog.get_logger("aitrader.startup")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle hooks."""
    settings = get_settings()
    engine = get_engine()
    log.info(
        "startup",
        env=settings.app_env,
        store_dir=settings.store_dir,
        model_dimension=engine.store.model.dimension,
        trained_samples=engine.store.model.trained_samples,
    )
    yield
    # Persist whatever the feedback loop learned
    engine.store.save()
    log.info("shutdown")


def create_app(engine: Optional[SignalEngine] = None) -> FastAPI:
    """Application factory. ``engine`` overrides the settings-built one."""
    settings = get_settings()
    if engine is not None:
        set_engine(engine)

    app = FastAPI(
        title="AI Trader",
        description="Technical-pattern recognition and multi-layer fusion scoring.",
        version="1.0.0",
        debug=settings.app_debug,
        lifespan=lifespan,
        openapi_tags=[
            {"name": "Health", "description": "Service health"},
            {"name": "Analysis", "description": "Signal analysis over posted candles"},
            {"name": "Model", "description": "Online model and fusion-weight feedback loop"},
        ],
    )

    register_error_handlers(app)
    app.add_middleware(RequestLoggerMiddleware)

    app.include_router(health_router)
    app.include_router(analysis_router)
    app.include_router(model_router)
    return app


app = create_app()

"""
Telemetry Copilot – FastAPI entry point.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from telemetry_copilot.analysis.engine import AnalysisEngine
from telemetry_copilot.analysis.insights import InsightExtractor
from telemetry_copilot.analysis.statistics import StatisticsPolicy
from telemetry_copilot.api.analysis import router as analysis_router
from telemetry_copilot.api.refinements import router as refinements_router
from telemetry_copilot.api.version import router as version_router
from telemetry_copilot.core.config import settings
from telemetry_copilot.core.logging import get_logger, setup_logging
from telemetry_copilot.core.middleware import RequestIdMiddleware
from telemetry_copilot.refinement.engine import RefinementEngine
from telemetry_copilot.refinement.models import RefinementPolicy
from telemetry_copilot.refinement.store import SessionStore
from telemetry_copilot.services.data_sources import build_executor
from telemetry_copilot.services.observability import get_tracer
from telemetry_copilot.services.query_generator import OpenAIQueryGenerator

logger = get_logger(__name__)


def _build_engines(application: FastAPI) -> None:
    """Wire the configured generator, executor and engines onto app.state."""
    dialect = settings.query_dialect
    generator = OpenAIQueryGenerator(dialect=dialect)
    executor = build_executor()

    analysis_engine = AnalysisEngine(
        InsightExtractor(
            generator,
            dialect=dialect,
            sample_rows=settings.ANALYSIS_SAMPLE_ROWS,
            language=settings.EXPLAIN_LANGUAGE,
        ),
        statistics_policy=StatisticsPolicy.from_settings(settings),
        dialect=dialect,
    )
    application.state.executor = executor
    application.state.analysis_engine = analysis_engine
    application.state.refinement_engine = RefinementEngine(
        generator,
        executor,
        RefinementPolicy.from_settings(settings),
        analysis_engine=analysis_engine,
        tracer=get_tracer(),
    )
    logger.info("Engines initialised (data_source=%s, dialect=%s)", settings.DATA_SOURCE, dialect)


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncIterator[None]:
    if getattr(application.state, "refinement_engine", None) is None:
        _build_engines(application)
    if getattr(application.state, "session_store", None) is None:
        application.state.session_store = SessionStore(settings.SESSION_MAX_AGE_MINUTES)

    yield

    close = getattr(getattr(application.state, "executor", None), "close", None)
    if close is not None:
        await close()
    get_tracer().flush()
    logger.info("Application shutdown complete")


def create_app(
    *,
    refinement_engine: RefinementEngine | None = None,
    analysis_engine: AnalysisEngine | None = None,
    session_store: SessionStore | None = None,
) -> FastAPI:
    """Application factory.  Pre-built engines skip the settings wiring."""

    setup_logging()

    application = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    application.state.refinement_engine = refinement_engine
    application.state.analysis_engine = analysis_engine
    application.state.session_store = session_store

    # ── Middleware ────────────────────────────────────────────────
    application.add_middleware(RequestIdMiddleware)

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id"],
    )

    # ── Routers ──────────────────────────────────────────────────
    application.include_router(version_router, prefix="/api")
    application.include_router(refinements_router, prefix="/api")
    application.include_router(analysis_router, prefix="/api")

    return application


app = create_app()

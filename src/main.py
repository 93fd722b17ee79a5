"""Yojana Match FastAPI application entry point.

Creates the FastAPI app, configures middleware, includes routers, and
manages the lifecycle of the matching engine (cache, vector index,
stores, criteria interpreter, orchestrator and re-evaluation trigger).
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from config.settings import settings
from src.api.router import api_router

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Structured logging configuration
# ---------------------------------------------------------------------------


def _configure_logging() -> None:
    """Set up structlog with JSON or console rendering based on settings."""
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            structlog.stdlib.NAME_TO_LEVEL[settings.log_level.lower()],
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage startup and shutdown of the matching engine.

    On startup:
      1. Initialise the interpretation cache
      2. Build the vector index and load / index the scheme catalog
      3. Create the scheme and profile stores
      4. Pick the reasoning provider (Gemini when a GCP project is set)
      5. Create the retriever, interpreter and orchestrator
      6. Start the re-evaluation trigger
      7. Store everything on ``app.state``

    On shutdown:
      - Stop the re-evaluation trigger cooperatively.
      - Close change streams and the cache.
    """
    _configure_logging()
    logger.info(
        "app.startup",
        env=settings.env,
        gcp_project=settings.gcp_project_id,
        region=settings.gcp_region,
    )

    app.state.start_time = time.time()

    # -- 1. Cache -----------------------------------------------------------
    from src.services.cache import CacheManager

    cache = CacheManager.for_namespace(
        "yojana:interpretation:",
        redis_url=settings.redis_url if settings.redis_url else None,
    )
    app.state.cache = cache
    logger.info("app.cache_initialised")

    # -- 2. Vector index and catalog ----------------------------------------
    from src.services.rag import RAGService
    from src.services.scheme_search import SchemeSearchService

    scheme_search = SchemeSearchService(rag=RAGService(embedding_dim=settings.embedding_dim))
    app.state.scheme_search = scheme_search

    schemes = []
    try:
        from src.data.seed import seed_scheme_data

        schemes = await seed_scheme_data(scheme_search)
        logger.info("app.scheme_data_loaded", count=len(schemes))
    except (FileNotFoundError, ValueError):
        logger.warning("app.scheme_data_load_failed", exc_info=True)

    # -- 3. Stores ----------------------------------------------------------
    from src.services.notifications import NewlyEligibleStream
    from src.services.stores import InMemoryProfileStore, InMemorySchemeStore

    scheme_store = InMemorySchemeStore(schemes)
    profile_store = InMemoryProfileStore()
    newly_eligible = NewlyEligibleStream()
    app.state.scheme_store = scheme_store
    app.state.profile_store = profile_store
    app.state.newly_eligible = newly_eligible

    # -- 4. Reasoning provider ----------------------------------------------
    from src.services.matching import KeywordCriteriaReasoner

    provider = None
    if settings.gcp_project_id:
        try:
            from src.services.llm import LLMService

            provider = LLMService(
                project_id=settings.gcp_project_id,
                region=settings.vertex_ai_location,
                model_name=settings.vertex_ai_model,
            )
            logger.info("app.llm_initialised", model=settings.vertex_ai_model)
        except Exception:
            logger.warning("app.llm_init_failed", exc_info=True)
    if provider is None:
        provider = KeywordCriteriaReasoner()
        logger.info("app.keyword_reasoner_selected")

    # -- 5. Matching engine -------------------------------------------------
    from src.pipeline.orchestrator import MatchOrchestrator
    from src.services.matching import (
        CandidateRetriever,
        CriteriaInterpreter,
        MatchHistory,
        SchemeScorer,
        ScoringWeights,
    )

    retriever = CandidateRetriever(
        scheme_store,
        scheme_search,
        timeout_seconds=settings.retrieval_timeout_seconds,
        overfetch=settings.retrieval_overfetch,
        default_top_k=settings.match_top_k,
    )
    await retriever.refresh_snapshot()

    interpreter = CriteriaInterpreter(
        provider,
        cache,
        timeout_seconds=settings.interpretation_timeout_seconds,
        confidence_threshold=settings.interpretation_confidence_threshold,
        ttl_seconds=settings.interpretation_cache_ttl,
    )
    orchestrator = MatchOrchestrator(
        retriever,
        interpreter,
        scorer=SchemeScorer(
            ScoringWeights.from_settings(settings),
            deadline_horizon_days=settings.deadline_horizon_days,
            near_match_max_missing=settings.near_match_max_missing,
        ),
        history=MatchHistory(
            max_profiles_per_scheme=settings.history_max_profiles_per_scheme,
            near_match_max_missing=settings.near_match_max_missing,
        ),
        interactive_concurrency=settings.interactive_concurrency,
        sweep_concurrency=settings.sweep_concurrency,
    )
    app.state.orchestrator = orchestrator
    logger.info("app.orchestrator_initialised", snapshot=retriever.snapshot_size)

    # -- 6. Re-evaluation trigger -------------------------------------------
    trigger = None
    if settings.enable_reevaluation:
        from src.services.reevaluation import ReevaluationTrigger

        trigger = ReevaluationTrigger(
            orchestrator,
            scheme_store,
            profile_store,
            newly_eligible,
            search=scheme_search,
            batch_size=settings.sweep_batch_size,
            workers=settings.sweep_workers,
            profile_concurrency=settings.sweep_concurrency,
            new_scheme_deadline=timedelta(hours=settings.new_scheme_sweep_deadline_hours),
            targeted_deadline=timedelta(hours=settings.targeted_sweep_deadline_hours),
        )
        await trigger.start()
    app.state.reevaluation = trigger

    logger.info("app.startup_complete")

    yield

    # -- Shutdown -----------------------------------------------------------
    logger.info("app.shutdown_start")

    if trigger is not None:
        await trigger.stop()
    scheme_store.close()
    profile_store.close()
    newly_eligible.close()
    await cache.close()

    logger.info("app.shutdown_complete")


# ---------------------------------------------------------------------------
# FastAPI application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Yojana Match API",
    description=(
        "Yojana Match -- eligibility matching engine for Indian welfare schemes. "
        "Matches citizen profiles against central and state schemes and explains "
        "what is missing when nothing fully matches."
    ),
    version="0.1.0",
    lifespan=lifespan,
    default_response_class=ORJSONResponse,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
)

# -- CORS middleware --------------------------------------------------------
# allow_credentials=True must not be combined with allow_origins=["*"].
if settings.is_production:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:8000", "http://127.0.0.1:8000"],
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS", "HEAD"],
        allow_headers=["Content-Type", "Accept", "Authorization"],
    )

# -- Prometheus metrics -----------------------------------------------------
from prometheus_fastapi_instrumentator import Instrumentator  # noqa: E402

Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    excluded_handlers=["/metrics", "/api/v1/health"],
).instrument(app).expose(
    app,
    endpoint="/metrics",
    include_in_schema=not settings.is_production,
)

# -- Include routers -------------------------------------------------------
app.include_router(api_router)


@app.get("/api", response_class=ORJSONResponse)
async def api_info() -> dict:
    """API information endpoint."""
    return {
        "name": "Yojana Match API",
        "description": "Eligibility matching engine for Indian welfare schemes",
        "version": app.version,
        "docs": "/docs",
        "endpoints": {
            "match": "/api/v1/match",
            "match_stored_profile": "/api/v1/match/profiles/{profile_id}",
            "newly_eligible": "/api/v1/match/events",
            "health": "/api/v1/health",
            "ready": "/api/v1/health/ready",
            "metrics": "/metrics",
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("src.main:app", host=settings.api_host, port=settings.api_port, reload=not settings.is_production)

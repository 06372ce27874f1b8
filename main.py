import inspect
import logging
import os
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from openai import AsyncOpenAI

from dal.treatment_dal import TreatmentDAL
from routes.analyze_route import router as analyze_router
from services.diagnosis.advisory_synthesizer import AdvisorySynthesizer
from services.diagnosis.plant_identifier import PlantIdIdentifier
from services.diagnosis.rate_limit import InMemoryRateLimitStore, RateLimiter
from services.diagnosis.treatment_aggregator import TreatmentAggregator
from services.diagnosis.vision_identifier import VisionPlantIdentifier
from utils.database_init import AsyncDatabaseInitializer
from utils.knowledge_seed import DEFAULT_SEED_PATH
from utils.settings import DiagnosisSettings

from dotenv import load_dotenv

load_dotenv()  # Load environment variables from .env file if present

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())


def build_identifier(settings: DiagnosisSettings, openai_client: AsyncOpenAI, http_client: httpx.AsyncClient):
    """Return the identification adapter selected by IDENTIFIER_BACKEND."""
    if settings.identifier_backend == "openai":
        return VisionPlantIdentifier(
            openai_client,
            model=settings.vision_model,
            disease_min_confidence=settings.disease_min_confidence,
            max_diseases=settings.max_diseases,
        )
    return PlantIdIdentifier(
        http_client,
        api_key=settings.plantid_api_key,
        base_url=settings.plantid_base_url,
        image_fetch_timeout=settings.image_fetch_timeout,
        request_timeout=settings.identify_timeout,
        disease_min_confidence=settings.disease_min_confidence,
        max_diseases=settings.max_diseases,
    )


async def _close_quietly(client) -> None:
    aclose = getattr(client, "aclose", None) or getattr(client, "close", None)
    if aclose is None:
        return
    try:
        result = aclose()
        if inspect.isawaitable(result):
            await result
    except Exception as exc:
        logging.warning("Error while closing %s: %s", type(client).__name__, exc)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan manager to initialize:
      - settings from the environment
      - the SQLite knowledge database (kept across restarts, at DATABASE_DIR/knowledge.db)
      - the OpenAI async client and a shared httpx client
      - the diagnosis collaborators used by every stream
    and attach them to `app.state`.
    """
    settings = DiagnosisSettings.from_env()
    app.state.settings = settings

    db_initializer = AsyncDatabaseInitializer(seed_path=settings.knowledge_seed_path or DEFAULT_SEED_PATH)
    await db_initializer.ensure_database()
    app.state.db_initializer = db_initializer

    openai_api_key = os.getenv("OPENAI_API_KEY")
    if not openai_api_key:
        raise RuntimeError("OPENAI_API_KEY environment variable is not set")

    try:
        openai_client = AsyncOpenAI()
    except Exception as exc:
        raise RuntimeError("Failed to initialize OpenAI Async client") from exc
    app.state.openai_client = openai_client

    http_client = httpx.AsyncClient()
    app.state.http_client = http_client

    app.state.identifier = build_identifier(settings, openai_client, http_client)
    app.state.aggregator = TreatmentAggregator(TreatmentDAL(db_initializer), leg_timeout=settings.knowledge_timeout)
    app.state.synthesizer = AdvisorySynthesizer(
        openai_client, model=settings.advisory_model, timeout=settings.advisory_timeout
    )
    app.state.rate_limiter = RateLimiter(
        InMemoryRateLimitStore(), points=settings.rate_limit_points, window=settings.rate_limit_window
    )
    logging.info("Diagnosis service ready (identifier=%s)", settings.identifier_backend)

    try:
        yield
    finally:
        await _close_quietly(app.state.http_client)
        await _close_quietly(app.state.openai_client)


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application instance.
    """
    app = FastAPI(lifespan=lifespan)

    @app.get("/health")
    async def health(request: Request):
        """
        Health check reporting which pipeline components are present.
        """
        state = request.app.state
        settings = getattr(state, "settings", None)
        return {
            "ok": True,
            "db_initialized": getattr(state, "db_initializer", None) is not None,
            "openai_available": getattr(state, "openai_client", None) is not None,
            "identifier": settings.identifier_backend if settings else None,
            "identifier_available": getattr(state, "identifier", None) is not None,
            "knowledge_available": getattr(state, "aggregator", None) is not None,
            "advisory_available": getattr(state, "synthesizer", None) is not None,
        }

    # Register application routers
    app.include_router(analyze_router)

    return app


app = create_app()

"""
Sentinel Crawler Detection API

FastAPI application exposing:
- GET  /health                              → liveness
- POST /events                              → ingest SDK event batch
- POST /sessions/{session_id}/classify      → force classification
- GET  /sessions/{session_id}/classification → current classification
- POST /challenge/verify                    → submit proof-of-work solution

Blocked sessions get 403, rate-limited ones 429. Tarpitted sessions are
slowed down before the response is sent.
"""

import asyncio
from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Path, Request, status
from fastapi.middleware.cors import CORSMiddleware

from core.classifier import BotClassifier
from core.config import ConfigurationError, DetectionConfig
from core.models.ensemble import HttpExternalClassifier
from core.models.known_bots import KnownBotRegistry
from core.orchestrator import SentinelOrchestrator
from core.schemas.inputs import (
    SESSION_ID_PATTERN,
    ChallengeVerifyPayload,
    EventBatchPayload,
    hash_value,
)
from core.schemas.outputs import ClassificationResult, EventIngestResponse
from persistence.alert_store import AlertStore
from persistence.session_repository import SessionRepository


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


VERSION = "1.0.0"
JA3_HEADER = "x-ja3-fingerprint"


# =============================================================================
# Application State
# =============================================================================

class AppState:
    """Application state container."""
    config: Optional[DetectionConfig] = None
    orchestrator: Optional[SentinelOrchestrator] = None


state = AppState()


def build_classifier(config: DetectionConfig) -> BotClassifier:
    """Classifier over the configured crawler registry (built-in list by default)."""
    registry = None
    if config.known_bots_path:
        registry = KnownBotRegistry.from_json(config.known_bots_path)
    return BotClassifier(config, registry=registry)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting Sentinel API...")
    try:
        state.config = DetectionConfig.from_env()
    except ConfigurationError as e:
        logger.critical(f"Invalid configuration: {e}")
        raise

    repo = SessionRepository(session_ttl=state.config.session_ttl_seconds)
    external = None
    if state.config.ml_enabled and state.config.ml_endpoint:
        external = HttpExternalClassifier(
            endpoint=state.config.ml_endpoint,
            api_key=state.config.ml_api_key,
            timeout=state.config.ml_timeout_seconds,
        )
    elif state.config.ml_enabled:
        logger.warning("SENTINEL_ML_ENABLED is set but no SENTINEL_ML_ENDPOINT; heuristic only")

    state.orchestrator = SentinelOrchestrator(
        repo=repo,
        notifier=AlertStore(client=repo.client),
        classifier=build_classifier(state.config),
        external_classifier=external,
        config=state.config,
    )
    logger.info("Sentinel API ready")

    yield

    logger.info("Shutting down Sentinel API...")


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="Sentinel",
    description="AI crawler and bot detection service",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else ""


def _orchestrator() -> SentinelOrchestrator:
    if state.orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized"
        )
    return state.orchestrator


# =============================================================================
# Health Check
# =============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": VERSION}


# =============================================================================
# Event Ingestion
# =============================================================================

@app.post("/events", response_model=EventIngestResponse)
async def ingest_events(payload: EventBatchPayload, request: Request):
    """
    Ingest a batch of SDK events.

    - 403 if the session or its IP is blocklisted
    - 429 above 20 batches/sec per session
    - Classification summary when the batch triggered a run
    - TLS fingerprint taken from the edge-supplied X-JA3-Fingerprint header
    """
    orchestrator = _orchestrator()
    ip_address = _client_ip(request)
    ip_hash = hash_value(ip_address, orchestrator.config.ip_salt) if ip_address else None

    if orchestrator.check_blocked(payload.session_id, ip_hash):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    if not orchestrator.check_rate_limit(payload.session_id):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded (max 20 batches/sec)"
        )

    try:
        result = orchestrator.ingest_events(
            payload.session_id,
            payload.events,
            ip_address=ip_address,
            user_agent=request.headers.get("user-agent", ""),
            referrer=payload.referrer,
            is_logged_in=payload.is_logged_in,
            ja3_fingerprint=request.headers.get(JA3_HEADER) or None,
        )
    except Exception as e:
        logger.error(f"Event ingestion error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal error processing events"
        )

    if result.tarpit_delay_seconds > 0:
        await asyncio.sleep(result.tarpit_delay_seconds)

    response = EventIngestResponse(processed=result.processed, action=result.action)
    if result.evaluation is not None:
        classification = result.evaluation.classification
        outcome = result.evaluation.outcome
        if outcome.terminate_request:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
        response.classified = True
        response.is_bot = classification.is_bot
        response.category = classification.category
        response.confidence = classification.confidence
        response.challenge = outcome.challenge

    return response


# =============================================================================
# Classification
# =============================================================================

@app.post("/sessions/{session_id}/classify", response_model=ClassificationResult)
async def classify_session(session_id: str = Path(..., pattern=SESSION_ID_PATTERN)):
    """Run classification now, regardless of the ingestion cadence."""
    evaluation = _orchestrator().evaluate_session(session_id)
    if evaluation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return evaluation.classification


@app.get("/sessions/{session_id}/classification", response_model=ClassificationResult)
async def get_classification(session_id: str = Path(..., pattern=SESSION_ID_PATTERN)):
    """Current stored classification."""
    classification = _orchestrator().get_classification(session_id)
    if classification is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No classification")
    return classification


# =============================================================================
# Challenge
# =============================================================================

@app.post("/challenge/verify")
async def verify_challenge(payload: ChallengeVerifyPayload):
    """Verify a proof-of-work solution."""
    if not _orchestrator().verify_challenge(payload.session_id, payload.token, payload.nonce):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Challenge failed")
    return {"verified": True}


# =============================================================================
# Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)

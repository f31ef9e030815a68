"""
TrustScore Engine - FastAPI Application
=======================================

Run with: uvicorn trustscore.api:app --port 8000
"""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import DEFAULT_LANGUAGE, LOG_LEVEL, MONITOR_ENABLED, SERVICE_VERSION
from .errors import (
    ModelRegistryError,
    SchemaMismatchError,
    ScoringUnavailableError,
    SubjectNotFoundError,
    UnknownRecordError,
)
from .orchestrator import ScoreOrchestrator, build_default_orchestrator
from .schemas import (
    BatchItemResult,
    BatchScoreRequest,
    ChangeExplanation,
    Explanation,
    ExperimentRequest,
    ExperimentResponse,
    FairnessReport,
    HealthResponse,
    ModelVersion,
    RegisterModelRequest,
    RejectedResult,
    RollbackRequest,
    TrustScoreRecord,
    utcnow,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle events."""
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("TrustScore Engine v%s starting...", SERVICE_VERSION)
    orchestrator = build_default_orchestrator()
    app.state.orchestrator = orchestrator

    monitor_task = None
    if MONITOR_ENABLED:
        monitor_task = asyncio.create_task(orchestrator.monitor.run_periodic())
    logger.info("ScoreOrchestrator initialized (active model %s)", orchestrator.registry.active().version_id)
    yield

    if monitor_task is not None:
        monitor_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await monitor_task
    logger.info("TrustScore Engine shutting down...")


app = FastAPI(
    title="TrustScore Engine",
    description="Alternative-data credit trust scoring with explainability and model governance",
    version=SERVICE_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _orchestrator(request: Request) -> ScoreOrchestrator:
    return request.app.state.orchestrator


# =============================================================================
# ERROR MAPPING
# =============================================================================

@app.exception_handler(SchemaMismatchError)
async def schema_mismatch_handler(request: Request, exc: SchemaMismatchError):
    return JSONResponse(
        status_code=422,
        content={"error": "schema_mismatch", "message": str(exc), "got": exc.got, "expected": exc.expected},
    )


@app.exception_handler(SubjectNotFoundError)
async def subject_not_found_handler(request: Request, exc: SubjectNotFoundError):
    return JSONResponse(status_code=404, content={"error": "subject_not_found", "message": str(exc)})


@app.exception_handler(UnknownRecordError)
async def unknown_record_handler(request: Request, exc: UnknownRecordError):
    return JSONResponse(status_code=404, content={"error": "record_not_found", "message": str(exc)})


@app.exception_handler(ScoringUnavailableError)
async def scoring_unavailable_handler(request: Request, exc: ScoringUnavailableError):
    return JSONResponse(status_code=503, content={"error": "scoring_unavailable", "message": str(exc)})


@app.exception_handler(ModelRegistryError)
async def model_registry_handler(request: Request, exc: ModelRegistryError):
    return JSONResponse(status_code=409, content={"error": "model_registry_error", "message": str(exc)})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"error": "validation_error", "message": str(exc)})


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "internal_error", "message": "An unexpected error occurred."},
    )


# =============================================================================
# SCORING
# =============================================================================

@app.post("/api/v1/scores/batch", response_model=List[BatchItemResult], tags=["Scoring"])
async def score_batch(body: BatchScoreRequest, request: Request) -> List[BatchItemResult]:
    """Score many subjects; each item reports its own outcome."""
    return await _orchestrator(request).request_batch_score(body.subject_ids)


@app.post(
    "/api/v1/scores/{subject_id}",
    response_model=TrustScoreRecord,
    responses={409: {"model": RejectedResult}},
    tags=["Scoring"],
)
async def score_subject(subject_id: str, request: Request, as_of: Optional[datetime] = None):
    """Compute and persist a trust score for one subject."""
    result = await _orchestrator(request).request_score(subject_id, as_of)
    if isinstance(result, RejectedResult):
        return JSONResponse(status_code=409, content=result.model_dump(mode="json"))
    return result


@app.get("/api/v1/scores/{record_id}/explanation", response_model=Explanation, tags=["Explanations"])
async def get_explanation(
    record_id: str,
    request: Request,
    language: str = Query(DEFAULT_LANGUAGE),
) -> Explanation:
    return _orchestrator(request).get_explanation(record_id, language)


@app.get("/api/v1/subjects/{subject_id}/history", response_model=List[TrustScoreRecord], tags=["Scoring"])
async def get_history(
    subject_id: str,
    request: Request,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[TrustScoreRecord]:
    return _orchestrator(request).get_history(subject_id, start, end)


@app.get("/api/v1/subjects/{subject_id}/changes", response_model=ChangeExplanation, tags=["Explanations"])
async def get_changes(
    subject_id: str,
    request: Request,
    language: str = Query(DEFAULT_LANGUAGE),
) -> ChangeExplanation:
    """Explain the difference between the subject's two latest scores."""
    return _orchestrator(request).explain_change(subject_id, language)


# =============================================================================
# GOVERNANCE
# =============================================================================

@app.get("/api/v1/models", response_model=List[ModelVersion], tags=["Governance"])
async def list_models(request: Request) -> List[ModelVersion]:
    return _orchestrator(request).list_models()


@app.post("/api/v1/models", response_model=ModelVersion, status_code=201, tags=["Governance"])
async def register_model(body: RegisterModelRequest, request: Request) -> ModelVersion:
    return _orchestrator(request).register_model(
        body.version_id,
        weights=body.weights,
        artifact_ref=body.artifact_ref,
        calibration=body.calibration,
        schema_version=body.schema_version,
    )


@app.post("/api/v1/models/rollback", response_model=ModelVersion, tags=["Governance"])
async def rollback_model(request: Request, body: Optional[RollbackRequest] = None) -> ModelVersion:
    version_id = body.version_id if body is not None else None
    return _orchestrator(request).rollback_model(version_id)


@app.post("/api/v1/models/experiment", response_model=ExperimentResponse, tags=["Governance"])
async def route_experiment(body: ExperimentRequest, request: Request) -> ExperimentResponse:
    experiment = _orchestrator(request).route_experiment(body.candidate_id, body.traffic_fraction)
    return ExperimentResponse(
        experiment_id=experiment.experiment_id if experiment else None,
        candidate_id=body.candidate_id,
        traffic_fraction=body.traffic_fraction,
        active=experiment is not None,
    )


@app.post("/api/v1/models/{version_id}/promote", response_model=ModelVersion, tags=["Governance"])
async def promote_model(version_id: str, request: Request) -> ModelVersion:
    return _orchestrator(request).promote_model(version_id)


@app.get("/api/v1/fairness/report", response_model=FairnessReport, tags=["Governance"])
async def fairness_report(request: Request, start: datetime, end: datetime) -> FairnessReport:
    return _orchestrator(request).get_fairness_report(start, end)


# =============================================================================
# SYSTEM
# =============================================================================

@app.get("/api/v1/health", response_model=HealthResponse, tags=["System"])
async def health_check(request: Request) -> HealthResponse:
    registry = _orchestrator(request).registry
    active = registry.active().version_id if registry.has_active() else None
    return HealthResponse(
        status="healthy" if active else "degraded",
        version=SERVICE_VERSION,
        active_model=active,
        timestamp=utcnow(),
    )


@app.get("/", tags=["System"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": "TrustScore Engine",
        "version": SERVICE_VERSION,
        "documentation": "/docs",
        "health": "/api/v1/health",
        "score": "/api/v1/scores/{subject_id}",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("trustscore.api:app", host="0.0.0.0", port=8000)

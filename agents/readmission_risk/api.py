"""
Readmission Risk Agent - FastAPI Application

REST API for the readmission risk service. Every prediction returns the
judge's risk estimate together with an explanation re-derived from the
patient's own features.

================================================================================
API DESIGN FOR CLINICAL DECISION SUPPORT
================================================================================

Integration points:
1. Discharge workflows in the EMR (predict at discharge)
2. Care coordination dashboards (care plans and critical alerts)
3. Outcome feeds (actual readmissions, for accuracy tracking)

Key Design Principles:
─────────────────────
1. EXPLAINABILITY: Every prediction carries a risk summary and a
   plain-language explanation
2. NO AUTONOMOUS ACTION: Care plans and alerts are suggestions for the
   care team
3. FAIL LOUDLY: Judge and parsing failures surface as 5xx, never as a
   default score

Error mapping:
    DischargeValidationError -> 422    PredictorDisabledError -> 403
    PredictionParseError     -> 502    JudgeTimeoutError      -> 504
    JudgeError               -> 502    anything else          -> 500

================================================================================
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import settings
from .data_source import PatientDataSource, SQLAlchemyDataSource
from .exceptions import (
    DischargeValidationError,
    JudgeError,
    JudgeTimeoutError,
    PredictionParseError,
    PredictorDisabledError,
)
from .features import DischargeContext
from .judge import OpenAICompatibleJudge, PredictiveJudge
from .predictor import ReadmissionRiskPredictor
from .utils import utc_now

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# =============================================================================
# PYDANTIC MODELS (Request/Response Schemas)
# =============================================================================

class PredictRequest(BaseModel):
    """Discharge context for a readmission risk prediction."""

    patient_id: str = Field(description="Patient UUID")
    tenant_id: str = Field(description="Tenant UUID")
    discharge_date: str = Field(description="Discharge timestamp (ISO 8601)")
    discharge_facility: str = Field(default="", description="Discharging facility name")
    discharge_disposition: str = Field(
        description="One of home, home_health, snf, ltac, rehab, hospice"
    )
    primary_diagnosis_code: Optional[str] = Field(
        default=None,
        description="ICD-10 code of the primary diagnosis"
    )
    primary_diagnosis_description: Optional[str] = Field(
        default=None,
        description="Free-text primary diagnosis"
    )
    secondary_diagnoses: List[str] = Field(
        default_factory=list,
        description="ICD-10 codes of secondary diagnoses"
    )
    length_of_stay: Optional[float] = Field(
        default=None,
        ge=0,
        description="Length of stay in days"
    )

    def to_context(self) -> DischargeContext:
        return DischargeContext(
            patient_id=self.patient_id,
            tenant_id=self.tenant_id,
            discharge_date=self.discharge_date,
            discharge_facility=self.discharge_facility,
            discharge_disposition=self.discharge_disposition,
            primary_diagnosis_code=self.primary_diagnosis_code,
            primary_diagnosis_description=self.primary_diagnosis_description,
            secondary_diagnoses=tuple(self.secondary_diagnoses),
            length_of_stay=self.length_of_stay,
        )


class PredictionResponse(BaseModel):
    """Response schema for a readmission risk prediction."""

    request_id: str
    predicted_at: datetime
    prediction_id: Optional[str] = None

    patient_id: str
    discharge_date: str
    readmission_risk_30_day: float
    readmission_risk_7_day: float
    readmission_risk_90_day: float
    risk_category: str

    risk_factors: List[Dict[str, Any]]
    protective_factors: List[Dict[str, Any]]
    recommended_interventions: List[Dict[str, Any]]
    predicted_readmission_date: Optional[str] = None

    prediction_confidence: float = Field(
        description="Judge confidence scaled by data completeness"
    )
    plain_language_explanation: str
    risk_summary: Dict[str, Any]
    data_sources_analyzed: Dict[str, bool]
    data_completeness_score: int
    missing_critical_data: List[str]

    ai_model: str
    ai_cost: float
    model_version: str


class OutcomeRequest(BaseModel):
    """Actual readmission outcome for a stored prediction."""

    actual_readmission: bool = Field(description="Whether the patient was readmitted")
    actual_readmission_date: Optional[str] = Field(
        default=None,
        description="Readmission timestamp (ISO 8601)"
    )


class OutcomeResponse(BaseModel):
    prediction_id: str
    recorded_at: datetime
    updates: Dict[str, Any]


class HealthResponse(BaseModel):
    """Response schema for health checks."""

    status: str
    service: str
    version: str
    timestamp: datetime
    checks: Dict[str, Dict[str, Any]]


# =============================================================================
# APPLICATION STATE
# =============================================================================

class AppState:
    """
    Application state management.

    Holds the predictor and its collaborators, and tracks prediction counts.
    """

    def __init__(self):
        self.source: Optional[PatientDataSource] = None
        self.judge: Optional[PredictiveJudge] = None
        self.predictor: Optional[ReadmissionRiskPredictor] = None
        self.initialized_at: Optional[datetime] = None
        self.predictions_made: int = 0
        self._lock = asyncio.Lock()

    async def get_predictor(self) -> ReadmissionRiskPredictor:
        """Get or initialize the readmission risk predictor."""
        async with self._lock:
            if self.predictor is None:
                if self.source is None:
                    self.source = SQLAlchemyDataSource()
                if self.judge is None:
                    self.judge = OpenAICompatibleJudge()
                self.predictor = ReadmissionRiskPredictor(self.source, self.judge)
                self.initialized_at = utc_now()
                logger.info(
                    f"ReadmissionRiskPredictor initialized "
                    f"(model config {self.predictor.config.version})"
                )
            return self.predictor

    def close(self) -> None:
        close = getattr(self.source, "close", None)
        if callable(close):
            close()


# Global application state
app_state = AppState()


# =============================================================================
# LIFESPAN MANAGEMENT
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info(f"Starting {settings.service_name} v{settings.service_version}")

    try:
        await app_state.get_predictor()
    except Exception as e:
        logger.warning(f"Could not initialize predictor at startup: {e}")

    yield

    # Shutdown
    app_state.close()
    logger.info("Shutting down readmission risk agent")


# =============================================================================
# FASTAPI APPLICATION
# =============================================================================

app = FastAPI(
    title="Readmission Risk Agent",
    description="""
    30-day readmission risk prediction at hospital discharge.

    ## Overview
    Extracts clinical, medication, post-discharge, social, functional,
    engagement and self-reported features for a discharged patient, asks a
    predictive judge for a risk estimate, and explains the result.

    ## API Endpoints
    - `POST /predict`: Predict readmission risk for a discharge
    - `POST /predictions/{prediction_id}/outcome`: Record the actual outcome
    - `GET /model/config`: Active thresholds and evidence weights
    - `GET /health`: Service health check

    ## Clinical Integration
    This service is designed for clinical decision SUPPORT, not autonomous action.
    """,
    version=settings.service_version,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def _error(status_code: int, error: str, exc: Exception) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"error": error, "message": str(exc)},
    )


# =============================================================================
# ENDPOINTS
# =============================================================================

@app.get("/health", response_model=HealthResponse, tags=["Operations"])
async def health_check() -> HealthResponse:
    """
    Health check endpoint for Kubernetes probes.

    Checks predictor initialization and database reachability.
    """
    checks = {}
    overall_status = "healthy"

    predictor_check: Dict[str, Any] = {"status": "ok"}
    try:
        predictor = await app_state.get_predictor()
        predictor_check["initialized_at"] = (
            app_state.initialized_at.isoformat() if app_state.initialized_at else None
        )
        predictor_check["predictions_made"] = app_state.predictions_made
        predictor_check["model_version"] = predictor.config.version
        predictor_check["category_escalation_enabled"] = settings.category_escalation_enabled
    except Exception as e:
        predictor_check["status"] = "error"
        predictor_check["message"] = str(e)
        overall_status = "unhealthy"
    checks["predictor"] = predictor_check

    database_check: Dict[str, Any] = {"status": "ok"}
    if app_state.source is not None:
        try:
            if not await app_state.source.ping():
                database_check["status"] = "unreachable"
                overall_status = "degraded" if overall_status == "healthy" else overall_status
        except Exception as e:
            database_check["status"] = "error"
            database_check["message"] = str(e)
            overall_status = "degraded" if overall_status == "healthy" else overall_status
    else:
        database_check["status"] = "not_configured"
    checks["database"] = database_check

    return HealthResponse(
        status=overall_status,
        service=settings.service_name,
        version=settings.service_version,
        timestamp=utc_now(),
        checks=checks,
    )


@app.post(
    "/predict",
    response_model=PredictionResponse,
    tags=["Prediction"],
    summary="Predict 30-day readmission risk at discharge"
)
async def predict_readmission_risk(request: PredictRequest) -> PredictionResponse:
    """
    Predict readmission risk for one discharge.

    **Returns:**
    - 7/30/90-day readmission probabilities and a risk category
    - Risk and protective factors reported by the judge
    - Recommended interventions
    - Confidence calibrated by data completeness
    - A feature-derived risk summary and plain-language explanation

    High-risk predictions may also create a care plan and critical ones a
    care team alert, depending on tenant settings.
    """
    request_id = str(uuid.uuid4())
    logger.info(
        f"Readmission prediction request: {request_id}",
        extra={"patient_id": request.patient_id, "tenant_id": request.tenant_id},
    )

    predictor = await app_state.get_predictor()

    try:
        prediction = await predictor.predict(request.to_context())
    except DischargeValidationError as e:
        raise _error(status.HTTP_422_UNPROCESSABLE_ENTITY, "invalid_discharge_context", e)
    except PredictorDisabledError as e:
        raise _error(status.HTTP_403_FORBIDDEN, "predictor_disabled", e)
    except PredictionParseError as e:
        raise _error(status.HTTP_502_BAD_GATEWAY, "invalid_judge_response", e)
    except JudgeTimeoutError as e:
        raise _error(status.HTTP_504_GATEWAY_TIMEOUT, "judge_timeout", e)
    except JudgeError as e:
        raise _error(status.HTTP_502_BAD_GATEWAY, "judge_failed", e)

    app_state.predictions_made += 1

    return PredictionResponse(
        request_id=request_id,
        predicted_at=utc_now(),
        **prediction.to_dict(),
    )


@app.post(
    "/predictions/{prediction_id}/outcome",
    response_model=OutcomeResponse,
    tags=["Prediction"],
    summary="Record the actual readmission outcome"
)
async def record_outcome(prediction_id: str, request: OutcomeRequest) -> OutcomeResponse:
    """
    Record whether the patient was readmitted.

    When a readmission date is given, days post-discharge are computed
    from the stored discharge date.
    """
    predictor = await app_state.get_predictor()

    try:
        updates = await predictor.update_actual_outcome(
            prediction_id,
            request.actual_readmission,
            request.actual_readmission_date,
        )
    except DischargeValidationError as e:
        raise _error(status.HTTP_422_UNPROCESSABLE_ENTITY, "invalid_outcome", e)

    return OutcomeResponse(
        prediction_id=prediction_id,
        recorded_at=utc_now(),
        updates=updates,
    )


@app.get(
    "/model/config",
    tags=["Information"],
    summary="Get the active readmission model configuration"
)
async def get_model_config() -> Dict[str, Any]:
    """
    Get the active model-config version with its thresholds and weights.

    Useful for clinical governance review.
    """
    predictor = await app_state.get_predictor()

    return {
        "version": predictor.config.version,
        "category_escalation_enabled": settings.category_escalation_enabled,
        "judge": {
            "timeout_seconds": settings.judge_timeout_seconds,
            "max_tokens": settings.judge_max_tokens,
            "temperature": settings.judge_temperature,
        },
        "config": predictor.config.summary(),
    }


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Handle uncaught exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred",
            "detail": str(exc) if settings.debug else None,
        },
    )


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "readmission_risk.api:app",
        host=settings.api_host,
        port=settings.api_port,
        workers=settings.api_workers,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )

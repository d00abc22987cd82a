"""
Readmission Risk Agent - FastAPI Application

This module provides the REST API behind the 30-day readmission risk
dashboard. It authenticates clinicians, scores discharged patients and serves
the model monitoring views.

================================================================================
API DESIGN
================================================================================

The API layer is thin plumbing around two pure components:

    ScoringEngine       POST /api/predict/readmission
    FairnessAggregator  GET  /api/bias-monitoring(/summary)

Everything else (patients, users, metrics catalogue, sessions) lives in
repositories owned by this module's AppState.

Key Design Principles:
─────────────────────
1. ROLE-BASED ACCESS: only physicians and nurses read clinical data
2. AUDIT TRAIL: every prediction and data access is logged with the caller
3. VERBATIM RESULTS: engine output is returned unchanged, never re-scored
4. EXPLICIT ERRORS: a missing field is a 400 naming the field, never a
   silently defaulted score

================================================================================
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from .auth import Authenticator, Session, SessionStore, hash_password
from .config import (
    CLINICAL_ROLES,
    FAIRNESS_RATIO_LOWER,
    FAIRNESS_RATIO_UPPER,
    FEATURE_IMPORTANCE,
    FEATURE_IMPORTANCE_CATALOGUE,
    HIGH_RISK_DIAGNOSES,
    HIGH_RISK_THRESHOLD,
    INTERVENTIONS,
    MAX_RISK_SCORE,
    MEDIUM_RISK_THRESHOLD,
    MODEL_CONFIDENCE,
    MODEL_VERSION,
    settings,
)
from .exceptions import ValidationError
from .fairness import FairnessAggregator
from .logging_config import setup_logging
from .model import PatientFeatures, ScoringEngine
from .repository import (
    SAMPLE_PATIENTS,
    MonitoringCatalogue,
    PatientRepository,
    UserRepository,
    default_catalogue,
    seed_users,
)

setup_logging(settings.log_level, settings.log_format)
logger = logging.getLogger(__name__)


# =============================================================================
# PYDANTIC MODELS (Request/Response Schemas)
# =============================================================================

class CamelModel(BaseModel):
    """Base schema serialized with the dashboard's camelCase keys."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        protected_namespaces = ()


class LoginRequest(BaseModel):
    """Credentials submitted by the dashboard login form."""

    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class UserProfile(BaseModel):
    id: str
    username: str
    role: str
    name: str
    department: str


class LoginResponse(BaseModel):
    token: str
    user: UserProfile


class ContributingFactorResponse(CamelModel):
    """One rule increment that fired for this patient."""

    factor_name: str
    contribution: float
    description: str
    raw_value: Optional[Any] = None


class RiskAssessmentResponse(CamelModel):
    """
    Response schema for a readmission prediction.

    ``feature_importance`` is the model's global explanation and is identical
    for every patient. ``instance_attribution`` is only present when
    requested with ``?attribution=instance``.
    """

    risk_score: float = Field(ge=0.0, le=MAX_RISK_SCORE)
    risk_category: str = Field(description="Low, Medium or High")
    interventions: List[str]
    confidence: float
    model_version: str
    prediction_timestamp: datetime
    feature_importance: Dict[str, float]
    instance_attribution: Optional[List[ContributingFactorResponse]] = None


class PatientSummaryResponse(CamelModel):
    """Row of the dashboard patient table."""

    id: str
    name: str
    age: int
    gender: str
    primary_diagnosis: str
    risk_score: float
    risk_category: str
    discharge_date: str


class SystemMetricsResponse(CamelModel):
    total_predictions: int
    high_risk_patients: int
    accuracy: float
    precision: float
    recall: float
    f1_score: float
    last_updated: datetime


class FairnessVerdictResponse(BaseModel):
    """Subgroup row of the bias monitoring table."""

    group: str
    precision: float
    recall: float
    fairness_ratio: float
    status: str = Field(description="Fair or Review")


class FairnessSummaryResponse(CamelModel):
    total_groups: int
    fair_groups: int
    review_groups: int
    groups_needing_review: List[str]
    acceptable_range: List[float]


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

    Owns the repositories and the stateless core components, and tracks
    simple usage counters for the health check.
    """

    def __init__(
        self,
        users: UserRepository,
        patients: PatientRepository,
        catalogue: MonitoringCatalogue,
        sessions: SessionStore,
    ):
        self.engine = ScoringEngine()
        self.aggregator = FairnessAggregator()
        self.users = users
        self.patients = patients
        self.catalogue = catalogue
        self.sessions = sessions
        self.authenticator = Authenticator(users, sessions)
        self.started_at = datetime.now(timezone.utc)
        self.predictions_served: int = 0

    @classmethod
    def from_settings(cls) -> "AppState":
        return cls(
            users=seed_users(hash_password(settings.demo_user_password)),
            patients=PatientRepository(SAMPLE_PATIENTS),
            catalogue=default_catalogue(),
            sessions=SessionStore(ttl=timedelta(hours=settings.session_ttl_hours)),
        )


# Global application state
app_state = AppState.from_settings()


# =============================================================================
# LIFESPAN MANAGEMENT
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info(
        f"Starting {settings.service_name} v{settings.service_version}",
        extra={"environment": settings.environment, "model_version": MODEL_VERSION},
    )
    yield
    logger.info("Shutting down readmission risk agent")


# =============================================================================
# FASTAPI APPLICATION
# =============================================================================

app = FastAPI(
    title="Readmission Risk Agent",
    description="""
    30-day readmission risk predictions for discharged patients.

    ## API Endpoints
    - `POST /api/auth/login`: Obtain a bearer token
    - `POST /api/predict/readmission`: Score one patient
    - `GET /api/patients`: Dashboard patient list
    - `GET /api/patients/{id}`: Patient detail
    - `GET /api/metrics`: Model performance metrics
    - `GET /api/bias-monitoring`: Subgroup fairness verdicts
    - `GET /api/model/info`: Scoring rules and feature importance
    - `GET /api/health`: Service health check

    ## Clinical Integration
    Predictions are decision SUPPORT. Interventions are recommendations for
    the discharge team, not orders.
    """,
    version=settings.service_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# AUTHENTICATION DEPENDENCIES
# =============================================================================

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_session(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Session:
    """Resolve the bearer token to a live session."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "token_required", "message": "Access token required"},
            headers={"WWW-Authenticate": "Bearer"},
        )

    session = app_state.sessions.resolve(credentials.credentials)
    if session is None:
        logger.warning("Token verification failed")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "invalid_token", "message": "Invalid or expired token"},
        )
    return session


def require_role(*roles: str):
    """Dependency factory rejecting callers whose role is not listed."""

    def checker(session: Session = Depends(get_current_session)) -> Session:
        if session.role not in roles:
            logger.warning(
                "Unauthorized access attempt",
                extra={
                    "user": session.username,
                    "role": session.role,
                    "required_roles": list(roles),
                },
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"error": "insufficient_permissions", "message": "Insufficient permissions"},
            )
        return session

    return checker


clinician = require_role(*CLINICAL_ROLES)


# =============================================================================
# ENDPOINTS
# =============================================================================

@app.get("/api/health", response_model=HealthResponse, tags=["Operations"])
async def health_check() -> HealthResponse:
    """Health check endpoint for Kubernetes probes."""
    return HealthResponse(
        status="healthy",
        service=settings.service_name,
        version=settings.service_version,
        timestamp=datetime.now(timezone.utc),
        checks={
            "engine": {
                "status": "ok",
                "model_version": app_state.engine.VERSION,
                "predictions_served": app_state.predictions_served,
                "started_at": app_state.started_at.isoformat(),
            },
        },
    )


@app.post("/api/auth/login", response_model=LoginResponse, tags=["Authentication"])
async def login(request: LoginRequest) -> LoginResponse:
    """Exchange clinician credentials for a bearer token."""
    session = app_state.authenticator.login(request.username, request.password)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "invalid_credentials", "message": "Invalid credentials"},
        )

    user = app_state.users.get(session.user_id)
    return LoginResponse(token=session.token, user=UserProfile(**user.public_profile()))


@app.post("/api/auth/logout", status_code=status.HTTP_204_NO_CONTENT, tags=["Authentication"])
async def logout(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    session: Session = Depends(get_current_session),
) -> None:
    """Revoke the caller's bearer token."""
    app_state.sessions.revoke(credentials.credentials)
    logger.info("Logout", extra={"user": session.username})


@app.post(
    "/api/predict/readmission",
    response_model=RiskAssessmentResponse,
    response_model_exclude_none=True,
    tags=["Prediction"],
    summary="Score 30-day readmission risk for one patient",
)
async def predict_readmission(
    features: PatientFeatures,
    attribution: str = Query(
        default="global",
        pattern="^(global|instance)$",
        description="'instance' adds the rule increments that fired for this patient",
    ),
    session: Session = Depends(clinician),
) -> RiskAssessmentResponse:
    """
    Score one discharged patient.

    **Required fields:** age, gender, primaryDiagnosis, lengthOfStay,
    previousAdmissions. Optional: emergencyAdmission, medicationCount,
    comorbidities, socialRiskFactors. ``patientId`` is logged, not scored.

    **Example Response:**
    ```json
    {
        "riskScore": 0.95,
        "riskCategory": "High",
        "interventions": ["Enhanced discharge planning", "Home health referral",
                          "48hr follow-up call"],
        "confidence": 0.85,
        "modelVersion": "v2.1.3",
        "predictionTimestamp": "2024-12-20T10:15:00+00:00",
        "featureImportance": {"Previous Admissions": 0.24, "...": 0.1}
    }
    ```
    """
    patient_id = features.patient_id
    logger.info(
        "Prediction request",
        extra={"user": session.username, "patientId": patient_id},
    )

    assessment = app_state.engine.score(features)
    response = RiskAssessmentResponse(**assessment.to_dict())

    if attribution == "instance":
        response.instance_attribution = [
            ContributingFactorResponse(**f.to_dict())
            for f in app_state.engine.explain(features)
        ]

    app_state.predictions_served += 1

    logger.info(
        "Prediction completed",
        extra={
            "user": session.username,
            "patientId": patient_id,
            "riskScore": assessment.risk_score,
            "riskCategory": assessment.risk_category.value,
        },
    )
    return response


@app.get("/api/patients", response_model=List[PatientSummaryResponse], tags=["Patients"])
async def list_patients(session: Session = Depends(clinician)) -> List[PatientSummaryResponse]:
    """Patient list for the dashboard table."""
    patients = [PatientSummaryResponse(**row) for row in app_state.patients.list_summaries()]
    logger.info("Patient list accessed", extra={"user": session.username})
    return patients


@app.get("/api/patients/{patient_id}", tags=["Patients"])
async def get_patient(patient_id: str, session: Session = Depends(clinician)) -> Dict[str, Any]:
    """Full patient record, including display-only LACE and Charlson scores."""
    patient = app_state.patients.get(patient_id)
    if patient is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "patient_not_found", "message": f"Patient not found: {patient_id}"},
        )

    logger.info(
        "Patient details accessed",
        extra={"user": session.username, "patientId": patient_id},
    )
    return patient


@app.get("/api/metrics", response_model=SystemMetricsResponse, tags=["Monitoring"])
async def get_metrics(session: Session = Depends(clinician)) -> SystemMetricsResponse:
    """Headline model performance metrics."""
    metrics = SystemMetricsResponse(
        **app_state.catalogue.get_system_metrics(),
        last_updated=datetime.now(timezone.utc),
    )
    logger.info("Metrics accessed", extra={"user": session.username})
    return metrics


@app.get(
    "/api/bias-monitoring",
    response_model=List[FairnessVerdictResponse],
    tags=["Monitoring"],
)
async def get_bias_monitoring(
    session: Session = Depends(clinician),
) -> List[FairnessVerdictResponse]:
    """
    Subgroup fairness verdicts, in catalogue order.

    A subgroup is Fair when its fairness ratio lies within 0.95-1.05
    (inclusive) and flagged for Review otherwise.
    """
    verdicts = app_state.aggregator.evaluate(app_state.catalogue.list_subgroup_metrics())
    logger.info("Bias monitoring data accessed", extra={"user": session.username})
    return [FairnessVerdictResponse(**v.to_dict()) for v in verdicts]


@app.get(
    "/api/bias-monitoring/summary",
    response_model=FairnessSummaryResponse,
    tags=["Monitoring"],
)
async def get_bias_summary(session: Session = Depends(clinician)) -> FairnessSummaryResponse:
    """Counts of Fair/Review subgroups and the groups needing review."""
    aggregator = app_state.aggregator
    verdicts = aggregator.evaluate(app_state.catalogue.list_subgroup_metrics())
    summary = aggregator.summarize(verdicts)
    logger.info("Bias monitoring summary accessed", extra={"user": session.username})
    return FairnessSummaryResponse(**summary.to_dict())


@app.get("/api/model/info", tags=["Information"], summary="Scoring rules and explanation")
async def get_model_info(session: Session = Depends(clinician)) -> Dict[str, Any]:
    """
    Documentation of the scoring rule set, for clinical governance review.
    """
    return {
        "modelVersion": MODEL_VERSION,
        "modelType": "Additive rule set",
        "confidence": MODEL_CONFIDENCE,
        "maxRiskScore": MAX_RISK_SCORE,
        "riskThresholds": {
            "high": HIGH_RISK_THRESHOLD,
            "medium": MEDIUM_RISK_THRESHOLD,
        },
        "highRiskDiagnoses": list(HIGH_RISK_DIAGNOSES),
        "interventions": {
            category.value: list(actions) for category, actions in INTERVENTIONS.items()
        },
        "featureImportance": dict(FEATURE_IMPORTANCE),
        "featureCatalogue": FEATURE_IMPORTANCE_CATALOGUE,
        "fairnessRange": [FAIRNESS_RATIO_LOWER, FAIRNESS_RATIO_UPPER],
    }


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: ValidationError):
    """Caller input failed a required-field or type check."""
    logger.warning(
        f"Rejected request: {exc.message}",
        extra={"path": request.url.path, "field": exc.field},
    )
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_body_exception_handler(request: Request, exc: RequestValidationError):
    """
    Report a malformed request body as a 400 naming the first bad field.

    Query and path parameter errors keep FastAPI's default 422 response.
    """
    errors = exc.errors()
    if not errors or any(tuple(e["loc"][:1]) != ("body",) for e in errors):
        return await request_validation_exception_handler(request, exc)

    body_errors = [
        dict(e, loc=() if e["type"] == "json_invalid" else tuple(e["loc"][1:]))
        for e in errors
    ]
    error = ValidationError.from_errors(body_errors, PatientFeatures.wire_names())
    return await validation_exception_handler(request, error)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
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
        "agents.readmission_risk.api:app",
        host=settings.api_host,
        port=settings.api_port,
        workers=settings.api_workers,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )

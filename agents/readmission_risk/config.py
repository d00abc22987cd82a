"""
Readmission Risk Agent - Configuration Module

This module centralizes all environment-based configuration for the
readmission risk microservice, plus the fixed constants of the scoring
engine and the fairness monitor.

================================================================================
WHY THE SCORING CONSTANTS ARE NOT ENVIRONMENT SETTINGS
================================================================================

The readmission score is a versioned, auditable rule set. Dashboards and
compatibility tests compare against the exact numbers published for
model version v2.1.3, so every threshold, increment and weight below is a
module-level constant:

    Score band          Category     Interventions
    ──────────────────  ───────────  ──────────────────────────────────────
    score >= 0.70       High         Enhanced discharge planning,
                                     Home health referral,
                                     48hr follow-up call
    0.40 <= s < 0.70    Medium       Standard discharge planning,
                                     7-day follow-up call
    score < 0.40        Low          Standard discharge

Operational knobs (ports, logging, sessions) stay in ``Settings`` and are
read from the environment.

================================================================================
"""

from enum import Enum
from functools import lru_cache
from typing import Dict, List, Tuple

from pydantic import Field
from pydantic_settings import BaseSettings


# ==========================================================================
# MODEL IDENTITY
# ==========================================================================
MODEL_VERSION = "v2.1.3"

# Placeholder signal reported with every prediction, not derived from inputs
MODEL_CONFIDENCE = 0.85


class RiskCategory(str, Enum):
    """Banding of the continuous risk score used to drive interventions."""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class FairnessStatus(str, Enum):
    """Per-subgroup verdict shown on the bias monitoring tab."""
    FAIR = "Fair"
    REVIEW = "Review"


# ==========================================================================
# SCORING RULES
# ==========================================================================
BASE_RISK_SCORE = 0.30
MAX_RISK_SCORE = 0.95
SCORE_DECIMALS = 3

# Upper bound on a plausible patient age in years
MAX_PATIENT_AGE = 130

# (threshold, increment) pairs; each strict ">" test is applied independently
AGE_INCREMENTS: Tuple[Tuple[int, float], ...] = ((65, 0.15), (80, 0.10))
LENGTH_OF_STAY_INCREMENTS: Tuple[Tuple[int, float], ...] = ((7, 0.20), (14, 0.15))
PREVIOUS_ADMISSION_INCREMENTS: Tuple[Tuple[int, float], ...] = ((2, 0.25), (5, 0.20))

HIGH_RISK_DIAGNOSES: Tuple[str, ...] = (
    "Heart Failure",
    "COPD",
    "Diabetes",
    "Kidney Disease",
)
HIGH_RISK_DIAGNOSIS_INCREMENT = 0.20
EMERGENCY_ADMISSION_INCREMENT = 0.10

# Category cutoffs (inclusive lower bounds)
HIGH_RISK_THRESHOLD = 0.70
MEDIUM_RISK_THRESHOLD = 0.40

INTERVENTIONS: Dict[RiskCategory, Tuple[str, ...]] = {
    RiskCategory.HIGH: (
        "Enhanced discharge planning",
        "Home health referral",
        "48hr follow-up call",
    ),
    RiskCategory.MEDIUM: (
        "Standard discharge planning",
        "7-day follow-up call",
    ),
    RiskCategory.LOW: (
        "Standard discharge",
    ),
}

# Global explanation returned with every prediction (sums to 0.79)
FEATURE_IMPORTANCE: Dict[str, float] = {
    "Previous Admissions": 0.24,
    "Length of Stay": 0.18,
    "Age": 0.12,
    "Primary Diagnosis": 0.15,
    "Emergency Admission": 0.10,
}

# Dashboard "Model Feature Importance" tab: display catalogue only
FEATURE_IMPORTANCE_CATALOGUE: List[Dict[str, object]] = [
    {"name": "Previous Admissions (12 months)", "importance": 0.24,
     "clinical_rationale": "Strong predictor of future healthcare utilization"},
    {"name": "Length of Stay", "importance": 0.18,
     "clinical_rationale": "Indicates illness severity and complexity"},
    {"name": "Charlson Comorbidity Index", "importance": 0.16,
     "clinical_rationale": "Measures disease burden and mortality risk"},
    {"name": "Age", "importance": 0.12,
     "clinical_rationale": "Advanced age correlates with frailty and complications"},
    {"name": "Emergency Admission Type", "importance": 0.10,
     "clinical_rationale": "Unplanned admissions indicate unstable conditions"},
    {"name": "Medication Count", "importance": 0.08,
     "clinical_rationale": "Polypharmacy increases adverse events and adherence issues"},
    {"name": "Primary Diagnosis Category", "importance": 0.07,
     "clinical_rationale": "Certain conditions have higher readmission rates"},
    {"name": "Social Risk Factors", "importance": 0.05,
     "clinical_rationale": "Social determinants affect care access and adherence"},
]

# ==========================================================================
# FAIRNESS MONITORING
# ==========================================================================
# A subgroup is Fair when its ratio lies inside this inclusive band
FAIRNESS_RATIO_LOWER = 0.95
FAIRNESS_RATIO_UPPER = 1.05

# Roles allowed to read predictions, patients and monitoring data
CLINICAL_ROLES: Tuple[str, ...] = ("physician", "nurse")


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    """

    # ==========================================================================
    # SERVICE IDENTIFICATION
    # ==========================================================================
    service_name: str = Field(
        default="readmission-risk-agent",
        description="Unique identifier for this microservice"
    )
    service_version: str = Field(
        default="2.1.3",
        description="Semantic version of this agent"
    )
    environment: str = Field(
        default="development",
        description="Runtime environment (development, staging, production)"
    )

    # ==========================================================================
    # API CONFIGURATION
    # ==========================================================================
    api_host: str = Field(
        default="0.0.0.0",
        description="API server host"
    )
    api_port: int = Field(
        default=8005,
        description="API server port"
    )
    api_workers: int = Field(
        default=1,
        description="Number of Uvicorn workers"
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    cors_origins: List[str] = Field(
        default=["http://localhost:3000"],
        description="Origins allowed to call the API (the dashboard frontend)"
    )

    # ==========================================================================
    # AUTHENTICATION
    # ==========================================================================
    session_ttl_hours: int = Field(
        default=8,
        ge=1,
        le=24,
        description="Lifetime of an issued bearer token, one clinical shift"
    )
    demo_user_password: str = Field(
        default="password",
        description="Password assigned to the seeded demo clinicians"
    )

    # ==========================================================================
    # LOGGING CONFIGURATION
    # ==========================================================================
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )
    log_format: str = Field(
        default="json",
        description="Log format (json, text)"
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "READMISSION_"
        case_sensitive = False
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """
    Returns a cached Settings instance.

    Returns:
        Settings: Application configuration object
    """
    return Settings()


settings = get_settings()

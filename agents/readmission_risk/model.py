"""
Readmission Risk Agent - Rule-Based Scoring Engine

This module implements the 30-day readmission risk score used by the
discharge dashboard.

================================================================================
WHY A FIXED RULE SET INSTEAD OF A TRAINED MODEL
================================================================================

The score stands in for a trained model, and it is deliberately kept as an
explicit additive point system:

1. AUDITABILITY:
   Every point in the score can be traced to one rule and one patient
   attribute. Case managers can reproduce a score by hand.

2. VERSIONING:
   The rule table is part of model version v2.1.3. Changing a threshold is a
   new model version, never a runtime setting.

3. DETERMINISM:
   Identical input yields identical output (apart from the prediction
   timestamp). There is no hidden state, no caching and no I/O.

================================================================================
SCORING PIPELINE
================================================================================

    PatientFeatures ──► rule increments ──► sum + base 0.30 ──► clamp 0.95
                                                                   │
                                   ┌───────────────────────────────┘
                                   ▼
                       round(3) ──► RiskCategory ──► interventions
                                                        │
                                                        ▼
                                                 RiskAssessment
                                    (+ static global feature importance)

================================================================================
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, Field, StrictBool, StrictInt, StrictStr, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel
from pydantic_core import PydanticCustomError

from .config import (
    AGE_INCREMENTS,
    BASE_RISK_SCORE,
    EMERGENCY_ADMISSION_INCREMENT,
    FEATURE_IMPORTANCE,
    HIGH_RISK_DIAGNOSES,
    HIGH_RISK_DIAGNOSIS_INCREMENT,
    HIGH_RISK_THRESHOLD,
    INTERVENTIONS,
    LENGTH_OF_STAY_INCREMENTS,
    MAX_PATIENT_AGE,
    MAX_RISK_SCORE,
    MEDIUM_RISK_THRESHOLD,
    MODEL_CONFIDENCE,
    MODEL_VERSION,
    PREVIOUS_ADMISSION_INCREMENTS,
    SCORE_DECIMALS,
    RiskCategory,
)
from .exceptions import ValidationError

logger = logging.getLogger(__name__)


# =============================================================================
# DATA CLASSES
# =============================================================================

class PatientFeatures(BaseModel):
    """
    Clinical and administrative attributes of a discharged patient.

    Serves as the request schema of the scoring endpoint. Counts must be
    non-negative integers and ``emergencyAdmission`` a real boolean; no
    coercion from strings, floats or booleans is performed.
    """

    patient_id: Optional[str] = Field(
        default=None,
        description="Dashboard patient identifier; logged, never scored"
    )
    age: StrictInt = Field(
        ...,
        ge=0,
        le=MAX_PATIENT_AGE,
        description="Patient age in years"
    )
    gender: StrictStr = Field(
        ...,
        description="Informational only, never scored"
    )
    primary_diagnosis: StrictStr = Field(
        ...,
        description="Free-text diagnosis of the index admission"
    )
    length_of_stay: StrictInt = Field(
        ...,
        ge=0,
        description="Length of the index admission in days"
    )
    previous_admissions: StrictInt = Field(
        ...,
        ge=0,
        description="Admissions in the trailing 12 months"
    )
    emergency_admission: StrictBool = Field(
        default=False,
        description="Whether the index admission was unplanned"
    )
    medication_count: Optional[StrictInt] = Field(
        default=None,
        ge=0,
        description="Number of discharge medications"
    )
    comorbidities: Tuple[StrictStr, ...] = Field(
        default=(),
        description="Active comorbid conditions"
    )
    social_risk_factors: Tuple[StrictStr, ...] = Field(
        default=(),
        description="Social determinants noted at discharge"
    )

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        frozen = True
        json_schema_extra = {
            "example": {
                "patientId": "P001",
                "age": 67,
                "gender": "Female",
                "primaryDiagnosis": "Heart Failure with Reduced Ejection Fraction",
                "lengthOfStay": 5,
                "previousAdmissions": 3,
                "emergencyAdmission": True,
            }
        }

    @field_validator("gender", "primary_diagnosis")
    @classmethod
    def reject_blank(cls, value: str) -> str:
        if not value.strip():
            raise PydanticCustomError("blank_string", "Field must not be blank")
        return value

    @field_validator("emergency_admission", mode="before")
    @classmethod
    def null_means_elective(cls, value: Any) -> Any:
        return False if value is None else value

    @field_validator("comorbidities", "social_risk_factors", mode="before")
    @classmethod
    def null_means_none_recorded(cls, value: Any) -> Any:
        return () if value is None else value

    @classmethod
    def wire_names(cls) -> Dict[str, str]:
        """Attribute name -> camelCase wire name, for error reporting."""
        return {name: info.alias or name for name, info in cls.model_fields.items()}

    @classmethod
    def from_dict(cls, payload: Any) -> "PatientFeatures":
        """
        Build features from a request payload.

        Accepts the dashboard's camelCase keys and their snake_case
        equivalents. Unknown keys are ignored.

        Raises:
            ValidationError: naming the first missing or malformed field
        """
        try:
            return cls.model_validate(payload)
        except PydanticValidationError as exc:
            raise ValidationError.from_errors(exc.errors(), cls.wire_names()) from None


@dataclass(frozen=True)
class ContributingFactor:
    """
    One rule increment that fired for a specific patient.

    Used by the opt-in per-instance explanation; the contributions plus the
    base score add up to the reported risk score.
    """
    factor_name: str
    contribution: float
    description: str
    raw_value: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "factorName": self.factor_name,
            "contribution": round(self.contribution, SCORE_DECIMALS),
            "description": self.description,
            "rawValue": self.raw_value,
        }


@dataclass(frozen=True)
class RiskAssessment:
    """
    Complete readmission risk result for one patient.

    ``feature_importance`` describes the model globally and is identical for
    every patient.
    """
    risk_score: float
    risk_category: RiskCategory
    interventions: Tuple[str, ...]
    confidence: float
    model_version: str
    prediction_timestamp: datetime
    feature_importance: Mapping[str, float] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "riskScore": round(self.risk_score, SCORE_DECIMALS),
            "riskCategory": self.risk_category.value,
            "interventions": list(self.interventions),
            "confidence": self.confidence,
            "modelVersion": self.model_version,
            "predictionTimestamp": self.prediction_timestamp.isoformat(),
            "featureImportance": dict(self.feature_importance),
        }


# =============================================================================
# CATEGORY AND INTERVENTION LOOKUPS
# =============================================================================

def categorize(score: float) -> RiskCategory:
    """Map a rounded risk score onto its category band."""
    if score >= HIGH_RISK_THRESHOLD:
        return RiskCategory.HIGH
    if score >= MEDIUM_RISK_THRESHOLD:
        return RiskCategory.MEDIUM
    return RiskCategory.LOW


def interventions_for(category: RiskCategory) -> Tuple[str, ...]:
    """Recommended discharge interventions for a risk category."""
    return INTERVENTIONS[RiskCategory(category)]


def matches_high_risk_diagnosis(diagnosis: str) -> bool:
    """Case-insensitive substring test against the high-risk vocabulary."""
    lowered = diagnosis.lower()
    return any(term.lower() in lowered for term in HIGH_RISK_DIAGNOSES)


# =============================================================================
# SCORING ENGINE
# =============================================================================

class ScoringEngine:
    """
    Additive point system for 30-day readmission risk.

    Rules (each test independent, all applicable increments summed):
    - Base score 0.30
    - Age > 65: +0.15, age > 80: +0.10 more
    - Length of stay > 7 days: +0.20, > 14 days: +0.15 more
    - Previous admissions > 2: +0.25, > 5: +0.20 more
    - High-risk diagnosis (Heart Failure, COPD, Diabetes, Kidney Disease): +0.20
    - Emergency admission: +0.10
    - Clamped to 0.95 and rounded to 3 decimals

    Example:
        >>> engine = ScoringEngine()
        >>> assessment = engine.score({
        ...     "age": 67, "gender": "Female",
        ...     "primaryDiagnosis": "Heart Failure with Reduced Ejection Fraction",
        ...     "lengthOfStay": 5, "previousAdmissions": 3,
        ...     "emergencyAdmission": True,
        ... })
        >>> assessment.risk_score, assessment.risk_category.value
        (0.95, 'High')
    """

    VERSION = MODEL_VERSION

    def score(
        self,
        features: Union[PatientFeatures, Mapping[str, Any]],
    ) -> RiskAssessment:
        """
        Score one patient.

        Args:
            features: PatientFeatures or a raw request payload

        Returns:
            RiskAssessment with score, category, interventions and the
            global feature importance

        Raises:
            ValidationError: if a required field is missing or malformed
        """
        features = self._coerce(features)
        risk_score = self._score_from_factors(self._rule_factors(features))
        category = categorize(risk_score)

        logger.debug(
            f"Scored patient: {risk_score:.3f} ({category.value})"
        )

        return RiskAssessment(
            risk_score=risk_score,
            risk_category=category,
            interventions=interventions_for(category),
            confidence=MODEL_CONFIDENCE,
            model_version=MODEL_VERSION,
            prediction_timestamp=datetime.now(timezone.utc),
            feature_importance=MappingProxyType(dict(FEATURE_IMPORTANCE)),
        )

    def explain(
        self,
        features: Union[PatientFeatures, Mapping[str, Any]],
    ) -> List[ContributingFactor]:
        """
        Per-instance attribution: the rule increments that fired.

        When the raw total exceeds the cap, a negative "Score Cap" factor is
        appended so that base + contributions equals the reported score.
        """
        features = self._coerce(features)
        factors = self._rule_factors(features)

        raw_total = BASE_RISK_SCORE + sum(f.contribution for f in factors)
        if raw_total > MAX_RISK_SCORE:
            factors.append(ContributingFactor(
                "Score Cap",
                MAX_RISK_SCORE - raw_total,
                f"Score capped at {MAX_RISK_SCORE:.2f}",
                round(raw_total, SCORE_DECIMALS),
            ))
        return factors

    @staticmethod
    def _coerce(
        features: Union[PatientFeatures, Mapping[str, Any]],
    ) -> PatientFeatures:
        if isinstance(features, PatientFeatures):
            return features
        return PatientFeatures.from_dict(features)

    @staticmethod
    def _score_from_factors(factors: List[ContributingFactor]) -> float:
        total = BASE_RISK_SCORE + sum(f.contribution for f in factors)
        total = min(total, MAX_RISK_SCORE)
        # Round before banding so float noise cannot cross a cutoff
        return round(total, SCORE_DECIMALS)

    @staticmethod
    def _rule_factors(features: PatientFeatures) -> List[ContributingFactor]:
        factors: List[ContributingFactor] = []

        for threshold, increment in AGE_INCREMENTS:
            if features.age > threshold:
                factors.append(ContributingFactor(
                    "Age", increment,
                    f"Age over {threshold} increases risk",
                    features.age,
                ))

        for threshold, increment in LENGTH_OF_STAY_INCREMENTS:
            if features.length_of_stay > threshold:
                factors.append(ContributingFactor(
                    "Length of Stay", increment,
                    f"Stay longer than {threshold} days increases risk",
                    features.length_of_stay,
                ))

        for threshold, increment in PREVIOUS_ADMISSION_INCREMENTS:
            if features.previous_admissions > threshold:
                factors.append(ContributingFactor(
                    "Previous Admissions", increment,
                    f"More than {threshold} admissions in 12 months increases risk",
                    features.previous_admissions,
                ))

        if matches_high_risk_diagnosis(features.primary_diagnosis):
            factors.append(ContributingFactor(
                "Primary Diagnosis", HIGH_RISK_DIAGNOSIS_INCREMENT,
                "High-risk diagnosis category",
                features.primary_diagnosis,
            ))

        if features.emergency_admission:
            factors.append(ContributingFactor(
                "Emergency Admission", EMERGENCY_ADMISSION_INCREMENT,
                "Unplanned admission indicates instability",
                True,
            ))

        return factors

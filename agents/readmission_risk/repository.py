"""
Readmission Risk Agent - In-Memory Repositories

Users, patient records and monitoring catalogues are owned by the API layer
and handed to endpoints through these repositories. The scoring engine and
the fairness aggregator never touch them.

Each repository offers the same two capabilities: lookup by id and list all.
The in-memory implementations are seeded with the dashboard's demo data and
can be swapped for database-backed ones without touching the core.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence


# =============================================================================
# USERS
# =============================================================================

@dataclass(frozen=True)
class User:
    """A clinician account allowed to sign in to the dashboard."""
    id: str
    username: str
    password_hash: str
    role: str
    name: str
    department: str

    def public_profile(self) -> Dict[str, str]:
        """Profile returned to the client (never includes the hash)."""
        return {
            "id": self.id,
            "username": self.username,
            "role": self.role,
            "name": self.name,
            "department": self.department,
        }


class UserRepository:
    """In-memory user store keyed by id, searchable by username."""

    def __init__(self, users: Sequence[User] = ()):
        self._users: Dict[str, User] = {u.id: u for u in users}

    def get(self, user_id: str) -> Optional[User]:
        return self._users.get(user_id)

    def get_by_username(self, username: str) -> Optional[User]:
        return next(
            (u for u in self._users.values() if u.username == username), None
        )

    def list_all(self) -> List[User]:
        return list(self._users.values())


def seed_users(password_hash: str) -> UserRepository:
    """Demo clinicians for the Internal Medicine unit."""
    return UserRepository([
        User(
            id="1",
            username="dr.smith",
            password_hash=password_hash,
            role="physician",
            name="Dr. Sarah Smith",
            department="Internal Medicine",
        ),
        User(
            id="2",
            username="nurse.jones",
            password_hash=password_hash,
            role="nurse",
            name="Nurse Mary Jones",
            department="Internal Medicine",
        ),
    ])


# =============================================================================
# PATIENTS
# =============================================================================

# LACE and Charlson scores are display data only and never scored
SAMPLE_PATIENTS: List[Dict[str, Any]] = [
    {
        "id": "P001",
        "name": "Patient A",
        "age": 67,
        "gender": "Female",
        "admissionDate": "2024-12-15",
        "dischargeDate": "2024-12-20",
        "primaryDiagnosis": "Heart Failure with Reduced Ejection Fraction",
        "comorbidities": ["Diabetes Type 2", "Hypertension", "CKD Stage 3"],
        "riskScore": 0.78,
        "riskCategory": "High",
        "laceScore": 12,
        "charlsonIndex": 4,
        "features": {
            "lengthOfStay": 5,
            "emergencyAdmission": True,
            "previousAdmissions": 3,
            "medicationCount": 12,
            "socialRiskFactors": ["Lives alone", "Limited transportation"],
            "vitalTrends": "Improving",
            "labTrends": "Stable",
        },
        "interventions": ["Discharge planning", "Home health referral", "48hr follow-up call"],
        "actualOutcome": None,
    },
    {
        "id": "P002",
        "name": "Patient B",
        "age": 45,
        "gender": "Male",
        "admissionDate": "2024-12-18",
        "dischargeDate": "2024-12-19",
        "primaryDiagnosis": "Pneumonia",
        "comorbidities": ["Asthma"],
        "riskScore": 0.23,
        "riskCategory": "Low",
        "laceScore": 4,
        "charlsonIndex": 1,
        "features": {
            "lengthOfStay": 1,
            "emergencyAdmission": False,
            "previousAdmissions": 0,
            "medicationCount": 4,
            "socialRiskFactors": [],
            "vitalTrends": "Normal",
            "labTrends": "Improving",
        },
        "interventions": ["Standard discharge"],
        "actualOutcome": None,
    },
    {
        "id": "P003",
        "name": "Patient C",
        "age": 82,
        "gender": "Female",
        "admissionDate": "2024-12-10",
        "dischargeDate": "2024-12-16",
        "primaryDiagnosis": "COPD Exacerbation",
        "comorbidities": ["Heart Failure", "Osteoporosis", "Depression"],
        "riskScore": 0.85,
        "riskCategory": "High",
        "laceScore": 15,
        "charlsonIndex": 6,
        "features": {
            "lengthOfStay": 6,
            "emergencyAdmission": True,
            "previousAdmissions": 5,
            "medicationCount": 15,
            "socialRiskFactors": ["Frail", "Cognitive impairment", "Polypharmacy"],
            "vitalTrends": "Concerning",
            "labTrends": "Variable",
        },
        "interventions": ["Geriatrics consult", "Medication reconciliation", "SNF placement"],
        "actualOutcome": "Readmitted Day 14",
    },
]

PATIENT_SUMMARY_FIELDS = (
    "id",
    "name",
    "age",
    "gender",
    "primaryDiagnosis",
    "riskScore",
    "riskCategory",
    "dischargeDate",
)


class PatientRepository:
    """In-memory patient record store; records are returned as copies."""

    def __init__(self, records: Sequence[Dict[str, Any]] = ()):
        self._records: Dict[str, Dict[str, Any]] = {
            r["id"]: copy.deepcopy(r) for r in records
        }

    def get(self, patient_id: str) -> Optional[Dict[str, Any]]:
        record = self._records.get(patient_id)
        return copy.deepcopy(record) if record is not None else None

    def list_all(self) -> List[Dict[str, Any]]:
        return [copy.deepcopy(r) for r in self._records.values()]

    def list_summaries(self) -> List[Dict[str, Any]]:
        """Dashboard table rows: the summary subset of each record."""
        return [
            {key: r.get(key) for key in PATIENT_SUMMARY_FIELDS}
            for r in self._records.values()
        ]


# =============================================================================
# MONITORING CATALOGUES
# =============================================================================

@dataclass(frozen=True)
class MonitoringCatalogue:
    """
    Model performance figures published by the monitoring pipeline.

    Attributes:
        system_metrics: Headline metrics for the dashboard cards
        subgroup_metrics: Per-subgroup precision/recall/fairness ratio rows
    """
    system_metrics: Dict[str, Any] = field(default_factory=dict)
    subgroup_metrics: List[Dict[str, Any]] = field(default_factory=list)

    def get_system_metrics(self) -> Dict[str, Any]:
        return dict(self.system_metrics)

    def list_subgroup_metrics(self) -> List[Dict[str, Any]]:
        return [dict(m) for m in self.subgroup_metrics]


DEFAULT_SYSTEM_METRICS: Dict[str, Any] = {
    "totalPredictions": 1247,
    "highRiskPatients": 186,
    "accuracy": 89.3,
    "precision": 76.2,
    "recall": 68.9,
    "f1Score": 72.3,
}

DEFAULT_SUBGROUP_METRICS: List[Dict[str, Any]] = [
    {"group": "Age 65+", "precision": 74.2, "recall": 71.8, "fairness_ratio": 0.96},
    {"group": "Age <65", "precision": 78.1, "recall": 66.2, "fairness_ratio": 1.04},
    {"group": "Female", "precision": 76.8, "recall": 69.4, "fairness_ratio": 1.01},
    {"group": "Male", "precision": 75.6, "recall": 68.3, "fairness_ratio": 0.99},
    {"group": "White", "precision": 77.2, "recall": 70.1, "fairness_ratio": 1.02},
    {"group": "Black/African American", "precision": 74.1, "recall": 66.8, "fairness_ratio": 0.96},
    {"group": "Hispanic/Latino", "precision": 75.9, "recall": 68.9, "fairness_ratio": 0.99},
    {"group": "Medicaid", "precision": 73.5, "recall": 65.2, "fairness_ratio": 0.94},
    {"group": "Medicare", "precision": 76.8, "recall": 70.4, "fairness_ratio": 1.01},
    {"group": "Commercial", "precision": 78.9, "recall": 69.7, "fairness_ratio": 1.05},
]


def default_catalogue() -> MonitoringCatalogue:
    return MonitoringCatalogue(
        system_metrics=dict(DEFAULT_SYSTEM_METRICS),
        subgroup_metrics=[dict(m) for m in DEFAULT_SUBGROUP_METRICS],
    )

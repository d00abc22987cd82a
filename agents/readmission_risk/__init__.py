"""
Readmission Risk Agent
======================

Deterministic 30-day readmission risk scoring for discharged patients, with
subgroup fairness monitoring, behind a role-protected REST API.

Components:
-----------
- config: Environment configuration and the fixed scoring constants
- model: PatientFeatures, RiskAssessment, ScoringEngine
- fairness: SubgroupMetric, FairnessVerdict, FairnessAggregator
- repository: In-memory users, patients and monitoring catalogues
- auth: Password hashing, bearer-token sessions
- api: FastAPI REST endpoints

Endpoints:
----------
- POST /api/auth/login: Obtain a bearer token
- POST /api/predict/readmission: Score one patient
- GET /api/patients, /api/patients/{id}: Dashboard patient data
- GET /api/metrics: Model performance metrics
- GET /api/bias-monitoring: Subgroup fairness verdicts
- GET /api/health: Service health check

Usage Example:
--------------
```python
from agents.readmission_risk.model import ScoringEngine

engine = ScoringEngine()
assessment = engine.score({
    "age": 82,
    "gender": "Female",
    "primaryDiagnosis": "COPD Exacerbation",
    "lengthOfStay": 6,
    "previousAdmissions": 5,
    "emergencyAdmission": True,
})
print(assessment.risk_score, assessment.risk_category.value)
for action in assessment.interventions:
    print(action)
```

Port: 8005
"""

__version__ = "2.1.3"
__author__ = "Hospital AI Team"

from .exceptions import ValidationError
from .fairness import FairnessAggregator, FairnessVerdict, SubgroupMetric
from .model import PatientFeatures, RiskAssessment, ScoringEngine

__all__ = [
    "ValidationError",
    "FairnessAggregator",
    "FairnessVerdict",
    "SubgroupMetric",
    "PatientFeatures",
    "RiskAssessment",
    "ScoringEngine",
    "__version__",
]

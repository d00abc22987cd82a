"""
Readmission Risk Agent - API Unit Tests

Tests for the FastAPI endpoints using TestClient.
Run with: pytest agents/readmission_risk/tests/test_api.py -v
"""

from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from agents.readmission_risk.api import app, app_state
from agents.readmission_risk.config import settings
from agents.readmission_risk.repository import User


HEART_FAILURE_PATIENT = {
    "patientId": "P001",
    "age": 67,
    "gender": "Female",
    "primaryDiagnosis": "Heart Failure with Reduced Ejection Fraction",
    "lengthOfStay": 5,
    "previousAdmissions": 3,
    "emergencyAdmission": True,
}


def parse_timestamp(value):
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@pytest.fixture
def client():
    """Create a test client for the FastAPI app."""
    return TestClient(app)


def login(client, username):
    response = client.post(
        "/api/auth/login",
        json={"username": username, "password": settings.demo_user_password},
    )
    assert response.status_code == 200
    return response.json()["token"]


@pytest.fixture
def physician_headers(client):
    return {"Authorization": f"Bearer {login(client, 'dr.smith')}"}


@pytest.fixture
def nurse_headers(client):
    return {"Authorization": f"Bearer {login(client, 'nurse.jones')}"}


@pytest.fixture
def billing_headers():
    """A valid session for a role that may not read clinical data."""
    user = User(
        id="99",
        username="billing.clerk",
        password_hash="unused",
        role="billing",
        name="Billing Clerk",
        department="Finance",
    )
    session = app_state.sessions.issue(user)
    return {"Authorization": f"Bearer {session.token}"}


class TestHealthEndpoint:
    """Tests for the /api/health endpoint."""

    def test_health_check_returns_200(self, client):
        """Health endpoint needs no authentication."""
        response = client.get("/api/health")
        assert response.status_code == 200

    def test_health_check_returns_valid_structure(self, client):
        data = client.get("/api/health").json()

        assert data["status"] == "healthy"
        assert data["version"] == "2.1.3"
        assert "timestamp" in data
        assert data["checks"]["engine"]["model_version"] == "v2.1.3"


class TestAuthentication:
    """Tests for login, logout and role checks."""

    def test_login_returns_token_and_profile(self, client):
        response = client.post(
            "/api/auth/login",
            json={"username": "dr.smith", "password": settings.demo_user_password},
        )
        data = response.json()

        assert response.status_code == 200
        assert data["token"]
        assert data["user"] == {
            "id": "1",
            "username": "dr.smith",
            "role": "physician",
            "name": "Dr. Sarah Smith",
            "department": "Internal Medicine",
        }

    def test_login_with_wrong_password(self, client):
        response = client.post(
            "/api/auth/login",
            json={"username": "dr.smith", "password": "not-the-password"},
        )
        assert response.status_code == 401
        assert response.json()["detail"]["error"] == "invalid_credentials"

    def test_login_with_unknown_user(self, client):
        response = client.post(
            "/api/auth/login",
            json={"username": "dr.who", "password": settings.demo_user_password},
        )
        assert response.status_code == 401

    def test_missing_token_returns_401(self, client):
        response = client.get("/api/patients")
        assert response.status_code == 401
        assert response.json()["detail"]["error"] == "token_required"

    def test_invalid_token_returns_403(self, client):
        response = client.get(
            "/api/patients", headers={"Authorization": "Bearer not-a-real-token"}
        )
        assert response.status_code == 403
        assert response.json()["detail"]["error"] == "invalid_token"

    def test_non_clinical_role_returns_403(self, client, billing_headers):
        response = client.post(
            "/api/predict/readmission", json=HEART_FAILURE_PATIENT, headers=billing_headers
        )
        assert response.status_code == 403
        assert response.json()["detail"]["error"] == "insufficient_permissions"

    def test_logout_revokes_token(self, client, nurse_headers):
        assert client.get("/api/patients", headers=nurse_headers).status_code == 200

        response = client.post("/api/auth/logout", headers=nurse_headers)
        assert response.status_code == 204

        assert client.get("/api/patients", headers=nurse_headers).status_code == 403


class TestPredictEndpoint:
    """Tests for POST /api/predict/readmission."""

    def test_end_to_end_prediction(self, client, physician_headers):
        response = client.post(
            "/api/predict/readmission", json=HEART_FAILURE_PATIENT, headers=physician_headers
        )
        data = response.json()

        assert response.status_code == 200
        assert data["riskScore"] == 0.95
        assert data["riskCategory"] == "High"
        assert data["interventions"] == [
            "Enhanced discharge planning",
            "Home health referral",
            "48hr follow-up call",
        ]
        assert data["confidence"] == 0.85
        assert data["modelVersion"] == "v2.1.3"
        assert data["featureImportance"]["Previous Admissions"] == 0.24
        assert "instanceAttribution" not in data
        parse_timestamp(data["predictionTimestamp"])

    def test_nurse_may_predict(self, client, nurse_headers):
        payload = dict(HEART_FAILURE_PATIENT, age=40, previousAdmissions=0,
                       primaryDiagnosis="Pneumonia", emergencyAdmission=False)
        response = client.post(
            "/api/predict/readmission", json=payload, headers=nurse_headers
        )
        assert response.status_code == 200
        assert response.json()["riskCategory"] == "Low"
        assert response.json()["interventions"] == ["Standard discharge"]

    def test_instance_attribution(self, client, physician_headers):
        response = client.post(
            "/api/predict/readmission?attribution=instance",
            json=HEART_FAILURE_PATIENT,
            headers=physician_headers,
        )
        factors = response.json()["instanceAttribution"]

        assert response.status_code == 200
        assert [f["factorName"] for f in factors] == [
            "Age", "Previous Admissions", "Primary Diagnosis",
            "Emergency Admission", "Score Cap",
        ]

    def test_unknown_attribution_mode_returns_422(self, client, physician_headers):
        response = client.post(
            "/api/predict/readmission?attribution=shapley",
            json=HEART_FAILURE_PATIENT,
            headers=physician_headers,
        )
        assert response.status_code == 422

    def test_missing_required_field_returns_400(self, client, physician_headers):
        """The structured error names the missing field."""
        payload = dict(HEART_FAILURE_PATIENT)
        del payload["age"]

        response = client.post(
            "/api/predict/readmission", json=payload, headers=physician_headers
        )

        assert response.status_code == 400
        assert response.json() == {
            "error": "validation_error",
            "field": "age",
            "message": "Missing required field: age",
        }

    def test_negative_length_of_stay_returns_400(self, client, physician_headers):
        payload = dict(HEART_FAILURE_PATIENT, lengthOfStay=-2)
        response = client.post(
            "/api/predict/readmission", json=payload, headers=physician_headers
        )
        assert response.status_code == 400
        assert response.json()["field"] == "lengthOfStay"

    def test_enormous_age_returns_400(self, client, physician_headers):
        """An integer beyond the float range is a validation error, not a 500."""
        payload = dict(HEART_FAILURE_PATIENT, age=int("9" * 401))
        response = client.post(
            "/api/predict/readmission", json=payload, headers=physician_headers
        )
        assert response.status_code == 400
        assert response.json()["field"] == "age"

    def test_fractional_admissions_return_400(self, client, physician_headers):
        payload = dict(HEART_FAILURE_PATIENT, previousAdmissions=2.5)
        response = client.post(
            "/api/predict/readmission", json=payload, headers=physician_headers
        )
        assert response.status_code == 400
        assert response.json()["field"] == "previousAdmissions"

    def test_null_required_field_returns_400(self, client, physician_headers):
        payload = dict(HEART_FAILURE_PATIENT, gender=None)
        response = client.post(
            "/api/predict/readmission", json=payload, headers=physician_headers
        )
        assert response.status_code == 400
        assert response.json()["message"] == "Missing required field: gender"

    def test_non_object_body_returns_400(self, client, physician_headers):
        response = client.post(
            "/api/predict/readmission", json=[67, "Female"], headers=physician_headers
        )
        assert response.status_code == 400
        assert response.json()["field"] == "body"

    def test_request_schema_is_published(self, client):
        """The OpenAPI document describes the camelCase patient payload."""
        schemas = client.get("/openapi.json").json()["components"]["schemas"]
        properties = schemas["PatientFeatures"]["properties"]

        assert {"age", "primaryDiagnosis", "lengthOfStay", "previousAdmissions"} <= set(properties)
        assert set(schemas["PatientFeatures"]["required"]) == {
            "age", "gender", "primaryDiagnosis", "lengthOfStay", "previousAdmissions",
        }

    def test_predictions_are_counted(self, client, physician_headers):
        before = app_state.predictions_served
        client.post(
            "/api/predict/readmission", json=HEART_FAILURE_PATIENT, headers=physician_headers
        )
        assert app_state.predictions_served == before + 1


class TestPatientEndpoints:
    """Tests for the patient list and detail endpoints."""

    def test_patient_list(self, client, physician_headers):
        response = client.get("/api/patients", headers=physician_headers)
        data = response.json()

        assert response.status_code == 200
        assert [p["id"] for p in data] == ["P001", "P002", "P003"]
        assert set(data[0]) == {
            "id", "name", "age", "gender", "primaryDiagnosis",
            "riskScore", "riskCategory", "dischargeDate",
        }

    def test_patient_detail(self, client, nurse_headers):
        response = client.get("/api/patients/P003", headers=nurse_headers)
        data = response.json()

        assert response.status_code == 200
        assert data["laceScore"] == 15
        assert data["charlsonIndex"] == 6
        assert data["actualOutcome"] == "Readmitted Day 14"

    def test_unknown_patient_returns_404(self, client, physician_headers):
        response = client.get("/api/patients/P999", headers=physician_headers)
        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "patient_not_found"


class TestMonitoringEndpoints:
    """Tests for metrics, bias monitoring and model info."""

    def test_metrics(self, client, physician_headers):
        data = client.get("/api/metrics", headers=physician_headers).json()

        assert data["totalPredictions"] == 1247
        assert data["f1Score"] == 72.3
        parse_timestamp(data["lastUpdated"])

    def test_bias_monitoring(self, client, physician_headers):
        response = client.get("/api/bias-monitoring", headers=physician_headers)
        data = response.json()

        assert response.status_code == 200
        assert len(data) == 10
        assert data[0]["group"] == "Age 65+"
        medicaid = next(row for row in data if row["group"] == "Medicaid")
        assert medicaid["status"] == "Review"
        assert medicaid["fairness_ratio"] == 0.94

    def test_bias_summary(self, client, nurse_headers):
        data = client.get("/api/bias-monitoring/summary", headers=nurse_headers).json()

        assert data["totalGroups"] == 10
        assert data["reviewGroups"] == 1
        assert data["groupsNeedingReview"] == ["Medicaid"]

    def test_model_info(self, client, physician_headers):
        data = client.get("/api/model/info", headers=physician_headers).json()

        assert data["modelVersion"] == "v2.1.3"
        assert data["riskThresholds"] == {"high": 0.7, "medium": 0.4}
        assert data["interventions"]["Low"] == ["Standard discharge"]
        assert len(data["featureCatalogue"]) == 8

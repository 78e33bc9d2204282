"""
Readmission Risk Agent - API Unit Tests

Tests for the FastAPI endpoints using TestClient, with the predictor wired
to the in-memory store and a scripted judge.
Run with: pytest agents/readmission_risk/tests/test_api.py -v
"""

import json

import pytest
from fastapi.testclient import TestClient

from conftest import DISCHARGE_DATE, JUDGE_MODEL, JUDGE_PAYLOAD, PATIENT_ID, TENANT_ID, FakeJudge
from readmission_risk.api import app, app_state
from readmission_risk.exceptions import JudgeError, JudgeTimeoutError


@pytest.fixture
def client():
    """Create a test client for the FastAPI app."""
    return TestClient(app)


@pytest.fixture
def wire(source, make_predictor):
    """Install a predictor over the in-memory store; returns the installer."""

    def _wire(judge_override=None, **settings_overrides):
        app_state.source = source
        app_state.predictor = make_predictor(judge_override, **settings_overrides)
        return app_state.predictor

    yield _wire

    # Clean up
    app_state.predictor = None
    app_state.source = None
    app_state.judge = None
    app_state.predictions_made = 0


def _discharge(**changes):
    body = {
        "patient_id": PATIENT_ID,
        "tenant_id": TENANT_ID,
        "discharge_date": DISCHARGE_DATE,
        "discharge_facility": "Methodist Hospital",
        "discharge_disposition": "home",
        "primary_diagnosis_code": "I50.9",
        "primary_diagnosis_description": "Heart failure, unspecified",
        "secondary_diagnoses": ["E11.9", "I10"],
        "length_of_stay": 5,
    }
    body.update(changes)
    return body


class TestHealthEndpoint:
    """Tests for the /health endpoint."""

    def test_health_check_returns_valid_structure(self, client, wire):
        """Health endpoint should return expected JSON structure."""
        wire()
        response = client.get("/health")
        data = response.json()

        assert response.status_code == 200
        assert data["status"] == "healthy"
        assert data["checks"]["predictor"]["model_version"] == "V1"
        assert data["checks"]["database"]["status"] == "ok"

    def test_unreachable_database_is_degraded(self, client, wire, source):
        wire()
        source.reachable = False

        data = client.get("/health").json()

        assert data["status"] == "degraded"
        assert data["checks"]["database"]["status"] == "unreachable"


class TestPredictEndpoint:
    """Tests for the /predict endpoint."""

    def test_predict_with_valid_request(self, client, wire, source):
        """Prediction should succeed for a valid discharge."""
        wire()

        response = client.post("/predict", json=_discharge())

        assert response.status_code == 200
        data = response.json()
        assert "request_id" in data
        assert data["patient_id"] == PATIENT_ID
        assert data["readmission_risk_30_day"] == pytest.approx(0.72)
        assert data["risk_category"] == "high"
        assert data["ai_model"] == JUDGE_MODEL
        assert data["model_version"] == "V1"
        assert data["prediction_id"] in source.predictions
        assert data["plain_language_explanation"]
        assert "top_risk_factors" in data["risk_summary"]
        assert app_state.predictions_made == 1

    def test_missing_fields_return_422(self, client, wire):
        wire()
        body = _discharge()
        del body["patient_id"]

        response = client.post("/predict", json=body)

        assert response.status_code == 422  # Validation error

    def test_invalid_context_returns_422(self, client, wire):
        wire()

        response = client.post("/predict", json=_discharge(discharge_disposition="morgue"))

        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "invalid_discharge_context"

    def test_disabled_tenant_returns_403(self, client, wire, source):
        wire()
        source.tenant_config["readmission_predictor_enabled"] = False

        response = client.post("/predict", json=_discharge())

        assert response.status_code == 403
        assert response.json()["detail"]["error"] == "predictor_disabled"

    def test_unparseable_judge_reply_returns_502(self, client, wire):
        wire(FakeJudge(text="No idea."))

        response = client.post("/predict", json=_discharge())

        assert response.status_code == 502
        assert response.json()["detail"]["error"] == "invalid_judge_response"

    def test_non_finite_judge_reply_returns_502(self, client, wire):
        """NaN never reaches the response builder."""
        text = json.dumps(JUDGE_PAYLOAD).replace(
            '"predictionConfidence": 0.82', '"predictionConfidence": NaN'
        )
        wire(FakeJudge(text=text))

        response = client.post("/predict", json=_discharge())

        assert response.status_code == 502
        assert response.json()["detail"]["error"] == "invalid_judge_response"

    def test_judge_timeout_returns_504(self, client, wire):
        wire(FakeJudge(error=JudgeTimeoutError(30)))

        response = client.post("/predict", json=_discharge())

        assert response.status_code == 504
        assert response.json()["detail"]["error"] == "judge_timeout"

    def test_judge_failure_returns_502(self, client, wire):
        wire(FakeJudge(error=JudgeError("upstream unavailable")))

        response = client.post("/predict", json=_discharge())

        assert response.status_code == 502
        assert response.json()["detail"]["error"] == "judge_failed"
        assert app_state.predictions_made == 0

    def test_unexpected_error_returns_500(self, wire, source):
        """Store failures fall through to the global handler."""
        wire()
        source.failures["fetch_admissions"] = RuntimeError("connection reset")
        client = TestClient(app, raise_server_exceptions=False)

        response = client.post("/predict", json=_discharge())

        assert response.status_code == 500
        assert response.json()["error"] == "internal_server_error"


class TestOutcomeEndpoint:
    """Tests for the /predictions/{id}/outcome endpoint."""

    def test_record_outcome(self, client, wire, source):
        wire()
        prediction_id = client.post("/predict", json=_discharge()).json()["prediction_id"]

        response = client.post(
            f"/predictions/{prediction_id}/outcome",
            json={"actual_readmission": True, "actual_readmission_date": "2025-01-22T07:00:00Z"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["prediction_id"] == prediction_id
        assert data["updates"]["actual_readmission_days_post_discharge"] == 6
        assert source.accuracy_outcomes[0]["is_accurate"] is True

    def test_invalid_prediction_id_returns_422(self, client, wire):
        wire()

        response = client.post("/predictions/not-a-uuid/outcome", json={"actual_readmission": False})

        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "invalid_outcome"


class TestModelConfigEndpoint:
    """Tests for the /model/config endpoint."""

    def test_returns_active_config(self, client, wire):
        wire()

        data = client.get("/model/config").json()

        assert data["version"] == "V1"
        assert "timeout_seconds" in data["judge"]
        assert data["config"]["weights"]["clinical"]["prior_admissions_30_day"] == 0.25
        assert "category_escalation_enabled" in data

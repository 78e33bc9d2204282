"""
Readmission Risk Agent - Shared Test Fixtures

The golden patient is a heart-failure discharge to a frontier ZIP code:
recent admissions, a three-day check-in gap, no caregiver at home and a
follow-up visit one week out. Every fixture below builds a fresh copy of
that record so tests can mutate it freely.

Run with: pytest agents/readmission_risk/tests -v
"""

import asyncio
import copy
import json
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pytest

from readmission_risk.aggregator import FeatureAggregator
from readmission_risk.config import Settings
from readmission_risk.features import DischargeContext
from readmission_risk.judge import JudgeRequest, JudgeResponse
from readmission_risk.model_config import READMISSION_MODEL_V1
from readmission_risk.predictor import ReadmissionRiskPredictor
from readmission_risk.utils import parse_timestamp


# =============================================================================
# GOLDEN PATIENT RECORD
# =============================================================================

PATIENT_ID = "11111111-1111-1111-1111-111111111111"
TENANT_ID = "22222222-2222-2222-2222-222222222222"
DISCHARGE_DATE = "2025-01-15T08:00:00.000Z"

# Evaluation time for every deterministic run
NOW = datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc)

JUDGE_MODEL = "claude-sonnet-4-5-20250929"
JUDGE_COST = 0.015

ADMISSIONS = [
    {"admission_date": "2025-01-10T00:00:00.000Z", "facility_type": "hospital"},
    {"admission_date": "2024-12-20T00:00:00.000Z", "facility_type": "hospital"},
    {"admission_date": "2024-11-15T00:00:00.000Z", "facility_type": "hospital"},
    {"admission_date": "2025-01-05T00:00:00.000Z", "facility_type": "er"},
    {"admission_date": "2024-12-01T00:00:00.000Z", "facility_type": "er"},
]

CONDITIONS = [
    {"code": "I50.9", "display": "Heart failure", "clinical_status": "active"},
    {"code": "E11.9", "display": "Type 2 diabetes", "clinical_status": "active"},
    {"code": "I10", "display": "Essential hypertension", "clinical_status": "active"},
]

OBSERVATIONS = [
    # Vitals at discharge
    {"code": "8480-6", "value_quantity": {"value": 138}, "effective_date_time": "2025-01-15T07:00:00.000Z"},
    {"code": "8462-4", "value_quantity": {"value": 85}, "effective_date_time": "2025-01-15T07:00:00.000Z"},
    {"code": "8867-4", "value_quantity": {"value": 78}, "effective_date_time": "2025-01-15T07:00:00.000Z"},
    {"code": "2708-6", "value_quantity": {"value": 95}, "effective_date_time": "2025-01-15T07:00:00.000Z"},
    {"code": "8310-5", "value_quantity": {"value": 98.6}, "effective_date_time": "2025-01-15T07:00:00.000Z"},
    # Labs
    {"code": "48642-3", "value_quantity": {"value": 45}, "effective_date_time": "2025-01-14T00:00:00.000Z"},
    {"code": "718-7", "value_quantity": {"value": 11.5}, "effective_date_time": "2025-01-14T00:00:00.000Z"},
    {"code": "2951-2", "value_quantity": {"value": 142}, "effective_date_time": "2025-01-14T00:00:00.000Z"},
    {"code": "2339-0", "value_quantity": {"value": 165}, "effective_date_time": "2025-01-14T00:00:00.000Z"},
]

MEDICATIONS = [
    {"medication_display": "Warfarin 5mg", "status": "active"},
    {"medication_display": "Metformin 1000mg", "status": "active"},
    {"medication_display": "Lisinopril 10mg", "status": "active"},
    {"medication_display": "Atorvastatin 40mg", "status": "active"},
    {"medication_display": "Insulin glargine", "status": "active"},
    {"medication_display": "Furosemide 40mg", "status": "active"},
]

APPOINTMENTS = [{"start": "2025-01-22T09:00:00.000Z", "status": "booked"}]

PENDING_REPORTS = [
    {"code_display": "Echocardiogram", "status": "pending", "effective_date_time": "2025-01-14T00:00:00.000Z"},
]

PROFILE = {
    "id": PATIENT_ID,
    "date_of_birth": "1950-05-15",
    "address_city": "Rural Town",
    "address_state": "MT",
    "address_zip": "59301",
    "primary_care_provider_id": "33333333-3333-3333-3333-333333333333",
}

SDOH_INDICATORS = [
    {
        "category": "transportation",
        "risk_level": "high",
        "details": {"distance_to_hospital": 45, "distance_to_pcp": 30, "public_transit": False},
    },
    {
        "category": "housing",
        "risk_level": "moderate",
        "details": {"lives_alone": True},
    },
    {
        "category": "social_support",
        "risk_level": "high",
        "score": 3,
        "details": {
            "has_caregiver": False,
            "caregiver_24hr": False,
            "caregiver_reliable": False,
            "family_support": False,
            "community_support": True,
        },
    },
    {
        "category": "insurance",
        "risk_level": "moderate",
        "details": {"type": "medicare", "medication_cost_barrier": True, "visit_cost_barrier": False},
    },
    {
        "category": "health_literacy",
        "risk_level": "high",
        "details": {"level": "low", "language_barrier": False, "interpreter_needed": False},
    },
]

RUCA = {"zip_code": "59301", "ruca_code": 10, "ruca_category": "isolated_rural"}
HPSA = {"zip_code": "59301", "designation_type": "primary_care", "status": "active"}

RISK_ASSESSMENT = {
    "cognitive_risk_score": 7.5,
    "mobility_risk_score": 6,
    "walking_ability": "needs_help_walker",
    "bathing_ability": "needs_help",
    "dressing_ability": "independent",
    "toilet_transfer": "needs_help",
    "eating_ability": "independent",
    "sitting_ability": "independent",
    "meal_preparation": "needs_help",
    "medication_management": "needs_help",
    "risk_factors": ["dementia", "fall_risk"],
}

FALL_REPORTS = [
    {"check_in_date": "2025-01-10T00:00:00.000Z", "concern_flags": ["fall"]},
    {"check_in_date": "2024-12-15T00:00:00.000Z", "concern_flags": ["fall"]},
]


def _check_in(day: str, status: str, responses: Optional[Dict[str, Any]] = None,
              alert_severity: Optional[str] = None) -> Dict[str, Any]:
    return {
        "check_in_date": f"{day}T07:00:00.000Z",
        "status": status,
        "alert_triggered": alert_severity is not None,
        "alert_severity": alert_severity,
        "responses": responses or {},
    }


# Newest first: three missed days, then a mostly completed month
CHECK_INS = [
    _check_in("2025-01-15", "missed"),
    _check_in("2025-01-14", "missed"),
    _check_in("2025-01-13", "missed"),
    _check_in("2025-01-12", "completed", {"mood": "tired", "blood_pressure": "145/92"}),
    _check_in("2025-01-11", "completed", {"mood": "anxious", "symptoms": "shortness of breath"}, "warning"),
    _check_in("2025-01-10", "completed", {"mood": "okay"}),
    _check_in("2025-01-09", "completed", {"mood": "good"}),
    _check_in("2025-01-08", "completed", {"mood": "good"}),
    _check_in("2025-01-07", "completed", {"mood": "good"}),
    _check_in("2025-01-06", "completed", {"mood": "okay"}),
    _check_in("2025-01-05", "completed", {"blood_sugar": "180"}),
    _check_in("2025-01-04", "completed", {"mood": "good"}),
    _check_in("2025-01-03", "completed", {"mood": "okay"}),
    _check_in("2025-01-02", "missed"),
    _check_in("2025-01-01", "completed", {"mood": "good"}),
    _check_in("2024-12-31", "completed", {"mood": "sad"}),
    _check_in("2024-12-30", "completed", {"mood": "not great"}),
    _check_in("2024-12-29", "completed", {"mood": "tired"}),
    _check_in("2024-12-28", "completed", {"mood": "anxious"}),
    _check_in("2024-12-27", "completed", {"mood": "stressed"}),
    _check_in("2024-12-26", "completed", {"mood": "good"}),
    _check_in("2024-12-25", "completed", {"mood": "good"}),
    _check_in("2024-12-24", "completed", {"mood": "okay"}),
    _check_in("2024-12-23", "completed", {"mood": "good"}),
    _check_in("2024-12-22", "missed"),
    _check_in("2024-12-21", "completed", {"mood": "good"}),
    _check_in("2024-12-20", "completed", {"mood": "okay"}),
    _check_in("2024-12-19", "completed", {"mood": "good"}),
    _check_in("2024-12-18", "completed", {"mood": "good"}),
    _check_in("2024-12-17", "completed", {"mood": "good"}),
]


def _metric(day: str, trivia: bool, word_find: bool, score: int, overall: int,
            interactions: int) -> Dict[str, Any]:
    return {
        "date": day,
        "trivia_played": trivia,
        "word_find_played": word_find,
        "engagement_score": score,
        "overall_engagement_score": overall,
        "community_interactions": interactions,
    }


ENGAGEMENT_METRICS = [
    _metric("2025-01-15", False, False, 0, 20, 0),
    _metric("2025-01-14", False, False, 0, 25, 0),
    _metric("2025-01-13", False, False, 0, 30, 0),
    _metric("2025-01-12", True, False, 60, 65, 2),
    _metric("2025-01-11", True, True, 70, 70, 1),
    _metric("2025-01-10", True, True, 80, 80, 3),
    _metric("2025-01-09", True, True, 75, 75, 2),
    _metric("2025-01-08", True, True, 85, 85, 4),
    _metric("2025-01-07", True, True, 80, 80, 3),
    _metric("2025-01-06", True, False, 70, 70, 2),
    _metric("2025-01-05", True, True, 75, 75, 2),
    _metric("2025-01-04", True, True, 80, 80, 3),
    _metric("2025-01-03", True, True, 70, 70, 1),
    _metric("2025-01-02", False, False, 0, 30, 0),
]

TENANT_CONFIG = {
    "readmission_predictor_enabled": True,
    "readmission_predictor_auto_create_care_plan": True,
    "readmission_predictor_high_risk_threshold": 0.50,
    "readmission_predictor_model": JUDGE_MODEL,
}

JUDGE_PAYLOAD = {
    "readmissionRisk30Day": 0.72,
    "readmissionRisk7Day": 0.45,
    "readmissionRisk90Day": 0.85,
    "riskCategory": "high",
    "riskFactors": [
        {"factor": "Prior admissions in past 30 days", "weight": 0.25,
         "category": "utilization_history", "evidence": "Strong predictor per CMS"},
        {"factor": "Rural isolation with transportation barriers", "weight": 0.20,
         "category": "social_determinants", "evidence": "Distance to care >30 miles"},
        {"factor": "Consecutive missed check-ins", "weight": 0.16,
         "category": "adherence", "evidence": "3+ missed in a row"},
    ],
    "protectiveFactors": [
        {"factor": "Family support available", "impact": "Reduces risk by 10%", "category": "social_support"},
    ],
    "recommendedInterventions": [
        {"intervention": "Daily nurse check-in calls", "priority": "high", "estimatedImpact": 0.20,
         "timeframe": "daily for 14 days", "responsible": "care_coordinator"},
        {"intervention": "Transportation assistance for follow-up", "priority": "critical",
         "estimatedImpact": 0.15, "timeframe": "within 7 days", "responsible": "social_worker"},
    ],
    "predictedReadmissionDate": "2025-02-05",
    "predictionConfidence": 0.82,
}


# =============================================================================
# FAKE COLLABORATORS
# =============================================================================

def _after(rows: Optional[List[Dict[str, Any]]], column: str, since: datetime):
    if rows is None:
        return None
    kept = []
    for row in rows:
        moment = parse_timestamp(row.get(column))
        if moment is not None and moment >= since:
            kept.append(row)
    return kept


class InMemoryDataSource:
    """
    Patient store backed by plain dicts.

    Set an attribute to None to simulate a source that did not answer.
    Put an exception in `failures[method_name]` to make that call raise.
    Writes are recorded for assertions.
    """

    def __init__(self):
        self.admissions = copy.deepcopy(ADMISSIONS)
        self.conditions = copy.deepcopy(CONDITIONS)
        self.observations = copy.deepcopy(OBSERVATIONS)
        self.medications = copy.deepcopy(MEDICATIONS)
        self.appointments = copy.deepcopy(APPOINTMENTS)
        self.pending_reports = copy.deepcopy(PENDING_REPORTS)
        self.profile = copy.deepcopy(PROFILE)
        self.sdoh = copy.deepcopy(SDOH_INDICATORS)
        self.ruca = copy.deepcopy(RUCA)
        self.hpsa = copy.deepcopy(HPSA)
        self.risk_assessment = copy.deepcopy(RISK_ASSESSMENT)
        self.fall_reports = copy.deepcopy(FALL_REPORTS)
        self.check_ins = copy.deepcopy(CHECK_INS)
        self.engagement_metrics = copy.deepcopy(ENGAGEMENT_METRICS)
        self.tenant_config = copy.deepcopy(TENANT_CONFIG)

        self.failures: Dict[str, Exception] = {}
        self.predictions: Dict[str, Dict[str, Any]] = {}
        self.outcome_updates: List[Dict[str, Any]] = []
        self.care_plans: List[Dict[str, Any]] = []
        self.alerts: List[Dict[str, Any]] = []
        self.accuracy_predictions: List[Dict[str, Any]] = []
        self.accuracy_outcomes: List[Dict[str, Any]] = []
        self.reachable = True

    def _check(self, name: str) -> None:
        if name in self.failures:
            raise self.failures[name]

    # ---- reads -------------------------------------------------------------

    async def fetch_admissions(self, patient_id: str, since: datetime):
        self._check("fetch_admissions")
        return _after(self.admissions, "admission_date", since)

    async def fetch_active_conditions(self, patient_id: str):
        self._check("fetch_active_conditions")
        return self.conditions

    async def fetch_observations(self, patient_id: str, codes: Sequence[str], until: datetime):
        self._check("fetch_observations")
        if self.observations is None:
            return None
        return [
            row for row in self.observations
            if row["code"] in codes and parse_timestamp(row["effective_date_time"]) <= until
        ]

    async def fetch_active_medications(self, patient_id: str):
        self._check("fetch_active_medications")
        return self.medications

    async def fetch_upcoming_appointments(self, patient_id: str, after: datetime):
        self._check("fetch_upcoming_appointments")
        return _after(self.appointments, "start", after)

    async def fetch_pending_diagnostic_reports(self, patient_id: str):
        self._check("fetch_pending_diagnostic_reports")
        return self.pending_reports

    async def fetch_profile(self, patient_id: str):
        self._check("fetch_profile")
        return self.profile

    async def fetch_sdoh_indicators(self, patient_id: str):
        self._check("fetch_sdoh_indicators")
        return self.sdoh

    async def fetch_ruca(self, zip_code: str):
        self._check("fetch_ruca")
        return self.ruca

    async def fetch_hpsa(self, zip_code: str):
        self._check("fetch_hpsa")
        return self.hpsa

    async def fetch_risk_assessment(self, patient_id: str):
        self._check("fetch_risk_assessment")
        return self.risk_assessment

    async def fetch_fall_reports(self, patient_id: str, since: datetime):
        self._check("fetch_fall_reports")
        return _after(self.fall_reports, "check_in_date", since)

    async def fetch_check_ins(self, patient_id: str, since: datetime):
        self._check("fetch_check_ins")
        return _after(self.check_ins, "check_in_date", since)

    async def fetch_engagement_metrics(self, patient_id: str, since: datetime):
        self._check("fetch_engagement_metrics")
        return _after(self.engagement_metrics, "date", since.replace(hour=0, minute=0))

    async def fetch_tenant_config(self, tenant_id: str):
        self._check("fetch_tenant_config")
        return self.tenant_config

    # ---- writes ------------------------------------------------------------

    async def insert_prediction(self, record: Mapping[str, Any]) -> str:
        self._check("insert_prediction")
        prediction_id = str(uuid.uuid4())
        self.predictions[prediction_id] = dict(record, id=prediction_id)
        return prediction_id

    async def fetch_prediction(self, prediction_id: str):
        self._check("fetch_prediction")
        return self.predictions.get(prediction_id)

    async def update_prediction_outcome(self, prediction_id: str, updates: Mapping[str, Any]) -> None:
        self._check("update_prediction_outcome")
        self.outcome_updates.append(dict(updates, prediction_id=prediction_id))

    async def insert_care_plan(self, record: Mapping[str, Any]) -> str:
        self._check("insert_care_plan")
        self.care_plans.append(dict(record))
        return str(uuid.uuid4())

    async def insert_care_team_alert(self, record: Mapping[str, Any]) -> str:
        self._check("insert_care_team_alert")
        self.alerts.append(dict(record))
        return str(uuid.uuid4())

    async def record_accuracy_prediction(self, record: Mapping[str, Any]) -> str:
        self._check("record_accuracy_prediction")
        self.accuracy_predictions.append(dict(record))
        return str(uuid.uuid4())

    async def record_accuracy_outcome(self, prediction_id: str, outcome: Mapping[str, Any]) -> None:
        self._check("record_accuracy_outcome")
        self.accuracy_outcomes.append(dict(outcome, prediction_id=prediction_id))

    async def ping(self) -> bool:
        return self.reachable


class FakeJudge:
    """Scripted judge: returns a fixed reply (or raises) and records requests."""

    def __init__(self, payload: Optional[Dict[str, Any]] = None, text: Optional[str] = None,
                 error: Optional[Exception] = None):
        self.text = text if text is not None else json.dumps(payload or JUDGE_PAYLOAD)
        self.error = error
        self.requests: List[JudgeRequest] = []

    async def call(self, request: JudgeRequest) -> JudgeResponse:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return JudgeResponse(text=self.text, model=JUDGE_MODEL, cost=JUDGE_COST)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def context():
    """The golden discharge context."""
    return DischargeContext(
        patient_id=PATIENT_ID,
        tenant_id=TENANT_ID,
        discharge_date=DISCHARGE_DATE,
        discharge_facility="Methodist Hospital",
        discharge_disposition="home",
        primary_diagnosis_code="I50.9",
        primary_diagnosis_description="Heart failure, unspecified",
        secondary_diagnoses=("E11.9", "I10"),
        length_of_stay=5,
    )


@pytest.fixture
def source():
    return InMemoryDataSource()


@pytest.fixture
def judge():
    return FakeJudge()


@pytest.fixture
def model_config():
    return READMISSION_MODEL_V1


@pytest.fixture
def make_predictor(source, judge):
    """Factory for predictors over the golden source; pass settings overrides as kwargs."""

    def _make(judge_override=None, **settings_overrides):
        settings = Settings(**settings_overrides)
        return ReadmissionRiskPredictor(
            source,
            judge_override or judge,
            config=READMISSION_MODEL_V1,
            settings=settings,
        )

    return _make


@pytest.fixture
def golden_features(source, context, model_config):
    """Feature vector extracted from the golden record at NOW."""
    aggregator = FeatureAggregator(source, model_config)
    return asyncio.run(aggregator.extract_features(context, as_of=NOW))

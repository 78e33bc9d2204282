"""
Readmission Risk Agent - Domain Feature Records

Typed, immutable records produced by the seven domain extractors and the
discharge context that drives a prediction.

================================================================================
CONVENTIONS
================================================================================

- Flat booleans, counts, 0-1 rates and closed-enum categoricals only.
- `None` means "the source did not answer" (not connected, no row). It is
  NOT the same as False/0 and is what the data-completeness score measures.
- Collections are tuples so records stay immutable; `to_dict()` renders
  them as JSON-friendly lists for persistence and the prompt builder.

================================================================================
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple


def _jsonable(value: Any) -> Any:
    if isinstance(value, tuple):
        return [_jsonable(item) for item in value]
    if isinstance(value, list):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, Enum):
        return value.value
    return value


class _Record:
    """Mixin giving frozen dataclass records a JSON-friendly `to_dict()`."""

    def to_dict(self) -> Dict[str, Any]:
        return {key: _jsonable(value) for key, value in asdict(self).items()}


# =============================================================================
# DISCHARGE CONTEXT
# =============================================================================

class Disposition(str, Enum):
    """Where the patient goes after discharge (closed set)."""
    HOME = "home"
    HOME_HEALTH = "home_health"
    SNF = "snf"
    LTAC = "ltac"
    REHAB = "rehab"
    HOSPICE = "hospice"


@dataclass(frozen=True)
class DischargeContext:
    """
    Input to a prediction.

    `discharge_date` is kept verbatim as the caller's ISO string; it is
    echoed back in the prediction and stored as-is. Validation produces a
    new, sanitized context rather than mutating this one.
    """
    patient_id: str
    tenant_id: str
    discharge_date: str
    discharge_facility: str
    discharge_disposition: str
    primary_diagnosis_code: Optional[str] = None
    primary_diagnosis_description: Optional[str] = None
    secondary_diagnoses: Tuple[str, ...] = ()
    length_of_stay: Optional[float] = None

    def with_updates(self, **changes: Any) -> "DischargeContext":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {key: _jsonable(value) for key, value in asdict(self).items()}


# =============================================================================
# DOMAIN RECORDS
# =============================================================================

@dataclass(frozen=True)
class ClinicalFactors(_Record):
    primary_diagnosis_code: Optional[str] = None
    primary_diagnosis_category: str = "other"
    is_high_risk_diagnosis: bool = False

    # Utilization history
    prior_admissions_30_day: Optional[int] = None
    prior_admissions_90_day: Optional[int] = None
    ed_visits_30_day: Optional[int] = None
    ed_visits_90_day: Optional[int] = None
    ed_visits_6_month: Optional[int] = None

    # Comorbidities
    comorbidity_count: Optional[int] = None
    has_chf: bool = False
    has_copd: bool = False
    has_diabetes: bool = False
    has_renal_failure: bool = False
    has_cancer: bool = False

    # Vitals at discharge
    vital_signs_stable_at_discharge: bool = True
    systolic_bp_at_discharge: Optional[float] = None
    diastolic_bp_at_discharge: Optional[float] = None
    heart_rate_at_discharge: Optional[float] = None
    oxygen_saturation_at_discharge: Optional[float] = None
    temperature_at_discharge: Optional[float] = None

    # Labs at discharge
    e_gfr: Optional[float] = None
    hemoglobin: Optional[float] = None
    sodium: Optional[float] = None
    glucose: Optional[float] = None
    labs_within_normal_limits: Optional[bool] = None
    lab_trends_concerning: bool = False

    length_of_stay_days: Optional[float] = None
    length_of_stay_category: str = "normal"


@dataclass(frozen=True)
class MedicationFactors(_Record):
    active_medication_count: Optional[int] = None
    is_polypharmacy: bool = False
    has_anticoagulants: bool = False
    has_insulin: bool = False
    has_opioids: bool = False
    has_immunosuppressants: bool = False
    has_high_risk_medications: bool = False
    high_risk_medication_list: Tuple[str, ...] = ()
    medications_added: int = 0
    medications_discontinued: int = 0
    medications_dose_changed: int = 0
    significant_medication_changes: bool = False
    prescription_filled_within_3_days: Optional[bool] = None
    no_prescription_filled: bool = False


@dataclass(frozen=True)
class PostDischargeFactors(_Record):
    follow_up_scheduled: Optional[bool] = None
    days_until_follow_up: Optional[int] = None
    follow_up_within_7_days: bool = False
    follow_up_within_14_days: bool = False
    no_follow_up_scheduled: bool = False
    has_pcp_assigned: bool = False
    discharge_destination: str = Disposition.HOME.value
    discharge_to_home_alone: bool = False
    has_pending_test_results: bool = False
    pending_test_results_list: Tuple[str, ...] = ()
    discharge_instructions_understood: Optional[bool] = None


@dataclass(frozen=True)
class SocialDeterminants(_Record):
    lives_alone: Optional[bool] = None
    has_caregiver: bool = False
    caregiver_available_24_7: bool = False
    caregiver_reliable: bool = False
    has_family_support: bool = False
    has_community_support: bool = False
    social_support_score: Optional[float] = None
    socially_isolated: bool = False

    # Access to care
    has_transportation_barrier: bool = False
    distance_to_nearest_hospital_miles: Optional[float] = None
    distance_to_pcp_miles: Optional[float] = None
    public_transit_available: bool = False
    estimated_drive_time_minutes: Optional[float] = None

    # Rurality
    is_rural_location: bool = False
    ruca_code: Optional[int] = None
    ruca_category: str = "urban"
    patient_rurality: str = "urban"
    rural_isolation_score: int = 0
    is_in_healthcare_shortage_area: bool = False
    distance_to_care_risk_weight: float = 0.0

    # Insurance and finances
    insurance_type: str = "commercial"
    has_medicaid: bool = False
    has_insurance_gaps: bool = False
    financial_barriers_to_medications: bool = False
    financial_barriers_to_follow_up: bool = False

    # Literacy
    health_literacy_level: str = "adequate"
    low_health_literacy: bool = False
    language_barrier: bool = False
    interpreter_needed: bool = False


@dataclass(frozen=True)
class FunctionalStatus(_Record):
    adl_dependencies: int = 0
    iadl_dependencies: int = 0
    needs_help_with_medications: bool = False
    has_cognitive_impairment: bool = False
    cognitive_impairment_severity: Optional[str] = None
    has_dementia: bool = False
    falls_in_past_30_days: int = 0
    falls_in_past_90_days: int = 0
    has_recent_falls: bool = False
    fall_risk_score: int = 0
    mobility_level: str = "independent"
    uses_assistive_device: bool = False
    cognitive_risk_score: Optional[float] = None
    mobility_risk_score: Optional[float] = None


@dataclass(frozen=True)
class EngagementFactors(_Record):
    # Check-in compliance (fixed denominators 30 / 7 / 23)
    check_in_completion_rate_30_day: Optional[float] = None
    check_in_completion_rate_7_day: float = 0.0
    consecutive_missed_check_ins: int = 0
    has_engagement_drop: bool = False
    stopped_responding: bool = False

    # Games
    trivia_participation_rate_30_day: float = 0.0
    word_find_participation_rate_30_day: float = 0.0
    game_engagement_score: int = 0
    game_engagement_declining: bool = False

    # Social and community
    community_interaction_score: int = 0
    days_with_zero_activity: int = 30
    social_engagement_declining: bool = False

    # Alerts
    health_alerts_triggered_30_day: int = 0
    critical_alerts_triggered: int = 0

    # Overall
    overall_engagement_score: int = 0
    engagement_change_percent: float = 0.0
    is_disengaging: bool = False
    negative_mood_trend: bool = False
    vitals_reporting_consistency: float = 0.0
    missed_vitals_reports_7_day: int = 0
    concerning_patterns: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SelfReportedHealth(_Record):
    has_red_flag_symptoms: bool = False
    red_flag_symptoms_list: Tuple[str, ...] = ()
    symptom_count_30_day: int = 0
    negative_mood_trend: bool = False
    self_reported_bp_trend_concerning: bool = False
    self_reported_blood_sugar_unstable: bool = False
    self_reported_weight_change_concerning: bool = False
    mobility_complaints_30_day: int = 0
    pain_complaints_30_day: int = 0
    fatigue_complaints_30_day: int = 0
    mobility_declining: bool = False
    pain_increasing: bool = False
    fatigue_increasing: bool = False
    medication_side_effects_reported: int = 0
    missed_medications_days_30_day: int = 0
    days_home_alone_30_day: int = 0
    family_contact_days_30_day: int = 0
    social_isolation_increasing: bool = False
    family_contact_decreasing: bool = False


@dataclass(frozen=True)
class FeatureVector:
    """The seven domain records plus data-quality metadata."""
    clinical: ClinicalFactors
    medication: MedicationFactors
    post_discharge: PostDischargeFactors
    social_determinants: SocialDeterminants
    functional_status: FunctionalStatus
    engagement: EngagementFactors
    self_reported: SelfReportedHealth
    data_completeness_score: int = 0
    missing_critical_data: Tuple[str, ...] = field(default_factory=tuple)

    def snapshots(self) -> Dict[str, Dict[str, Any]]:
        """Per-domain snapshots keyed by their persistence column."""
        return {
            "clinical_features": self.clinical.to_dict(),
            "medication_features": self.medication.to_dict(),
            "post_discharge_features": self.post_discharge.to_dict(),
            "social_determinants_features": self.social_determinants.to_dict(),
            "functional_status_features": self.functional_status.to_dict(),
            "engagement_features": self.engagement.to_dict(),
            "self_reported_features": self.self_reported.to_dict(),
        }

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "clinical": self.clinical.to_dict(),
            "medication": self.medication.to_dict(),
            "post_discharge": self.post_discharge.to_dict(),
            "social_determinants": self.social_determinants.to_dict(),
            "functional_status": self.functional_status.to_dict(),
            "engagement": self.engagement.to_dict(),
            "self_reported": self.self_reported.to_dict(),
            "data_completeness_score": self.data_completeness_score,
            "missing_critical_data": list(self.missing_critical_data),
        }
        return data

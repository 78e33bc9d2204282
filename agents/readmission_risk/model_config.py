"""
Readmission Risk Agent - Versioned Model Configuration

Every threshold, weight, keyword list and categorization boundary used by the
readmission pipeline lives here, in ONE immutable, versioned value.

================================================================================
WHY A VERSIONED VALUE INSTEAD OF SETTINGS?
================================================================================

Thresholds in this module are CONTRACTUAL: the golden regression suite
verifies extractor outputs bit-for-bit against them, and stored predictions
record the version that produced them. Therefore:

    - Values are frozen dataclasses (no runtime mutation)
    - Components receive the config at construction time
    - Changing any value means publishing a NEW version constant
      (READMISSION_MODEL_V2, ...) and registering it in MODEL_CONFIGS

Operational knobs (timeouts, URLs, pool sizes) belong in config.py instead.

================================================================================
CATEGORIES
================================================================================

    Clinical ........ LOS, vitals, labs, ICD-10 prefixes
    Medication ...... polypharmacy, high-risk medication keywords
    Post-discharge .. follow-up timing
    Functional ...... cognitive severity, fall risk scoring
    Social .......... distance-to-care, rural isolation, RUCA, ZIP fallback
    Engagement ...... fixed check-in denominators, behavioral thresholds
    Self-reported ... BP, blood sugar, weight, symptom and isolation counts
    Scoring ......... completeness weights, evidence weights for the judge
    Tenant .......... defaults for absent tenant configuration

================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple


# =============================================================================
# CLINICAL THRESHOLDS
# =============================================================================

@dataclass(frozen=True)
class LengthOfStayThresholds:
    """
    Length-of-stay categorization boundaries (days).

    Logic: falsy -> normal; < too_short -> too_short; <= normal_max -> normal;
    <= extended_max -> extended; else prolonged.
    """
    too_short: float = 2
    normal_max: float = 5
    extended_max: float = 10


@dataclass(frozen=True)
class Range:
    """Inclusive numeric range."""
    min: float
    max: float

    def contains(self, value: float) -> bool:
        return self.min <= value <= self.max


@dataclass(frozen=True)
class VitalsThresholds:
    """
    Discharge vital-sign stability ranges.

    A value is stable if (not value) or within range. A zero reading is
    treated as missing, not as out of range.
    """
    systolic: Range = Range(90, 160)
    diastolic: Range = Range(60, 100)
    heart_rate: Range = Range(60, 100)
    o2_saturation_min: float = 92


@dataclass(frozen=True)
class LabThresholds:
    """Normal ranges and critical bounds for discharge labs."""
    # Normal
    egfr_min: float = 60
    hemoglobin: Range = Range(12, 17)
    sodium: Range = Range(135, 145)
    glucose: Range = Range(70, 140)
    # Concerning (presence-checked)
    egfr_critical_low: float = 30
    hemoglobin_critical_low: float = 10
    sodium_critical_low: float = 130
    sodium_critical_high: float = 150
    glucose_critical_low: float = 60
    glucose_critical_high: float = 200


@dataclass(frozen=True)
class ObservationCodes:
    """LOINC codes for vitals and labs read from the observation store."""
    systolic_bp: str = "8480-6"
    diastolic_bp: str = "8462-4"
    heart_rate: str = "8867-4"
    oxygen_saturation: str = "2708-6"
    temperature: str = "8310-5"
    egfr: str = "48642-3"
    hemoglobin: str = "718-7"
    sodium: str = "2951-2"
    glucose: str = "2339-0"

    def all_codes(self) -> Tuple[str, ...]:
        return (
            self.systolic_bp, self.diastolic_bp, self.heart_rate,
            self.oxygen_saturation, self.temperature,
            self.egfr, self.hemoglobin, self.sodium, self.glucose,
        )


@dataclass(frozen=True)
class DiagnosisPrefixes:
    """ICD-10 prefixes per diagnosis group (checked in declaration order)."""
    chf: Tuple[str, ...] = ("I50",)
    copd: Tuple[str, ...] = ("J44", "J45")
    diabetes: Tuple[str, ...] = ("E11", "E10")
    renal_failure: Tuple[str, ...] = ("N18",)
    cancer: Tuple[str, ...] = ("C",)
    pneumonia: Tuple[str, ...] = ("J18",)
    stroke: Tuple[str, ...] = ("I63",)
    sepsis: Tuple[str, ...] = ("A41",)
    high_risk: Tuple[str, ...] = ("I50", "J44", "J45", "E11", "E10", "N18")


# =============================================================================
# MEDICATION THRESHOLDS
# =============================================================================

@dataclass(frozen=True)
class MedicationThresholds:
    polypharmacy: int = 5
    significant_changes: int = 3
    prescription_fill_window_days: int = 3


@dataclass(frozen=True)
class HighRiskMedicationKeywords:
    """Case-insensitive substring keywords per high-risk medication class."""
    anticoagulants: Tuple[str, ...] = (
        "warfarin", "heparin", "enoxaparin", "rivaroxaban", "apixaban",
    )
    insulin: Tuple[str, ...] = ("insulin",)
    opioids: Tuple[str, ...] = (
        "oxycodone", "hydrocodone", "morphine", "fentanyl", "tramadol",
    )
    immunosuppressants: Tuple[str, ...] = (
        "prednisone", "tacrolimus", "cyclosporine",
    )

    def classes(self) -> Tuple[Tuple[str, Tuple[str, ...]], ...]:
        return (
            ("anticoagulants", self.anticoagulants),
            ("insulin", self.insulin),
            ("opioids", self.opioids),
            ("immunosuppressants", self.immunosuppressants),
        )


# =============================================================================
# POST-DISCHARGE AND FUNCTIONAL THRESHOLDS
# =============================================================================

@dataclass(frozen=True)
class FollowUpThresholds:
    """
    Follow-up timing windows (days).

    Logic: within_7 = days ? days <= 7 : False. A same-day (0) follow-up is
    NOT counted as within the window.
    """
    within_7_days: int = 7
    within_14_days: int = 14


@dataclass(frozen=True)
class CognitiveThresholds:
    impairment_threshold: float = 6
    min_for_severity: float = 4
    mild_max: float = 7
    moderate_max: float = 9


@dataclass(frozen=True)
class FallRiskParams:
    """
    Fall risk score parameters.

    Order: base = min(falls * multiplier, max_base); bonuses; min(score, max).
    """
    falls_multiplier: int = 2
    falls_max_base: int = 6
    mobility_threshold: float = 7
    mobility_bonus: int = 2
    cognitive_threshold: float = 6
    cognitive_bonus: int = 1
    walker_bonus: int = 1
    max_score: int = 10
    lookback_days: int = 30


@dataclass(frozen=True)
class FunctionalParams:
    mobility_device_keywords: Tuple[str, ...] = ("walker", "wheelchair")
    adl_fields: Tuple[str, ...] = (
        "bathing_ability",
        "dressing_ability",
        "toilet_transfer",
        "eating_ability",
        "walking_ability",
        "sitting_ability",
    )
    iadl_fields: Tuple[str, ...] = ("meal_preparation", "medication_management")
    independent_value: str = "independent"
    falls_lookback_days: int = 90


# =============================================================================
# SOCIAL DETERMINANTS THRESHOLDS
# =============================================================================

@dataclass(frozen=True)
class DistanceToCareParams:
    """
    Distance-to-care risk weight.

    Order: accumulate hospital + PCP bands, THEN multiply by the RUCA
    multiplier, THEN cap at max_weight.
    """
    hospital_very_far_threshold: float = 60
    hospital_very_far_weight: float = 0.20
    hospital_far_threshold: float = 30
    hospital_far_weight: float = 0.15
    hospital_moderate_threshold: float = 15
    hospital_moderate_weight: float = 0.10
    hospital_slight_threshold: float = 5
    hospital_slight_weight: float = 0.05
    pcp_far_threshold: float = 30
    pcp_far_weight: float = 0.08
    pcp_moderate_threshold: float = 15
    pcp_moderate_weight: float = 0.05
    isolated_rural_multiplier: float = 1.3
    small_rural_multiplier: float = 1.15
    max_weight: float = 0.25


@dataclass(frozen=True)
class RuralIsolationParams:
    isolated_rural_base: int = 8
    small_rural_base: int = 6
    large_rural_base: int = 4
    default_base: int = 3
    hospital_very_far_threshold: float = 60
    hospital_very_far_bonus: int = 2
    hospital_far_threshold: float = 30
    hospital_far_bonus: int = 1
    pcp_far_threshold: float = 30
    pcp_far_bonus: int = 1
    no_transit_bonus: int = 1
    max_score: int = 10


@dataclass(frozen=True)
class RucaThresholds:
    """RUCA code upper bounds (1-3 urban, 4-6 large, 7-9 small, 10 isolated)."""
    urban_max: int = 3
    large_rural_max: int = 6
    small_rural_max: int = 9


@dataclass(frozen=True)
class DrivingTimeMultipliers:
    """Minutes per mile."""
    rural: float = 2
    urban: float = 1.5


@dataclass(frozen=True)
class RuralZipPrefixes:
    """ZIP prefix fallback used when no RUCA row exists for a ZIP."""
    montana: Tuple[str, ...] = ("592", "593", "594", "595", "596", "597", "598", "599")
    north_dakota: Tuple[str, ...] = ("693", "694", "695", "696", "697")
    south_dakota: Tuple[str, ...] = ("570", "571", "572", "573", "574", "575", "576", "577")
    frontier: Tuple[str, ...] = ("592", "593", "697")

    def rural(self) -> Tuple[str, ...]:
        return self.montana + self.north_dakota + self.south_dakota


# =============================================================================
# ENGAGEMENT THRESHOLDS
# =============================================================================

@dataclass(frozen=True)
class CheckInDenominators:
    """Fixed denominators. Never the count of records actually returned."""
    rate_30_day: int = 30
    rate_7_day: int = 7
    previous_period: int = 23


@dataclass(frozen=True)
class EngagementThresholds:
    consecutive_missed_concern: int = 3
    engagement_drop: float = 0.3
    negative_mood: float = 0.4
    game_decline: float = 0.7
    game_decline_min_days: int = 14
    zero_activity_concern: int = 7
    zero_activity_disengaging: int = 10
    disengaging_drop: float = -30
    vitals_consistency: float = 0.7
    missed_vitals_concern: int = 4
    recent_window: int = 7


@dataclass(frozen=True)
class ConcerningPatternIds:
    declining_mood: str = "declining_mood"
    missed_vitals: str = "missed_vitals"
    no_games: str = "no_games"
    zero_activity: str = "zero_activity"
    critical_alerts: str = "critical_alerts"


# =============================================================================
# SELF-REPORTED HEALTH THRESHOLDS
# =============================================================================

@dataclass(frozen=True)
class SelfReportedThresholds:
    bp_systolic_high: float = 160
    bp_systolic_low: float = 90
    bp_diastolic_high: float = 100
    blood_sugar_high: float = 250
    blood_sugar_low: float = 70
    # abs(first - last) > last * weight_change (LAST reading is the base)
    weight_change: float = 0.05
    mobility_declining: int = 3
    pain_increasing: int = 5
    fatigue_increasing: int = 5
    days_home_alone: int = 15
    family_contact_min: int = 8


@dataclass(frozen=True)
class SymptomKeywords:
    negative_moods: Tuple[str, ...] = ("sad", "anxious", "not great", "stressed", "tired")
    red_flags: Tuple[str, ...] = (
        "chest pain",
        "shortness of breath",
        "sob",
        "severe pain",
        "bleeding",
        "confusion",
        "dizzy",
        "faint",
        "unconscious",
    )
    mobility: Tuple[str, ...] = ("walking", "mobility", "weakness")
    pain: Tuple[str, ...] = ("pain", "ache", "sore")
    fatigue: Tuple[str, ...] = ("tired", "fatigue", "exhausted")
    side_effects: Tuple[str, ...] = ("side effect", "nausea", "dizzy from")
    home_alone: Tuple[str, ...] = ("stayed home alone", "no visitors")


# =============================================================================
# SCORING WEIGHTS
# =============================================================================

@dataclass(frozen=True)
class CompletenessField:
    key: str
    weight: int


DEFAULT_COMPLETENESS_FIELDS: Tuple[CompletenessField, ...] = (
    CompletenessField("clinical.prior_admissions_30_day", 5),
    CompletenessField("clinical.comorbidity_count", 5),
    CompletenessField("post_discharge.follow_up_scheduled", 4),
    CompletenessField("social_determinants.lives_alone", 3),
    CompletenessField("medication.active_medication_count", 3),
)


@dataclass(frozen=True)
class ClinicalWeights:
    prior_admissions_30_day: float = 0.25
    prior_admissions_90_day: float = 0.20
    ed_visits_6_month: float = 0.15
    comorbidity_count: float = 0.18
    high_risk_diagnosis: float = 0.15


@dataclass(frozen=True)
class MedicationWeights:
    polypharmacy: float = 0.13
    high_risk_meds: float = 0.14
    no_prescription_filled: float = 0.16


@dataclass(frozen=True)
class PostDischargeWeights:
    no_follow_up: float = 0.18
    follow_up_within_7_days: float = -0.12  # protective


@dataclass(frozen=True)
class SocialWeights:
    transportation_barrier: float = 0.16
    lives_alone: float = 0.14
    rural_location: float = 0.15
    low_health_literacy: float = 0.12


@dataclass(frozen=True)
class FunctionalWeights:
    adl_dependencies: float = 0.12
    recent_falls: float = 0.11
    cognitive_impairment: float = 0.13


@dataclass(frozen=True)
class ClinicalSecondaryWeights:
    length_of_stay: float = 0.10
    vitals_stable: float = -0.09  # protective
    lab_trends_concerning: float = 0.11


@dataclass(frozen=True)
class EngagementWeights:
    consecutive_missed: float = 0.16
    engagement_drop: float = 0.18
    red_flag_symptoms: float = 0.20
    negative_mood: float = 0.13
    game_declining: float = 0.14
    days_zero_activity: float = 0.15
    is_disengaging: float = 0.19
    stopped_responding: float = 0.22


@dataclass(frozen=True)
class EvidenceWeights:
    """Evidence-based weights surfaced to the judge and the explainability engine."""
    clinical: ClinicalWeights = ClinicalWeights()
    medications: MedicationWeights = MedicationWeights()
    post_discharge: PostDischargeWeights = PostDischargeWeights()
    social: SocialWeights = SocialWeights()
    functional: FunctionalWeights = FunctionalWeights()
    clinical_secondary: ClinicalSecondaryWeights = ClinicalSecondaryWeights()
    engagement: EngagementWeights = EngagementWeights()


DEFAULT_RUCA_PROMPT_WEIGHTS: Tuple[Tuple[str, str], ...] = (
    ("urban", "0.00 (baseline)"),
    ("large_rural", "0.08"),
    ("small_rural", "0.12"),
    ("isolated_rural", "0.18"),
)


# =============================================================================
# TENANT DEFAULTS
# =============================================================================

@dataclass(frozen=True)
class TenantDefaults:
    predictor_enabled: bool = False
    auto_create_care_plan: bool = False
    high_risk_threshold: float = 0.50
    default_model: str = "claude-sonnet-4-5-20250929"


# =============================================================================
# VERSIONED CONFIGURATION
# =============================================================================

@dataclass(frozen=True)
class ReadmissionModelConfig:
    """
    Complete, immutable readmission model configuration.

    Instances are plain values: pass them to component constructors rather
    than importing a global. Use `dataclasses.replace` to derive a new
    version in tests or migrations.
    """
    version: str
    los: LengthOfStayThresholds = LengthOfStayThresholds()
    vitals: VitalsThresholds = VitalsThresholds()
    labs: LabThresholds = LabThresholds()
    observation_codes: ObservationCodes = ObservationCodes()
    diagnoses: DiagnosisPrefixes = DiagnosisPrefixes()
    medication: MedicationThresholds = MedicationThresholds()
    high_risk_meds: HighRiskMedicationKeywords = HighRiskMedicationKeywords()
    follow_up: FollowUpThresholds = FollowUpThresholds()
    cognitive: CognitiveThresholds = CognitiveThresholds()
    fall_risk: FallRiskParams = FallRiskParams()
    functional: FunctionalParams = FunctionalParams()
    distance_to_care: DistanceToCareParams = DistanceToCareParams()
    rural_isolation: RuralIsolationParams = RuralIsolationParams()
    ruca: RucaThresholds = RucaThresholds()
    driving_time: DrivingTimeMultipliers = DrivingTimeMultipliers()
    rural_zips: RuralZipPrefixes = RuralZipPrefixes()
    check_in: CheckInDenominators = CheckInDenominators()
    engagement: EngagementThresholds = EngagementThresholds()
    patterns: ConcerningPatternIds = ConcerningPatternIds()
    self_reported: SelfReportedThresholds = SelfReportedThresholds()
    keywords: SymptomKeywords = SymptomKeywords()
    completeness_fields: Tuple[CompletenessField, ...] = DEFAULT_COMPLETENESS_FIELDS
    weights: EvidenceWeights = EvidenceWeights()
    ruca_prompt_weights: Tuple[Tuple[str, str], ...] = DEFAULT_RUCA_PROMPT_WEIGHTS
    tenant_defaults: TenantDefaults = TenantDefaults()

    def ruca_prompt_weight(self, category: str) -> str:
        return dict(self.ruca_prompt_weights).get(category, "0.00")

    def summary(self) -> Dict[str, object]:
        """Compact, JSON-friendly view for the /model/config endpoint."""
        from dataclasses import asdict
        return asdict(self)


READMISSION_MODEL_V1 = ReadmissionModelConfig(version="V1")

MODEL_CONFIGS: Dict[str, ReadmissionModelConfig] = {
    READMISSION_MODEL_V1.version: READMISSION_MODEL_V1,
}


def get_model_config(version: str) -> ReadmissionModelConfig:
    """Look up a registered model configuration by version."""
    try:
        return MODEL_CONFIGS[version]
    except KeyError:
        raise ValueError(
            f"Unknown readmission model version '{version}'. "
            f"Available: {', '.join(sorted(MODEL_CONFIGS))}"
        ) from None

"""
Readmission Risk Agent - Domain Extractor Unit Tests

Each extractor is run against the golden patient record, then against
targeted edits of that record for the edge cases.
Run with: pytest agents/readmission_risk/tests/test_extractors.py -v
"""

import asyncio
import json

import pytest

from conftest import NOW
from readmission_risk.extractors import (
    ClinicalExtractor,
    EngagementExtractor,
    FunctionalStatusExtractor,
    MedicationExtractor,
    PostDischargeExtractor,
    SelfReportedExtractor,
    SocialDeterminantsExtractor,
    count_consecutive_missed,
    parse_blood_pressure,
)
from readmission_risk.model_config import READMISSION_MODEL_V1 as CONFIG


def _extract(extractor_cls, source, context):
    return asyncio.run(extractor_cls(source, CONFIG).extract(context, NOW))


class TestClinicalExtractor:
    """Tests for utilization, comorbidities, vitals and labs."""

    def test_golden_utilization(self, source, context):
        """Hospital and ED admissions are counted in separate windows."""
        clinical = _extract(ClinicalExtractor, source, context)

        assert clinical.prior_admissions_30_day == 2
        assert clinical.prior_admissions_90_day == 3
        assert clinical.ed_visits_30_day == 1
        assert clinical.ed_visits_90_day == 2
        assert clinical.ed_visits_6_month == 2

    def test_golden_comorbidities_and_diagnosis(self, source, context):
        clinical = _extract(ClinicalExtractor, source, context)

        assert clinical.comorbidity_count == 3
        assert clinical.has_chf is True
        assert clinical.has_diabetes is True
        assert clinical.has_copd is False
        assert clinical.primary_diagnosis_category == "CHF"
        assert clinical.is_high_risk_diagnosis is True
        assert clinical.length_of_stay_category == "normal"

    def test_golden_vitals_and_labs(self, source, context):
        """eGFR 45 is abnormal but not critical."""
        clinical = _extract(ClinicalExtractor, source, context)

        assert clinical.vital_signs_stable_at_discharge is True
        assert clinical.systolic_bp_at_discharge == 138
        assert clinical.oxygen_saturation_at_discharge == 95
        assert clinical.temperature_at_discharge == pytest.approx(98.6)
        assert clinical.e_gfr == 45
        assert clinical.hemoglobin == pytest.approx(11.5)
        assert clinical.labs_within_normal_limits is False
        assert clinical.lab_trends_concerning is False

    def test_admission_exactly_30_days_ago_is_outside_window(self, source, context):
        """The 30-day window is strict."""
        source.admissions = [
            {"admission_date": "2024-12-16T10:00:00.000Z", "facility_type": "hospital"},
        ]
        clinical = _extract(ClinicalExtractor, source, context)

        assert clinical.prior_admissions_30_day == 0
        assert clinical.prior_admissions_90_day == 1

    def test_latest_observation_wins(self, source, context):
        """A newer out-of-range reading makes vitals unstable."""
        source.observations.append(
            {"code": "8480-6", "value": 172, "effective_date_time": "2025-01-15T07:30:00.000Z"}
        )
        clinical = _extract(ClinicalExtractor, source, context)

        assert clinical.systolic_bp_at_discharge == 172
        assert clinical.vital_signs_stable_at_discharge is False

    def test_unanswered_sources_are_unknown(self, source, context):
        """No admission or condition data leaves the counts as None."""
        source.admissions = None
        source.conditions = None
        source.observations = None
        clinical = _extract(ClinicalExtractor, source, context)

        assert clinical.prior_admissions_30_day is None
        assert clinical.ed_visits_6_month is None
        assert clinical.comorbidity_count is None
        assert clinical.labs_within_normal_limits is None
        # Diagnosis codes from the context still count
        assert clinical.has_chf is True


class TestMedicationExtractor:
    """Tests for polypharmacy, high-risk classes and fills."""

    def test_golden_medications(self, source, context):
        medication = _extract(MedicationExtractor, source, context)

        assert medication.active_medication_count == 6
        assert medication.is_polypharmacy is True
        assert medication.has_anticoagulants is True
        assert medication.has_insulin is True
        assert medication.has_opioids is False
        assert medication.high_risk_medication_list == ("anticoagulants", "insulin")
        assert medication.prescription_filled_within_3_days is None
        assert medication.no_prescription_filled is False

    def test_fill_within_window(self, source, context):
        source.medications[0]["last_fill_date"] = "2025-01-16T12:00:00.000Z"
        medication = _extract(MedicationExtractor, source, context)

        assert medication.prescription_filled_within_3_days is True
        assert medication.no_prescription_filled is False

    def test_fill_after_window_means_no_prescription_filled(self, source, context):
        source.medications[0]["last_fill_date"] = "2025-01-20T12:00:00.000Z"
        medication = _extract(MedicationExtractor, source, context)

        assert medication.prescription_filled_within_3_days is False
        assert medication.no_prescription_filled is True

    def test_no_medication_data(self, source, context):
        source.medications = None
        medication = _extract(MedicationExtractor, source, context)

        assert medication.active_medication_count is None
        assert medication.is_polypharmacy is False


class TestPostDischargeExtractor:
    """Tests for follow-up timing and discharge destination."""

    def test_golden_follow_up(self, source, context):
        """Follow-up 7 days and 1 hour out is 7 whole days."""
        post = _extract(PostDischargeExtractor, source, context)

        assert post.follow_up_scheduled is True
        assert post.days_until_follow_up == 7
        assert post.follow_up_within_7_days is True
        assert post.follow_up_within_14_days is True
        assert post.no_follow_up_scheduled is False
        assert post.has_pcp_assigned is True
        assert post.discharge_to_home_alone is True
        assert post.pending_test_results_list == ("Echocardiogram",)
        assert post.discharge_instructions_understood is None

    def test_no_appointments_means_no_follow_up(self, source, context):
        source.appointments = []
        post = _extract(PostDischargeExtractor, source, context)

        assert post.follow_up_scheduled is False
        assert post.no_follow_up_scheduled is True
        assert post.days_until_follow_up is None

    def test_unknown_scheduling_is_not_no_follow_up(self, source, context):
        source.appointments = None
        post = _extract(PostDischargeExtractor, source, context)

        assert post.follow_up_scheduled is None
        assert post.no_follow_up_scheduled is False

    def test_home_health_is_not_home_alone(self, source, context):
        post = _extract(
            PostDischargeExtractor, source, context.with_updates(discharge_disposition="home_health")
        )
        assert post.discharge_to_home_alone is False


class TestSocialDeterminantsExtractor:
    """Tests for support, access to care and rurality."""

    def test_golden_support_and_access(self, source, context):
        social = _extract(SocialDeterminantsExtractor, source, context)

        assert social.lives_alone is True
        assert social.has_caregiver is False
        assert social.socially_isolated is True
        assert social.has_community_support is True
        assert social.social_support_score == 3
        assert social.has_transportation_barrier is True
        assert social.distance_to_nearest_hospital_miles == 45
        assert social.distance_to_pcp_miles == 30
        assert social.public_transit_available is False
        assert social.estimated_drive_time_minutes == 90

    def test_golden_rurality(self, source, context):
        social = _extract(SocialDeterminantsExtractor, source, context)

        assert social.ruca_code == 10
        assert social.ruca_category == "isolated_rural"
        assert social.patient_rurality == "frontier"
        assert social.is_rural_location is True
        assert social.rural_isolation_score == 10
        assert social.is_in_healthcare_shortage_area is True
        assert social.distance_to_care_risk_weight == pytest.approx(0.25)

    def test_golden_insurance_and_literacy(self, source, context):
        social = _extract(SocialDeterminantsExtractor, source, context)

        assert social.insurance_type == "medicare"
        assert social.has_medicaid is False
        assert social.financial_barriers_to_medications is True
        assert social.financial_barriers_to_follow_up is False
        assert social.health_literacy_level == "low"
        assert social.low_health_literacy is True

    def test_no_screening_leaves_lives_alone_unknown(self, source, context):
        source.sdoh = []
        social = _extract(SocialDeterminantsExtractor, source, context)

        assert social.lives_alone is None
        assert social.has_transportation_barrier is False

    def test_zip_prefix_fallback_without_ruca_row(self, source, context):
        source.ruca = None
        social = _extract(SocialDeterminantsExtractor, source, context)

        assert social.ruca_code is None
        assert social.ruca_category == "isolated_rural"

    def test_low_risk_transportation_is_not_a_barrier(self, source, context):
        source.sdoh[0]["risk_level"] = "low"
        social = _extract(SocialDeterminantsExtractor, source, context)

        assert social.has_transportation_barrier is False

    def test_details_stored_as_json_text(self, source, context):
        source.sdoh[1]["details"] = json.dumps({"lives_alone": True})
        social = _extract(SocialDeterminantsExtractor, source, context)

        assert social.lives_alone is True


class TestFunctionalStatusExtractor:
    """Tests for ADLs, cognition and falls."""

    def test_golden_functional_status(self, source, context):
        functional = _extract(FunctionalStatusExtractor, source, context)

        assert functional.adl_dependencies == 3
        assert functional.iadl_dependencies == 2
        assert functional.needs_help_with_medications is True
        assert functional.has_cognitive_impairment is True
        assert functional.cognitive_impairment_severity == "moderate"
        assert functional.has_dementia is True
        assert functional.falls_in_past_30_days == 1
        assert functional.falls_in_past_90_days == 2
        assert functional.fall_risk_score == 4
        assert functional.mobility_level == "walker"
        assert functional.uses_assistive_device is True

    def test_fall_exactly_30_days_ago_is_outside_window(self, source, context):
        source.fall_reports = [{"check_in_date": "2024-12-16T10:00:00.000Z"}]
        functional = _extract(FunctionalStatusExtractor, source, context)

        assert functional.falls_in_past_30_days == 0
        assert functional.falls_in_past_90_days == 1
        assert functional.has_recent_falls is True

    def test_missing_assessment(self, source, context):
        source.risk_assessment = None
        source.fall_reports = None
        functional = _extract(FunctionalStatusExtractor, source, context)

        assert functional.adl_dependencies == 0
        assert functional.has_cognitive_impairment is False
        assert functional.mobility_level == "independent"
        assert functional.fall_risk_score == 0


class TestEngagementExtractor:
    """Tests for check-in compliance, games and activity."""

    def test_golden_check_ins(self, source, context):
        engagement = _extract(EngagementExtractor, source, context)

        assert engagement.check_in_completion_rate_30_day == pytest.approx(25 / 30)
        assert engagement.check_in_completion_rate_7_day == pytest.approx(4 / 7)
        assert engagement.consecutive_missed_check_ins == 3
        assert engagement.stopped_responding is True
        assert engagement.has_engagement_drop is True
        assert engagement.health_alerts_triggered_30_day == 1
        assert engagement.critical_alerts_triggered == 0
        assert engagement.negative_mood_trend is False
        assert engagement.vitals_reporting_consistency == pytest.approx(1 / 7)
        assert engagement.missed_vitals_reports_7_day == 6

    def test_golden_games_and_activity(self, source, context):
        engagement = _extract(EngagementExtractor, source, context)

        assert engagement.trivia_participation_rate_30_day == pytest.approx(10 / 30)
        assert engagement.word_find_participation_rate_30_day == pytest.approx(8 / 30)
        assert engagement.game_engagement_score == 30
        assert engagement.game_engagement_declining is False
        assert engagement.community_interaction_score == 77
        assert engagement.days_with_zero_activity == 16
        assert engagement.social_engagement_declining is True
        assert engagement.overall_engagement_score == 52
        assert engagement.engagement_change_percent == pytest.approx(-25.51, abs=0.01)
        assert engagement.is_disengaging is True
        assert engagement.concerning_patterns == ("missed_vitals", "zero_activity")

    def test_pending_check_in_does_not_break_streak(self):
        """Only a completed check-in resets the missed streak."""
        rows = [
            {"status": "pending"},
            {"status": "missed"},
            {"status": "missed"},
            {"status": "completed"},
            {"status": "missed"},
        ]
        assert count_consecutive_missed(rows) == 2

    def test_no_check_in_data(self, source, context):
        source.check_ins = None
        source.engagement_metrics = []
        engagement = _extract(EngagementExtractor, source, context)

        assert engagement.check_in_completion_rate_30_day is None
        assert engagement.days_with_zero_activity == 30
        assert engagement.is_disengaging is True
        assert "no_games" not in engagement.concerning_patterns

    def test_no_recent_games_is_concerning(self, source, context):
        for row in source.engagement_metrics[:7]:
            row["trivia_played"] = False
            row["word_find_played"] = False
        engagement = _extract(EngagementExtractor, source, context)

        assert "no_games" in engagement.concerning_patterns

    def test_critical_alert_pattern(self, source, context):
        source.check_ins[4]["alert_severity"] = "critical"
        engagement = _extract(EngagementExtractor, source, context)

        assert engagement.critical_alerts_triggered == 1
        assert "critical_alerts" in engagement.concerning_patterns


class TestSelfReportedExtractor:
    """Tests for symptoms and self-reported vitals."""

    def test_golden_self_reported(self, source, context):
        reported = _extract(SelfReportedExtractor, source, context)

        assert reported.has_red_flag_symptoms is True
        assert reported.red_flag_symptoms_list == ("shortness of breath",)
        assert reported.symptom_count_30_day == 1
        assert reported.self_reported_bp_trend_concerning is False
        assert reported.self_reported_blood_sugar_unstable is False
        assert reported.self_reported_weight_change_concerning is False
        assert reported.family_contact_decreasing is True
        assert reported.days_home_alone_30_day == 0

    def test_parse_blood_pressure(self):
        assert parse_blood_pressure("145/92") == (145, 92)
        assert parse_blood_pressure(" 130 / 85 mmHg") == (130, 85)
        assert parse_blood_pressure("120") == (120, None)

    def test_latest_blood_pressure_is_used(self, source, context):
        source.check_ins[3]["responses"]["blood_pressure"] = "172/95"
        reported = _extract(SelfReportedExtractor, source, context)

        assert reported.self_reported_bp_trend_concerning is True

    def test_unstable_blood_sugar(self, source, context):
        source.check_ins[3]["responses"]["blood_sugar"] = "260 mg/dL"
        reported = _extract(SelfReportedExtractor, source, context)

        assert reported.self_reported_blood_sugar_unstable is True

    def test_weight_change_uses_last_reading_as_base(self, source, context):
        """|200 - 190| = 10 exceeds 5% of 190."""
        source.check_ins[3]["responses"]["weight"] = "200 lbs"
        source.check_ins[9]["responses"]["weight"] = "190"
        reported = _extract(SelfReportedExtractor, source, context)

        assert reported.self_reported_weight_change_concerning is True

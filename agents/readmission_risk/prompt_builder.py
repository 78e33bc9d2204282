"""
Readmission Risk Agent - Judge Prompt Builder

Serializes the feature vector into the brief sent to the predictive judge.

================================================================================
PROMPT STRUCTURE
================================================================================

SYSTEM PROMPT
    Role, every evidence weight of the active model config, RUCA rurality
    weights and the strict JSON response schema.

USER BRIEF (one section per domain)
    DISCHARGE INFORMATION / CLINICAL / MEDICATION / POST-DISCHARGE /
    SOCIAL DETERMINANTS / FUNCTIONAL / ENGAGEMENT / SELF-REPORTED /
    DATA QUALITY / TASK

High-impact findings are called out on their own line with a "WARNING:" or
"CRITICAL:" prefix and their weight, so the judge cannot miss them.

Weights are ALWAYS rendered from the model config; never hard-code a number
in this module.

================================================================================
"""

from __future__ import annotations

from typing import List

from .features import DischargeContext, FeatureVector
from .model_config import ReadmissionModelConfig

RUCA_LABELS = (
    ("urban", "Urban (RUCA 1-3)"),
    ("large_rural", "Large rural town (RUCA 4-6)"),
    ("small_rural", "Small rural town (RUCA 7-9)"),
    ("isolated_rural", "Isolated rural / frontier (RUCA 10)"),
)

RESPONSE_SCHEMA = """{
  "readmissionRisk30Day": 0.65,
  "readmissionRisk7Day": 0.35,
  "readmissionRisk90Day": 0.75,
  "riskCategory": "high",
  "riskFactors": [
    {"factor": "3 readmissions in past 90 days", "weight": 0.35, "category": "utilization_history", "evidence": "..."},
    {"factor": "Housing instability", "weight": 0.20, "category": "social_determinants", "evidence": "..."}
  ],
  "protectiveFactors": [
    {"factor": "Strong family support", "impact": "Reduces risk by 15%", "category": "social_support"}
  ],
  "recommendedInterventions": [
    {"intervention": "Daily nurse check-ins for 14 days", "priority": "high", "estimatedImpact": 0.25, "timeframe": "daily for 14 days", "responsible": "care_coordinator"}
  ],
  "predictedReadmissionDate": "2025-12-01",
  "predictionConfidence": 0.85
}"""


def _w(value: float) -> str:
    return f"{value:.2f}"


def _pct(rate: float) -> str:
    return f"{rate * 100:.0f}%"


def _yes(flag, yes: str = "YES", no: str = "No") -> str:
    return yes if flag else no


class PromptBuilder:
    """Builds the system prompt and the per-discharge user brief."""

    def __init__(self, config: ReadmissionModelConfig) -> None:
        self.config = config

    # -------------------------------------------------------------------------
    # System prompt
    # -------------------------------------------------------------------------

    def build_system_prompt(self) -> str:
        w = self.config.weights
        c, m, p, s = w.clinical, w.medications, w.post_discharge, w.social
        f, cs, e = w.functional, w.clinical_secondary, w.engagement

        ruca_lines = "\n".join(
            f"- {label}: {self.config.ruca_prompt_weight(key)}" for key, label in RUCA_LABELS
        )

        return f"""You are an expert clinical analyst specializing in readmission risk prediction for a rural community healthcare program.

EVIDENCE-BASED FEATURE WEIGHTING:
Use these validated predictive weights when assessing risk:

CLINICAL FACTORS (Highest Weight):
- Prior admissions in 30 days: {_w(c.prior_admissions_30_day)} (STRONGEST predictor)
- Prior admissions in 90 days: {_w(c.prior_admissions_90_day)}
- ED visits in 6 months: {_w(c.ed_visits_6_month)}
- Comorbidity count: {_w(c.comorbidity_count)}
- High-risk diagnosis (CHF, COPD, diabetes, renal failure): {_w(c.high_risk_diagnosis)}
- Length of stay outside normal range: {_w(cs.length_of_stay)}
- Stable vitals at discharge: {_w(cs.vitals_stable)} (PROTECTIVE)
- Concerning lab trends at discharge: {_w(cs.lab_trends_concerning)}

POST-DISCHARGE SETUP (Critical):
- No follow-up scheduled: {_w(p.no_follow_up)} (HIGH RISK)
- Follow-up within 7 days: {_w(p.follow_up_within_7_days)} (PROTECTIVE)
- No PCP assigned: risk factor
- Pending test results at discharge: risk factor

SOCIAL DETERMINANTS (Rural Population Focus):
- Transportation barriers: {_w(s.transportation_barrier)}
- Lives alone with no caregiver: {_w(s.lives_alone)}
- Rural isolation: {_w(s.rural_location)}
- Low health literacy: {_w(s.low_health_literacy)}
- Financial barriers to medications: significant risk

RURALITY (RUCA classification, added risk weight):
{ruca_lines}

MEDICATIONS:
- Polypharmacy ({self.config.medication.polypharmacy}+ meds): {_w(m.polypharmacy)}
- High-risk medications (anticoagulants, insulin, opioids, immunosuppressants): {_w(m.high_risk_meds)}
- No prescription filled within {self.config.medication.prescription_fill_window_days} days: {_w(m.no_prescription_filled)}
- Significant medication changes during admission: risk factor

FUNCTIONAL STATUS:
- ADL dependencies: {_w(f.adl_dependencies)}
- Recent falls (90 days): {_w(f.recent_falls)}
- Cognitive impairment: {_w(f.cognitive_impairment)}

ENGAGEMENT & BEHAVIORAL (Early Warning System):
- Consecutive missed check-ins (>={self.config.engagement.consecutive_missed_concern}): {_w(e.consecutive_missed)}
- Sudden engagement drop: {_w(e.engagement_drop)}
- Game participation declining: {_w(e.game_declining)}
- Days with zero activity: {_w(e.days_zero_activity)}
- Red flag symptoms (chest pain, SOB): {_w(e.red_flag_symptoms)}
- Negative mood trend: {_w(e.negative_mood)}
- Complete disengagement: {_w(e.is_disengaging)}
- Stopped responding: {_w(e.stopped_responding)} (CRITICAL)

CRITICAL: Daily engagement data provides EARLY WARNING signals 7-14 days before clinical deterioration.
A sudden drop in check-in compliance, game participation, or social engagement is a powerful predictor.

Your predictions directly impact patient care. Be thorough, evidence-based, and accurate.

Return response as strict JSON with this structure:
{RESPONSE_SCHEMA}"""

    # -------------------------------------------------------------------------
    # User brief
    # -------------------------------------------------------------------------

    def build_prompt(self, context: DischargeContext, features: FeatureVector) -> str:
        lines: List[str] = [
            f"Predict 30-day readmission risk for patient discharged on {context.discharge_date}:",
            "",
        ]
        self._discharge_section(lines, context, features)
        self._clinical_section(lines, features)
        self._medication_section(lines, features)
        self._post_discharge_section(lines, features)
        self._social_section(lines, features)
        self._functional_section(lines, features)
        self._engagement_section(lines, features)
        self._self_reported_section(lines, features)
        self._data_quality_section(lines, features)
        self._task_section(lines)
        return "\n".join(lines)

    def _discharge_section(self, lines, context: DischargeContext, features: FeatureVector) -> None:
        clinical = features.clinical
        lines.append("=== DISCHARGE INFORMATION ===")
        lines.append(f"- Facility: {context.discharge_facility}")
        lines.append(f"- Disposition: {context.discharge_disposition}")
        if context.primary_diagnosis_description:
            lines.append(
                f"- Primary Diagnosis: {context.primary_diagnosis_description} "
                f"({context.primary_diagnosis_code})"
            )
            lines.append(
                "- High-Risk Diagnosis: "
                + _yes(clinical.is_high_risk_diagnosis, "YES (CHF/COPD/Diabetes/Renal)")
            )
        if context.secondary_diagnoses:
            lines.append(f"- Secondary Diagnoses: {', '.join(context.secondary_diagnoses)}")
        if context.length_of_stay:
            lines.append(
                f"- Length of Stay: {context.length_of_stay:g} days "
                f"({clinical.length_of_stay_category})"
            )

    def _clinical_section(self, lines, features: FeatureVector) -> None:
        clinical = features.clinical
        w = self.config.weights

        lines.append("")
        lines.append("=== CLINICAL FACTORS (Highest Predictive Weight) ===")
        lines.append("UTILIZATION HISTORY (STRONGEST predictors):")
        lines.append(
            f"- Prior admissions (30 days): {self._known(clinical.prior_admissions_30_day)} "
            f"[Weight: {_w(w.clinical.prior_admissions_30_day)}]"
        )
        lines.append(
            f"- Prior admissions (90 days): {self._known(clinical.prior_admissions_90_day)} "
            f"[Weight: {_w(w.clinical.prior_admissions_90_day)}]"
        )
        lines.append(
            f"- ED visits (6 months): {self._known(clinical.ed_visits_6_month)} "
            f"[Weight: {_w(w.clinical.ed_visits_6_month)}]"
        )

        lines.append("")
        lines.append("COMORBIDITIES:")
        lines.append(
            f"- Total comorbidities: {self._known(clinical.comorbidity_count)} "
            f"[Weight: {_w(w.clinical.comorbidity_count)}]"
        )
        lines.append(f"- CHF: {_yes(clinical.has_chf)}")
        lines.append(f"- COPD: {_yes(clinical.has_copd)}")
        lines.append(f"- Diabetes: {_yes(clinical.has_diabetes)}")
        lines.append(f"- Renal Failure: {_yes(clinical.has_renal_failure)}")
        if clinical.has_cancer:
            lines.append("- Cancer: YES")

        if clinical.systolic_bp_at_discharge or clinical.labs_within_normal_limits is not None:
            lines.append("")
            lines.append("VITALS & LABS AT DISCHARGE:")
            lines.append(
                "- Vitals stable: "
                + _yes(clinical.vital_signs_stable_at_discharge, "YES (protective)", "NO (risk factor)")
            )
            if clinical.systolic_bp_at_discharge:
                lines.append(
                    f"- BP: {clinical.systolic_bp_at_discharge:g}/"
                    f"{self._known(clinical.diastolic_bp_at_discharge)}"
                )
            if clinical.oxygen_saturation_at_discharge:
                lines.append(f"- O2 Sat: {clinical.oxygen_saturation_at_discharge:g}%")
            lines.append(f"- Labs within normal limits: {_yes(clinical.labs_within_normal_limits, 'Yes')}")
            lines.append(
                f"- Lab trends concerning: {_yes(clinical.lab_trends_concerning, 'YES (risk)')} "
                f"[Weight: {_w(w.clinical_secondary.lab_trends_concerning)}]"
            )

    def _medication_section(self, lines, features: FeatureVector) -> None:
        med = features.medication
        w = self.config.weights.medications

        lines.append("")
        lines.append("=== MEDICATION FACTORS ===")
        lines.append(f"- Active medications: {self._known(med.active_medication_count)}")
        lines.append(
            f"- Polypharmacy ({self.config.medication.polypharmacy}+ meds): "
            + _yes(med.is_polypharmacy, f"YES [Weight: {_w(w.polypharmacy)}]")
        )
        lines.append(
            "- High-risk medications: "
            + _yes(med.has_high_risk_medications, f"YES [Weight: {_w(w.high_risk_meds)}]")
        )
        if med.high_risk_medication_list:
            lines.append(f"  Classes: {', '.join(med.high_risk_medication_list)}")
        if med.significant_medication_changes:
            lines.append("- Significant medication changes during admission: YES (risk factor)")
        filled = "Unknown" if med.prescription_filled_within_3_days is None else _yes(
            med.prescription_filled_within_3_days, "Yes"
        )
        lines.append(
            f"- Prescription filled within "
            f"{self.config.medication.prescription_fill_window_days} days: {filled}"
        )
        if med.no_prescription_filled:
            lines.append(
                f"  WARNING: NO prescription filled [Weight: {_w(w.no_prescription_filled)} - HIGH RISK]"
            )

    def _post_discharge_section(self, lines, features: FeatureVector) -> None:
        post = features.post_discharge
        w = self.config.weights.post_discharge

        lines.append("")
        lines.append("=== POST-DISCHARGE SETUP (Critical for Success) ===")
        if post.no_follow_up_scheduled:
            lines.append(f"WARNING: NO FOLLOW-UP SCHEDULED [Weight: {_w(w.no_follow_up)} - HIGH RISK]")
        elif post.follow_up_scheduled is None:
            lines.append("- Follow-up scheduled: Unknown")
        else:
            lines.append("- Follow-up scheduled: YES")
            lines.append(f"- Days until follow-up: {self._known(post.days_until_follow_up)}")
            lines.append(
                "- Within 7 days: "
                + _yes(
                    post.follow_up_within_7_days,
                    f"YES [Weight: {_w(w.follow_up_within_7_days)} PROTECTIVE]",
                    "NO (risk)",
                )
            )
        lines.append(f"- PCP assigned: {_yes(post.has_pcp_assigned, 'Yes', 'NO (risk factor)')}")
        lines.append(f"- Discharge destination: {post.discharge_destination}")
        if post.discharge_to_home_alone:
            lines.append("  WARNING: Discharging home ALONE (risk factor)")
        if post.has_pending_test_results:
            lines.append("- Pending test results: YES (risk factor)")
            lines.append(f"  Tests: {', '.join(post.pending_test_results_list)}")

    def _social_section(self, lines, features: FeatureVector) -> None:
        social = features.social_determinants
        w = self.config.weights.social

        lines.append("")
        lines.append("=== SOCIAL DETERMINANTS (Rural Population Focus) ===")
        if social.lives_alone is None:
            lines.append("- Lives alone: Unknown")
        else:
            lines.append(f"- Lives alone: {_yes(social.lives_alone, f'YES [Weight: {_w(w.lives_alone)}]')}")
        lines.append(f"- Has caregiver: {_yes(social.has_caregiver, 'Yes (protective)', 'NO (risk)')}")
        if social.has_transportation_barrier:
            lines.append(f"WARNING: TRANSPORTATION BARRIER [Weight: {_w(w.transportation_barrier)}]")
            if social.distance_to_nearest_hospital_miles:
                lines.append(
                    f"  Distance to hospital: {social.distance_to_nearest_hospital_miles:g} miles"
                )
            if social.distance_to_pcp_miles:
                lines.append(f"  Distance to PCP: {social.distance_to_pcp_miles:g} miles")
            if social.estimated_drive_time_minutes:
                lines.append(f"  Estimated drive time: {social.estimated_drive_time_minutes:.0f} minutes")
        if social.is_rural_location:
            lines.append(f"WARNING: RURAL LOCATION [Weight: {_w(w.rural_location)}]")
            lines.append(
                f"  RUCA category: {social.ruca_category} "
                f"(added weight {self.config.ruca_prompt_weight(social.ruca_category)})"
            )
            lines.append(f"  Rural isolation score: {social.rural_isolation_score}/10")
            lines.append(f"  Distance-to-care risk weight: {_w(social.distance_to_care_risk_weight)}")
        if social.is_in_healthcare_shortage_area:
            lines.append("- Health Professional Shortage Area: YES")
        lines.append(f"- Insurance: {social.insurance_type}")
        if social.has_medicaid or social.has_insurance_gaps:
            barriers = []
            if social.financial_barriers_to_medications:
                barriers.append("Medications")
            if social.financial_barriers_to_follow_up:
                barriers.append("Follow-up")
            lines.append(f"  Financial barriers: {', '.join(barriers) or 'None reported'}")
        elif social.financial_barriers_to_medications:
            lines.append("- Financial barrier to medications: YES")
        if social.low_health_literacy:
            lines.append(f"- Low health literacy [Weight: {_w(w.low_health_literacy)}]")
        if social.language_barrier or social.interpreter_needed:
            lines.append("- Language barrier / interpreter needed: YES")
        lines.append(f"- Socially isolated: {_yes(social.socially_isolated, 'YES (risk)')}")

    def _functional_section(self, lines, features: FeatureVector) -> None:
        func = features.functional_status
        w = self.config.weights.functional

        lines.append("")
        lines.append("=== FUNCTIONAL STATUS ===")
        if func.adl_dependencies > 0:
            lines.append(f"- ADL dependencies: {func.adl_dependencies} [Weight: {_w(w.adl_dependencies)}]")
        if func.needs_help_with_medications:
            lines.append("- Needs help managing medications: YES")
        if func.has_cognitive_impairment:
            lines.append(
                f"- Cognitive impairment: {func.cognitive_impairment_severity} "
                f"[Weight: {_w(w.cognitive_impairment)}]"
            )
        if func.has_recent_falls:
            lines.append(
                f"- Recent falls: {func.falls_in_past_90_days} in 90 days "
                f"[Weight: {_w(w.recent_falls)}]"
            )
            lines.append(f"  Fall risk score: {func.fall_risk_score}/10")
        lines.append(f"- Mobility: {func.mobility_level}")

    def _engagement_section(self, lines, features: FeatureVector) -> None:
        eng = features.engagement
        w = self.config.weights.engagement
        thresholds = self.config.engagement

        lines.append("")
        lines.append("=== ENGAGEMENT & BEHAVIORAL (EARLY WARNING System) ===")
        lines.append("CHECK-IN COMPLIANCE:")
        if eng.check_in_completion_rate_30_day is None:
            lines.append("- 30-day completion rate: Unknown (no check-in data)")
        else:
            lines.append(f"- 30-day completion rate: {_pct(eng.check_in_completion_rate_30_day)}")
        lines.append(f"- 7-day completion rate: {_pct(eng.check_in_completion_rate_7_day)}")
        if eng.consecutive_missed_check_ins >= thresholds.consecutive_missed_concern:
            lines.append(
                f"WARNING: CONSECUTIVE MISSED CHECK-INS: {eng.consecutive_missed_check_ins} "
                f"[Weight: {_w(w.consecutive_missed)}]"
            )
        if eng.has_engagement_drop:
            lines.append(
                f"WARNING: SUDDEN ENGAGEMENT DROP ({thresholds.engagement_drop * 100:.0f}% decline) "
                f"[Weight: {_w(w.engagement_drop)} - CRITICAL]"
            )
        if eng.stopped_responding:
            lines.append(
                f"CRITICAL: PATIENT STOPPED RESPONDING "
                f"[Weight: {_w(w.stopped_responding)} - HIGHEST BEHAVIORAL RISK]"
            )

        lines.append("")
        lines.append("GAME PARTICIPATION (Cognitive Engagement):")
        lines.append(f"- Trivia participation: {_pct(eng.trivia_participation_rate_30_day)}")
        lines.append(f"- Word find participation: {_pct(eng.word_find_participation_rate_30_day)}")
        lines.append(f"- Overall game engagement: {eng.game_engagement_score}/100")
        if eng.game_engagement_declining:
            lines.append(f"WARNING: GAME ENGAGEMENT DECLINING [Weight: {_w(w.game_declining)}]")

        lines.append("")
        lines.append("SOCIAL & COMMUNITY ENGAGEMENT:")
        lines.append(f"- Community interaction score: {eng.community_interaction_score}/100")
        if eng.days_with_zero_activity > thresholds.zero_activity_concern:
            lines.append(
                f"WARNING: DAYS WITH ZERO ACTIVITY: {eng.days_with_zero_activity} "
                f"[Weight: {_w(w.days_zero_activity)}]"
            )
        if eng.social_engagement_declining:
            lines.append("- Social engagement: DECLINING (risk factor)")

        lines.append("")
        lines.append("HEALTH ALERTS:")
        lines.append(f"- Alerts triggered (30 days): {eng.health_alerts_triggered_30_day}")
        if eng.critical_alerts_triggered > 0:
            lines.append(f"WARNING: CRITICAL ALERTS: {eng.critical_alerts_triggered}")
        if eng.vitals_reporting_consistency < thresholds.vitals_consistency:
            lines.append(
                f"- Vitals reporting consistency (7 days): {_pct(eng.vitals_reporting_consistency)} "
                f"(below {_pct(thresholds.vitals_consistency)} target)"
            )

        lines.append("")
        lines.append("OVERALL ENGAGEMENT:")
        lines.append(f"- Overall engagement score: {eng.overall_engagement_score}/100")
        lines.append(f"- Engagement change: {eng.engagement_change_percent:.0f}%")
        if eng.is_disengaging:
            lines.append(
                f"CRITICAL: PATIENT IS DISENGAGING [Weight: {_w(w.is_disengaging)} - CRITICAL EARLY WARNING]"
            )
        if eng.concerning_patterns:
            lines.append(f"- Concerning patterns: {', '.join(eng.concerning_patterns)}")

    def _self_reported_section(self, lines, features: FeatureVector) -> None:
        sr = features.self_reported
        w = self.config.weights.engagement

        if sr.has_red_flag_symptoms:
            lines.append("")
            lines.append("=== SELF-REPORTED HEALTH (Patient Perspective) ===")
            lines.append(f"CRITICAL: RED FLAG SYMPTOMS REPORTED [Weight: {_w(w.red_flag_symptoms)}]:")
            for symptom in sr.red_flag_symptoms_list:
                lines.append(f"  - {symptom}")
        if sr.symptom_count_30_day > 0:
            lines.append("")
            lines.append(f"RECENT SYMPTOMS (30 days): {sr.symptom_count_30_day}")
        if sr.negative_mood_trend:
            lines.append(f"WARNING: NEGATIVE MOOD TREND [Weight: {_w(w.negative_mood)}]")
        if sr.self_reported_bp_trend_concerning or sr.self_reported_blood_sugar_unstable:
            lines.append(
                f"- Concerning vital trends: BP {_yes(sr.self_reported_bp_trend_concerning)}, "
                f"Blood sugar {_yes(sr.self_reported_blood_sugar_unstable)}"
            )
        if sr.self_reported_weight_change_concerning:
            lines.append("- Weight change >5% reported: YES")
        complaints = [
            label
            for label, flag in (
                ("mobility declining", sr.mobility_declining),
                ("pain increasing", sr.pain_increasing),
                ("fatigue increasing", sr.fatigue_increasing),
            )
            if flag
        ]
        if complaints:
            lines.append(f"- Symptom trends: {', '.join(complaints)}")
        if sr.missed_medications_days_30_day > 0:
            lines.append(f"- Missed medications: {sr.missed_medications_days_30_day} days")
        if sr.days_home_alone_30_day > self.config.self_reported.days_home_alone:
            lines.append(f"- Days home alone: {sr.days_home_alone_30_day}/30")

    def _data_quality_section(self, lines, features: FeatureVector) -> None:
        lines.append("")
        lines.append("=== DATA QUALITY ===")
        lines.append(f"- Data completeness: {features.data_completeness_score}%")
        if features.missing_critical_data:
            lines.append(f"- Missing critical data: {', '.join(features.missing_critical_data)}")
            lines.append("  (Note: Lower confidence when critical data missing)")

    @staticmethod
    def _task_section(lines) -> None:
        lines.extend([
            "",
            "=== TASK ===",
            "Analyze ALL factors above using the evidence-based weights provided.",
            "Pay special attention to:",
            "1. Prior admissions (strongest predictor)",
            "2. Engagement patterns (early warning)",
            "3. Post-discharge setup (follow-up timing is critical)",
            "4. Rural/social barriers",
            "",
            "Provide comprehensive 30-day readmission risk prediction with:",
            "- Risk scores (7-day, 30-day, 90-day)",
            "- Risk category (low/moderate/high/critical)",
            "- Specific risk factors with weights",
            "- Protective factors",
            "- Prioritized interventions",
            "- Prediction confidence",
        ])

    @staticmethod
    def _known(value) -> str:
        if value is None:
            return "Unknown"
        if isinstance(value, float):
            return f"{value:g}"
        return str(value)

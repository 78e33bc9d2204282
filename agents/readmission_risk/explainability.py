"""
Readmission Risk Agent - Explainability Engine

Re-derives risk and protective factors straight from the feature vector and
the model-config weights, independently of the factors the judge reports.
Clinicians and auditors use this to sanity-check the judge.

================================================================================
OUTPUTS
================================================================================

1. RISK SUMMARY (clinician-facing)
   - Top 5 risk factors by absolute weight, with explanation and evidence
   - Protective factors (negative weight)
   - Data quality verdict: >= 80% complete is "high", >= 60% "medium"
   - Deduplicated recommendations from the top 5 risk factors

2. PATIENT SUMMARY
   - Bullets by category for the top 3 risk factors plus "good news" lines

3. PLAIN-LANGUAGE NARRATIVE (stored on the prediction)
   - Opening sentence naming the risk category
   - One sentence for each of the top 3 risk factors
   - The strongest protective factor as good news
   - One closing action picked by a fixed priority order

Nothing here changes the prediction itself.

================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .features import FeatureVector
from .model_config import ReadmissionModelConfig
from .utils import score_completeness


# =============================================================================
# RISK FACTOR EXPLANATIONS
# =============================================================================

RISK_EXPLANATIONS: Dict[str, Tuple[str, Optional[str]]] = {
    # Clinical
    "prior_admissions_30_day": (
        "Recent hospital admission within 30 days is the strongest predictor of readmission",
        "CMS Hospital Readmissions Reduction Program",
    ),
    "prior_admissions_90_day": (
        "Multiple hospitalizations in 90 days indicates unstable health status",
        "Jencks et al., NEJM 2009",
    ),
    "ed_visits_6_month": (
        "Frequent ED visits suggest difficulty managing conditions at home",
        "AHRQ Quality Indicators",
    ),
    "comorbidity_count": (
        "Multiple chronic conditions increase complexity and readmission risk",
        "Charlson Comorbidity Index",
    ),
    "is_high_risk_diagnosis": (
        "CHF, COPD, diabetes, and renal failure have highest readmission rates",
        "CMS Hospital Compare",
    ),
    "lab_trends_concerning": (
        "Abnormal lab values at discharge indicate incomplete stabilization",
        "Clinical guidelines",
    ),
    "vital_signs_stable_at_discharge": (
        "Stable vital signs at discharge indicate clinical readiness",
        "Clinical assessment guidelines",
    ),
    # Medications
    "is_polypharmacy": (
        "5+ medications increases risk of interactions and adherence issues",
        "WHO Medication Safety Report",
    ),
    "has_high_risk_medications": (
        "Anticoagulants, insulin, opioids require careful monitoring",
        "ISMP High-Alert Medications",
    ),
    "no_prescription_filled": (
        "Unfilled prescriptions prevent proper treatment continuation",
        "Pharmacy claims data analysis",
    ),
    # Post-discharge
    "no_follow_up_scheduled": (
        "No follow-up appointment leaves patients without clinical monitoring",
        "Transitional Care Model",
    ),
    "follow_up_within_7_days": (
        "Early follow-up catches deterioration before it requires rehospitalization",
        "AHRQ Care Transitions",
    ),
    # Social
    "has_transportation_barrier": (
        "Transportation barriers prevent follow-up attendance and pharmacy access",
        "SDOH research",
    ),
    "lives_alone": (
        "Living alone means no immediate help if symptoms worsen",
        "Social support studies",
    ),
    "is_rural_location": (
        "Rural patients face longer travel times and limited healthcare access",
        "Rural Health Research",
    ),
    "low_health_literacy": (
        "Low health literacy affects understanding of discharge instructions",
        "Health Literacy Universal Precautions",
    ),
    # Functional
    "adl_dependencies": (
        "Difficulty with daily activities indicates need for support services",
        "Katz ADL Index",
    ),
    "has_recent_falls": (
        "Fall history indicates frailty and injury risk",
        "CDC STEADI program",
    ),
    "has_cognitive_impairment": (
        "Cognitive issues affect medication management and symptom recognition",
        "Dementia care guidelines",
    ),
    # Engagement
    "is_disengaging": (
        "Sudden drop in engagement often precedes clinical deterioration",
        "WellFit behavioral data analysis",
    ),
    "stopped_responding": (
        "No response for 3+ days is a critical warning sign",
        "WellFit early warning system",
    ),
    "consecutive_missed_check_ins": (
        "Missed check-ins may indicate health decline or social withdrawal",
        "WellFit engagement patterns",
    ),
    "has_engagement_drop": (
        "Significant engagement decline correlates with health status change",
        "WellFit longitudinal analysis",
    ),
}

RECOMMENDATIONS: Dict[str, str] = {
    "prior_admissions_30_day": "Intensive transitional care management recommended",
    "prior_admissions_90_day": "Intensive transitional care management recommended",
    "no_follow_up_scheduled": "Schedule follow-up appointment within 7 days of discharge",
    "has_transportation_barrier": "Arrange transportation assistance or telehealth visits",
    "is_polypharmacy": "Medication reconciliation and pharmacist consultation",
    "has_high_risk_medications": "Close monitoring of high-risk medications with dosing education",
    "lives_alone": "Consider home health services or daily check-in program",
    "is_rural_location": "Establish telehealth follow-up and local support resources",
    "has_cognitive_impairment": "Ensure caregiver receives discharge instructions and medication training",
    "is_disengaging": "URGENT: Immediate welfare check and care team outreach",
    "stopped_responding": "URGENT: Immediate welfare check and care team outreach",
    "no_prescription_filled": "Confirm prescription access and affordability",
}

PATIENT_CATEGORY_BULLETS: Dict[str, str] = {
    "clinical": "• Your recent health history means staying in close contact with your doctor is important",
    "medication": "• Taking your medications correctly is key - ask if you have any questions",
    "post_discharge": "• Making it to your follow-up appointments helps us catch problems early",
    "social": "• Having support at home and a way to get to appointments makes a big difference",
    "functional": "• Being careful with daily activities and asking for help when needed keeps you safe",
    "engagement": "• Checking in regularly helps us know how you're doing",
}

PATIENT_GOOD_NEWS: Dict[str, str] = {
    "follow_up_within_7_days": "• Your follow-up appointment is scheduled soon",
    "vital_signs_stable_at_discharge": "• Your vital signs looked good when you left",
}

# Narrative fragments, written at roughly a 6th-grade reading level
NARRATIVE_OPENINGS: Dict[str, str] = {
    "low": "Your chance of going back to the hospital in the next 30 days is low.",
    "moderate": "You have a moderate chance of going back to the hospital in the next 30 days.",
    "high": "You have a high chance of going back to the hospital in the next 30 days.",
    "critical": "You have a very high chance of going back to the hospital in the next 30 days.",
}
DEFAULT_OPENING = (
    "We looked at your health information to see how likely you are to need "
    "the hospital again soon."
)

NARRATIVE_FACTORS: Dict[str, str] = {
    "prior_admissions_30_day": "You were in the hospital recently, and that can make it more likely to go back.",
    "prior_admissions_90_day": "You have been in the hospital more than once in the last few months.",
    "ed_visits_6_month": "You have visited the emergency room several times this year.",
    "comorbidity_count": "You are managing several long-term health conditions at once.",
    "is_high_risk_diagnosis": "Your main health condition often needs extra care after you go home.",
    "lab_trends_concerning": "Some of your lab tests were not yet back to normal when you left.",
    "is_polypharmacy": "You take many medicines, which can be hard to keep track of.",
    "has_high_risk_medications": "Some of your medicines need to be watched closely.",
    "no_prescription_filled": "Some of your prescriptions have not been picked up yet.",
    "no_follow_up_scheduled": "You do not have a follow-up visit with a doctor scheduled yet.",
    "has_transportation_barrier": "Getting rides to appointments may be hard for you.",
    "lives_alone": "You live alone, so help may not be close by if you feel worse.",
    "is_rural_location": "You live far from a hospital or clinic.",
    "low_health_literacy": "Some health instructions may be hard to understand.",
    "adl_dependencies": "You need some help with everyday tasks like bathing or dressing.",
    "has_recent_falls": "You have fallen recently.",
    "has_cognitive_impairment": "Memory or thinking problems can make it harder to manage your care.",
    "is_disengaging": "You have been less active with your daily check-ins and activities lately.",
    "stopped_responding": "We have not heard from you in a few days.",
    "consecutive_missed_check_ins": "You have missed several daily check-ins in a row.",
    "has_engagement_drop": "You have been checking in less often than before.",
}

NARRATIVE_GOOD_NEWS: Dict[str, str] = {
    "follow_up_within_7_days": "Good news: you already have a follow-up visit scheduled soon.",
    "vital_signs_stable_at_discharge": "Good news: your vital signs were stable when you left the hospital.",
}

CLOSING_NO_FOLLOW_UP = "Please call your doctor's office to schedule a follow-up visit within 7 days."
CLOSING_MISSED_CHECK_INS = "Please try to complete your daily check-in so your care team knows how you are doing."
CLOSING_TRANSPORTATION = "Ask your care team about help getting rides to your appointments."
CLOSING_LIVES_ALONE = "Ask a family member or friend to check on you each day while you recover."
CLOSING_ESCALATED = "Your care team will be reaching out to help you stay safe at home."
CLOSING_DEFAULT = "Keep taking your medicines as prescribed and go to your follow-up appointments."


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class RiskFactor:
    """
    A factor re-derived from the feature vector.

    Attributes:
        name: Feature name (snake_case field of the domain record)
        category: clinical, medication, post_discharge, social, functional,
            engagement or self_reported
        value: The feature value that triggered the factor
        weight: Signed evidence weight (negative = protective)
        explanation: Clinician-facing explanation
        evidence: Guideline or study reference
        is_protective: True when the factor lowers risk
    """
    name: str
    category: str
    value: Any
    weight: float
    explanation: str
    evidence: Optional[str] = None
    is_protective: bool = False

    def to_dict(self) -> Dict[str, Any]:
        value = list(self.value) if isinstance(self.value, tuple) else self.value
        return {
            "name": self.name,
            "category": self.category,
            "value": value,
            "weight": self.weight,
            "explanation": self.explanation,
            "evidence": self.evidence,
            "is_protective": self.is_protective,
        }


@dataclass(frozen=True)
class DataQuality:
    completeness: int
    missing_fields: Tuple[str, ...]
    confidence: str  # high, medium, low

    def to_dict(self) -> Dict[str, Any]:
        return {
            "completeness": self.completeness,
            "missing_fields": list(self.missing_fields),
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class RiskSummary:
    top_risk_factors: Tuple[RiskFactor, ...]
    protective_factors: Tuple[RiskFactor, ...]
    data_quality: DataQuality
    recommendations: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "top_risk_factors": [f.to_dict() for f in self.top_risk_factors],
            "protective_factors": [f.to_dict() for f in self.protective_factors],
            "data_quality": self.data_quality.to_dict(),
            "recommendations": list(self.recommendations),
        }


# =============================================================================
# ENGINE
# =============================================================================

class ExplainabilityEngine:
    """
    Table-driven explanations over a FeatureVector.

    Weights come from the injected model config, so a new config version
    changes the ranking without touching this module.
    """

    TOP_RISK_FACTORS = 5
    NARRATIVE_FACTORS = 3

    def __init__(self, config: ReadmissionModelConfig):
        self.config = config

    def _factor(
        self,
        name: str,
        category: str,
        value: Any,
        weight: float,
        is_protective: bool = False,
    ) -> RiskFactor:
        explanation, evidence = RISK_EXPLANATIONS[name]
        return RiskFactor(
            name=name,
            category=category,
            value=value,
            weight=weight,
            explanation=explanation,
            evidence=evidence,
            is_protective=is_protective,
        )

    def get_all_risk_factors(self, features: FeatureVector) -> List[RiskFactor]:
        """Every risk and protective factor present in the feature vector, in table order."""
        w = self.config.weights
        clinical = features.clinical
        medication = features.medication
        post = features.post_discharge
        social = features.social_determinants
        functional = features.functional_status
        engagement = features.engagement

        factors: List[RiskFactor] = []

        # Clinical
        if (clinical.prior_admissions_30_day or 0) > 0:
            factors.append(self._factor(
                "prior_admissions_30_day", "clinical",
                clinical.prior_admissions_30_day, w.clinical.prior_admissions_30_day,
            ))
        if (clinical.prior_admissions_90_day or 0) > 0:
            factors.append(self._factor(
                "prior_admissions_90_day", "clinical",
                clinical.prior_admissions_90_day, w.clinical.prior_admissions_90_day,
            ))
        if (clinical.ed_visits_6_month or 0) > 0:
            factors.append(self._factor(
                "ed_visits_6_month", "clinical",
                clinical.ed_visits_6_month, w.clinical.ed_visits_6_month,
            ))
        if (clinical.comorbidity_count or 0) >= 3:
            factors.append(self._factor(
                "comorbidity_count", "clinical",
                clinical.comorbidity_count, w.clinical.comorbidity_count,
            ))
        if clinical.is_high_risk_diagnosis:
            factors.append(self._factor(
                "is_high_risk_diagnosis", "clinical", True, w.clinical.high_risk_diagnosis,
            ))
        if clinical.lab_trends_concerning:
            factors.append(self._factor(
                "lab_trends_concerning", "clinical", True,
                w.clinical_secondary.lab_trends_concerning,
            ))
        if clinical.vital_signs_stable_at_discharge:
            factors.append(self._factor(
                "vital_signs_stable_at_discharge", "clinical", True,
                w.clinical_secondary.vitals_stable, is_protective=True,
            ))

        # Medications
        if medication.is_polypharmacy:
            factors.append(self._factor(
                "is_polypharmacy", "medication",
                medication.active_medication_count, w.medications.polypharmacy,
            ))
        if medication.has_high_risk_medications:
            factors.append(self._factor(
                "has_high_risk_medications", "medication",
                medication.high_risk_medication_list, w.medications.high_risk_meds,
            ))
        if medication.no_prescription_filled:
            factors.append(self._factor(
                "no_prescription_filled", "medication", True,
                w.medications.no_prescription_filled,
            ))

        # Post-discharge
        if post.no_follow_up_scheduled:
            factors.append(self._factor(
                "no_follow_up_scheduled", "post_discharge", True, w.post_discharge.no_follow_up,
            ))
        if post.follow_up_within_7_days:
            factors.append(self._factor(
                "follow_up_within_7_days", "post_discharge", True,
                w.post_discharge.follow_up_within_7_days, is_protective=True,
            ))

        # Social
        if social.has_transportation_barrier:
            factors.append(self._factor(
                "has_transportation_barrier", "social", True, w.social.transportation_barrier,
            ))
        if social.lives_alone:
            factors.append(self._factor(
                "lives_alone", "social", True, w.social.lives_alone,
            ))
        if social.is_rural_location:
            factors.append(self._factor(
                "is_rural_location", "social", social.ruca_category, w.social.rural_location,
            ))
        if social.low_health_literacy:
            factors.append(self._factor(
                "low_health_literacy", "social",
                social.health_literacy_level, w.social.low_health_literacy,
            ))

        # Functional
        if functional.adl_dependencies > 0:
            factors.append(self._factor(
                "adl_dependencies", "functional",
                functional.adl_dependencies, w.functional.adl_dependencies,
            ))
        if functional.has_recent_falls:
            factors.append(self._factor(
                "has_recent_falls", "functional",
                functional.falls_in_past_90_days, w.functional.recent_falls,
            ))
        if functional.has_cognitive_impairment:
            factors.append(self._factor(
                "has_cognitive_impairment", "functional",
                functional.cognitive_impairment_severity, w.functional.cognitive_impairment,
            ))

        # Engagement
        if engagement.is_disengaging:
            factors.append(self._factor(
                "is_disengaging", "engagement", True, w.engagement.is_disengaging,
            ))
        if engagement.stopped_responding:
            factors.append(self._factor(
                "stopped_responding", "engagement",
                engagement.consecutive_missed_check_ins, w.engagement.stopped_responding,
            ))
        if engagement.consecutive_missed_check_ins >= self.config.engagement.consecutive_missed_concern:
            factors.append(self._factor(
                "consecutive_missed_check_ins", "engagement",
                engagement.consecutive_missed_check_ins, w.engagement.consecutive_missed,
            ))
        if engagement.has_engagement_drop:
            factors.append(self._factor(
                "has_engagement_drop", "engagement",
                engagement.engagement_change_percent, w.engagement.engagement_drop,
            ))

        return factors

    @staticmethod
    def _by_weight(factors: List[RiskFactor]) -> List[RiskFactor]:
        # sorted() is stable: equal weights keep table order
        return sorted(factors, key=lambda f: abs(f.weight), reverse=True)

    def _top_risk_factors(self, factors: List[RiskFactor]) -> List[RiskFactor]:
        return self._by_weight([f for f in factors if not f.is_protective])[: self.TOP_RISK_FACTORS]

    def assess_data_quality(self, features: FeatureVector) -> DataQuality:
        completeness, missing = score_completeness(features, self.config.completeness_fields)
        if completeness >= 80:
            confidence = "high"
        elif completeness >= 60:
            confidence = "medium"
        else:
            confidence = "low"
        return DataQuality(
            completeness=completeness,
            missing_fields=tuple(missing),
            confidence=confidence,
        )

    def generate_recommendations(self, factors: List[RiskFactor]) -> List[str]:
        """Actions for the top 5 risk factors, deduplicated in first-seen order."""
        recommendations: List[str] = []
        for factor in self._top_risk_factors(factors):
            action = RECOMMENDATIONS.get(factor.name)
            if action and action not in recommendations:
                recommendations.append(action)
        return recommendations

    def generate_risk_summary(self, features: FeatureVector) -> RiskSummary:
        all_factors = self.get_all_risk_factors(features)
        return RiskSummary(
            top_risk_factors=tuple(self._top_risk_factors(all_factors)),
            protective_factors=tuple(
                self._by_weight([f for f in all_factors if f.is_protective])
            ),
            data_quality=self.assess_data_quality(features),
            recommendations=tuple(self.generate_recommendations(all_factors)),
        )

    def generate_patient_summary(self, features: FeatureVector) -> str:
        """Patient-friendly bullets for the top 3 risk factors and any good news."""
        summary = self.generate_risk_summary(features)
        parts: List[str] = []

        if summary.top_risk_factors:
            parts.append(
                "Based on your health information, we want to help you stay well "
                "at home. Some things to focus on:"
            )
            for factor in summary.top_risk_factors[: self.NARRATIVE_FACTORS]:
                bullet = PATIENT_CATEGORY_BULLETS.get(factor.category)
                if bullet:
                    parts.append(bullet)

        if summary.protective_factors:
            parts.append("\nGood news - you have some things working in your favor:")
            for factor in summary.protective_factors:
                line = PATIENT_GOOD_NEWS.get(factor.name)
                if line:
                    parts.append(line)

        return "\n".join(parts)

    def generate_plain_language(self, features: FeatureVector, risk_category: str) -> str:
        """Narrative explanation stored with the prediction."""
        all_factors = self.get_all_risk_factors(features)
        sentences = [NARRATIVE_OPENINGS.get(risk_category, DEFAULT_OPENING)]

        for factor in self._top_risk_factors(all_factors)[: self.NARRATIVE_FACTORS]:
            sentence = NARRATIVE_FACTORS.get(factor.name)
            if sentence:
                sentences.append(sentence)

        protective = self._by_weight([f for f in all_factors if f.is_protective])
        for factor in protective:
            good_news = NARRATIVE_GOOD_NEWS.get(factor.name)
            if good_news:
                sentences.append(good_news)
                break

        sentences.append(self._closing_sentence(features, risk_category))
        return " ".join(sentences)

    def _closing_sentence(self, features: FeatureVector, risk_category: str) -> str:
        social = features.social_determinants
        if features.post_discharge.no_follow_up_scheduled:
            return CLOSING_NO_FOLLOW_UP
        if features.engagement.consecutive_missed_check_ins >= self.config.engagement.consecutive_missed_concern:
            return CLOSING_MISSED_CHECK_INS
        if social.has_transportation_barrier:
            return CLOSING_TRANSPORTATION
        if social.lives_alone and not social.has_caregiver:
            return CLOSING_LIVES_ALONE
        if risk_category in ("high", "critical"):
            return CLOSING_ESCALATED
        return CLOSING_DEFAULT

    def get_ruca_weight_display(self, ruca_category: Optional[str] = None) -> str:
        """Prompt weight shown next to a RUCA category ("0.00" when unknown)."""
        return self.config.ruca_prompt_weight(ruca_category or "urban")

"""
Clinical domain: utilization history, comorbidities, discharge vitals and labs.

Prior utilization is the single strongest readmission predictor, so the
admission windows are exact: an admission counts toward the 30-day window
only if it happened STRICTLY after now - 30 days.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Optional

from ..features import ClinicalFactors, DischargeContext
from ..utils import (
    are_labs_within_normal,
    categorize_diagnosis,
    categorize_length_of_stay,
    days_before,
    is_high_risk_diagnosis,
    is_labs_concerning,
    is_vitals_stable,
    matches_prefix,
    to_number,
)
from .base import DomainExtractor, row_time

logger = logging.getLogger(__name__)

ED_FACILITY_TYPES = ("er", "ed", "emergency")
SIX_MONTHS_DAYS = 180


class ClinicalExtractor(DomainExtractor[ClinicalFactors]):
    domain = "clinical"

    async def extract(self, context: DischargeContext, now: datetime) -> ClinicalFactors:
        admissions = await self.source.fetch_admissions(
            context.patient_id, days_before(now, SIX_MONTHS_DAYS)
        )
        conditions = await self.source.fetch_active_conditions(context.patient_id)
        observations = await self.source.fetch_observations(
            context.patient_id,
            self.config.observation_codes.all_codes(),
            self.discharge_time(context),
        )

        utilization = self._utilization(admissions, now)
        comorbidities = self._comorbidities(context, conditions)
        latest = self._latest_values(observations)

        codes = self.config.observation_codes
        systolic = latest.get(codes.systolic_bp)
        diastolic = latest.get(codes.diastolic_bp)
        heart_rate = latest.get(codes.heart_rate)
        o2_sat = latest.get(codes.oxygen_saturation)
        egfr = latest.get(codes.egfr)
        hemoglobin = latest.get(codes.hemoglobin)
        sodium = latest.get(codes.sodium)
        glucose = latest.get(codes.glucose)

        return ClinicalFactors(
            primary_diagnosis_code=context.primary_diagnosis_code,
            primary_diagnosis_category=categorize_diagnosis(
                context.primary_diagnosis_code, self.config
            ),
            is_high_risk_diagnosis=is_high_risk_diagnosis(
                context.primary_diagnosis_code, self.config
            ),
            **utilization,
            **comorbidities,
            vital_signs_stable_at_discharge=is_vitals_stable(
                systolic, diastolic, heart_rate, o2_sat, self.config
            ),
            systolic_bp_at_discharge=systolic,
            diastolic_bp_at_discharge=diastolic,
            heart_rate_at_discharge=heart_rate,
            oxygen_saturation_at_discharge=o2_sat,
            temperature_at_discharge=latest.get(codes.temperature),
            e_gfr=egfr,
            hemoglobin=hemoglobin,
            sodium=sodium,
            glucose=glucose,
            labs_within_normal_limits=are_labs_within_normal(
                egfr, hemoglobin, sodium, glucose, self.config
            ),
            lab_trends_concerning=is_labs_concerning(
                egfr, hemoglobin, sodium, glucose, self.config
            ),
            length_of_stay_days=context.length_of_stay,
            length_of_stay_category=categorize_length_of_stay(
                context.length_of_stay, self.config
            ),
        )

    def _utilization(self, admissions: Optional[List[dict]], now: datetime) -> Dict[str, Optional[int]]:
        if admissions is None:
            return {
                "prior_admissions_30_day": None,
                "prior_admissions_90_day": None,
                "ed_visits_30_day": None,
                "ed_visits_90_day": None,
                "ed_visits_6_month": None,
            }

        cutoff_30 = days_before(now, 30)
        cutoff_90 = days_before(now, 90)
        cutoff_6m = days_before(now, SIX_MONTHS_DAYS)

        def count(rows, cutoff):
            return sum(1 for admitted in rows if admitted is not None and admitted > cutoff)

        hospital, emergency = [], []
        for row in admissions:
            facility = str(row.get("facility_type") or "").lower()
            admitted = row_time(row, "admission_date")
            (emergency if facility in ED_FACILITY_TYPES else hospital).append(admitted)

        return {
            "prior_admissions_30_day": count(hospital, cutoff_30),
            "prior_admissions_90_day": count(hospital, cutoff_90),
            "ed_visits_30_day": count(emergency, cutoff_30),
            "ed_visits_90_day": count(emergency, cutoff_90),
            "ed_visits_6_month": count(emergency, cutoff_6m),
        }

    def _comorbidities(self, context: DischargeContext, conditions: Optional[List[dict]]) -> dict:
        condition_codes = [str(row.get("code") or "") for row in conditions or []]
        all_codes = [context.primary_diagnosis_code or ""]
        all_codes.extend(context.secondary_diagnoses)
        all_codes.extend(condition_codes)

        prefixes = self.config.diagnoses

        def any_code(group):
            return any(matches_prefix(code, group) for code in all_codes)

        return {
            "comorbidity_count": None if conditions is None else len(conditions),
            "has_chf": any_code(prefixes.chf),
            "has_copd": any_code(prefixes.copd),
            "has_diabetes": any_code(prefixes.diabetes),
            "has_renal_failure": any_code(prefixes.renal_failure),
            "has_cancer": any_code(prefixes.cancer),
        }

    @staticmethod
    def _latest_values(observations: Optional[List[dict]]) -> Dict[str, float]:
        """Most recent numeric value per observation code."""
        latest: Dict[str, float] = {}
        dated = []
        for row in observations or []:
            value = to_number(row.get("value"))
            if value is None:
                quantity = row.get("value_quantity")
                if isinstance(quantity, dict):
                    value = to_number(quantity.get("value"))
            if value is None:
                continue
            dated.append((row_time(row, "effective_date_time"), str(row.get("code")), value))

        # Newest first; undated readings lose to dated ones
        dated.sort(key=lambda item: item[0].timestamp() if item[0] else float("-inf"), reverse=True)
        for _, code, value in dated:
            latest.setdefault(code, value)
        return latest

"""
Self-reported health domain: what the patient tells us in daily check-ins.

Readings typed by patients are messy ("145/92", "180 mg/dL", " 212 lbs").
Only the leading number of each part is used; unparseable readings are
skipped rather than treated as abnormal.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..features import DischargeContext, SelfReportedHealth
from ..utils import contains_any, days_before, leading_float, leading_int, matching_keywords
from .base import DomainExtractor, row_responses
from .engagement import count_negative_moods

logger = logging.getLogger(__name__)

# Free-text fields of a check-in scanned for complaints
FREE_TEXT_KEYS = ("symptoms", "notes", "activities", "social")


def parse_blood_pressure(reading: Any) -> Tuple[Optional[int], Optional[int]]:
    """Split "systolic/diastolic" and parse the leading integer of each part."""
    parts = str(reading).split("/")
    systolic = leading_int(parts[0]) if parts else None
    diastolic = leading_int(parts[1]) if len(parts) > 1 else None
    return systolic, diastolic


def _free_text(responses: Dict[str, Any]) -> str:
    chunks = []
    for key in FREE_TEXT_KEYS:
        value = responses.get(key)
        if isinstance(value, (list, tuple)):
            chunks.extend(str(item) for item in value)
        elif value:
            chunks.append(str(value))
    return " ".join(chunks).lower()


class SelfReportedExtractor(DomainExtractor[SelfReportedHealth]):
    domain = "self_reported"

    async def extract(self, context: DischargeContext, now: datetime) -> SelfReportedHealth:
        check_ins = await self.source.fetch_check_ins(
            context.patient_id, days_before(now, self.config.check_in.rate_30_day)
        ) or []

        thresholds = self.config.self_reported
        keywords = self.config.keywords
        responses = [row_responses(row) for row in check_ins]
        texts = [_free_text(item) for item in responses]

        red_flags: List[str] = []
        for text in texts:
            for flag in matching_keywords(text, keywords.red_flags):
                if flag not in red_flags:
                    red_flags.append(flag)

        mobility = sum(1 for text in texts if contains_any(text, keywords.mobility))
        pain = sum(1 for text in texts if contains_any(text, keywords.pain))
        fatigue = sum(1 for text in texts if contains_any(text, keywords.fatigue))
        side_effects = sum(1 for text in texts if contains_any(text, keywords.side_effects))
        home_alone = sum(
            1 for item, text in zip(responses, texts)
            if item.get("stayed_home_alone") or contains_any(text, keywords.home_alone)
        )
        family_contact = sum(1 for item in responses if item.get("family_contact"))
        missed_meds = sum(1 for item in responses if item.get("medications_taken") is False)

        negative = count_negative_moods(check_ins, keywords.negative_moods)

        return SelfReportedHealth(
            has_red_flag_symptoms=len(red_flags) > 0,
            red_flag_symptoms_list=tuple(red_flags),
            symptom_count_30_day=sum(1 for item in responses if item.get("symptoms")),
            negative_mood_trend=negative > len(check_ins) * self.config.engagement.negative_mood,
            self_reported_bp_trend_concerning=self._bp_concerning(responses),
            self_reported_blood_sugar_unstable=self._sugar_unstable(responses),
            self_reported_weight_change_concerning=self._weight_concerning(responses),
            mobility_complaints_30_day=mobility,
            pain_complaints_30_day=pain,
            fatigue_complaints_30_day=fatigue,
            mobility_declining=mobility >= thresholds.mobility_declining,
            pain_increasing=pain >= thresholds.pain_increasing,
            fatigue_increasing=fatigue >= thresholds.fatigue_increasing,
            medication_side_effects_reported=side_effects,
            missed_medications_days_30_day=missed_meds,
            days_home_alone_30_day=home_alone,
            family_contact_days_30_day=family_contact,
            social_isolation_increasing=home_alone > thresholds.days_home_alone,
            family_contact_decreasing=family_contact < thresholds.family_contact_min,
        )

    # Check-ins arrive newest first, so the first reading found is the latest

    def _bp_concerning(self, responses: List[Dict[str, Any]]) -> bool:
        thresholds = self.config.self_reported
        for item in responses:
            if not item.get("blood_pressure"):
                continue
            systolic, diastolic = parse_blood_pressure(item["blood_pressure"])
            return bool(
                (systolic is not None
                 and (systolic > thresholds.bp_systolic_high or systolic < thresholds.bp_systolic_low))
                or (diastolic is not None and diastolic > thresholds.bp_diastolic_high)
            )
        return False

    def _sugar_unstable(self, responses: List[Dict[str, Any]]) -> bool:
        thresholds = self.config.self_reported
        for item in responses:
            if not item.get("blood_sugar"):
                continue
            sugar = leading_float(item["blood_sugar"])
            if sugar is None:
                return False
            return sugar > thresholds.blood_sugar_high or sugar < thresholds.blood_sugar_low
        return False

    def _weight_concerning(self, responses: List[Dict[str, Any]]) -> bool:
        readings = [leading_float(item.get("weight")) for item in responses if item.get("weight")]
        readings = [value for value in readings if value is not None]
        if len(readings) < 2:
            return False
        first, last = readings[0], readings[-1]
        return abs(first - last) > last * self.config.self_reported.weight_change

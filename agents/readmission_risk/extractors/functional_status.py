"""Functional status domain: ADLs, cognition, falls and mobility."""

from __future__ import annotations

from datetime import datetime

from ..features import DischargeContext, FunctionalStatus
from ..utils import (
    calculate_fall_risk,
    categorize_cognitive_severity,
    categorize_mobility,
    days_before,
    has_cognitive_impairment,
    to_number,
)
from .base import DomainExtractor, row_time

ASSISTIVE_DEVICES = ("walker", "wheelchair", "cane")


class FunctionalStatusExtractor(DomainExtractor[FunctionalStatus]):
    domain = "functional_status"

    async def extract(self, context: DischargeContext, now: datetime) -> FunctionalStatus:
        params = self.config.functional
        assessment = await self.source.fetch_risk_assessment(context.patient_id) or {}
        fall_reports = await self.source.fetch_fall_reports(
            context.patient_id, days_before(now, params.falls_lookback_days)
        ) or []

        def dependent(field_name: str) -> bool:
            value = assessment.get(field_name)
            return bool(value) and value != params.independent_value

        adl_dependencies = sum(1 for name in params.adl_fields if dependent(name))
        iadl_dependencies = sum(1 for name in params.iadl_fields if dependent(name))

        cognitive = to_number(assessment.get("cognitive_risk_score"))
        mobility_score = to_number(assessment.get("mobility_risk_score"))
        walking = assessment.get("walking_ability")
        risk_factors = [str(item).lower() for item in assessment.get("risk_factors") or []]

        # Rule: FALL_WINDOW
        # A fall exactly 30 days ago is outside the window (strict >)
        cutoff_30 = days_before(now, self.config.fall_risk.lookback_days)
        cutoff_90 = days_before(now, params.falls_lookback_days)
        fall_times = [row_time(row, "check_in_date") for row in fall_reports]
        falls_30 = sum(1 for t in fall_times if t is not None and t > cutoff_30)
        falls_90 = sum(1 for t in fall_times if t is not None and t > cutoff_90)

        mobility_level = categorize_mobility(walking)

        return FunctionalStatus(
            adl_dependencies=adl_dependencies,
            iadl_dependencies=iadl_dependencies,
            needs_help_with_medications=dependent("medication_management"),
            has_cognitive_impairment=has_cognitive_impairment(cognitive, self.config),
            cognitive_impairment_severity=categorize_cognitive_severity(cognitive, self.config),
            has_dementia="dementia" in risk_factors,
            falls_in_past_30_days=falls_30,
            falls_in_past_90_days=falls_90,
            has_recent_falls=falls_90 > 0,
            fall_risk_score=calculate_fall_risk(
                falls_30, mobility_score, cognitive, walking, self.config
            ),
            mobility_level=mobility_level,
            uses_assistive_device=mobility_level in ASSISTIVE_DEVICES,
            cognitive_risk_score=cognitive,
            mobility_risk_score=mobility_score,
        )

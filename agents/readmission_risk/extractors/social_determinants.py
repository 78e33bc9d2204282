"""
Social determinants domain: support, access to care, rurality, insurance, literacy.

Rurality is resolved from the RUCA (Rural-Urban Commuting Area) table by the
patient's ZIP code. When no RUCA row exists, a 3-digit ZIP prefix fallback
covers the frontier counties of MT/ND/SD served by the program.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..features import DischargeContext, SocialDeterminants
from ..utils import (
    calculate_distance_weight,
    calculate_rural_isolation_score,
    categorize_health_literacy,
    categorize_insurance,
    categorize_ruca_code,
    categorize_zip_fallback,
    estimate_drive_minutes,
    rurality_from_ruca,
    to_number,
)
from .base import DomainExtractor, row_details

logger = logging.getLogger(__name__)

LOW_RISK_LEVELS = ("low", "none")


class SocialDeterminantsExtractor(DomainExtractor[SocialDeterminants]):
    domain = "social_determinants"

    async def extract(self, context: DischargeContext, now: datetime) -> SocialDeterminants:
        indicators = await self.source.fetch_sdoh_indicators(context.patient_id)
        profile = await self.source.fetch_profile(context.patient_id)

        zip_code = str(profile.get("address_zip") or "") if profile else ""
        ruca_row = await self.source.fetch_ruca(zip_code) if zip_code else None
        hpsa_row = await self.source.fetch_hpsa(zip_code) if zip_code else None

        by_category = self._index(indicators)
        transport_row = by_category.get("transportation")
        transport = row_details(transport_row) if transport_row else {}
        housing = row_details(by_category["housing"]) if "housing" in by_category else {}
        support_row = by_category.get("social_support")
        support = row_details(support_row) if support_row else {}
        insurance = row_details(by_category["insurance"]) if "insurance" in by_category else {}
        literacy = row_details(by_category["health_literacy"]) if "health_literacy" in by_category else {}

        # Unknown until the patient has any SDOH screening on file
        lives_alone: Optional[bool] = None
        if indicators:
            lives_alone = bool(housing.get("lives_alone"))

        ruca_code, ruca_category = self._resolve_rurality(zip_code, ruca_row)
        is_rural = ruca_category != "urban"

        hospital_miles = to_number(transport.get("distance_to_hospital"))
        pcp_miles = to_number(transport.get("distance_to_pcp"))
        public_transit = bool(transport.get("public_transit"))

        has_caregiver = bool(support.get("has_caregiver"))
        family_support = bool(support.get("family_support"))

        insurance_type = categorize_insurance(insurance.get("type"))
        literacy_level = categorize_health_literacy(literacy.get("level"))

        return SocialDeterminants(
            lives_alone=lives_alone,
            has_caregiver=has_caregiver,
            caregiver_available_24_7=bool(support.get("caregiver_24hr")),
            caregiver_reliable=bool(support.get("caregiver_reliable")),
            has_family_support=family_support,
            has_community_support=bool(support.get("community_support")),
            social_support_score=to_number(support_row.get("score")) if support_row else None,
            socially_isolated=not has_caregiver and not family_support,
            has_transportation_barrier=self._is_barrier(transport_row),
            distance_to_nearest_hospital_miles=hospital_miles,
            distance_to_pcp_miles=pcp_miles,
            public_transit_available=public_transit,
            estimated_drive_time_minutes=estimate_drive_minutes(hospital_miles, is_rural, self.config),
            is_rural_location=is_rural,
            ruca_code=ruca_code,
            ruca_category=ruca_category,
            patient_rurality=rurality_from_ruca(ruca_category),
            rural_isolation_score=calculate_rural_isolation_score(
                ruca_category, hospital_miles, pcp_miles, public_transit, self.config
            ),
            is_in_healthcare_shortage_area=bool(
                hpsa_row and str(hpsa_row.get("status") or "active") == "active"
            ),
            distance_to_care_risk_weight=calculate_distance_weight(
                hospital_miles, pcp_miles, ruca_category, self.config
            ),
            insurance_type=insurance_type,
            has_medicaid=insurance_type in ("medicaid", "dual_eligible"),
            has_insurance_gaps=insurance_type == "uninsured" or bool(insurance.get("coverage_gap")),
            financial_barriers_to_medications=bool(insurance.get("medication_cost_barrier")),
            financial_barriers_to_follow_up=bool(insurance.get("visit_cost_barrier")),
            health_literacy_level=literacy_level,
            low_health_literacy=literacy_level == "low",
            language_barrier=bool(literacy.get("language_barrier")),
            interpreter_needed=bool(literacy.get("interpreter_needed")),
        )

    @staticmethod
    def _index(indicators: Optional[List[Dict[str, Any]]]) -> Dict[str, Dict[str, Any]]:
        """First active indicator per category."""
        indexed: Dict[str, Dict[str, Any]] = {}
        for row in indicators or []:
            category = row.get("category")
            if category and category not in indexed:
                indexed[category] = row
        return indexed

    @staticmethod
    def _is_barrier(row: Optional[Dict[str, Any]]) -> bool:
        if not row:
            return False
        return str(row.get("risk_level") or "").lower() not in LOW_RISK_LEVELS

    def _resolve_rurality(self, zip_code: str, ruca_row: Optional[Dict[str, Any]]):
        if ruca_row:
            code = to_number(ruca_row.get("ruca_code"))
            if code is not None:
                code = int(code)
                return code, categorize_ruca_code(code, self.config)
            if ruca_row.get("ruca_category"):
                return None, str(ruca_row["ruca_category"])

        category = categorize_zip_fallback(zip_code, self.config)
        if zip_code and category != "urban":
            logger.debug(f"No RUCA row for ZIP {zip_code[:3]}xx, using prefix fallback")
        return None, category

"""
Readmission Risk Agent - Shared Rule Helpers

Pure functions shared by the domain extractors, the aggregator and the
explainability engine. Nothing in this module touches the data store.

Every helper takes the thresholds it needs from a ReadmissionModelConfig so
the same code can evaluate any registered model version.

A NOTE ON "FALSY" CHECKS:
    Several rules treat a zero reading the same as a missing one (e.g. a
    length of stay of 0 is categorized as "normal", a vital of 0 is treated
    as stable). These rules use `not value` on purpose and are covered by
    boundary tests; do not "fix" them to `is None`.
"""

from __future__ import annotations

import math
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, Optional, Sequence, Tuple

from .model_config import ReadmissionModelConfig

MS_PER_DAY = 24 * 60 * 60 * 1000


# =============================================================================
# NUMERIC HELPERS
# =============================================================================

def js_round(value: float) -> int:
    """Round half up (2.5 -> 3, -2.5 -> -2), unlike Python's banker's rounding."""
    return math.floor(value + 0.5)


def to_number(value: Any) -> Optional[float]:
    """Coerce a stored numeric value; None when absent or unparseable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def leading_int(text: Any) -> Optional[int]:
    """Parse the leading integer of a string ("145 " -> 145, "abc" -> None)."""
    if text is None:
        return None
    stripped = str(text).strip()
    digits = ""
    for index, char in enumerate(stripped):
        if char.isdigit() or (index == 0 and char in "+-"):
            digits += char
        else:
            break
    if digits in ("", "+", "-"):
        return None
    return int(digits)


def leading_float(text: Any) -> Optional[float]:
    """Parse the leading decimal number of a string ("180 mg/dL" -> 180.0)."""
    if text is None:
        return None
    if isinstance(text, (int, float)) and not isinstance(text, bool):
        return float(text)
    stripped = str(text).strip()
    end = 0
    seen_dot = False
    for index, char in enumerate(stripped):
        if char.isdigit():
            end = index + 1
        elif char == "." and not seen_dot:
            seen_dot = True
        elif index == 0 and char in "+-":
            continue
        else:
            break
    if end == 0:
        return None
    try:
        return float(stripped[:end])
    except ValueError:
        return None


# =============================================================================
# DATE HELPERS
# =============================================================================

def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp or date into an aware UTC datetime.

    Accepts datetime/date objects, a trailing "Z", and bare dates
    ("2025-01-15" is midnight UTC). Returns None when unparseable.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def days_before(now: datetime, days: int) -> datetime:
    return now - timedelta(days=days)


def whole_days_between(start: datetime, end: datetime) -> int:
    """floor((end - start) / 1 day) on millisecond precision."""
    delta_ms = (end - start) / timedelta(milliseconds=1)
    return math.floor(delta_ms / MS_PER_DAY)


def iso_date(value: datetime) -> str:
    return value.date().isoformat()


# =============================================================================
# CLINICAL CATEGORIZERS
# =============================================================================

def categorize_length_of_stay(
    days: Optional[float], config: ReadmissionModelConfig
) -> str:
    thresholds = config.los
    if not days:
        return "normal"
    if days < thresholds.too_short:
        return "too_short"
    if days <= thresholds.normal_max:
        return "normal"
    if days <= thresholds.extended_max:
        return "extended"
    return "prolonged"


def matches_prefix(code: Optional[str], prefixes: Iterable[str]) -> bool:
    if not code:
        return False
    return any(code.startswith(prefix) for prefix in prefixes)


def categorize_diagnosis(code: Optional[str], config: ReadmissionModelConfig) -> str:
    """Map an ICD-10 code to a diagnosis category (prefix table, first match)."""
    prefixes = config.diagnoses
    table: Sequence[Tuple[str, Tuple[str, ...]]] = (
        ("CHF", prefixes.chf),
        ("COPD", prefixes.copd),
        ("diabetes", prefixes.diabetes),
        ("renal_failure", prefixes.renal_failure),
        ("pneumonia", prefixes.pneumonia),
        ("stroke", prefixes.stroke),
        ("sepsis", prefixes.sepsis),
    )
    for category, codes in table:
        if matches_prefix(code, codes):
            return category
    return "other"


def is_high_risk_diagnosis(code: Optional[str], config: ReadmissionModelConfig) -> bool:
    return matches_prefix(code, config.diagnoses.high_risk)


def is_vitals_stable(
    systolic: Optional[float],
    diastolic: Optional[float],
    heart_rate: Optional[float],
    o2_saturation: Optional[float],
    config: ReadmissionModelConfig,
) -> bool:
    vitals = config.vitals
    # Rule: VITALS_STABLE
    # A missing (or zero) reading passes; only present values can fail.
    return (
        (not systolic or vitals.systolic.contains(systolic))
        and (not diastolic or vitals.diastolic.contains(diastolic))
        and (not heart_rate or vitals.heart_rate.contains(heart_rate))
        and (not o2_saturation or o2_saturation >= vitals.o2_saturation_min)
    )


def is_labs_concerning(
    egfr: Optional[float],
    hemoglobin: Optional[float],
    sodium: Optional[float],
    glucose: Optional[float],
    config: ReadmissionModelConfig,
) -> bool:
    labs = config.labs
    if egfr is not None and egfr < labs.egfr_critical_low:
        return True
    if hemoglobin is not None and hemoglobin < labs.hemoglobin_critical_low:
        return True
    if sodium is not None and (
        sodium < labs.sodium_critical_low or sodium > labs.sodium_critical_high
    ):
        return True
    if glucose is not None and (
        glucose < labs.glucose_critical_low or glucose > labs.glucose_critical_high
    ):
        return True
    return False


def are_labs_within_normal(
    egfr: Optional[float],
    hemoglobin: Optional[float],
    sodium: Optional[float],
    glucose: Optional[float],
    config: ReadmissionModelConfig,
) -> Optional[bool]:
    """None when no lab was reported; otherwise every present lab must be normal."""
    if egfr is None and hemoglobin is None and sodium is None and glucose is None:
        return None
    labs = config.labs
    return (
        (egfr is None or egfr >= labs.egfr_min)
        and (hemoglobin is None or labs.hemoglobin.contains(hemoglobin))
        and (sodium is None or labs.sodium.contains(sodium))
        and (glucose is None or labs.glucose.contains(glucose))
    )


# =============================================================================
# POST-DISCHARGE AND FUNCTIONAL CATEGORIZERS
# =============================================================================

def is_follow_up_within(days: Optional[int], window: int) -> bool:
    # Same-day (0) follow-up is falsy and therefore not "within" the window
    return days <= window if days else False


def has_cognitive_impairment(score: Optional[float], config: ReadmissionModelConfig) -> bool:
    return score is not None and score > config.cognitive.impairment_threshold


def categorize_cognitive_severity(
    score: Optional[float], config: ReadmissionModelConfig
) -> Optional[str]:
    thresholds = config.cognitive
    if not score or score < thresholds.min_for_severity:
        return None
    if score < thresholds.mild_max:
        return "mild"
    if score < thresholds.moderate_max:
        return "moderate"
    return "severe"


def categorize_mobility(walking_ability: Optional[str]) -> str:
    text = (walking_ability or "").lower()
    if "bed" in text:
        return "bedbound"
    if "wheelchair" in text:
        return "wheelchair"
    if "walker" in text:
        return "walker"
    if "cane" in text:
        return "cane"
    return "independent"


def calculate_fall_risk(
    falls_in_30_days: int,
    mobility_score: Optional[float],
    cognitive_score: Optional[float],
    walking_ability: Optional[str],
    config: ReadmissionModelConfig,
) -> int:
    params = config.fall_risk
    score = min(falls_in_30_days * params.falls_multiplier, params.falls_max_base)
    if mobility_score is not None and mobility_score > params.mobility_threshold:
        score += params.mobility_bonus
    if cognitive_score is not None and cognitive_score > params.cognitive_threshold:
        score += params.cognitive_bonus
    walking = (walking_ability or "").lower()
    if any(device in walking for device in config.functional.mobility_device_keywords):
        score += params.walker_bonus
    return min(score, params.max_score)


# =============================================================================
# SOCIAL DETERMINANTS CATEGORIZERS
# =============================================================================

def categorize_ruca_code(code: Optional[int], config: ReadmissionModelConfig) -> str:
    thresholds = config.ruca
    if code is None:
        return "urban"
    if code <= thresholds.urban_max:
        return "urban"
    if code <= thresholds.large_rural_max:
        return "large_rural"
    if code <= thresholds.small_rural_max:
        return "small_rural"
    return "isolated_rural"


def categorize_zip_fallback(zip_code: Optional[str], config: ReadmissionModelConfig) -> str:
    """Approximate RUCA category from the 3-digit ZIP prefix."""
    if not zip_code:
        return "urban"
    prefix = str(zip_code)[:3]
    zips = config.rural_zips
    if prefix in zips.frontier:
        return "isolated_rural"
    if prefix in zips.rural():
        return "small_rural"
    return "urban"


def rurality_from_ruca(category: str) -> str:
    if category == "isolated_rural":
        return "frontier"
    if category in ("large_rural", "small_rural"):
        return "rural"
    return "urban"


def calculate_distance_weight(
    hospital_miles: Optional[float],
    pcp_miles: Optional[float],
    ruca_category: Optional[str],
    config: ReadmissionModelConfig,
) -> float:
    params = config.distance_to_care
    weight = 0.0

    if hospital_miles is not None:
        if hospital_miles > params.hospital_very_far_threshold:
            weight += params.hospital_very_far_weight
        elif hospital_miles > params.hospital_far_threshold:
            weight += params.hospital_far_weight
        elif hospital_miles > params.hospital_moderate_threshold:
            weight += params.hospital_moderate_weight
        elif hospital_miles > params.hospital_slight_threshold:
            weight += params.hospital_slight_weight

    if pcp_miles is not None:
        if pcp_miles > params.pcp_far_threshold:
            weight += params.pcp_far_weight
        elif pcp_miles > params.pcp_moderate_threshold:
            weight += params.pcp_moderate_weight

    # Multiplier is applied BEFORE the cap
    if ruca_category == "isolated_rural":
        weight *= params.isolated_rural_multiplier
    elif ruca_category == "small_rural":
        weight *= params.small_rural_multiplier

    return min(weight, params.max_weight)


def calculate_rural_isolation_score(
    ruca_category: Optional[str],
    hospital_miles: Optional[float],
    pcp_miles: Optional[float],
    public_transit: Optional[bool],
    config: ReadmissionModelConfig,
) -> int:
    params = config.rural_isolation
    bases = {
        "isolated_rural": params.isolated_rural_base,
        "small_rural": params.small_rural_base,
        "large_rural": params.large_rural_base,
    }
    score = bases.get(ruca_category or "", params.default_base)

    if hospital_miles is not None:
        if hospital_miles > params.hospital_very_far_threshold:
            score += params.hospital_very_far_bonus
        elif hospital_miles > params.hospital_far_threshold:
            score += params.hospital_far_bonus
    if pcp_miles is not None and pcp_miles > params.pcp_far_threshold:
        score += params.pcp_far_bonus
    if not public_transit:
        score += params.no_transit_bonus

    return min(score, params.max_score)


def estimate_drive_minutes(
    hospital_miles: Optional[float], is_rural: bool, config: ReadmissionModelConfig
) -> Optional[float]:
    if hospital_miles is None:
        return None
    multiplier = config.driving_time.rural if is_rural else config.driving_time.urban
    return hospital_miles * multiplier


def categorize_insurance(insurance_type: Optional[str]) -> str:
    text = (insurance_type or "").lower()
    if not text:
        return "commercial"
    if "dual" in text:
        return "dual_eligible"
    if "medicaid" in text:
        return "medicaid"
    if "medicare" in text:
        return "medicare"
    if text in ("uninsured", "none", "self_pay", "self-pay"):
        return "uninsured"
    return "commercial"


def categorize_health_literacy(level: Optional[str]) -> str:
    text = (level or "").lower()
    if text in ("low", "inadequate"):
        return "low"
    if text in ("marginal", "limited"):
        return "marginal"
    return "adequate"


# =============================================================================
# TEXT HELPERS
# =============================================================================

def contains_any(text: Optional[str], keywords: Iterable[str]) -> bool:
    if not text:
        return False
    lowered = text.lower()
    return any(keyword in lowered for keyword in keywords)


def matching_keywords(text: Optional[str], keywords: Iterable[str]) -> Tuple[str, ...]:
    if not text:
        return ()
    lowered = text.lower()
    return tuple(keyword for keyword in keywords if keyword in lowered)


# =============================================================================
# TYPED COMPLETENESS ACCESSORS
# =============================================================================
# Each completeness field is read through a named accessor rather than by
# string path walking, so a renamed record attribute fails loudly.

COMPLETENESS_ACCESSORS: Dict[str, Callable[[Any], Any]] = {
    "clinical.prior_admissions_30_day": lambda fv: fv.clinical.prior_admissions_30_day,
    "clinical.comorbidity_count": lambda fv: fv.clinical.comorbidity_count,
    "post_discharge.follow_up_scheduled": lambda fv: fv.post_discharge.follow_up_scheduled,
    "social_determinants.lives_alone": lambda fv: fv.social_determinants.lives_alone,
    "medication.active_medication_count": lambda fv: fv.medication.active_medication_count,
}


def read_completeness_field(features: Any, key: str) -> Any:
    try:
        accessor = COMPLETENESS_ACCESSORS[key]
    except KeyError:
        raise KeyError(f"No completeness accessor registered for '{key}'") from None
    return accessor(features)


def score_completeness(features: Any, fields: Sequence[Any]) -> Tuple[int, list]:
    """
    Weighted share of critical fields that are known.

    A field is present when it is not None: False and 0 are answers.
    """
    total = 0
    present = 0
    missing = []
    for item in fields:
        total += item.weight
        if read_completeness_field(features, item.key) is not None:
            present += item.weight
        else:
            missing.append(item.key)

    if total == 0:
        return 100, missing
    return js_round(present / total * 100), missing

"""
Readmission Risk Agent - Judge Answer Parser

Extracts and validates the JSON prediction embedded in the judge's reply.

The extraction is deliberately permissive: the reply may wrap the JSON in
prose or a code fence, and the GREEDY pattern `\\{[\\s\\S]*\\}` takes
everything from the first "{" to the last "}". Validation is strict on the
fields the pipeline computes with and lenient elsewhere:

    readmissionRisk30Day/7Day/90Day   finite number (bool rejected), 30-day in [0, 1]
    riskCategory                      string
    riskFactors                       list
    predictionConfidence              number
    protectiveFactors                 optional list (default [])
    recommendedInterventions          optional list (default [])

NaN and Infinity are rejected: JSON has no such values.

Every failure raises PredictionParseError("Failed to parse AI prediction: ...").
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .exceptions import PredictionParseError

JSON_BLOCK = re.compile(r"\{[\s\S]*\}")


@dataclass(frozen=True)
class JudgeRiskFactor:
    factor: str
    weight: float
    category: str
    evidence: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "factor": self.factor,
            "weight": self.weight,
            "category": self.category,
            "evidence": self.evidence,
        }


@dataclass(frozen=True)
class JudgeProtectiveFactor:
    factor: str
    impact: str
    category: str

    def to_dict(self) -> Dict[str, Any]:
        return {"factor": self.factor, "impact": self.impact, "category": self.category}


@dataclass(frozen=True)
class RecommendedIntervention:
    intervention: str
    priority: str
    estimated_impact: float
    timeframe: str
    responsible: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intervention": self.intervention,
            "priority": self.priority,
            "estimated_impact": self.estimated_impact,
            "timeframe": self.timeframe,
            "responsible": self.responsible,
        }


@dataclass(frozen=True)
class ParsedPrediction:
    readmission_risk_30_day: float
    readmission_risk_7_day: float
    readmission_risk_90_day: float
    risk_category: str
    risk_factors: Tuple[JudgeRiskFactor, ...]
    protective_factors: Tuple[JudgeProtectiveFactor, ...] = ()
    recommended_interventions: Tuple[RecommendedIntervention, ...] = ()
    predicted_readmission_date: Optional[str] = None
    prediction_confidence: float = 0.0


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return isinstance(value, int) or math.isfinite(value)


def _number(value: Any, default: float = 0.0) -> float:
    return float(value) if _is_number(value) else default


def _reject_constant(token: str) -> Any:
    raise PredictionParseError(f"Non-finite number {token} in AI response")


def _text(value: Any, default: str = "") -> str:
    return value if isinstance(value, str) else default


def _optional_list(payload: Dict[str, Any], key: str) -> List[Any]:
    value = payload.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise PredictionParseError(f"{key} must be a list")
    return value


def parse_prediction(response_text: str) -> ParsedPrediction:
    """Parse the judge's reply into a validated ParsedPrediction."""
    match = JSON_BLOCK.search(response_text or "")
    if not match:
        raise PredictionParseError("No JSON found in AI response")

    try:
        payload = json.loads(match.group(0), parse_constant=_reject_constant)
    except ValueError as e:
        raise PredictionParseError(str(e)) from e

    if not isinstance(payload, dict):
        raise PredictionParseError("AI response JSON must be an object")

    for key in ("readmissionRisk30Day", "readmissionRisk7Day", "readmissionRisk90Day"):
        if not _is_number(payload.get(key)):
            raise PredictionParseError(f"{key} must be a number")

    risk_30 = float(payload["readmissionRisk30Day"])
    if risk_30 < 0 or risk_30 > 1:
        raise PredictionParseError("Invalid risk score: must be between 0 and 1")

    if not isinstance(payload.get("riskCategory"), str):
        raise PredictionParseError("riskCategory must be a string")
    if not isinstance(payload.get("riskFactors"), list):
        raise PredictionParseError("riskFactors must be a list")
    if not _is_number(payload.get("predictionConfidence")):
        raise PredictionParseError("predictionConfidence must be a number")

    risk_factors = tuple(
        JudgeRiskFactor(
            factor=_text(item.get("factor")),
            weight=_number(item.get("weight")),
            category=_text(item.get("category")),
            evidence=item.get("evidence") if isinstance(item.get("evidence"), str) else None,
        )
        for item in payload["riskFactors"]
        if isinstance(item, dict)
    )
    protective = tuple(
        JudgeProtectiveFactor(
            factor=_text(item.get("factor")),
            impact=_text(item.get("impact")),
            category=_text(item.get("category")),
        )
        for item in _optional_list(payload, "protectiveFactors")
        if isinstance(item, dict)
    )
    interventions = tuple(
        RecommendedIntervention(
            intervention=_text(item.get("intervention")),
            priority=_text(item.get("priority"), "medium"),
            estimated_impact=_number(item.get("estimatedImpact")),
            timeframe=_text(item.get("timeframe")),
            responsible=_text(item.get("responsible")),
        )
        for item in _optional_list(payload, "recommendedInterventions")
        if isinstance(item, dict)
    )

    predicted_date = payload.get("predictedReadmissionDate")

    return ParsedPrediction(
        readmission_risk_30_day=risk_30,
        readmission_risk_7_day=float(payload["readmissionRisk7Day"]),
        readmission_risk_90_day=float(payload["readmissionRisk90Day"]),
        risk_category=payload["riskCategory"],
        risk_factors=risk_factors,
        protective_factors=protective,
        recommended_interventions=interventions,
        predicted_readmission_date=predicted_date if isinstance(predicted_date, str) else None,
        prediction_confidence=float(payload["predictionConfidence"]),
    )

"""
Readmission Risk Agent - Predictor

Orchestrates one prediction for one discharge:

    validate -> tenant config -> features -> prompt -> judge (with timeout)
    -> parse -> calibrate -> explain -> assemble -> persist -> side effects

================================================================================
FAILURE POLICY
================================================================================

Fatal (raised to the caller):
    - DischargeValidationError   bad identifiers, dates or disposition
    - PredictorDisabledError     tenant has not enabled the predictor
    - SQLAlchemyError            store failure while reading features
    - JudgeError / JudgeTimeoutError
    - PredictionParseError

Best-effort (logged, never raised):
    - Persisting the prediction record (ERROR, prediction_id stays None)
    - Care plan, critical alert and accuracy-tracking writes (WARNING)

Each best-effort write is abandoned after settings.side_effect_timeout_seconds,
so a hung store cannot hold back a prediction that is already assembled.

A prediction is assembled once and never mutated afterwards.

================================================================================
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Awaitable, Dict, Mapping, Optional, Tuple

from .aggregator import FeatureAggregator
from .calibration import calibrate_confidence
from .config import Settings, settings as default_settings
from .data_source import PatientDataSource
from .exceptions import DischargeValidationError, JudgeTimeoutError, PredictorDisabledError
from .explainability import ExplainabilityEngine, RiskSummary
from .features import DischargeContext, Disposition, FeatureVector
from .judge import JudgeRequest, JudgeResponse, PredictiveJudge
from .model_config import ReadmissionModelConfig, TenantDefaults, get_model_config
from .parser import (
    JudgeProtectiveFactor,
    JudgeRiskFactor,
    ParsedPrediction,
    RecommendedIntervention,
    parse_prediction,
)
from .prompt_builder import PromptBuilder
from .utils import iso_date, js_round, parse_timestamp, utc_now, whole_days_between

logger = logging.getLogger(__name__)

ESCALATING_CATEGORIES = ("high", "critical")
ACCURACY_SKILL_NAME = "readmission_risk_predictor"


# =============================================================================
# INPUT VALIDATION
# =============================================================================

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)
UNSAFE_CHARACTERS = re.compile(r"[<>'\"]")

FACILITY_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 300
DEFAULT_TEXT_MAX_LENGTH = 500


class DischargeValidator:
    """Validates identifiers and dates, and sanitizes free text, before any data access."""

    @staticmethod
    def validate_uuid(value: Any, field_name: str) -> str:
        if not isinstance(value, str) or not UUID_PATTERN.match(value):
            raise DischargeValidationError(f"Invalid {field_name}: must be valid UUID")
        return value

    @staticmethod
    def validate_iso_date(value: Any, field_name: str) -> datetime:
        parsed = parse_timestamp(value) if isinstance(value, str) else None
        if parsed is None:
            raise DischargeValidationError(f"Invalid {field_name}: must be valid ISO date")
        return parsed

    @staticmethod
    def sanitize_text(text: Optional[str], max_length: int = DEFAULT_TEXT_MAX_LENGTH) -> str:
        if not text:
            return ""
        cleaned = UNSAFE_CHARACTERS.sub("", text)
        cleaned = cleaned.replace(";", "").replace("--", "")
        return cleaned[:max_length].strip()

    @classmethod
    def validate(cls, context: DischargeContext) -> DischargeContext:
        """Return a sanitized copy of the context, or raise DischargeValidationError."""
        cls.validate_uuid(context.patient_id, "patientId")
        cls.validate_uuid(context.tenant_id, "tenantId")
        cls.validate_iso_date(context.discharge_date, "dischargeDate")

        valid_dispositions = [d.value for d in Disposition]
        if context.discharge_disposition not in valid_dispositions:
            raise DischargeValidationError(
                f"Invalid dischargeDisposition: must be one of {', '.join(valid_dispositions)}"
            )

        changes: Dict[str, Any] = {}
        if context.discharge_facility:
            changes["discharge_facility"] = cls.sanitize_text(
                context.discharge_facility, FACILITY_MAX_LENGTH
            )
        if context.primary_diagnosis_description:
            changes["primary_diagnosis_description"] = cls.sanitize_text(
                context.primary_diagnosis_description, DESCRIPTION_MAX_LENGTH
            )
        return context.with_updates(**changes) if changes else context


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class TenantConfig:
    """Per-tenant predictor switches, with defaults for absent rows or columns."""
    enabled: bool
    auto_create_care_plan: bool
    high_risk_threshold: float
    model: str

    @classmethod
    def from_row(cls, row: Optional[Mapping[str, Any]], defaults: TenantDefaults) -> "TenantConfig":
        row = row or {}

        def pick(column: str, default: Any) -> Any:
            value = row.get(column)
            return default if value is None else value

        return cls(
            enabled=bool(pick("readmission_predictor_enabled", defaults.predictor_enabled)),
            auto_create_care_plan=bool(
                pick("readmission_predictor_auto_create_care_plan", defaults.auto_create_care_plan)
            ),
            high_risk_threshold=float(
                pick("readmission_predictor_high_risk_threshold", defaults.high_risk_threshold)
            ),
            model=str(pick("readmission_predictor_model", defaults.default_model)),
        )


@dataclass(frozen=True)
class DataSourcesAnalyzed:
    """Which record sources actually answered for this prediction."""
    readmission_history: bool
    sdoh_indicators: bool
    checkin_patterns: bool
    medication_adherence: bool
    care_plan_adherence: bool

    @classmethod
    def from_features(cls, features: FeatureVector) -> "DataSourcesAnalyzed":
        return cls(
            readmission_history=features.clinical.prior_admissions_30_day is not None,
            sdoh_indicators=features.social_determinants.lives_alone is not None,
            checkin_patterns=features.engagement.check_in_completion_rate_30_day is not None,
            medication_adherence=(features.medication.active_medication_count or 0) > 0,
            care_plan_adherence=features.post_discharge.follow_up_scheduled is not None,
        )

    def to_dict(self) -> Dict[str, bool]:
        return {
            "readmission_history": self.readmission_history,
            "sdoh_indicators": self.sdoh_indicators,
            "checkin_patterns": self.checkin_patterns,
            "medication_adherence": self.medication_adherence,
            "care_plan_adherence": self.care_plan_adherence,
        }


@dataclass(frozen=True)
class Prediction:
    """
    Final readmission prediction for one discharge.

    Risks and the category come from the judge; confidence is calibrated by
    data completeness; the explanation and risk summary are re-derived from
    the feature vector.
    """
    patient_id: str
    discharge_date: str
    readmission_risk_30_day: float
    readmission_risk_7_day: float
    readmission_risk_90_day: float
    risk_category: str
    risk_factors: Tuple[JudgeRiskFactor, ...]
    protective_factors: Tuple[JudgeProtectiveFactor, ...]
    recommended_interventions: Tuple[RecommendedIntervention, ...]
    predicted_readmission_date: Optional[str]
    prediction_confidence: float
    plain_language_explanation: str
    data_sources_analyzed: DataSourcesAnalyzed
    ai_model: str
    ai_cost: float
    risk_summary: RiskSummary
    model_version: str
    data_completeness_score: int = 0
    missing_critical_data: Tuple[str, ...] = field(default_factory=tuple)
    prediction_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prediction_id": self.prediction_id,
            "patient_id": self.patient_id,
            "discharge_date": self.discharge_date,
            "readmission_risk_30_day": self.readmission_risk_30_day,
            "readmission_risk_7_day": self.readmission_risk_7_day,
            "readmission_risk_90_day": self.readmission_risk_90_day,
            "risk_category": self.risk_category,
            "risk_factors": [f.to_dict() for f in self.risk_factors],
            "protective_factors": [f.to_dict() for f in self.protective_factors],
            "recommended_interventions": [i.to_dict() for i in self.recommended_interventions],
            "predicted_readmission_date": self.predicted_readmission_date,
            "prediction_confidence": self.prediction_confidence,
            "plain_language_explanation": self.plain_language_explanation,
            "data_sources_analyzed": self.data_sources_analyzed.to_dict(),
            "ai_model": self.ai_model,
            "ai_cost": self.ai_cost,
            "risk_summary": self.risk_summary.to_dict(),
            "model_version": self.model_version,
            "data_completeness_score": self.data_completeness_score,
            "missing_critical_data": list(self.missing_critical_data),
        }


def _percent(value: float) -> int:
    return js_round(value * 100)


def _reason(error: Exception) -> str:
    return str(error) or type(error).__name__


# =============================================================================
# PREDICTOR
# =============================================================================

class ReadmissionRiskPredictor:
    """
    Main entry point for readmission risk prediction.

    All collaborators are injected; the model config defaults to the version
    named by `settings.readmission_model_version`.
    """

    def __init__(
        self,
        source: PatientDataSource,
        judge: PredictiveJudge,
        config: Optional[ReadmissionModelConfig] = None,
        settings: Optional[Settings] = None,
        aggregator: Optional[FeatureAggregator] = None,
    ):
        self.settings = settings or default_settings
        self.config = config or get_model_config(self.settings.readmission_model_version)
        self.source = source
        self.judge = judge
        self.aggregator = aggregator or FeatureAggregator(source, self.config)
        self.prompt_builder = PromptBuilder(self.config)
        self.explainer = ExplainabilityEngine(self.config)

    # -------------------------------------------------------------------------
    # Prediction
    # -------------------------------------------------------------------------

    async def predict(
        self, context: DischargeContext, as_of: Optional[datetime] = None
    ) -> Prediction:
        """
        Predict readmission risk at discharge.

        Args:
            context: Discharge context (validated and sanitized here)
            as_of: Evaluation time; defaults to now (UTC)

        Returns:
            The assembled Prediction, with prediction_id set when it was stored
        """
        context = DischargeValidator.validate(context)

        tenant = await self.get_tenant_config(context.tenant_id)
        if not tenant.enabled:
            raise PredictorDisabledError(context.tenant_id)

        now = as_of or utc_now()
        features = await self.aggregator.extract_features(context, as_of=now)

        request = JudgeRequest(
            prompt=self.prompt_builder.build_prompt(context, features),
            system_prompt=self.prompt_builder.build_system_prompt(),
            model=tenant.model,
            complexity="complex",
            user_id=context.patient_id,
            context={
                "discharge_date": context.discharge_date,
                "data_completeness": features.data_completeness_score,
            },
        )
        started = time.monotonic()
        response = await self._call_judge(request)
        latency_ms = int((time.monotonic() - started) * 1000)

        parsed = parse_prediction(response.text)
        prediction = self.assemble(context, features, parsed, response)

        prediction_id = await self._store_prediction(context, prediction, features)
        if prediction_id is not None:
            prediction = replace(prediction, prediction_id=prediction_id)

        await self._run_side_effects(context, prediction, tenant, now, latency_ms)

        logger.info(
            f"Predicted {prediction.risk_category} readmission risk "
            f"({_percent(prediction.readmission_risk_30_day)}% 30-day) "
            f"for patient {context.patient_id}",
            extra={
                "prediction_id": prediction.prediction_id,
                "model": prediction.ai_model,
                "data_completeness": features.data_completeness_score,
            },
        )
        return prediction

    async def get_tenant_config(self, tenant_id: str) -> TenantConfig:
        row = await self.source.fetch_tenant_config(tenant_id)
        return TenantConfig.from_row(row, self.config.tenant_defaults)

    async def _call_judge(self, request: JudgeRequest) -> JudgeResponse:
        timeout = self.settings.judge_timeout_seconds
        try:
            return await asyncio.wait_for(self.judge.call(request), timeout=timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Predictive judge timed out after {timeout:g}s")
            raise JudgeTimeoutError(timeout) from e

    def assemble(
        self,
        context: DischargeContext,
        features: FeatureVector,
        parsed: ParsedPrediction,
        response: JudgeResponse,
    ) -> Prediction:
        return Prediction(
            patient_id=context.patient_id,
            discharge_date=context.discharge_date,
            readmission_risk_30_day=parsed.readmission_risk_30_day,
            readmission_risk_7_day=parsed.readmission_risk_7_day,
            readmission_risk_90_day=parsed.readmission_risk_90_day,
            risk_category=parsed.risk_category,
            risk_factors=parsed.risk_factors,
            protective_factors=parsed.protective_factors,
            recommended_interventions=parsed.recommended_interventions,
            predicted_readmission_date=parsed.predicted_readmission_date,
            prediction_confidence=calibrate_confidence(
                parsed.prediction_confidence, features.data_completeness_score
            ),
            plain_language_explanation=self.explainer.generate_plain_language(
                features, parsed.risk_category
            ),
            data_sources_analyzed=DataSourcesAnalyzed.from_features(features),
            ai_model=response.model,
            ai_cost=response.cost,
            risk_summary=self.explainer.generate_risk_summary(features),
            model_version=self.config.version,
            data_completeness_score=features.data_completeness_score,
            missing_critical_data=features.missing_critical_data,
        )

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def build_prediction_record(
        self,
        context: DischargeContext,
        prediction: Prediction,
        features: FeatureVector,
    ) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            "tenant_id": context.tenant_id,
            "patient_id": context.patient_id,
            "discharge_date": context.discharge_date,
            "discharge_facility": context.discharge_facility,
            "discharge_disposition": context.discharge_disposition,
            "primary_diagnosis_code": context.primary_diagnosis_code,
            "primary_diagnosis_description": context.primary_diagnosis_description,
            "readmission_risk_30_day": prediction.readmission_risk_30_day,
            "readmission_risk_7_day": prediction.readmission_risk_7_day,
            "readmission_risk_90_day": prediction.readmission_risk_90_day,
            "risk_category": prediction.risk_category,
            "risk_factors": [f.to_dict() for f in prediction.risk_factors],
            "protective_factors": [f.to_dict() for f in prediction.protective_factors],
            "recommended_interventions": [
                i.to_dict() for i in prediction.recommended_interventions
            ],
            "predicted_readmission_date": prediction.predicted_readmission_date,
            "prediction_confidence": prediction.prediction_confidence,
            "data_sources_analyzed": prediction.data_sources_analyzed.to_dict(),
            "ai_model_used": prediction.ai_model,
            "ai_cost": prediction.ai_cost,
            "risk_summary": prediction.risk_summary.to_dict(),
        }
        record.update(features.snapshots())
        record["data_completeness_score"] = features.data_completeness_score
        record["missing_critical_data"] = list(features.missing_critical_data)
        return record

    async def _store_prediction(
        self,
        context: DischargeContext,
        prediction: Prediction,
        features: FeatureVector,
    ) -> Optional[str]:
        record = self.build_prediction_record(context, prediction, features)
        try:
            return await self._bounded(self.source.insert_prediction(record))
        except Exception as e:
            logger.error(
                f"Failed to store readmission prediction for patient "
                f"{context.patient_id}: {_reason(e)}"
            )
            return None

    # -------------------------------------------------------------------------
    # Side effects
    # -------------------------------------------------------------------------

    async def _bounded(self, write: Awaitable[Any]) -> Any:
        """Await a best-effort write, abandoning it after the side-effect timeout."""
        return await asyncio.wait_for(write, timeout=self.settings.side_effect_timeout_seconds)

    def _escalates(self, value: str) -> bool:
        """
        Whether a category or priority counts as high/critical for care plans
        and urgent-intervention lists.

        Always False unless CATEGORY_ESCALATION_ENABLED is set; deployments
        that have never auto-created care plans keep that behavior by default.
        """
        if not self.settings.category_escalation_enabled:
            return False
        return value in ESCALATING_CATEGORIES

    async def _run_side_effects(
        self,
        context: DischargeContext,
        prediction: Prediction,
        tenant: TenantConfig,
        now: datetime,
        latency_ms: int,
    ) -> None:
        if tenant.auto_create_care_plan and self._escalates(prediction.risk_category):
            try:
                await self._bounded(
                    self.source.insert_care_plan(self.build_care_plan(context, prediction, now))
                )
            except Exception as e:
                logger.warning(
                    f"Care plan creation failed for patient {context.patient_id}: {_reason(e)}"
                )

        if prediction.risk_category == "critical":
            try:
                alert = self.build_critical_alert(context, prediction)
                await self._bounded(self.source.insert_care_team_alert(alert))
            except Exception as e:
                logger.warning(
                    f"Critical risk alert failed for patient {context.patient_id}: {_reason(e)}"
                )

        if prediction.prediction_id is None:
            return
        try:
            await self._bounded(
                self.source.record_accuracy_prediction(
                    self.build_accuracy_record(context, prediction, latency_ms)
                )
            )
        except Exception as e:
            logger.warning(
                f"Accuracy tracking failed for prediction {prediction.prediction_id}: {_reason(e)}"
            )

    def build_care_plan(
        self, context: DischargeContext, prediction: Prediction, now: datetime
    ) -> Dict[str, Any]:
        interventions = [
            {
                "intervention": rec.intervention,
                "frequency": rec.timeframe,
                "responsible": rec.responsible,
                "priority": rec.priority,
                "status": "pending",
            }
            for rec in prediction.recommended_interventions
        ]
        barriers = [
            {
                "barrier": rf.factor,
                "solution": f"Address via {rf.category} intervention",
                "priority": "high",
                "status": "identified",
            }
            for rf in prediction.risk_factors
            if rf.category == "social_determinants"
        ]
        return {
            "patient_id": context.patient_id,
            "plan_type": "readmission_prevention",
            "status": "active",
            "priority": "critical" if prediction.risk_category == "critical" else "high",
            "title": f"AI-Generated Readmission Prevention Plan ({prediction.risk_category} risk)",
            "goals": [
                {
                    "goal": "Prevent 30-day readmission",
                    "target": "Zero hospital readmissions",
                    "timeframe": "30 days",
                    "current_status": "in_progress",
                }
            ],
            "interventions": interventions,
            "barriers": barriers,
            "start_date": iso_date(now),
            "next_review_date": iso_date(now + timedelta(days=7)),
            "success_metrics": {
                "readmission_avoided": True,
                "intervention_adherence": ">90%",
                "patient_satisfaction": ">4/5",
            },
            "clinical_notes": (
                "Automatically generated based on AI readmission risk prediction. "
                f"Risk: {_percent(prediction.readmission_risk_30_day)}% 30-day readmission probability. "
                f"Model: {prediction.ai_model}. "
                f"Confidence: {_percent(prediction.prediction_confidence)}%."
            ),
        }

    def build_critical_alert(
        self, context: DischargeContext, prediction: Prediction
    ) -> Dict[str, Any]:
        risk_pct = _percent(prediction.readmission_risk_30_day)
        return {
            "patient_id": context.patient_id,
            "alert_type": "readmission_risk_high",
            "severity": "critical",
            "priority": "emergency",
            "title": f"CRITICAL: High Readmission Risk ({risk_pct}%)",
            "description": (
                f"Patient discharged with {risk_pct}% 30-day readmission risk. "
                "Immediate intervention required."
            ),
            "alert_data": {
                "discharge_date": context.discharge_date,
                "risk_score": prediction.readmission_risk_30_day,
                "risk_category": prediction.risk_category,
                "top_risk_factors": [f.to_dict() for f in prediction.risk_factors[:3]],
                "urgent_interventions": [
                    i.to_dict()
                    for i in prediction.recommended_interventions
                    if self._escalates(i.priority)
                ],
            },
            "status": "active",
        }

    def build_accuracy_record(
        self, context: DischargeContext, prediction: Prediction, latency_ms: int
    ) -> Dict[str, Any]:
        return {
            "tenant_id": context.tenant_id,
            "skill_name": ACCURACY_SKILL_NAME,
            "prediction_type": "structured",
            "prediction_id": prediction.prediction_id,
            "patient_id": context.patient_id,
            "predicted_value": {
                "readmission_risk_30_day": prediction.readmission_risk_30_day,
                "risk_category": prediction.risk_category,
            },
            "confidence": prediction.prediction_confidence,
            "model_used": prediction.ai_model,
            "cost_usd": prediction.ai_cost,
            "latency_ms": latency_ms,
        }

    # -------------------------------------------------------------------------
    # Outcomes
    # -------------------------------------------------------------------------

    async def update_actual_outcome(
        self,
        prediction_id: str,
        actual_readmission: bool,
        actual_readmission_date: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Record whether the patient was actually readmitted.

        Days post-discharge are whole days, floored. Returns the updates
        written to the prediction record.
        """
        DischargeValidator.validate_uuid(prediction_id, "predictionId")

        updates: Dict[str, Any] = {"actual_readmission_occurred": actual_readmission}
        row: Optional[Mapping[str, Any]] = None

        if actual_readmission and actual_readmission_date:
            readmitted_at = DischargeValidator.validate_iso_date(
                actual_readmission_date, "actualReadmissionDate"
            )
            updates["actual_readmission_date"] = actual_readmission_date

            row = await self.source.fetch_prediction(prediction_id)
            discharged_at = parse_timestamp(row.get("discharge_date")) if row else None
            if discharged_at is not None:
                updates["actual_readmission_days_post_discharge"] = whole_days_between(
                    discharged_at, readmitted_at
                )

        await self.source.update_prediction_outcome(prediction_id, updates)
        logger.info(
            f"Recorded readmission outcome for prediction {prediction_id}",
            extra={"actual_readmission_occurred": actual_readmission},
        )

        await self._record_outcome(prediction_id, actual_readmission, row)
        return updates

    async def _record_outcome(
        self,
        prediction_id: str,
        actual_readmission: bool,
        row: Optional[Mapping[str, Any]],
    ) -> None:
        try:
            if row is None:
                row = await self.source.fetch_prediction(prediction_id)
            is_accurate: Optional[bool] = None
            if row and row.get("readmission_risk_30_day") is not None:
                tenant = await self.get_tenant_config(row["tenant_id"])
                predicted_high = float(row["readmission_risk_30_day"]) >= tenant.high_risk_threshold
                is_accurate = predicted_high == actual_readmission
            await self._bounded(
                self.source.record_accuracy_outcome(
                    prediction_id,
                    {
                        "actual_readmission_occurred": actual_readmission,
                        "is_accurate": is_accurate,
                        "outcome_source": "system_event",
                        "outcome_recorded_at": utc_now(),
                    },
                )
            )
        except Exception as e:
            logger.warning(
                f"Accuracy outcome tracking failed for prediction {prediction_id}: {_reason(e)}"
            )

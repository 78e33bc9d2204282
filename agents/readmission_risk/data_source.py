"""
Readmission Risk Agent - Patient Data Store

Defines the read/write contract the pipeline needs from the patient record
store, and the production implementation backed by PostgreSQL.

================================================================================
CONTRACT
================================================================================

Read methods return plain row mappings (column name -> value):

    - A list (possibly empty) means the source answered
    - None means the source is NOT connected for this deployment

The distinction matters: extractors translate None into "unknown" feature
values, and the data-completeness score counts unknowns. Single-row lookups
(profile, RUCA, HPSA, risk assessment) return None when no row exists.

Store errors (SQLAlchemyError) are logged and re-raised; they are never
converted into "no data".

================================================================================
CONCURRENCY
================================================================================

SQLAlchemy calls are blocking. Every public method is a coroutine that runs
its query with `asyncio.to_thread`, so the seven extractors can hit the pool
concurrently. Keep `db_pool_size` >= the extractor fan-out (7) in production.

================================================================================
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .config import settings

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


# =============================================================================
# CONTRACT
# =============================================================================

class PatientDataSource(Protocol):
    """Everything the readmission pipeline reads from or writes to the store."""

    # ---- clinical ----------------------------------------------------------
    async def fetch_admissions(self, patient_id: str, since: datetime) -> Optional[List[Row]]: ...
    async def fetch_active_conditions(self, patient_id: str) -> Optional[List[Row]]: ...
    async def fetch_observations(
        self, patient_id: str, codes: Sequence[str], until: datetime
    ) -> Optional[List[Row]]: ...

    # ---- medication --------------------------------------------------------
    async def fetch_active_medications(self, patient_id: str) -> Optional[List[Row]]: ...

    # ---- post-discharge ----------------------------------------------------
    async def fetch_upcoming_appointments(
        self, patient_id: str, after: datetime
    ) -> Optional[List[Row]]: ...
    async def fetch_pending_diagnostic_reports(self, patient_id: str) -> Optional[List[Row]]: ...
    async def fetch_profile(self, patient_id: str) -> Optional[Row]: ...

    # ---- social determinants -----------------------------------------------
    async def fetch_sdoh_indicators(self, patient_id: str) -> Optional[List[Row]]: ...
    async def fetch_ruca(self, zip_code: str) -> Optional[Row]: ...
    async def fetch_hpsa(self, zip_code: str) -> Optional[Row]: ...

    # ---- functional / engagement -------------------------------------------
    async def fetch_risk_assessment(self, patient_id: str) -> Optional[Row]: ...
    async def fetch_fall_reports(self, patient_id: str, since: datetime) -> Optional[List[Row]]: ...
    async def fetch_check_ins(self, patient_id: str, since: datetime) -> Optional[List[Row]]: ...
    async def fetch_engagement_metrics(
        self, patient_id: str, since: datetime
    ) -> Optional[List[Row]]: ...

    # ---- tenant ------------------------------------------------------------
    async def fetch_tenant_config(self, tenant_id: str) -> Optional[Row]: ...

    # ---- writes ------------------------------------------------------------
    async def insert_prediction(self, record: Mapping[str, Any]) -> str: ...
    async def fetch_prediction(self, prediction_id: str) -> Optional[Row]: ...
    async def update_prediction_outcome(
        self, prediction_id: str, updates: Mapping[str, Any]
    ) -> None: ...
    async def insert_care_plan(self, record: Mapping[str, Any]) -> str: ...
    async def insert_care_team_alert(self, record: Mapping[str, Any]) -> str: ...
    async def record_accuracy_prediction(self, record: Mapping[str, Any]) -> str: ...
    async def record_accuracy_outcome(
        self, prediction_id: str, outcome: Mapping[str, Any]
    ) -> None: ...

    async def ping(self) -> bool: ...


# =============================================================================
# POSTGRESQL IMPLEMENTATION
# =============================================================================

# JSON-typed columns per table; values are serialized and cast to jsonb
_JSON_COLUMNS: Dict[str, Sequence[str]] = {
    "readmission_risk_predictions": (
        "risk_factors",
        "protective_factors",
        "recommended_interventions",
        "data_sources_analyzed",
        "clinical_features",
        "medication_features",
        "post_discharge_features",
        "social_determinants_features",
        "functional_status_features",
        "engagement_features",
        "self_reported_features",
        "missing_critical_data",
        "risk_summary",
    ),
    "care_coordination_plans": (
        "goals",
        "interventions",
        "barriers",
        "success_metrics",
    ),
    "care_team_alerts": ("alert_data",),
    "ai_accuracy_tracking": ("predicted_value", "input_features"),
}


class SQLAlchemyDataSource:
    """
    PostgreSQL-backed patient data store.

    A lazily created pooled engine, parameterized `text()` queries and
    log-then-raise on SQLAlchemyError.
    """

    def __init__(self, database_url: Optional[str] = None) -> None:
        self.database_url = str(database_url or settings.database_url)
        self._engine: Optional[Engine] = None

    @property
    def engine(self) -> Engine:
        """Lazily create database engine."""
        if self._engine is None:
            self._engine = create_engine(
                self.database_url,
                pool_size=settings.db_pool_size,
                pool_timeout=settings.db_pool_timeout,
                pool_pre_ping=True,  # Verify connections before use
            )
        return self._engine

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    # -------------------------------------------------------------------------
    # Low-level helpers
    # -------------------------------------------------------------------------

    def _select(self, sql: str, params: Mapping[str, Any]) -> List[Row]:
        try:
            with self.engine.connect() as conn:
                result = conn.execute(text(sql), dict(params))
                return [dict(row) for row in result.mappings()]
        except SQLAlchemyError as e:
            logger.error(f"Database query failed: {e}")
            raise

    def _select_one(self, sql: str, params: Mapping[str, Any]) -> Optional[Row]:
        rows = self._select(sql, params)
        return rows[0] if rows else None

    def _insert(self, table: str, record: Mapping[str, Any]) -> str:
        json_columns = _JSON_COLUMNS.get(table, ())
        columns = list(record.keys())
        placeholders = []
        params: Dict[str, Any] = {}
        for column in columns:
            value = record[column]
            if column in json_columns:
                placeholders.append(f"CAST(:{column} AS jsonb)")
                params[column] = json.dumps(value) if value is not None else None
            else:
                placeholders.append(f":{column}")
                params[column] = value

        sql = (
            f"INSERT INTO {table} ({', '.join(columns)}) "
            f"VALUES ({', '.join(placeholders)}) RETURNING id"
        )
        try:
            with self.engine.begin() as conn:
                inserted_id = conn.execute(text(sql), params).scalar_one()
        except SQLAlchemyError as e:
            logger.error(f"Insert into {table} failed: {e}")
            raise

        logger.debug(f"Inserted row into {table}", extra={"id": str(inserted_id)})
        return str(inserted_id)

    def _update(self, table: str, row_id: str, updates: Mapping[str, Any]) -> None:
        assignments = ", ".join(f"{column} = :{column}" for column in updates)
        params = dict(updates)
        params["row_id"] = row_id
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    text(f"UPDATE {table} SET {assignments} WHERE id = :row_id"),
                    params,
                )
        except SQLAlchemyError as e:
            logger.error(f"Update of {table} failed: {e}")
            raise

    async def _run(self, func, *args):
        return await asyncio.to_thread(func, *args)

    # -------------------------------------------------------------------------
    # Clinical
    # -------------------------------------------------------------------------

    async def fetch_admissions(self, patient_id: str, since: datetime) -> List[Row]:
        return await self._run(
            self._select,
            """
            SELECT admission_date, facility_type
            FROM patient_readmissions
            WHERE patient_id = :patient_id
              AND admission_date >= :since
            ORDER BY admission_date DESC
            """,
            {"patient_id": patient_id, "since": since},
        )

    async def fetch_active_conditions(self, patient_id: str) -> List[Row]:
        return await self._run(
            self._select,
            """
            SELECT code, display, clinical_status
            FROM fhir_conditions
            WHERE patient_id = :patient_id
              AND clinical_status = 'active'
            """,
            {"patient_id": patient_id},
        )

    async def fetch_observations(
        self, patient_id: str, codes: Sequence[str], until: datetime
    ) -> List[Row]:
        return await self._run(
            self._select,
            """
            SELECT code,
                   (value_quantity ->> 'value')::float AS value,
                   effective_date_time
            FROM fhir_observations
            WHERE patient_id = :patient_id
              AND code = ANY(:codes)
              AND effective_date_time <= :until
            ORDER BY effective_date_time DESC
            """,
            {"patient_id": patient_id, "codes": list(codes), "until": until},
        )

    # -------------------------------------------------------------------------
    # Medication
    # -------------------------------------------------------------------------

    async def fetch_active_medications(self, patient_id: str) -> List[Row]:
        return await self._run(
            self._select,
            """
            SELECT medication_display, status, authored_on, last_fill_date
            FROM fhir_medication_requests
            WHERE patient_id = :patient_id
              AND status = 'active'
            """,
            {"patient_id": patient_id},
        )

    # -------------------------------------------------------------------------
    # Post-discharge
    # -------------------------------------------------------------------------

    async def fetch_upcoming_appointments(self, patient_id: str, after: datetime) -> List[Row]:
        return await self._run(
            self._select,
            """
            SELECT start, status
            FROM fhir_appointments
            WHERE patient_id = :patient_id
              AND start >= :after
              AND status IN ('booked', 'pending', 'proposed')
            ORDER BY start ASC
            LIMIT 1
            """,
            {"patient_id": patient_id, "after": after},
        )

    async def fetch_pending_diagnostic_reports(self, patient_id: str) -> List[Row]:
        return await self._run(
            self._select,
            """
            SELECT code_display, status, effective_date_time
            FROM fhir_diagnostic_reports
            WHERE patient_id = :patient_id
              AND status IN ('registered', 'partial', 'preliminary', 'pending')
            """,
            {"patient_id": patient_id},
        )

    async def fetch_profile(self, patient_id: str) -> Optional[Row]:
        return await self._run(
            self._select_one,
            """
            SELECT id, date_of_birth, chronic_conditions, address_city,
                   address_state, address_zip, primary_care_provider_id
            FROM profiles
            WHERE id = :patient_id
            """,
            {"patient_id": patient_id},
        )

    # -------------------------------------------------------------------------
    # Social determinants
    # -------------------------------------------------------------------------

    async def fetch_sdoh_indicators(self, patient_id: str) -> List[Row]:
        return await self._run(
            self._select,
            """
            SELECT category, risk_level, status, score, details
            FROM sdoh_indicators
            WHERE patient_id = :patient_id
              AND status = 'active'
            """,
            {"patient_id": patient_id},
        )

    async def fetch_ruca(self, zip_code: str) -> Optional[Row]:
        return await self._run(
            self._select_one,
            """
            SELECT zip_code, ruca_code, ruca_category
            FROM zip_ruca_codes
            WHERE zip_code = :zip_code
            """,
            {"zip_code": zip_code},
        )

    async def fetch_hpsa(self, zip_code: str) -> Optional[Row]:
        return await self._run(
            self._select_one,
            """
            SELECT zip_code, designation_type, status
            FROM hpsa_designations
            WHERE zip_code = :zip_code
              AND status = 'active'
            LIMIT 1
            """,
            {"zip_code": zip_code},
        )

    # -------------------------------------------------------------------------
    # Functional status and engagement
    # -------------------------------------------------------------------------

    async def fetch_risk_assessment(self, patient_id: str) -> Optional[Row]:
        return await self._run(
            self._select_one,
            """
            SELECT *
            FROM risk_assessments
            WHERE patient_id = :patient_id
            ORDER BY assessed_at DESC
            LIMIT 1
            """,
            {"patient_id": patient_id},
        )

    async def fetch_fall_reports(self, patient_id: str, since: datetime) -> List[Row]:
        return await self._run(
            self._select,
            """
            SELECT check_in_date, concern_flags
            FROM patient_daily_check_ins
            WHERE patient_id = :patient_id
              AND check_in_date >= :since
              AND 'fall' = ANY(concern_flags)
            ORDER BY check_in_date DESC
            """,
            {"patient_id": patient_id, "since": since},
        )

    async def fetch_check_ins(self, patient_id: str, since: datetime) -> List[Row]:
        return await self._run(
            self._select,
            """
            SELECT check_in_date, status, alert_triggered, alert_severity, responses
            FROM patient_daily_check_ins
            WHERE patient_id = :patient_id
              AND check_in_date >= :since
            ORDER BY check_in_date DESC
            """,
            {"patient_id": patient_id, "since": since},
        )

    async def fetch_engagement_metrics(self, patient_id: str, since: datetime) -> List[Row]:
        return await self._run(
            self._select,
            """
            SELECT date, trivia_played, word_find_played, meal_photo_shared,
                   engagement_score, overall_engagement_score, community_interactions
            FROM patient_engagement_metrics
            WHERE patient_id = :patient_id
              AND date >= :since
            ORDER BY date DESC
            """,
            {"patient_id": patient_id, "since": since.date()},
        )

    # -------------------------------------------------------------------------
    # Tenant configuration
    # -------------------------------------------------------------------------

    async def fetch_tenant_config(self, tenant_id: str) -> Optional[Row]:
        return await self._run(
            self._select_one,
            """
            SELECT readmission_predictor_enabled,
                   readmission_predictor_auto_create_care_plan,
                   readmission_predictor_high_risk_threshold,
                   readmission_predictor_model
            FROM ai_skill_config
            WHERE tenant_id = :tenant_id
            """,
            {"tenant_id": tenant_id},
        )

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def insert_prediction(self, record: Mapping[str, Any]) -> str:
        return await self._run(self._insert, "readmission_risk_predictions", record)

    async def fetch_prediction(self, prediction_id: str) -> Optional[Row]:
        return await self._run(
            self._select_one,
            """
            SELECT id, tenant_id, patient_id, discharge_date, readmission_risk_30_day
            FROM readmission_risk_predictions
            WHERE id = :prediction_id
            """,
            {"prediction_id": prediction_id},
        )

    async def update_prediction_outcome(
        self, prediction_id: str, updates: Mapping[str, Any]
    ) -> None:
        await self._run(self._update, "readmission_risk_predictions", prediction_id, updates)

    async def insert_care_plan(self, record: Mapping[str, Any]) -> str:
        return await self._run(self._insert, "care_coordination_plans", record)

    async def insert_care_team_alert(self, record: Mapping[str, Any]) -> str:
        return await self._run(self._insert, "care_team_alerts", record)

    async def record_accuracy_prediction(self, record: Mapping[str, Any]) -> str:
        return await self._run(self._insert, "ai_accuracy_tracking", record)

    async def record_accuracy_outcome(
        self, prediction_id: str, outcome: Mapping[str, Any]
    ) -> None:
        assignments = ", ".join(f"{column} = :{column}" for column in outcome)
        params = dict(outcome)
        params["prediction_id"] = prediction_id

        def _execute() -> None:
            try:
                with self.engine.begin() as conn:
                    conn.execute(
                        text(
                            f"UPDATE ai_accuracy_tracking SET {assignments} "
                            f"WHERE prediction_id = :prediction_id"
                        ),
                        params,
                    )
            except SQLAlchemyError as e:
                logger.error(f"Accuracy outcome update failed: {e}")
                raise

        await self._run(_execute)

    async def ping(self) -> bool:
        """Return True when the database answers a trivial query."""
        try:
            await self._run(self._select, "SELECT 1 AS ok", {})
            return True
        except SQLAlchemyError:
            return False

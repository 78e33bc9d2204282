"""Medication domain: polypharmacy, high-risk classes, changes and fills."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from ..features import DischargeContext, MedicationFactors
from .base import DomainExtractor, row_time

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MedicationChanges:
    added: int = 0
    discontinued: int = 0
    dose_changed: int = 0

    @property
    def total(self) -> int:
        return self.added + self.discontinued + self.dose_changed


class MedicationChangeDetector:
    """
    Admission-vs-discharge medication reconciliation.

    Not yet wired to a reconciliation source: always reports zero changes.
    Replace `detect` once pre-admission medication lists are stored.
    """

    async def detect(self, context: DischargeContext) -> MedicationChanges:
        return MedicationChanges()


class MedicationExtractor(DomainExtractor[MedicationFactors]):
    domain = "medication"

    def __init__(self, source, config, change_detector: Optional[MedicationChangeDetector] = None):
        super().__init__(source, config)
        self.change_detector = change_detector or MedicationChangeDetector()

    async def extract(self, context: DischargeContext, now: datetime) -> MedicationFactors:
        medications = await self.source.fetch_active_medications(context.patient_id)
        changes = await self.change_detector.detect(context)
        thresholds = self.config.medication

        if medications is None:
            return MedicationFactors(
                medications_added=changes.added,
                medications_discontinued=changes.discontinued,
                medications_dose_changed=changes.dose_changed,
                significant_medication_changes=changes.total >= thresholds.significant_changes,
            )

        names = [str(row.get("medication_display") or "").lower() for row in medications]

        # Rule: HIGH_RISK_MEDICATIONS
        # Case-insensitive substring match of each class keyword
        classes_present = [
            class_name
            for class_name, keywords in self.config.high_risk_meds.classes()
            if any(keyword in name for name in names for keyword in keywords)
        ]

        filled = self._filled_within_window(medications, context)
        count = len(medications)

        return MedicationFactors(
            active_medication_count=count,
            is_polypharmacy=count >= thresholds.polypharmacy,
            has_anticoagulants="anticoagulants" in classes_present,
            has_insulin="insulin" in classes_present,
            has_opioids="opioids" in classes_present,
            has_immunosuppressants="immunosuppressants" in classes_present,
            has_high_risk_medications=bool(classes_present),
            high_risk_medication_list=tuple(classes_present),
            medications_added=changes.added,
            medications_discontinued=changes.discontinued,
            medications_dose_changed=changes.dose_changed,
            significant_medication_changes=changes.total >= thresholds.significant_changes,
            prescription_filled_within_3_days=filled,
            no_prescription_filled=filled is False and count > 0,
        )

    def _filled_within_window(
        self, medications: List[dict], context: DischargeContext
    ) -> Optional[bool]:
        """
        True/False when fill dates are tracked, None when no fill data exists.

        A prescription counts as filled if any active medication was
        dispensed between discharge and discharge + fill window.
        """
        fills = [row_time(row, "last_fill_date") for row in medications if row.get("last_fill_date")]
        if not fills:
            return None
        discharged = self.discharge_time(context)
        window_end = discharged + timedelta(days=self.config.medication.prescription_fill_window_days)
        return any(fill is not None and discharged <= fill <= window_end for fill in fills)

"""
Readmission Risk Agent - Feature Aggregator

Runs the seven domain extractors concurrently and scores data completeness.

The fan-out is a join barrier: `asyncio.gather` waits for every extractor
and the first store error propagates, failing the whole extraction. A
partial feature vector is never returned.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import List, Optional, Tuple

from .data_source import PatientDataSource
from .extractors import (
    ClinicalExtractor,
    DischargeInstructionConfirmation,
    EngagementExtractor,
    FunctionalStatusExtractor,
    MedicationChangeDetector,
    MedicationExtractor,
    PostDischargeExtractor,
    SelfReportedExtractor,
    SocialDeterminantsExtractor,
)
from .features import DischargeContext, FeatureVector
from .model_config import ReadmissionModelConfig
from .utils import score_completeness, utc_now

logger = logging.getLogger(__name__)


class FeatureAggregator:
    """Builds a complete FeatureVector for one discharge."""

    def __init__(
        self,
        source: PatientDataSource,
        config: ReadmissionModelConfig,
        change_detector: Optional[MedicationChangeDetector] = None,
        instructions: Optional[DischargeInstructionConfirmation] = None,
    ) -> None:
        self.config = config
        self.clinical = ClinicalExtractor(source, config)
        self.medication = MedicationExtractor(source, config, change_detector)
        self.post_discharge = PostDischargeExtractor(source, config, instructions)
        self.social = SocialDeterminantsExtractor(source, config)
        self.functional = FunctionalStatusExtractor(source, config)
        self.engagement = EngagementExtractor(source, config)
        self.self_reported = SelfReportedExtractor(source, config)

    async def extract_features(
        self, context: DischargeContext, as_of: Optional[datetime] = None
    ) -> FeatureVector:
        """
        Extract all seven domains.

        Args:
            context: Validated discharge context
            as_of: Evaluation time ("now"); defaults to the current UTC time.
                Pass a fixed value for deterministic runs.
        """
        now = as_of or utc_now()

        (
            clinical,
            medication,
            post_discharge,
            social,
            functional,
            engagement,
            self_reported,
        ) = await asyncio.gather(
            self.clinical.extract(context, now),
            self.medication.extract(context, now),
            self.post_discharge.extract(context, now),
            self.social.extract(context, now),
            self.functional.extract(context, now),
            self.engagement.extract(context, now),
            self.self_reported.extract(context, now),
        )

        partial = FeatureVector(
            clinical=clinical,
            medication=medication,
            post_discharge=post_discharge,
            social_determinants=social,
            functional_status=functional,
            engagement=engagement,
            self_reported=self_reported,
        )
        score, missing = self.score_completeness(partial)

        logger.info(
            f"Extracted features for patient {context.patient_id} "
            f"(completeness {score}%)",
            extra={"missing_critical_data": missing},
        )

        return FeatureVector(
            clinical=clinical,
            medication=medication,
            post_discharge=post_discharge,
            social_determinants=social,
            functional_status=functional,
            engagement=engagement,
            self_reported=self_reported,
            data_completeness_score=score,
            missing_critical_data=tuple(missing),
        )

    def score_completeness(self, features: FeatureVector) -> Tuple[int, List[str]]:
        return score_completeness(features, self.config.completeness_fields)

"""
Domain extractors for the readmission feature vector.

Each extractor owns one domain, performs its own read-only queries and
returns an immutable record. The aggregator runs all seven concurrently.
"""

from .base import DomainExtractor
from .clinical import ClinicalExtractor
from .engagement import EngagementExtractor, count_consecutive_missed
from .functional_status import FunctionalStatusExtractor
from .medication import MedicationChangeDetector, MedicationChanges, MedicationExtractor
from .post_discharge import DischargeInstructionConfirmation, PostDischargeExtractor
from .self_reported import SelfReportedExtractor, parse_blood_pressure
from .social_determinants import SocialDeterminantsExtractor

__all__ = [
    "DomainExtractor",
    "ClinicalExtractor",
    "MedicationExtractor",
    "MedicationChangeDetector",
    "MedicationChanges",
    "PostDischargeExtractor",
    "DischargeInstructionConfirmation",
    "SocialDeterminantsExtractor",
    "FunctionalStatusExtractor",
    "EngagementExtractor",
    "SelfReportedExtractor",
    "count_consecutive_missed",
    "parse_blood_pressure",
]

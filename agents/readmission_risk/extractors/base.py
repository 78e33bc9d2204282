"""Shared base for the seven domain extractors."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Generic, Mapping, Optional, TypeVar

from ..data_source import PatientDataSource
from ..features import DischargeContext
from ..model_config import ReadmissionModelConfig
from ..utils import parse_timestamp

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT")


class DomainExtractor(ABC, Generic[RecordT]):
    """
    One clinical domain of the feature vector.

    Extractors only read from the store. Store errors are NOT caught here;
    they propagate to the aggregator, which fails the whole extraction.
    """

    domain: str = "base"

    def __init__(self, source: PatientDataSource, config: ReadmissionModelConfig) -> None:
        self.source = source
        self.config = config

    @abstractmethod
    async def extract(self, context: DischargeContext, now: datetime) -> RecordT:
        """Build this domain's record for the discharge, evaluated at `now`."""

    def discharge_time(self, context: DischargeContext) -> datetime:
        parsed = parse_timestamp(context.discharge_date)
        if parsed is None:
            # Context is validated before extraction; reaching here is a bug
            raise ValueError(f"Unparseable discharge date: {context.discharge_date!r}")
        return parsed


def row_details(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a row's JSON `details` as a dict (stored as jsonb or text)."""
    details = row.get("details")
    if details is None:
        return {}
    if isinstance(details, str):
        try:
            details = json.loads(details)
        except ValueError:
            logger.warning("Ignoring malformed SDOH details payload")
            return {}
    return details if isinstance(details, dict) else {}


def row_responses(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a check-in's `responses` payload as a dict."""
    responses = row.get("responses")
    if isinstance(responses, str):
        try:
            responses = json.loads(responses)
        except ValueError:
            return {}
    return responses if isinstance(responses, dict) else {}


def row_time(row: Mapping[str, Any], column: str) -> Optional[datetime]:
    return parse_timestamp(row.get(column))

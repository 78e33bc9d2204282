"""
Readmission Risk Agent - Error Types

The API layer maps these onto HTTP status codes (see api.py). Store errors
are not wrapped: SQLAlchemyError propagates from the data source unchanged.
"""


class ReadmissionPredictorError(Exception):
    """Base class for all readmission pipeline errors."""


class DischargeValidationError(ReadmissionPredictorError, ValueError):
    """The discharge context (or an identifier) failed validation."""


class PredictorDisabledError(ReadmissionPredictorError):
    """The readmission predictor is not enabled for the tenant."""

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__("Readmission risk predictor is not enabled for this tenant")


class JudgeError(ReadmissionPredictorError):
    """The predictive judge failed to produce a response."""


class JudgeTimeoutError(JudgeError):
    """The predictive judge did not answer within the configured timeout."""

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Predictive judge timed out after {timeout_seconds:g}s")


class PredictionParseError(ReadmissionPredictorError):
    """The judge's answer could not be parsed into a valid prediction."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Failed to parse AI prediction: {reason}")

"""
Readmission Risk Agent
======================

30-day readmission risk prediction at hospital discharge.

The agent extracts an evidence-based feature vector across seven domains
(clinical, medication, post-discharge, social determinants, functional
status, engagement, self-reported health), asks a predictive judge for a
structured risk estimate, calibrates the judge's confidence by data
completeness, and explains the result in plain language.

Components:
-----------
- config: Environment configuration (pydantic-settings)
- model_config: Versioned clinical thresholds and evidence weights
- extractors: One extractor per feature domain
- aggregator: Concurrent feature extraction and completeness scoring
- prompt_builder: Weighted-evidence prompt for the judge
- judge / parser / calibration: Judge client, answer validation, confidence
- explainability: Feature-derived risk summary and narrative
- predictor: End-to-end pipeline with persistence and side effects
- api: FastAPI application

Usage:
------
    # As API server
    python -m uvicorn readmission_risk.api:app --host 0.0.0.0 --port 8006

Author: Hospital AI Platform Team
Version: 1.0.0
"""

__version__ = "1.0.0"
__author__ = "Hospital AI Platform Team"

from .config import settings
from .features import DischargeContext, FeatureVector
from .model_config import READMISSION_MODEL_V1, ReadmissionModelConfig, get_model_config
from .predictor import Prediction, ReadmissionRiskPredictor

__all__ = [
    "settings",
    "DischargeContext",
    "FeatureVector",
    "READMISSION_MODEL_V1",
    "ReadmissionModelConfig",
    "get_model_config",
    "Prediction",
    "ReadmissionRiskPredictor",
    "__version__",
]

"""
Readmission Risk Agent - Prompt Builder Unit Tests

Run with: pytest agents/readmission_risk/tests/test_prompt_builder.py -v
"""

from dataclasses import replace

from readmission_risk.model_config import READMISSION_MODEL_V1 as CONFIG, ClinicalWeights, EvidenceWeights
from readmission_risk.prompt_builder import PromptBuilder


class TestSystemPrompt:
    """Tests for the evidence-weight system prompt."""

    def test_renders_weights_from_config(self):
        prompt = PromptBuilder(CONFIG).build_system_prompt()

        assert "Prior admissions in 30 days: 0.25 (STRONGEST predictor)" in prompt
        assert "Follow-up within 7 days: -0.12 (PROTECTIVE)" in prompt
        assert "Stopped responding: 0.22 (CRITICAL)" in prompt

    def test_lists_ruca_weights(self):
        prompt = PromptBuilder(CONFIG).build_system_prompt()

        assert "- Urban (RUCA 1-3): 0.00 (baseline)" in prompt
        assert "- Isolated rural / frontier (RUCA 10): 0.18" in prompt

    def test_new_config_version_changes_prompt(self):
        """Weights are never hard-coded in the prompt."""
        weights = replace(
            EvidenceWeights(),
            clinical=replace(ClinicalWeights(), prior_admissions_30_day=0.31),
        )
        config = replace(CONFIG, version="TEST", weights=weights)

        prompt = PromptBuilder(config).build_system_prompt()

        assert "Prior admissions in 30 days: 0.31" in prompt

    def test_includes_response_schema(self):
        prompt = PromptBuilder(CONFIG).build_system_prompt()

        assert '"readmissionRisk30Day"' in prompt
        assert '"predictionConfidence"' in prompt


class TestUserBrief:
    """Tests for the per-discharge brief."""

    def test_discharge_section(self, context, golden_features):
        prompt = PromptBuilder(CONFIG).build_prompt(context, golden_features)

        assert prompt.startswith(
            "Predict 30-day readmission risk for patient discharged on 2025-01-15T08:00:00.000Z:"
        )
        assert "- Facility: Methodist Hospital" in prompt
        assert "- Primary Diagnosis: Heart failure, unspecified (I50.9)" in prompt
        assert "- Secondary Diagnoses: E11.9, I10" in prompt
        assert "- Length of Stay: 5 days (normal)" in prompt

    def test_sections_in_order(self, context, golden_features):
        prompt = PromptBuilder(CONFIG).build_prompt(context, golden_features)
        headers = [
            "=== DISCHARGE INFORMATION ===",
            "=== CLINICAL FACTORS",
            "=== MEDICATION FACTORS ===",
            "=== POST-DISCHARGE SETUP",
            "=== SOCIAL DETERMINANTS",
            "=== FUNCTIONAL STATUS ===",
            "=== ENGAGEMENT & BEHAVIORAL",
            "=== SELF-REPORTED HEALTH",
            "=== DATA QUALITY ===",
            "=== TASK ===",
        ]
        positions = [prompt.index(header) for header in headers]
        assert positions == sorted(positions)

    def test_high_impact_findings_are_called_out(self, context, golden_features):
        prompt = PromptBuilder(CONFIG).build_prompt(context, golden_features)

        assert "- Prior admissions (30 days): 2 [Weight: 0.25]" in prompt
        assert "WARNING: CONSECUTIVE MISSED CHECK-INS: 3 [Weight: 0.16]" in prompt
        assert "CRITICAL: PATIENT STOPPED RESPONDING" in prompt
        assert "WARNING: TRANSPORTATION BARRIER [Weight: 0.16]" in prompt
        assert "  - shortness of breath" in prompt
        assert "- Data completeness: 100%" in prompt

    def test_unknown_values_are_labelled(self, context, golden_features):
        clinical = replace(golden_features.clinical, prior_admissions_30_day=None)
        social = replace(golden_features.social_determinants, lives_alone=None)
        features = replace(
            golden_features,
            clinical=clinical,
            social_determinants=social,
            data_completeness_score=60,
            missing_critical_data=("clinical.prior_admissions_30_day",),
        )

        prompt = PromptBuilder(CONFIG).build_prompt(context, features)

        assert "- Prior admissions (30 days): Unknown" in prompt
        assert "- Lives alone: Unknown" in prompt
        assert "- Missing critical data: clinical.prior_admissions_30_day" in prompt

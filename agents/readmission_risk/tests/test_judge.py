"""
Readmission Risk Agent - Judge Client Unit Tests

Run with: pytest agents/readmission_risk/tests/test_judge.py -v
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from openai import OpenAIError

from readmission_risk.config import Settings
from readmission_risk.exceptions import JudgeError
from readmission_risk.judge import JudgeRequest, OpenAICompatibleJudge


@pytest.fixture
def judge_request():
    return JudgeRequest(
        prompt="Predict 30-day readmission risk...",
        system_prompt="You are a clinical AI...",
        model="claude-sonnet-4-5-20250929",
        user_id="patient-1",
    )


def _mock_client(content="{}", prompt_tokens=1000, completion_tokens=500):
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    response.model = "claude-sonnet-4-5-20250929"
    response.usage.prompt_tokens = prompt_tokens
    response.usage.completion_tokens = completion_tokens

    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=response)
    return client


class TestOpenAICompatibleJudge:
    """Tests for the chat-completions judge client."""

    def test_call_returns_text_model_and_cost(self, judge_request):
        client = _mock_client(content='{"riskCategory": "high"}')
        judge = OpenAICompatibleJudge(client=client, settings=Settings())

        response = asyncio.run(judge.call(judge_request))

        assert response.text == '{"riskCategory": "high"}'
        assert response.model == "claude-sonnet-4-5-20250929"
        # 1000 * 0.003 / 1000 + 500 * 0.015 / 1000
        assert response.cost == pytest.approx(0.0105)

    def test_call_sends_system_and_user_messages(self, judge_request):
        client = _mock_client()
        judge = OpenAICompatibleJudge(client=client, settings=Settings(judge_max_tokens=2000))

        asyncio.run(judge.call(judge_request))

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == judge_request.model
        assert kwargs["messages"][0] == {"role": "system", "content": judge_request.system_prompt}
        assert kwargs["messages"][1] == {"role": "user", "content": judge_request.prompt}
        assert kwargs["max_tokens"] == 2000
        assert kwargs["user"] == "patient-1"

    def test_sdk_errors_become_judge_errors(self, judge_request):
        client = MagicMock()
        client.chat.completions.create = AsyncMock(side_effect=OpenAIError("rate limited"))
        judge = OpenAICompatibleJudge(client=client, settings=Settings())

        with pytest.raises(JudgeError, match="rate limited"):
            asyncio.run(judge.call(judge_request))

    def test_missing_usage_costs_nothing(self):
        judge = OpenAICompatibleJudge(client=MagicMock(), settings=Settings())
        assert judge.estimate_cost(None) == 0.0

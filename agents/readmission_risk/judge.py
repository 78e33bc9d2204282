"""
Readmission Risk Agent - Predictive Judge Client

The judge is an external large language model that turns the feature brief
into a probabilistic readmission estimate. The pipeline only depends on the
`PredictiveJudge` protocol; `OpenAICompatibleJudge` is the default client
and works with any endpoint that speaks the chat-completions protocol.

Timeouts are enforced by the caller (predictor.py) with asyncio.wait_for.
This module never retries: a failed judge call fails the prediction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

from openai import AsyncOpenAI, OpenAIError

from .config import Settings, settings as default_settings
from .exceptions import JudgeError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JudgeRequest:
    prompt: str
    system_prompt: str
    model: str
    complexity: str = "complex"
    user_id: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class JudgeResponse:
    text: str
    model: str
    cost: float


class PredictiveJudge(Protocol):
    async def call(self, request: JudgeRequest) -> JudgeResponse: ...


class OpenAICompatibleJudge:
    """
    Chat-completions judge client.

    Cost is estimated from reported token usage and the per-1k prices in
    settings; endpoints that report no usage are priced at zero.
    """

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or default_settings
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        """Lazily create the SDK client."""
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.settings.judge_api_key,
                base_url=self.settings.judge_base_url,
                # Pipeline-level timeout is authoritative; no SDK retries
                max_retries=0,
            )
        return self._client

    async def call(self, request: JudgeRequest) -> JudgeResponse:
        try:
            response = await self.client.chat.completions.create(
                model=request.model,
                messages=[
                    {"role": "system", "content": request.system_prompt},
                    {"role": "user", "content": request.prompt},
                ],
                max_tokens=self.settings.judge_max_tokens,
                temperature=self.settings.judge_temperature,
                user=request.user_id,
            )
        except OpenAIError as e:
            logger.error(f"Predictive judge call failed: {e}")
            raise JudgeError(f"AI prediction generation failed: {e}") from e

        text = ""
        if response.choices:
            text = response.choices[0].message.content or ""

        cost = self.estimate_cost(getattr(response, "usage", None))
        logger.info(
            f"Judge call completed with model {response.model or request.model}",
            extra={"cost": cost, "context": request.context},
        )
        return JudgeResponse(text=text, model=response.model or request.model, cost=cost)

    def estimate_cost(self, usage: Any) -> float:
        if usage is None:
            return 0.0
        prompt_tokens = getattr(usage, "prompt_tokens", 0) or 0
        completion_tokens = getattr(usage, "completion_tokens", 0) or 0
        cost = (
            prompt_tokens / 1000 * self.settings.judge_input_cost_per_1k
            + completion_tokens / 1000 * self.settings.judge_output_cost_per_1k
        )
        return round(cost, 6)

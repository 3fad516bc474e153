from typing import Optional

from gateway.services.events import Usage, UsageSummary
from gateway.services.registry import ModelRates
from gateway.services.token_estimator import estimate_tokens


def calculate_cost(
    rates: Optional[ModelRates], prompt_tokens: int, completion_tokens: int
) -> float:
    """Cost in USD from per-1000-token rates. Unknown rates cost nothing."""
    if rates is None:
        return 0.0
    cost = (
        (prompt_tokens / 1000) * rates.input
        + (completion_tokens / 1000) * rates.output
    )
    return round(cost, 8)


class UsageAccumulator:
    """Running token and cost totals for one in-flight message.

    Providers report counts as running totals (Anthropic sends input tokens
    up front and output tokens at the end, Gemini repeats the totals on
    every chunk), so the latest reported value for each side wins. A side
    the provider never reports is estimated from text at ``finalize``.
    """

    def __init__(self, rates: Optional[ModelRates] = None, prompt_text: str = ""):
        self._rates = rates
        self._prompt_text = prompt_text
        self._parts: list[str] = []
        self.prompt_tokens: Optional[int] = None
        self.completion_tokens: Optional[int] = None

    def update(self, usage: Usage) -> None:
        if usage.prompt_tokens is not None:
            self.prompt_tokens = usage.prompt_tokens
        if usage.completion_tokens is not None:
            self.completion_tokens = usage.completion_tokens

    def add_text(self, text: str) -> None:
        self._parts.append(text)

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def finalize(self) -> UsageSummary:
        estimated = False
        prompt = self.prompt_tokens
        if prompt is None:
            prompt = estimate_tokens(self._prompt_text)
            estimated = True
        completion = self.completion_tokens
        if completion is None:
            completion = estimate_tokens(self.text)
            estimated = True
        return UsageSummary(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=prompt + completion,
            cost=calculate_cost(self._rates, prompt, completion),
            estimated=estimated,
        )

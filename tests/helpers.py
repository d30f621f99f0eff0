import asyncio
import json
from dataclasses import replace
from typing import Any
from unittest.mock import MagicMock

from ai_categorizer.providers.base import ProviderAdapter, RawProviderResponse, ShapeT
from ai_categorizer.providers.parsing import parse_payload
from ai_categorizer.providers.registry import PROVIDER_CONFIGS, ProviderId
from ai_categorizer.providers.selector import ProviderSelector


def categorization_json(category: str = "software", confidence: float = 0.8, **extra: Any) -> str:
    return json.dumps({
        "category": category,
        "confidence": confidence,
        "reasoning": extra.pop("reasoning", f"Looks like {category}"),
        "evidence": extra.pop("evidence", ["Vendor name"]),
        **extra,
    })


class ScriptedAdapter(ProviderAdapter):
    """Adapter whose backend replies with queued texts or raises queued errors."""

    def __init__(
        self,
        provider: ProviderId,
        outcomes: list[str | Exception],
        delay: float = 0.0,
        timeout: float | None = None,
    ) -> None:
        config = PROVIDER_CONFIGS[provider]
        if timeout is not None:
            config = replace(config, timeout=timeout)
        super().__init__(config, model=f"{provider.value}-test")
        self.provider = provider
        self.outcomes = list(outcomes)
        self.delay = delay
        self.calls = 0
        self.closed = False

    async def _complete(self, system_prompt: str, user_prompt: str) -> RawProviderResponse:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return RawProviderResponse(text=outcome, model=self.model, input_tokens=200, output_tokens=50)

    def to_canonical(self, raw: RawProviderResponse, shape: type[ShapeT]) -> ShapeT:
        return parse_payload(self.provider.value, raw.text, shape)

    async def aclose(self) -> None:
        self.closed = True


def first_candidate_selector(adapters: dict[ProviderId, ProviderAdapter]) -> ProviderSelector:
    # random() == 0.0 always lands on the first remaining candidate
    rng = MagicMock()
    rng.random.return_value = 0.0
    return ProviderSelector({p: a.config for p, a in adapters.items()}, rng=rng)

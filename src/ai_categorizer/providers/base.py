import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import ClassVar, TypeVar

from pydantic import BaseModel

from ai_categorizer.errors import ProviderTimeoutError
from ai_categorizer.models import CanonicalCategorization, InsightsPayload
from ai_categorizer.providers.prompts import (
    CATEGORIZATION_SYSTEM_PROMPT,
    INSIGHTS_SYSTEM_PROMPT,
    InsightsPromptPayload,
    PromptPayload,
    build_categorization_prompt,
    build_insights_prompt,
)
from ai_categorizer.providers.registry import ProviderConfig, ProviderId

ShapeT = TypeVar("ShapeT", bound=BaseModel)

MAX_OUTPUT_TOKENS = 1000
TEMPERATURE = 0.1


@dataclass(frozen=True)
class RawProviderResponse:
    """Untranslated answer of one backend; each adapter defines its own variant."""

    provider: ClassVar[ProviderId]

    text: str
    model: str
    input_tokens: int | None = None
    output_tokens: int | None = None


class ProviderAdapter(ABC):
    """
    Translates canonical prompts into one backend's API and that backend's
    answers back into canonical shapes.

    Adapters make exactly one call per invocation. Retrying, and falling
    back to another provider, belongs to the orchestrator.
    """

    provider: ClassVar[ProviderId]

    def __init__(self, config: ProviderConfig, model: str) -> None:
        self.config = config
        self.model = model

    async def invoke(self, payload: PromptPayload) -> RawProviderResponse:
        return await self._bounded(CATEGORIZATION_SYSTEM_PROMPT, build_categorization_prompt(payload))

    async def invoke_insights(self, payload: InsightsPromptPayload) -> RawProviderResponse:
        return await self._bounded(INSIGHTS_SYSTEM_PROMPT, build_insights_prompt(payload))

    async def _bounded(self, system_prompt: str, user_prompt: str) -> RawProviderResponse:
        try:
            return await asyncio.wait_for(
                self._complete(system_prompt, user_prompt),
                timeout=self.config.timeout,
            )
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(
                self.provider.value,
                f"no answer within {self.config.timeout:.1f}s",
            ) from e

    @abstractmethod
    async def _complete(self, system_prompt: str, user_prompt: str) -> RawProviderResponse:
        """Single backend call; maps SDK errors onto the provider error types."""
        pass

    @abstractmethod
    def to_canonical(self, raw: RawProviderResponse, shape: type[ShapeT]) -> ShapeT:
        """Convert this backend's raw answer into ``shape``."""
        pass

    def categorization(self, raw: RawProviderResponse) -> CanonicalCategorization:
        return self.to_canonical(raw, CanonicalCategorization)

    def insights(self, raw: RawProviderResponse) -> InsightsPayload:
        return self.to_canonical(raw, InsightsPayload)

    async def aclose(self) -> None:
        pass

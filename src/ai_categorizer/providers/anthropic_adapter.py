from dataclasses import dataclass
from typing import ClassVar

from anthropic import APIError, APITimeoutError, AsyncAnthropic

from ai_categorizer.errors import ProviderResponseError, ProviderTimeoutError, ProviderUnavailableError
from ai_categorizer.providers.base import (
    MAX_OUTPUT_TOKENS,
    TEMPERATURE,
    ProviderAdapter,
    RawProviderResponse,
    ShapeT,
)
from ai_categorizer.providers.parsing import parse_payload
from ai_categorizer.providers.registry import PROVIDER_CONFIGS, ProviderConfig, ProviderId

DEFAULT_ANTHROPIC_MODEL = "claude-3-5-sonnet-latest"


@dataclass(frozen=True)
class AnthropicResponse(RawProviderResponse):
    provider: ClassVar[ProviderId] = ProviderId.ANTHROPIC

    stop_reason: str | None = None


class AnthropicAdapter(ProviderAdapter):
    provider: ClassVar[ProviderId] = ProviderId.ANTHROPIC

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_ANTHROPIC_MODEL,
        config: ProviderConfig | None = None,
        client: AsyncAnthropic | None = None,
    ) -> None:
        super().__init__(config or PROVIDER_CONFIGS[ProviderId.ANTHROPIC], model)
        self.client = client or AsyncAnthropic(
            api_key=api_key,
            timeout=self.config.timeout,
            max_retries=0,
        )

    async def _complete(self, system_prompt: str, user_prompt: str) -> AnthropicResponse:
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=MAX_OUTPUT_TOKENS,
                temperature=TEMPERATURE,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
            )
        except APITimeoutError as e:
            raise ProviderTimeoutError(self.provider.value, str(e)) from e
        except APIError as e:
            raise ProviderUnavailableError(self.provider.value, str(e)) from e

        parts: list[str] = []
        for block in response.content or []:
            if getattr(block, "type", None) == "text":
                text = getattr(block, "text", None)
                if text:
                    parts.append(text)

        usage = getattr(response, "usage", None)
        return AnthropicResponse(
            text="".join(parts),
            model=getattr(response, "model", None) or self.model,
            input_tokens=getattr(usage, "input_tokens", None),
            output_tokens=getattr(usage, "output_tokens", None),
            stop_reason=getattr(response, "stop_reason", None),
        )

    def to_canonical(self, raw: RawProviderResponse, shape: type[ShapeT]) -> ShapeT:
        if not isinstance(raw, AnthropicResponse):
            raise ProviderResponseError(self.provider.value, f"unexpected response type {type(raw).__name__}")
        if raw.stop_reason == "max_tokens":
            raise ProviderResponseError(self.provider.value, "response truncated at max_tokens")
        return parse_payload(self.provider.value, raw.text, shape)

    async def aclose(self) -> None:
        await self.client.close()

from dataclasses import dataclass
from typing import ClassVar

from openai import APIError, APITimeoutError, AsyncOpenAI

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

DEFAULT_OPENAI_MODEL = "gpt-4o-mini"


@dataclass(frozen=True)
class OpenAIResponse(RawProviderResponse):
    provider: ClassVar[ProviderId] = ProviderId.OPENAI

    finish_reason: str | None = None


class OpenAIAdapter(ProviderAdapter):
    provider: ClassVar[ProviderId] = ProviderId.OPENAI

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_OPENAI_MODEL,
        base_url: str | None = None,
        config: ProviderConfig | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        super().__init__(config or PROVIDER_CONFIGS[ProviderId.OPENAI], model)
        self.client = client or AsyncOpenAI(
            api_key=api_key,
            base_url=base_url or None,
            timeout=self.config.timeout,
            max_retries=0,
        )

    async def _complete(self, system_prompt: str, user_prompt: str) -> OpenAIResponse:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=TEMPERATURE,
                max_tokens=MAX_OUTPUT_TOKENS,
                response_format={"type": "json_object"},
            )
        except APITimeoutError as e:
            raise ProviderTimeoutError(self.provider.value, str(e)) from e
        except APIError as e:
            raise ProviderUnavailableError(self.provider.value, str(e)) from e

        if not response.choices:
            raise ProviderResponseError(self.provider.value, "response has no choices")

        choice = response.choices[0]
        usage = getattr(response, "usage", None)
        return OpenAIResponse(
            text=choice.message.content or "",
            model=getattr(response, "model", None) or self.model,
            input_tokens=getattr(usage, "prompt_tokens", None),
            output_tokens=getattr(usage, "completion_tokens", None),
            finish_reason=choice.finish_reason,
        )

    def to_canonical(self, raw: RawProviderResponse, shape: type[ShapeT]) -> ShapeT:
        if not isinstance(raw, OpenAIResponse):
            raise ProviderResponseError(self.provider.value, f"unexpected response type {type(raw).__name__}")
        if raw.finish_reason == "length":
            raise ProviderResponseError(self.provider.value, "response truncated at max_tokens")
        if raw.finish_reason == "content_filter":
            raise ProviderResponseError(self.provider.value, "response withheld by content filter")
        return parse_payload(self.provider.value, raw.text, shape)

    async def aclose(self) -> None:
        await self.client.close()

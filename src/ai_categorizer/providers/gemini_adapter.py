from dataclasses import dataclass
from typing import Any, ClassVar

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

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

DEFAULT_GEMINI_MODEL = "gemini-2.0-flash"

_TRUNCATED_REASONS = {"MAX_TOKENS"}
_BLOCKED_REASONS = {"SAFETY", "RECITATION", "BLOCKLIST", "PROHIBITED_CONTENT"}


@dataclass(frozen=True)
class GeminiResponse(RawProviderResponse):
    provider: ClassVar[ProviderId] = ProviderId.GOOGLE

    finish_reason: str | None = None


def _enum_value(value: Any) -> str | None:
    if value is None:
        return None
    return str(getattr(value, "value", value))


class GeminiAdapter(ProviderAdapter):
    provider: ClassVar[ProviderId] = ProviderId.GOOGLE

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_GEMINI_MODEL,
        config: ProviderConfig | None = None,
        client: genai.Client | None = None,
    ) -> None:
        super().__init__(config or PROVIDER_CONFIGS[ProviderId.GOOGLE], model)
        self.client = client or genai.Client(
            api_key=api_key,
            http_options=genai_types.HttpOptions(timeout=int(self.config.timeout * 1000)),
        )

    async def _complete(self, system_prompt: str, user_prompt: str) -> GeminiResponse:
        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=user_prompt,
                config=genai_types.GenerateContentConfig(
                    system_instruction=system_prompt,
                    temperature=TEMPERATURE,
                    max_output_tokens=MAX_OUTPUT_TOKENS,
                    response_mime_type="application/json",
                ),
            )
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(self.provider.value, str(e)) from e
        except (genai_errors.APIError, httpx.HTTPError) as e:
            raise ProviderUnavailableError(self.provider.value, str(e)) from e

        candidates = getattr(response, "candidates", None) or []
        finish_reason = _enum_value(getattr(candidates[0], "finish_reason", None)) if candidates else None
        usage = getattr(response, "usage_metadata", None)
        return GeminiResponse(
            text=getattr(response, "text", None) or "",
            model=self.model,
            input_tokens=getattr(usage, "prompt_token_count", None),
            output_tokens=getattr(usage, "candidates_token_count", None),
            finish_reason=finish_reason,
        )

    def to_canonical(self, raw: RawProviderResponse, shape: type[ShapeT]) -> ShapeT:
        if not isinstance(raw, GeminiResponse):
            raise ProviderResponseError(self.provider.value, f"unexpected response type {type(raw).__name__}")
        if raw.finish_reason in _TRUNCATED_REASONS:
            raise ProviderResponseError(self.provider.value, "response truncated at max_output_tokens")
        if raw.finish_reason in _BLOCKED_REASONS:
            raise ProviderResponseError(self.provider.value, f"response blocked ({raw.finish_reason})")
        return parse_payload(self.provider.value, raw.text, shape)

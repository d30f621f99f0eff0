import os

from ai_categorizer.logger import get_logger
from ai_categorizer.providers.anthropic_adapter import DEFAULT_ANTHROPIC_MODEL, AnthropicAdapter
from ai_categorizer.providers.base import ProviderAdapter
from ai_categorizer.providers.gemini_adapter import DEFAULT_GEMINI_MODEL, GeminiAdapter
from ai_categorizer.providers.openai_adapter import DEFAULT_OPENAI_MODEL, OpenAIAdapter
from ai_categorizer.providers.registry import ProviderId

logger = get_logger(__name__)


def build_adapters() -> dict[ProviderId, ProviderAdapter]:
    """
    One adapter per provider whose API key is configured. Providers without
    a key are left out of selection entirely.
    """
    adapters: dict[ProviderId, ProviderAdapter] = {}

    api_key = os.getenv("OPENAI_API_KEY")
    if api_key:
        model = os.getenv("OPENAI_MODEL", DEFAULT_OPENAI_MODEL)
        base_url = os.getenv("OPENAI_BASE_URL")
        adapters[ProviderId.OPENAI] = OpenAIAdapter(api_key=api_key, model=model, base_url=base_url)
        logger.info("[PROVIDER] OpenAI enabled: model=%s, base_url=%s", model, base_url or "default")
    else:
        logger.warning("[PROVIDER] OPENAI_API_KEY not found. OpenAI provider disabled.")

    api_key = os.getenv("ANTHROPIC_API_KEY")
    if api_key:
        model = os.getenv("ANTHROPIC_MODEL", DEFAULT_ANTHROPIC_MODEL)
        adapters[ProviderId.ANTHROPIC] = AnthropicAdapter(api_key=api_key, model=model)
        logger.info("[PROVIDER] Anthropic enabled: model=%s", model)
    else:
        logger.warning("[PROVIDER] ANTHROPIC_API_KEY not found. Anthropic provider disabled.")

    api_key = os.getenv("GOOGLE_API_KEY")
    if api_key:
        model = os.getenv("GOOGLE_MODEL", DEFAULT_GEMINI_MODEL)
        adapters[ProviderId.GOOGLE] = GeminiAdapter(api_key=api_key, model=model)
        logger.info("[PROVIDER] Google enabled: model=%s", model)
    else:
        logger.warning("[PROVIDER] GOOGLE_API_KEY not found. Google provider disabled.")

    if not adapters:
        logger.warning("[PROVIDER] No AI provider configured; only rules and fallback will answer.")
    return adapters

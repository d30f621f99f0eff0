from dataclasses import dataclass
from enum import Enum


class ProviderId(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"


class Capability(str, Enum):
    CATEGORIZATION = "categorization"
    INSIGHTS = "insights"
    PREDICTIONS = "predictions"
    RECOMMENDATIONS = "recommendations"
    RECONCILIATION = "reconciliation"


@dataclass(frozen=True)
class ProviderConfig:
    weight: float
    capabilities: frozenset[Capability]
    max_retries: int
    timeout: float  # seconds
    cost: float  # USD per 1k tokens

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities


# Static; changing these is a deployment, not a database write.
PROVIDER_CONFIGS: dict[ProviderId, ProviderConfig] = {
    ProviderId.OPENAI: ProviderConfig(
        weight=0.4,
        capabilities=frozenset({
            Capability.CATEGORIZATION,
            Capability.INSIGHTS,
            Capability.PREDICTIONS,
            Capability.RECOMMENDATIONS,
        }),
        max_retries=3,
        timeout=30.0,
        cost=0.02,
    ),
    ProviderId.ANTHROPIC: ProviderConfig(
        weight=0.35,
        capabilities=frozenset({
            Capability.CATEGORIZATION,
            Capability.INSIGHTS,
            Capability.RECONCILIATION,
        }),
        max_retries=3,
        timeout=30.0,
        cost=0.008,
    ),
    ProviderId.GOOGLE: ProviderConfig(
        weight=0.25,
        capabilities=frozenset({
            Capability.CATEGORIZATION,
            Capability.PREDICTIONS,
            Capability.RECOMMENDATIONS,
        }),
        max_retries=2,
        timeout=25.0,
        cost=0.0005,
    ),
}

DEFAULT_PROVIDER = ProviderId.OPENAI


def estimate_cost(config: ProviderConfig, input_tokens: int | None, output_tokens: int | None) -> float | None:
    if input_tokens is None and output_tokens is None:
        return None
    return ((input_tokens or 0) + (output_tokens or 0)) / 1000 * config.cost

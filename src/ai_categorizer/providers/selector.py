import random
from collections.abc import Collection, Mapping

from ai_categorizer.logger import get_logger
from ai_categorizer.providers.registry import (
    DEFAULT_PROVIDER,
    PROVIDER_CONFIGS,
    Capability,
    ProviderConfig,
    ProviderId,
)

logger = get_logger(__name__)


class ProviderSelector:
    """
    Weighted-random choice among providers that support a capability.

    This spreads load by configured weight; it does not route on latency or
    health. Pass a seeded ``random.Random`` for reproducible draws.
    """

    def __init__(
        self,
        configs: Mapping[ProviderId, ProviderConfig] | None = None,
        rng: random.Random | None = None,
        default: ProviderId = DEFAULT_PROVIDER,
    ) -> None:
        self.configs = dict(PROVIDER_CONFIGS if configs is None else configs)
        self.rng = rng or random.Random()
        self.default = default

    def candidates(self, capability: Capability) -> list[tuple[ProviderId, ProviderConfig]]:
        return [
            (provider, config)
            for provider, config in self.configs.items()
            if config.supports(capability) and config.weight > 0
        ]

    def select(self, capability: Capability, exclude: Collection[ProviderId] = ()) -> ProviderId:
        available = self.candidates(capability)
        if exclude:
            remaining = [(p, c) for p, c in available if p not in exclude]
            # Excluded providers come back only when nothing else is left
            if remaining:
                available = remaining

        if not available:
            logger.debug(
                "[PROVIDER] No provider supports '%s'; using default %s",
                capability.value,
                self.default.value,
            )
            return self.default

        total_weight = sum(config.weight for _, config in available)
        value = self.rng.random() * total_weight
        for provider, config in available:
            value -= config.weight
            if value <= 0:
                return provider
        # Float rounding can leave a tiny positive remainder
        return available[-1][0]

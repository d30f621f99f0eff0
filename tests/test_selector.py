import random
from collections import Counter

import pytest

from ai_categorizer.providers.registry import PROVIDER_CONFIGS, Capability, ProviderId, estimate_cost
from ai_categorizer.providers.selector import ProviderSelector


def test_weighted_selection_matches_configured_weights() -> None:
    selector = ProviderSelector(rng=random.Random(1234))
    draws = 10_000

    counts = Counter(selector.select(Capability.CATEGORIZATION) for _ in range(draws))

    assert counts[ProviderId.OPENAI] / draws == pytest.approx(0.40, abs=0.03)
    assert counts[ProviderId.ANTHROPIC] / draws == pytest.approx(0.35, abs=0.03)
    assert counts[ProviderId.GOOGLE] / draws == pytest.approx(0.25, abs=0.03)


def test_selection_respects_capability() -> None:
    selector = ProviderSelector(rng=random.Random(7))

    insights = {selector.select(Capability.INSIGHTS) for _ in range(500)}
    reconciliation = {selector.select(Capability.RECONCILIATION) for _ in range(100)}

    assert insights == {ProviderId.OPENAI, ProviderId.ANTHROPIC}
    assert reconciliation == {ProviderId.ANTHROPIC}


def test_no_capable_provider_returns_default() -> None:
    configs = {ProviderId.GOOGLE: PROVIDER_CONFIGS[ProviderId.GOOGLE]}
    selector = ProviderSelector(configs, rng=random.Random(3))

    assert selector.select(Capability.RECONCILIATION) == ProviderId.OPENAI


def test_excluded_providers_are_skipped_while_others_remain() -> None:
    selector = ProviderSelector(rng=random.Random(11))

    picks = {selector.select(Capability.CATEGORIZATION, exclude={ProviderId.OPENAI}) for _ in range(300)}
    assert ProviderId.OPENAI not in picks

    everyone = set(ProviderId)
    assert selector.select(Capability.CATEGORIZATION, exclude=everyone) in everyone


def test_estimate_cost() -> None:
    config = PROVIDER_CONFIGS[ProviderId.OPENAI]

    assert estimate_cost(config, 1500, 500) == pytest.approx(0.04)
    assert estimate_cost(config, None, None) is None

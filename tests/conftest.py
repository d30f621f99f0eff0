from collections.abc import Callable
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock

import pytest
from helpers import first_candidate_selector

from ai_categorizer.models import CategorizationRule
from ai_categorizer.orchestrator import CategorizationOrchestrator
from ai_categorizer.persistence.memory import InMemoryPersistence
from ai_categorizer.providers.base import ProviderAdapter
from ai_categorizer.providers.registry import ProviderId


@pytest.fixture
def persistence() -> InMemoryPersistence:
    return InMemoryPersistence()


@pytest.fixture
def audit() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def make_orchestrator(
    persistence: InMemoryPersistence,
    audit: AsyncMock,
) -> Callable[..., CategorizationOrchestrator]:
    def factory(adapters: dict[ProviderId, ProviderAdapter] | None = None, **kwargs: Any) -> CategorizationOrchestrator:
        adapters = adapters or {}
        kwargs.setdefault("selector", first_candidate_selector(adapters))
        kwargs.setdefault("rule_cache_ttl", 0.0)
        return CategorizationOrchestrator(persistence, adapters, audit, **kwargs)

    return factory


@pytest.fixture
def aws_rule() -> CategorizationRule:
    return CategorizationRule(
        scope="user-1",
        pattern="aws",
        category="software",
        confidence=0.95,
        min_amount=Decimal("0"),
        max_amount=Decimal("10000"),
    )


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"

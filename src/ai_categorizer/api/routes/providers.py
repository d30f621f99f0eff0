from typing import Annotated

from fastapi import APIRouter, Depends

from ai_categorizer.api.dependencies import get_orchestrator
from ai_categorizer.api.schemas import ProviderInfo
from ai_categorizer.orchestrator import CategorizationOrchestrator
from ai_categorizer.providers.registry import PROVIDER_CONFIGS

router = APIRouter()


@router.get("/providers", response_model=list[ProviderInfo])
async def list_providers(
    orchestrator: Annotated[CategorizationOrchestrator, Depends(get_orchestrator)],
) -> list[ProviderInfo]:
    providers = []
    for provider, config in PROVIDER_CONFIGS.items():
        adapter = orchestrator.adapters.get(provider)
        if adapter is not None:
            config = adapter.config
        providers.append(
            ProviderInfo(
                provider=provider.value,
                enabled=adapter is not None,
                model=adapter.model if adapter else None,
                weight=config.weight,
                capabilities=sorted(capability.value for capability in config.capabilities),
                max_retries=config.max_retries,
                timeout=config.timeout,
                cost=config.cost,
            )
        )
    return providers

from typing import Annotated

from fastapi import APIRouter, Depends

from ai_categorizer.api.dependencies import get_orchestrator, get_user_id
from ai_categorizer.api.schemas import InsightsRequest
from ai_categorizer.models import InsightsResult
from ai_categorizer.orchestrator import CategorizationOrchestrator

router = APIRouter()


@router.post("/insights", response_model=InsightsResult)
async def generate_insights(
    req: InsightsRequest,
    user_id: Annotated[str, Depends(get_user_id)],
    orchestrator: Annotated[CategorizationOrchestrator, Depends(get_orchestrator)],
) -> InsightsResult:
    return await orchestrator.generate_insights(user_id, req.data_type, req.summary)

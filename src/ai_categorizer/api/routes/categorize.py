from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from ai_categorizer.api.dependencies import get_orchestrator, get_user_id
from ai_categorizer.api.schemas import CategorizeRequest
from ai_categorizer.models import CategorizationResult, Explanation
from ai_categorizer.orchestrator import CategorizationOrchestrator

router = APIRouter()


@router.post("/categorize", response_model=CategorizationResult)
async def categorize_transaction(
    req: CategorizeRequest,
    user_id: Annotated[str, Depends(get_user_id)],
    orchestrator: Annotated[CategorizationOrchestrator, Depends(get_orchestrator)],
) -> CategorizationResult:
    return await orchestrator.categorize(user_id, req.transaction)


@router.get("/explanations/{decision_id}", response_model=Explanation)
async def get_explanation(
    decision_id: str,
    user_id: Annotated[str, Depends(get_user_id)],
    orchestrator: Annotated[CategorizationOrchestrator, Depends(get_orchestrator)],
) -> Explanation:
    explanation = await orchestrator.get_explanation(user_id, decision_id)
    if explanation is None:
        raise HTTPException(status_code=404, detail="Explanation not found")
    return explanation

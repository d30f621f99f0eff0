from typing import Annotated

from fastapi import APIRouter, Depends

from ai_categorizer.api.dependencies import get_orchestrator, get_user_id
from ai_categorizer.models import FeedbackInput
from ai_categorizer.orchestrator import CategorizationOrchestrator

router = APIRouter()


@router.post("/feedback", status_code=202)
async def record_feedback(
    feedback: FeedbackInput,
    user_id: Annotated[str, Depends(get_user_id)],
    orchestrator: Annotated[CategorizationOrchestrator, Depends(get_orchestrator)],
) -> dict[str, str]:
    await orchestrator.record_feedback(user_id, feedback)
    return {"status": "accepted"}

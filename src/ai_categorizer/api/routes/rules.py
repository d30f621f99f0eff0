from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from ai_categorizer.api.dependencies import get_orchestrator, get_user_id
from ai_categorizer.api.schemas import RuleCreateRequest
from ai_categorizer.models import CategorizationRule
from ai_categorizer.orchestrator import CategorizationOrchestrator

router = APIRouter(prefix="/rules")


@router.get("", response_model=list[CategorizationRule])
async def list_rules(
    user_id: Annotated[str, Depends(get_user_id)],
    orchestrator: Annotated[CategorizationOrchestrator, Depends(get_orchestrator)],
    include_inactive: bool = False,
) -> list[CategorizationRule]:
    return await orchestrator.list_rules(user_id, include_inactive=include_inactive)


@router.post("", response_model=CategorizationRule, status_code=201)
async def create_rule(
    req: RuleCreateRequest,
    user_id: Annotated[str, Depends(get_user_id)],
    orchestrator: Annotated[CategorizationOrchestrator, Depends(get_orchestrator)],
) -> CategorizationRule:
    return await orchestrator.add_rule(
        user_id,
        req.pattern,
        req.category,
        subcategory=req.subcategory,
        confidence=req.confidence,
        min_amount=req.min_amount,
        max_amount=req.max_amount,
    )


@router.post("/{rule_id}/deactivate", response_model=CategorizationRule)
async def deactivate_rule(
    rule_id: str,
    user_id: Annotated[str, Depends(get_user_id)],
    orchestrator: Annotated[CategorizationOrchestrator, Depends(get_orchestrator)],
) -> CategorizationRule:
    rule = await orchestrator.deactivate_rule(user_id, rule_id)
    if rule is None:
        raise HTTPException(status_code=404, detail="Rule not found")
    return rule

from typing import Annotated

from fastapi import Header, HTTPException, Request

from ai_categorizer.orchestrator import CategorizationOrchestrator


def get_orchestrator(request: Request) -> CategorizationOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if not orchestrator:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return orchestrator


def get_user_id(x_user_id: Annotated[str, Header(min_length=1)]) -> str:
    return x_user_id.strip()

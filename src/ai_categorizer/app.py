from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ai_categorizer.api.routes import categorize, feedback, insights, providers, rules
from ai_categorizer.core import settings
from ai_categorizer.errors import PersistenceError, ValidationError
from ai_categorizer.logger import get_logger, setup_logging
from ai_categorizer.orchestrator import build_orchestrator

logger = get_logger(__name__)


async def _validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc)})


async def _persistence_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("[API] Storage failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Storage unavailable"})


def create_app() -> FastAPI:
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Initializing services...")
        settings.log_environment()

        orchestrator = build_orchestrator()
        app.state.orchestrator = orchestrator

        logger.info("Services initialized.")
        yield
        logger.info("Service shutting down.")
        await orchestrator.aclose()

    app = FastAPI(title="AI Categorizer", lifespan=lifespan)

    app.add_exception_handler(ValidationError, _validation_error_handler)
    app.add_exception_handler(PersistenceError, _persistence_error_handler)

    app.include_router(categorize.router)
    app.include_router(feedback.router)
    app.include_router(insights.router)
    app.include_router(rules.router)
    app.include_router(providers.router)

    return app


app = create_app()

"""FastAPI application factory.

Main entry point for the ChatGPA Web API.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chatgpa.config.app_config import AppConfig, load_app_config
from chatgpa.db.database import init_db
from chatgpa.web.errors import ApiError
from chatgpa.web.routes import (
    ai_router,
    attempts_router,
    chat_router,
    health_router,
    redirects_router,
    util_router,
    workspace_router,
)
from chatgpa.web.services import AppServices, LLMFactory, default_llm_factory

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan context manager for startup/shutdown events."""
    services: AppServices = app.state.services
    init_db(services.config.db_path)
    logger.info(
        "api_startup",
        mode=services.config.mode,
        db_path=str(services.config.db_path),
        provider=services.config.llm.default_provider,
    )
    yield


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    """Render an ApiError raised outside a gateway as ``{code, message}``."""
    return JSONResponse(exc.to_dict(), status_code=exc.status)


def create_app(config: AppConfig | None = None, llm_factory: LLMFactory | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Application config (defaults to ``load_app_config()``)
        llm_factory: Builds LLM clients; tests pass one returning a mock

    Returns:
        Configured FastAPI app instance
    """
    config = config or load_app_config()

    app = FastAPI(
        title="ChatGPA API",
        description="Notes, AI-generated quizzes, grading and study folders",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.services = AppServices(
        config=config,
        llm_factory=llm_factory or default_llm_factory(config),
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    app.add_exception_handler(ApiError, api_error_handler)

    app.include_router(health_router)
    app.include_router(chat_router)
    app.include_router(ai_router)
    app.include_router(attempts_router)
    app.include_router(workspace_router)
    app.include_router(util_router)
    app.include_router(redirects_router)

    return app


# Default app instance for uvicorn
app = create_app()

"""
FastAPI application factory and entry point.
"""

import logging
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .agent.quota import DailyQuota
from .agent.reconciliation import ReconciliationController
from .agent.session import ChatSession
from .agent.tasks import TaskBoard
from .core.config import Settings, get_settings
from .errors import PersistenceError, SessionBusyError, SessionStateError, TaskNotFoundError
from .orchestrator.gateway import LLMGateway, OpenAIGateway
from .orchestrator.llm import LLMClient
from .routers.portrait import router as portrait_router
from .routers.session import router as session_router
from .routers.tasks import router as tasks_router
from .storage.base import PortraitStore
from .storage.factory import build_store

logger = logging.getLogger(__name__)

ERROR_STATUS = (
    (SessionBusyError, 409),
    (SessionStateError, 409),
    (TaskNotFoundError, 404),
    (PersistenceError, 503),
)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[PortraitStore] = None,
    gateway: Optional[LLMGateway] = None,
) -> FastAPI:
    settings = settings or get_settings()
    store = store or build_store(settings)
    gateway = gateway or OpenAIGateway(LLMClient(settings), app_language=settings.app_language)

    controller = ReconciliationController(store, gateway, settings)
    session = ChatSession(controller, gateway, DailyQuota(settings.daily_message_limit), settings)

    app = FastAPI(
        title="Serenely Reflection Service",
        version="0.1.0",
        docs_url="/docs" if settings.env == "development" else None,
        redoc_url="/redoc" if settings.env == "development" else None,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.gateway = gateway
    app.state.controller = controller
    app.state.session = session
    app.state.task_board = TaskBoard(store, lock=controller.write_lock)

    @app.on_event("startup")
    async def on_startup() -> None:
        logging.basicConfig(
            level=getattr(logging, settings.log_level.upper(), logging.INFO),
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
        logger.info("Starting Serenely (env=%s, storage=%s)", settings.env, settings.storage_backend)
        await store.init()

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await controller.aclose()
        await gateway.aclose()
        await store.close()
        logger.info("Serenely shut down")

    for error_type, status_code in ERROR_STATUS:

        async def _handler(request: Request, exc: Exception, status_code: int = status_code) -> JSONResponse:
            if status_code >= 500:
                logger.error("%s %s failed: %s", request.method, request.url.path, exc)
            return JSONResponse(status_code=status_code, content={"detail": str(exc)})

        app.add_exception_handler(error_type, _handler)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(portrait_router)
    app.include_router(session_router)
    app.include_router(tasks_router)

    return app


if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        "serenely.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.env == "development",
        log_level=settings.log_level.lower(),
    )

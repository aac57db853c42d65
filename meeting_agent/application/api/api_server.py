from contextlib import asynccontextmanager
from typing import Optional
from datetime import datetime
import asyncio

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from meeting_agent.application.api.route.workflow import router as workflow_router
from meeting_agent.application.session_manager import SessionNotFoundError, WorkflowSessionManager
from meeting_agent.application.websocket.connection_manager import ConnectionManager
from meeting_agent.application.websocket.ws_server import router as websocket_router
from meeting_agent.config import Settings
from meeting_agent.domain.models.errors import AgendaParseError, WorkflowError
from meeting_agent.infrastructure.observability.logging import setup_logging

logger = structlog.get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    session_manager: Optional[WorkflowSessionManager] = None
) -> FastAPI:
    """Build the HTTP and WebSocket application around a session manager"""

    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT, settings.SERVICE_NAME)

        manager = session_manager or WorkflowSessionManager(settings)
        app.state.session_manager = manager
        await manager.start()

        health_task = asyncio.create_task(app.state.connection_manager.health_check())
        logger.info("Workflow server started", app=settings.APP_NAME)

        try:
            yield
        finally:
            health_task.cancel()
            try:
                await health_task
            except asyncio.CancelledError:
                pass
            for session_id in list(app.state.connection_manager.active_connections.keys()):
                await app.state.connection_manager.disconnect(session_id)
            await manager.shutdown()
            logger.info("Workflow server shutdown")

    app = FastAPI(title=settings.APP_NAME, debug=settings.DEBUG, lifespan=lifespan)
    app.state.settings = settings
    app.state.connection_manager = ConnectionManager()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SessionNotFoundError)
    async def session_not_found_handler(request: Request, exc: SessionNotFoundError):
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"detail": f"Session {exc.session_id} not found"}
        )

    @app.exception_handler(AgendaParseError)
    async def agenda_parse_error_handler(request: Request, exc: AgendaParseError):
        return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content={"detail": exc.to_dict()})

    @app.exception_handler(WorkflowError)
    async def workflow_error_handler(request: Request, exc: WorkflowError):
        logger.warning("Workflow error", path=request.url.path, error=exc.message, error_kind=exc.kind.value)
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": exc.to_dict()})

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint"""
        manager: WorkflowSessionManager = request.app.state.session_manager
        return {
            "status": "healthy",
            "active_sessions": len(manager.sessions),
            "active_connections": len(request.app.state.connection_manager.active_connections),
            "timestamp": datetime.utcnow().isoformat()
        }

    app.include_router(workflow_router)
    app.include_router(websocket_router)

    return app


def main():
    import uvicorn

    settings = Settings()
    uvicorn.run(create_app(settings), host=settings.API_HOST, port=settings.API_PORT)


if __name__ == "__main__":
    main()

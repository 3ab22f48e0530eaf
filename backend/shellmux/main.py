"""Main FastAPI application."""

from fastapi import FastAPI

from shellmux.api import metrics, websocket
from shellmux.core import settings, setup_logging
from shellmux.core.logging import get_logger
from shellmux.core.metrics import set_app_info
from shellmux.services import get_session_manager

setup_logging()

app = FastAPI(
    title=settings.app_title,
    version=settings.app_version,
)

set_app_info(version=settings.app_version, environment=settings.environment)

app.include_router(metrics.router)
app.include_router(websocket.router)


@app.on_event("shutdown")
async def shutdown_sessions() -> None:
    """Tear down every SSH session before the process exits."""
    get_logger(__name__).info("Shutting down SSH sessions")
    get_session_manager().shutdown_all()


@app.get("/health")
async def health() -> dict:
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "sessions": len(get_session_manager().registry),
    }


@app.get("/")
async def root() -> dict:
    """Root endpoint."""
    return {
        "message": "shellmux SSH session bridge",
        "version": settings.app_version,
        "websocket": "/ws",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "shellmux.main:app",
        host=settings.bind_host,
        port=settings.bind_port,
        log_level=settings.log_level.lower(),
    )

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from socketio import AsyncServer, ASGIApp
from datetime import datetime, timezone
from typing import Optional

from community_alert import config
from community_alert.api import alerts, auth, events, messages
from community_alert.database import init_db
from community_alert.errors import AlertPlatformError
from community_alert.logging_config import get_logger, setup_logging
from community_alert.services.store import RecordStore
from community_alert.sockets import ConnectionLifecycle

setup_logging(config.LOG_LEVEL)
logger = get_logger(__name__)


def create_app(database_path: Optional[str] = None, sio: Optional[AsyncServer] = None) -> FastAPI:
    """Build the FastAPI app and attach the real-time core to a Socket.IO server."""
    database_path = database_path or config.DATABASE_PATH
    init_db(database_path)

    app = FastAPI(
        title="Community Alert API",
        description="Community alerts, events and real-time chat",
        version="0.1.0",
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_errors_middleware(request: Request, call_next):
        """Log requests that result in 4xx/5xx responses."""
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(f"Exception handling request {request.method} {request.url}")
            raise

        if response.status_code >= 400:
            logger.info(f"[HTTP {response.status_code}] {request.method} {request.url}")

        return response

    @app.exception_handler(AlertPlatformError)
    async def platform_error_handler(request: Request, exc: AlertPlatformError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.reason})

    # WebSocket/Socket.IO setup
    if sio is None:
        sio = AsyncServer(
            async_mode="asgi",
            cors_allowed_origins="*" if config.ALLOWED_ORIGINS == ["*"] else config.ALLOWED_ORIGINS,
            ping_timeout=config.PING_TIMEOUT,
            ping_interval=config.PING_INTERVAL,
            logger=config.DEBUG,
            engineio_logger=config.DEBUG,
        )

    store = RecordStore(database_path)
    app.state.store = store
    app.state.sio = sio
    app.state.realtime = ConnectionLifecycle(sio, store)

    # Include routers
    app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
    app.include_router(alerts.router, prefix="/api/alerts", tags=["alerts"])
    app.include_router(events.router, prefix="/api/events", tags=["events"])
    app.include_router(messages.alert_router, prefix="/api/alert-messages", tags=["messages"])
    app.include_router(messages.event_router, prefix="/api/event-messages", tags=["messages"])

    @app.get("/api/health")
    async def health():
        """Health check endpoint."""
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **app.state.realtime.stats(),
        }

    logger.info(f"Community Alert API initialized (database={database_path})")
    return app


app = create_app()

# Wrap FastAPI with Socket.IO
socket_app = ASGIApp(app.state.sio, app)


def run():
    import os
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    logger.info(f"Starting Community Alert server on {host}:{port}")
    uvicorn.run(socket_app, host=host, port=port)


if __name__ == "__main__":
    run()

"""TaskHub messaging backend.

This is the main entry point for the TaskHub realtime messaging service:
1:1 and group chat with reactions, read receipts, typing indicators and
presence, served over REST plus one WebSocket per client.

Modules:
    - realtime: WebSocket rooms, presence and ephemeral signals
    - messaging: message lifecycle (send, read, seen, react, delete)
    - groups: group membership
    - auth: bearer token verification
    - client: reconciliation client for consuming applications
"""
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from taskhub.config import get_config
from taskhub.errors import AppError, InternalError
from taskhub.groups.router import router as groups_router
from taskhub.messaging.router import router as messaging_router
from taskhub.realtime.router import router as realtime_router
from taskhub.responses import failure
from taskhub.services import get_services

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
# uvicorn.access logs every poll of /messages/unread/count.
for _noisy in (
    "uvicorn.access",
    "httpx",
    "httpcore",
    "websockets",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in taskhub.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    services = get_services()
    logger.info(
        f"Server running on http://{config.server.host}:{config.server.port} "
        f"(db={services.db.path})"
    )

    yield  # Application runs here

    # Shutdown
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="TaskHub Messaging API",
    description="Realtime 1:1 and group messaging for TaskHub",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppError)
async def app_error_handler(_request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{exc.__class__.__name__}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=failure(exc.message))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content=failure(f"{location}: {message}" if location else message),
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error: {exc}")
    error = InternalError("Internal server error")
    return JSONResponse(status_code=error.status_code, content=failure(error.message))


# Register all routers
app.include_router(realtime_router)
app.include_router(messaging_router)
app.include_router(groups_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}


def run() -> None:
    """Console entry point (``taskhub-server``)."""
    config = get_config()
    uvicorn.run(
        "taskhub.main:app",
        host=config.server.host,
        port=config.server.port,
        reload=config.server.reload,
    )


if __name__ == "__main__":
    run()

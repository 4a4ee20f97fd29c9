"""Main FastAPI application."""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from testix.database import init_db
from testix.engine.errors import (
    EngineError,
    EvaluatorUnavailable,
    NoActiveSession,
    SessionAlreadyFinished,
    StaleGrading,
    StorageError,
)
from testix.logging_setup import setup_console_logging
from testix.routes import attempts, sessions

setup_console_logging()

log = logging.getLogger(__name__)

app = FastAPI(title="Testix Session API")

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


def status_for(exc: EngineError) -> int:
    if isinstance(exc, NoActiveSession):
        return 404
    if isinstance(exc, (SessionAlreadyFinished, StaleGrading)):
        return 409
    if isinstance(exc, (EvaluatorUnavailable, StorageError)):
        return 503
    return 400


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    status_code = status_for(exc)
    log.info("%s %s -> %d: %s", request.method, request.url.path, status_code, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.on_event("startup")
def startup_events() -> None:
    """Initialize database on startup."""
    init_db()


app.include_router(sessions.router)
app.include_router(attempts.router)

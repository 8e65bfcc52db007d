from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Dict, List

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from authgate.api.error_handling import register_exception_handlers
from authgate.api.routes import apps_router, auth_router
from authgate.config import get_settings
from authgate.logging import get_logger, set_correlation_id

logger = get_logger(__name__)

_settings = get_settings()

__version__ = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the credential store on startup; release pools on shutdown."""
    from authgate.service.runtime import get_runtime

    # A store that cannot be reached must keep the server from starting
    runtime = get_runtime()
    await runtime.startup()
    yield
    try:
        await get_runtime().close()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


app = FastAPI(title="authgate", version=__version__, lifespan=lifespan)


def _allowed_origins() -> List[str]:
    if _settings.cors_allow_origins:
        return _settings.cors_allow_origins
    # Credentials are enabled, so never fall back to a wildcard
    return [
        "http://localhost",
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
    max_age=3600,
)


@app.middleware("http")
async def add_correlation_id(request: Request, call_next):
    """Tag the request with a correlation id for structured logs.

    Taken from ``X-Request-ID`` when the client sends one, otherwise a new
    UUID. Echoed back in the response header.
    """
    correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    # Responses carry session keys and profile data
    if request.url.path.startswith("/auth/"):
        response.headers.setdefault("Cache-Control", "no-store, no-cache, must-revalidate, private")
    return response


register_exception_handlers(app)
app.include_router(auth_router)
app.include_router(apps_router)


@app.get("/", response_class=PlainTextResponse)
async def root() -> str:
    return "Session Server is running!"


@app.get("/healthz")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


def main() -> None:
    logger.info("server_starting", port=_settings.port, app_env=_settings.app_env)
    uvicorn.run(app, host="0.0.0.0", port=_settings.port)

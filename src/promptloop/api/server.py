"""
PromptLoop -- API Server

FastAPI app exposing the scheduler trigger routes and a health check.

Run with: uvicorn promptloop.api.server:app --port 8000
"""

import logging
import time

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware

from promptloop._version import __version__
from promptloop.api._shared import _get_live_log
from promptloop.api.routes import cron, health

logger = logging.getLogger("promptloop.api.server")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every non-health request with method, path, status and latency."""

    async def dispatch(self, request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        latency_ms = int((time.time() - start) * 1000)
        if request.url.path != "/health":
            _get_live_log().info(
                "Server",
                f"{request.method} {request.url.path} -> {response.status_code}",
                latency_ms=latency_ms,
            )
        return response


def create_app() -> FastAPI:
    app = FastAPI(
        title="PromptLoop API",
        description="Scheduler triggers for feedback aggregation and prompt evolution",
        version=__version__,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(health.router)
    app.include_router(cron.router)
    return app


app = create_app()

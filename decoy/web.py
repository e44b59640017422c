from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional
from urllib.parse import urlsplit

from anyio import to_thread
from fastapi import FastAPI, Request, Response
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import HTMLResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Receive, Scope, Send

from .log import get_logger
from .page import render_landing

logger = get_logger("web")

# Statuses answered with a bare 404: unknown paths and wrong methods alike.
NOT_FOUND_STATUSES = {404, 405}


class AbsoluteFormPath:
    """Route absolute-form targets (``GET http://host/ HTTP/1.1``) by their path.

    The h11 protocol passes the whole target through as ``scope["path"]``.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and "://" in scope["path"] and not scope["path"].startswith("/"):
            scope = dict(scope)
            scope["path"] = urlsplit(scope["path"]).path or "/"
            raw_path = scope.get("raw_path")
            if raw_path:
                scope["raw_path"] = urlsplit(raw_path.decode("latin-1")).path.encode("latin-1") or b"/"
        await self.app(scope, receive, send)


def create_app(filler: str, worker_threads: Optional[int] = None) -> FastAPI:
    """Build the single-page app.

    ``filler`` is shared read-only by every request; nothing writes to it
    after startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if worker_threads:
            to_thread.current_default_thread_limiter().total_tokens = worker_threads
            logger.debug("Request worker threads: %d", worker_threads)
        yield

    app = FastAPI(
        title="nginx",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.add_middleware(AbsoluteFormPath)

    @app.exception_handler(StarletteHTTPException)
    async def not_found(request: Request, exc: StarletteHTTPException) -> Response:
        if exc.status_code in NOT_FOUND_STATUSES:
            return Response(status_code=404)
        return await http_exception_handler(request, exc)

    # Plain def: FastAPI runs it in the worker pool, off the event loop.
    @app.get("/", response_class=HTMLResponse)
    def landing() -> HTMLResponse:
        body, padding = render_landing(filler)
        logger.debug("Serving landing page with %d bytes of padding", padding)
        return HTMLResponse(body)

    return app

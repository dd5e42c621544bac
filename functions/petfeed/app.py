"""
FastAPI application entry point for the pet feed service.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.middleware.gzip import GZipMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from petfeed.config import Settings, get_settings
from petfeed.middleware import (
    FixedWindowLimiter,
    RateLimitMiddleware,
    SecurityHeadersMiddleware,
)
from petfeed.routes import router

logger = logging.getLogger(__name__)


async def _http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        {"error": str(exc.detail)},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


async def _validation_error(request: Request, exc: RequestValidationError):
    messages = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        messages.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return JSONResponse({"error": "; ".join(messages) or "Invalid request."}, status_code=400)


async def _server_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"error": "Server error."}, status_code=500)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title="Pet Photo Feed", version="0.1.0")

    # Last added runs first: CORS, gzip, security headers, rate limits.
    app.add_middleware(
        RateLimitMiddleware,
        limiter=FixedWindowLimiter(
            settings.rate_limit_requests, settings.rate_limit_window_seconds
        ),
        rules=[
            (
                "POST",
                f"{settings.api_prefix}/posts",
                FixedWindowLimiter(
                    settings.upload_rate_limit_requests,
                    settings.upload_rate_limit_window_seconds,
                ),
            ),
        ],
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(GZipMiddleware, minimum_size=settings.gzip_minimum_size)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StarletteHTTPException, _http_error)
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.add_exception_handler(Exception, _server_error)

    app.include_router(router, prefix=settings.api_prefix)

    if not settings.s3_bucket:
        app.mount(
            "/uploads",
            StaticFiles(directory=settings.uploads_dir, check_dir=False),
            name="uploads",
        )
    if settings.web_root:
        app.mount("/", StaticFiles(directory=settings.web_root, html=True), name="site")
    return app


app = create_app()

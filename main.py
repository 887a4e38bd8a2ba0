"""
main.py
-------
LetRents API: accounts and sessions, tenant invitations, M-Pesa paybill
collection and payment reconciliation.

Startup configures structlog; shutdown drains the DB pool. Each request
gets a request_id (X-Request-ID if the proxy sent one) bound into the log
context and echoed back on the response.

Error rendering:
  LetRentsError → its status_code with {"detail": message}
  anything else → 500 {"detail": "Internal server error"}, logged with traceback
The Daraja C2B callbacks never reach either handler: they always answer
200 with {ResultCode, ResultDesc}.

Run with:
    uvicorn main:app --reload              # development
    uvicorn main:app --workers 4           # production
"""

import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from letrents.api.routes import admin, auth, mpesa
from letrents.core.config import settings
from letrents.core.exceptions import LetRentsError
from letrents.core.logging import (
    bind_request_context,
    clear_request_context,
    configure_logging,
    get_logger,
)
from letrents.db.session import engine

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    configure_logging()
    logger.info(
        "LetRents API starting",
        env=settings.APP_ENV,
        email_verification=settings.REQUIRE_EMAIL_VERIFICATION,
        rotate_refresh_tokens=settings.ROTATE_REFRESH_TOKENS,
        mpesa_base_url=settings.MPESA_BASE_URL,
        smtp_configured=bool(settings.SMTP_HOST),
    )
    yield
    logger.info("LetRents API stopping, disposing DB engine")
    await engine.dispose()


def create_application() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Property-management backend: JWT sessions with refresh tokens, "
            "email verification, tenant invitations and M-Pesa paybill "
            "collection with automatic reconciliation."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        bind_request_context(request_id, request.method, request.url.path)
        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    app.include_router(auth.router)
    app.include_router(admin.router)
    app.include_router(mpesa.router)

    # ── Error rendering ───────────────────────────────────────────────────────

    @app.exception_handler(LetRentsError)
    async def domain_error_handler(request: Request, exc: LetRentsError) -> JSONResponse:
        logger.info(
            "Request rejected",
            path=request.url.path,
            error=type(exc).__name__,
            status_code=exc.status_code,
            detail=exc.message,
        )
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled exception", path=request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )

    @app.get("/health", tags=["Health"], summary="Service health check")
    async def health() -> dict:
        return {"status": "ok", "app": settings.APP_NAME, "env": settings.APP_ENV}

    return app


app = create_application()

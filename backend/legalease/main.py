"""
FastAPI Application — Entry Point

LegalEase document pipeline API

Architecture:
  - All routes are versioned under /api/v1/
  - Components (stores, OCR, LLM, rate gate) are built once in the lifespan
    hook and shared through app.state.services (see api.dependencies)
  - Every route is rate limited per client IP: the general class on all
    /api/v1 routes, plus upload / ai / qa on the expensive ones
  - Structured JSON error responses on all 4xx/5xx

Middleware stack (innermost → outermost):
  1. CORS — restrict to configured origins
  2. Gzip — compress responses > 1 KB
  3. Request ID + request logging — X-Request-ID header on every response
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from legalease.api.dependencies import Services, build_services, rate_limited
from legalease.api.v1.ai import router as ai_router
from legalease.api.v1.documents import router as documents_router
from legalease.api.v1.questions import router as questions_router
from legalease.core.config import Settings, get_settings
from legalease.core.errors import LegalEaseError, RateLimitError
from legalease.ratelimit import OperationClass
from legalease.schemas.documents import ErrorDetail, ErrorResponse

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    level = logging.DEBUG if settings.debug else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID")


# ---------------------------------------------------------------------------
# Application lifespan: startup / shutdown hooks
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Run on startup: build services unless they were injected, log config summary.
    Run on shutdown: close the document store (disposes the DB pool).
    """
    settings: Settings = app.state.settings
    logger.info(
        "Starting LegalEase | env=%s llm_provider=%s ocr_backend=%s blob_backend=%s",
        settings.app_env, settings.llm_provider, settings.ocr_backend, settings.blob_backend,
    )

    if getattr(app.state, "services", None) is None:
        app.state.services = await build_services(settings)

    services: Services = app.state.services
    health = await services.store.check_health()
    if health["status"] != "ok":
        logger.critical("Document store health check failed at startup: %s", health)
        raise RuntimeError(f"Document store unavailable: {health}")

    if not services.generation.generator.is_configured:
        logger.warning("LLM provider %s has no credentials; AI stages will fail", settings.llm_provider)

    yield

    logger.info("Shutting down LegalEase")
    await services.close()


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(services: Services | None = None, settings: Settings | None = None) -> FastAPI:
    """
    Build the ASGI app. Passing `services` skips backend construction in the
    lifespan hook; tests use this to inject fakes.
    """
    settings = settings or (services.settings if services else get_settings())
    configure_logging(settings)

    app = FastAPI(
        title="LegalEase Document Pipeline",
        description=(
            "Upload legal documents, get a plain-language summary and risk analysis, "
            "and ask questions about the content in English or Hindi."
        ),
        version="1.0.0",
        docs_url="/api/docs" if not settings.is_production else None,
        redoc_url="/api/redoc" if not settings.is_production else None,
        openapi_url="/api/openapi.json" if not settings.is_production else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.services = services

    # ----------------------------------------------------------------
    # Middleware (applied in reverse order: last added = outermost)
    # ----------------------------------------------------------------

    app.add_middleware(GZipMiddleware, minimum_size=1024)

    allowed_origins = ["*"] if settings.app_env == "development" else ["https://app.legalease.in"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Content-Type", "X-Request-ID"],
        expose_headers=[
            "X-Request-ID",
            "X-Document-ID",
            "Location",
            "Retry-After",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
        ],
    )

    # ----------------------------------------------------------------
    # Request ID + structured logging middleware
    # ----------------------------------------------------------------

    @app.middleware("http")
    async def request_id_and_logging(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        start = time.perf_counter()

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id

        logger.info(
            "HTTP %s %s %d %.1fms | request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            request_id,
        )
        return response

    # ----------------------------------------------------------------
    # Exception handlers: uniform structured error responses
    # ----------------------------------------------------------------

    @app.exception_handler(LegalEaseError)
    async def legalease_exception_handler(request: Request, exc: LegalEaseError):
        """Render domain errors with their own status and error code."""
        request_id = _request_id(request)
        log = logger.error if exc.status_code >= 500 else logger.info
        log(
            "%s | path=%s status=%d request_id=%s doc=%s: %s",
            type(exc).__name__, request.url.path, exc.status_code, request_id,
            exc.document_id or "-", exc.message,
        )

        headers: dict[str, str] = {}
        retry_after: int | None = None
        if isinstance(exc, RateLimitError):
            retry_after = exc.retry_after
            headers = {
                "Retry-After":           str(exc.retry_after),
                "X-RateLimit-Limit":     str(exc.limit),
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset":     str(exc.retry_after),
            }

        body = ErrorResponse(
            error_code=exc.error_code,
            message=exc.message,
            details=[ErrorDetail(**d) for d in exc.details],
            request_id=request_id,
            document_id=exc.document_id,
            retry_after=retry_after,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=body.model_dump(mode="json"),
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Convert Pydantic/FastAPI validation errors to structured ErrorResponse."""
        details = [
            ErrorDetail(
                field=" → ".join(str(loc) for loc in err["loc"]),
                message=err["msg"],
                code="VALIDATION_ERROR",
            )
            for err in exc.errors()
        ]
        body = ErrorResponse(
            error_code="VALIDATION_ERROR",
            message="Request validation failed.",
            details=details,
            request_id=_request_id(request),
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=body.model_dump(mode="json"),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Catch-all for unhandled exceptions — never expose stack traces."""
        request_id = _request_id(request) or str(uuid.uuid4())
        logger.exception(
            "Unhandled exception | path=%s request_id=%s",
            request.url.path, request_id,
        )
        body = ErrorResponse(
            error_code="INTERNAL_ERROR",
            message="An unexpected error occurred.",
            request_id=request_id,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=body.model_dump(mode="json"),
            headers={"X-Request-ID": request_id},
        )

    # ----------------------------------------------------------------
    # Routers
    # ----------------------------------------------------------------

    general = [Depends(rate_limited(OperationClass.GENERAL))]
    app.include_router(documents_router, prefix="/api/v1", dependencies=general)
    app.include_router(questions_router, prefix="/api/v1", dependencies=general)
    app.include_router(ai_router,        prefix="/api/v1", dependencies=general)

    # ----------------------------------------------------------------
    # Health & readiness endpoints (not rate limited: used by load balancer)
    # ----------------------------------------------------------------

    @app.get(
        "/health",
        tags=["Operations"],
        summary="Liveness probe",
        description="Returns 200 if the process is alive. No external checks.",
    )
    async def health() -> dict:
        return {"status": "ok", "service": "legalease-api"}

    @app.get(
        "/ready",
        tags=["Operations"],
        summary="Readiness probe",
        description="Returns 200 only if the document store is reachable.",
    )
    async def readiness(request: Request) -> JSONResponse:
        services: Services | None = request.app.state.services
        if services is None:
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "not_ready", "store": {"status": "starting"}},
            )
        store_status = await services.store.check_health()
        if store_status["status"] != "ok":
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "not_ready", "store": store_status},
            )
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"status": "ready", "store": store_status},
        )

    return app


# ---------------------------------------------------------------------------
# Application instance (imported by uvicorn)
# ---------------------------------------------------------------------------

app = create_app()


# ---------------------------------------------------------------------------
# Local development entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "legalease.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.app_env == "development",
        log_level="debug" if settings.debug else "info",
        access_log=True,
    )

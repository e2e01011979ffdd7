import logging
from datetime import datetime, timezone
from http import HTTPStatus

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from contact_api.api.v1.contact import router as contact_router
from contact_api.core.config import get_settings
from contact_api.core.dependencies import ContactPipeline
from contact_api.core.errors import PROBLEM_CONTENT_TYPE, ProblemError, ProblemKind
from contact_api.core.logging_config import configure_logging
from contact_api.core.request_context import (
    REQUEST_ID_HEADER,
    CorrelationContext,
    generate_request_id,
    reset_request_id,
    set_request_id,
)
from contact_api.utils.rate_limit import get_client_ip, start_rate_limit_sweeper

settings = get_settings()
configure_logging(settings)
_rate_limit_sweep_task = None

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Contact API",
    version="1.0.0",
    docs_url="/docs" if settings.docs_enabled else None,
    openapi_url="/openapi.json" if settings.docs_enabled else None,
)


@app.on_event("startup")
async def _startup_jobs():
    global _rate_limit_sweep_task
    current = get_settings()
    errors = current.validate_required_config()
    if errors:
        if current.is_production or not current.allow_invalid_config:
            raise RuntimeError(
                f"Configuration validation failed in {current.environment} environment: " + "; ".join(errors)
            )
        logger.warning(
            "Configuration validation failed (environment=%s), starting because ALLOW_INVALID_CONFIG is set: %s",
            current.environment,
            "; ".join(errors),
        )

    pipeline = getattr(app.state, "contact_pipeline", None)
    if pipeline is None:
        pipeline = ContactPipeline(current)
        app.state.contact_pipeline = pipeline
    if not errors:
        pipeline.service()

    if _rate_limit_sweep_task is None:
        _rate_limit_sweep_task = start_rate_limit_sweeper(
            pipeline.rate_limiter,
            interval_seconds=current.rate_limit_sweep_interval_seconds,
        )


@app.on_event("shutdown")
async def _shutdown_jobs():
    global _rate_limit_sweep_task
    if _rate_limit_sweep_task is not None:
        _rate_limit_sweep_task.cancel()
        _rate_limit_sweep_task = None


if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=False,
        allow_methods=["POST", "GET", "OPTIONS"],
        allow_headers=["Content-Type"],
        expose_headers=[REQUEST_ID_HEADER, "Retry-After"],
    )

app.include_router(contact_router, prefix="/api", tags=["contact"])


def _request_context(request: Request) -> CorrelationContext:
    return CorrelationContext(
        request_id=getattr(request.state, "request_id", None) or "-",
        source_address=get_client_ip(request) or "unknown",
    )


def _unexpected_response(request: Request, exc: Exception) -> JSONResponse:
    context = _request_context(request)
    logger.exception("Unhandled exception", extra={"request_id": context.request_id})
    error = ProblemError.wrap(exc, type_base_url=get_settings().problem_type_base_url)
    pipeline = getattr(app.state, "contact_pipeline", None)
    if pipeline is not None:
        try:
            pipeline.error_reporter.capture(error, context=context, tags={"stage": "http", "kind": error.kind.name})
        except Exception:
            logger.exception("Error reporter failed")
    return error.to_response()


@app.exception_handler(ProblemError)
async def _problem_exception_handler(request: Request, exc: ProblemError):
    return exc.to_response()


@app.exception_handler(StarletteHTTPException)
async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
    kind = ProblemKind.for_status(exc.status_code)
    # Only 4xx details are safe to echo; 5xx keeps the generic text.
    detail = exc.detail if exc.status_code < 500 and isinstance(exc.detail, str) else None
    if kind.status == exc.status_code:
        body = ProblemError(kind, detail, type_base_url=get_settings().problem_type_base_url).to_wire_format()
    else:
        phrase = HTTPStatus(exc.status_code).phrase
        body = {"type": "about:blank", "title": phrase, "status": exc.status_code, "detail": detail or phrase}
    return JSONResponse(
        status_code=exc.status_code,
        content=body,
        headers=getattr(exc, "headers", None),
        media_type=PROBLEM_CONTENT_TYPE,
    )


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    return _unexpected_response(request, exc)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    # Incoming X-Request-ID headers are ignored; every request gets a fresh id.
    request_id = generate_request_id()
    request.state.request_id = request_id
    token = set_request_id(request_id)
    try:
        try:
            response = await call_next(request)
        except Exception as exc:
            response = _unexpected_response(request, exc)
    finally:
        reset_request_id(token)
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


# Registered last so it is outermost and also decorates the fallback 500 response.
@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    if not settings.security_headers_enabled:
        return response

    headers = response.headers
    if "X-Content-Type-Options" not in headers:
        headers["X-Content-Type-Options"] = "nosniff"
    if "X-Frame-Options" not in headers:
        headers["X-Frame-Options"] = "DENY"
    if "Referrer-Policy" not in headers:
        headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    if "Permissions-Policy" not in headers:
        headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
    if "Strict-Transport-Security" not in headers:
        headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    if "Content-Security-Policy" not in headers:
        headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'; base-uri 'none'"

    return response


@app.get("/health")
async def health_check():
    current = get_settings()
    email_up = all(_email_provider_configured(current, name) for name in current.email_providers)
    turnstile_up = current.turnstile_mock_active or bool(current.turnstile_secret_key)
    services = {
        "email": "up" if email_up else "down",
        "turnstile": "up" if turnstile_up else "down",
    }
    return {
        "status": "healthy" if email_up and turnstile_up else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "services": services,
    }


def _email_provider_configured(current, name: str) -> bool:
    if name == "resend":
        return bool(current.resend_api_key)
    if name == "sendgrid":
        return bool(current.sendgrid_api_key)
    if name == "smtp":
        return bool(current.smtp_host)
    return name == "mock"

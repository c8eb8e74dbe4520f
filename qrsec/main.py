# qrsec/main.py

from __future__ import annotations

import json
import logging
import secrets
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import sentry_sdk
from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from qrsec.aggregator import VerdictAggregator
from qrsec.db import Database
from qrsec.errors import InvalidInputError, LinkCheckError
from qrsec.history import PostgresScanStore
from qrsec.models import ErrorResponse, LinkCheckRequest, build_linkcheck_response
from qrsec.providers import build_providers
from qrsec.rate_limit import RateLimiter
from qrsec.service import LinkCheckService
from qrsec.settings import Settings, load_settings

logger = logging.getLogger("qrsec")

OWNER_HEADER = "x-user-id"


# ---------------------------------------------------------
# Wiring
# ---------------------------------------------------------
def build_service(settings: Settings) -> LinkCheckService:
    providers = build_providers(settings)
    aggregator = VerdictAggregator(providers, timeout_s=settings.aggregate_timeout_s)
    store = PostgresScanStore(Database(settings.database_url)) if settings.database_url else None
    return LinkCheckService(aggregator, store=store)


def _get_client_ip(request: Request) -> str:
    xfwd = request.headers.get("x-forwarded-for")
    if xfwd:
        return xfwd.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


def _owner_id(request: Request) -> Optional[str]:
    # Opaque identity from the sign-in collaborator; only used as a history key.
    value = (request.headers.get(OWNER_HEADER) or "").strip()
    return value[:256] or None


def _error_response(
    status_code: int,
    headers: Optional[Dict[str, str]] = None,
    **fields: Any,
) -> JSONResponse:
    body = ErrorResponse(**fields).model_dump(exclude_none=True)
    return JSONResponse(body, status_code=status_code, headers=headers)


def create_app(
    settings: Optional[Settings] = None,
    service: Optional[LinkCheckService] = None,
    rate_limiter: Optional[RateLimiter] = None,
) -> FastAPI:
    settings = settings or load_settings()
    logging.basicConfig(level=settings.log_level, format="%(message)s")

    if settings.sentry_dsn:
        sentry_sdk.init(dsn=settings.sentry_dsn, traces_sample_rate=0.2)

    service = service or build_service(settings)
    if rate_limiter is None and settings.redis_url:
        rate_limiter = RateLimiter.from_url(settings.redis_url, settings.linkcheck_rate_limit)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(json.dumps({"event": "startup", "providers": service.provider_names}))
        yield
        store = service.store
        if isinstance(store, PostgresScanStore):
            store.db.close()

    app = FastAPI(title="QrSec Link Check API", lifespan=lifespan)
    app.state.settings = settings
    app.state.service = service
    app.state.rate_limiter = rate_limiter

    allowed_origins = sorted({settings.frontend_url, settings.frontend_url.replace("www.", "")})
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    # ---------------------------------------------------------
    # Error envelopes
    # ---------------------------------------------------------
    @app.exception_handler(LinkCheckError)
    async def link_check_error_handler(request: Request, exc: LinkCheckError):
        return _error_response(exc.status_code, **exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return _error_response(422, error="Invalid request.", details={"errors": exc.errors()})

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.error(json.dumps({"event": "error", "path": str(request.url.path), "error": str(exc)}))
        return _error_response(500, error="Internal server error.")

    # Request id + security headers + one JSON line per request
    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        request_id = secrets.token_hex(8)
        request.state.request_id = request_id
        start_time = time.time()
        response = await call_next(request)
        duration = round((time.time() - start_time) * 1000, 2)
        logger.info(
            json.dumps(
                {
                    "event": "request",
                    "request_id": request_id,
                    "path": request.url.path,
                    "method": request.method,
                    "status": response.status_code,
                    "duration_ms": duration,
                    "ip": _get_client_ip(request),
                }
            )
        )
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "no-referrer"
        return response

    # ---------------------------------------------------------
    # Routes
    # ---------------------------------------------------------
    @app.get("/health")
    def health():
        return {"status": "ok", "providers": service.provider_names}

    @app.post("/api/linkcheck")
    async def linkcheck(request: Request, background_tasks: BackgroundTasks):
        limiter: Optional[RateLimiter] = app.state.rate_limiter
        if limiter is not None:
            retry_after = limiter.hit(_get_client_ip(request))
            if retry_after is not None:
                return _error_response(
                    429,
                    headers={"Retry-After": str(retry_after)},
                    error="Too many requests. Slow down.",
                    retry_after=retry_after,
                )

        try:
            payload = await request.json()
        except ValueError:
            raise InvalidInputError("Request body must be a JSON object with a 'url' field.")
        if not isinstance(payload, dict):
            raise InvalidInputError("Request body must be a JSON object with a 'url' field.")

        try:
            body = LinkCheckRequest.model_validate(payload)
        except ValidationError as exc:
            raise InvalidInputError(
                "Request body needs a 'url' string and an optional 'type' of 'url' or 'qr'.",
                {"errors": exc.errors(include_url=False, include_input=False, include_context=False)},
            )
        verdict = await run_in_threadpool(service.check, body.url)

        owner_id = _owner_id(request)
        if owner_id:
            # Runs after the response is sent; cannot change its status.
            background_tasks.add_task(service.record_scan, verdict, owner_id, body.type)

        resp = build_linkcheck_response(
            verdict,
            service.aggregator.display_names,
            service.primary_provider,
        )
        return resp.model_dump()

    @app.get("/api/scan-history")
    async def scan_history(request: Request, limit: int = 50):
        owner_id = _owner_id(request)
        if not owner_id:
            return _error_response(401, error="Authentication required.")
        items = await run_in_threadpool(service.history, owner_id, limit)
        return {"items": items}

    return app


app = create_app()

"""HTTP middleware: request ids, response timing, request logging and rate limits."""

import time
import uuid

from fastapi import FastAPI, Request

from errors import app_error_handler
from logging_config import get_logger

log = get_logger("http")

REQUEST_ID_HEADER = "X-Request-ID"


async def request_context(request: Request, call_next):
    request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
    request.state.request_id = request_id
    started = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        duration_ms = (time.perf_counter() - started) * 1000
        log.error("%s %s failed after %.2fms [%s]", request.method, request.url.path, duration_ms, request_id)
        raise

    duration_ms = (time.perf_counter() - started) * 1000
    response.headers[REQUEST_ID_HEADER] = request_id
    response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"
    monitor = getattr(request.app.state, "perf_monitor", None)
    if monitor is not None:
        monitor.record(request.method, request.url.path, response.status_code, duration_ms)
    log.info("%s %s -> %d (%.2fms)", request.method, request.url.path, response.status_code, duration_ms)
    return response


async def rate_limit(request: Request, call_next):
    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        return await call_next(request)

    client = request.client.host if request.client else "unknown"
    exceeded = limiter.check(request.url.path, client)
    if exceeded is None:
        return await call_next(request)

    log.warning("Rate limit exceeded for %s on %s %s", client, request.method, request.url.path)
    # raised errors would skip the exception handlers out here
    response = await app_error_handler(request, exceeded)
    response.headers["Retry-After"] = str(exceeded.details["retryAfter"])
    return response


def install_middleware(app: FastAPI) -> None:
    # the last one added runs first; request ids must exist before limiting
    app.middleware("http")(rate_limit)
    app.middleware("http")(request_context)

"""
Request timing middleware for the prioritizer API.

Every response carries ``X-Request-ID`` and ``X-Request-Duration-Ms``;
prioritizer responses also carry ``X-Prioritizer-Stage``, the engine stage
after the request ran. Log records get the ``item_id`` from the URL and the
current ``stage`` so engine activity can be traced per item.
"""

import logging
import time
import uuid

from flask import Flask, current_app, g, request

logger = logging.getLogger(__name__)

_SKIP_LOG = frozenset({"/api/v1/health/ready", "/api/v1/health/live"})
_PRIORITIZER_PREFIX = "/api/v1/prioritizer"

SLOW_THRESHOLD_MS = 1000


def _current_stage():
    engine = current_app.extensions.get("prioritizer_engine")
    return engine.state.current_stage if engine is not None else None


def request_context(response, duration_ms):
    """Structured log extras for one finished request."""
    return {
        "method": request.method,
        "path": request.path,
        "status": response.status_code,
        "duration_ms": duration_ms,
        "remote_addr": request.remote_addr,
        "request_id": g.get("request_id", ""),
        "item_id": (request.view_args or {}).get("item_id"),
        "stage": g.get("prioritizer_stage"),
    }


def init_request_timing(app: Flask):
    """Register before/after hooks for request timing."""

    @app.before_request
    def _start_timer():
        g.request_start = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _log_request(response):
        start = g.get("request_start")
        if start is None:
            return response

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"
        response.headers["X-Request-ID"] = g.get("request_id", "")

        if request.path.startswith(_PRIORITIZER_PREFIX):
            g.prioritizer_stage = _current_stage()
            if g.prioritizer_stage:
                response.headers["X-Prioritizer-Stage"] = g.prioritizer_stage

        if request.path in _SKIP_LOG:
            return response

        extra = request_context(response, duration_ms)
        label = f"{request.method} {request.path} {response.status_code} ({duration_ms:.0f}ms)"
        if duration_ms > SLOW_THRESHOLD_MS:
            logger.warning("Slow request: %s", label, extra=extra)
        elif response.status_code >= 500:
            logger.error("Server error: %s", label, extra=extra)
        elif request.method != "GET" and request.path.startswith(_PRIORITIZER_PREFIX):
            logger.info("Prioritizer command: %s", label, extra=extra)
        else:
            logger.debug("Request: %s", label, extra=extra)

        return response

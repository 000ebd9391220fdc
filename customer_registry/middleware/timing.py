"""
Customer Registry
Request timing.

Assigns each request an id (honouring an incoming X-Request-ID), measures it,
and echoes both back as X-Request-ID / X-Request-Duration-Ms.  Requests over
``SLOW_REQUEST_MS`` are logged at WARNING, server errors at ERROR.
"""

import logging
import time
import uuid

from flask import g, request

logger = logging.getLogger(__name__)

SLOW_REQUEST_MS = 1000

_QUIET_PREFIXES = ("/api/v1/health",)


def init_request_timing(app):

    @app.before_request
    def _stamp_request():
        g.request_started = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _finish_request(response):
        started = g.pop("request_started", None)
        if started is None:
            return response

        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{elapsed_ms:.1f}"

        if request.path.startswith(_QUIET_PREFIXES):
            return response

        view_args = request.view_args or {}
        extra = {
            "method": request.method,
            "path": request.path,
            "status": response.status_code,
            "duration_ms": round(elapsed_ms, 1),
            "customer_id": view_args.get("identifier") or view_args.get("customer_id"),
        }
        if response.status_code >= 500:
            log = logger.error
        elif elapsed_ms > SLOW_REQUEST_MS:
            log = logger.warning
        else:
            log = logger.debug
        log("%s %s -> %d in %.0fms", request.method, request.path, response.status_code, elapsed_ms, extra=extra)
        return response

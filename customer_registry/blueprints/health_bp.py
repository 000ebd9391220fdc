"""
Customer Registry
Health probes.

Endpoints (no auth, no rate limit):
    GET /api/v1/health/ready  -- process is up
    GET /api/v1/health/live   -- database answers; event bus wiring
"""

import logging
import time

from flask import Blueprint, jsonify

from customer_registry.models import db
from customer_registry.services.events import event_bus

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    started = time.perf_counter()
    try:
        db.session.execute(db.text("SELECT 1"))
    except Exception as exc:
        db.session.rollback()
        logger.error("Liveness probe failed, database unreachable: %s", exc)
        database = {"status": "error", "detail": str(exc)}
    else:
        database = {"status": "ok", "latency_ms": round((time.perf_counter() - started) * 1000, 1)}

    healthy = database["status"] == "ok"
    body = {
        "status": "healthy" if healthy else "degraded",
        "checks": {
            "database": database,
            "events": {"destination": event_bus.destination},
        },
    }
    return jsonify(body), 200 if healthy else 503

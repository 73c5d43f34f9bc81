"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — simple 200 for load balancers
    GET /api/v1/health/live   — database reachability and engine summary
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from prioritizer.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness probe — always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Detailed liveness check with dependency status."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except Exception as exc:
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check: database failed: %s", exc)

    # ── Engine ───────────────────────────────────────────────────────
    engine = current_app.extensions.get("prioritizer_engine")
    if engine is None:
        checks["engine"] = {"status": "error", "detail": "engine not initialised"}
        overall = False
    else:
        checks["engine"] = {
            "status": "ok",
            "storage": current_app.config.get("PRIORITIZER_STORAGE"),
            "current_stage": engine.state.current_stage,
            "items": len(engine.items),
        }

    # ── App info ─────────────────────────────────────────────────────
    checks["app"] = {
        "name": "CD3 Prioritizer",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code

"""
Health check endpoints for container orchestration.

    /api/v1/health/ready  checks that the DB is reachable (readiness probe)
    /api/v1/health/live   process is up (liveness probe)
"""

import logging

from flask import Blueprint, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from syncbridge.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def readiness():
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Readiness check failed")
        return jsonify({"status": "not_ready", "database": "unreachable"}), 503
    return jsonify({"status": "ready", "database": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def liveness():
    return jsonify({"status": "alive"}), 200

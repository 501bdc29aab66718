"""
Rate limiting configuration.

Applies per-blueprint limits using Flask-Limiter.  The Limiter instance is
created in syncbridge/__init__.py with no default limits; this module
applies granular limits per route category.

Usage:
    from syncbridge.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import request as flask_request

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"

_WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


def tenant_or_ip_key():
    """Rate limit key: the X-Tenant-ID header when present, else remote IP."""
    tenant_id = flask_request.headers.get("X-Tenant-ID")
    if tenant_id:
        return f"tenant:{tenant_id}"
    return flask_request.remote_addr or "unknown"


def _is_read():
    return flask_request.method not in _WRITE_METHODS


def _is_write():
    return flask_request.method in _WRITE_METHODS


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per tenant, falling back to remote IP):
        - Write endpoints: 60/minute  (POST/PUT/DELETE)
        - Read endpoints:  200/minute
        - Health check:    exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name in ("transfer_queue", "integrations", "config_audit"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT, key_func=tenant_or_ip_key, exempt_when=_is_read)(bp)
            limiter.limit(READ_LIMIT, key_func=tenant_or_ip_key, exempt_when=_is_write)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured: write %s, read %s",
        WRITE_LIMIT, READ_LIMIT,
    )

"""JSON error envelope shared by every SyncBridge blueprint.

Body shape::

    {"error": "<human message>", "code": "ERR_...", "details": {...}}

``details`` is omitted when empty.
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Error codes returned in the ``code`` field."""

    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    VALIDATION_TRANSITION = "ERR_VALIDATION_TRANSITION"
    NOT_FOUND = "ERR_NOT_FOUND"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    UNAVAILABLE = "ERR_UNAVAILABLE"
    DECRYPTION = "ERR_DECRYPTION"
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


STATUS_FOR_CODE: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 422,
    E.VALIDATION_TRANSITION: 422,   # queue entry not in a state that allows the action
    E.NOT_FOUND: 404,
    E.CONFLICT_STATE: 409,          # optimistic version check lost
    E.UNAVAILABLE: 503,             # collaborator not wired into this deployment
    E.DECRYPTION: 500,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """Build ``(response, status)`` for ``code``; unknown codes map to 400."""
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or STATUS_FOR_CODE.get(code, 400)

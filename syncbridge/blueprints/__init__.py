"""
Shared request helpers and error handlers for SyncBridge blueprints.

Blueprints are thin adapters: they parse the request, call one service
method, and serialise the result.  Services own validation and commits.
"""

import logging

from flask import request
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from syncbridge.core.exceptions import (
    ConflictError,
    DecryptionError,
    NotFoundError,
    TransitionError,
    ValidationError,
)
from syncbridge.models import db
from syncbridge.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def actor() -> str:
    """Acting user, forwarded by the auth layer in the X-User header."""
    return request.headers.get("X-User", "system")


def tenant_id() -> str | None:
    """Tenant from the X-Tenant-ID header, query string or JSON body."""
    tid = request.headers.get("X-Tenant-ID") or request.args.get("tenant_id")
    if tid:
        return tid
    data = request.get_json(silent=True) or {}
    return data.get("tenant_id") or None


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def int_arg(name: str, default=None):
    raw = request.args.get(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer", details={name: raw}) from None


def register_error_handlers(bp):
    """Map the service exception hierarchy onto standard JSON errors for *bp*."""

    @bp.errorhandler(TransitionError)
    def _handle_transition(error: TransitionError):
        return api_error(E.VALIDATION_TRANSITION, str(error), details=error.details)

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, f"{error.resource} not found")

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_STATE, str(error))

    @bp.errorhandler(DecryptionError)
    def _handle_decryption(error: DecryptionError):
        logger.error("Decryption failure in %s endpoint=%s: %s", bp.name, request.endpoint, error)
        return api_error(E.DECRYPTION, "Stored credentials could not be decrypted")

    @bp.errorhandler(SQLAlchemyError)
    def _handle_db(error: SQLAlchemyError):
        db.session.rollback()
        logger.exception("Database error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.DATABASE, "Database error")

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")

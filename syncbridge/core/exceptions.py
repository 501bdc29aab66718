"""
Exception types raised by the SyncBridge services.

Blueprint error handlers translate these into the JSON error envelope
(see ``syncbridge.utils.errors``); services never build HTTP responses.
"""


class NotFoundError(Exception):
    """A row the caller addressed explicitly is absent from its tenant scope.

    Plain service lookups return ``None``; blueprints raise this when an
    addressed entry, config, webhook or audit row is missing.
    """

    def __init__(self, resource: str, key: int | str | None = None, tenant_id: str | None = None) -> None:
        self.resource = resource
        self.key = key
        self.tenant_id = tenant_id
        where = f" key={key}" if key is not None else ""
        scope = f" in tenant {tenant_id}" if tenant_id is not None else ""
        super().__init__(f"{resource}{where} not found{scope}")


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    The data was well-formed but violated a rule (unsupported entity type,
    missing required field, invalid state transition). Raised before any
    side effect. Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class TransitionError(ValidationError):
    """Raised when a queue entry cannot move from its current status."""

    def __init__(self, entry_id: int, action: str, current: str, reason: str | None = None):
        msg = f"Cannot '{action}' transfer queue entry {entry_id} (status={current})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, details={"entry_id": entry_id, "action": action, "status": current})
        self.entry_id = entry_id
        self.action = action
        self.current_status = current
        self.reason = reason


class ConflictError(Exception):
    """A write lost to a concurrent one (stale version or a unique scope taken)."""

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} {field}={value!r} was changed by another writer")


class DecryptionError(Exception):
    """Raised by the credential vault when a stored secret cannot be opened.

    Covers both a failed authentication tag (tampering, wrong key) and
    malformed stored values. Never defaulted to an empty secret.
    """


class ConfigurationDecryptionError(DecryptionError):
    """Raised when an integration or webhook config carries a secret that
    no longer decrypts. A corrupted credential must not reach a live API.

    Args:
        entity: "IntegrationConfig" | "WebhookConfig".
        entity_id: PK of the row whose secret failed.
        field: Name of the secret column.
    """

    def __init__(self, entity: str, entity_id: int | None, field: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        self.field = field
        super().__init__(f"Configuration decryption failed for {entity} id={entity_id} field={field}")

"""
Per-app wiring of services and their external collaborators.

The app factory builds one ServiceRegistry and stores it in
``app.extensions["syncbridge"]``.  Blueprints resolve services through
``get_registry()`` so tests and deployments can inject their own change
detector, entity repository and probe gateway.
"""

from __future__ import annotations

from flask import current_app

from syncbridge.integrations.change_detection import ChangeDetector, EntityRepository
from syncbridge.integrations.health_probes import HealthProbeGateway
from syncbridge.services.configuration_manager import ConfigurationManager
from syncbridge.services.transfer_queue import TransferQueueManager
from syncbridge.utils.crypto import CredentialVault

EXTENSION_KEY = "syncbridge"


class ServiceRegistry:
    """Holds the vault and collaborators for one Flask app."""

    def __init__(
        self,
        vault: CredentialVault,
        *,
        probe_gateway: HealthProbeGateway | None = None,
        change_detector: ChangeDetector | None = None,
        entity_repository: EntityRepository | None = None,
        queue_settings: dict | None = None,
    ) -> None:
        self.vault = vault
        self.change_detector = change_detector
        self.entity_repository = entity_repository
        self.queue_settings = queue_settings or {}
        self.configuration_manager = ConfigurationManager(vault, probe_gateway)

    def transfer_queue(self, tenant_id: str | None = None) -> TransferQueueManager:
        """Queue manager bound to *tenant_id* (enables breaker recording)."""
        return TransferQueueManager(
            self.change_detector,
            self.entity_repository,
            tenant_id=tenant_id,
            configuration_manager=self.configuration_manager,
            **self.queue_settings,
        )


def queue_settings_from_config(app_config) -> dict:
    return {
        "max_retries": app_config["TRANSFER_MAX_RETRIES"],
        "retry_base_seconds": app_config["TRANSFER_RETRY_BASE_SECONDS"],
        "retry_max_seconds": app_config["TRANSFER_RETRY_MAX_SECONDS"],
    }


def get_registry() -> ServiceRegistry:
    return current_app.extensions[EXTENSION_KEY]

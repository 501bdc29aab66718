"""Platform health probes: one lightweight authenticated GET per platform.

All outbound probe calls go through HealthProbeGateway:
  - HubSpot     GET /account-info/v3/details
  - Stripe      GET /v1/balance
  - QuickBooks  GET /v3/company/<realm>/companyinfo/<realm>

HTTP outcome → health:
  2xx             HEALTHY
  429, 5xx        DEGRADED   (platform reachable but throttling or failing)
  401, 403, 4xx   UNHEALTHY  (credentials or configuration wrong)

Network errors and timeouts propagate as ``requests`` exceptions; the
configuration manager converts them into UNHEALTHY.  No retries here.

Testability: pass a mock ``session`` to HealthProbeGateway() in tests.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import requests

from syncbridge.models.configuration import (
    HEALTH_DEGRADED,
    HEALTH_HEALTHY,
    HEALTH_UNHEALTHY,
    HEALTH_UNKNOWN,
    PLATFORM_HUBSPOT,
    PLATFORM_QUICKBOOKS,
    PLATFORM_STRIPE,
)

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 30

_DEFAULT_BASE_URLS = {
    PLATFORM_HUBSPOT: "https://api.hubapi.com",
    PLATFORM_STRIPE: "https://api.stripe.com",
    PLATFORM_QUICKBOOKS: "https://quickbooks.api.intuit.com",
}

_PLATFORM_LABELS = {
    PLATFORM_HUBSPOT: "HubSpot API",
    PLATFORM_STRIPE: "Stripe API",
    PLATFORM_QUICKBOOKS: "QuickBooks",
}


class ProbeResult:
    """Outcome of one health probe.  Never carries credentials."""

    __slots__ = ("status", "message", "status_code", "duration_ms")

    def __init__(
        self,
        status: str,
        message: str,
        status_code: int | None = None,
        duration_ms: int = 0,
    ) -> None:
        self.status = status
        self.message = message
        self.status_code = status_code
        self.duration_ms = duration_ms

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "message": self.message,
            "status_code": self.status_code,
            "duration_ms": self.duration_ms,
        }


def health_from_status_code(status_code: int) -> str:
    if 200 <= status_code < 300:
        return HEALTH_HEALTHY
    if status_code == 429 or status_code >= 500:
        return HEALTH_DEGRADED
    return HEALTH_UNHEALTHY


class HealthProbeGateway:
    """Issues the per-platform probe for an IntegrationConfig.

    The config must already carry ``decrypted_api_key`` (set by the
    configuration manager); the key is only placed in request headers.
    """

    def __init__(self, session: requests.Session | None = None) -> None:
        self._session: requests.Session | None = session

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def probe(self, config: Any, timeout: float | None = None) -> ProbeResult:
        platform = config.platform
        builder = {
            PLATFORM_HUBSPOT: self._hubspot_request,
            PLATFORM_STRIPE: self._stripe_request,
            PLATFORM_QUICKBOOKS: self._quickbooks_request,
        }.get(platform)
        if builder is None:
            return ProbeResult(HEALTH_UNKNOWN, f"No health probe for platform {platform}")

        probe_request = builder(config)
        if probe_request is None:
            return ProbeResult(
                HEALTH_UNKNOWN,
                f"{_PLATFORM_LABELS[platform]} credentials are incomplete",
            )
        url, headers = probe_request

        start = time.monotonic()
        resp = self.session.get(url, headers=headers, timeout=timeout or _DEFAULT_TIMEOUT)
        duration_ms = int((time.monotonic() - start) * 1000)

        status = health_from_status_code(resp.status_code)
        label = _PLATFORM_LABELS[platform]
        if status == HEALTH_HEALTHY:
            message = f"{label} connection verified"
        else:
            message = f"{label} connection failed: HTTP {resp.status_code}"
        logger.info(
            "Health probe platform=%s config=%s status=%s http=%s duration_ms=%d",
            platform, getattr(config, "id", None), status, resp.status_code, duration_ms,
        )
        return ProbeResult(status, message, resp.status_code, duration_ms)

    # ── Per-platform request builders ────────────────────────────────────────

    @staticmethod
    def _base_url(config: Any) -> str:
        return (config.api_endpoint or _DEFAULT_BASE_URLS[config.platform]).rstrip("/")

    @staticmethod
    def _bearer(api_key: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {api_key}", "Accept": "application/json"}

    def _hubspot_request(self, config: Any):
        if not config.decrypted_api_key:
            return None
        return f"{self._base_url(config)}/account-info/v3/details", self._bearer(config.decrypted_api_key)

    def _stripe_request(self, config: Any):
        if not config.decrypted_api_key:
            return None
        headers = self._bearer(config.decrypted_api_key)
        if config.stripe_account_id:
            headers["Stripe-Account"] = config.stripe_account_id
        return f"{self._base_url(config)}/v1/balance", headers

    def _quickbooks_request(self, config: Any):
        realm = config.quickbooks_company_id
        if not config.decrypted_api_key or not realm:
            return None
        url = f"{self._base_url(config)}/v3/company/{realm}/companyinfo/{realm}"
        return url, self._bearer(config.decrypted_api_key)

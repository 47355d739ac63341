"""Access-mode selection for outbound calls."""

from __future__ import annotations

from enum import Enum

import structlog

from compass.schemas.inventory import TenantContext
from compass.services.collector import RateLimitedCollector
from compass.services.sources import CredentialProbe

logger = structlog.get_logger()


class AccessMode(str, Enum):
    ENHANCED = "enhanced"
    DEFAULT = "default"


class CredentialResolver:
    """Decides whether a tenant's delegated credentials can be used.

    Never raises: every failure to use delegated credentials becomes the
    default mode plus a warning.
    """

    def __init__(self, probe: CredentialProbe | None, collector: RateLimitedCollector) -> None:
        self._probe = probe
        self._collector = collector

    async def resolve(self, tenant: TenantContext) -> AccessMode:
        if not tenant.has_delegation or self._probe is None:
            logger.warning(
                "delegated_credentials_unavailable",
                organization_id=tenant.organization_id,
                reason="no delegation context",
            )
            return AccessMode.DEFAULT

        try:
            ok = await self._collector.fetch(
                "credential_probe",
                self._probe.test_credentials,
                tenant,
                empty=lambda: False,
            )
        except Exception as exc:
            logger.warning(
                "delegated_credentials_unavailable",
                organization_id=tenant.organization_id,
                client_id=tenant.client_id,
                reason=str(exc),
            )
            return AccessMode.DEFAULT

        if not ok:
            logger.warning(
                "delegated_credentials_unavailable",
                organization_id=tenant.organization_id,
                client_id=tenant.client_id,
                reason="credential test failed",
            )
            return AccessMode.DEFAULT

        logger.info("delegated_credentials_selected", client_id=tenant.client_id)
        return AccessMode.ENHANCED

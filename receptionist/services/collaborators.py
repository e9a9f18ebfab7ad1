"""
Clients for the external collaborators consumed by the engine.

- TenantConfigService: agent configuration per tenant and tenant lookup by dialled number
- CallLogService: write-once call records and late recording attachment
- BillingService: billable event triggers
- NotificationService: operator notifications
"""

import logging
import time
from typing import Dict, Optional, Tuple

from receptionist.config.constants import LOGGER_NAME
from receptionist.exceptions import SessionUnavailable
from receptionist.models.realtime_schemas import AgentConfig
from receptionist.services.http_service import HttpService

logger = logging.getLogger(LOGGER_NAME)

TENANT_CACHE_TTL = 300.0  # seconds


class TenantConfigService(HttpService):
    """Read-only tenant configuration: agent persona and number ownership."""

    name = "tenant-config"
    error_class = SessionUnavailable

    def __init__(self, base_url: Optional[str], token: Optional[str] = None,
                 timeout: float = 10.0, client=None,
                 default_config: Optional[AgentConfig] = None):
        super().__init__(base_url, token, timeout, client)
        self.default_config = default_config or AgentConfig()
        self._tenant_cache: Dict[str, Tuple[Optional[str], float]] = {}

    async def get_agent_config(self, tenant_id: Optional[str]) -> AgentConfig:
        """
        Fetch the agent configuration used to open a session.

        Raises:
            SessionUnavailable: if the tenant is unknown or the service fails
        """
        if not tenant_id:
            raise SessionUnavailable("Call has no tenant; cannot configure agent")
        if not self.configured:
            logger.debug("Tenant service not configured, using default agent config")
            return self.default_config
        data = await self._request("GET", f"/tenants/{tenant_id}/agent-config")
        if not data:
            raise SessionUnavailable(f"No agent configuration for tenant {tenant_id}")
        return AgentConfig(**data)

    async def resolve_tenant(self, to_number: Optional[str]) -> Optional[str]:
        """Return the tenant owning to_number, or None. Results are cached briefly."""
        if not to_number or not self.configured:
            return None
        cached = self._tenant_cache.get(to_number)
        if cached and time.monotonic() - cached[1] < TENANT_CACHE_TTL:
            return cached[0]
        try:
            data = await self._request("GET", "/tenants/resolve", params={"number": to_number})
        except SessionUnavailable as e:
            logger.warning(f"Tenant lookup failed for {to_number}: {e}")
            return None
        tenant_id = (data or {}).get("tenant_id")
        self._tenant_cache[to_number] = (tenant_id, time.monotonic())
        return tenant_id


class CallLogService(HttpService):
    """Durable call log."""

    name = "call-log"

    async def record_call(self, record: dict) -> None:
        if not self.configured:
            logger.info(f"Call log not configured; call record for {record.get('call_id')} skipped")
            return
        await self._request("POST", "/calls", json=record)

    async def attach_recording(self, call_id: str, recording_url: str) -> None:
        if not self.configured:
            logger.info(f"Call log not configured; recording for {call_id} skipped")
            return
        await self._request(
            "POST", f"/calls/{call_id}/recording", json={"recording_url": recording_url}
        )


class BillingService(HttpService):
    """Billing trigger sink."""

    name = "billing"

    async def report_billable_event(self, tenant_id: Optional[str], call_id: str,
                                    kind: str) -> None:
        if not self.configured:
            logger.info(f"Billing not configured; {kind} for call {call_id} skipped")
            return
        await self._request(
            "POST",
            "/billable-events",
            json={"tenant_id": tenant_id, "call_id": call_id, "kind": kind},
        )


class NotificationService(HttpService):
    """Operator notifications."""

    name = "notification"

    async def notify(self, tenant_id: Optional[str], severity: str, message: str) -> None:
        if not self.configured:
            logger.warning(f"[{severity}] notification for tenant {tenant_id}: {message}")
            return
        await self._request(
            "POST",
            "/notifications",
            json={"tenant_id": tenant_id, "severity": severity, "message": message},
        )

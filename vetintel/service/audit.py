from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional, Protocol

import httpx

from vetintel.logging import get_logger
from vetintel.storage.models import AuditEvent, Identity

logger = get_logger(__name__)


class AuditSink(Protocol):
    async def write(self, event: AuditEvent, *, access_token: Optional[str] = None) -> None:
        ...

    async def close(self) -> None:
        ...


class SupabaseAuditSink:
    """Writes audit events through the ``log_user_action`` database function.

    The RPC attributes the row to ``auth.uid()``, so it is called with the
    acting user's access token when one is known and the anon key otherwise.
    """

    RPC_NAME = "log_user_action"

    def __init__(
        self,
        base_url: str,
        anon_key: Optional[str],
        *,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.anon_key = anon_key
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=min(timeout, 5.0)),
            transport=transport,
        )

    async def write(self, event: AuditEvent, *, access_token: Optional[str] = None) -> None:
        headers = {"Content-Type": "application/json"}
        if self.anon_key:
            headers["apikey"] = self.anon_key
        bearer = access_token or self.anon_key
        if bearer:
            headers["Authorization"] = f"Bearer {bearer}"
        response = await self._client.post(
            f"{self.base_url}/rest/v1/rpc/{self.RPC_NAME}",
            headers=headers,
            json={
                "action_name": event.action,
                "resource_type_param": event.resource_type,
                "resource_id_param": event.resource_id,
                "details_param": event.details,
            },
        )
        response.raise_for_status()

    async def close(self) -> None:
        await self._client.aclose()


class AuditLogger:
    """Fire-and-forget audit trail.

    ``record`` never raises: a failed or slow write is logged as
    ``audit_write_failed`` and reported as ``False`` so the request that
    produced the event carries on.
    """

    def __init__(self, sink: AuditSink, *, timeout: float = 5.0) -> None:
        self.sink = sink
        self.timeout = timeout

    async def record(
        self,
        action: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        *,
        identity: Optional[Identity] = None,
    ) -> bool:
        event = AuditEvent(
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=dict(details or {}),
            user_id=identity.user_id if identity else None,
        )
        try:
            await asyncio.wait_for(
                self.sink.write(
                    event, access_token=identity.access_token if identity else None
                ),
                timeout=self.timeout,
            )
        except Exception as exc:
            logger.warning(
                "audit_write_failed",
                action=action,
                resource_type=resource_type,
                user_id=event.user_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return False
        logger.debug("audit_recorded", action=action, resource_type=resource_type)
        return True

    async def close(self) -> None:
        await self.sink.close()

from __future__ import annotations

from typing import Optional

import httpx

from vetintel.logging import get_logger
from vetintel.service.errors import AuthenticationError
from vetintel.storage.models import Identity, UserRole

logger = get_logger(__name__)


class CredentialVerifier:
    """Resolve ``Authorization: Bearer`` credentials against the identity provider.

    Tokens are exchanged with GoTrue's ``/auth/v1/user`` endpoint; the gateway
    never validates or persists them itself.
    """

    def __init__(
        self,
        base_url: str,
        anon_key: Optional[str],
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.anon_key = anon_key
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=min(timeout, 5.0)),
            transport=transport,
            follow_redirects=False,
        )

    @staticmethod
    def extract_bearer(header: Optional[str]) -> Optional[str]:
        if not header:
            return None
        scheme, _, token = header.strip().partition(" ")
        if scheme.lower() != "bearer":
            return None
        token = token.strip()
        return token or None

    def _headers(self, token: str) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {token}"}
        if self.anon_key:
            headers["apikey"] = self.anon_key
        return headers

    async def verify(self, authorization: Optional[str]) -> Identity:
        token = self.extract_bearer(authorization)
        if not token:
            raise AuthenticationError("Unauthorized")

        try:
            response = await self._client.get(
                f"{self.base_url}/auth/v1/user", headers=self._headers(token)
            )
        except httpx.HTTPError as exc:
            logger.error(
                "identity_provider_unreachable",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise AuthenticationError("Authentication failed") from exc

        if response.status_code != 200:
            logger.info("identity_rejected", status_code=response.status_code)
            raise AuthenticationError("Authentication failed")

        try:
            data = response.json()
        except ValueError as exc:
            logger.error("identity_response_invalid", error=str(exc))
            raise AuthenticationError("Authentication failed") from exc

        user_id = data.get("id") if isinstance(data, dict) else None
        if not user_id:
            logger.error("identity_response_missing_user")
            raise AuthenticationError("Authentication failed")
        return Identity(user_id=str(user_id), email=data.get("email"), access_token=token)

    async def fetch_role(self, identity: Identity) -> UserRole:
        """Look up the caller's role tag; any failure degrades to ``unverified``."""
        if not identity.access_token:
            return UserRole.UNVERIFIED
        try:
            response = await self._client.post(
                f"{self.base_url}/rest/v1/rpc/get_user_role",
                headers=self._headers(identity.access_token),
                json={},
            )
            response.raise_for_status()
            return UserRole(response.json())
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "role_lookup_failed",
                user_id=identity.user_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return UserRole.UNVERIFIED

    async def close(self) -> None:
        await self._client.aclose()

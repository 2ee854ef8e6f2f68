"""IAM bearer tokens for the speech-to-text service."""

from __future__ import annotations

import asyncio
import logging
import time

import httpx

from robo_listen.core.errors import ConfigurationError, TransportError

logger = logging.getLogger(__name__)

IAM_TOKEN_URL = "https://iam.cloud.ibm.com/identity/token"
_GRANT_TYPE = "urn:ibm:params:oauth:grant-type:apikey"


class IamTokenManager:
    """Exchanges an API key for a bearer token and caches it.

    The token is reused until ``refresh_margin_s`` before it expires, so
    reconnect storms do not hammer the token endpoint.
    """

    def __init__(
        self,
        apikey: str,
        *,
        url: str = IAM_TOKEN_URL,
        client: httpx.AsyncClient | None = None,
        refresh_margin_s: float = 60.0,
        timeout_s: float = 10.0,
    ) -> None:
        self.apikey = apikey
        self.url = url
        self._client = client
        self.refresh_margin_s = refresh_margin_s
        self.timeout_s = timeout_s
        self._token: str | None = None
        self._expires_at: float = 0.0
        self._lock = asyncio.Lock()

    async def get_token(self) -> str:
        """Return a valid bearer token, requesting a new one if needed."""
        async with self._lock:
            if self._token and time.time() < self._expires_at - self.refresh_margin_s:
                return self._token
            self._token, self._expires_at = await self._request_token()
            return self._token

    def invalidate(self) -> None:
        """Forget the cached token (e.g. after the service rejected it)."""
        self._token = None
        self._expires_at = 0.0

    async def _request_token(self) -> tuple[str, float]:
        client = self._client or httpx.AsyncClient(timeout=self.timeout_s)
        try:
            response = await client.post(
                self.url,
                data={"grant_type": _GRANT_TYPE, "apikey": self.apikey},
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise TransportError(f"IAM token request failed: {exc}") from exc
        finally:
            if self._client is None:
                await client.aclose()

        if response.status_code in (400, 401, 403):
            raise ConfigurationError(
                f"IAM rejected the speech_to_text API key (HTTP {response.status_code})"
            )
        if response.status_code >= 400:
            raise TransportError(f"IAM token endpoint returned HTTP {response.status_code}")

        payload = response.json()
        token = payload["access_token"]
        expires_in = float(payload.get("expires_in", 3600))
        logger.debug("Obtained IAM token valid for %.0fs", expires_in)
        return token, time.time() + expires_in

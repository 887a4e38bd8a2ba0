"""
services/mpesa_client.py
------------------------
Async client for the Safaricom Daraja API (OAuth grant + C2B URL registration).

Bearer tokens are cached in an AccessTokenCache owned by whoever builds the
client. Entries are keyed by a fingerprint of the credential pair, so several
paybills can share one cache without handing each other's tokens out.
Two concurrent misses may both fetch a token; the last write wins and both
tokens are valid.
"""

from __future__ import annotations

import hashlib
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from letrents.core.config import settings
from letrents.core.exceptions import GatewayAuthFailed, GatewayRegistrationFailed
from letrents.core.logging import get_logger

logger = get_logger(__name__)

# Tokens are treated as expired this long before the provider says they are.
EXPIRY_MARGIN_SECONDS = 60


@dataclass(frozen=True)
class MpesaCredentials:
    consumer_key: str
    consumer_secret: str

    @property
    def fingerprint(self) -> str:
        raw = f"{self.consumer_key}:{self.consumer_secret}"
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class AccessTokenCache:
    """Bearer tokens per credential fingerprint, each with its own deadline."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}

    def get(self, credentials: MpesaCredentials) -> Optional[str]:
        entry = self._entries.get(credentials.fingerprint)
        if entry is None:
            return None
        token, deadline = entry
        if self._clock() >= deadline:
            self._entries.pop(credentials.fingerprint, None)
            return None
        return token

    def put(self, credentials: MpesaCredentials, token: str, expires_in: float) -> None:
        deadline = self._clock() + float(expires_in) - EXPIRY_MARGIN_SECONDS
        self._entries[credentials.fingerprint] = (token, deadline)

    def clear(self) -> None:
        self._entries.clear()


class MpesaClient:
    """Thin async wrapper over the two Daraja endpoints the paybill setup needs."""

    def __init__(
        self,
        cache: AccessTokenCache,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._cache = cache
        self._base_url = (base_url or settings.MPESA_BASE_URL).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.MPESA_TIMEOUT_SECONDS
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
        )

    # ── OAuth ────────────────────────────────────────────

    async def get_access_token(self, credentials: MpesaCredentials) -> str:
        """Return a cached bearer token, or run the client-credentials grant.

        Raises ``GatewayAuthFailed`` on any HTTP error, timeout or malformed body.
        """
        cached = self._cache.get(credentials)
        if cached is not None:
            return cached

        try:
            async with self._client() as client:
                resp = await client.get(
                    "/oauth/v1/generate",
                    params={"grant_type": "client_credentials"},
                    auth=(credentials.consumer_key, credentials.consumer_secret),
                )
            resp.raise_for_status()
            data = resp.json()
            token = data["access_token"]
            expires_in = float(data.get("expires_in", 3599))
        except (httpx.HTTPError, ValueError, KeyError) as exc:
            logger.error("M-Pesa OAuth request failed", error=str(exc))
            raise GatewayAuthFailed() from exc

        self._cache.put(credentials, token, expires_in)
        return token

    # ── C2B URL registration ─────────────────────────────

    async def register_urls(
        self,
        credentials: MpesaCredentials,
        shortcode: str,
        validation_url: str,
        confirmation_url: str,
    ) -> dict:
        """Register the C2B callbacks for *shortcode*.

        Raises ``GatewayAuthFailed`` if no token can be obtained and
        ``GatewayRegistrationFailed`` if the registration call itself fails.
        """
        token = await self.get_access_token(credentials)
        payload = {
            "ShortCode": shortcode,
            "ResponseType": "Completed",
            "ConfirmationURL": confirmation_url,
            "ValidationURL": validation_url,
        }
        try:
            async with self._client() as client:
                resp = await client.post(
                    "/mpesa/c2b/v1/registerurl",
                    json=payload,
                    headers={"Authorization": f"Bearer {token}"},
                )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("M-Pesa URL registration failed", shortcode=shortcode, error=str(exc))
            raise GatewayRegistrationFailed() from exc

        logger.info("M-Pesa URLs registered", shortcode=shortcode)
        return data

"""Tests for the Daraja client and its bearer-token cache (httpx.MockTransport)."""

import base64
import json

import httpx
import pytest

from letrents.core.exceptions import GatewayAuthFailed, GatewayRegistrationFailed
from letrents.services.mpesa_client import AccessTokenCache, MpesaClient, MpesaCredentials

BASE_URL = "https://sandbox.safaricom.co.ke"
CREDS = MpesaCredentials("consumer-key", "consumer-secret")


class FakeClock:
    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now


class Daraja:
    """Records requests and answers like the sandbox."""

    def __init__(self, oauth_status: int = 200, register_status: int = 200) -> None:
        self.requests: list[httpx.Request] = []
        self.oauth_status = oauth_status
        self.register_status = register_status
        self.issued = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/oauth/v1/generate":
            if self.oauth_status != 200:
                return httpx.Response(self.oauth_status, json={"errorMessage": "Invalid credentials"})
            self.issued += 1
            return httpx.Response(
                200, json={"access_token": f"token-{self.issued}", "expires_in": "3599"}
            )
        if request.url.path == "/mpesa/c2b/v1/registerurl":
            if self.register_status != 200:
                return httpx.Response(self.register_status, json={"errorMessage": "Bad Request"})
            return httpx.Response(
                200,
                json={"ResponseCode": "0", "ResponseDescription": "Success"},
            )
        return httpx.Response(404)

    def oauth_calls(self) -> int:
        return sum(1 for r in self.requests if r.url.path == "/oauth/v1/generate")


def _client(daraja, clock=None) -> MpesaClient:
    cache = AccessTokenCache(clock=clock) if clock else AccessTokenCache()
    return MpesaClient(
        cache, base_url=BASE_URL, timeout=5.0, transport=httpx.MockTransport(daraja)
    )


# ── OAuth ────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_oauth_uses_basic_auth_and_client_credentials():
    daraja = Daraja()
    token = await _client(daraja).get_access_token(CREDS)

    assert token == "token-1"
    request = daraja.requests[0]
    assert request.method == "GET"
    assert request.url.params["grant_type"] == "client_credentials"
    expected = base64.b64encode(b"consumer-key:consumer-secret").decode()
    assert request.headers["Authorization"] == f"Basic {expected}"


@pytest.mark.asyncio
async def test_token_is_cached_until_a_minute_before_expiry():
    daraja, clock = Daraja(), FakeClock()
    client = _client(daraja, clock)

    assert await client.get_access_token(CREDS) == "token-1"
    clock.now += 3599 - 61
    assert await client.get_access_token(CREDS) == "token-1"
    assert daraja.oauth_calls() == 1

    clock.now += 2
    assert await client.get_access_token(CREDS) == "token-2"
    assert daraja.oauth_calls() == 2


@pytest.mark.asyncio
async def test_cache_is_keyed_by_credentials():
    daraja = Daraja()
    client = _client(daraja)

    first = await client.get_access_token(CREDS)
    other = await client.get_access_token(MpesaCredentials("other-key", "other-secret"))

    assert first != other
    assert daraja.oauth_calls() == 2
    assert await client.get_access_token(CREDS) == first


@pytest.mark.asyncio
async def test_rejected_credentials_raise_auth_failure():
    daraja = Daraja(oauth_status=400)
    with pytest.raises(GatewayAuthFailed):
        await _client(daraja).get_access_token(CREDS)


@pytest.mark.asyncio
async def test_oauth_timeout_raises_auth_failure():
    def slow(request):
        raise httpx.ReadTimeout("timed out", request=request)

    client = MpesaClient(
        AccessTokenCache(), base_url=BASE_URL, transport=httpx.MockTransport(slow)
    )
    with pytest.raises(GatewayAuthFailed):
        await client.get_access_token(CREDS)


@pytest.mark.asyncio
async def test_failed_oauth_is_not_cached():
    daraja = Daraja(oauth_status=500)
    client = _client(daraja)
    with pytest.raises(GatewayAuthFailed):
        await client.get_access_token(CREDS)

    daraja.oauth_status = 200
    assert await client.get_access_token(CREDS) == "token-1"


# ── URL registration ─────────────────────────────────────

@pytest.mark.asyncio
async def test_register_urls_sends_bearer_and_payload():
    daraja = Daraja()
    result = await _client(daraja).register_urls(
        CREDS,
        shortcode="600100",
        validation_url="https://api.example.com/api/v1/mpesa/c2b/validation",
        confirmation_url="https://api.example.com/api/v1/mpesa/c2b/confirmation",
    )

    assert result["ResponseDescription"] == "Success"
    request = daraja.requests[-1]
    assert request.method == "POST"
    assert request.headers["Authorization"] == "Bearer token-1"
    assert json.loads(request.content) == {
        "ShortCode": "600100",
        "ResponseType": "Completed",
        "ConfirmationURL": "https://api.example.com/api/v1/mpesa/c2b/confirmation",
        "ValidationURL": "https://api.example.com/api/v1/mpesa/c2b/validation",
    }


@pytest.mark.asyncio
async def test_register_failure_raises_registration_failure():
    daraja = Daraja(register_status=400)
    with pytest.raises(GatewayRegistrationFailed):
        await _client(daraja).register_urls(CREDS, "600100", "https://v", "https://c")

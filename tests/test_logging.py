"""Tests for log redaction and engine options."""

from letrents.core.logging import REDACTED, redact_secrets
from letrents.db.session import engine_options


def test_credentials_are_masked():
    event = redact_secrets(
        None,
        "info",
        {
            "event": "Paybill settings saved",
            "consumer_key": "live-key",
            "consumer_secret": "live-secret",
            "refresh_token": "abc",
            "shortcode": "600100",
        },
    )

    assert event["consumer_key"] == event["consumer_secret"] == REDACTED
    assert event["refresh_token"] == REDACTED
    assert event["shortcode"] == "600100"


def test_fallback_links_survive():
    url = "https://app.letrents.com/verify-email?token=abc"
    event = redact_secrets(None, "warning", {"event": "x", "verification_url": url})
    assert event["verification_url"] == url


def test_missing_values_stay_none():
    event = redact_secrets(None, "info", {"event": "x", "token": None})
    assert event["token"] is None


def test_sqlite_gets_no_pool_sizing():
    assert "pool_size" not in engine_options("sqlite+aiosqlite://")
    pooled = engine_options("postgresql+asyncpg://u:p@db/letrents")
    assert (pooled["pool_size"], pooled["max_overflow"]) == (10, 20)

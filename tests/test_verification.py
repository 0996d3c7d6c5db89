"""Tests for EventSub signature verification (constant-time HMAC, fail-closed)."""

from __future__ import annotations

import hashlib
import hmac

from chatsage.webhooks.verification import (
    HEADER_MESSAGE_ID,
    HEADER_SIGNATURE,
    HEADER_TIMESTAMP,
    compute_signature,
    verify_signature,
)

SECRET = "eventsub-secret"
BODY = b'{"subscription":{"type":"stream.online"},"event":{}}'


def _headers(message_id="m-1", timestamp="2026-01-01T00:00:00Z", body=BODY, secret=SECRET):
    return {
        HEADER_MESSAGE_ID: message_id,
        HEADER_TIMESTAMP: timestamp,
        HEADER_SIGNATURE: compute_signature(secret, message_id, timestamp, body),
    }


class TestComputeSignature:
    def test_matches_reference_hmac(self):
        expected = hmac.new(
            SECRET.encode(), b"m-1" + b"2026-01-01T00:00:00Z" + BODY, hashlib.sha256
        ).hexdigest()
        assert compute_signature(SECRET, "m-1", "2026-01-01T00:00:00Z", BODY) == "sha256=" + expected


class TestVerifySignature:
    """HMAC-SHA256 over message id + timestamp + raw body."""

    def test_valid_signature(self):
        assert verify_signature(_headers(), BODY, SECRET) is True

    def test_tampered_body(self):
        assert verify_signature(_headers(), BODY + b" ", SECRET) is False

    def test_wrong_secret(self):
        assert verify_signature(_headers(secret="other"), BODY, SECRET) is False

    def test_signature_bound_to_message_id(self):
        headers = _headers()
        headers[HEADER_MESSAGE_ID] = "m-2"
        assert verify_signature(headers, BODY, SECRET) is False

    def test_signature_bound_to_timestamp(self):
        headers = _headers()
        headers[HEADER_TIMESTAMP] = "2026-01-01T00:00:01Z"
        assert verify_signature(headers, BODY, SECRET) is False

    def test_missing_prefix_rejected(self):
        headers = _headers()
        headers[HEADER_SIGNATURE] = headers[HEADER_SIGNATURE].removeprefix("sha256=")
        assert verify_signature(headers, BODY, SECRET) is False

    def test_missing_secret_rejects(self):
        """No secret configured -> always reject (fail-closed)."""
        assert verify_signature(_headers(secret=""), BODY, "") is False

    def test_each_missing_header_rejects(self):
        for name in (HEADER_MESSAGE_ID, HEADER_TIMESTAMP, HEADER_SIGNATURE):
            headers = _headers()
            del headers[name]
            assert verify_signature(headers, BODY, SECRET) is False, name

    def test_bypass_is_off_by_default(self):
        assert verify_signature({}, BODY, SECRET) is False

    def test_bypass_flag_skips_check(self, caplog):
        assert verify_signature({}, BODY, SECRET, skip_verification=True) is True
        assert "BYPASSED" in caplog.text

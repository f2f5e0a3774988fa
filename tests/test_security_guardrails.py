import hashlib
import hmac
import time

import pytest

from app.core.errors import WebhookSignatureError
from app.core.jwt_auth import create_token, decode_token
from app.core.logging import redact_secrets
from app.core.webhook_signature import (
    build_signature_header,
    compute_signature,
    parse_signature_header,
    verify_signature,
)


def test_redact_secrets_masks_sensitive_values():
    raw = (
        "authorization=Bearer abc123 "
        "api_key=sk_live_key "
        "token=my-token secret=whsec_value "
        "v1=0123456789abcdef0123456789abcdef"
    )
    masked = redact_secrets(raw)
    assert "abc123" not in masked
    assert "sk_live_key" not in masked
    assert "my-token" not in masked
    assert "whsec_value" not in masked
    assert "0123456789abcdef0123456789abcdef" not in masked
    assert masked.count("[REDACTED]") >= 5


def test_signature_round_trip_and_tamper_detection():
    payload = '{"id":"evt_1","event":"user.created","data":{"id":"user_1"}}'
    header = build_signature_header(payload, "whsec_a", timestamp_ms=1700000000000)
    verify_signature(header, payload, "whsec_a")

    with pytest.raises(WebhookSignatureError):
        verify_signature(header, payload.replace("user_1", "user_2"), "whsec_a")
    with pytest.raises(WebhookSignatureError):
        verify_signature(header, payload, "whsec_b")


def test_signature_header_parsing():
    timestamp, digest = parse_signature_header("t=1700000000000, v1=abcdef")
    assert timestamp == "1700000000000"
    assert digest == "abcdef"
    with pytest.raises(WebhookSignatureError, match="missing timestamp or hash"):
        parse_signature_header("v1=abcdef")


def test_signature_is_hmac_of_timestamp_dot_body():
    expected = hmac.new(b"secret", b"1700000000000.{}", hashlib.sha256).hexdigest()
    assert compute_signature("1700000000000", "{}", "secret") == expected
    assert compute_signature("1700000000000", b"{}", "secret") == expected


def test_signature_tolerance_window():
    payload = "{}"
    sent_ms = int(time.time() * 1000)
    header = build_signature_header(payload, "whsec_a", timestamp_ms=sent_ms)
    verify_signature(header, payload, "whsec_a", tolerance_seconds=300, now=sent_ms / 1000 + 10)
    with pytest.raises(WebhookSignatureError, match="tolerance"):
        verify_signature(header, payload, "whsec_a", tolerance_seconds=300, now=sent_ms / 1000 + 3600)


def test_session_token_subject_is_provider_user_id():
    token = create_token("user_01ABC", email="kim@example.com")
    claims = decode_token(token)
    assert claims["sub"] == "user_01ABC"
    assert decode_token(token + "x") is None


def test_request_id_is_echoed(client):
    response = client.get("/health", headers={"x-request-id": "req-123"})
    assert response.status_code == 200
    assert response.headers["x-request-id"] == "req-123"
    assert response.json()["status"] == "ok"


def test_expired_session_token_is_rejected(client):
    token = create_token("user_01ABC", expires_minutes=-1)
    assert decode_token(token) is None
    response = client.get("/api/progress", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401

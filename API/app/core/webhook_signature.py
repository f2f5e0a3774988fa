"""HMAC verification for identity-provider webhook deliveries.

Header format: ``t=<unix ms>, v1=<hex sha256 hmac>``; the signed message is
``"{t}.{raw body}"`` keyed with the endpoint's webhook secret.
"""
import hashlib
import hmac
import time

from app.core.errors import WebhookSignatureError

SIGNATURE_HEADER = "workos-signature"


def parse_signature_header(header: str) -> tuple[str, str]:
    parts: dict[str, str] = {}
    for item in header.split(","):
        key, sep, value = item.strip().partition("=")
        if sep:
            parts[key.strip()] = value.strip()
    timestamp = parts.get("t")
    digest = parts.get("v1")
    if not timestamp or not digest:
        raise WebhookSignatureError("Invalid signature format - missing timestamp or hash")
    return timestamp, digest


def compute_signature(timestamp: str, payload: bytes | str, secret: str) -> str:
    # Raw bytes are signed as received; a body that is not UTF-8 simply fails to match.
    body = payload if isinstance(payload, bytes) else payload.encode("utf-8")
    message = timestamp.encode("utf-8") + b"." + body
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_signature(
    header: str,
    payload: bytes | str,
    secret: str,
    *,
    tolerance_seconds: int = 0,
    now: float | None = None,
) -> None:
    timestamp, digest = parse_signature_header(header)
    expected = compute_signature(timestamp, payload, secret)
    if not hmac.compare_digest(expected, digest):
        raise WebhookSignatureError("Signature verification failed - signatures don't match")
    if tolerance_seconds > 0:
        try:
            sent_at = int(timestamp) / 1000.0
        except ValueError as exc:
            raise WebhookSignatureError("Invalid signature timestamp") from exc
        current = time.time() if now is None else now
        if abs(current - sent_at) > tolerance_seconds:
            raise WebhookSignatureError("Signature timestamp outside tolerance window")


def build_signature_header(payload: bytes | str, secret: str, timestamp_ms: int | None = None) -> str:
    """Produce a header value the way the provider does; used by local tooling and tests."""
    timestamp = str(timestamp_ms if timestamp_ms is not None else int(time.time() * 1000))
    return f"t={timestamp}, v1={compute_signature(timestamp, payload, secret)}"

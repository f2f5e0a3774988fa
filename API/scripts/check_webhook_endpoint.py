#!/usr/bin/env python3
"""
Check a deployed webhook endpoint: GET liveness, optionally POST a signed test event.
Usage (from repo root): python API/scripts/check_webhook_endpoint.py <webhook-url> [--send-event --secret whsec_...]
Example: python API/scripts/check_webhook_endpoint.py https://example.ngrok.io/api/webhooks/workos
"""
from __future__ import annotations

import argparse
import json
import sys
import uuid
from pathlib import Path

import httpx

API_ROOT = Path(__file__).resolve().parents[1]
if str(API_ROOT) not in sys.path:
    sys.path.insert(0, str(API_ROOT))


def _test_event() -> str:
    suffix = uuid.uuid4().hex[:12]
    return json.dumps(
        {
            "id": f"event_test_{suffix}",
            "event": "dsync.test.ping",
            "data": {"id": f"check_{suffix}"},
        }
    )


def main() -> int:
    parser = argparse.ArgumentParser(description="Check that the identity-provider webhook endpoint is reachable")
    parser.add_argument("url", help="Full webhook URL, e.g. https://host/api/webhooks/workos")
    parser.add_argument("--send-event", action="store_true", help="Also POST a signed event of an unhandled type")
    parser.add_argument("--secret", default=None, help="Webhook secret (defaults to WORKOS_WEBHOOK_SECRET)")
    parser.add_argument("--timeout", type=float, default=5.0)
    args = parser.parse_args()

    try:
        health = httpx.get(args.url, timeout=args.timeout)
    except httpx.HTTPError as exc:
        print(f"Error: endpoint not reachable: {exc}", file=sys.stderr)
        return 1
    print(f"GET {args.url} -> {health.status_code}")
    print(health.text)
    if health.status_code != 200:
        return 1

    if not args.send_event:
        return 0

    from app.core.settings import settings
    from app.core.webhook_signature import SIGNATURE_HEADER, build_signature_header

    secret = args.secret or settings.workos_webhook_secret
    if not secret:
        print("Error: no webhook secret; pass --secret or set WORKOS_WEBHOOK_SECRET", file=sys.stderr)
        return 1

    body = _test_event()
    response = httpx.post(
        args.url,
        content=body,
        headers={SIGNATURE_HEADER: build_signature_header(body, secret), "content-type": "application/json"},
        timeout=args.timeout,
    )
    print(f"POST {args.url} -> {response.status_code}")
    print(response.text)
    return 0 if response.status_code == 200 else 1


if __name__ == "__main__":
    sys.exit(main())

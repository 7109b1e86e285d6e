"""Webhook authentication for payment-gateway callbacks.

The gateway sends ``x-signature: ts=<unix-ts>,v1=<hex hmac>`` and
``x-request-id``. The HMAC-SHA256 is computed over
``id:{payment_id};request-id:{request_id};ts:{ts};`` with the shared webhook
secret. Binding the payment id into the manifest is what stops a valid
signature from being replayed against a different payment.
"""
import hashlib
import hmac
from typing import Optional, Tuple


def parse_signature_header(header: Optional[str]) -> Optional[Tuple[str, str]]:
    """Return ``(ts, v1)`` or None when either part is missing."""
    if not header:
        return None
    ts = v1 = None
    for part in header.split(","):
        key, sep, value = part.partition("=")
        if not sep or "=" in value:
            continue
        key, value = key.strip(), value.strip()
        if key == "ts":
            ts = value
        elif key == "v1":
            v1 = value
    if not ts or not v1:
        return None
    return ts, v1


def build_manifest(payment_id: str, request_id: str, ts: str) -> str:
    return f"id:{payment_id};request-id:{request_id};ts:{ts};"


def compute_signature(secret: str, payment_id: str, request_id: str, ts: str) -> str:
    manifest = build_manifest(payment_id, request_id, ts)
    return hmac.new(secret.encode("utf-8"), manifest.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_webhook_signature(
    signature_header: Optional[str],
    request_id: Optional[str],
    payment_id: Optional[str],
    secret: Optional[str],
) -> bool:
    if not secret or not request_id or not payment_id:
        return False
    parsed = parse_signature_header(signature_header)
    if parsed is None:
        return False
    ts, received = parsed
    expected = compute_signature(secret, payment_id, request_id, ts)
    return hmac.compare_digest(expected.encode("ascii"), received.lower().encode("utf-8"))

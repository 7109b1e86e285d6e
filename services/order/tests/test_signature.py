import hashlib
import hmac

from orderflow.gateway.signature import (
    build_manifest,
    compute_signature,
    parse_signature_header,
    verify_webhook_signature,
)

SECRET = "s3cret"


def test_manifest_format():
    assert build_manifest("123", "req-9", "1700000000") == "id:123;request-id:req-9;ts:1700000000;"


def test_signature_is_hmac_sha256_of_manifest():
    expected = hmac.new(b"s3cret", b"id:123;request-id:req-9;ts:1700000000;", hashlib.sha256).hexdigest()
    assert compute_signature(SECRET, "123", "req-9", "1700000000") == expected


def test_parse_header_tolerates_spacing_and_order():
    assert parse_signature_header("v1=abc, ts=42") == ("42", "abc")
    assert parse_signature_header("ts=42") is None
    assert parse_signature_header("garbage") is None
    assert parse_signature_header(None) is None


def test_valid_signature_is_accepted():
    sig = compute_signature(SECRET, "123", "req-9", "42")
    assert verify_webhook_signature(f"ts=42,v1={sig}", "req-9", "123", SECRET)
    assert verify_webhook_signature(f"ts=42,v1={sig.upper()}", "req-9", "123", SECRET)


def test_signature_is_bound_to_payment_request_and_timestamp():
    sig = compute_signature(SECRET, "123", "req-9", "42")
    header = f"ts=42,v1={sig}"
    assert not verify_webhook_signature(header, "req-9", "124", SECRET)
    assert not verify_webhook_signature(header, "req-10", "123", SECRET)
    assert not verify_webhook_signature(f"ts=43,v1={sig}", "req-9", "123", SECRET)
    assert not verify_webhook_signature(header, "req-9", "123", "other")


def test_missing_inputs_fail_closed():
    sig = compute_signature(SECRET, "123", "req-9", "42")
    assert not verify_webhook_signature(f"ts=42,v1={sig}", "req-9", "123", "")
    assert not verify_webhook_signature(f"ts=42,v1={sig}", None, "123", SECRET)
    assert not verify_webhook_signature(None, "req-9", "123", SECRET)
    assert not verify_webhook_signature("ts=42,v1=zzé", "req-9", "123", SECRET)

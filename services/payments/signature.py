# services/payments/signature.py
"""
Mercado Pago webhook signature check.

x-signature: ts=<timestamp>,v1=<hex hmac-sha256>
manifest:    id:<data.id>;request-id:<x-request-id>;ts:<ts>;
"""

from __future__ import annotations
import hashlib
import hmac


def parse_signature_header(header: str | None) -> dict[str, str]:
    out: dict[str, str] = {}
    if not header:
        return out
    for part in header.split(","):
        if "=" not in part:
            continue
        k, v = part.split("=", 1)
        k, v = k.strip(), v.strip()
        if k:
            out[k] = v
    return out


def canonical_resource_id(resource_id: str) -> str:
    # the gateway lower-cases alphanumeric ids; purely numeric ids pass through
    rid = str(resource_id).strip()
    if any(ch.isalpha() for ch in rid):
        return rid.lower()
    return rid


def build_manifest(resource_id: str, request_id: str, ts: str) -> str:
    return f"id:{canonical_resource_id(resource_id)};request-id:{request_id};ts:{ts};"


def compute_signature(secret: str, resource_id: str, request_id: str, ts: str) -> str:
    manifest = build_manifest(resource_id, request_id, ts)
    return hmac.new(secret.encode("utf-8"), manifest.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_signature(secret: str, signature_header: str | None,
                     request_id: str | None, resource_id: str | None) -> bool:
    if not secret or not signature_header or not request_id or not resource_id:
        return False
    parts = parse_signature_header(signature_header)
    ts = parts.get("ts")
    v1 = parts.get("v1")
    if not ts or not v1:
        return False
    expected = compute_signature(secret, resource_id, request_id, ts)
    # compare_digest does not short-circuit on content, and a length mismatch is simply False
    return hmac.compare_digest(expected.encode("utf-8"), v1.encode("utf-8"))

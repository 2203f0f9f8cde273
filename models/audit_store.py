# models/audit_store.py
import os
from typing import Any, Optional

from flask import request, has_request_context, g
from sqlalchemy import select, asc

from models.base import session_scope
from models.schema import PaymentAuditLog

ANONYMIZE_IP = os.getenv("AUDIT_ANONYMIZE_IP", "1") == "1"

_ALLOWED_EXTRA_KEYS = {"reason", "note", "gateway_status",
                       "status_detail", "payment_method", "source"}


def _anon_ip(ip: str | None) -> str | None:
    if not ip:
        return None
    if not ANONYMIZE_IP:
        return ip
    # Simple IPv4 /24 or IPv6 /48 truncation
    if ":" in ip:
        parts = ip.split(":")
        return ":".join(parts[:3]) + "::"
    else:
        quads = ip.split(".")
        return ".".join(quads[:3]) + ".0"


def _clean_extra(extra: Optional[dict[str, Any]]) -> dict:
    if not extra:
        return {}
    out = {}
    for k, v in extra.items():
        if k not in _ALLOWED_EXTRA_KEYS:
            continue
        if isinstance(v, str) and len(v) > 512:
            v = v[:512] + "…"
        out[k] = v
    return out


def _request_context() -> tuple[str | None, str | None]:
    """(anonymized ip, request id) for the current request, if any."""
    if not has_request_context():
        return None, None
    fwd = request.headers.get("X-Forwarded-For", "")
    ip = fwd.split(",")[0].strip() or request.remote_addr
    req_id = getattr(g, "request_id", None) or request.headers.get(
        "X-Request-ID")
    return _anon_ip(ip), req_id


def payment_audit_entry(
    gift_card_id: str,
    event_type: str,
    *,
    business_id: str | None = None,
    actor: str | None = None,
    payment_provider_id: str | None = None,
    amount_cents: int | None = None,
    fee_cents: int | None = None,
    previous_status: str | None = None,
    new_status: str | None = None,
    extra: Optional[dict[str, Any]] = None,
) -> PaymentAuditLog:
    """
    Build (but do not persist) an audit row. The caller adds it to the same
    session as the state change it describes, so both commit or neither does.
    """
    ip, req_id = _request_context()
    return PaymentAuditLog(
        gift_card_id=gift_card_id,
        business_id=business_id,
        event_type=event_type,
        actor=actor or "anonymous",
        payment_provider_id=payment_provider_id,
        amount_cents=amount_cents,
        fee_cents=fee_cents,
        previous_status=previous_status,
        new_status=new_status,
        extra=_clean_extra(extra),
        ip=ip,
        request_id=req_id,
    )


def list_payment_audit(gift_card_id: str) -> list[dict]:
    with session_scope() as s:
        rows = s.execute(
            select(PaymentAuditLog)
            .where(PaymentAuditLog.gift_card_id == gift_card_id)
            .order_by(asc(PaymentAuditLog.id))
        ).scalars().all()
        return [
            {
                "id": r.id,
                "event_type": r.event_type,
                "actor": r.actor,
                "payment_provider_id": r.payment_provider_id,
                "amount_cents": r.amount_cents,
                "fee_cents": r.fee_cents,
                "previous_status": r.previous_status,
                "new_status": r.new_status,
                "extra": r.extra or {},
                "ip": r.ip,
                "request_id": r.request_id,
                "created_at": r.created_at,
            }
            for r in rows
        ]

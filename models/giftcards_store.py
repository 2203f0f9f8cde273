# models/giftcards_store.py (SQLAlchemy)
from __future__ import annotations
import json
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from models.base import session_scope
from models.schema import (
    Business, GiftCard, GiftCardTemplate, PaymentAuditLog, PaymentEvent,
    STATUS_PENDING, PAYMENT_PENDING,
)

_CARD_FIELDS = (
    "id", "business_id", "template_id", "code", "amount_cents", "status", "payment_status",
    "payment_provider_id", "payment_method", "payment_fee_cents", "payment_completed_at",
    "activated_at", "purchaser_name", "purchaser_email", "recipient_name", "recipient_email",
    "recipient_message", "is_custom", "custom_title", "custom_bg_color", "expires_at",
    "created_at",
)

# fields a conditional update is allowed to touch; everything else is set at creation
_MUTABLE_FIELDS = {
    "status", "payment_status", "payment_provider_id", "payment_method",
    "payment_fee_cents", "payment_completed_at", "activated_at",
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _card_to_dict(c: GiftCard) -> dict:
    return {f: getattr(c, f) for f in _CARD_FIELDS}


def _gen_code() -> str:
    alphabet = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
    return "".join(secrets.choice(alphabet) for _ in range(10))


class GiftCardStore:
    """
    Gift card persistence as consumed by the webhook path: read by id and a
    compare-and-set on status. The conditional update is the only
    synchronization primitive; there is no read-then-write anywhere here.
    """

    def get(self, gift_card_id: str) -> Optional[dict]:
        if not gift_card_id:
            return None
        with session_scope() as s:
            c = s.get(GiftCard, gift_card_id)
            return _card_to_dict(c) if c else None

    def load_for_email(self, gift_card_id: str) -> Optional[dict]:
        """Card snapshot plus the business/template display fields."""
        with session_scope() as s:
            c = s.get(GiftCard, gift_card_id)
            if not c:
                return None
            out = _card_to_dict(c)
            b = c.business
            t = c.template
            out["business"] = {
                "name": b.name, "slug": b.slug, "gift_card_color": b.gift_card_color,
            } if b else None
            out["template"] = {
                "name": t.name, "card_color": t.card_color,
            } if t else None
            return out

    def compare_and_set_status(self, gift_card_id: str, expected_status: str,
                               fields: dict[str, Any],
                               audit: Optional[PaymentAuditLog] = None) -> bool:
        """
        UPDATE gift_cards SET <fields> WHERE id = :id AND status = :expected.
        Returns True only when this call changed the row. The optional audit row
        is written in the same transaction.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Not a mutable gift card field: {sorted(unknown)}")
        if not fields:
            raise ValueError("No fields to update")

        with session_scope() as s:
            res = s.execute(
                update(GiftCard)
                .where(GiftCard.id == gift_card_id, GiftCard.status == expected_status)
                .values(**fields)
                .execution_options(synchronize_session=False)
            )
            matched = res.rowcount == 1
            if matched and audit is not None:
                s.add(audit)
            return matched

    def create_pending(self, *, business_id: str, amount_cents: int, purchaser_email: str,
                       purchaser_name: str | None = None, recipient_email: str | None = None,
                       recipient_name: str | None = None, recipient_message: str | None = None,
                       template_id: str | None = None, is_custom: bool = False,
                       custom_title: str | None = None, custom_bg_color: str | None = None,
                       valid_days: int = 365, code: str | None = None) -> str:
        """Insert a PENDING/PENDING card, as the purchase flow does."""
        if amount_cents <= 0:
            raise ValueError("amount_cents must be positive")
        now = _now()
        with session_scope() as s:
            c = GiftCard(
                business_id=business_id, template_id=template_id,
                code=code or _gen_code(), amount_cents=int(amount_cents),
                status=STATUS_PENDING, payment_status=PAYMENT_PENDING,
                purchaser_email=purchaser_email, purchaser_name=purchaser_name,
                recipient_email=recipient_email, recipient_name=recipient_name,
                recipient_message=recipient_message,
                is_custom=is_custom, custom_title=custom_title, custom_bg_color=custom_bg_color,
                expires_at=now + timedelta(days=valid_days), created_at=now,
            )
            s.add(c)
            s.flush()
            return c.id


def create_business(name: str, slug: str, gift_card_color: str | None = None) -> str:
    with session_scope() as s:
        b = Business(name=name, slug=slug, gift_card_color=gift_card_color)
        s.add(b)
        s.flush()
        return b.id


def create_template(business_id: str, name: str, card_color: str | None = None) -> str:
    with session_scope() as s:
        t = GiftCardTemplate(business_id=business_id, name=name, card_color=card_color)
        s.add(t)
        s.flush()
        return t.id


# a later delivery with the same request id may replace these outcomes
_RETRYABLE_OUTCOMES = {"rejected", "gateway_error", "internal_error"}

# rejected deliveries keep no body; others are capped
MAX_RAW_CHARS = 16 * 1024


def _clip_raw(raw_text: str, outcome: Optional[str]) -> str:
    if outcome == "rejected":
        return ""
    if len(raw_text) > MAX_RAW_CHARS:
        return raw_text[:MAX_RAW_CHARS]
    return raw_text


def record_webhook_event(provider: str, external_event_id: Optional[str], event_type: str,
                         raw_payload: Any, signature_ok: bool,
                         resource_id: Optional[str] = None, outcome: Optional[str] = None) -> int:
    """
    Log a delivery. A repeated (provider, x-request-id) keeps one row: it is
    overwritten when the new delivery is authenticated and the stored one was
    not, or when the stored outcome was a retryable failure of the same
    authentication standing. A forged delivery never overwrites a signed one.
    """
    raw_text = raw_payload if isinstance(raw_payload, str) else json.dumps(
        raw_payload, ensure_ascii=False, separators=(",", ":"), default=str)
    raw_text = _clip_raw(raw_text, outcome)
    sig = 1 if signature_ok else 0
    with session_scope() as s:
        try:
            e = PaymentEvent(
                provider=provider, external_event_id=external_event_id,
                resource_id=resource_id, event_type=event_type or "unknown",
                raw=raw_text, signature_ok=sig,
                outcome=outcome, received_at=_now(),
            )
            s.add(e)
            s.flush()
            return e.id
        except IntegrityError:
            s.rollback()
            row = s.execute(
                select(PaymentEvent).where(
                    (PaymentEvent.provider == provider) & (
                        PaymentEvent.external_event_id == external_event_id)
                )
            ).scalars().first()
            if row is None:
                return 0
            upgrade = (sig and not row.signature_ok) or (
                sig == row.signature_ok and row.outcome in _RETRYABLE_OUTCOMES)
            if upgrade:
                row.signature_ok = sig
                row.outcome = outcome
                row.event_type = event_type or row.event_type
                row.resource_id = resource_id or row.resource_id
                row.raw = raw_text
                row.received_at = _now()
            return row.id


def list_webhook_events(provider: str | None = None, limit: int = 100) -> list[dict]:
    with session_scope() as s:
        q = select(PaymentEvent).order_by(PaymentEvent.id.desc()).limit(limit)
        if provider:
            q = q.where(PaymentEvent.provider == provider)
        return [
            {c: getattr(e, c) for c in ("id", "provider", "external_event_id", "resource_id",
                                        "event_type", "signature_ok", "outcome", "received_at",
                                        "raw")}
            for e in s.execute(q).scalars().all()
        ]

# models/schema.py
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON, Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


# gift card lifecycle
STATUS_PENDING = "PENDING"
STATUS_ACTIVE = "ACTIVE"
STATUS_EXPIRED = "EXPIRED"
STATUS_CANCELLED = "CANCELLED"

# payment lifecycle, tracked independently of the card status
PAYMENT_PENDING = "PENDING"
PAYMENT_COMPLETED = "COMPLETED"
PAYMENT_FAILED = "FAILED"


# --- BUSINESSES / TEMPLATES (read-only context for emails)

class Business(Base):
    __tablename__ = "businesses"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    gift_card_color: Mapped[str | None] = mapped_column(String(16))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False)


class GiftCardTemplate(Base):
    __tablename__ = "gift_card_templates"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    business_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    card_color: Mapped[str | None] = mapped_column(String(16))


# --- GIFT CARDS (the authoritative financial record)

class GiftCard(Base):
    __tablename__ = "gift_cards"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    business_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("businesses.id", ondelete="RESTRICT"), nullable=False)
    template_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("gift_card_templates.id", ondelete="SET NULL"))
    code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=STATUS_PENDING)
    payment_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=PAYMENT_PENDING)
    payment_provider_id: Mapped[str | None] = mapped_column(String(64))
    payment_method: Mapped[str | None] = mapped_column(String(32))
    payment_fee_cents: Mapped[int | None] = mapped_column(Integer)
    payment_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True))
    activated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True))

    purchaser_name: Mapped[str | None] = mapped_column(String(200))
    purchaser_email: Mapped[str] = mapped_column(String(320), nullable=False)
    recipient_name: Mapped[str | None] = mapped_column(String(200))
    recipient_email: Mapped[str | None] = mapped_column(String(320))
    recipient_message: Mapped[str | None] = mapped_column(Text)

    # custom cards carry their own title/colour instead of a template's
    is_custom: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    custom_title: Mapped[str | None] = mapped_column(String(200))
    custom_bg_color: Mapped[str | None] = mapped_column(String(16))

    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False)

    business = relationship("Business", lazy="joined")
    template = relationship("GiftCardTemplate", lazy="joined")

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_gift_cards_amount_ge_0"),
        CheckConstraint(
            "status in ('PENDING','ACTIVE','EXPIRED','CANCELLED')", name="ck_gift_cards_status"),
        CheckConstraint(
            "payment_status in ('PENDING','COMPLETED','FAILED')", name="ck_gift_cards_payment_status"),
        CheckConstraint("payment_fee_cents is null or payment_fee_cents >= 0",
                        name="ck_gift_cards_fee_ge_0"),
        Index("idx_gift_cards_business", "business_id"),
        Index("idx_gift_cards_provider_id", "payment_provider_id"),
    )


# --- WEBHOOK DELIVERIES

class PaymentEvent(Base):
    __tablename__ = "payment_events"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    # x-request-id of the delivery; null when the gateway did not send one
    external_event_id: Mapped[str | None] = mapped_column(String(128))
    resource_id: Mapped[str | None] = mapped_column(String(64))
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    raw: Mapped[str] = mapped_column(Text, nullable=False)
    signature_ok: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0)
    outcome: Mapped[str | None] = mapped_column(String(32))
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False)
    __table_args__ = (
        UniqueConstraint("provider", "external_event_id",
                         name="uq_paymentevents_provider_external"),
        CheckConstraint("signature_ok IN (0,1)",
                        name="ck_paymentevents_signature_ok"),
    )


class PaymentAuditLog(Base):
    __tablename__ = "payment_audit_logs"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    gift_card_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("gift_cards.id", ondelete="CASCADE"), nullable=False)
    business_id: Mapped[str | None] = mapped_column(String(36))
    event_type: Mapped[str] = mapped_column(String(32), nullable=False)
    actor: Mapped[str | None] = mapped_column(String(128))
    payment_provider_id: Mapped[str | None] = mapped_column(String(64))
    amount_cents: Mapped[int | None] = mapped_column(Integer)
    fee_cents: Mapped[int | None] = mapped_column(Integer)
    previous_status: Mapped[str | None] = mapped_column(String(16))
    new_status: Mapped[str | None] = mapped_column(String(16))
    extra: Mapped[Optional[dict]] = mapped_column(JSON)
    ip: Mapped[str | None] = mapped_column(String(64))  # anonymized if configured
    request_id: Mapped[str | None] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "event_type in ('CARD_ACTIVATED','PAYMENT_FAILED')", name="ck_payment_audit_event_type"),
        Index("idx_payment_audit_card", "gift_card_id"),
    )

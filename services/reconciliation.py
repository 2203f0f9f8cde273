# services/reconciliation.py
"""
Moves a gift card forward from the authoritative payment record.

  approved            -> PENDING/PENDING  => ACTIVE/COMPLETED   (ACTIVATED)
  rejected, cancelled -> PENDING/*        => PENDING/FAILED     (MARKED_FAILED)
  anything else       -> no change                              (IGNORED)

Every write is a compare-and-set guarded by status == PENDING, so a
redelivered or concurrent notification finds the precondition false and
reports ALREADY_SETTLED without touching the row.
"""

from __future__ import annotations
import enum
import logging
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from models.audit_store import payment_audit_entry
from models.giftcards_store import GiftCardStore
from models.schema import (
    STATUS_ACTIVE, STATUS_PENDING, PAYMENT_COMPLETED, PAYMENT_FAILED,
)
from services.metrics import GIFT_CARDS_ACTIVATED
from services.payments.base import APPROVED, REJECTED_STATUSES, FeeDetail, PaymentRecord

log = logging.getLogger(__name__)


class TransitionOutcome(str, enum.Enum):
    ACTIVATED = "activated"
    ALREADY_SETTLED = "already_settled"
    MARKED_FAILED = "marked_failed"
    IGNORED = "ignored"


def compute_fee_cents(fee_details: Iterable[FeeDetail]) -> Optional[int]:
    """
    Sum the fee components in major units first, then convert to cents once
    (half-up). Rounding per component would compound the error.
    """
    total = sum((Decimal(str(f.amount)) for f in fee_details), Decimal("0"))
    cents = int((total * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return cents or None


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ActivationEngine:
    def __init__(self, store: Optional[GiftCardStore] = None, *, provider: str = "mercadopago"):
        self.store = store or GiftCardStore()
        self.provider = provider

    def _miss(self, gift_card_id: str) -> TransitionOutcome:
        # precondition failed: either somebody else settled the card or it never existed
        if self.store.get(gift_card_id) is None:
            log.warning("Gift card %s not found; ignoring notification", gift_card_id)
            return TransitionOutcome.IGNORED
        return TransitionOutcome.ALREADY_SETTLED

    def reconcile(self, gift_card_id: Optional[str], payment: PaymentRecord) -> TransitionOutcome:
        if not payment.external_reference or payment.external_reference != gift_card_id:
            log.warning("Orphaned notification: payment %s has external_reference=%r (card %r)",
                        payment.id, payment.external_reference, gift_card_id)
            return TransitionOutcome.IGNORED

        if payment.status == APPROVED:
            return self._activate(gift_card_id, payment)
        if payment.status in REJECTED_STATUSES:
            return self._mark_failed(gift_card_id, payment)

        log.info("Payment %s is %s; nothing to do for card %s",
                 payment.id, payment.status, gift_card_id)
        return TransitionOutcome.IGNORED

    def _activate(self, gift_card_id: str, payment: PaymentRecord) -> TransitionOutcome:
        fee_cents = compute_fee_cents(payment.fee_details)
        now = _now()
        fields = {
            "status": STATUS_ACTIVE,
            "payment_status": PAYMENT_COMPLETED,
            "activated_at": now,
            "payment_completed_at": now,
            "payment_fee_cents": fee_cents,
            "payment_provider_id": str(payment.id),
            "payment_method": payment.payment_type_id.upper() or None,
        }

        card = self.store.get(gift_card_id)
        if card and payment.transaction_amount:
            paid_cents = int((payment.transaction_amount * 100).quantize(
                Decimal("1"), rounding=ROUND_HALF_UP))
            if paid_cents != int(card["amount_cents"]):
                log.warning("Payment %s amount %s cents differs from card %s amount %s cents",
                            payment.id, paid_cents, gift_card_id, card["amount_cents"])

        audit = payment_audit_entry(
            gift_card_id, "CARD_ACTIVATED",
            business_id=card["business_id"] if card else None,
            actor=f"webhook:{self.provider}",
            payment_provider_id=str(payment.id),
            amount_cents=card["amount_cents"] if card else None,
            fee_cents=fee_cents,
            previous_status=STATUS_PENDING, new_status=STATUS_ACTIVE,
            extra={"gateway_status": payment.status, "status_detail": payment.status_detail,
                   "payment_method": payment.payment_type_id},
        )
        if not self.store.compare_and_set_status(gift_card_id, STATUS_PENDING, fields, audit=audit):
            outcome = self._miss(gift_card_id)
            if outcome is TransitionOutcome.ALREADY_SETTLED:
                log.info("Gift card %s already settled; payment %s is a no-op",
                         gift_card_id, payment.id)
            return outcome

        GIFT_CARDS_ACTIVATED.labels(source="webhook").inc()
        log.info("Gift card %s activated by payment %s (fee=%s cents)",
                 gift_card_id, payment.id, fee_cents)
        return TransitionOutcome.ACTIVATED

    def _mark_failed(self, gift_card_id: str, payment: PaymentRecord) -> TransitionOutcome:
        card = self.store.get(gift_card_id)
        audit = payment_audit_entry(
            gift_card_id, "PAYMENT_FAILED",
            business_id=card["business_id"] if card else None,
            actor=f"webhook:{self.provider}",
            payment_provider_id=str(payment.id),
            amount_cents=card["amount_cents"] if card else None,
            previous_status=card["payment_status"] if card else None,
            new_status=PAYMENT_FAILED,
            extra={"gateway_status": payment.status, "status_detail": payment.status_detail},
        )
        # payment_provider_id stays unset: the card may still be paid by a new attempt
        if not self.store.compare_and_set_status(
                gift_card_id, STATUS_PENDING, {"payment_status": PAYMENT_FAILED}, audit=audit):
            return self._miss(gift_card_id)

        log.info("Payment %s %s (%s); card %s marked FAILED",
                 payment.id, payment.status, payment.status_detail, gift_card_id)
        return TransitionOutcome.MARKED_FAILED

    def activate_manually(self, gift_card_id: str, actor: str = "admin") -> TransitionOutcome:
        """Administrative activation, under the same single-activation guard."""
        card = self.store.get(gift_card_id)
        if card is None:
            return TransitionOutcome.IGNORED
        now = _now()
        audit = payment_audit_entry(
            gift_card_id, "CARD_ACTIVATED",
            business_id=card["business_id"], actor=actor,
            amount_cents=card["amount_cents"],
            previous_status=STATUS_PENDING, new_status=STATUS_ACTIVE,
            extra={"source": "manual"},
        )
        fields = {
            "status": STATUS_ACTIVE,
            "payment_status": PAYMENT_COMPLETED,
            "activated_at": now,
            "payment_completed_at": now,
        }
        if not self.store.compare_and_set_status(gift_card_id, STATUS_PENDING, fields, audit=audit):
            return TransitionOutcome.ALREADY_SETTLED
        GIFT_CARDS_ACTIVATED.labels(source="admin").inc()
        log.info("Gift card %s manually activated by %s", gift_card_id, actor)
        return TransitionOutcome.ACTIVATED

# tests/utils.py
import threading
import uuid
from decimal import Decimal

from models.giftcards_store import GiftCardStore, create_business, create_template
from services.email.types import GiftCardEmailResults, SendResult
from services.payments.base import FeeDetail, GatewayError, PaymentRecord
from services.payments.signature import compute_signature


class FakeGateway:
    name = "mercadopago"

    def __init__(self):
        self.payments = {}
        self.errors = {}
        self.calls = []
        self._lock = threading.Lock()

    def add(self, payment: PaymentRecord) -> PaymentRecord:
        self.payments[payment.id] = payment
        return payment

    def fetch_payment(self, payment_id):
        with self._lock:
            self.calls.append(str(payment_id))
        if str(payment_id) in self.errors:
            raise self.errors[str(payment_id)]
        try:
            return self.payments[str(payment_id)]
        except KeyError:
            raise GatewayError(404, f"Payment {payment_id} not found")


class FakeTransport:
    def __init__(self, fail: bool = False, raise_exc: Exception | None = None):
        self.sent = []
        self.fail = fail
        self.raise_exc = raise_exc
        self._lock = threading.Lock()

    def send_gift_card_emails(self, data):
        with self._lock:
            self.sent.append(data)
        if self.raise_exc:
            raise self.raise_exc
        res = SendResult(False, error="boom") if self.fail else SendResult(True, message_id="msg_1")
        if data.is_gift:
            return GiftCardEmailResults(res, res)
        return GiftCardEmailResults(res)


def make_card(amount_cents: int = 5000, *, purchaser_email: str = "ana@example.com",
              recipient_email: str | None = "bia@example.com", with_template: bool = True,
              **kw) -> str:
    bid = create_business("Café Aurora", f"cafe-aurora-{uuid.uuid4().hex[:8]}",
                          gift_card_color="#aa0000")
    tid = create_template(bid, "Aniversário", card_color="#00aa00") if with_template else None
    return GiftCardStore().create_pending(
        business_id=bid, template_id=tid, amount_cents=amount_cents,
        purchaser_email=purchaser_email, purchaser_name="Ana",
        recipient_email=recipient_email, recipient_name="Bia",
        recipient_message="Parabéns!", **kw)


def payment(card_id, status="approved", pid="1234567890", fees=("1.23", "0.02"),
            amount="50.00", payment_type_id="credit_card") -> PaymentRecord:
    return PaymentRecord(
        id=pid,
        status=status,
        status_detail="accredited" if status == "approved" else "cc_rejected_other_reason",
        external_reference=card_id,
        fee_details=[FeeDetail("mercadopago_fee", Decimal(f)) for f in fees],
        transaction_amount=Decimal(amount),
        payment_type_id=payment_type_id,
    )


def signed_headers(secret: str, data_id: str, request_id: str = "req-1", ts: str = "1704908010") -> dict:
    v1 = compute_signature(secret, data_id, request_id, ts)
    return {
        "x-signature": f"ts={ts},v1={v1}",
        "x-request-id": request_id,
        "Content-Type": "application/json",
    }

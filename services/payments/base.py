# services/payments/base.py
"""
Payment gateway data shapes and errors shared by the webhook path.

The notification envelope only says "something happened to resource X".
Business decisions are made from the PaymentRecord the gateway returns when
we fetch that resource ourselves.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol


APPROVED = "approved"
REJECTED_STATUSES = frozenset({"rejected", "cancelled"})


class PaymentError(Exception):
    """Base class for gateway-side failures."""


class GatewayConfigError(PaymentError):
    """The gateway cannot be used with the current configuration."""


class GatewayError(PaymentError):
    def __init__(self, status_code: Optional[int], message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"gateway error {status_code}: {message}")


@dataclass(frozen=True)
class FeeDetail:
    type: str
    amount: Decimal               # major currency units, as reported


@dataclass(frozen=True)
class PaymentRecord:
    id: str
    status: str                   # approved | pending | in_process | rejected | ...
    status_detail: str = ""
    external_reference: Optional[str] = None
    fee_details: List[FeeDetail] = field(default_factory=list)
    transaction_amount: Decimal = Decimal("0")
    payment_type_id: str = ""
    date_approved: Optional[str] = None
    payer_email: Optional[str] = None


@dataclass(frozen=True)
class Preference:
    id: str
    init_point: str
    sandbox_init_point: str


@dataclass(frozen=True)
class WebhookNotification:
    type: str
    action: Optional[str]
    resource_id: str
    raw: Dict[str, Any]


def parse_notification(body: Any) -> Optional[WebhookNotification]:
    """
    Accepts {"type": "payment", "action": ..., "data": {"id": ...}} and the
    legacy {"topic": "payment", "id": ...} shape. Returns None when the type
    or the resource id is missing.
    """
    if not isinstance(body, dict):
        return None
    ntype = body.get("type") or body.get("topic")
    data = body.get("data")
    rid = data.get("id") if isinstance(data, dict) else None
    if rid is None:
        rid = body.get("id") if body.get("topic") else None
    if not ntype or rid is None or str(rid).strip() == "":
        return None
    return WebhookNotification(
        type=str(ntype),
        action=body.get("action"),
        resource_id=str(rid).strip(),
        raw=body,
    )


class PaymentGateway(Protocol):
    name: str

    def fetch_payment(self, payment_id: str) -> PaymentRecord:
        """
        Authoritative lookup of a payment. Raises GatewayError on any
        non-2xx answer or transport failure. Never cached.
        """

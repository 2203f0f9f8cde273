# services/payments/mercadopago.py
"""
Thin Mercado Pago REST client.

Configuration (env first, Flask config second):
  MERCADOPAGO_ACCESS_TOKEN   bearer token (required)
  MERCADOPAGO_API_BASE       default: https://api.mercadopago.com
  MERCADOPAGO_TIMEOUT        seconds (default 10)

fetch_payment() is the only call on the webhook path. create_preference() is
used by the purchase flow to start a Checkout Pro session.
"""

from __future__ import annotations
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

import requests

from services.payments.base import (
    FeeDetail, GatewayConfigError, GatewayError, PaymentRecord, Preference,
)

log = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.mercadopago.com"


def _decimal(v: Any) -> Decimal:
    if v is None or v == "":
        return Decimal("0")
    try:
        # via str() so 1.23 stays 1.23 and not its binary float expansion
        return Decimal(str(v))
    except (InvalidOperation, ValueError):
        return Decimal("0")


def _error_message(resp: requests.Response) -> str:
    try:
        j = resp.json()
    except ValueError:
        j = None
    if isinstance(j, dict):
        msg = j.get("message") or j.get("error")
        if msg:
            return str(msg)
    return resp.reason or f"HTTP {resp.status_code}"


def payment_from_json(j: Dict[str, Any]) -> PaymentRecord:
    fees = []
    for f in j.get("fee_details") or []:
        if not isinstance(f, dict):
            continue
        fees.append(FeeDetail(type=str(f.get("type") or ""), amount=_decimal(f.get("amount"))))
    ext = j.get("external_reference")
    payer = j.get("payer") or {}
    return PaymentRecord(
        id=str(j["id"]),
        status=str(j.get("status") or "unknown"),
        status_detail=str(j.get("status_detail") or ""),
        external_reference=str(ext) if ext not in (None, "") else None,
        fee_details=fees,
        transaction_amount=_decimal(j.get("transaction_amount")),
        payment_type_id=str(j.get("payment_type_id") or ""),
        date_approved=j.get("date_approved"),
        payer_email=payer.get("email") if isinstance(payer, dict) else None,
    )


class MercadoPagoClient:
    name = "mercadopago"

    def __init__(self, access_token: str, *, base_url: str = DEFAULT_API_BASE,
                 timeout: float = 10, session: Optional[requests.Session] = None) -> None:
        self.access_token = access_token or ""
        self.base_url = (base_url or DEFAULT_API_BASE).rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {self.access_token}",
            "Accept": "application/json",
        })

    def _request(self, method: str, path: str, **kw) -> Dict[str, Any]:
        if not self.access_token:
            raise GatewayConfigError("MERCADOPAGO_ACCESS_TOKEN not configured")
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kw)
        except requests.RequestException as e:
            raise GatewayError(None, f"request failed: {e}") from e

        if not (200 <= resp.status_code < 300):
            raise GatewayError(resp.status_code, _error_message(resp))
        try:
            data = resp.json()
        except ValueError as e:
            raise GatewayError(resp.status_code, "invalid JSON from gateway") from e
        if not isinstance(data, dict):
            raise GatewayError(resp.status_code, "unexpected response shape")
        return data

    def fetch_payment(self, payment_id: str) -> PaymentRecord:
        pid = str(payment_id).strip()
        if not pid:
            raise GatewayError(None, "empty payment id")
        data = self._request("GET", f"/v1/payments/{pid}")
        if not data.get("id"):
            raise GatewayError(404, f"Payment {pid} not found")
        return payment_from_json(data)

    def create_preference(self, *, title: str, amount_cents: int, external_reference: str,
                          success_url: str, pending_url: str, failure_url: str,
                          notification_url: str | None = None, payer_email: str | None = None,
                          description: str | None = None, currency: str = "BRL") -> Preference:
        now = datetime.now(timezone.utc)
        body: Dict[str, Any] = {
            "items": [{
                "id": external_reference,
                "title": title,
                "description": description or title,
                "quantity": 1,
                # the gateway wants major units
                "unit_price": float(Decimal(int(amount_cents)) / Decimal(100)),
                "currency_id": currency,
            }],
            "back_urls": {"success": success_url, "pending": pending_url, "failure": failure_url},
            "auto_return": "approved",
            "external_reference": external_reference,
            "statement_descriptor": "TAPRESENTE",
            "expires": True,
            "expiration_date_from": now.isoformat(timespec="milliseconds"),
            "expiration_date_to": (now + timedelta(hours=24)).isoformat(timespec="milliseconds"),
        }
        if notification_url:
            body["notification_url"] = notification_url
        if payer_email:
            body["payer"] = {"email": payer_email}

        data = self._request("POST", "/checkout/preferences", json=body)
        if not data.get("id") or not data.get("init_point"):
            log.error("Invalid preference response: %s", data)
            raise GatewayError(None, "Failed to create Mercado Pago preference")
        return Preference(
            id=str(data["id"]),
            init_point=data["init_point"],
            sandbox_init_point=data.get("sandbox_init_point") or data["init_point"],
        )

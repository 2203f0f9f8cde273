# services/email/resend.py
"""
Resend HTTP API transport.

Configuration (env first, Flask config second):
  RESEND_API_KEY       bearer key; without it every send reports "Email not configured"
  RESEND_FROM_EMAIL    sender address (default noreply@<RESEND_FROM_DOMAIN>)
  RESEND_FROM_DOMAIN   default: tapresente.com.br
"""

from __future__ import annotations
import logging
from typing import Any, Dict, Optional

import requests

from services.email.templates import render
from services.email.types import GiftCardEmailData, GiftCardEmailResults, SendResult
from services.settings import cfg

log = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


class ResendTransport:
    def __init__(self, api_key: Optional[str] = None, *, from_email: Optional[str] = None,
                 timeout: float = 10, session: Optional[requests.Session] = None) -> None:
        self.api_key = api_key if api_key is not None else (cfg("RESEND_API_KEY") or "").strip()
        domain = cfg("RESEND_FROM_DOMAIN") or "tapresente.com.br"
        self.from_email = from_email or cfg("RESEND_FROM_EMAIL") or f"noreply@{domain}"
        self.timeout = timeout
        self.session = session or requests.Session()

    def _sender(self, business_name: str) -> str:
        return f"{business_name} via Tapresente <{self.from_email}>"

    def send(self, payload: Dict[str, Any]) -> SendResult:
        if not self.api_key:
            log.warning("RESEND_API_KEY not configured, skipping email")
            return SendResult(False, error="Email not configured")
        try:
            resp = self.session.post(
                RESEND_API_URL,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            log.error("Email send error: %s", e)
            return SendResult(False, error=str(e))

        try:
            data = resp.json() if resp.content else {}
        except ValueError:
            data = {}
        if not (200 <= resp.status_code < 300):
            log.error("Resend API error %s: %s", resp.status_code, data)
            return SendResult(False, error=(data.get("message") if isinstance(data, dict) else None)
                              or f"HTTP {resp.status_code}")
        message_id = data.get("id") if isinstance(data, dict) else None
        log.info("Email sent: %s", message_id)
        return SendResult(True, message_id=message_id)

    def send_purchased(self, data: GiftCardEmailData) -> SendResult:
        return self.send({
            "from": self._sender(data.business_name),
            "to": data.purchaser_email,
            "subject": f"✅ Compra confirmada - Vale-presente {data.business_name}",
            "html": render("purchased.html", data),
            "text": render("purchased.txt", data),
        })

    def send_received(self, data: GiftCardEmailData) -> SendResult:
        sender = data.purchaser_name or data.purchaser_email
        return self.send({
            "from": self._sender(data.business_name),
            "to": data.recipient_email,
            "subject": f"🎁 {sender} enviou um presente para você!",
            "html": render("received.html", data),
            "text": render("received.txt", data),
        })

    def send_gift_card_emails(self, data: GiftCardEmailData) -> GiftCardEmailResults:
        purchaser = self.send_purchased(data)
        if data.is_gift:
            return GiftCardEmailResults(purchaser, self.send_received(data))
        return GiftCardEmailResults(purchaser)

# services/webhooks.py
"""
Webhook receiver for gateway payment notifications.

Received -> Verifying -> (Rejected | Verified) -> Fetching -> Reconciling
         -> [Dispatching] -> Acknowledged

Response policy: the gateway retries any non-2xx aggressively, so every
outcome except an authentication failure is answered with 200. Redelivery
is harmless because the state change is a guarded compare-and-set.
"""

from __future__ import annotations
import enum
import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from services.metrics import GATEWAY_ERRORS, WEBHOOK_EVENTS
from services.notifications import DispatchResult, NotificationDispatcher
from services.payments.base import PaymentError, PaymentGateway, parse_notification
from services.payments.signature import canonical_resource_id, verify_signature
from services.reconciliation import ActivationEngine, TransitionOutcome

log = logging.getLogger(__name__)

PAYMENT_EVENT_TYPE = "payment"

ACK_BODY = {"received": True}
REJECT_BODY = {"error": "Invalid signature"}


class WebhookStage(str, enum.Enum):
    MALFORMED = "malformed"
    REJECTED = "rejected"
    IRRELEVANT = "irrelevant"
    GATEWAY_ERROR = "gateway_error"
    INTERNAL_ERROR = "internal_error"
    RECONCILED = "reconciled"


@dataclass
class WebhookResult:
    status_code: int
    body: dict
    stage: WebhookStage
    outcome: Optional[TransitionOutcome] = None
    notification_type: Optional[str] = None
    resource_id: Optional[str] = None
    request_id: Optional[str] = None
    signature_ok: bool = False
    dispatch: Optional[DispatchResult] = None

    @property
    def label(self) -> str:
        return self.outcome.value if self.outcome else self.stage.value


class WebhookReceiver:
    def __init__(self, *, gateway: PaymentGateway, engine: ActivationEngine,
                 dispatcher: NotificationDispatcher, secret: str = "",
                 provider: str = "mercadopago", background_dispatch: bool = False):
        self.gateway = gateway
        self.engine = engine
        self.dispatcher = dispatcher
        self.secret = secret or ""
        self.provider = provider
        self.background_dispatch = background_dispatch

    def handle(self, raw_body: bytes, headers: Mapping[str, str],
               query: Mapping[str, Any]) -> WebhookResult:
        hdrs = {str(k).lower(): v for k, v in headers.items()}
        request_id = hdrs.get("x-request-id")
        try:
            result = self._handle(raw_body, hdrs, query, request_id)
        except Exception:
            # everything that is not an auth failure is acknowledged
            log.exception("[%s] webhook processing failed", self.provider)
            result = WebhookResult(200, dict(ACK_BODY), WebhookStage.INTERNAL_ERROR,
                                   request_id=request_id)

        WEBHOOK_EVENTS.labels(provider=self.provider,
                              event=result.notification_type or "unknown",
                              outcome=result.label).inc()
        return result

    def _handle(self, raw_body: bytes, hdrs: dict, query: Mapping[str, Any],
                request_id: Optional[str]) -> WebhookResult:
        try:
            body = json.loads(raw_body or b"")
        except (ValueError, UnicodeDecodeError):
            log.warning("[%s] unparsable notification body; acknowledging", self.provider)
            return WebhookResult(200, dict(ACK_BODY), WebhookStage.MALFORMED, request_id=request_id)

        notification = parse_notification(body)
        if notification is None:
            log.warning("[%s] notification without type or data.id; acknowledging", self.provider)
            return WebhookResult(200, dict(ACK_BODY), WebhookStage.MALFORMED, request_id=request_id)

        result = WebhookResult(200, dict(ACK_BODY), WebhookStage.RECONCILED,
                               notification_type=notification.type,
                               resource_id=notification.resource_id,
                               request_id=request_id)

        if self.secret:
            if not self._authenticate(hdrs, query, notification.resource_id, request_id):
                result.status_code = 401
                result.body = dict(REJECT_BODY)
                result.stage = WebhookStage.REJECTED
                return result
            result.signature_ok = True
        else:
            log.debug("[%s] no webhook secret configured; signature not checked", self.provider)

        if notification.type != PAYMENT_EVENT_TYPE:
            log.info("[%s] ignoring notification type %s", self.provider, notification.type)
            result.stage = WebhookStage.IRRELEVANT
            return result

        try:
            payment = self.gateway.fetch_payment(notification.resource_id)
        except PaymentError as e:
            # GatewayError or GatewayConfigError: the lookup could not be made
            GATEWAY_ERRORS.labels(provider=self.provider).inc()
            log.error("[%s] lookup of payment %s failed: %s",
                      self.provider, notification.resource_id, e)
            result.stage = WebhookStage.GATEWAY_ERROR
            return result

        log.info("[%s] payment %s status=%s detail=%s external_reference=%s",
                 self.provider, payment.id, payment.status, payment.status_detail,
                 payment.external_reference)

        result.outcome = self.engine.reconcile(payment.external_reference, payment)
        if result.outcome is TransitionOutcome.ACTIVATED:
            if self.background_dispatch:
                self.dispatcher.dispatch_in_background(payment.external_reference)
            else:
                result.dispatch = self.dispatcher.dispatch(payment.external_reference)
        return result

    def _authenticate(self, hdrs: dict, query: Mapping[str, Any], body_id: str,
                      request_id: Optional[str]) -> bool:
        signature = hdrs.get("x-signature")
        query_id = query.get("data.id") or query.get("id")
        if not signature or not request_id or not query_id:
            # a configured secret means unsigned deliveries are refused, not waved through
            log.warning("[%s] missing x-signature/x-request-id/data.id; rejecting", self.provider)
            return False
        if canonical_resource_id(str(query_id)) != canonical_resource_id(body_id):
            log.warning("[%s] query data.id %s does not match body data.id %s; rejecting",
                        self.provider, query_id, body_id)
            return False
        if not verify_signature(self.secret, signature, request_id, str(query_id)):
            log.warning("[%s] invalid signature for data.id %s (request %s)",
                        self.provider, query_id, request_id)
            return False
        return True

# controllers/webhooks.py
from __future__ import annotations
from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify, request

from models.giftcards_store import MAX_RAW_CHARS, GiftCardStore, record_webhook_event
from services.email.resend import ResendTransport
from services.metrics import WEBHOOK_EVENTS
from services.notifications import NotificationDispatcher
from services.payments.registry import get_gateway, is_known_gateway, webhook_secret
from services.reconciliation import ActivationEngine
from services.settings import cfg
from services.webhooks import ACK_BODY, WebhookReceiver, WebhookStage

webhooks_bp = Blueprint("webhooks", __name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def build_receiver(gateway: str) -> WebhookReceiver:
    store = GiftCardStore()
    return WebhookReceiver(
        gateway=get_gateway(gateway),
        engine=ActivationEngine(store, provider=gateway),
        dispatcher=NotificationDispatcher(ResendTransport(), store),
        secret=webhook_secret(gateway),
        provider=gateway,
        background_dispatch=(cfg("EMAIL_DISPATCH_MODE") or "inline").lower() == "background",
    )


# ----- gateway webhook (no session auth, signature-verified) -----

@webhooks_bp.post("/webhooks/<gateway>")
def receive(gateway: str):
    gateway = gateway.lower()
    if not is_known_gateway(gateway):
        return jsonify({"error": f"unknown gateway '{gateway}'"}), 404

    raw = request.get_data() or b""
    try:
        receiver = build_receiver(gateway)
    except Exception:
        # setup failures are acknowledged like any other internal error
        current_app.logger.exception("Failed to set up %s webhook receiver", gateway)
        WEBHOOK_EVENTS.labels(provider=gateway, event="unknown",
                              outcome=WebhookStage.INTERNAL_ERROR.value).inc()
        return jsonify(ACK_BODY), 200

    result = receiver.handle(raw, request.headers, request.args)

    # delivery log is bookkeeping only; the gateway still gets its answer if it fails
    if result.stage is not WebhookStage.MALFORMED:
        try:
            record_webhook_event(
                gateway, result.request_id, result.notification_type or "unknown",
                raw[:MAX_RAW_CHARS * 4].decode("utf-8", errors="replace"), result.signature_ok,
                resource_id=result.resource_id, outcome=result.label,
            )
        except Exception:
            current_app.logger.exception("Failed to record webhook event")

    return jsonify(result.body), result.status_code


@webhooks_bp.get("/webhooks/<gateway>")
def probe(gateway: str):
    gateway = gateway.lower()
    if not is_known_gateway(gateway):
        return jsonify({"error": f"unknown gateway '{gateway}'"}), 404
    return jsonify({"status": "ok", "gateway": gateway, "timestamp": _now_iso()}), 200

# services/metrics.py
from __future__ import annotations
import os

os.environ.setdefault("PROMETHEUS_DISABLE_CREATED_SERIES", "1")

from prometheus_client import (  # noqa: E402
    Counter, Histogram, CollectorRegistry,
    generate_latest, CONTENT_TYPE_LATEST,
)

# Use a DEDICATED registry so only our app metrics show up
APP_REGISTRY = CollectorRegistry(auto_describe=True)

# --- Generic HTTP metrics (bind to our registry) ---
REQUEST_COUNT = Counter(
    "http_requests_total", "HTTP requests total",
    ["method", "endpoint", "status"], registry=APP_REGISTRY
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds", "Request latency (seconds)",
    ["endpoint", "method"], registry=APP_REGISTRY,
)

# --- Payments / Webhook ---
WEBHOOK_EVENTS = Counter(
    "payments_webhook_events_total", "Webhook deliveries by stage/outcome",
    ["provider", "event", "outcome"], registry=APP_REGISTRY
)
GATEWAY_ERRORS = Counter(
    "payments_gateway_errors_total", "Failed authoritative payment lookups",
    ["provider"], registry=APP_REGISTRY
)
GIFT_CARDS_ACTIVATED = Counter(
    "gift_cards_activated_total", "Gift cards moved PENDING -> ACTIVE",
    ["source"], registry=APP_REGISTRY
)

# --- Emails ---
GIFT_CARD_EMAILS = Counter(
    "gift_card_emails_total", "Confirmation emails by recipient kind/result",
    ["kind", "result"], registry=APP_REGISTRY
)


def init_app(app):
    @app.get("/metrics")
    def metrics():
        data = generate_latest(APP_REGISTRY)
        return app.response_class(data, mimetype=CONTENT_TYPE_LATEST)

    # --- pre-warm labeled series so dashboards don't say "No data" ---
    for outcome in ("activated", "already_settled", "marked_failed", "ignored"):
        WEBHOOK_EVENTS.labels(
            provider="mercadopago", event="payment", outcome=outcome).inc(0)
    GATEWAY_ERRORS.labels(provider="mercadopago").inc(0)
    GIFT_CARDS_ACTIVATED.labels(source="webhook").inc(0)
    GIFT_CARDS_ACTIVATED.labels(source="admin").inc(0)
    for kind in ("purchaser", "recipient"):
        for result in ("sent", "failed"):
            GIFT_CARD_EMAILS.labels(kind=kind, result=result).inc(0)

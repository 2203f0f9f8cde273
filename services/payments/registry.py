import logging

from services.payments.mercadopago import DEFAULT_API_BASE, MercadoPagoClient
from services.settings import cfg

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0

KNOWN_GATEWAYS = ("mercadopago",)


def is_known_gateway(name: str) -> bool:
    return (name or "").lower() in KNOWN_GATEWAYS


def webhook_secret(name: str) -> str:
    """Shared secret for webhook signatures; empty means verification is off."""
    if (name or "").lower() == "mercadopago":
        return (cfg("MERCADOPAGO_WEBHOOK_SECRET") or "").strip()
    return ""


def _timeout(key: str) -> float:
    raw = cfg(key)
    if raw in (None, ""):
        return DEFAULT_TIMEOUT
    try:
        value = float(raw)
    except (TypeError, ValueError):
        log.warning("Invalid %s=%r; using %ss", key, raw, DEFAULT_TIMEOUT)
        return DEFAULT_TIMEOUT
    return value if value > 0 else DEFAULT_TIMEOUT


def get_gateway(name: str = "mercadopago"):
    name = (name or "").lower()
    if name == "mercadopago":
        return MercadoPagoClient(
            (cfg("MERCADOPAGO_ACCESS_TOKEN") or "").strip(),
            base_url=cfg("MERCADOPAGO_API_BASE") or DEFAULT_API_BASE,
            timeout=_timeout("MERCADOPAGO_TIMEOUT"),
        )
    raise RuntimeError(f"Unknown payment gateway: {name}")

# services/notifications.py
"""
Confirmation emails after a gift card is activated.

Best effort: failures are reported per recipient and logged, never raised.
The activation stands whether or not an email goes out.
"""

from __future__ import annotations
import logging
import math
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from babel.dates import format_datetime, get_timezone
from babel.numbers import format_currency
from flask import current_app, has_app_context

from models.giftcards_store import GiftCardStore
from services.email.types import EmailTransport, GiftCardEmailData, SendResult
from services.metrics import GIFT_CARD_EMAILS
from services.settings import cfg

log = logging.getLogger(__name__)

DEFAULT_CARD_COLOR = "#1e3a5f"
DEFAULT_TEMPLATE_NAME = "Vale-Presente"
LOCALE = "pt_BR"

_executor: Optional[ThreadPoolExecutor] = None
_executor_lock = threading.Lock()


@dataclass(frozen=True)
class DispatchResult:
    purchaser: SendResult
    recipient: Optional[SendResult] = None   # None when purchaser and recipient are the same


def _aware(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def format_amount(amount_cents: int) -> str:
    return format_currency(Decimal(int(amount_cents)) / Decimal(100), "BRL", locale=LOCALE)


def format_expiry(expires_at: datetime) -> str:
    tz = get_timezone(cfg("DISPLAY_TIMEZONE") or "America/Sao_Paulo")
    return format_datetime(_aware(expires_at), format="short", tzinfo=tz, locale=LOCALE)


def remaining_valid_days(expires_at: datetime, now: Optional[datetime] = None) -> int:
    now = now or datetime.now(timezone.utc)
    seconds = (_aware(expires_at) - now).total_seconds()
    if seconds <= 0:
        return 0
    return math.ceil(seconds / 86400)


def build_email_data(card: dict, now: Optional[datetime] = None) -> GiftCardEmailData:
    business = card.get("business") or {}
    template = card.get("template") or {}

    if card.get("is_custom") and card.get("custom_title"):
        template_name = card["custom_title"]
    else:
        template_name = template.get("name") or card.get("custom_title") or DEFAULT_TEMPLATE_NAME

    if card.get("is_custom") and card.get("custom_bg_color"):
        color = card["custom_bg_color"]
    else:
        color = (template.get("card_color") or card.get("custom_bg_color")
                 or business.get("gift_card_color") or DEFAULT_CARD_COLOR)

    return GiftCardEmailData(
        code=card["code"],
        amount_cents=int(card["amount_cents"]),
        amount_formatted=format_amount(card["amount_cents"]),
        expires_at=format_expiry(card["expires_at"]),
        valid_days=remaining_valid_days(card["expires_at"], now),
        business_name=business.get("name") or "",
        business_slug=business.get("slug") or "",
        template_name=template_name,
        card_color=color,
        purchaser_email=card["purchaser_email"],
        purchaser_name=card.get("purchaser_name"),
        recipient_email=card.get("recipient_email"),
        recipient_name=card.get("recipient_name"),
        message=card.get("recipient_message") or None,
    )


def _get_executor() -> ThreadPoolExecutor:
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="email-dispatch")
        return _executor


class NotificationDispatcher:
    def __init__(self, transport: EmailTransport, store: Optional[GiftCardStore] = None):
        self.transport = transport
        self.store = store or GiftCardStore()

    def dispatch(self, gift_card_id: str) -> DispatchResult:
        try:
            card = self.store.load_for_email(gift_card_id)
            if card is None:
                err = SendResult(False, error="Gift card not found")
                log.error("Email dispatch for %s: gift card not found", gift_card_id)
                return DispatchResult(err, err)
            data = build_email_data(card)
            sent = self.transport.send_gift_card_emails(data)
            result = DispatchResult(sent.purchaser, sent.recipient)
        except Exception as e:
            log.exception("Email dispatch for %s failed", gift_card_id)
            err = SendResult(False, error=str(e) or e.__class__.__name__)
            result = DispatchResult(err, err)

        self._report(gift_card_id, result)
        return result

    def _report(self, gift_card_id: str, result: DispatchResult) -> None:
        GIFT_CARD_EMAILS.labels(
            kind="purchaser", result="sent" if result.purchaser.success else "failed").inc()
        if result.recipient is not None:
            GIFT_CARD_EMAILS.labels(
                kind="recipient", result="sent" if result.recipient.success else "failed").inc()
        log.info(
            "Email results for %s: purchaser=%s recipient=%s",
            gift_card_id,
            "sent" if result.purchaser.success else result.purchaser.error,
            ("same as purchaser" if result.recipient is None
             else "sent" if result.recipient.success else result.recipient.error),
        )

    def dispatch_in_background(self, gift_card_id: str) -> Future:
        """Fire-and-log on a worker thread so the gateway gets its answer first."""
        app = current_app._get_current_object() if has_app_context() else None

        def _run():
            if app is None:
                return self.dispatch(gift_card_id)
            with app.app_context():
                return self.dispatch(gift_card_id)

        return _get_executor().submit(_run)

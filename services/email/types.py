# services/email/types.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Protocol


@dataclass(frozen=True)
class GiftCardEmailData:
    code: str
    amount_cents: int
    amount_formatted: str
    expires_at: str
    valid_days: int
    business_name: str
    business_slug: str
    template_name: str
    card_color: str
    purchaser_email: str
    purchaser_name: Optional[str] = None
    recipient_email: Optional[str] = None
    recipient_name: Optional[str] = None
    message: Optional[str] = None

    @property
    def is_gift(self) -> bool:
        """A separate recipient email is only sent when it is someone else."""
        if not self.recipient_email:
            return False
        return self.recipient_email.strip().lower() != self.purchaser_email.strip().lower()


@dataclass(frozen=True)
class SendResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class GiftCardEmailResults:
    purchaser: SendResult
    recipient: Optional[SendResult] = None   # None: no separate recipient email


class EmailTransport(Protocol):
    def send_gift_card_emails(self, data: GiftCardEmailData) -> GiftCardEmailResults:
        """Send the purchaser email and, for gifts, the recipient email."""

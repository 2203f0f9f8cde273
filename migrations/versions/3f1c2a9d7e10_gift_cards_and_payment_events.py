"""gift cards, payment events and payment audit log

Revision ID: 3f1c2a9d7e10
Revises:
Create Date: 2026-10-19 10:02:11.114523

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c2a9d7e10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade():
    op.create_table(
        "businesses",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("slug", sa.String(200), nullable=False, unique=True),
        sa.Column("gift_card_color", sa.String(16)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_table(
        "gift_card_templates",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("business_id", sa.String(36),
                  sa.ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("card_color", sa.String(16)),
    )
    op.create_table(
        "gift_cards",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("business_id", sa.String(36),
                  sa.ForeignKey("businesses.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("template_id", sa.String(36),
                  sa.ForeignKey("gift_card_templates.id", ondelete="SET NULL")),
        sa.Column("code", sa.String(32), nullable=False, unique=True),
        sa.Column("amount_cents", sa.Integer, nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="PENDING"),
        sa.Column("payment_status", sa.String(16), nullable=False, server_default="PENDING"),
        sa.Column("payment_provider_id", sa.String(64)),
        sa.Column("payment_method", sa.String(32)),
        sa.Column("payment_fee_cents", sa.Integer),
        sa.Column("payment_completed_at", sa.DateTime(timezone=True)),
        sa.Column("activated_at", sa.DateTime(timezone=True)),
        sa.Column("purchaser_name", sa.String(200)),
        sa.Column("purchaser_email", sa.String(320), nullable=False),
        sa.Column("recipient_name", sa.String(200)),
        sa.Column("recipient_email", sa.String(320)),
        sa.Column("recipient_message", sa.Text),
        sa.Column("is_custom", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("custom_title", sa.String(200)),
        sa.Column("custom_bg_color", sa.String(16)),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("amount_cents >= 0", name="ck_gift_cards_amount_ge_0"),
        sa.CheckConstraint("status in ('PENDING','ACTIVE','EXPIRED','CANCELLED')",
                           name="ck_gift_cards_status"),
        sa.CheckConstraint("payment_status in ('PENDING','COMPLETED','FAILED')",
                           name="ck_gift_cards_payment_status"),
        sa.CheckConstraint("payment_fee_cents is null or payment_fee_cents >= 0",
                           name="ck_gift_cards_fee_ge_0"),
    )
    op.create_index("idx_gift_cards_business", "gift_cards", ["business_id"])
    op.create_index("idx_gift_cards_provider_id", "gift_cards", ["payment_provider_id"])

    op.create_table(
        "payment_events",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("provider", sa.String(32), nullable=False),
        sa.Column("external_event_id", sa.String(128)),
        sa.Column("resource_id", sa.String(64)),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("raw", sa.Text, nullable=False),
        sa.Column("signature_ok", sa.Integer, nullable=False, server_default="0"),
        sa.Column("outcome", sa.String(32)),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("provider", "external_event_id",
                            name="uq_paymentevents_provider_external"),
        sa.CheckConstraint("signature_ok IN (0,1)", name="ck_paymentevents_signature_ok"),
    )

    op.create_table(
        "payment_audit_logs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("gift_card_id", sa.String(36),
                  sa.ForeignKey("gift_cards.id", ondelete="CASCADE"), nullable=False),
        sa.Column("business_id", sa.String(36)),
        sa.Column("event_type", sa.String(32), nullable=False),
        sa.Column("actor", sa.String(128)),
        sa.Column("payment_provider_id", sa.String(64)),
        sa.Column("amount_cents", sa.Integer),
        sa.Column("fee_cents", sa.Integer),
        sa.Column("previous_status", sa.String(16)),
        sa.Column("new_status", sa.String(16)),
        sa.Column("extra", sa.JSON),
        sa.Column("ip", sa.String(64)),
        sa.Column("request_id", sa.String(128)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("event_type in ('CARD_ACTIVATED','PAYMENT_FAILED')",
                           name="ck_payment_audit_event_type"),
    )
    op.create_index("idx_payment_audit_card", "payment_audit_logs", ["gift_card_id"])


def downgrade():
    op.drop_index("idx_payment_audit_card", table_name="payment_audit_logs")
    op.drop_table("payment_audit_logs")
    op.drop_table("payment_events")
    op.drop_index("idx_gift_cards_provider_id", table_name="gift_cards")
    op.drop_index("idx_gift_cards_business", table_name="gift_cards")
    op.drop_table("gift_cards")
    op.drop_table("gift_card_templates")
    op.drop_table("businesses")

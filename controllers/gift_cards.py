# controllers/gift_cards.py
from flask import Blueprint, current_app, jsonify

from controllers.auth import admin_required
from models.giftcards_store import GiftCardStore
from services.reconciliation import ActivationEngine, TransitionOutcome

gift_cards_bp = Blueprint("gift_cards", __name__)


@gift_cards_bp.get("/api/gift-cards/<gift_card_id>/status")
def status(gift_card_id: str):
    """Polled by the payment return page while the webhook is in flight."""
    card = GiftCardStore().get(gift_card_id)
    if not card:
        return jsonify({"error": "Gift card not found"}), 404
    return jsonify({
        "id": card["id"],
        "status": card["status"],
        "paymentStatus": card["payment_status"],
    })


@gift_cards_bp.post("/admin/gift-cards/<gift_card_id>/activate")
@admin_required
def activate(gift_card_id: str):
    store = GiftCardStore()
    outcome = ActivationEngine(store).activate_manually(gift_card_id, actor="admin")

    if outcome is TransitionOutcome.IGNORED:
        return jsonify({"error": "Gift card not found"}), 404
    if outcome is TransitionOutcome.ALREADY_SETTLED:
        card = store.get(gift_card_id) or {}
        return jsonify({"error": f"Vale-presente não está pendente (status: {card.get('status')})"}), 400

    card = store.get(gift_card_id)
    current_app.logger.info("Gift card %s (%s) manually activated", gift_card_id, card["code"])
    return jsonify({
        "success": True,
        "giftCard": {"id": gift_card_id, "code": card["code"], "status": card["status"]},
    })

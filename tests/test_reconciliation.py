import threading
from decimal import Decimal

import pytest

from models.audit_store import list_payment_audit
from models.giftcards_store import GiftCardStore
from services.payments.base import FeeDetail
from services.reconciliation import ActivationEngine, TransitionOutcome, compute_fee_cents
from tests.utils import make_card, payment


def _fees(*amounts):
    return [FeeDetail("mercadopago_fee", Decimal(a)) for a in amounts]


@pytest.mark.parametrize("amounts,expected", [
    (("1.23", "0.02"), 125),
    (("0.005", "0.005"), 1),     # per-component rounding would give 2
    (("0.004",), None),
    (("0",), None),
    ((), None),
    (("2.345",), 235),           # half-up
])
def test_compute_fee_cents(amounts, expected):
    assert compute_fee_cents(_fees(*amounts)) == expected


def test_approved_payment_activates_card(app):
    cid = make_card(5000)
    outcome = ActivationEngine().reconcile(cid, payment(cid))
    assert outcome is TransitionOutcome.ACTIVATED

    card = GiftCardStore().get(cid)
    assert card["status"] == "ACTIVE"
    assert card["payment_status"] == "COMPLETED"
    assert card["payment_provider_id"] == "1234567890"
    assert card["payment_fee_cents"] == 125
    assert card["payment_method"] == "CREDIT_CARD"
    assert card["activated_at"] is not None
    assert card["payment_completed_at"] is not None

    audit = list_payment_audit(cid)
    assert [a["event_type"] for a in audit] == ["CARD_ACTIVATED"]
    assert audit[0]["actor"] == "webhook:mercadopago"
    assert audit[0]["previous_status"] == "PENDING"
    assert audit[0]["new_status"] == "ACTIVE"
    assert audit[0]["fee_cents"] == 125


def test_zero_fee_is_stored_as_null(app):
    cid = make_card()
    ActivationEngine().reconcile(cid, payment(cid, fees=()))
    assert GiftCardStore().get(cid)["payment_fee_cents"] is None


def test_redelivery_is_already_settled_and_changes_nothing(app):
    cid = make_card()
    engine = ActivationEngine()
    assert engine.reconcile(cid, payment(cid)) is TransitionOutcome.ACTIVATED
    before = GiftCardStore().get(cid)

    # a second approved payment for the same card must not overwrite the first
    again = engine.reconcile(cid, payment(cid, pid="999", fees=("9.99",)))
    assert again is TransitionOutcome.ALREADY_SETTLED
    assert GiftCardStore().get(cid) == before
    assert len(list_payment_audit(cid)) == 1


@pytest.mark.parametrize("status", ["rejected", "cancelled"])
def test_rejected_payment_marks_failed_only(app, status):
    cid = make_card()
    outcome = ActivationEngine().reconcile(cid, payment(cid, status=status))
    assert outcome is TransitionOutcome.MARKED_FAILED

    card = GiftCardStore().get(cid)
    assert card["status"] == "PENDING"
    assert card["payment_status"] == "FAILED"
    assert card["payment_provider_id"] is None
    assert card["activated_at"] is None
    assert [a["event_type"] for a in list_payment_audit(cid)] == ["PAYMENT_FAILED"]


def test_failed_card_can_still_be_activated_by_a_later_payment(app):
    cid = make_card()
    engine = ActivationEngine()
    engine.reconcile(cid, payment(cid, status="rejected", pid="1"))
    assert engine.reconcile(cid, payment(cid, pid="2")) is TransitionOutcome.ACTIVATED
    card = GiftCardStore().get(cid)
    assert (card["status"], card["payment_status"], card["payment_provider_id"]) == \
        ("ACTIVE", "COMPLETED", "2")


def test_rejection_after_activation_is_already_settled(app):
    cid = make_card()
    engine = ActivationEngine()
    engine.reconcile(cid, payment(cid))
    assert engine.reconcile(cid, payment(cid, status="cancelled")) is TransitionOutcome.ALREADY_SETTLED
    assert GiftCardStore().get(cid)["payment_status"] == "COMPLETED"


@pytest.mark.parametrize("status", ["pending", "in_process", "refunded", "charged_back", "authorized"])
def test_other_statuses_are_ignored(app, status):
    cid = make_card()
    assert ActivationEngine().reconcile(cid, payment(cid, status=status)) is TransitionOutcome.IGNORED
    card = GiftCardStore().get(cid)
    assert (card["status"], card["payment_status"]) == ("PENDING", "PENDING")
    assert list_payment_audit(cid) == []


def test_orphan_payment_is_ignored(app):
    cid = make_card()
    p = payment(None)
    assert ActivationEngine().reconcile(None, p) is TransitionOutcome.IGNORED
    # reference pointing at another card than the one asked about
    assert ActivationEngine().reconcile(cid, payment("other-card")) is TransitionOutcome.IGNORED
    assert GiftCardStore().get(cid)["status"] == "PENDING"


def test_unknown_card_is_ignored(app):
    assert ActivationEngine().reconcile("nope", payment("nope")) is TransitionOutcome.IGNORED
    assert ActivationEngine().reconcile("nope", payment("nope", status="rejected")) is TransitionOutcome.IGNORED


def test_amount_mismatch_only_warns(app, caplog):
    cid = make_card(5000)
    with caplog.at_level("WARNING", logger="services.reconciliation"):
        outcome = ActivationEngine().reconcile(cid, payment(cid, amount="49.00"))
    assert outcome is TransitionOutcome.ACTIVATED
    assert any("differs" in r.getMessage() for r in caplog.records)


def test_concurrent_approvals_activate_exactly_once(app):
    cid = make_card()
    engine = ActivationEngine()
    barrier = threading.Barrier(6)
    outcomes = []
    lock = threading.Lock()

    def worker(i):
        barrier.wait()
        out = engine.reconcile(cid, payment(cid, pid=str(1000 + i)))
        with lock:
            outcomes.append(out)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count(TransitionOutcome.ACTIVATED) == 1
    assert outcomes.count(TransitionOutcome.ALREADY_SETTLED) == 5
    assert len(list_payment_audit(cid)) == 1


def test_manual_activation(app):
    cid = make_card()
    engine = ActivationEngine()
    assert engine.activate_manually(cid, actor="admin:ops") is TransitionOutcome.ACTIVATED
    assert engine.activate_manually(cid) is TransitionOutcome.ALREADY_SETTLED
    assert engine.activate_manually("missing") is TransitionOutcome.IGNORED

    card = GiftCardStore().get(cid)
    assert card["status"] == "ACTIVE"
    assert card["payment_provider_id"] is None
    audit = list_payment_audit(cid)
    assert audit[0]["actor"] == "admin:ops"
    assert audit[0]["extra"] == {"source": "manual"}


def test_compare_and_set_refuses_unknown_fields(app):
    cid = make_card()
    store = GiftCardStore()
    with pytest.raises(ValueError):
        store.compare_and_set_status(cid, "PENDING", {"amount_cents": 1})
    with pytest.raises(ValueError):
        store.compare_and_set_status(cid, "PENDING", {})
    assert store.compare_and_set_status(cid, "ACTIVE", {"status": "CANCELLED"}) is False
    assert store.compare_and_set_status(cid, "PENDING", {"status": "CANCELLED"}) is True

import json
import threading

import pytest

from models.giftcards_store import GiftCardStore
from services.notifications import NotificationDispatcher
from services.payments.base import GatewayError
from services.reconciliation import ActivationEngine, TransitionOutcome
from services.webhooks import WebhookReceiver, WebhookStage
from tests.utils import FakeTransport, make_card, payment, signed_headers

SECRET = "whsec_test"


def _receiver(gateway, transport, secret="", engine=None):
    store = GiftCardStore()
    return WebhookReceiver(
        gateway=gateway,
        engine=engine or ActivationEngine(store),
        dispatcher=NotificationDispatcher(transport, store),
        secret=secret,
    )


def _body(data_id="1234567890", ntype="payment"):
    return json.dumps({"type": ntype, "action": "payment.updated",
                       "data": {"id": data_id}}).encode()


@pytest.fixture()
def card(app, gateway):
    cid = make_card()
    gateway.add(payment(cid))
    return cid


@pytest.mark.parametrize("raw", [b"", b"not json", b"[]", b'{"type": "payment"}', b'{"data": {"id": "1"}}'])
def test_malformed_bodies_are_acknowledged(app, gateway, transport, raw):
    res = _receiver(gateway, transport).handle(raw, {}, {})
    assert res.status_code == 200
    assert res.body == {"received": True}
    assert res.stage is WebhookStage.MALFORMED
    assert gateway.calls == []


def test_irrelevant_type_is_acknowledged_without_lookup(app, gateway, transport):
    res = _receiver(gateway, transport).handle(_body("55", ntype="merchant_order"), {}, {})
    assert res.status_code == 200
    assert res.stage is WebhookStage.IRRELEVANT
    assert gateway.calls == []


def test_approved_payment_activates_and_dispatches_once(card, gateway, transport):
    recv = _receiver(gateway, transport)
    first = recv.handle(_body(), {}, {})
    assert first.status_code == 200
    assert first.outcome is TransitionOutcome.ACTIVATED
    assert first.dispatch.purchaser.success

    second = recv.handle(_body(), {}, {})
    assert second.status_code == 200
    assert second.outcome is TransitionOutcome.ALREADY_SETTLED
    assert second.dispatch is None

    assert len(transport.sent) == 1
    assert GiftCardStore().get(card)["status"] == "ACTIVE"


def test_gateway_error_is_acknowledged_without_mutation(card, gateway, transport):
    gateway.errors["1234567890"] = GatewayError(503, "unavailable")
    res = _receiver(gateway, transport).handle(_body(), {}, {})
    assert res.status_code == 200
    assert res.stage is WebhookStage.GATEWAY_ERROR
    assert res.outcome is None
    assert GiftCardStore().get(card)["status"] == "PENDING"
    assert transport.sent == []


def test_engine_failure_is_acknowledged(card, gateway, transport):
    class Boom(ActivationEngine):
        def reconcile(self, gift_card_id, payment):
            raise RuntimeError("db gone")

    res = _receiver(gateway, transport, engine=Boom()).handle(_body(), {}, {})
    assert res.status_code == 200
    assert res.stage is WebhookStage.INTERNAL_ERROR
    assert transport.sent == []


def test_email_failure_does_not_undo_activation(card, gateway):
    transport = FakeTransport(raise_exc=RuntimeError("smtp down"))
    res = _receiver(gateway, transport).handle(_body(), {}, {})
    assert res.status_code == 200
    assert res.outcome is TransitionOutcome.ACTIVATED
    assert not res.dispatch.purchaser.success
    assert GiftCardStore().get(card)["status"] == "ACTIVE"


def test_pending_payment_is_ignored(app, gateway, transport):
    cid = make_card()
    gateway.add(payment(cid, status="in_process"))
    res = _receiver(gateway, transport).handle(_body(), {}, {})
    assert res.outcome is TransitionOutcome.IGNORED
    assert GiftCardStore().get(cid)["status"] == "PENDING"


def test_valid_signature_is_processed(card, gateway, transport):
    res = _receiver(gateway, transport, SECRET).handle(
        _body(), signed_headers(SECRET, "1234567890"), {"data.id": "1234567890"})
    assert res.status_code == 200
    assert res.signature_ok
    assert res.outcome is TransitionOutcome.ACTIVATED


def test_header_names_are_case_insensitive(card, gateway, transport):
    hdrs = {k.upper(): v for k, v in signed_headers(SECRET, "1234567890").items()}
    res = _receiver(gateway, transport, SECRET).handle(_body(), hdrs, {"data.id": "1234567890"})
    assert res.outcome is TransitionOutcome.ACTIVATED


def _tamper_v1(headers):
    ts, v1 = headers["x-signature"].split(",")
    digest = v1.split("=", 1)[1]
    flipped = digest[:-1] + ("0" if digest[-1] != "0" else "1")
    return dict(headers, **{"x-signature": f"{ts},v1={flipped}"})


@pytest.mark.parametrize("mutate", [
    pytest.param(_tamper_v1, id="flipped-digest"),
    pytest.param(lambda h: dict(h, **{"x-request-id": "req-other"}), id="other-request-id"),
    pytest.param(lambda h: {k: v for k, v in h.items() if k != "x-signature"}, id="no-signature"),
    pytest.param(lambda h: {k: v for k, v in h.items() if k != "x-request-id"}, id="no-request-id"),
])
def test_bad_signatures_get_401_and_no_side_effects(card, gateway, transport, mutate):
    hdrs = mutate(signed_headers(SECRET, "1234567890"))
    res = _receiver(gateway, transport, SECRET).handle(_body(), hdrs, {"data.id": "1234567890"})
    assert res.status_code == 401
    assert res.body == {"error": "Invalid signature"}
    assert res.stage is WebhookStage.REJECTED
    assert gateway.calls == []
    assert transport.sent == []
    assert GiftCardStore().get(card)["status"] == "PENDING"


def test_missing_query_id_with_secret_is_rejected(card, gateway, transport):
    res = _receiver(gateway, transport, SECRET).handle(
        _body(), signed_headers(SECRET, "1234567890"), {})
    assert res.status_code == 401
    assert gateway.calls == []


def test_query_and_body_id_must_agree(app, gateway, transport):
    # signed for the query id, but the body points at another payment
    cid = make_card()
    gateway.add(payment(cid, pid="222"))
    res = _receiver(gateway, transport, SECRET).handle(
        _body("222"), signed_headers(SECRET, "111"), {"data.id": "111"})
    assert res.status_code == 401
    assert gateway.calls == []


def test_legacy_id_query_parameter(card, gateway, transport):
    res = _receiver(gateway, transport, SECRET).handle(
        _body(), signed_headers(SECRET, "1234567890"), {"id": "1234567890"})
    assert res.status_code == 200
    assert res.outcome is TransitionOutcome.ACTIVATED


def test_concurrent_deliveries_dispatch_once(card, gateway, transport):
    recv = _receiver(gateway, transport)
    barrier = threading.Barrier(5)
    results = []
    lock = threading.Lock()

    def deliver():
        barrier.wait()
        r = recv.handle(_body(), {}, {})
        with lock:
            results.append(r)

    threads = [threading.Thread(target=deliver) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert all(r.status_code == 200 for r in results)
    assert [r.outcome for r in results].count(TransitionOutcome.ACTIVATED) == 1
    assert len(transport.sent) == 1


def test_missing_access_token_counts_as_gateway_error(card, transport):
    from services.payments.mercadopago import MercadoPagoClient
    res = _receiver(MercadoPagoClient(""), transport).handle(_body(), {}, {})
    assert res.status_code == 200
    assert res.stage is WebhookStage.GATEWAY_ERROR
    assert GiftCardStore().get(card)["status"] == "PENDING"

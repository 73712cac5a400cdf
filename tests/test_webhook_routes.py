import json
import random

from subscription_sync.billing import get_ledger
from subscription_sync.billing.periods import PeriodCalculator
from subscription_sync.models import Payment, WebhookDelivery, STATUS_CANCEL, STATUS_PAID

def _post(client, body):
    return client.post("/api/portone", data=json.dumps(body), content_type="application/json")

def test_paid_then_cancelled_end_to_end(app, client, gateway):
    gateway.add_payment("pay_1", amount=9900, billing_key="bk_1")

    resp = _post(client, {"payment_id": "pay_1", "status": "Paid"})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["success"] is True
    assert body["message"] == "Webhook processed"
    assert body["reconciliation"] == "complete"
    payment = body["payment"]
    assert payment["transaction_key"] == "pay_1"
    assert payment["amount"] == 9900
    assert payment["status"] == "Paid"
    assert payment["start_at"] == "2024-01-01T00:00:00.000Z"
    assert payment["end_at"] == "2024-01-31T00:00:00.000Z"
    assert payment["end_grace_at"] == "2024-02-01T00:00:00.000Z"
    assert "2024-02-01T10:00:00.000Z" <= payment["next_schedule_at"] <= "2024-02-01T10:59:59.000Z"

    creates = gateway.calls_to("create_schedule")
    assert len(creates) == 1
    assert creates[0][1] == payment["next_schedule_id"]

    resp = _post(client, {"payment_id": "pay_1", "status": "Cancelled"})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["success"] is True
    assert body["message"] == "Cancellation processed"
    reversal = body["payment"]
    assert reversal["transaction_key"] == "pay_1"
    assert reversal["amount"] == -9900
    assert reversal["status"] == "Cancel"
    for field in ("start_at", "end_at", "end_grace_at", "next_schedule_at", "next_schedule_id"):
        assert reversal[field] == payment[field]
    assert len(gateway.calls_to("cancel_schedules")) == 1

    with app.app_context():
        outcomes = [d.outcome for d in WebhookDelivery.query.order_by(WebhookDelivery.id).all()]
        assert outcomes == ["committed", "committed"]

def test_cancel_with_no_schedule_in_window_still_succeeds(app, client, gateway):
    gateway.add_payment("pay_1")
    _post(client, {"payment_id": "pay_1", "status": "Paid"})
    gateway.schedules.clear()

    resp = _post(client, {"payment_id": "pay_1", "status": "Cancelled"})
    assert resp.status_code == 200
    assert resp.get_json()["reconciliation"] == "failed"
    assert gateway.calls_to("cancel_schedules") == []

def test_unknown_status_is_acknowledged_without_side_effects(app, client, gateway):
    gateway.add_payment("pay_1")
    resp = _post(client, {"payment_id": "pay_1", "status": "Ready"})
    assert resp.status_code == 200
    assert resp.get_json() == {"success": True}
    assert gateway.calls == []
    with app.app_context():
        assert Payment.query.count() == 0
        assert WebhookDelivery.query.one().outcome == "ignored"

def test_malformed_payload_is_rejected(app, client, gateway):
    resp = _post(client, {"status": "Paid"})
    assert resp.status_code == 400
    assert resp.get_json() == {"success": False, "error": "payment_id is required"}

    resp = client.post("/api/portone", data="not json", content_type="application/json")
    assert resp.status_code == 400
    assert resp.get_json()["success"] is False
    assert gateway.calls == []

def test_gateway_lookup_failure_returns_500_with_message(app, client, gateway):
    gateway.add_payment("pay_1")
    gateway.fail.add("get_payment")
    resp = _post(client, {"payment_id": "pay_1", "status": "Paid"})
    assert resp.status_code == 500
    assert resp.get_json() == {"success": False, "error": "PortOne get_payment failed: 503"}
    with app.app_context():
        assert Payment.query.count() == 0
        delivery = WebhookDelivery.query.one()
        assert delivery.outcome == "failed"
        assert delivery.notes.startswith("UpstreamError")

def test_cancel_without_paid_row_returns_500(app, client, gateway):
    gateway.add_payment("pay_1")
    resp = _post(client, {"payment_id": "pay_1", "status": "Cancelled"})
    assert resp.status_code == 500
    body = resp.get_json()
    assert body["success"] is False
    assert "pay_1" in body["error"]
    with app.app_context():
        assert Payment.query.count() == 0

def test_schedule_creation_failure_does_not_change_success(app, client, gateway):
    gateway.add_payment("pay_1")
    gateway.fail.add("create_schedule")
    resp = _post(client, {"payment_id": "pay_1", "status": "Paid"})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["success"] is True
    assert body["reconciliation"] == "failed"
    with app.app_context():
        assert WebhookDelivery.query.one().outcome == "reconciliation_failed"

def test_redelivered_paid_event_is_idempotent(app, client, gateway):
    gateway.add_payment("pay_1")
    first = _post(client, {"payment_id": "pay_1", "status": "Paid"}).get_json()
    second = _post(client, {"payment_id": "pay_1", "status": "Paid"}).get_json()
    assert second["success"] is True
    assert second["duplicate"] is True
    assert second["reconciliation"] == "complete"
    assert second["payment"]["id"] == first["payment"]["id"]
    with app.app_context():
        assert Payment.query.filter_by(transaction_key="pay_1", status=STATUS_PAID).count() == 1
        assert [d.outcome for d in WebhookDelivery.query.order_by(WebhookDelivery.id)] == ["committed", "duplicate"]

def test_status_endpoint_reports_current_period(app, client, gateway, clock):
    resp = client.get("/api/payments/status")
    assert resp.get_json() == {
        "subscribed": False, "transaction_key": None, "status_message": "free", "payment": None,
    }

    gateway.add_payment("pay_1")
    _post(client, {"payment_id": "pay_1", "status": "Paid"})

    body = client.get("/api/payments/status").get_json()
    assert body["subscribed"] is True
    assert body["transaction_key"] == "pay_1"
    assert body["status_message"] == "subscribed"

    scoped = client.get("/api/payments/status?transaction_key=pay_1").get_json()
    assert scoped["payment"]["id"] == body["payment"]["id"]
    assert client.get("/api/payments/status?transaction_key=other").get_json()["subscribed"] is False

    clock.advance(days=31, seconds=1)
    assert client.get("/api/payments/status").get_json()["subscribed"] is False

def test_status_endpoint_goes_free_after_cancellation(app, client, gateway, clock):
    gateway.add_payment("pay_1")
    _post(client, {"payment_id": "pay_1", "status": "Paid"})
    clock.advance(days=2)
    _post(client, {"payment_id": "pay_1", "status": "Cancelled"})
    body = client.get("/api/payments/status?transaction_key=pay_1").get_json()
    assert body["subscribed"] is False
    with app.app_context():
        assert Payment.query.filter_by(status=STATUS_CANCEL).count() == 1

def test_healthz(client):
    assert client.get("/healthz").get_json() == {"status": "ok"}

def test_unknown_route_answers_json(client):
    resp = client.get("/nope")
    assert resp.status_code == 404
    assert resp.get_json()["success"] is False

def test_redelivery_schedules_next_cycle_missed_by_first_attempt(app, client, gateway, clock):
    gateway.add_payment("pay_1")
    with app.app_context():
        period = PeriodCalculator(clock=clock, rng=random.Random(9)).compute_period()
        stored = get_ledger().append_paid("pay_1", 9900, period, "sched-first").entry.to_dict()

    body = _post(client, {"payment_id": "pay_1", "status": "Paid"}).get_json()
    assert body["success"] is True
    assert body["duplicate"] is True
    assert body["reconciliation"] == "complete"
    assert body["payment"]["id"] == stored["id"]

    creates = gateway.calls_to("create_schedule")
    assert len(creates) == 1
    assert creates[0][1] == "sched-first"
    assert creates[0][2]["time_to_pay"] == period.next_schedule_at
    with app.app_context():
        assert WebhookDelivery.query.one().outcome == "duplicate"

def test_redelivery_with_failing_schedule_is_a_follow_up(app, client, gateway):
    gateway.add_payment("pay_1")
    gateway.fail.add("create_schedule")
    _post(client, {"payment_id": "pay_1", "status": "Paid"})
    body = _post(client, {"payment_id": "pay_1", "status": "Paid"}).get_json()
    assert body["duplicate"] is True
    assert body["reconciliation"] == "failed"
    with app.app_context():
        outcomes = [d.outcome for d in WebhookDelivery.query.order_by(WebhookDelivery.id)]
        assert outcomes == ["reconciliation_failed", "reconciliation_failed"]

def test_missing_or_odd_status_is_acknowledged(app, client, gateway):
    gateway.add_payment("pay_1")
    for body in (
        {"payment_id": "pay_1"},
        {"payment_id": "pay_1", "status": None},
        {"payment_id": "pay_1", "status": 7},
        {"status": "Ready"},
    ):
        resp = _post(client, body)
        assert resp.status_code == 200
        assert resp.get_json() == {"success": True}
    assert gateway.calls == []
    with app.app_context():
        assert Payment.query.count() == 0
        assert {d.outcome for d in WebhookDelivery.query} == {"ignored"}

def test_payment_id_is_used_verbatim(app, client, gateway):
    gateway.add_payment(" pay_1 ")
    resp = _post(client, {"payment_id": " pay_1 ", "status": "Paid"})
    assert resp.status_code == 200
    assert resp.get_json()["payment"]["transaction_key"] == " pay_1 "
    assert gateway.calls_to("get_payment") == [("get_payment", " pay_1 ")]

    resp = _post(client, {"payment_id": "   ", "status": "Paid"})
    assert resp.status_code == 400

def _cancel(client, body):
    return client.post("/api/payments/cancel", data=json.dumps(body), content_type="application/json")

def test_cancel_endpoint_asks_gateway_to_cancel_active_subscription(app, client, gateway):
    gateway.add_payment("pay_1")
    _post(client, {"payment_id": "pay_1", "status": "Paid"})

    resp = _cancel(client, {"transactionKey": "pay_1"})
    assert resp.status_code == 200
    assert resp.get_json() == {"success": True}
    assert gateway.calls_to("cancel_payment") == [
        ("cancel_payment", "pay_1", "Subscription cancelled by customer"),
    ]
    # Ledger only changes when the Cancelled webhook lands
    with app.app_context():
        assert Payment.query.filter_by(status=STATUS_CANCEL).count() == 0

    resp = _post(client, {"payment_id": "pay_1", "status": "Cancelled"})
    assert resp.get_json()["payment"]["status"] == "Cancel"
    assert _cancel(client, {"transactionKey": "pay_1"}).status_code == 404

def test_cancel_endpoint_without_active_period(app, client, gateway):
    resp = _cancel(client, {"transactionKey": "pay_unknown"})
    assert resp.status_code == 404
    assert resp.get_json()["success"] is False
    assert gateway.calls_to("cancel_payment") == []

def test_cancel_endpoint_requires_transaction_key(app, client, gateway):
    for body in ({}, {"transactionKey": ""}, {"transactionKey": 12}):
        resp = _cancel(client, body)
        assert resp.status_code == 400
        assert resp.get_json() == {"success": False, "error": "transactionKey is required"}

def test_cancel_endpoint_reports_gateway_failure(app, client, gateway):
    gateway.add_payment("pay_1")
    _post(client, {"payment_id": "pay_1", "status": "Paid"})
    gateway.fail.add("cancel_payment")
    resp = _cancel(client, {"transactionKey": "pay_1"})
    assert resp.status_code == 502
    body = resp.get_json()
    assert body["success"] is False
    assert "503" in body["error"]

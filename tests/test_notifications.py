import httpx

from notifications import NotificationDispatcher, render_status_update

ORDER = {
    "id": "65f0c0ffee0000000000abcd",
    "items": [{"name": "Widget", "price": 1000, "quantity": 2}],
    "total": 2300,
}


def test_order_confirmation_renders_items_and_total(notifier, upstream):
    assert notifier.order_confirmation("jane@example.com", ORDER) is True
    [email] = upstream.emails
    assert email["to"] == "jane@example.com"
    assert email["subject"] == "Order Confirmation - Shopki Order #65F0C0FF"
    assert "Widget" in email["html"]
    assert "KES 2,000.00" in email["html"]
    assert "KES 2,300.00" in email["html"]
    assert "<" not in email["text"]


def test_status_update_uses_status_message():
    subject, body = render_status_update(ORDER, "shipped")
    assert subject == "Order Status Update - Order #65F0C0FF"
    assert "SHIPPED" in body
    assert "Your order has been shipped!" in body


def test_failed_delivery_is_retried_then_dropped(db, upstream):
    upstream.email_status = 500
    delays = []
    notifier = NotificationDispatcher(db, upstream.client, relay_url="http://relay", max_attempts=3,
                                      backoff=0.5, sleep=delays.append)
    assert notifier.order_confirmation("jane@example.com", ORDER) is False
    assert len(upstream.emails) == 3
    assert delays == [0.5, 1.0]
    logged = db["notification"].find_one({"order_id": ORDER["id"]})
    assert logged["delivered"] is False
    assert logged["attempts"] == 3


def test_delivery_outcome_is_recorded(notifier, db):
    notifier.status_update("jane@example.com", ORDER, "processing")
    logged = db["notification"].find_one({"event": "order_status_update"})
    assert logged["delivered"] is True
    assert logged["attempts"] == 1


def test_missing_recipient_is_skipped(notifier, upstream):
    assert notifier.status_update(None, ORDER, "processing") is False
    assert upstream.emails == []


def test_relay_reply_that_is_not_an_object_is_retried_then_dropped(db):
    calls = []

    def relay(request):
        calls.append(request)
        return httpx.Response(200, json=["queued"])

    client = httpx.Client(transport=httpx.MockTransport(relay))
    notifier = NotificationDispatcher(db, client, relay_url="http://relay", max_attempts=2, sleep=lambda s: None)
    assert notifier.order_confirmation("jane@example.com", ORDER) is False
    assert len(calls) == 2
    assert "unexpected body" in db["notification"].find_one({"order_id": ORDER["id"]})["error"]


def test_each_relay_attempt_uses_the_short_timeout(db):
    timeouts = []

    def relay(request):
        timeouts.append(request.extensions["timeout"]["read"])
        return httpx.Response(200, json={"success": True})

    client = httpx.Client(transport=httpx.MockTransport(relay), timeout=10)
    notifier = NotificationDispatcher(db, client, relay_url="http://relay", timeout=2.5, sleep=lambda s: None)
    assert notifier.status_update("jane@example.com", ORDER, "shipped") is True
    assert timeouts == [2.5]

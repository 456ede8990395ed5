import pytest

from auth import Identity
from database import create_document
from errors import ConcurrentUpdate, Forbidden, InvalidTransition, NotFound
from orders import TRANSITIONS, can_transition, order_stats
from schemas import Order, OrderStatus, ShippingInfo


@pytest.fixture
def place(db):
    def _place(status="pending", vendor_ids=(), total=2300, user_email="jane@example.com"):
        order = Order(
            user_id="buyer-1",
            user_email=user_email,
            items=[{"product_id": "p1", "name": "Widget", "price": 1000, "quantity": 2, "vendor_id": "vendor-1"}],
            shipping_info=ShippingInfo(full_name="Jane", email="jane@example.com", phone="0712345678",
                                       address="12 Moi Avenue", city="Nairobi", county="Nairobi"),
            payment_method="cod",
            subtotal=total - 300,
            shipping_fee=300,
            total=total,
            status=status,
            vendor_ids=list(vendor_ids),
        )
        return create_document(db, "order", order)
    return _place


def test_terminal_states_have_no_exits():
    assert TRANSITIONS[OrderStatus.CANCELLED] == set()
    assert TRANSITIONS[OrderStatus.RETURNED] == set()
    assert not can_transition(OrderStatus.COMPLETED, OrderStatus.PENDING)


@pytest.mark.parametrize("status", [OrderStatus.PENDING, OrderStatus.PROCESSING, OrderStatus.SHIPPED])
def test_side_exits_from_non_terminal_states(status):
    assert can_transition(status, OrderStatus.CANCELLED)
    assert can_transition(status, OrderStatus.RETURNED)


def test_set_status_shipped_touches_only_status(order_service, place, upstream, admin):
    order_id = place(status="processing")
    before = order_service.get(order_id)

    after = order_service.set_status(order_id, "shipped", admin)

    assert after["status"] == "shipped"
    assert after["version"] == before["version"] + 1
    for field in ("items", "total", "subtotal", "shipping_fee", "shipping_info", "user_id", "payment_status"):
        assert after[field] == before[field]
    [entry] = after["status_history"]
    assert set(entry) == {"from", "to", "actor_id", "at"}
    assert (entry["from"], entry["to"], entry["actor_id"]) == ("processing", "shipped", admin.uid)

    [email] = upstream.emails
    assert email["to"] == "jane@example.com"
    assert email["subject"].startswith("Order Status Update")
    assert "SHIPPED" in email["html"]


def test_disallowed_transition_is_rejected(order_service, place, upstream, admin):
    order_id = place(status="completed")
    with pytest.raises(InvalidTransition):
        order_service.set_status(order_id, "pending", admin)
    assert order_service.get(order_id)["status"] == "completed"
    assert upstream.emails == []


def test_expected_status_mismatch_is_a_conflict(order_service, place, admin):
    order_id = place(status="processing")
    with pytest.raises(ConcurrentUpdate):
        order_service.set_status(order_id, "shipped", admin, expected_status="pending")


def test_lost_update_is_detected(order_service, place, db, admin):
    order_id = place(status="processing")
    original_find = order_service._find

    def stale_find(oid):
        doc = original_find(oid)
        # another admin ships the order between our read and our write
        db["order"].update_one({"_id": doc["_id"]}, {"$set": {"status": "shipped"}, "$inc": {"version": 1}})
        return doc

    order_service._find = stale_find
    with pytest.raises(ConcurrentUpdate):
        order_service.set_status(order_id, "cancelled", admin)


def test_notification_failure_does_not_roll_back(order_service, place, upstream, admin):
    upstream.email_status = 500
    order_id = place(status="pending")
    order_service.set_status(order_id, "processing", admin)
    assert order_service.get(order_id)["status"] == "processing"


def test_vendor_may_only_update_own_orders(order_service, place):
    vendor = Identity(uid="vendor-1", email="v@example.com", role="vendor")
    other = Identity(uid="vendor-2", email="w@example.com", role="vendor")
    order_id = place(status="pending", vendor_ids=["vendor-1"])

    with pytest.raises(Forbidden):
        order_service.set_status(order_id, "processing", other)
    assert order_service.set_status(order_id, "processing", vendor)["status"] == "processing"


def test_vendor_cannot_settle_unpaid_order(order_service, place):
    vendor = Identity(uid="vendor-1", email="v@example.com", role="vendor")
    order_id = place(status="payment_pending", vendor_ids=["vendor-1"])
    with pytest.raises(Forbidden):
        order_service.set_status(order_id, "pending", vendor)


def test_unknown_order(order_service, admin):
    with pytest.raises(NotFound):
        order_service.set_status("not-an-id", "processing", admin)


def test_buyer_cannot_read_someone_elses_order(order_service, place):
    order_id = place()
    stranger = Identity(uid="buyer-2", email="x@example.com")
    with pytest.raises(NotFound):
        order_service.get_for(order_id, stranger)


def test_order_stats(db, place):
    place(status="completed", total=2300)
    place(status="pending", total=1000)
    place(status="cancelled", total=5000)
    place(status="payment_pending", total=700)

    stats = order_stats(db)

    assert stats["orders"] == 4
    assert stats["orders_by_status"]["cancelled"] == 1
    assert stats["total_revenue"] == 3300
    assert stats["total_commission"] == 132
    assert stats["seller_payouts"] == 3168

"""
Order records and the order status state machine.

After creation only the status fields of an order change, and only through
``OrderService.set_status``. Every accepted transition is written with a
compare-and-swap on ``version`` and followed by exactly one status email to
the buyer. The email is best effort and never undoes the transition.
"""
from typing import List, Optional

import structlog
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

import config
from auth import Identity
from database import now, serialize_doc, to_object_id
from errors import ConcurrentUpdate, Forbidden, InvalidTransition, NotFound, ValidationError
from notifications import NotificationDispatcher
from schemas import OrderStatus

logger = structlog.get_logger(__name__)

TRANSITIONS = {
    OrderStatus.PAYMENT_PENDING: {OrderStatus.PENDING, OrderStatus.CANCELLED},
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.CANCELLED, OrderStatus.RETURNED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED, OrderStatus.RETURNED},
    OrderStatus.SHIPPED: {OrderStatus.COMPLETED, OrderStatus.CANCELLED, OrderStatus.RETURNED},
    # returns are accepted after delivery
    OrderStatus.COMPLETED: {OrderStatus.RETURNED},
    OrderStatus.CANCELLED: set(),
    OrderStatus.RETURNED: set(),
}

REVENUE_STATUSES = {OrderStatus.PENDING, OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.COMPLETED}


def parse_status(value) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown order status: {value}")


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    return new in TRANSITIONS[current]


class OrderService:
    def __init__(self, db: Database, notifier: NotificationDispatcher):
        self.db = db
        self.notifier = notifier

    def _find(self, order_id: str) -> dict:
        doc = self.db["order"].find_one({"_id": to_object_id(order_id, "Order")})
        if not doc:
            raise NotFound("Order not found")
        return doc

    def get(self, order_id: str) -> dict:
        return serialize_doc(self._find(order_id))

    def get_for(self, order_id: str, actor: Identity) -> dict:
        order = self.get(order_id)
        if actor.is_admin or order["user_id"] == actor.uid or actor.uid in order.get("vendor_ids", []):
            return order
        # Hide existence of other buyers' orders.
        raise NotFound("Order not found")

    def find_by_checkout_request(self, checkout_request_id: str) -> dict:
        doc = self.db["order"].find_one({"checkout_request_id": checkout_request_id})
        if not doc:
            raise NotFound("Order not found")
        return serialize_doc(doc)

    def list_for_user(self, user_id: str) -> List[dict]:
        docs = self.db["order"].find({"user_id": user_id}).sort("created_at", DESCENDING)
        return [serialize_doc(d) for d in docs]

    def list_for_vendor(self, vendor_id: str) -> List[dict]:
        docs = self.db["order"].find({"vendor_ids": vendor_id}).sort("created_at", DESCENDING)
        return [serialize_doc(d) for d in docs]

    def list_all(self, status: Optional[str] = None, limit: int = 200) -> List[dict]:
        filt = {"status": parse_status(status).value} if status else {}
        docs = self.db["order"].find(filt).sort("created_at", DESCENDING).limit(limit)
        return [serialize_doc(d) for d in docs]

    def set_status(self, order_id: str, new_status, actor: Identity, expected_status=None) -> dict:
        doc = self._find(order_id)
        if not actor.is_admin and actor.uid not in doc.get("vendor_ids", []):
            raise Forbidden("Unauthorized: This is not your order")

        current = parse_status(doc["status"])
        new = parse_status(new_status)
        if expected_status is not None and parse_status(expected_status) != current:
            raise ConcurrentUpdate(f"Order is {current.value}, not {parse_status(expected_status).value}")
        if current == OrderStatus.PAYMENT_PENDING and not actor.is_admin:
            raise Forbidden("Only an admin can settle an unpaid order")
        if not can_transition(current, new):
            raise InvalidTransition(f"Cannot change order status from {current.value} to {new.value}")

        stamp = now()
        updated = self.db["order"].find_one_and_update(
            {"_id": doc["_id"], "status": current.value, "version": doc.get("version", 1)},
            {
                "$set": {"status": new.value, "updated_at": stamp},
                "$inc": {"version": 1},
                "$push": {"status_history": {"from": current.value, "to": new.value, "actor_id": actor.uid, "at": stamp}},
            },
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            raise ConcurrentUpdate("Order was changed by someone else, reload and try again")

        order = serialize_doc(updated)
        logger.info("order_status_changed", order_id=order_id, old=current.value, new=new.value, actor=actor.uid)
        self._notify_status(order, new)
        return order

    def _notify_status(self, order: dict, status: OrderStatus):
        try:
            self.notifier.status_update(order.get("user_email"), order, status.value)
        except Exception as e:
            # The transition is already stored; the email is best effort.
            logger.warning("order_status_email_failed", order_id=order["id"], error=str(e))


def order_stats(db: Database) -> dict:
    by_status = {s.value: 0 for s in OrderStatus}
    revenue = 0.0
    total_orders = 0
    for doc in db["order"].find({}, {"status": 1, "total": 1}):
        total_orders += 1
        status = doc.get("status")
        if status in by_status:
            by_status[status] += 1
        if status in {s.value for s in REVENUE_STATUSES}:
            revenue += float(doc.get("total") or 0)
    commission = revenue * config.PLATFORM_COMMISSION_RATE
    return {
        "users": db["user"].count_documents({}),
        "products": db["product"].count_documents({}),
        "orders": total_orders,
        "orders_by_status": by_status,
        "total_revenue": round(revenue, 2),
        "total_commission": round(commission, 2),
        "seller_payouts": round(revenue - commission, 2),
        "commission_rate": config.PLATFORM_COMMISSION_RATE,
    }

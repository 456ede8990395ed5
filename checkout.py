"""
Checkout orchestration.

``place_order`` runs persist -> pay -> clear in that order with no wrapping
transaction:

* the order is always written first;
* for M-Pesa the order waits in ``payment_pending`` until the provider's
  callback confirms payment (``confirm_payment``), and only then is the cart
  cleared. A failed initiation leaves the order in place for
  ``retry_payment``;
* for card and cash on delivery a confirmation email goes out and the cart is
  cleared straight away.
"""
from dataclasses import dataclass
from typing import Optional

import structlog
from pymongo.database import Database
from pymongo.errors import PyMongoError

import config
from auth import SYSTEM, Identity
from cart import Cart, CartStorage
from database import create_document, now, to_object_id
from errors import (
    InvalidTransition,
    NotFound,
    OrderCreationFailed,
    PaymentError,
    StockExceeded,
    ValidationError,
)
from notifications import NotificationDispatcher
from orders import OrderService
from payments import PaymentInitiation, PaymentInitiator
from schemas import (
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ShippingInfo,
    StkCallback,
)

logger = structlog.get_logger(__name__)

REQUIRED_SHIPPING_FIELDS = ["full_name", "email", "phone", "address", "city", "county"]


def validate_shipping_info(info: ShippingInfo):
    for field in REQUIRED_SHIPPING_FIELDS:
        value = getattr(info, field) or ""
        if not value.strip():
            raise ValidationError(f"Please fill in {field.replace('_', ' ')}", field=field)


def shipping_fee_for(subtotal: float) -> float:
    if subtotal > config.FREE_SHIPPING_THRESHOLD:
        return 0.0
    return config.STANDARD_SHIPPING_FEE


def parse_payment_method(value) -> PaymentMethod:
    try:
        return PaymentMethod(value)
    except ValueError:
        raise ValidationError(f"Unsupported payment method: {value}", field="payment_method")


@dataclass
class CheckoutResult:
    order_id: str
    status: str
    payment_status: str
    subtotal: float
    shipping_fee: float
    total: float
    checkout_request_id: Optional[str] = None
    payment_error: Optional[str] = None

    @property
    def retry_payment(self) -> bool:
        return self.payment_error is not None


class CheckoutService:
    def __init__(self, db: Database, orders: OrderService, payments: PaymentInitiator,
                 notifier: NotificationDispatcher, cart_storage: CartStorage):
        self.db = db
        self.orders = orders
        self.payments = payments
        self.notifier = notifier
        self.cart_storage = cart_storage

    def place_order(self, cart: Cart, shipping_info: ShippingInfo, payment_method, buyer: Identity) -> CheckoutResult:
        validate_shipping_info(shipping_info)
        method = parse_payment_method(payment_method)
        if cart.is_empty():
            raise ValidationError("Cart is empty")
        self._check_live_stock(cart)

        subtotal = cart.total
        shipping_fee = shipping_fee_for(subtotal)
        total = round(subtotal + shipping_fee, 2)
        items = [
            OrderItem(product_id=it.product_id, name=it.name, price=it.price, quantity=it.quantity,
                      image=it.image, vendor_id=it.vendor_id)
            for it in cart.items
        ]
        status = OrderStatus.PAYMENT_PENDING if method == PaymentMethod.MPESA else OrderStatus.PENDING
        order = Order(
            user_id=buyer.uid,
            user_email=buyer.email or shipping_info.email,
            user_name=buyer.name or shipping_info.full_name,
            items=items,
            shipping_info=shipping_info,
            payment_method=method,
            subtotal=subtotal,
            shipping_fee=shipping_fee,
            total=total,
            status=status,
            vendor_ids=sorted({it.vendor_id for it in items if it.vendor_id}),
            cart_session_id=cart.session_id,
        )
        try:
            order_id = create_document(self.db, "order", order)
        except PyMongoError as e:
            logger.error("order_create_failed", user_id=buyer.uid, error=str(e))
            raise OrderCreationFailed()
        logger.info("order_created", order_id=order_id, user_id=buyer.uid, total=total, payment_method=method.value)

        self._reserve_stock(order_id, items)

        result = CheckoutResult(
            order_id=order_id,
            status=status.value,
            payment_status=PaymentStatus.PENDING.value,
            subtotal=subtotal,
            shipping_fee=shipping_fee,
            total=total,
        )

        if method == PaymentMethod.MPESA:
            try:
                initiation = self._initiate_payment(order_id, shipping_info.phone, total)
                result.checkout_request_id = initiation.checkout_request_id
            except PaymentError as e:
                # The order stays; the buyer retries the payment, not the order.
                result.payment_status = PaymentStatus.FAILED.value
                result.payment_error = e.message
            return result

        self.notifier.order_confirmation(order.user_email, {**order.model_dump(mode="json"), "id": order_id})
        cart.clear()
        return result

    def retry_payment(self, order_id: str, buyer: Identity, phone: Optional[str] = None) -> PaymentInitiation:
        order = self.orders.get(order_id)
        if order["user_id"] != buyer.uid and not buyer.is_admin:
            raise NotFound("Order not found")
        if (order["payment_method"] != PaymentMethod.MPESA.value
                or order["status"] != OrderStatus.PAYMENT_PENDING.value
                or order.get("payment_status") == PaymentStatus.PAID.value):
            raise InvalidTransition("Order is not awaiting payment")
        if order.get("payment_attempts", 0) >= config.MAX_PAYMENT_ATTEMPTS:
            raise PaymentError("Maximum payment attempts reached. Please contact support.")
        return self._initiate_payment(order_id, phone or order["shipping_info"]["phone"], order["total"])

    def confirm_payment(self, callback: StkCallback) -> dict:
        order = self.orders.find_by_checkout_request(callback.CheckoutRequestID)
        order_id = order["id"]
        if order.get("payment_status") == PaymentStatus.PAID.value:
            logger.info("mpesa_callback_duplicate", order_id=order_id)
            return order

        oid = to_object_id(order_id, "Order")
        if callback.ResultCode != 0:
            self.db["order"].update_one({"_id": oid}, {"$set": {
                "payment_status": PaymentStatus.FAILED.value,
                "payment_error": callback.ResultDesc,
                "updated_at": now(),
            }})
            logger.warning("mpesa_payment_failed", order_id=order_id, result_code=callback.ResultCode,
                           result_desc=callback.ResultDesc)
            return self.orders.get(order_id)

        receipt = callback.metadata("MpesaReceiptNumber")
        self.db["order"].update_one({"_id": oid}, {"$set": {
            "payment_status": PaymentStatus.PAID.value,
            "mpesa_receipt": str(receipt) if receipt is not None else None,
            "paid_at": now(),
            "updated_at": now(),
        }})
        logger.info("mpesa_payment_confirmed", order_id=order_id, receipt=receipt)

        placed = None
        if order["status"] == OrderStatus.PAYMENT_PENDING.value:
            placed = self.orders.set_status(order_id, OrderStatus.PENDING, SYSTEM,
                                            expected_status=OrderStatus.PAYMENT_PENDING)
        else:
            logger.warning("mpesa_payment_for_settled_order", order_id=order_id, status=order["status"])

        if order.get("cart_session_id"):
            self.cart_storage.clear(order["cart_session_id"])
        if placed is not None:
            self.notifier.order_confirmation(placed.get("user_email"), placed)
        return self.orders.get(order_id)

    def _check_live_stock(self, cart: Cart):
        for line in cart.items:
            product = self.db["product"].find_one({"_id": to_object_id(line.product_id, "Product")})
            if not product:
                raise NotFound(f"{line.name} is no longer available")
            stock = int(product.get("stock") or 0)
            if stock < line.quantity:
                raise StockExceeded(f"Only {stock} {line.name}(s) available in stock")

    def _reserve_stock(self, order_id: str, items):
        for item in items:
            try:
                res = self.db["product"].update_one(
                    {"_id": to_object_id(item.product_id, "Product"), "stock": {"$gte": item.quantity}},
                    {"$inc": {"stock": -item.quantity, "sold": item.quantity}, "$set": {"updated_at": now()}},
                )
            except PyMongoError as e:
                logger.warning("stock_update_failed", order_id=order_id, product_id=item.product_id, error=str(e))
                continue
            if res.matched_count == 0:
                logger.warning("stock_update_skipped", order_id=order_id, product_id=item.product_id)

    def _initiate_payment(self, order_id: str, phone: str, amount: float) -> PaymentInitiation:
        oid = to_object_id(order_id, "Order")
        self.db["order"].update_one({"_id": oid}, {"$inc": {"payment_attempts": 1}})
        try:
            initiation = self.payments.initiate(
                phone,
                amount,
                order_id,
                reference=f"{config.STORE_NAME.upper()}-{order_id}",
                description=f"{config.STORE_NAME} Order #{order_id}",
            )
        except PaymentError as e:
            self.db["order"].update_one({"_id": oid}, {"$set": {
                "payment_status": PaymentStatus.FAILED.value,
                "payment_error": e.message,
                "updated_at": now(),
            }})
            raise
        self.db["order"].update_one({"_id": oid}, {"$set": {
            "checkout_request_id": initiation.checkout_request_id,
            "payment_status": PaymentStatus.PENDING.value,
            "payment_error": None,
            "updated_at": now(),
        }})
        logger.info("mpesa_prompt_sent", order_id=order_id, checkout_request_id=initiation.checkout_request_id)
        return initiation

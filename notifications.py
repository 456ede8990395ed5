"""
Order notification emails.

Emails are rendered here and handed to the transactional email relay
(``POST /api/send-email``). Delivery never blocks the caller's primary
mutation: a failed send is retried a few times with backoff, then dropped
with a warning. Every outcome is recorded in the ``notification`` collection.
"""
import html
import re
import time
from typing import Callable, Iterable, Optional

import httpx
import structlog
from pymongo.database import Database

import config
from database import create_document
from errors import NotificationError

logger = structlog.get_logger(__name__)

STATUS_MESSAGES = {
    "payment_pending": "We are waiting for your payment to be confirmed.",
    "pending": "Your order has been received and is being prepared.",
    "processing": "Your order is being processed and will be shipped soon.",
    "shipped": "Your order has been shipped! Track your package with the tracking number below.",
    "completed": "Your order has been delivered. We hope you enjoy your purchase!",
    "cancelled": "Your order has been cancelled.",
    "returned": "Your return has been processed.",
}


def short_id(order_id: str) -> str:
    return order_id[:8].upper()


def money(amount: float) -> str:
    return f"{config.CURRENCY} {amount:,.2f}"


def _item_rows(items: Iterable[dict]) -> str:
    rows = []
    for item in items:
        rows.append(
            "<tr>"
            f"<td>{html.escape(str(item.get('name', '')))}</td>"
            f"<td>x{item.get('quantity', 0)}</td>"
            f"<td>{money(item.get('price', 0) * item.get('quantity', 0))}</td>"
            "</tr>"
        )
    return "".join(rows)


def render_order_confirmation(order: dict):
    subject = f"Order Confirmation - {config.STORE_NAME} Order #{short_id(order['id'])}"
    body = f"""
    <h2>Order Confirmation</h2>
    <p>Thank you for your order!</p>
    <p><strong>Order ID:</strong> {order['id']}</p>
    <h3>Order Items</h3>
    <table style="width:100%; border-collapse: collapse;">
      <tr><th>Product</th><th>Quantity</th><th>Amount</th></tr>
      {_item_rows(order.get('items', []))}
    </table>
    <h3>Order Total: {money(order.get('total', 0))}</h3>
    <p>Estimated delivery: 3-5 business days</p>
    """
    return subject, body


def render_status_update(order: dict, status: str):
    subject = f"Order Status Update - Order #{short_id(order['id'])}"
    tracking = order.get("tracking_number")
    body = f"""
    <h2>Order Status Update</h2>
    <p><strong>Order ID:</strong> {short_id(order['id'])}</p>
    <p><strong>New Status:</strong> {status.upper()}</p>
    <p>{STATUS_MESSAGES.get(status, 'Your order status has been updated.')}</p>
    {f'<p><strong>Tracking Number:</strong> {html.escape(tracking)}</p>' if tracking else ''}
    <table style="width:100%; border-collapse: collapse;">
      <tr><th>Product</th><th>Quantity</th><th>Amount</th></tr>
      {_item_rows(order.get('items', []))}
    </table>
    <p><strong>Order Total:</strong> {money(order.get('total', 0))}</p>
    <p><a href="{config.STORE_BASE_URL}/orders/{order['id']}">View Order Details</a></p>
    """
    return subject, body


def html_to_text(content: str) -> str:
    return re.sub(r"\s+", " ", re.sub(r"<[^>]*>", " ", content)).strip()


class NotificationDispatcher:
    def __init__(self, db: Optional[Database], client: httpx.Client,
                 relay_url: str = config.EMAIL_RELAY_URL,
                 max_attempts: int = config.NOTIFY_MAX_ATTEMPTS,
                 backoff: float = config.NOTIFY_BACKOFF_SECONDS,
                 timeout: float = config.NOTIFY_TIMEOUT_SECONDS,
                 sleep: Callable[[float], None] = time.sleep):
        self.db = db
        self.client = client
        self.relay_url = relay_url.rstrip("/")
        self.max_attempts = max(1, max_attempts)
        self.backoff = backoff
        self.timeout = timeout
        self.sleep = sleep

    def order_confirmation(self, email: str, order: dict) -> bool:
        subject, body = render_order_confirmation(order)
        return self.dispatch("order_confirmation", email, subject, body, order_id=order["id"])

    def status_update(self, email: str, order: dict, status: str) -> bool:
        subject, body = render_status_update(order, status)
        return self.dispatch("order_status_update", email, subject, body, order_id=order["id"])

    def dispatch(self, event: str, to: str, subject: str, body: str, order_id: Optional[str] = None) -> bool:
        """Deliver one email. Returns whether it went out; never raises."""
        if not to:
            logger.warning("notification_skipped", notification_event=event, order_id=order_id, reason="no recipient")
            return False

        attempts = 0
        delivered = False
        error = None
        while attempts < self.max_attempts and not delivered:
            attempts += 1
            try:
                self._send(to, subject, body)
                delivered = True
            except NotificationError as e:
                error = e.message
                logger.warning("notification_attempt_failed", notification_event=event, order_id=order_id,
                               attempt=attempts, error=error)
                if attempts < self.max_attempts:
                    self.sleep(self.backoff * 2 ** (attempts - 1))

        if delivered:
            logger.info("notification_sent", notification_event=event, order_id=order_id, to=to)
        else:
            logger.warning("notification_dropped", notification_event=event, order_id=order_id, attempts=attempts)
        self._record(event, to, order_id, delivered, attempts, error)
        return delivered

    def _send(self, to: str, subject: str, body: str):
        payload = {"to": to, "subject": subject, "html": body, "text": html_to_text(body)}
        try:
            response = self.client.post(f"{self.relay_url}/api/send-email", json=payload, timeout=self.timeout)
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise NotificationError(f"Email relay unreachable: {e}")
        if not isinstance(data, dict):
            raise NotificationError(f"Email relay answered {response.status_code} with an unexpected body")
        if not response.is_success or not data.get("success"):
            raise NotificationError(data.get("error") or f"Email relay answered {response.status_code}")

    def _record(self, event, to, order_id, delivered, attempts, error):
        if self.db is None:
            return
        try:
            create_document(self.db, "notification", {
                "event": event,
                "to": to,
                "order_id": order_id,
                "delivered": delivered,
                "attempts": attempts,
                "error": error,
            })
        except Exception as e:
            logger.warning("notification_log_failed", order_id=order_id, error=str(e))

"""
M-Pesa STK push initiation.

One outbound call per attempt. Completion arrives later through the payment
callback (see ``checkout.confirm_payment``); nothing here polls.
"""
import re
from dataclasses import dataclass
from typing import Optional

import httpx
import structlog

import config
from errors import AmountOutOfRange, InvalidPhone, PaymentRejected, ValidationError

logger = structlog.get_logger(__name__)

MPESA_PHONE = re.compile(r"^254[17]\d{8}$")


@dataclass
class PaymentInitiation:
    checkout_request_id: str
    message: str
    response_code: Optional[str] = None


def format_phone_number(phone: str) -> str:
    """Normalize a Kenyan mobile number to ``2547XXXXXXXX`` / ``2541XXXXXXXX``."""
    cleaned = re.sub(r"\D", "", phone or "")
    if cleaned.startswith(("07", "01")):
        cleaned = "254" + cleaned[1:]
    elif cleaned.startswith(("7", "1")):
        cleaned = "254" + cleaned
    if not MPESA_PHONE.match(cleaned):
        raise InvalidPhone()
    return cleaned


def validate_amount(amount: float):
    if amount < config.MPESA_MIN_AMOUNT:
        raise AmountOutOfRange(f"Minimum M-Pesa payment is {config.CURRENCY} {config.MPESA_MIN_AMOUNT:,.0f}")
    if amount > config.MPESA_MAX_AMOUNT:
        raise AmountOutOfRange(f"Maximum M-Pesa payment is {config.CURRENCY} {config.MPESA_MAX_AMOUNT:,.0f}")


class PaymentInitiator:
    def __init__(self, client: httpx.Client, base_url: str = config.PAYMENT_API_URL):
        self.client = client
        self.base_url = base_url.rstrip("/")

    def initiate(self, phone: str, amount: float, order_id: str, reference: Optional[str] = None,
                 description: Optional[str] = None) -> PaymentInitiation:
        if not order_id:
            raise ValidationError("Order ID is required")
        phone_number = format_phone_number(phone)
        validate_amount(amount)

        body = {
            "phoneNumber": phone_number,
            "amount": amount,
            "orderId": order_id,
            "accountReference": reference or f"{config.STORE_NAME.upper()}-{order_id}",
            "description": description or f"{config.STORE_NAME} Order Payment",
        }
        logger.info("mpesa_initiate", order_id=order_id, amount=amount)
        try:
            response = self.client.post(f"{self.base_url}/api/mpesa/initiate-payment", json=body)
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("mpesa_initiate_failed", order_id=order_id, error=str(e))
            raise PaymentRejected("Network error while initiating M-Pesa payment")

        if not isinstance(data, dict):
            logger.warning("mpesa_initiate_bad_reply", order_id=order_id, status_code=response.status_code)
            raise PaymentRejected("Failed to initiate M-Pesa payment")

        if response.is_success and data.get("success"):
            return PaymentInitiation(
                checkout_request_id=data.get("checkoutRequestId"),
                message=data.get("message") or "M-Pesa prompt sent",
                response_code=data.get("responseCode"),
            )

        error = data.get("error") or data.get("message") or "Failed to initiate M-Pesa payment"
        logger.warning("mpesa_initiate_rejected", order_id=order_id, error=error)
        raise PaymentRejected(error)

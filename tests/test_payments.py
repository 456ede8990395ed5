import pytest

from errors import AmountOutOfRange, InvalidPhone, PaymentRejected, ValidationError
from payments import format_phone_number


@pytest.mark.parametrize("raw", ["0712345678", "712345678", "254712345678", "+254 712 345 678", "0112345678"])
def test_format_phone_number_accepts_kenyan_mobiles(raw):
    assert format_phone_number(raw) in ("254712345678", "254112345678")


@pytest.mark.parametrize("raw", ["", "12345", "0812345678", "+1 415 555 0100", "07123"])
def test_format_phone_number_rejects_others(raw):
    with pytest.raises(InvalidPhone):
        format_phone_number(raw)


def test_initiate_sends_normalized_request(payments, upstream):
    result = payments.initiate("0712345678", 2300, "order-1", "SHOPKI-order-1", "Shopki Order #order-1")
    assert result.checkout_request_id == "ws_CO_123456"
    assert upstream.payments == [{
        "phoneNumber": "254712345678",
        "amount": 2300,
        "orderId": "order-1",
        "accountReference": "SHOPKI-order-1",
        "description": "Shopki Order #order-1",
    }]


@pytest.mark.parametrize("amount", [0, 0.5, 150001])
def test_initiate_rejects_amount_out_of_range(payments, upstream, amount):
    with pytest.raises(AmountOutOfRange):
        payments.initiate("0712345678", amount, "order-1")
    assert upstream.payments == []


def test_initiate_requires_order_id(payments):
    with pytest.raises(ValidationError):
        payments.initiate("0712345678", 100, "")


def test_initiate_invalid_phone_makes_no_call(payments, upstream):
    with pytest.raises(InvalidPhone):
        payments.initiate("12", 100, "order-1")
    assert upstream.payments == []


def test_provider_rejection_carries_provider_message(payments, upstream):
    upstream.payment_status = 400
    upstream.payment_reply = {"success": False, "error": "Invalid Access Token"}
    with pytest.raises(PaymentRejected, match="Invalid Access Token"):
        payments.initiate("0712345678", 100, "order-1")


def test_provider_rejection_without_message_is_generic(payments, upstream):
    upstream.payment_reply = {"success": False}
    with pytest.raises(PaymentRejected, match="Failed to initiate M-Pesa payment"):
        payments.initiate("0712345678", 100, "order-1")


@pytest.mark.parametrize("reply", [["queued"], "accepted", 42])
def test_provider_reply_that_is_not_an_object_is_a_rejection(payments, upstream, reply):
    upstream.payment_reply = reply
    with pytest.raises(PaymentRejected, match="Failed to initiate M-Pesa payment"):
        payments.initiate("0712345678", 100, "order-1")

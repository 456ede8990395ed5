"""
Database Schemas for the storefront.

Each Pydantic model corresponds to one MongoDB collection.
Collection name is the lowercase of the class name, except where noted:
- User -> "user"
- Product -> "product"
- Cart -> "cart"
- Order -> "order"
- VendorApplication -> "vendor_application"
"""
from enum import Enum
from typing import List, Optional, Literal, Union

from pydantic import BaseModel, EmailStr, Field, model_validator


class OrderStatus(str, Enum):
    PAYMENT_PENDING = "payment_pending"
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RETURNED = "returned"


class PaymentMethod(str, Enum):
    MPESA = "mpesa"
    CARD = "card"
    COD = "cod"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


Role = Literal["customer", "vendor", "admin"]


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr
    password_hash: str = Field(..., description="Hashed password")
    role: Role = "customer"


class Product(BaseModel):
    name: str
    description: str = ""
    price: float = Field(..., ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    stock: int = Field(0, ge=0)
    category: str
    images: List[str] = []
    rating: float = Field(0.0, ge=0, le=5)
    review_count: int = Field(0, ge=0)
    featured: bool = False
    vendor_id: Optional[str] = None
    sold: int = Field(0, ge=0)

    @model_validator(mode="after")
    def check_discount(self):
        if self.original_price is not None and self.original_price < self.price:
            raise ValueError("original_price must be >= price")
        return self


class CartItem(BaseModel):
    product_id: str
    name: str
    price: float = Field(..., ge=0)
    image: Optional[str] = None
    vendor_id: Optional[str] = None
    stock: int = Field(..., ge=0, description="Stock seen when the line was last validated")
    quantity: int = Field(..., ge=1)


class Cart(BaseModel):
    session_id: str
    items: List[CartItem] = []


class ShippingInfo(BaseModel):
    # Required fields are checked by the checkout in a fixed order, so they
    # default to empty here rather than failing model validation.
    full_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    county: str = ""
    postal_code: Optional[str] = None


class OrderItem(BaseModel):
    product_id: str
    name: str
    price: float
    quantity: int
    image: Optional[str] = None
    vendor_id: Optional[str] = None


class Order(BaseModel):
    user_id: str
    user_email: Optional[str] = None
    user_name: Optional[str] = None
    items: List[OrderItem]
    shipping_info: ShippingInfo
    payment_method: PaymentMethod
    subtotal: float
    shipping_fee: float
    total: float
    status: OrderStatus
    payment_status: PaymentStatus = PaymentStatus.PENDING
    version: int = 1
    vendor_ids: List[str] = []
    cart_session_id: Optional[str] = None
    checkout_request_id: Optional[str] = None
    payment_attempts: int = 0
    mpesa_receipt: Optional[str] = None
    status_history: List[dict] = []


# M-Pesa STK push callback, as posted by the payment provider
class StkCallbackItem(BaseModel):
    Name: str
    Value: Optional[Union[str, int, float]] = None


class StkCallbackMetadata(BaseModel):
    Item: List[StkCallbackItem] = []


class StkCallback(BaseModel):
    MerchantRequestID: Optional[str] = None
    CheckoutRequestID: str
    ResultCode: int
    ResultDesc: Optional[str] = None
    CallbackMetadata: Optional[StkCallbackMetadata] = None

    def metadata(self, name: str):
        if not self.CallbackMetadata:
            return None
        for item in self.CallbackMetadata.Item:
            if item.Name == name:
                return item.Value
        return None


class StkCallbackBody(BaseModel):
    stkCallback: StkCallback


class MpesaCallback(BaseModel):
    Body: StkCallbackBody


class VendorApplication(BaseModel):
    user_id: str
    email: EmailStr
    business_name: str
    business_category: Optional[str] = None
    contact_phone: Optional[str] = None
    business_address: Optional[str] = None
    business_description: Optional[str] = None
    status: Literal["pending", "approved", "rejected"] = "pending"
    rejection_reason: Optional[str] = None
    reviewed_by: Optional[str] = None

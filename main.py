import os
from typing import List, Optional

import httpx
import structlog
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database
from pymongo.errors import PyMongoError

import catalog
import config
import database
import vendors
from auth import (
    Identity,
    check_password,
    create_token,
    get_current_user,
    hash_password,
    require_admin,
    require_staff,
)
from cart import Cart, CartStorage
from checkout import CheckoutService
from database import create_document, get_db, serialize_doc
from errors import Forbidden, PersistenceError, StoreError, ValidationError
from notifications import NotificationDispatcher
from orders import OrderService, order_stats
from payments import PaymentInitiator
from schemas import (
    MpesaCallback,
    PaymentMethod,
    Product as ProductSchema,
    ShippingInfo,
    User as UserSchema,
    VendorApplication,
)


logger = structlog.get_logger(__name__)

app = FastAPI(title="Storefront Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    content = {"detail": exc.message}
    if isinstance(exc, ValidationError) and exc.field:
        content["field"] = exc.field
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(PyMongoError)
async def storage_error_handler(request: Request, exc: PyMongoError):
    logger.error("storage_error", path=request.url.path, error=str(exc))
    err = PersistenceError("Storage is temporarily unavailable, please try again")
    return JSONResponse(status_code=err.status_code, content={"detail": err.message})


# ----------------------- Services -----------------------
http_client = httpx.Client(timeout=config.HTTP_TIMEOUT_SECONDS)


def get_http_client() -> httpx.Client:
    return http_client


def get_cart_storage(db: Database = Depends(get_db)) -> CartStorage:
    return CartStorage(db)


def get_notifier(db: Database = Depends(get_db), client: httpx.Client = Depends(get_http_client)) -> NotificationDispatcher:
    return NotificationDispatcher(db, client)


def get_payments(client: httpx.Client = Depends(get_http_client)) -> PaymentInitiator:
    return PaymentInitiator(client)


def get_order_service(db: Database = Depends(get_db), notifier: NotificationDispatcher = Depends(get_notifier)) -> OrderService:
    return OrderService(db, notifier)


def get_checkout_service(
    db: Database = Depends(get_db),
    orders: OrderService = Depends(get_order_service),
    payments: PaymentInitiator = Depends(get_payments),
    notifier: NotificationDispatcher = Depends(get_notifier),
    storage: CartStorage = Depends(get_cart_storage),
) -> CheckoutService:
    return CheckoutService(db, orders, payments, notifier, storage)


# ----------------------- Models -----------------------
class SignupBody(BaseModel):
    name: str
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=50)


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class ProductUpdateBody(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = None
    original_price: Optional[float] = None
    stock: Optional[int] = None
    category: Optional[str] = None
    images: Optional[List[str]] = None
    featured: Optional[bool] = None


class AddToCartBody(BaseModel):
    session_id: str
    product_id: str


class ChangeQuantityBody(BaseModel):
    session_id: str
    delta: int


class CheckoutBody(BaseModel):
    session_id: str
    shipping_info: ShippingInfo
    payment_method: PaymentMethod = PaymentMethod.MPESA


class RetryPaymentBody(BaseModel):
    phone: Optional[str] = None


class StatusBody(BaseModel):
    status: str
    expected_status: Optional[str] = None


class VendorApplicationBody(BaseModel):
    business_name: str
    business_category: Optional[str] = None
    contact_phone: Optional[str] = None
    business_address: Optional[str] = None
    business_description: Optional[str] = None


class RejectBody(BaseModel):
    reason: Optional[str] = None


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "Storefront API running"}


@app.get("/api/health")
def health():
    return {"status": "ok", "message": "Storefront API is running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        if database.db is not None:
            response["collections"] = database.db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ----------------------- Auth -----------------------
def _session(user_doc: dict) -> dict:
    suser = serialize_doc(user_doc)
    identity = Identity(uid=suser["id"], email=suser["email"], name=suser["name"], role=suser.get("role", "customer"))
    return {
        "token": create_token(identity),
        "user": {"id": identity.uid, "name": identity.name, "email": identity.email, "role": identity.role},
    }


@app.post("/auth/signup")
def signup(body: SignupBody, db: Database = Depends(get_db)):
    if db["user"].find_one({"email": body.email}):
        raise HTTPException(status_code=400, detail="Email already registered")
    user = UserSchema(name=body.name, email=body.email, password_hash=hash_password(body.password))
    create_document(db, "user", user)
    return _session(db["user"].find_one({"email": body.email}))


@app.post("/auth/login")
def login(body: LoginBody, db: Database = Depends(get_db)):
    user = db["user"].find_one({"email": body.email})
    if not user or not check_password(body.password, user.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return _session(user)


# ----------------------- Products -----------------------
@app.get("/categories")
def list_categories():
    return catalog.list_categories()


@app.get("/products")
def list_products(q: Optional[str] = None, category: Optional[str] = None, featured: Optional[bool] = None,
                  limit: int = Query(100, ge=1, le=200), db: Database = Depends(get_db)):
    return catalog.list_products(db, category=category, q=q, featured=featured, limit=limit)


@app.get("/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return catalog.get_product(db, product_id)


@app.post("/products", status_code=201)
def create_product(body: ProductSchema, user: Identity = Depends(require_staff), db: Database = Depends(get_db)):
    return {"id": catalog.create_product(db, body, user)}


@app.put("/products/{product_id}")
def update_product(product_id: str, body: ProductUpdateBody, user: Identity = Depends(require_staff),
                   db: Database = Depends(get_db)):
    catalog.update_product(db, product_id, body.model_dump(exclude_none=True), user)
    return {"ok": True}


@app.delete("/products/{product_id}")
def delete_product(product_id: str, user: Identity = Depends(require_staff), db: Database = Depends(get_db)):
    catalog.delete_product(db, product_id, user)
    return {"ok": True}


# ----------------------- Cart -----------------------
@app.get("/cart")
def get_cart(session_id: str = Query(...), storage: CartStorage = Depends(get_cart_storage)):
    return Cart.load(storage, session_id).to_dict()


@app.post("/cart/items")
def add_to_cart(body: AddToCartBody, storage: CartStorage = Depends(get_cart_storage), db: Database = Depends(get_db)):
    product = catalog.get_product(db, body.product_id)
    cart = Cart.load(storage, body.session_id)
    cart.add_item(product)
    return cart.to_dict()


@app.patch("/cart/items/{product_id}")
def change_quantity(product_id: str, body: ChangeQuantityBody, storage: CartStorage = Depends(get_cart_storage)):
    cart = Cart.load(storage, body.session_id)
    cart.change_quantity(product_id, body.delta)
    return cart.to_dict()


@app.delete("/cart/items/{product_id}")
def remove_from_cart(product_id: str, session_id: str = Query(...), storage: CartStorage = Depends(get_cart_storage)):
    cart = Cart.load(storage, session_id)
    cart.remove_item(product_id)
    return cart.to_dict()


@app.delete("/cart")
def clear_cart(session_id: str = Query(...), storage: CartStorage = Depends(get_cart_storage)):
    cart = Cart.load(storage, session_id)
    cart.clear()
    return cart.to_dict()


# ----------------------- Checkout -----------------------
@app.post("/checkout", status_code=201)
def checkout(body: CheckoutBody, user: Identity = Depends(get_current_user),
             storage: CartStorage = Depends(get_cart_storage),
             service: CheckoutService = Depends(get_checkout_service)):
    cart = Cart.load(storage, body.session_id)
    result = service.place_order(cart, body.shipping_info, body.payment_method, user)
    if result.retry_payment:
        message = f"Order saved but payment failed: {result.payment_error}. Please retry the payment."
    elif result.checkout_request_id:
        message = "M-Pesa prompt sent! Please enter your PIN on your phone."
    else:
        message = "Order placed successfully! Check your email for confirmation."
    return {
        "order_id": result.order_id,
        "status": result.status,
        "payment_status": result.payment_status,
        "subtotal": result.subtotal,
        "shipping_fee": result.shipping_fee,
        "total": result.total,
        "checkout_request_id": result.checkout_request_id,
        "payment_error": result.payment_error,
        "retry_payment": result.retry_payment,
        "message": message,
    }


# ----------------------- Orders -----------------------
@app.get("/orders")
def my_orders(user: Identity = Depends(get_current_user), orders: OrderService = Depends(get_order_service)):
    return orders.list_for_user(user.uid)


@app.get("/orders/{order_id}")
def get_order(order_id: str, user: Identity = Depends(get_current_user), orders: OrderService = Depends(get_order_service)):
    return orders.get_for(order_id, user)


@app.post("/orders/{order_id}/retry-payment")
def retry_payment(order_id: str, body: RetryPaymentBody, user: Identity = Depends(get_current_user),
                  service: CheckoutService = Depends(get_checkout_service)):
    initiation = service.retry_payment(order_id, user, phone=body.phone)
    return {"checkout_request_id": initiation.checkout_request_id, "message": initiation.message}


@app.put("/orders/{order_id}/status")
def set_order_status(order_id: str, body: StatusBody, user: Identity = Depends(require_staff),
                     orders: OrderService = Depends(get_order_service)):
    return orders.set_status(order_id, body.status, user, expected_status=body.expected_status)


@app.post("/payments/mpesa/callback")
def mpesa_callback(body: MpesaCallback, token: Optional[str] = None,
                   service: CheckoutService = Depends(get_checkout_service)):
    if config.MPESA_CALLBACK_TOKEN and token != config.MPESA_CALLBACK_TOKEN:
        raise Forbidden("Invalid callback token")
    service.confirm_payment(body.Body.stkCallback)
    return {"ResultCode": 0, "ResultDesc": "Accepted"}


# ----------------------- Vendors -----------------------
@app.post("/vendor/applications", status_code=201)
def submit_vendor_application(body: VendorApplicationBody, user: Identity = Depends(get_current_user),
                              db: Database = Depends(get_db)):
    application = VendorApplication(user_id=user.uid, email=user.email, **body.model_dump())
    return {"id": vendors.submit_application(db, application)}


@app.get("/vendor/applications/me")
def my_vendor_application(user: Identity = Depends(get_current_user), db: Database = Depends(get_db)):
    pending = vendors.pending_application_for(db, user.uid)
    return {"has_pending": pending is not None, "application": pending}


@app.get("/vendor/orders")
def vendor_orders(user: Identity = Depends(require_staff), orders: OrderService = Depends(get_order_service)):
    return orders.list_for_vendor(user.uid)


# ----------------------- Admin -----------------------
@app.get("/admin/orders")
def admin_orders(status: Optional[str] = None, user: Identity = Depends(require_admin),
                 orders: OrderService = Depends(get_order_service)):
    return orders.list_all(status)


@app.get("/admin/vendor-applications")
def admin_vendor_applications(status: Optional[str] = None, user: Identity = Depends(require_admin),
                              db: Database = Depends(get_db)):
    return vendors.list_applications(db, status)


@app.post("/admin/vendor-applications/{application_id}/approve")
def approve_vendor(application_id: str, user: Identity = Depends(require_admin), db: Database = Depends(get_db)):
    return vendors.approve_application(db, application_id, user)


@app.post("/admin/vendor-applications/{application_id}/reject")
def reject_vendor(application_id: str, body: RejectBody, user: Identity = Depends(require_admin),
                  db: Database = Depends(get_db)):
    return vendors.reject_application(db, application_id, user, body.reason)


@app.get("/admin/stats")
def admin_stats(user: Identity = Depends(require_admin), db: Database = Depends(get_db)):
    return order_stats(db)


# ----------------------- Seed Demo Data -----------------------
@app.post("/seed")
def seed(db: Database = Depends(get_db)):
    result = catalog.seed_products(db)
    # create admin user if none
    if db["user"].count_documents({"role": "admin"}) == 0:
        admin = UserSchema(name="Admin", email=config.ADMIN_EMAIL, password_hash=hash_password(config.ADMIN_PASSWORD),
                           role="admin")
        create_document(db, "user", admin)
    return result


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)

"""
Catalog reader and product maintenance.

Buyers only read; admins and vendors maintain products. A vendor may only
touch products carrying its own ``vendor_id``.
"""
import re
from typing import List, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError
from pymongo.database import Database

from auth import Identity
from database import create_document, now, serialize_doc, to_object_id
from errors import Forbidden, NotFound, ValidationError
from schemas import Product

logger = structlog.get_logger(__name__)

CATEGORIES = [
    {"id": "electronics", "name": "Electronics"},
    {"id": "fashion-apparel", "name": "Fashion & Apparel"},
    {"id": "home-garden", "name": "Home & Garden"},
    {"id": "sports-outdoors", "name": "Sports & Outdoors"},
    {"id": "health-beauty", "name": "Health & Beauty"},
    {"id": "books-media", "name": "Books & Media"},
    {"id": "toys-games", "name": "Toys & Games"},
    {"id": "grocery-food", "name": "Grocery & Food"},
    {"id": "baby-kids", "name": "Baby & Kids"},
    {"id": "jewelry-accessories", "name": "Jewelry & Accessories"},
    {"id": "cell-phones-accessories", "name": "Cell Phones & Accessories"},
    {"id": "furniture", "name": "Furniture"},
]


def list_categories() -> List[dict]:
    return list(CATEGORIES)


def list_products(db: Database, category: Optional[str] = None, q: Optional[str] = None,
                  featured: Optional[bool] = None, limit: int = 100) -> List[dict]:
    filt = {}
    if q:
        filt["name"] = {"$regex": re.escape(q), "$options": "i"}
    if category:
        filt["category"] = category
    if featured is not None:
        filt["featured"] = featured
    items = db["product"].find(filt).limit(limit)
    return [serialize_doc(i) for i in items]


def get_product(db: Database, product_id: str) -> dict:
    item = db["product"].find_one({"_id": to_object_id(product_id, "Product")})
    if not item:
        raise NotFound("Product not found")
    return serialize_doc(item)


def _check_owner(actor: Identity, product: dict):
    if actor.is_admin:
        return
    if actor.role == "vendor" and product.get("vendor_id") == actor.uid:
        return
    raise Forbidden("You do not have permission to perform this action.")


def create_product(db: Database, product: Product, actor: Identity) -> str:
    if actor.role == "vendor":
        product = product.model_copy(update={"vendor_id": actor.uid})
    elif not actor.is_admin:
        raise Forbidden("Admin or vendor only")
    pid = create_document(db, "product", product)
    logger.info("product_created", product_id=pid, actor=actor.uid)
    return pid


def update_product(db: Database, product_id: str, update: dict, actor: Identity):
    current = get_product(db, product_id)
    _check_owner(actor, current)
    update = {k: v for k, v in update.items() if v is not None}
    # Vendors cannot hand a product to someone else.
    update.pop("vendor_id", None)
    try:
        merged = Product(**{**current, **update})
    except PydanticValidationError as e:
        raise ValidationError(str(e.errors()[0].get("msg", "Invalid product")))
    fields = merged.model_dump(mode="json", include=set(update))
    fields["updated_at"] = now()
    db["product"].update_one({"_id": to_object_id(product_id, "Product")}, {"$set": fields})


def delete_product(db: Database, product_id: str, actor: Identity):
    current = get_product(db, product_id)
    _check_owner(actor, current)
    db["product"].delete_one({"_id": to_object_id(product_id, "Product")})
    logger.info("product_deleted", product_id=product_id, actor=actor.uid)


# ----------------------- Seed Demo Data -----------------------
DEMO_PRODUCTS = [
    {
        "name": "Pixel 7A",
        "description": "Powerful camera and smooth Android experience.",
        "price": 54999,
        "original_price": 59999,
        "category": "cell-phones-accessories",
        "rating": 4.4,
        "review_count": 18,
        "images": ["https://images.unsplash.com/photo-1511707171634-5f897ff02aa9"],
        "stock": 25,
        "featured": True,
    },
    {
        "name": "Noise Cancelling Headphones",
        "description": "Immerse in music with ANC.",
        "price": 19999,
        "category": "electronics",
        "rating": 4.7,
        "review_count": 42,
        "images": ["https://images.unsplash.com/photo-1518443248587-30bdc8f94f04"],
        "stock": 40,
        "featured": True,
    },
    {
        "name": "Casual Sneakers",
        "description": "Comfortable everyday wear.",
        "price": 4999,
        "category": "fashion-apparel",
        "rating": 4.2,
        "images": ["https://images.unsplash.com/photo-1525966222134-fcfa99b8ae77"],
        "stock": 50,
    },
    {
        "name": "Ceramic Mug",
        "description": "12oz matte finish mug.",
        "price": 850,
        "category": "home-garden",
        "rating": 4.8,
        "images": ["https://images.unsplash.com/photo-1525385133512-2f3bdd039054"],
        "stock": 3,
    },
]


def seed_products(db: Database) -> dict:
    if db["product"].count_documents({}) > 0:
        return {"seeded": False, "message": "Products already exist"}
    for p in DEMO_PRODUCTS:
        create_document(db, "product", Product(**p))
    return {"seeded": True, "products": db["product"].count_documents({})}

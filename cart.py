"""
Cart store.

A ``Cart`` belongs to one browsing session. It is an explicit object handed
to whoever needs it (the HTTP layer, the checkout) and is written back to
its ``CartStorage`` after every successful mutation. Rejected mutations raise
a ``StockError`` and leave the cart exactly as it was.
"""
from typing import Dict, List, Optional

import structlog
from pymongo.database import Database

from database import now
from errors import OutOfStock, StockExceeded
from schemas import CartItem

logger = structlog.get_logger(__name__)


class CartStorage:
    """Persists carts in the ``cart`` collection, one document per session."""

    def __init__(self, db: Database):
        self.collection = db["cart"]

    def load(self, session_id: str) -> List[CartItem]:
        doc = self.collection.find_one({"session_id": session_id})
        if not doc:
            return []
        return [CartItem(**it) for it in doc.get("items", [])]

    def save(self, session_id: str, items: List[CartItem]):
        self.collection.update_one(
            {"session_id": session_id},
            {"$set": {"items": [it.model_dump() for it in items], "updated_at": now()}},
            upsert=True,
        )

    def clear(self, session_id: str):
        self.save(session_id, [])


class Cart:
    def __init__(self, session_id: str, items: Optional[List[CartItem]] = None, storage: Optional[CartStorage] = None):
        self.session_id = session_id
        self.storage = storage
        self._lines: Dict[str, CartItem] = {it.product_id: it for it in items or []}

    @classmethod
    def load(cls, storage: CartStorage, session_id: str) -> "Cart":
        return cls(session_id, storage.load(session_id), storage)

    @property
    def items(self) -> List[CartItem]:
        return [it.model_copy() for it in self._lines.values()]

    def get(self, product_id: str) -> Optional[CartItem]:
        line = self._lines.get(product_id)
        return line.model_copy() if line else None

    @property
    def total(self) -> float:
        return round(sum(it.price * it.quantity for it in self._lines.values()), 2)

    @property
    def count(self) -> int:
        return sum(it.quantity for it in self._lines.values())

    def is_empty(self) -> bool:
        return not self._lines

    def add_item(self, product: dict) -> CartItem:
        """Add one unit of ``product`` (a serialized product document)."""
        name = product.get("name", "Product")
        stock = int(product.get("stock") or 0)
        if stock <= 0:
            logger.info("cart_out_of_stock", session_id=self.session_id, product_id=product["id"])
            raise OutOfStock("Product is out of stock")

        existing = self._lines.get(product["id"])
        if existing:
            new_quantity = existing.quantity + 1
            if new_quantity > stock:
                raise StockExceeded(f"Only {stock} {name}(s) available in stock")
            line = existing.model_copy(update={"quantity": new_quantity, "stock": stock})
        else:
            images = product.get("images") or []
            line = CartItem(
                product_id=product["id"],
                name=name,
                price=float(product.get("price", 0)),
                image=images[0] if images else None,
                vendor_id=product.get("vendor_id"),
                stock=stock,
                quantity=1,
            )
        self._lines[line.product_id] = line
        self.save()
        return line.model_copy()

    def remove_item(self, product_id: str):
        if self._lines.pop(product_id, None) is not None:
            self.save()

    def change_quantity(self, product_id: str, delta: int):
        line = self._lines.get(product_id)
        if line is None:
            return
        new_quantity = line.quantity + delta
        if new_quantity > line.stock:
            raise StockExceeded(f"Cannot increase quantity. Max available: {line.stock}")
        if new_quantity <= 0:
            del self._lines[product_id]
        else:
            self._lines[product_id] = line.model_copy(update={"quantity": new_quantity})
        self.save()

    def clear(self):
        self._lines = {}
        self.save()

    def save(self):
        if self.storage is not None:
            self.storage.save(self.session_id, list(self._lines.values()))

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "items": [it.model_dump() for it in self._lines.values()],
            "total": self.total,
            "count": self.count,
        }

"""
The cart: line items collected for one session before an order is placed.

A cart is an explicit value keyed by session id. ``CartService`` loads it
from the session store, applies one edit and writes it back; the order
lifecycle receives the cart as an argument when the order is submitted.
"""
import json
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

import catalog
import errors
from redis_client import CartStore

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


class CartLine(BaseModel):
    menu_item_id: int
    name: str
    price: Decimal
    quantity: int = 1
    line_total: Decimal = Decimal("0.00")

    def recalculate(self) -> None:
        self.line_total = to_money(self.price * self.quantity)


class Cart(BaseModel):
    session_id: str
    items: List[CartLine] = Field(default_factory=list)
    total: Decimal = Decimal("0.00")

    @property
    def is_empty(self) -> bool:
        return not self.items

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.items)

    def find(self, menu_item_id: int) -> Optional[CartLine]:
        for line in self.items:
            if line.menu_item_id == menu_item_id:
                return line
        return None

    def add(self, menu_item, quantity: int = 1) -> CartLine:
        """Add ``quantity`` of a catalog item, merging with an existing line.

        Name and price are copied from the catalog now; later price edits do
        not touch lines already in the cart.
        """
        if quantity < 1:
            raise errors.ValidationError("Quantity must be at least 1")

        line = self.find(menu_item.id)
        if line is not None:
            line.quantity += quantity
            line.recalculate()
        else:
            line = CartLine(
                menu_item_id=menu_item.id,
                name=menu_item.name,
                price=to_money(menu_item.price),
                quantity=quantity,
            )
            line.recalculate()
            self.items.append(line)

        self.recalculate()
        return line

    def remove(self, menu_item_id: int) -> bool:
        line = self.find(menu_item_id)
        if line is None:
            return False
        self.items.remove(line)
        self.recalculate()
        return True

    def adjust(self, menu_item_id: int, delta: int) -> Optional[CartLine]:
        """Change a line's quantity by ``delta``; at zero or below the line goes."""
        line = self.find(menu_item_id)
        if line is None:
            raise errors.NotFound("Item is not in the cart")

        line.quantity += delta
        if line.quantity <= 0:
            self.items.remove(line)
            line = None
        else:
            line.recalculate()

        self.recalculate()
        return line

    def clear(self) -> None:
        self.items = []
        self.recalculate()

    def recalculate(self) -> None:
        self.total = to_money(sum((line.line_total for line in self.items), Decimal("0")))

    def to_blob(self) -> str:
        return json.dumps(self.dict(), default=str)

    @classmethod
    def from_blob(cls, blob: str) -> "Cart":
        return cls(**json.loads(blob))


class CartService:
    """Cart edits for one request, backed by the session store."""

    def __init__(self, db: Session, store: CartStore):
        self.db = db
        self.store = store

    def load(self, session_id: str) -> Cart:
        blob = self.store.get(session_id)
        if not blob:
            return Cart(session_id=session_id)
        try:
            return Cart.from_blob(blob)
        except (ValueError, TypeError) as e:
            # Unreadable blob: start over rather than block the session until it expires
            logger.warning(f"Cart {session_id} could not be read ({e}); starting an empty cart")
            return Cart(session_id=session_id)

    def save(self, cart: Cart) -> Cart:
        self.store.set(cart.session_id, cart.to_blob())
        return cart

    def add_item(self, session_id: str, menu_item_id: int, quantity: int = 1) -> Cart:
        menu_item = catalog.get_available_item(self.db, menu_item_id)
        cart = self.load(session_id)
        cart.add(menu_item, quantity)
        logger.debug(f"Cart {session_id}: added {quantity} x {menu_item.name}")
        return self.save(cart)

    def remove_item(self, session_id: str, menu_item_id: int) -> Cart:
        cart = self.load(session_id)
        cart.remove(menu_item_id)
        return self.save(cart)

    def adjust_quantity(self, session_id: str, menu_item_id: int, delta: int) -> Cart:
        cart = self.load(session_id)
        cart.adjust(menu_item_id, delta)
        return self.save(cart)

    def clear(self, session_id: str) -> Cart:
        cart = self.load(session_id)
        cart.clear()
        return self.save(cart)

    def discard(self, session_id: str) -> None:
        self.store.remove(session_id)

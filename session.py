"""
Per-request session context: the signed-in user and their cart.

Built by the API layer and handed to the controllers explicitly.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from errors import PreconditionError


class Cart:
    """Quantity per product id, in the order products were first added."""

    def __init__(self, items=None):
        self._items: Dict[int, int] = {}
        for it in items or []:
            self.add(int(it["product_id"]), int(it.get("quantity", 1)))

    def __len__(self):
        return len(self._items)

    @property
    def is_empty(self) -> bool:
        return not self._items

    def add(self, product_id: int, quantity: int = 1):
        if quantity < 1:
            raise PreconditionError("Invalid Quantity", "Quantity must be at least 1.")
        self._items[product_id] = self._items.get(product_id, 0) + quantity

    def set_quantity(self, product_id: int, quantity: int):
        if quantity < 1:
            self.remove(product_id)
        else:
            self._items[product_id] = quantity

    def remove(self, product_id: int):
        self._items.pop(product_id, None)

    def clear(self):
        self._items.clear()

    def items(self) -> List[Tuple[int, int]]:
        return list(self._items.items())

    def to_documents(self) -> List[dict]:
        return [{"product_id": pid, "quantity": qty} for pid, qty in self._items.items()]


@dataclass
class SessionContext:
    user_id: str
    cart: Cart = field(default_factory=Cart)
    token: str = ""

# terminal/services/cart.py

"""
CART MODEL (IN-MEMORY)

Purpose:
- Ordered POS cart for ONE till session; never persisted.
- One line per product (keyed by product id).
- Totals are recomputed on every call (no cached state).

Rules:
- quantity >= 1 on every line.
- update_quantity() never removes a line: results below 1 are floored at 1.
  Removing is explicit (remove_item).
- No stock checks here: the backend is the authority at sale creation.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal

from terminal.services.money import ZERO, money
from terminal.services.payloads import CatalogProduct


@dataclass
class CartLine:
    product_id: str
    name: str
    unit_price: Decimal
    quantity: int = 1

    @property
    def line_total(self) -> Decimal:
        return money(self.unit_price * Decimal(int(self.quantity)))


class Cart:
    def __init__(self):
        # dict keeps insertion order: lines render in the order they were added
        self._lines: dict[str, CartLine] = {}

    def __len__(self) -> int:
        return len(self._lines)

    def __contains__(self, product_id) -> bool:
        return str(product_id) in self._lines

    @property
    def is_empty(self) -> bool:
        return not self._lines

    def add_item(self, product: CatalogProduct) -> CartLine:
        line = self._lines.get(product.id)
        if line is not None:
            line.quantity += 1
            return line

        line = CartLine(
            product_id=product.id,
            name=product.name,
            unit_price=money(product.unit_price),
            quantity=1,
        )
        self._lines[product.id] = line
        return line

    def update_quantity(self, product_id, delta: int) -> CartLine | None:
        line = self._lines.get(str(product_id))
        if line is None:
            return None

        line.quantity = max(1, line.quantity + int(delta))
        return line

    def remove_item(self, product_id) -> bool:
        return self._lines.pop(str(product_id), None) is not None

    def clear(self) -> None:
        self._lines.clear()

    def get(self, product_id) -> CartLine | None:
        return self._lines.get(str(product_id))

    def lines(self) -> list[CartLine]:
        return list(self._lines.values())

    def snapshot(self) -> tuple[CartLine, ...]:
        """Detached copies; later cart mutations do not leak into the invoice."""
        return tuple(replace(line) for line in self._lines.values())

    def item_count(self) -> int:
        return sum(line.quantity for line in self._lines.values())

    def total(self) -> Decimal:
        return money(sum((line.line_total for line in self._lines.values()), ZERO))

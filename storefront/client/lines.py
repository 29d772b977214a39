# storefront/client/lines.py
"""Czyste operacje na liscie pozycji koszyka, uzywane do optimistic update."""
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Sequence

from storefront.domain.schemas import CartLine, ProductSnapshot


def temp_line_id() -> str:
    return f"tmp-{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class CartSnapshot:
    """Stan koszyka sprzed mutacji, przywracany przy rollbacku."""

    lines: tuple[CartLine, ...]

    @classmethod
    def capture(cls, lines: Iterable[CartLine]) -> "CartSnapshot":
        return cls(tuple(lines))

    def restore(self) -> list[CartLine]:
        return list(self.lines)


def find_line(lines: Sequence[CartLine], product_id: str, selected_color: str | None = None, *, any_color: bool = False):
    for line in lines:
        if any_color and line.product.id == product_id:
            return line
        if line.key == (product_id, selected_color):
            return line
    return None


def add_line(
    lines: Sequence[CartLine],
    product: ProductSnapshot,
    quantity: int,
    selected_color: str | None,
) -> list[CartLine]:
    now = datetime.now(timezone.utc)
    existing = find_line(lines, product.id, selected_color)

    if existing is None:
        return [
            *lines,
            CartLine(
                line_id=temp_line_id(),
                product=product,
                quantity=quantity,
                selected_color=selected_color,
                created_at=now,
                updated_at=now,
            ),
        ]

    return [
        line.model_copy(update={"quantity": line.quantity + quantity, "updated_at": now})
        if line is existing
        else line
        for line in lines
    ]


def set_quantity(lines: Sequence[CartLine], product_id: str, quantity: int) -> list[CartLine]:
    now = datetime.now(timezone.utc)
    return [
        line.model_copy(update={"quantity": quantity, "updated_at": now})
        if line.product.id == product_id
        else line
        for line in lines
    ]


def remove_lines(
    lines: Sequence[CartLine],
    product_id: str,
    selected_color: str | None = None,
    line_id: str | None = None,
) -> list[CartLine]:
    # line_id jest rozstrzygajace, bez niego dokladne dopasowanie (produkt, kolor)
    if line_id:
        return [line for line in lines if line.line_id != line_id]
    return [line for line in lines if line.key != (product_id, selected_color)]


def total_items(lines: Iterable[CartLine]) -> int:
    return sum(line.quantity for line in lines)


def total_price(lines: Iterable[CartLine]) -> Decimal:
    return sum((line.product.price * line.quantity for line in lines), Decimal("0.00"))

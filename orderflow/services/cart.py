"""
Cart Item Assembly

Builds cart lines from a catalog Product plus option selections in its
choice groups, validates them, prices them, and turns them into the
immutable item snapshots stored on an order.

Selection rules:
    - Selecting an already selected option deselects it
    - Groups with max == 1 are single-select (new choice replaces the old)
    - Groups with max > 1 accept additions up to max; extra picks are ignored

A line is valid when every group with min > 0 has at least min selections.
"""

import copy
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from orderflow.core.exceptions import ValidationError


@dataclass(frozen=True)
class Option:
    id: str
    name: str
    price: float = 0.0


@dataclass(frozen=True)
class ChoiceGroup:
    id: str
    name: str
    min: int = 0
    max: int = 1
    options: tuple[Option, ...] = ()

    def get_option(self, option_id: str) -> Option:
        for option in self.options:
            if option.id == option_id:
                return option
        raise ValidationError(
            f"Option {option_id} does not belong to '{self.name}'",
            fields=["selections"],
        )


@dataclass(frozen=True)
class Product:
    id: str
    name: str
    price: float
    promotional_price: Optional[float] = None
    choices: tuple[ChoiceGroup, ...] = ()

    @property
    def unit_price(self) -> float:
        if self.promotional_price is not None:
            return self.promotional_price
        return self.price

    def get_group(self, group_id: str) -> ChoiceGroup:
        for group in self.choices:
            if group.id == group_id:
                return group
        raise ValidationError(
            f"Choice group {group_id} does not belong to '{self.name}'",
            fields=["selections"],
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Product":
        """Build a product from the catalog's JSON shape."""
        return cls(
            id=str(data["id"]),
            name=data["name"],
            price=float(data["price"]),
            promotional_price=(
                float(data["promotional_price"])
                if data.get("promotional_price") is not None else None
            ),
            choices=tuple(
                ChoiceGroup(
                    id=str(group["id"]),
                    name=group["name"],
                    min=int(group.get("min", 0)),
                    max=int(group.get("max", 1)),
                    options=tuple(
                        Option(
                            id=str(opt["id"]),
                            name=opt["name"],
                            price=float(opt.get("price", 0)),
                        )
                        for opt in group.get("options", [])
                    ),
                )
                for group in data.get("choices", [])
            ),
        )


@dataclass
class CartLine:
    """One configurable line in a cart."""
    product: Product
    quantity: int = 1
    notes: str = ""
    selections: dict[str, list[Option]] = field(default_factory=dict)
    line_id: str = field(default_factory=lambda: uuid.uuid4().hex[:9])

    def __post_init__(self):
        if self.quantity < 1:
            raise ValidationError("Quantity must be at least 1", fields=["quantity"])

    def toggle(self, group_id: str, option_id: str) -> None:
        group = self.product.get_group(group_id)
        option = group.get_option(option_id)
        current = self.selections.get(group_id, [])

        if any(o.id == option.id for o in current):
            self.selections[group_id] = [o for o in current if o.id != option.id]
            return

        if group.max == 1:
            self.selections[group_id] = [option]
            return

        if len(current) >= group.max:
            return

        self.selections[group_id] = [*current, option]

    def selected_options(self) -> list[Option]:
        return [option for options in self.selections.values() for option in options]

    def missing_groups(self) -> list[str]:
        """Names of required groups that do not have enough selections yet."""
        return [
            group.name
            for group in self.product.choices
            if group.min > 0 and len(self.selections.get(group.id, [])) < group.min
        ]

    def is_valid(self) -> bool:
        return not self.missing_groups()

    @property
    def unit_price(self) -> float:
        return self.product.unit_price + sum(o.price for o in self.selected_options())

    @property
    def total_price(self) -> float:
        base = self.product.unit_price * self.quantity
        extras = sum(o.price for o in self.selected_options()) * self.quantity
        return round(base + extras, 2)

    def reopen(self) -> "CartLine":
        """Editable copy that starts from this line's selections."""
        return CartLine(
            product=self.product,
            quantity=self.quantity,
            notes=self.notes,
            selections=copy.deepcopy(self.selections),
            line_id=self.line_id,
        )

    def to_order_item(self) -> dict[str, Any]:
        """Snapshot stored on the order; never a reference to the catalog."""
        if not self.is_valid():
            raise ValidationError(
                f"'{self.product.name}' is missing required choices",
                fields=self.missing_groups(),
            )

        lines = [self.notes] if self.notes else []
        for option in self.selected_options():
            suffix = f" (R$ {option.price:.2f})" if option.price > 0 else ""
            lines.append(f"+ {option.name}{suffix}")

        return {
            "product_name": self.product.name,
            "quantity": self.quantity,
            "notes": "\n".join(lines) or None,
            "price": round(self.unit_price, 2),
            "total_price": self.total_price,
        }


class Cart:
    """Ordered collection of cart lines."""

    def __init__(self):
        self.lines: list[CartLine] = []

    def add(self, line: CartLine) -> CartLine:
        self.lines.append(line)
        return line

    def replace(self, line: CartLine) -> None:
        """Put an edited line (from ``reopen``) back in its original slot."""
        for index, existing in enumerate(self.lines):
            if existing.line_id == line.line_id:
                self.lines[index] = line
                return
        raise ValidationError(f"Cart line {line.line_id} not found")

    def remove(self, line_id: str) -> None:
        self.lines = [line for line in self.lines if line.line_id != line_id]

    def update_quantity(self, line_id: str, delta: int) -> None:
        for line in self.lines:
            if line.line_id == line_id:
                line.quantity = max(1, line.quantity + delta)

    @property
    def total(self) -> float:
        return round(sum(line.total_price for line in self.lines), 2)

    def clear(self) -> None:
        self.lines = []

    def to_order_items(self) -> list[dict[str, Any]]:
        if not self.lines:
            raise ValidationError("Cart is empty", fields=["items"])
        return [line.to_order_item() for line in self.lines]

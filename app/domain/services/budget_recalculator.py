"""
Budget Line Recalculator - derived-value bookkeeping for budget line items.

Keeps three relationships true whenever a quantity, production rate (PX)
or hours value is edited:
- converted_qty = unconverted_qty x conversion_factor (leaf items)
- hours = converted_qty x production_rate (leaf items)
- parent quantity and hours = sum over its children

Values are carried at full precision through a cascade and rounded once,
when an item is handed back for storage. Parent aggregates are summed from
the child values as they will be stored, so a parent always equals the
rounded sum of its stored children.

The recalculator never touches the store. It returns the items to write,
in write order, and a validation error when the edit is rejected.
"""
import logging
import math
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, List, Optional, Sequence

from app.domain.entities.budget_line_item import BudgetLineItem
from app.domain.exceptions import ChildEditNotAllowedError, ValidationError

logger = logging.getLogger(__name__)


def coerce_number(value) -> float:
    """
    Parse user input permissively.

    Handles:
        "150"      -> 150.0
        " 1,250.5" -> 1250.5
        "", None   -> 0.0
        "abc"      -> 0.0
        NaN, inf   -> 0.0
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip().replace(",", "")
        if text == "":
            return 0.0
        try:
            number = float(text)
        except ValueError:
            return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def coerce_non_negative(value) -> float:
    """coerce_number, with negatives treated as invalid (0)."""
    number = coerce_number(value)
    return number if number > 0 else 0.0


def round_value(value: float, places: int = 2) -> float:
    """Round half up to a fixed number of places, the way stored values are shown."""
    try:
        quantum = Decimal(1).scaleb(-places)
        rounded = Decimal(repr(float(value))).quantize(quantum, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError, TypeError):
        return 0.0
    result = float(rounded)
    return 0.0 if result == 0 else result


def safe_divide(numerator: float, denominator: float, tolerance: float = 1e-9) -> float:
    """Division that yields 0 for zero or near-zero denominators."""
    if denominator is None or abs(denominator) <= tolerance:
        return 0.0
    return numerator / denominator


@dataclass
class RecalculationResult:
    """
    Outcome of one edit.

    Attributes:
        item_id: Item the user edited
        updates: Items to write, in order (edited item or parent first)
        error: Set when the edit was rejected; updates is then empty
    """

    item_id: Optional[int]
    updates: List[BudgetLineItem] = field(default_factory=list)
    error: Optional[ValidationError] = None

    @property
    def applied(self) -> bool:
        return self.error is None

    def updated(self, item_id: int) -> Optional[BudgetLineItem]:
        """The pending update for item_id, if this result touches it."""
        for item in self.updates:
            if item.id == item_id:
                return item
        return None

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "applied": self.applied,
            "error": self.error.to_dict() if self.error else None,
            "updates": [item.to_dict() for item in self.updates],
        }


class BudgetLineRecalculator:
    """
    Recomputes derived values for an edited line item and its relatives.

    Every operation takes the edited item and the other items of the same
    location (used to find the parent or the children).
    """

    def __init__(self, decimal_places: int = 2, zero_tolerance: float = 1e-9):
        self.decimal_places = decimal_places
        self.zero_tolerance = zero_tolerance

    def _round(self, value: float) -> float:
        return round_value(value, self.decimal_places)

    # =========================================================================
    # Hierarchy lookups
    # =========================================================================

    @staticmethod
    def find_parent(item: BudgetLineItem, items: Iterable[BudgetLineItem]) -> Optional[BudgetLineItem]:
        """Parent of a child item, by parent_id first, then by line number."""
        if not item.is_child:
            return None
        items = list(items)
        if item.parent_id is not None:
            for candidate in items:
                if candidate.id == item.parent_id:
                    return candidate
        for candidate in items:
            if not candidate.is_child and candidate.line_item_number.strip() == item.parent_line_number:
                return candidate
        return None

    @staticmethod
    def find_children(item: BudgetLineItem, items: Iterable[BudgetLineItem]) -> List[BudgetLineItem]:
        return item.children_in(items)

    # =========================================================================
    # Quantity
    # =========================================================================

    def on_quantity_change(
        self,
        item: BudgetLineItem,
        new_unconverted_qty,
        items: Sequence[BudgetLineItem] = (),
    ) -> RecalculationResult:
        """
        Apply a new raw quantity.

        Leaf: converted_qty and hours follow from the new quantity. If the
        item is a child its parent is re-aggregated with the new child value.

        Parent with children: quantity is owned by the children, so the typed
        value is ignored and the parent aggregates are re-synchronised.
        """
        children = self.find_children(item, items)
        if children:
            logger.info(
                f"Quantity edit on parent {item.line_item_number} ignored; "
                f"re-aggregating {len(children)} children"
            )
            return RecalculationResult(
                item_id=item.id,
                updates=[self.aggregate_parent(item, children)],
            )

        qty = coerce_non_negative(new_unconverted_qty)
        converted_qty = qty * coerce_number(item.conversion_factor)
        hours = converted_qty * coerce_number(item.production_rate)

        updated = item.copy(
            unconverted_qty=self._round(qty),
            converted_qty=self._round(converted_qty),
            hours=self._round(hours),
        )
        result = RecalculationResult(item_id=item.id, updates=[updated])

        if updated.is_child:
            parent = self.find_parent(item, items)
            if parent is None:
                logger.warning(
                    f"Child {item.line_item_number} has no parent "
                    f"{item.parent_line_number}; nothing to re-aggregate"
                )
            else:
                siblings = [
                    updated if self._same_item(child, item) else child
                    for child in self.find_children(parent, items)
                ]
                if not any(self._same_item(child, item) for child in siblings):
                    siblings.append(updated)
                result.updates.append(self.aggregate_parent(parent, siblings))

        return result

    # =========================================================================
    # Production rate
    # =========================================================================

    def on_production_rate_change(
        self,
        item: BudgetLineItem,
        new_px,
        items: Sequence[BudgetLineItem] = (),
    ) -> RecalculationResult:
        """
        Apply a new production rate.

        Rejected on child items. On a parent with children the rate is
        pushed to every child.
        """
        if item.is_child:
            return self._reject(item, "production_rate")

        px = coerce_non_negative(new_px)
        children = self.find_children(item, items)
        if children:
            return RecalculationResult(
                item_id=item.id,
                updates=self._cascade_rate(item, children, px),
            )

        updated = item.copy(
            production_rate=self._round(px),
            hours=self._round(coerce_number(item.converted_qty) * px),
        )
        return RecalculationResult(item_id=item.id, updates=[updated])

    def _cascade_rate(
        self,
        parent: BudgetLineItem,
        children: Sequence[BudgetLineItem],
        px: float,
    ) -> List[BudgetLineItem]:
        """Push px to every child, then set the parent to the child sums."""
        stored_px = self._round(px)
        new_children = [
            child.copy(
                production_rate=stored_px,
                hours=self._round(coerce_number(child.converted_qty) * px),
            )
            for child in children
        ]
        new_parent = self.aggregate_parent(parent, new_children).copy(production_rate=stored_px)
        logger.debug(
            f"PX {stored_px} pushed from {parent.line_item_number} to "
            f"{len(new_children)} children; parent hours {new_parent.hours}"
        )
        return [new_parent] + new_children

    # =========================================================================
    # Hours
    # =========================================================================

    def on_hours_change(
        self,
        item: BudgetLineItem,
        new_hours,
        items: Sequence[BudgetLineItem] = (),
    ) -> RecalculationResult:
        """
        Apply a new hours value.

        Leaf: PX is back-solved as hours / converted_qty; with no converted
        quantity PX is left alone and only hours is stored.

        Parent with children: PX is back-solved against the summed child
        quantity and cascaded. The parent ends with the actual sum of the
        recomputed child hours, which can differ from the typed value.
        """
        if item.is_child:
            return self._reject(item, "hours")

        hours = coerce_non_negative(new_hours)
        children = self.find_children(item, items)

        if children:
            parent_qty = sum(coerce_number(child.converted_qty) for child in children)
            if abs(parent_qty) <= self.zero_tolerance:
                logger.info(
                    f"Parent {item.line_item_number} has no converted quantity; "
                    f"hours stay at the child sum"
                )
                return RecalculationResult(
                    item_id=item.id,
                    updates=[self.aggregate_parent(item, children)],
                )
            px = safe_divide(hours, parent_qty, self.zero_tolerance)
            return RecalculationResult(
                item_id=item.id,
                updates=self._cascade_rate(item, children, px),
            )

        converted_qty = coerce_number(item.converted_qty)
        if converted_qty > self.zero_tolerance:
            updated = item.copy(
                hours=self._round(hours),
                production_rate=self._round(safe_divide(hours, converted_qty, self.zero_tolerance)),
            )
        else:
            updated = item.copy(hours=self._round(hours))
        return RecalculationResult(item_id=item.id, updates=[updated])

    # =========================================================================
    # Helpers
    # =========================================================================

    def aggregate_parent(
        self,
        parent: BudgetLineItem,
        children: Sequence[BudgetLineItem],
    ) -> BudgetLineItem:
        """Parent quantity = converted quantity = sum of children; hours likewise."""
        converted_qty = self._round(sum(coerce_number(c.converted_qty) for c in children))
        hours = self._round(sum(coerce_number(c.hours) for c in children))
        return parent.copy(
            unconverted_qty=converted_qty,
            converted_qty=converted_qty,
            hours=hours,
        )

    def _reject(self, item: BudgetLineItem, field_name: str) -> RecalculationResult:
        error = ChildEditNotAllowedError(field_name, item.line_item_number)
        logger.info(f"Rejected {field_name} edit on child {item.line_item_number}")
        return RecalculationResult(item_id=item.id, updates=[], error=error)

    @staticmethod
    def _same_item(a: BudgetLineItem, b: BudgetLineItem) -> bool:
        if a.id is not None and b.id is not None:
            return a.id == b.id
        return a.line_item_number.strip() == b.line_item_number.strip()

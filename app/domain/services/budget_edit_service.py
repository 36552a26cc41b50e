"""
Budget Edit Service - applies line-item edits to the item store.

Each edit is computed by BudgetLineRecalculator, then every updated item
is written and committed on its own. Cross-item writes are NOT atomic:
when a later write fails, earlier ones stay committed and the caller gets
a PersistenceError listing what was written. The next full read shows the
store as it is.
"""
import logging
from typing import Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import get_config
from app.domain.entities.budget_line_item import BudgetLineItem
from app.domain.exceptions import DuplicateLineItemError, PersistenceError
from app.domain.services.budget_recalculator import (
    BudgetLineRecalculator,
    RecalculationResult,
    coerce_number,
    round_value,
)
from app.infrastructure.repositories import BudgetItemRepository, LocationRepository

logger = logging.getLogger(__name__)


QUANTITY = "quantity"
PRODUCTION_RATE = "production_rate"
HOURS = "hours"
EDIT_KINDS = (QUANTITY, PRODUCTION_RATE, HOURS)


class BudgetEditService:
    """
    Service for editing budget line items.

    Usage:
        service = BudgetEditService(db)
        result = service.change_quantity(item_id, "150")
        if not result.applied:
            show(result.error.message)
    """

    def __init__(self, session: Session, recalculator: Optional[BudgetLineRecalculator] = None):
        self.session = session
        self.item_repo = BudgetItemRepository(session)
        self.location_repo = LocationRepository(session)
        if recalculator is None:
            config = get_config()
            recalculator = BudgetLineRecalculator(
                decimal_places=config.decimal_places,
                zero_tolerance=config.zero_tolerance,
            )
        self.recalculator = recalculator

    def _operation(self, kind: str) -> Callable[..., RecalculationResult]:
        operations: Dict[str, Callable[..., RecalculationResult]] = {
            QUANTITY: self.recalculator.on_quantity_change,
            PRODUCTION_RATE: self.recalculator.on_production_rate_change,
            HOURS: self.recalculator.on_hours_change,
        }
        if kind not in operations:
            raise ValueError(f"Unknown edit kind '{kind}'; expected one of {EDIT_KINDS}")
        return operations[kind]

    # =========================================================================
    # Recalculation
    # =========================================================================

    def preview(self, kind: str, item_id: int, value) -> RecalculationResult:
        """
        Compute an edit without writing anything.

        Raises:
            BudgetItemNotFoundError: If the item does not exist
        """
        item = self.item_repo.get(item_id)
        items = self.item_repo.read(item.location_id)
        return self._operation(kind)(item, value, items)

    def family_of(self, item: BudgetLineItem) -> List[BudgetLineItem]:
        """
        Every item an edit on item can touch: its parent (or itself) and
        all children of that parent.
        """
        head = item.parent_line_number or item.line_item_number.strip()
        return [
            other for other in self.item_repo.read(item.location_id)
            if other.line_item_number.strip() == head or other.parent_line_number == head
        ]

    def apply(self, result: RecalculationResult) -> RecalculationResult:
        """
        Write every update of a result, one commit per item.

        Rejected results are returned untouched.

        Raises:
            PersistenceError: A write failed; earlier writes are kept
        """
        if not result.applied:
            return result

        written: List[int] = []
        for item in result.updates:
            try:
                self.item_repo.write(item.id, item)
                self.session.commit()
            except SQLAlchemyError as e:
                self.session.rollback()
                logger.error(
                    f"Write of line item {item.line_item_number} (id={item.id}) failed "
                    f"after {len(written)} of {len(result.updates)} writes: {e}"
                )
                raise PersistenceError(item.id, str(e), written_ids=written)
            written.append(item.id)

        logger.info(f"Edit on item {result.item_id} wrote {len(written)} line items")
        return result

    def edit(self, kind: str, item_id: int, value) -> RecalculationResult:
        return self.apply(self.preview(kind, item_id, value))

    def change_quantity(self, item_id: int, value) -> RecalculationResult:
        return self.edit(QUANTITY, item_id, value)

    def change_production_rate(self, item_id: int, value) -> RecalculationResult:
        return self.edit(PRODUCTION_RATE, item_id, value)

    def change_hours(self, item_id: int, value) -> RecalculationResult:
        return self.edit(HOURS, item_id, value)

    # =========================================================================
    # Create / replace / delete
    # =========================================================================

    def _derive_leaf_values(self, item: BudgetLineItem) -> BudgetLineItem:
        qty = coerce_number(item.unconverted_qty)
        converted_qty = qty * coerce_number(item.conversion_factor)
        hours = converted_qty * coerce_number(item.production_rate)
        return item.copy(
            unconverted_qty=round_value(qty),
            converted_qty=round_value(converted_qty),
            hours=round_value(hours),
        )

    def _reaggregate_parent_of(self, location_id: int, line_item_number: str) -> Optional[BudgetLineItem]:
        """
        Bring a parent back in line with its current children.

        line_item_number may name the parent itself or one of its children.
        """
        target = BudgetLineItem(location_id=location_id, line_item_number=line_item_number)
        items = self.item_repo.read(location_id)
        if target.is_child:
            parent = self.recalculator.find_parent(target, items)
        else:
            parent = next((i for i in items if i.line_item_number == target.line_item_number), None)
        if parent is None:
            return None
        children = self.recalculator.find_children(parent, items)
        if not children:
            return None
        updated = self.recalculator.aggregate_parent(parent, children)
        return self.item_repo.write(parent.id, updated)

    def create_item(self, location_id: int, item: BudgetLineItem,
                    calculate_costs: bool = False) -> BudgetLineItem:
        """
        Add a line item to a location.

        Derived quantity and hours are computed from the raw inputs. With
        calculate_costs the spreadsheet cost formulas are applied as well.
        A new child re-aggregates its parent.

        Raises:
            LocationNotFoundError: If the location does not exist
            DuplicateLineItemError: If the line number is taken
        """
        from app.modules.budget_import import calculate_budget_formulas

        self.location_repo.get(location_id)
        number = (item.line_item_number or "").strip()
        if self.item_repo.find_by_number(location_id, number):
            raise DuplicateLineItemError(number, location_id)

        item = item.copy(line_item_number=number, location_id=location_id)
        if calculate_costs:
            item = calculate_budget_formulas(item)
        else:
            item = self._derive_leaf_values(item)

        created = self.item_repo.create(location_id, item)
        if not created.is_child:
            self.item_repo.resolve_parents(location_id)
        self._reaggregate_parent_of(location_id, number)
        self.session.commit()
        logger.info(f"Created line item {number} in location {location_id}")
        return self.item_repo.get(created.id)

    def replace_item(self, item_id: int, item: BudgetLineItem) -> BudgetLineItem:
        """Full replace of an item's fields (last write wins)."""
        current = self.item_repo.get(item_id)
        number = (item.line_item_number or "").strip()
        if number != current.line_item_number:
            other = self.item_repo.find_by_number(current.location_id, number)
            if other is not None and other.id != item_id:
                raise DuplicateLineItemError(number, current.location_id)
        saved = self.item_repo.write(item_id, item.copy(id=item_id))
        self.session.commit()
        return saved

    def delete_item(self, item_id: int) -> None:
        """Delete one item; a deleted child re-aggregates its parent."""
        item = self.item_repo.get(item_id)
        self.item_repo.delete(item_id)
        self._reaggregate_parent_of(item.location_id, item.line_item_number)
        self.session.commit()
        logger.info(f"Deleted line item {item.line_item_number} from location {item.location_id}")

    # =========================================================================
    # Import
    # =========================================================================

    def import_items(self, location_id: int, items: List[BudgetLineItem],
                     replace: bool = False) -> List[BudgetLineItem]:
        """
        Store imported candidates in one transaction.

        Rows whose line number already exists are skipped with a warning.
        Parent links are resolved after every row is in.
        """
        self.location_repo.get(location_id)
        if replace:
            removed = self.item_repo.delete_by_location(location_id)
            logger.info(f"Removed {removed} existing line items from location {location_id}")

        seen = set()
        created = []
        for item in items:
            number = (item.line_item_number or "").strip()
            if number in seen or self.item_repo.find_by_number(location_id, number):
                logger.warning(f"Skipping duplicate line item {number} in location {location_id}")
                continue
            seen.add(number)
            created.append(self.item_repo.create(location_id, item.copy(line_item_number=number)))

        self.item_repo.resolve_parents(location_id)
        self.session.commit()
        logger.info(f"Imported {len(created)} line items into location {location_id}")
        return created

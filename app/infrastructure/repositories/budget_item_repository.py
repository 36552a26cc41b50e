"""
Budget Item Repository - Data access layer for budget line items.

Implements the item store used by the recalculation services:
- read(location_id) -> items of a location, in line-number order
- write(item_id, item) -> full replace of an item's editable fields
- create(location_id, item) -> new item, parent link resolved
- delete(item_id)

Rows are exchanged as BudgetLineItem domain entities. Nothing here
commits; callers decide the transaction boundaries.
"""
import logging
import re
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from app.models import BudgetLineItemEntity
from app.domain.entities.budget_line_item import BudgetLineItem, parent_number_of
from app.domain.exceptions import BudgetItemNotFoundError
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


def line_number_sort_key(line_item_number: str) -> tuple:
    """
    Natural sort key for dotted line numbers.

    "2" < "10", "15" < "15.1" < "15.2" < "15.10" < "16".
    """
    key = []
    for part in re.split(r"\.", (line_item_number or "").strip()):
        if part.isdigit():
            key.append((0, int(part), ""))
        else:
            key.append((1, 0, part))
    return tuple(key)


class BudgetItemRepository(BaseRepository[BudgetLineItemEntity]):
    """Repository for budget line items."""

    def __init__(self, session: Session):
        super().__init__(session, BudgetLineItemEntity)

    def exists(self, **criteria) -> bool:
        """Check if a line item matching the criteria exists."""
        return self.count(**criteria) > 0

    # =========================================================================
    # Reads
    # =========================================================================

    def list_entities(self, location_id: int) -> List[BudgetLineItemEntity]:
        rows = self.session.query(BudgetLineItemEntity).filter(
            BudgetLineItemEntity.location_id == location_id
        ).all()
        return sorted(rows, key=lambda r: line_number_sort_key(r.line_item_number))

    def read(self, location_id: int) -> List[BudgetLineItem]:
        """All items of a location as domain entities, in line-number order."""
        return [BudgetLineItem.from_model(row) for row in self.list_entities(location_id)]

    def get_entity(self, item_id: int) -> BudgetLineItemEntity:
        """
        Get a row or raise.

        Raises:
            BudgetItemNotFoundError: If no such item
        """
        row = self.get_by_id(item_id)
        if not row:
            raise BudgetItemNotFoundError(item_id)
        return row

    def get(self, item_id: int) -> BudgetLineItem:
        return BudgetLineItem.from_model(self.get_entity(item_id))

    def find_by_number(self, location_id: int, line_item_number: str) -> Optional[BudgetLineItemEntity]:
        return self.session.query(BudgetLineItemEntity).filter(
            BudgetLineItemEntity.location_id == location_id,
            BudgetLineItemEntity.line_item_number == (line_item_number or "").strip(),
        ).first()

    def _resolve_parent_id(self, location_id: int, line_item_number: str) -> Optional[int]:
        parent_number = parent_number_of(line_item_number)
        if parent_number is None:
            return None
        parent = self.find_by_number(location_id, parent_number)
        return parent.id if parent else None

    # =========================================================================
    # Writes
    # =========================================================================

    def create(self, location_id: int, item: BudgetLineItem) -> BudgetLineItem:
        """
        Insert a new item under a location.

        The parent link is taken from the line number; a child created
        before its parent is linked later by resolve_parents().
        """
        row = BudgetLineItemEntity()
        item.apply_to_model(row)
        row.location_id = location_id
        row.line_item_number = (item.line_item_number or "").strip()
        row.parent_id = self._resolve_parent_id(location_id, row.line_item_number)
        self.session.add(row)
        self.session.flush()
        logger.debug(f"Created line item {row.line_item_number} (id={row.id}) in location {location_id}")
        return BudgetLineItem.from_model(row)

    def write(self, item_id: int, item: BudgetLineItem) -> BudgetLineItem:
        """
        Replace an item's stored fields with item's values.

        location_id is kept; parent_id is re-resolved from the line number.

        Raises:
            BudgetItemNotFoundError: If no such item
        """
        row = self.get_entity(item_id)
        location_id = row.location_id
        item.apply_to_model(row)
        row.location_id = location_id
        row.line_item_number = (item.line_item_number or "").strip()
        row.parent_id = self._resolve_parent_id(location_id, row.line_item_number)
        self.session.flush()
        return BudgetLineItem.from_model(row)

    def delete(self, item_id: int) -> None:
        """
        Delete one item. Children stay and lose their parent link.

        Raises:
            BudgetItemNotFoundError: If no such item
        """
        row = self.get_entity(item_id)
        self.session.query(BudgetLineItemEntity).filter(
            BudgetLineItemEntity.parent_id == row.id
        ).update({BudgetLineItemEntity.parent_id: None}, synchronize_session="fetch")
        self.session.delete(row)
        self.session.flush()

    def delete_by_location(self, location_id: int) -> int:
        """Remove every item of a location; returns the number removed."""
        removed = self.session.query(BudgetLineItemEntity).filter(
            BudgetLineItemEntity.location_id == location_id
        ).delete(synchronize_session="fetch")
        self.session.flush()
        return removed

    def resolve_parents(self, location_id: int) -> int:
        """
        Re-link every item of a location to its parent by line number.

        Returns:
            Number of items whose parent_id changed
        """
        rows = self.list_entities(location_id)
        by_number: Dict[str, BudgetLineItemEntity] = {
            r.line_item_number.strip(): r for r in rows if parent_number_of(r.line_item_number) is None
        }
        changed = 0
        for row in rows:
            parent_number = parent_number_of(row.line_item_number)
            parent = by_number.get(parent_number) if parent_number else None
            parent_id = parent.id if parent else None
            if row.parent_id != parent_id:
                row.parent_id = parent_id
                changed += 1
        if changed:
            self.session.flush()
            logger.info(f"Re-linked {changed} line items in location {location_id}")
        return changed

"""
Budget Line Item Entity - one row of a location budget.

Line item numbers encode the hierarchy: "26" is a parent (or standalone
item), "26.1" and "26.2" are its children. Only one level of nesting is
recognised; every dotted number belongs to the item named by its first
segment.
"""
from dataclasses import dataclass, field, fields, replace
from typing import Optional


# Fields the recalculator may change
DERIVED_FIELDS = (
    "unconverted_qty",
    "converted_qty",
    "production_rate",
    "hours",
)

COST_FIELDS = (
    "labor_cost",
    "equipment_cost",
    "trucking_cost",
    "dump_fees_cost",
    "material_cost",
    "subcontractor_cost",
)


def parent_number_of(line_item_number: Optional[str]) -> Optional[str]:
    """Return the parent line number for a dotted child number, else None."""
    number = (line_item_number or "").strip()
    if "." not in number:
        return None
    head = number.split(".")[0]
    return head or None


@dataclass
class BudgetLineItem:
    """
    Budget line item.

    Attributes:
        id: Store identifier (None until created)
        location_id: Owning location
        parent_id: Resolved parent item id, if any
        line_item_number: Dotted hierarchy number ("15", "15.1")
        unconverted_qty: Raw quantity in the unconverted unit
        conversion_factor: converted_qty / unconverted_qty
        converted_qty: Quantity in the converted unit
        production_rate: PX, applied as hours = converted_qty x PX
        hours: Labor hours
    """

    id: Optional[int] = None
    location_id: Optional[int] = None
    parent_id: Optional[int] = None
    line_item_number: str = ""
    line_item_name: str = ""
    cost_code: str = ""

    unconverted_unit_of_measure: str = ""
    unconverted_qty: float = 0.0
    actual_qty: float = 0.0
    unit_cost: float = 0.0
    unit_total: float = 0.0

    conversion_factor: float = 1.0
    converted_qty: float = 0.0
    converted_unit_of_measure: str = ""
    production_rate: float = 0.0
    hours: float = 0.0

    labor_cost: float = 0.0
    equipment_cost: float = 0.0
    trucking_cost: float = 0.0
    dump_fees_cost: float = 0.0
    material_cost: float = 0.0
    subcontractor_cost: float = 0.0
    budget_total: float = 0.0
    billing: float = 0.0

    notes: Optional[str] = field(default=None, compare=False)

    # ------------------------------------------------------------------
    # Hierarchy
    # ------------------------------------------------------------------

    @property
    def parent_line_number(self) -> Optional[str]:
        return parent_number_of(self.line_item_number)

    @property
    def is_child(self) -> bool:
        return self.parent_line_number is not None

    def is_child_of(self, parent: "BudgetLineItem") -> bool:
        return self.is_child and self.parent_line_number == parent.line_item_number.strip()

    def children_in(self, items) -> list:
        """Children of this item among items, in the given order."""
        if self.is_child:
            return []
        return [other for other in items if other.is_child_of(self)]

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def copy(self, **changes) -> "BudgetLineItem":
        return replace(self, **changes)

    @classmethod
    def from_model(cls, model) -> "BudgetLineItem":
        """Build an entity from a BudgetLineItemEntity row."""
        values = {}
        for f in fields(cls):
            value = getattr(model, f.name, None)
            if value is None and f.default is not None and not callable(f.default):
                value = f.default
            values[f.name] = value
        return cls(**values)

    def apply_to_model(self, model) -> None:
        """Copy every field except id onto a BudgetLineItemEntity row."""
        for f in fields(self):
            if f.name == "id":
                continue
            setattr(model, f.name, getattr(self, f.name))

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["is_child"] = self.is_child
        return data

"""
Cost Code Summary Service - budget totals grouped by cost code.

Only parent and standalone items are counted; children are already
included in their parent's totals.
"""
from dataclasses import dataclass
from statistics import median
from typing import Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from app.config import get_config
from app.domain.entities.budget_line_item import BudgetLineItem
from app.domain.services.budget_recalculator import coerce_number, round_value
from app.infrastructure.repositories import BudgetItemRepository


@dataclass
class CostCodeSummary:
    """Totals for one cost code."""
    cost_code: str
    item_count: int
    total_converted_qty: float
    total_hours: float
    total_value: float
    median_production_rate: float

    def to_dict(self) -> dict:
        return {
            'cost_code': self.cost_code,
            'item_count': self.item_count,
            'total_converted_qty': self.total_converted_qty,
            'total_hours': self.total_hours,
            'total_value': self.total_value,
            'median_production_rate': self.median_production_rate,
        }


def summarize_by_cost_code(items: Sequence[BudgetLineItem],
                           default_label: Optional[str] = None) -> List[CostCodeSummary]:
    """
    Group top-level items by cost code.

    Groups whose total converted quantity is 0 are dropped. The median PX
    ignores rates of 0.
    """
    if default_label is None:
        default_label = get_config().default_cost_code_label

    groups: Dict[str, List[BudgetLineItem]] = {}
    for item in items:
        if item.is_child:
            continue
        code = (item.cost_code or "").strip() or default_label
        groups.setdefault(code, []).append(item)

    summaries = []
    for code, members in groups.items():
        total_qty = sum(coerce_number(i.converted_qty) for i in members)
        if total_qty == 0:
            continue
        rates = [coerce_number(i.production_rate) for i in members]
        rates = [r for r in rates if r > 0]
        summaries.append(CostCodeSummary(
            cost_code=code,
            item_count=len(members),
            total_converted_qty=round_value(total_qty),
            total_hours=round_value(sum(coerce_number(i.hours) for i in members)),
            total_value=round_value(sum(coerce_number(i.unit_total) for i in members)),
            median_production_rate=round_value(median(rates)) if rates else 0.0,
        ))
    return summaries


def unique_cost_codes(items: Sequence[BudgetLineItem]) -> List[str]:
    """Distinct non-empty cost codes, sorted."""
    return sorted({(i.cost_code or "").strip() for i in items if (i.cost_code or "").strip()})


class CostCodeSummaryService:
    """Cost code reporting over a location's budget."""

    def __init__(self, session: Session):
        self.session = session
        self.item_repo = BudgetItemRepository(session)

    def summarize_location(self, location_id: int) -> List[CostCodeSummary]:
        return summarize_by_cost_code(self.item_repo.read(location_id))

    def cost_codes(self, location_id: int) -> List[str]:
        return unique_cost_codes(self.item_repo.read(location_id))

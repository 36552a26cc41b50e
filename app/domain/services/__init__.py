"""
Domain Services - Business logic for budget recalculation, edits and reporting.
"""

from .budget_recalculator import (
    BudgetLineRecalculator,
    RecalculationResult,
    coerce_number,
    round_value,
    safe_divide,
)
from .budget_edit_service import BudgetEditService, EDIT_KINDS
from .cost_code_summary_service import (
    CostCodeSummaryService,
    CostCodeSummary,
    summarize_by_cost_code,
    unique_cost_codes,
)

__all__ = [
    'BudgetLineRecalculator',
    'RecalculationResult',
    'coerce_number',
    'round_value',
    'safe_divide',
    'BudgetEditService',
    'EDIT_KINDS',
    'CostCodeSummaryService',
    'CostCodeSummary',
    'summarize_by_cost_code',
    'unique_cost_codes',
]

"""
Domain Entities - Core business objects.
"""

from .budget_line_item import BudgetLineItem, parent_number_of, DERIVED_FIELDS, COST_FIELDS

__all__ = [
    'BudgetLineItem', 'parent_number_of', 'DERIVED_FIELDS', 'COST_FIELDS',
]

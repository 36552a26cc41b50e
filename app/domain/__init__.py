"""
Domain Layer - Core business entities and services for budget line items.

This module contains:
- entities/: BudgetLineItem and hierarchy helpers
- services/: Recalculation, edit application and cost code reporting
"""

from .entities.budget_line_item import BudgetLineItem, parent_number_of

__all__ = [
    'BudgetLineItem', 'parent_number_of',
]

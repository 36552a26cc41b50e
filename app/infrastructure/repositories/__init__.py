"""
Repository implementations for data access layer.
"""
from .base_repository import BaseRepository
from .budget_item_repository import BudgetItemRepository, line_number_sort_key
from .location_repository import LocationRepository

__all__ = [
    'BaseRepository',
    'BudgetItemRepository',
    'LocationRepository',
    'line_number_sort_key',
]

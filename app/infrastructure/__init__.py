"""
Infrastructure Layer - repositories and write scheduling.

This module provides:
- Repository pattern for data access
- UpdateScheduler for debounced / immediate inline-edit writes
"""

from .repositories import (
    BaseRepository,
    BudgetItemRepository,
    LocationRepository,
)
from .update_scheduler import UpdateScheduler

__all__ = [
    'BaseRepository',
    'BudgetItemRepository',
    'LocationRepository',
    'UpdateScheduler',
]

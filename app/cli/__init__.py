"""
CLI Module - Command-line interface for the Construction Budget App.

Provides management commands for:
- Database setup
- Budget sheet import
- Line item edits
- Cost code summaries
"""

from .budget_commands import budget, register_commands

__all__ = ['budget', 'register_commands']

# Construction Budget App - Modules
from .budget_import import (
    parse_budget_row,
    parse_budget_rows,
    load_budget_rows,
    calculate_budget_formulas,
    budget_template,
    budget_instructions,
    write_budget_template,
    unknown_cost_codes,
)

__all__ = [
    "parse_budget_row",
    "parse_budget_rows",
    "load_budget_rows",
    "calculate_budget_formulas",
    "budget_template",
    "budget_instructions",
    "write_budget_template",
    "unknown_cost_codes",
]

"""
Budget Import Module for the Construction Budget App.
Turns spreadsheet rows (SW62 layout) into BudgetLineItem candidates and
applies the spreadsheet formulas for manually entered items.
"""
import logging
import re
import zipfile
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Union

import pandas as pd

from app.config import get_config
from app.domain.entities.budget_line_item import BudgetLineItem, COST_FIELDS
from app.domain.exceptions import ImportFormatError
from app.domain.services.budget_recalculator import coerce_number, round_value

logger = logging.getLogger(__name__)


# Column positions in the SW62 budget sheet
SW62_COLUMNS = {
    "line_item_number": 0,      # "Line Item"
    "line_item_name": 1,        # "SW62 - Centinela"
    "unconverted_unit": 2,      # "Unit"
    "unconverted_qty": 3,       # "QTY"
    "actual_qty": 4,            # "Actuals"
    "unit_cost": 5,             # "Unit Cost"
    "unit_total": 6,            # "Unit Total"
    "cost_code": 7,             # "Cost Code"
    "converted_unit": 8,        # "UM"
    "converted_qty": 9,         # "QTY"
    "production_rate": 10,      # "PX"
    "hours": 11,                # "HRS"
    "labor_cost": 12,           # "LBR COST"
    "equipment_cost": 13,       # "EQUIP"
    "trucking_cost": 14,        # "TRUCKING"
    "dump_fees_cost": 15,       # "DUMP FEES"
    "material_cost": 16,        # "MATERIAL"
    "subcontractor_cost": 17,   # "SUB"
    "budget_total": 18,         # "BUDGET"
    "profit": 19,               # "PROFIT"
}

TEMPLATE_HEADERS = [
    "Line Item", "Description", "Unit", "QTY", "Actuals", "Unit Cost",
    "Unit Total", "Cost Code", "UM", "QTY", "PX", "HRS", "LBR COST",
    "EQUIP", "TRUCKING", "DUMP FEES", "MATERIAL", "SUB", "BUDGET", "PROFIT",
]

SUPPORTED_SUFFIXES = {".xlsx", ".xls", ".csv"}


def _is_blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and pd.isna(value):
        return True
    return str(value).strip() == ""


def raw_text(value) -> str:
    """Cell as trimmed text; blanks and NaN become ''."""
    if _is_blank(value):
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def parse_sheet_number(value: Union[str, float, int, None]) -> float:
    """
    Parse a numeric cell.

    Handles:
        "1,234.56"  -> 1234.56
        "$500"      -> 500.0
        "(123.45)"  -> -123.45 (accounting negative)
        None, NaN   -> 0.0
        "n/a"       -> 0.0
    """
    if _is_blank(value):
        return 0.0
    if isinstance(value, (int, float)):
        return coerce_number(value)

    s = str(value).strip()
    negative = s.startswith("(") and s.endswith(")")
    if negative:
        s = s[1:-1]
    s = re.sub(r"[$,\s]", "", s)
    number = coerce_number(s)
    return -number if negative else number


def normalize_cost_code(code) -> str:
    """Cost codes compare case-insensitively; store them upper-case with single spaces."""
    text = raw_text(code)
    return " ".join(text.split()).upper()


def _cell(row: Sequence, key: str):
    index = SW62_COLUMNS[key]
    return row[index] if index < len(row) else None


def parse_budget_row(row: Sequence, location_id: Optional[int] = None,
                     skip_group_rows: bool = True) -> Optional[BudgetLineItem]:
    """
    Convert one SW62 row into a BudgetLineItem, or None when the row is skipped.

    Skipped rows:
    - blank line item number
    - group rows (no quantity and no converted quantity), when skip_group_rows

    Spreadsheet values are kept as-is; conversion_factor is derived as
    converted_qty / unconverted_qty (1 when there is no quantity).
    """
    line_item_number = raw_text(_cell(row, "line_item_number"))
    if not line_item_number:
        return None

    is_group = _is_blank(_cell(row, "unconverted_qty")) and _is_blank(_cell(row, "converted_qty"))
    if is_group and skip_group_rows:
        logger.debug(f"Skipping group row {line_item_number}")
        return None

    unconverted_qty = parse_sheet_number(_cell(row, "unconverted_qty"))
    converted_qty = parse_sheet_number(_cell(row, "converted_qty"))
    conversion_factor = converted_qty / unconverted_qty if unconverted_qty != 0 else 1.0

    return BudgetLineItem(
        location_id=location_id,
        line_item_number=line_item_number,
        line_item_name=raw_text(_cell(row, "line_item_name")),
        cost_code=normalize_cost_code(_cell(row, "cost_code")),
        unconverted_unit_of_measure=raw_text(_cell(row, "unconverted_unit")),
        unconverted_qty=unconverted_qty,
        actual_qty=0.0,
        unit_cost=parse_sheet_number(_cell(row, "unit_cost")),
        unit_total=parse_sheet_number(_cell(row, "unit_total")),
        conversion_factor=conversion_factor,
        converted_qty=converted_qty,
        converted_unit_of_measure=raw_text(_cell(row, "converted_unit")),
        production_rate=parse_sheet_number(_cell(row, "production_rate")),
        hours=parse_sheet_number(_cell(row, "hours")),
        labor_cost=parse_sheet_number(_cell(row, "labor_cost")),
        equipment_cost=parse_sheet_number(_cell(row, "equipment_cost")),
        trucking_cost=parse_sheet_number(_cell(row, "trucking_cost")),
        dump_fees_cost=parse_sheet_number(_cell(row, "dump_fees_cost")),
        material_cost=parse_sheet_number(_cell(row, "material_cost")),
        subcontractor_cost=parse_sheet_number(_cell(row, "subcontractor_cost")),
        budget_total=parse_sheet_number(_cell(row, "budget_total")),
        billing=parse_sheet_number(_cell(row, "profit")),
        notes="",
    )


def parse_budget_rows(rows, location_id: Optional[int] = None,
                      skip_group_rows: Optional[bool] = None) -> List[BudgetLineItem]:
    """Parse an ordered sequence of raw rows; skipped rows are dropped."""
    if skip_group_rows is None:
        skip_group_rows = get_config().skip_group_rows
    items = []
    for row in rows:
        item = parse_budget_row(row, location_id, skip_group_rows)
        if item is not None:
            items.append(item)

    for code in unknown_cost_codes(items):
        logger.warning(f"Cost code '{code}' is not in the configured list")
    return items


def unknown_cost_codes(items: List[BudgetLineItem]) -> List[str]:
    """Distinct non-blank cost codes of items that the configuration does not list."""
    config = get_config()
    unknown = []
    for item in items:
        code = item.cost_code
        if code and code not in unknown and not config.is_valid_cost_code(code):
            unknown.append(code)
    return unknown


def load_budget_rows(path: Union[str, Path], header_rows: Optional[int] = None) -> Iterator[list]:
    """
    Read a budget sheet and yield its data rows as plain lists.

    Raises:
        ImportFormatError: Unsupported extension or unreadable file
    """
    path = Path(path)
    if header_rows is None:
        header_rows = get_config().header_rows
    if path.suffix.lower() not in SUPPORTED_SUFFIXES:
        raise ImportFormatError(str(path), f"unsupported file type '{path.suffix}'")

    try:
        if path.suffix.lower() == ".csv":
            df = pd.read_csv(path, header=None, dtype=object, encoding="utf-8-sig")
        else:
            df = pd.read_excel(path, header=None, dtype=object)
    except (OSError, ValueError, zipfile.BadZipFile) as e:
        raise ImportFormatError(str(path), str(e))

    logger.info(f"Loaded {len(df)} rows from {path.name}")
    for values in df.iloc[header_rows:].itertuples(index=False, name=None):
        yield list(values)


def budget_template() -> pd.DataFrame:
    """Empty budget sheet with the SW62 headers, for download."""
    return pd.DataFrame(columns=TEMPLATE_HEADERS)


def budget_instructions(labor_rate: Optional[float] = None) -> pd.DataFrame:
    """One-column instructions sheet: required columns, formulas, valid cost codes."""
    config = get_config()
    if labor_rate is None:
        labor_rate = config.labor_rate

    lines = [
        "SW62 Budget Template Instructions",
        "",
        "REQUIRED COLUMNS:",
        "- Line Item (Column A): must be unique and not blank",
        "- Cost Code (Column H): must be a valid cost code from the list below",
        "",
        "NUMBER FORMAT:",
        "- Cost columns are plain numbers; $ signs and commas are tolerated",
        "- Accounting negatives such as (123.45) are read as -123.45",
        "",
        "FORMULAS (applied to manually entered items):",
        "- Unit Total = Unit Cost x QTY",
        "- Converted QTY = QTY x Conversion Factor",
        "- HRS = Converted QTY x PX",
        f"- LBR COST = HRS x ${labor_rate:g}",
        "- BUDGET = LBR COST + EQUIP + TRUCKING + DUMP FEES + MATERIAL + SUB",
        "- PROFIT (billing) = Unit Total",
        "",
        "VALID COST CODES:",
    ]
    lines += [f"  - {code}" for code in config.valid_cost_codes] or ["  (any)"]
    lines += ["", f"COLUMN STRUCTURE ({len(TEMPLATE_HEADERS)} columns):"]
    lines += [f"  {i}. {header}" for i, header in enumerate(TEMPLATE_HEADERS, start=1)]
    return pd.DataFrame({"Instructions": lines})


def write_budget_template(path: Union[str, Path]) -> Path:
    """
    Write the download template.

    A .csv gets the header row only; an Excel file also gets an
    Instructions sheet.
    """
    path = Path(path)
    if path.suffix.lower() == ".csv":
        budget_template().to_csv(path, index=False)
        return path

    with pd.ExcelWriter(path) as writer:
        budget_template().to_excel(writer, index=False, sheet_name="Budget Template")
        budget_instructions().to_excel(writer, index=False, sheet_name="Instructions")
    logger.info(f"Budget template written to {path}")
    return path


def calculate_budget_formulas(item: BudgetLineItem, labor_rate: Optional[float] = None) -> BudgetLineItem:
    """
    Apply the budget spreadsheet formulas to a manually entered item.

    - Unit Total = Unconverted Qty x Unit Cost
    - Converted Qty = Unconverted Qty x Conversion Factor
    - Hours = Converted Qty x PX
    - Labor Cost = Hours x labor rate
    - Budget Total = Labor + Equipment + Trucking + Dump Fees + Material + Sub
    - Billing = Unit Total
    """
    if labor_rate is None:
        labor_rate = get_config().labor_rate

    qty = coerce_number(item.unconverted_qty)
    converted_qty = qty * coerce_number(item.conversion_factor)
    hours = converted_qty * coerce_number(item.production_rate)
    unit_total = qty * coerce_number(item.unit_cost)
    labor_cost = hours * labor_rate

    costs = {name: coerce_number(getattr(item, name)) for name in COST_FIELDS}
    costs["labor_cost"] = labor_cost
    budget_total = sum(costs.values())

    return item.copy(
        unit_total=round_value(unit_total),
        converted_qty=round_value(converted_qty),
        hours=round_value(hours),
        labor_cost=round_value(labor_cost),
        budget_total=round_value(budget_total),
        billing=round_value(unit_total),
    )

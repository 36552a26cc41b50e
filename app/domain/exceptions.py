"""
Domain Exceptions for Budget Line Items.

Custom exceptions enforcing business rules:
- Child items inherit production rate and hours from their parent
- Items and locations must exist
- Store writes can fail independently of each other
"""


class DomainError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "DOMAIN_ERROR"):
        self.message = message
        self.code = code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


# =============================================================================
# Lookup Exceptions
# =============================================================================

class BudgetItemNotFoundError(DomainError):
    """Raised when a budget line item cannot be found."""

    def __init__(self, item_id):
        message = f"Budget line item with id '{item_id}' not found"
        super().__init__(message, code="BUDGET_ITEM_NOT_FOUND")
        self.item_id = item_id


class LocationNotFoundError(DomainError):
    """Raised when a location cannot be found."""

    def __init__(self, location_id):
        message = f"Location with id '{location_id}' not found"
        super().__init__(message, code="LOCATION_NOT_FOUND")
        self.location_id = location_id


# =============================================================================
# Validation Exceptions
# =============================================================================

class ValidationError(DomainError):
    """Raised (or returned) when data validation fails."""

    def __init__(self, field: str, message: str, code: str = "VALIDATION_ERROR"):
        super().__init__(f"Validation failed for '{field}': {message}", code=code)
        self.field = field
        self.reason = message


class ChildEditNotAllowedError(ValidationError):
    """A child line item's rate or hours was edited directly."""

    def __init__(self, field: str, line_item_number: str):
        super().__init__(
            field,
            f"child items inherit rate from parent (line item {line_item_number})",
            code="CHILD_EDIT_NOT_ALLOWED",
        )
        self.line_item_number = line_item_number


class DuplicateLineItemError(ValidationError):
    """A line item number already exists in the location."""

    def __init__(self, line_item_number: str, location_id):
        super().__init__(
            "line_item_number",
            f"line item '{line_item_number}' already exists in location '{location_id}'",
            code="DUPLICATE_LINE_ITEM",
        )
        self.line_item_number = line_item_number
        self.location_id = location_id


# =============================================================================
# Persistence Exceptions
# =============================================================================

class PersistenceError(DomainError):
    """
    Raised when a write to the item store fails.

    Writes that already succeeded in the same cascade are not rolled back;
    they are listed in written_ids.
    """

    def __init__(self, item_id, reason: str, written_ids=None):
        message = f"Failed to save budget line item '{item_id}': {reason}"
        super().__init__(message, code="PERSISTENCE_ERROR")
        self.item_id = item_id
        self.reason = reason
        self.written_ids = list(written_ids or [])


# =============================================================================
# Import Exceptions
# =============================================================================

class ImportFormatError(DomainError):
    """Raised when a budget spreadsheet cannot be read."""

    def __init__(self, source: str, reason: str):
        message = f"Cannot import budget from '{source}': {reason}"
        super().__init__(message, code="IMPORT_FORMAT_ERROR")
        self.source = source
        self.reason = reason

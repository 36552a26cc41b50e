"""
Budget Item API Endpoints - CRUD and inline recalculation for line items.

Implements:
- GET /api/v1/locations/{location_id}/budget-items - List a location budget
- POST /api/v1/locations/{location_id}/budget-items - Create line item
- POST /api/v1/locations/{location_id}/budget-items/import - Import a sheet
- GET /api/v1/locations/{location_id}/budget-summary - Cost code summary
- PUT /api/v1/budget-items/{id} - Replace line item
- DELETE /api/v1/budget-items/{id} - Delete line item
- POST /api/v1/budget-items/{id}/quantity - Quantity edit
- POST /api/v1/budget-items/{id}/production-rate - PX edit
- POST /api/v1/budget-items/{id}/hours - Hours edit
"""
import logging
import os
import tempfile
from pathlib import Path
from typing import List, Literal, Optional, Union

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from app.models import get_db, SessionLocal
from app.domain.entities.budget_line_item import BudgetLineItem
from app.domain.services import BudgetEditService, CostCodeSummaryService, RecalculationResult
from app.domain.services.budget_edit_service import EDIT_KINDS, QUANTITY, PRODUCTION_RATE, HOURS
from app.domain.exceptions import (
    BudgetItemNotFoundError,
    DuplicateLineItemError,
    ImportFormatError,
    LocationNotFoundError,
    PersistenceError,
)
from app.infrastructure.update_scheduler import UpdateScheduler
from app.modules.budget_import import load_budget_rows, parse_budget_rows, unknown_cost_codes

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Dependencies
# =============================================================================

_update_scheduler: Optional[UpdateScheduler] = None


def get_update_scheduler() -> UpdateScheduler:
    """Process-wide scheduler for debounced inline writes."""
    global _update_scheduler
    if _update_scheduler is None:
        _update_scheduler = UpdateScheduler()
    return _update_scheduler


def shutdown_update_scheduler() -> None:
    global _update_scheduler
    if _update_scheduler is not None:
        _update_scheduler.shutdown()
        _update_scheduler = None


def get_session_factory():
    """Session factory for writes that run outside the request."""
    return SessionLocal


# =============================================================================
# Pydantic Models
# =============================================================================

class BudgetItemFields(BaseModel):
    """Editable line item fields."""
    line_item_number: str = Field(..., min_length=1, max_length=50, description="Dotted line number, e.g. 15 or 15.1")
    line_item_name: str = Field("", max_length=500)
    cost_code: str = Field("", max_length=100)
    unconverted_unit_of_measure: str = Field("", max_length=20)
    unconverted_qty: float = 0.0
    actual_qty: float = 0.0
    unit_cost: float = 0.0
    unit_total: float = 0.0
    conversion_factor: float = 1.0
    converted_qty: float = 0.0
    converted_unit_of_measure: str = Field("", max_length=20)
    production_rate: float = 0.0
    hours: float = 0.0
    labor_cost: float = 0.0
    equipment_cost: float = 0.0
    trucking_cost: float = 0.0
    dump_fees_cost: float = 0.0
    material_cost: float = 0.0
    subcontractor_cost: float = 0.0
    budget_total: float = 0.0
    billing: float = 0.0
    notes: Optional[str] = None

    def to_entity(self, **extra) -> BudgetLineItem:
        return BudgetLineItem(**self.model_dump(), **extra)


class BudgetItemCreate(BudgetItemFields):
    """Request model for creating a line item."""
    calculate_costs: bool = Field(False, description="Apply the spreadsheet cost formulas")

    def to_entity(self, **extra) -> BudgetLineItem:
        data = self.model_dump(exclude={"calculate_costs"})
        return BudgetLineItem(**data, **extra)


class BudgetItemResponse(BudgetItemFields):
    """Response model for a stored line item."""
    id: int
    location_id: int
    parent_id: Optional[int]
    is_child: bool

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_entity(cls, item: BudgetLineItem) -> "BudgetItemResponse":
        return cls(**item.to_dict())


class EditRequest(BaseModel):
    """Inline edit of one numeric field."""
    value: Union[float, str, None] = Field(None, description="Typed value; invalid input counts as 0")
    mode: Literal["immediate", "debounced"] = "immediate"


class EditError(BaseModel):
    code: str
    message: str


class EditResponse(BaseModel):
    """Result of an inline edit."""
    item_id: int
    applied: bool
    pending: bool = False
    error: Optional[EditError] = None
    updates: List[BudgetItemResponse] = []


class CostCodeSummaryResponse(BaseModel):
    cost_code: str
    item_count: int
    total_converted_qty: float
    total_hours: float
    total_value: float
    median_production_rate: float


class BudgetSummaryResponse(BaseModel):
    location_id: int
    cost_codes: List[str]
    summaries: List[CostCodeSummaryResponse]


class ImportResponse(BaseModel):
    location_id: int
    imported: int
    skipped: int
    unknown_cost_codes: List[str] = []


# =============================================================================
# Helpers
# =============================================================================

def _edit_response(result: RecalculationResult, pending: bool = False) -> EditResponse:
    return EditResponse(
        item_id=result.item_id,
        applied=result.applied,
        pending=pending,
        error=EditError(**result.error.to_dict()) if result.error else None,
        updates=[BudgetItemResponse.from_entity(item) for item in result.updates],
    )


def edit_job_key(item_id: int, kind: str) -> str:
    """Scheduler key of a debounced edit; one pending write per item and field."""
    return f"{item_id}:{kind}"


def family_lock_key(item: BudgetLineItem) -> str:
    """Edits within one parent/children family share a write lock."""
    head = item.parent_line_number or item.line_item_number.strip()
    return f"{item.location_id}:{head}"


def _edit_in_new_session(session_factory, kind: str, item_id: int, value) -> None:
    """Recalculate against the stored rows as they are when the write runs."""
    db = session_factory()
    try:
        BudgetEditService(db).edit(kind, item_id, value)
    finally:
        db.close()


def _settle_pending(scheduler: UpdateScheduler, service: BudgetEditService,
                    item: BudgetLineItem, kind: str) -> int:
    """Run pending writes on the item's family so the next edit sees them."""
    settled = 0
    for member in service.family_of(item):
        for other_kind in EDIT_KINDS:
            if member.id == item.id and other_kind == kind:
                continue
            if scheduler.run_pending(edit_job_key(member.id, other_kind)):
                settled += 1
    if settled:
        logger.debug(f"Settled {settled} pending writes before editing item {item.id}")
    return settled


def _run_edit(kind: str, item_id: int, request: EditRequest, db: Session,
              scheduler: UpdateScheduler, session_factory) -> EditResponse:
    service = BudgetEditService(db)
    try:
        item = service.item_repo.get(item_id)
    except BudgetItemNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)

    key = edit_job_key(item_id, kind)
    lock_key = family_lock_key(item)
    with scheduler.hold(lock_key):
        if _settle_pending(scheduler, service, item, kind):
            db.expire_all()
        try:
            result = service.preview(kind, item_id, request.value)
        except BudgetItemNotFoundError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)

        if not result.applied:
            return _edit_response(result)

        if request.mode == "debounced":
            scheduler.schedule(
                key, _edit_in_new_session, session_factory, kind, item_id, request.value,
                lock_key=lock_key,
            )
            return _edit_response(result, pending=True)

        try:
            scheduler.flush(key, service.apply, result, lock_key=lock_key)
        except PersistenceError as e:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.to_dict())
        return _edit_response(result)


# =============================================================================
# Endpoints
# =============================================================================

@router.get(
    "/locations/{location_id}/budget-items",
    response_model=List[BudgetItemResponse],
    summary="List a location budget",
)
def list_budget_items(location_id: int, db: Session = Depends(get_db)):
    """All line items of a location, in line-number order."""
    service = BudgetEditService(db)
    try:
        service.location_repo.get(location_id)
    except LocationNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    return [BudgetItemResponse.from_entity(i) for i in service.item_repo.read(location_id)]


@router.post(
    "/locations/{location_id}/budget-items",
    response_model=BudgetItemResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a line item",
)
def create_budget_item(location_id: int, payload: BudgetItemCreate, db: Session = Depends(get_db)):
    """
    Create a line item.

    Converted quantity and hours are derived from the raw inputs.
    """
    service = BudgetEditService(db)
    try:
        item = service.create_item(
            location_id, payload.to_entity(), calculate_costs=payload.calculate_costs
        )
    except LocationNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except DuplicateLineItemError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    return BudgetItemResponse.from_entity(item)


@router.post(
    "/locations/{location_id}/budget-items/import",
    response_model=ImportResponse,
    summary="Import a budget sheet",
)
def import_budget_items(
    location_id: int,
    file: UploadFile = File(...),
    replace: bool = Query(False, description="Remove existing items first"),
    db: Session = Depends(get_db),
):
    """Import an .xlsx/.xls/.csv sheet in the SW62 layout."""
    suffix = Path(file.filename or "").suffix.lower()
    fd, tmp_path = tempfile.mkstemp(suffix=suffix)
    try:
        with os.fdopen(fd, "wb") as tmp:
            tmp.write(file.file.read())
        rows = list(load_budget_rows(tmp_path))
        candidates = parse_budget_rows(rows, location_id)
        created = BudgetEditService(db).import_items(location_id, candidates, replace=replace)
    except ImportFormatError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except LocationNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    finally:
        os.unlink(tmp_path)

    return ImportResponse(
        location_id=location_id,
        imported=len(created),
        skipped=len(rows) - len(created),
        unknown_cost_codes=unknown_cost_codes(candidates),
    )


@router.get(
    "/locations/{location_id}/budget-summary",
    response_model=BudgetSummaryResponse,
    summary="Cost code summary",
)
def get_budget_summary(location_id: int, db: Session = Depends(get_db)):
    service = CostCodeSummaryService(db)
    return BudgetSummaryResponse(
        location_id=location_id,
        cost_codes=service.cost_codes(location_id),
        summaries=[CostCodeSummaryResponse(**s.to_dict()) for s in service.summarize_location(location_id)],
    )


@router.put(
    "/budget-items/{item_id}",
    response_model=BudgetItemResponse,
    summary="Replace a line item",
)
def replace_budget_item(item_id: int, payload: BudgetItemFields, db: Session = Depends(get_db)):
    """Full replace; derived values are stored as sent."""
    service = BudgetEditService(db)
    try:
        return BudgetItemResponse.from_entity(service.replace_item(item_id, payload.to_entity()))
    except BudgetItemNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except DuplicateLineItemError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)


@router.delete(
    "/budget-items/{item_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a line item",
)
def delete_budget_item(
    item_id: int,
    db: Session = Depends(get_db),
    scheduler: UpdateScheduler = Depends(get_update_scheduler),
):
    """Pending inline edits of the item are dropped."""
    service = BudgetEditService(db)
    for kind in EDIT_KINDS:
        scheduler.cancel(edit_job_key(item_id, kind))
    try:
        service.delete_item(item_id)
    except BudgetItemNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)


@router.post("/budget-items/{item_id}/quantity", response_model=EditResponse, summary="Edit quantity")
def edit_quantity(
    item_id: int,
    request: EditRequest,
    db: Session = Depends(get_db),
    scheduler: UpdateScheduler = Depends(get_update_scheduler),
    session_factory=Depends(get_session_factory),
):
    return _run_edit(QUANTITY, item_id, request, db, scheduler, session_factory)


@router.post("/budget-items/{item_id}/production-rate", response_model=EditResponse, summary="Edit PX")
def edit_production_rate(
    item_id: int,
    request: EditRequest,
    db: Session = Depends(get_db),
    scheduler: UpdateScheduler = Depends(get_update_scheduler),
    session_factory=Depends(get_session_factory),
):
    """Rejected (applied=false) on child items."""
    return _run_edit(PRODUCTION_RATE, item_id, request, db, scheduler, session_factory)


@router.post("/budget-items/{item_id}/hours", response_model=EditResponse, summary="Edit hours")
def edit_hours(
    item_id: int,
    request: EditRequest,
    db: Session = Depends(get_db),
    scheduler: UpdateScheduler = Depends(get_update_scheduler),
    session_factory=Depends(get_session_factory),
):
    """Rejected (applied=false) on child items."""
    return _run_edit(HOURS, item_id, request, db, scheduler, session_factory)

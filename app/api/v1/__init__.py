"""
API v1 - REST endpoints for budget line items.

Implements:
- Location budget listing, creation and spreadsheet import
- Line item replace / delete
- Inline quantity, production rate and hours edits
- Cost code summary
"""
from fastapi import APIRouter

from .budget_items import router as budget_items_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(budget_items_router, tags=["Budget Items"])

"""
Main FastAPI Application for the Construction Budget App.
Provides REST endpoints for location budgets and inline recalculation.
"""
import logging

from fastapi import FastAPI

from app.models import init_db, get_db
from app.api.v1 import api_router as v1_router
from app.api.v1.budget_items import shutdown_update_scheduler

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# Initialize FastAPI app
app = FastAPI(
    title="Construction Budget App",
    description="Location budgets with parent/child line-item recalculation",
    version="1.0.0"
)

app.include_router(v1_router)

__all__ = ["app", "get_db"]


# Initialize database on startup
@app.on_event("startup")
async def startup_event():
    init_db()
    logger.info("Database initialized")


# Pending debounced writes are dropped; running writes finish on their own
@app.on_event("shutdown")
async def shutdown_event():
    shutdown_update_scheduler()


@app.get("/health")
def health():
    return {"ok": True}

"""
Database models and SQLAlchemy setup for the Construction Budget App.
Quantities, rates and costs are stored as floats rounded to 2 places.
"""
from datetime import datetime
from sqlalchemy import (
    create_engine, Column, Integer, String, Float, Boolean,
    DateTime, Date, Text, ForeignKey, Index
)
from sqlalchemy.orm import declarative_base, sessionmaker, relationship

from app.config import get_config

DATABASE_URL = get_config().database_url
_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, connect_args=_connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


class Project(Base):
    """Construction project."""
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, index=True)
    project_code = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    address = Column(String(500), nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    is_inactive = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    locations = relationship("Location", back_populates="project", cascade="all, delete-orphan")


class Location(Base):
    """Work location within a project; owns a budget."""
    __tablename__ = "locations"

    id = Column(Integer, primary_key=True, index=True)
    location_code = Column(String(50), unique=True, nullable=False, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    status = Column(String(20), default="active")  # active, completed, suspended

    project = relationship("Project", back_populates="locations")
    budget_items = relationship(
        "BudgetLineItemEntity", back_populates="location", cascade="all, delete-orphan"
    )


class BudgetLineItemEntity(Base):
    """
    One row of a location budget.

    Hierarchy is encoded by line_item_number ("15" parent, "15.1" child)
    and mirrored in parent_id.
    """
    __tablename__ = "budget_line_items"

    id = Column(Integer, primary_key=True, index=True)
    location_id = Column(Integer, ForeignKey("locations.id", ondelete="CASCADE"), nullable=False, index=True)
    parent_id = Column(Integer, ForeignKey("budget_line_items.id", ondelete="SET NULL"), nullable=True, index=True)

    line_item_number = Column(String(50), nullable=False)
    line_item_name = Column(String(500), default="")
    cost_code = Column(String(100), default="", index=True)

    # Raw quantity / price
    unconverted_unit_of_measure = Column(String(20), default="")
    unconverted_qty = Column(Float, default=0.0)
    actual_qty = Column(Float, default=0.0)
    unit_cost = Column(Float, default=0.0)
    unit_total = Column(Float, default=0.0)

    # Converted quantity and labor
    conversion_factor = Column(Float, default=1.0)
    converted_qty = Column(Float, default=0.0)
    converted_unit_of_measure = Column(String(20), default="")
    production_rate = Column(Float, default=0.0)  # PX
    hours = Column(Float, default=0.0)

    # Cost breakdown (entered, never derived by recalculation)
    labor_cost = Column(Float, default=0.0)
    equipment_cost = Column(Float, default=0.0)
    trucking_cost = Column(Float, default=0.0)
    dump_fees_cost = Column(Float, default=0.0)
    material_cost = Column(Float, default=0.0)
    subcontractor_cost = Column(Float, default=0.0)
    budget_total = Column(Float, default=0.0)
    billing = Column(Float, default=0.0)

    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    location = relationship("Location", back_populates="budget_items")
    parent = relationship("BudgetLineItemEntity", remote_side=[id], backref="children")

    __table_args__ = (
        Index("ix_budget_line_items_location_number", "location_id", "line_item_number"),
    )


def init_db():
    """Initialize the database and create all tables."""
    Base.metadata.create_all(bind=engine)


def get_db():
    """Database session dependency for FastAPI."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

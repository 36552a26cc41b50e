"""
Tests for the budget item store and the edit service.

Tests:
- Repository read/write/create/delete and parent linking
- Edits written through the service
- Non-atomic cascades: a failed write keeps earlier writes
- Create/delete keep the parent aggregate in line
"""
import pytest

from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from app.models import Base
from app.domain.entities.budget_line_item import BudgetLineItem
from app.domain.exceptions import (
    BudgetItemNotFoundError,
    DuplicateLineItemError,
    LocationNotFoundError,
    PersistenceError,
)
from app.domain.services import BudgetEditService
from app.infrastructure.repositories import (
    BudgetItemRepository,
    LocationRepository,
    line_number_sort_key,
)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def test_db():
    """Fresh in-memory database with one location."""
    engine = create_engine("sqlite:///:memory:", echo=False)
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine)
    session = Session()

    locations = LocationRepository(session)
    project = locations.get_or_create_project("SW62", "Centinela")
    location = locations.create(project.id, "SW62-A", "Centinela Ave")
    session.commit()

    yield session, location

    session.close()


@pytest.fixture
def family(test_db):
    """Parent 26 with children 26.1 and 26.2 plus a standalone item 3."""
    session, location = test_db
    repo = BudgetItemRepository(session)
    parent = repo.create(location.id, BudgetLineItem(
        line_item_number="26", cost_code="CONCRETE",
        unconverted_qty=30, converted_qty=30, production_rate=5, hours=150,
    ))
    first = repo.create(location.id, BudgetLineItem(
        line_item_number="26.1", unconverted_qty=10, converted_qty=10, production_rate=5, hours=50,
    ))
    second = repo.create(location.id, BudgetLineItem(
        line_item_number="26.2", unconverted_qty=20, converted_qty=20, production_rate=5, hours=100,
    ))
    standalone = repo.create(location.id, BudgetLineItem(
        line_item_number="3", unconverted_qty=100, converted_qty=100, production_rate=2, hours=200,
    ))
    session.commit()
    return session, location, parent, first, second, standalone


# =============================================================================
# Repository
# =============================================================================

class TestBudgetItemRepository:
    """Tests for the item store."""

    def test_read_in_line_number_order(self, family):
        session, location, *_ = family
        numbers = [i.line_item_number for i in BudgetItemRepository(session).read(location.id)]
        assert numbers == ["3", "26", "26.1", "26.2"]

    def test_natural_sort_key(self):
        numbers = ["15.10", "2", "15.2", "15", "10", "15.1"]
        assert sorted(numbers, key=line_number_sort_key) == ["2", "10", "15", "15.1", "15.2", "15.10"]

    def test_child_linked_on_create(self, family):
        _, _, parent, first, second, standalone = family
        assert first.parent_id == parent.id
        assert second.parent_id == parent.id
        assert standalone.parent_id is None
        assert BudgetItemRepository(family[0]).exists(line_item_number="26.1")

    def test_write_replaces_fields(self, family):
        session, _, _, _, _, standalone = family
        repo = BudgetItemRepository(session)
        saved = repo.write(standalone.id, standalone.copy(hours=42.0, notes="checked"))
        session.commit()

        reread = repo.get(standalone.id)
        assert saved.hours == 42.0
        assert reread.hours == 42.0
        assert reread.notes == "checked"

    def test_get_missing_item(self, test_db):
        session, _ = test_db
        with pytest.raises(BudgetItemNotFoundError):
            BudgetItemRepository(session).get(999)

    def test_resolve_parents_after_late_parent(self, test_db):
        session, location = test_db
        repo = BudgetItemRepository(session)
        child = repo.create(location.id, BudgetLineItem(line_item_number="7.1"))
        assert child.parent_id is None

        parent = repo.create(location.id, BudgetLineItem(line_item_number="7"))
        assert repo.resolve_parents(location.id) == 1
        assert repo.get(child.id).parent_id == parent.id

    def test_delete_unlinks_children(self, family):
        session, _, parent, first, _, _ = family
        repo = BudgetItemRepository(session)
        repo.delete(parent.id)
        session.commit()
        assert repo.get(first.id).parent_id is None


# =============================================================================
# Edits
# =============================================================================

class TestEdits:
    """Tests for edits written through BudgetEditService."""

    def test_quantity_edit_persisted(self, family):
        session, _, _, _, _, standalone = family
        service = BudgetEditService(session)
        result = service.change_quantity(standalone.id, "150")

        assert result.applied
        stored = service.item_repo.get(standalone.id)
        assert stored.converted_qty == 150.0
        assert stored.hours == 300.0

    def test_rate_cascade_persisted(self, family):
        session, _, parent, first, second, _ = family
        service = BudgetEditService(session)
        service.change_production_rate(parent.id, 6)

        repo = service.item_repo
        assert repo.get(first.id).hours == 60.0
        assert repo.get(second.id).hours == 120.0
        assert repo.get(parent.id).hours == 180.0
        assert repo.get(parent.id).production_rate == 6.0

    def test_child_quantity_updates_parent(self, family):
        session, _, parent, first, _, _ = family
        service = BudgetEditService(session)
        service.change_quantity(first.id, 12)

        stored_parent = service.item_repo.get(parent.id)
        assert stored_parent.converted_qty == 32.0
        assert stored_parent.hours == 160.0

    def test_rejected_edit_writes_nothing(self, family):
        session, _, _, first, _, _ = family
        service = BudgetEditService(session)
        result = service.change_hours(first.id, 999)

        assert not result.applied
        assert service.item_repo.get(first.id).hours == 50.0

    def test_missing_item(self, test_db):
        session, _ = test_db
        with pytest.raises(BudgetItemNotFoundError):
            BudgetEditService(session).change_quantity(404, 1)

    def test_unknown_edit_kind(self, family):
        session, *_ = family
        with pytest.raises(ValueError):
            BudgetEditService(session).edit("cost", 1, 5)

    def test_failed_write_keeps_earlier_writes(self, family, monkeypatch):
        """A cascade that fails on the second write leaves the first committed."""
        session, _, parent, first, second, _ = family
        service = BudgetEditService(session)
        original_write = service.item_repo.write

        def failing_write(item_id, item):
            if item_id == first.id:
                raise OperationalError("UPDATE budget_line_items", {}, Exception("disk I/O error"))
            return original_write(item_id, item)

        monkeypatch.setattr(service.item_repo, "write", failing_write)

        with pytest.raises(PersistenceError) as exc_info:
            service.change_production_rate(parent.id, 6)

        assert exc_info.value.item_id == first.id
        assert exc_info.value.written_ids == [parent.id]

        repo = BudgetItemRepository(session)
        assert repo.get(parent.id).production_rate == 6.0
        assert repo.get(parent.id).hours == 180.0
        assert repo.get(first.id).hours == 50.0
        assert repo.get(second.id).hours == 100.0


# =============================================================================
# Create / Replace / Delete
# =============================================================================

class TestItemLifecycle:
    """Tests for create, replace and delete."""

    def test_create_derives_values(self, test_db):
        session, location = test_db
        item = BudgetEditService(session).create_item(location.id, BudgetLineItem(
            line_item_number=" 5 ", unconverted_qty=40, conversion_factor=0.5, production_rate=3,
        ))
        assert item.line_item_number == "5"
        assert item.converted_qty == 20.0
        assert item.hours == 60.0

    def test_create_with_cost_formulas(self, test_db):
        session, location = test_db
        item = BudgetEditService(session).create_item(location.id, BudgetLineItem(
            line_item_number="8", unconverted_qty=10, unit_cost=12.5, production_rate=0.5,
            material_cost=100,
        ), calculate_costs=True)
        assert item.unit_total == 125.0
        assert item.hours == 5.0
        assert item.labor_cost == 450.0
        assert item.budget_total == 550.0
        assert item.billing == 125.0

    def test_create_child_reaggregates_parent(self, family):
        session, location, parent, *_ = family
        service = BudgetEditService(session)
        child = service.create_item(location.id, BudgetLineItem(
            line_item_number="26.3", unconverted_qty=5, production_rate=5,
        ))
        assert child.parent_id == parent.id
        stored = service.item_repo.get(parent.id)
        assert stored.converted_qty == 35.0
        assert stored.hours == 175.0

    def test_create_parent_after_children(self, test_db):
        session, location = test_db
        service = BudgetEditService(session)
        child = service.create_item(location.id, BudgetLineItem(
            line_item_number="9.1", unconverted_qty=4, production_rate=2,
        ))
        parent = service.create_item(location.id, BudgetLineItem(line_item_number="9"))

        assert service.item_repo.get(child.id).parent_id == parent.id
        assert parent.converted_qty == 4.0
        assert parent.hours == 8.0

    def test_create_duplicate_number(self, family):
        session, location, *_ = family
        with pytest.raises(DuplicateLineItemError):
            BudgetEditService(session).create_item(location.id, BudgetLineItem(line_item_number="26.1"))

    def test_create_in_missing_location(self, test_db):
        session, _ = test_db
        with pytest.raises(LocationNotFoundError):
            BudgetEditService(session).create_item(999, BudgetLineItem(line_item_number="1"))

    def test_replace_to_taken_number(self, family):
        session, _, _, _, _, standalone = family
        with pytest.raises(DuplicateLineItemError):
            BudgetEditService(session).replace_item(standalone.id, standalone.copy(line_item_number="26"))

    def test_delete_child_reaggregates_parent(self, family):
        session, _, parent, _, second, _ = family
        service = BudgetEditService(session)
        service.delete_item(second.id)

        stored = service.item_repo.get(parent.id)
        assert stored.converted_qty == 10.0
        assert stored.hours == 50.0

    def test_import_skips_duplicates(self, family):
        session, location, *_ = family
        service = BudgetEditService(session)
        created = service.import_items(location.id, [
            BudgetLineItem(line_item_number="3"),
            BudgetLineItem(line_item_number="40"),
            BudgetLineItem(line_item_number="40.1"),
            BudgetLineItem(line_item_number="40"),
        ])
        assert [i.line_item_number for i in created] == ["40", "40.1"]
        stored = {i.line_item_number: i for i in service.item_repo.read(location.id)}
        assert stored["40.1"].parent_id == stored["40"].id

    def test_import_replace(self, family):
        session, location, *_ = family
        service = BudgetEditService(session)
        service.import_items(location.id, [BudgetLineItem(line_item_number="1")], replace=True)
        assert [i.line_item_number for i in service.item_repo.read(location.id)] == ["1"]

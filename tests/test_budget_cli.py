"""
Tests for the budget CLI commands.
"""
import pandas as pd
import pytest

from click.testing import CliRunner
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.cli import budget_commands
from app.models import Base
from app.infrastructure.repositories import BudgetItemRepository


SHEET = "\n".join([
    "Line Item,Description,Unit,QTY,Actuals,Unit Cost,Unit Total,Cost Code,UM,QTY,"
    "PX,HRS,LBR COST,EQUIP,TRUCKING,DUMP FEES,MATERIAL,SUB,BUDGET,PROFIT",
    "26,Sidewalk,SF,300,,,,CONCRETE,CY,30,5,150,,,,,,,,",
    "26.1,Sidewalk A,SF,100,,,,CONCRETE,CY,10,5,50,,,,,,,,",
    "26.2,Sidewalk B,SF,200,,,,CONCRETE,CY,20,5,100,,,,,,,,",
]) + "\n"


@pytest.fixture
def session_factory(tmp_path, monkeypatch):
    """Point the commands at a throwaway database."""
    engine = create_engine(f"sqlite:///{tmp_path / 'cli.db'}")
    Base.metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    monkeypatch.setattr(budget_commands, "SessionLocal", factory)
    yield factory
    engine.dispose()


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def sheet(tmp_path):
    path = tmp_path / "sw62.csv"
    path.write_text(SHEET)
    return path


def _location(runner):
    result = runner.invoke(budget_commands.budget, ["add-location", "SW62", "SW62-A"])
    assert result.exit_code == 0, result.output
    return 1


class TestBudgetCommands:
    """Tests for the `budget` command group."""

    def test_add_location_twice(self, runner, session_factory):
        _location(runner)
        result = runner.invoke(budget_commands.budget, ["add-location", "SW62", "SW62-A"])
        assert "already exists" in result.output

    def test_import_dry_run(self, runner, session_factory, sheet):
        location_id = _location(runner)
        result = runner.invoke(budget_commands.budget, ["import", str(location_id), str(sheet), "--dry-run"])

        assert result.exit_code == 0, result.output
        assert "Parsed 3 line items" in result.output
        assert "Dry run" in result.output

        db = session_factory()
        try:
            assert BudgetItemRepository(db).read(location_id) == []
        finally:
            db.close()

    def test_import_and_edit(self, runner, session_factory, sheet):
        location_id = _location(runner)
        result = runner.invoke(budget_commands.budget, ["import", str(location_id), str(sheet)])
        assert result.exit_code == 0, result.output
        assert "Imported 3 line items" in result.output

        db = session_factory()
        try:
            parent_id = BudgetItemRepository(db).find_by_number(location_id, "26").id
        finally:
            db.close()

        result = runner.invoke(budget_commands.budget, ["edit", "production_rate", str(parent_id), "6"])
        assert result.exit_code == 0, result.output
        assert "3 line items updated" in result.output

        db = session_factory()
        try:
            stored = {i.line_item_number: i for i in BudgetItemRepository(db).read(location_id)}
        finally:
            db.close()
        assert stored["26"].hours == 180.0
        assert stored["26.2"].hours == 120.0

    def test_edit_child_rejected(self, runner, session_factory, sheet):
        location_id = _location(runner)
        runner.invoke(budget_commands.budget, ["import", str(location_id), str(sheet)])
        db = session_factory()
        try:
            child_id = BudgetItemRepository(db).find_by_number(location_id, "26.1").id
        finally:
            db.close()

        result = runner.invoke(budget_commands.budget, ["edit", "hours", str(child_id), "10"])
        assert "child items inherit rate from parent" in result.output

    def test_edit_missing_item(self, runner, session_factory):
        result = runner.invoke(budget_commands.budget, ["edit", "quantity", "404", "1"])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_import_missing_location(self, runner, session_factory, sheet):
        result = runner.invoke(budget_commands.budget, ["import", "99", str(sheet)])
        assert result.exit_code == 1
        assert "Location with id '99' not found" in result.output

    def test_summary(self, runner, session_factory, sheet):
        location_id = _location(runner)
        runner.invoke(budget_commands.budget, ["import", str(location_id), str(sheet)])

        result = runner.invoke(budget_commands.budget, ["summary", str(location_id)])
        assert result.exit_code == 0, result.output
        assert "CONCRETE" in result.output
        assert "150.00" in result.output

    def test_summary_empty(self, runner, session_factory):
        result = runner.invoke(budget_commands.budget, ["summary", "1"])
        assert "No cost codes" in result.output

    def test_template(self, runner, tmp_path):
        output = tmp_path / "template.csv"
        result = runner.invoke(budget_commands.budget, ["template", str(output)])
        assert result.exit_code == 0, result.output
        assert output.read_text().startswith("Line Item,Description")

    def test_template_xlsx_has_instructions(self, runner, tmp_path):
        output = tmp_path / "template.xlsx"
        result = runner.invoke(budget_commands.budget, ["template", str(output)])
        assert result.exit_code == 0, result.output

        sheets = pd.read_excel(output, sheet_name=None)
        assert list(sheets) == ["Budget Template", "Instructions"]
        lines = [str(v).strip() for v in sheets["Instructions"]["Instructions"].dropna()]
        assert "- CONCRETE" in lines

    def test_import_warns_on_unknown_cost_code(self, runner, session_factory, tmp_path):
        path = tmp_path / "odd.csv"
        path.write_text(SHEET.replace("26.2,Sidewalk B,SF,200,,,,CONCRETE", "26.2,Sidewalk B,SF,200,,,,ROOFING"))
        location_id = _location(runner)
        result = runner.invoke(budget_commands.budget, ["import", str(location_id), str(path), "--dry-run"])

        assert result.exit_code == 0, result.output
        assert "Unknown cost code: ROOFING" in result.output
        assert result.output.count("Unknown cost code") == 1

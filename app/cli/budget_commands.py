"""
Budget CLI Commands - Management commands for location budgets.

Provides command-line interface for:
- Database initialization
- Location setup
- Budget sheet import and template export
- Inline-style edits (quantity, PX, hours)
- Cost code summaries
"""
import click
import logging
from typing import Optional

from app.models import init_db, SessionLocal
from app.domain.exceptions import DomainError
from app.domain.services import BudgetEditService, CostCodeSummaryService, EDIT_KINDS
from app.infrastructure.repositories import LocationRepository
from app.modules.budget_import import (
    load_budget_rows,
    parse_budget_rows,
    unknown_cost_codes,
    write_budget_template,
)

logger = logging.getLogger(__name__)


@click.group()
def budget():
    """Location budget commands."""
    pass


@budget.command('init-db')
def init_db_command():
    """Create all tables."""
    init_db()
    click.echo(click.style("✓ Database initialized", fg='green'))


@budget.command('add-location')
@click.argument('project_code')
@click.argument('location_code')
@click.option('--name', default=None, help='Location name (defaults to the code)')
def add_location(project_code: str, location_code: str, name: Optional[str]):
    """Create a location under a project (the project is created if needed)."""
    db = SessionLocal()
    try:
        repo = LocationRepository(db)
        if repo.exists(location_code=location_code):
            click.echo(click.style(f"✗ Location {location_code} already exists", fg='red'))
            return
        project = repo.get_or_create_project(project_code)
        location = repo.create(project.id, location_code, name or location_code)
        db.commit()
        click.echo(click.style(f"✓ Location {location_code} created (ID: {location.id})", fg='green'))
    finally:
        db.close()


@budget.command('import')
@click.argument('location_id', type=int)
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--replace', is_flag=True, help='Remove existing items first')
@click.option('--dry-run', is_flag=True, help='Parse the sheet without saving')
def import_sheet(location_id: int, path: str, replace: bool, dry_run: bool):
    """Import a budget sheet (SW62 layout) into a location."""
    try:
        rows = list(load_budget_rows(path))
    except DomainError as e:
        click.echo(click.style(f"✗ {e.message}", fg='red'))
        raise SystemExit(1)

    candidates = parse_budget_rows(rows, location_id)
    click.echo(f"Parsed {len(candidates)} line items from {len(rows)} rows")
    for code in unknown_cost_codes(candidates):
        click.echo(click.style(f"⚠ Unknown cost code: {code}", fg='yellow'))

    if dry_run:
        for item in candidates:
            click.echo(f"  {item.line_item_number:<8} {item.cost_code:<20} {item.line_item_name}")
        click.echo(click.style("Dry run - nothing saved", fg='yellow'))
        return

    db = SessionLocal()
    try:
        created = BudgetEditService(db).import_items(location_id, candidates, replace=replace)
    except DomainError as e:
        click.echo(click.style(f"✗ {e.message}", fg='red'))
        raise SystemExit(1)
    finally:
        db.close()
    click.echo(click.style(f"✓ Imported {len(created)} line items", fg='green'))


@budget.command()
@click.argument('output', type=click.Path(dir_okay=False))
def template(output: str):
    """Write an empty budget sheet with the expected headers (.xlsx adds instructions)."""
    write_budget_template(output)
    click.echo(click.style(f"✓ Template written to {output}", fg='green'))


@budget.command()
@click.argument('kind', type=click.Choice(EDIT_KINDS))
@click.argument('item_id', type=int)
@click.argument('value')
def edit(kind: str, item_id: int, value: str):
    """Edit quantity, production_rate or hours of one line item."""
    db = SessionLocal()
    try:
        result = BudgetEditService(db).edit(kind, item_id, value)
    except DomainError as e:
        click.echo(click.style(f"✗ {e.message}", fg='red'))
        raise SystemExit(1)
    finally:
        db.close()

    if not result.applied:
        click.echo(click.style(f"✗ {result.error.message}", fg='red'))
        return
    for item in result.updates:
        click.echo(
            f"  {item.line_item_number:<8} qty={item.converted_qty:>10.2f} "
            f"px={item.production_rate:>8.2f} hrs={item.hours:>10.2f}"
        )
    click.echo(click.style(f"✓ {len(result.updates)} line items updated", fg='green'))


@budget.command()
@click.argument('location_id', type=int)
def summary(location_id: int):
    """Show totals per cost code for a location."""
    db = SessionLocal()
    try:
        summaries = CostCodeSummaryService(db).summarize_location(location_id)
    finally:
        db.close()

    if not summaries:
        click.echo("No cost codes with quantities")
        return

    click.echo(f"\n{'Cost Code':<28}{'Conv QTY':>12}{'Median PX':>12}{'Hours':>12}{'Value':>14}")
    click.echo('=' * 78)
    for s in summaries:
        click.echo(
            f"{s.cost_code:<28}{s.total_converted_qty:>12,.2f}{s.median_production_rate:>12,.2f}"
            f"{s.total_hours:>12,.2f}{s.total_value:>14,.2f}"
        )


def register_commands(cli):
    """Register budget commands with main CLI."""
    cli.add_command(budget)

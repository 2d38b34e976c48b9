# Overview: Flask CLI command groups for bootstrap, stock inspection and season closing.

# backend/agrostock/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to agrostock (PowerShell: $env:FLASK_APP="agrostock").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db [--property "Fazenda Boa Vista"] [--season "2026/27"]
#   Create tables; optionally create a property and an open season.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Stock inspection:
# - python -m flask stock summary 3 [--as-of 2026-10-01]
#   On-hand quantity, average cost and inventory value of a product.
# - python -m flask stock batches 3 [--available]
#   List a product's batches in FIFO order.
#
# Season closing:
# - python -m flask seasons close 7 [--actor "ana"]
#   Close a season; entries and batches of the season become read-only.
# - python -m flask seasons reopen 7 [--actor "ana"]
#   Reopen a closed season.
#
# Entry inspection:
# - python -m flask entries show 42
#   Show an entry with its lines and FIFO breakdowns.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Property, Season
from .services import batch_service, entry_service, season_service
from .services.errors import EngineError
from .validation import ValidationError, coerce_date


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""
    pass


@system_group.command('init-db')
@click.option('--property', 'property_name', default=None, help='Create a property with this name')
@click.option('--season', 'season_name', default=None, help='Create an open season for the property')
@with_appcontext
def init_db(property_name, season_name):
    """
    Create all tables (idempotent).

    With --property, also creates the property if it does not exist yet;
    with --season, an open season under it.
    """
    click.echo("BUILD  Creating tables...")
    db.create_all()

    if season_name and not property_name:
        raise click.UsageError("--season requires --property")

    if property_name:
        prop = db.session.query(Property).filter_by(name=property_name).first()
        if prop:
            click.echo(f"WARN  Property '{property_name}' already exists (ID: {prop.id})")
        else:
            prop = Property(name=property_name)
            db.session.add(prop)
            db.session.flush()
            click.echo(f"PASS Created property: {prop.name} (ID: {prop.id})")

        if season_name:
            season = db.session.query(Season).filter_by(property_id=prop.id, name=season_name).first()
            if season:
                click.echo(f"WARN  Season '{season_name}' already exists (ID: {season.id})")
            else:
                season = Season(property_id=prop.id, name=season_name)
                db.session.add(season)
                db.session.flush()
                click.echo(f"PASS Created season: {season.name} (ID: {season.id})")

        db.session.commit()

    click.echo("DONE Database ready")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete")


@click.group('stock')
def stock_group():
    """Batch ledger inspection commands."""
    pass


@stock_group.command('summary')
@click.argument('product_id', type=int)
@click.option('--as-of', default=None, help='ISO date; batches received after it are ignored')
@with_appcontext
def stock_summary(product_id, as_of):
    """Show on-hand quantity and valuation of a product."""
    try:
        as_of_date = coerce_date("as_of", as_of) if as_of else None
        summary = batch_service.get_stock_summary(product_id, as_of=as_of_date)
    except (ValidationError, EngineError) as e:
        raise click.ClickException(str(e))

    click.echo(f"\nProduct: {summary['product_name']} (ID: {summary['product_id']})")
    click.echo("=" * 60)
    click.echo(f"  On hand:        {summary['quantity_on_hand']} {summary['unit']}")
    if summary['frozen_quantity'] != '0.0000':
        click.echo(f"  Frozen:         {summary['frozen_quantity']} (closed seasons)")
    click.echo(f"  Average cost:   {summary['average_unit_cost']}")
    click.echo(f"  Value:          {summary['inventory_value']}")
    click.echo(f"  Batches:        {summary['available_batches']}")
    click.echo(f"  Next expiry:    {summary['next_expiry'] or '-'}")
    if summary['below_minimum']:
        click.echo(f"  WARN below minimum level {summary['minimum_level']}")
    click.echo("")


@stock_group.command('batches')
@click.argument('product_id', type=int)
@click.option('--available', is_flag=True, help='Only batches with stock left')
@with_appcontext
def stock_batches(product_id, available):
    """List a product's batches in FIFO order."""
    try:
        rows = batch_service.list_batches(product_id, include_exhausted=not available)
    except EngineError as e:
        raise click.ClickException(str(e))

    if not rows:
        click.echo("No batches found.")
        return

    click.echo(f"\n{'ID':<6} {'Received':<12} {'Remaining':>14} {'Original':>14} {'Unit cost':>12}")
    click.echo("-" * 62)
    for b in rows:
        click.echo(
            f"{b.id:<6} {b.received_at.isoformat():<12} {str(b.remaining_quantity):>14} "
            f"{str(b.original_quantity):>14} {str(b.unit_cost):>12}"
        )
    click.echo("")


@click.group('seasons')
def seasons_group():
    """Season closing commands."""
    pass


@seasons_group.command('close')
@click.argument('season_id', type=int)
@click.option('--actor', default=None, help='Who is closing the season')
@with_appcontext
def close_season(season_id, actor):
    """Close a season (idempotent)."""
    try:
        summary = season_service.close_season(season_id, actor=actor)
    except EngineError as e:
        raise click.ClickException(str(e))

    click.echo(f"PASS Season '{summary['season_name']}' closed")
    click.echo(f"   Entries frozen: {summary['total_entries']}")
    click.echo(f"   Batches frozen: {summary['total_batches']}")


@seasons_group.command('reopen')
@click.argument('season_id', type=int)
@click.option('--actor', default=None, help='Who is reopening the season')
@with_appcontext
def reopen_season(season_id, actor):
    """Reopen a closed season (idempotent)."""
    try:
        season = season_service.reopen_season(season_id, actor=actor)
    except EngineError as e:
        raise click.ClickException(str(e))

    click.echo(f"PASS Season '{season.name}' reopened")


@click.group('entries')
def entries_group():
    """Entry inspection commands."""
    pass


@entries_group.command('show')
@click.argument('entry_id', type=int)
@with_appcontext
def show_entry(entry_id):
    """Show an entry with its lines and FIFO breakdowns."""
    try:
        entry = entry_service.get_entry(entry_id)
    except EngineError as e:
        raise click.ClickException(str(e))

    data = entry.to_dict()
    click.echo(f"\nEntry {data['id']}: {data['service_name']} on {data['executed_on']}")
    click.echo("=" * 60)
    for line in data["lines"]:
        click.echo(
            f"  item {line['item_id']}: {line['quantity']} x {line['unit_cost']} = {line['total_cost']}"
        )
        for part in line.get("consumption_breakdown") or []:
            click.echo(
                f"      batch {part['batch_id']}: {part['quantity_consumed']} @ {part['unit_cost']}"
                f" = {part['partial_cost']}"
            )
    click.echo(f"  Total: {data['total_cost']}")
    click.echo("")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(seasons_group)
    app.cli.add_command(entries_group)

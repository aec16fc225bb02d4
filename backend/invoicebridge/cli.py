# Overview: Flask CLI command groups for migration control and schema maintenance.

# backend/invoicebridge/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Migration:
# - python -m flask migration run [--batch-size 50] [--all]
#   Migrate the next batch of host records (--all loops until nothing is left).
# - python -m flask migration progress
#   Show total / migrated / failed / remaining counts.
# - python -m flask migration status
#   Show stored status, schema health and the current lock holder.
# - python -m flask migration verify
#   Report orphaned rows and sampled field mismatches.
# - python -m flask migration migrate-one [--host-id 42]
#   Migrate a single host record and print the full outcome.
# - python -m flask migration retry-failed
#   Clear failure markers so failed host records are picked up again.
# - python -m flask migration rollback --yes
#   DANGER: empty the relational tables and clear every migration marker.
#
# Schema:
# - python -m flask schema reconcile
#   Create missing tables, columns and indexes; bump the version marker.
# - python -m flask schema health
#   Show table existence, row counts and stored/expected versions.
# - python -m flask schema drop --yes
#   DEV/TEST only: drop the relational tables.

import json

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import MigrationLockedError
from .services.registry import get_migration_engine, get_reconciler


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


@click.group('migration')
def migration_group():
    """Host store -> relational migration commands."""


@migration_group.command('run')
@click.option('--batch-size', type=int, help='Entities per batch (defaults to MIGRATION_BATCH_SIZE)')
@click.option('--all', 'run_all', is_flag=True, help='Keep running batches until nothing is left')
@with_appcontext
def run_migration(batch_size, run_all):
    """Migrate the next batch of host records."""
    engine = get_migration_engine()
    batch_size = batch_size or current_app.config["MIGRATION_BATCH_SIZE"]

    while True:
        result = engine.run_batch(batch_size)
        if result.locked:
            click.echo(f"FAIL {result.message}")
            raise SystemExit(1)
        if not result.success:
            click.echo(f"FAIL {result.message}")
            raise SystemExit(1)

        progress = result.progress
        stalled = not result.completed and result.migrated_count == 0 and progress.get('failed', 0) > 0
        click.echo(
            f"{'WARN' if stalled else 'PASS'} {result.message} "
            f"({progress.get('migrated', 0)}/{progress.get('total', 0)}, {progress.get('percentage', 0)}%)"
        )
        for error in result.errors:
            reason = '; '.join(error.get('validation_errors') or []) or (error.get('error_detail') or {}).get('message', '')
            click.echo(f"  WARN host {error.get('host_id')}: {reason}")

        if result.completed or not run_all or result.migrated_count == 0:
            break


@migration_group.command('progress')
@with_appcontext
def show_progress():
    """Show migration progress counts."""
    _echo_json(get_migration_engine().get_progress())


@migration_group.command('status')
@with_appcontext
def show_status():
    """Show status, schema health and lock holder."""
    _echo_json(get_migration_engine().get_status())


@migration_group.command('verify')
@with_appcontext
def verify_migration():
    """Check migrated data for orphans and field mismatches."""
    report = get_migration_engine().verify_integrity()
    click.echo(f"Status: {report['status']}")
    for issue in report.get("issues", []):
        click.echo(f"  - {issue}")
    if report["status"] == "error":
        raise SystemExit(1)


@migration_group.command('migrate-one')
@click.option('--host-id', type=int, help='Host record ID (defaults to the first unmigrated one)')
@with_appcontext
def migrate_one(host_id):
    """Migrate a single host record and print the full outcome."""
    try:
        _echo_json(get_migration_engine().migrate_one(host_id))
    except MigrationLockedError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)


@migration_group.command('retry-failed')
@with_appcontext
def retry_failed():
    """Clear failure markers so failed host records are retried."""
    cleared = get_migration_engine().retry_failed()
    click.echo(f"PASS Cleared {cleared} failure markers")


@migration_group.command('rollback')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def rollback_migration(yes):
    """
    DANGER: Empty the relational tables and clear migration markers.

    Host records are left untouched.
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL migrated rows. Are you sure?", abort=True)
    try:
        ok = get_migration_engine().rollback()
    except MigrationLockedError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    if not ok:
        click.echo("FAIL Rollback failed; see the application log")
        raise SystemExit(1)
    click.echo("PASS Migration rolled back")


# =============================================================================
# SCHEMA COMMANDS
# =============================================================================

@click.group('schema')
def schema_group():
    """Relational schema maintenance commands."""


@schema_group.command('reconcile')
@with_appcontext
def reconcile_schema():
    """Bring the relational tables to the declared shape."""
    report = get_reconciler().reconcile()
    _echo_json(report.to_dict())
    if not report.ok:
        raise SystemExit(1)


@schema_group.command('health')
@with_appcontext
def schema_health():
    """Show table existence, row counts and versions."""
    _echo_json(get_reconciler().health_status())


@schema_group.command('drop')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def drop_schema(yes):
    """DEV/TEST only: drop the relational tables."""
    if not yes:
        click.confirm("WARN This will DROP the relational tables. Are you sure?", abort=True)
    get_reconciler().drop_tables()
    click.echo("PASS Relational tables dropped")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(migration_group)
    app.cli.add_command(schema_group)

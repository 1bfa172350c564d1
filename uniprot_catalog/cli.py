"""
Command-line interface for the UniProt Catalog Store.

This module provides CLI commands for schema migrations, entry and family
maintenance, membership management and ingestion of the UniProt similarity
family listing.
"""

import click
import json
import sys
from contextlib import contextmanager
from .config import SystemConfig, load_config_from_file
from .errors import CatalogStoreError, handle_error
from .logging_config import setup_logging
from .store import CatalogStore


@click.group()
@click.option('--config', '-c', type=click.Path(exists=True),
              help='Configuration file path')
@click.option('--database', '-d', type=click.Path(dir_okay=False),
              help='SQLite database path (overrides configuration)')
@click.option('--verbose', '-v', is_flag=True,
              help='Enable verbose logging')
@click.pass_context
def cli(ctx, config, database, verbose):
    """UniProt Catalog Store - schema-versioned protein catalog."""
    ctx.ensure_object(dict)

    try:
        if config:
            system_config = load_config_from_file(config)
        else:
            system_config = SystemConfig.from_env()
    except CatalogStoreError as e:
        click.echo(f"Configuration error: {e.message}", err=True)
        sys.exit(1)

    if database:
        system_config.database.path = database
    if verbose:
        system_config.logging.level = "DEBUG"

    setup_logging(system_config.logging)
    ctx.obj['config'] = system_config


@contextmanager
def _store(ctx, operation):
    """Open the store for one command and report store errors as failures."""
    try:
        with CatalogStore(ctx.obj['config']) as store:
            yield store
    except CatalogStoreError as e:
        handle_error(e, e.context)
        click.echo(f"{operation} failed: {type(e).__name__}: {e.message}", err=True)
        sys.exit(1)


@cli.group()
def migrate():
    """Apply, revert and inspect schema migrations."""


@migrate.command('up')
@click.option('--target', help='Highest version to apply (default: latest)')
@click.pass_context
def migrate_up(ctx, target):
    """Apply pending migrations."""
    with _store(ctx, "migrate up") as store:
        applied = store.apply_up(target)
        if not applied:
            click.echo("No pending migrations.")
        for version in applied:
            click.echo(f"Applied {version}")
        click.echo(f"Schema version: {store.context.shape.label}")


@migrate.command('down')
@click.option('--steps', default=1, type=int, help='Number of migrations to revert')
@click.pass_context
def migrate_down(ctx, steps):
    """Revert the most recent migrations."""
    with _store(ctx, "migrate down") as store:
        reverted = store.apply_down(steps)
        if not reverted:
            click.echo("No migrations to revert.")
        for version in reverted:
            click.echo(f"Reverted {version}")
        click.echo(f"Schema version: {store.context.shape.label}")


@migrate.command('status')
@click.option('--json', 'as_json', is_flag=True, help='Print status as JSON')
@click.pass_context
def migrate_status(ctx, as_json):
    """Show applied and pending migrations."""
    with _store(ctx, "migrate status") as store:
        status = store.status()

    if as_json:
        click.echo(json.dumps(status, indent=2))
        return

    click.echo("=== Migration Status ===")
    click.echo(f"Current version: {status['current_version'] or 'unversioned'}")
    click.echo(f"Latest version: {status['latest_version']}")
    click.echo(f"Up to date: {'yes' if status['is_up_to_date'] else 'no'}")
    for version in status['applied_migrations']:
        click.echo(f"  [x] {version}")
    for version in status['pending_migrations']:
        click.echo(f"  [ ] {version}")


@cli.group()
def entry():
    """Read and write catalog entries."""


@entry.command('put')
@click.argument('record')
@click.pass_context
def entry_put(ctx, record):
    """Insert or replace an entry given as a JSON object."""
    try:
        data = json.loads(record)
    except json.JSONDecodeError as e:
        click.echo(f"Invalid JSON record: {e}", err=True)
        sys.exit(1)

    with _store(ctx, "entry put") as store:
        stored = store.entries.upsert(data)
    click.echo(json.dumps(stored, indent=2))


@entry.command('get')
@click.argument('accession_number')
@click.pass_context
def entry_get(ctx, accession_number):
    """Print an entry as JSON."""
    with _store(ctx, "entry get") as store:
        record = store.entries.get(accession_number)
    click.echo(json.dumps(record, indent=2))


@entry.command('delete')
@click.argument('accession_number')
@click.pass_context
def entry_delete(ctx, accession_number):
    """Delete an entry and its memberships."""
    with _store(ctx, "entry delete") as store:
        removed = store.entries.delete(accession_number)
    click.echo(f"Deleted {accession_number}" if removed else f"{accession_number} not present")


@cli.group()
def family():
    """Create and delete families."""


@family.command('add')
@click.argument('name')
@click.pass_context
def family_add(ctx, name):
    """Create a family."""
    with _store(ctx, "family add") as store:
        store.families.upsert(name)
    click.echo(f"Family '{name}' stored")


@family.command('delete')
@click.argument('name')
@click.pass_context
def family_delete(ctx, name):
    """Delete a family and its memberships."""
    with _store(ctx, "family delete") as store:
        removed = store.families.delete(name)
    click.echo(f"Deleted family '{name}'" if removed else f"Family '{name}' not present")


@cli.group()
def membership():
    """Relate entries to sequence similarity families."""


@membership.command('add')
@click.argument('accession_number')
@click.argument('family_name')
@click.pass_context
def membership_add(ctx, accession_number, family_name):
    """Add ACCESSION_NUMBER to FAMILY_NAME."""
    with _store(ctx, "membership add") as store:
        created = store.memberships.add_membership(accession_number, family_name)
    click.echo(f"Added {accession_number} to '{family_name}'" if created
               else f"{accession_number} already in '{family_name}'")


@membership.command('remove')
@click.argument('accession_number')
@click.argument('family_name')
@click.pass_context
def membership_remove(ctx, accession_number, family_name):
    """Remove ACCESSION_NUMBER from FAMILY_NAME."""
    with _store(ctx, "membership remove") as store:
        removed = store.memberships.remove_membership(accession_number, family_name)
    click.echo(f"Removed {accession_number} from '{family_name}'" if removed
               else f"{accession_number} not in '{family_name}'")


@membership.command('list')
@click.option('--entry', 'accession_number', help='List the families of an entry')
@click.option('--family', 'family_name', help='List the entries of a family')
@click.pass_context
def membership_list(ctx, accession_number, family_name):
    """List memberships of an entry or a family."""
    if bool(accession_number) == bool(family_name):
        click.echo("Specify exactly one of --entry or --family", err=True)
        sys.exit(2)

    with _store(ctx, "membership list") as store:
        if accession_number:
            names = store.memberships.families_of(accession_number)
        else:
            names = store.memberships.entries_of(family_name)

    for name in sorted(names):
        click.echo(name)


@cli.group()
def ingest():
    """Load catalog data from UniProt."""


@ingest.command('similar')
@click.option('--url', help='Location of similar.txt (default from configuration)')
@click.option('--species', multiple=True, help='Species suffix to keep, e.g. HUMAN (repeatable)')
@click.pass_context
def ingest_similar_command(ctx, url, species):
    """Load sequence similarity families from similar.txt."""
    from .ingest.similar import ingest_similar

    config = ctx.obj['config']
    if url:
        config.ingest.similar_url = url
    if species:
        config.ingest.species = [s.upper() for s in species]

    click.echo("=== Similarity Family Ingestion ===")
    click.echo(f"Source: {config.ingest.similar_url}")
    click.echo(f"Species: {', '.join(config.ingest.species)}")

    with _store(ctx, "ingest similar") as store:
        stats = ingest_similar(store, config.ingest, retry_config=config.retry)

    click.echo("\n=== Ingestion Results ===")
    click.echo(f"Entries stored: {stats.entries_stored}")
    click.echo(f"Families stored: {stats.families_stored}")
    click.echo(f"Memberships stored: {stats.memberships_stored}")
    if stats.validation_errors:
        click.echo(f"Validation errors: {stats.validation_errors}")
    click.echo(f"Duration: {stats.duration_seconds:.1f} seconds")


def main():
    """Main entry point for the CLI."""
    try:
        cli()
    except KeyboardInterrupt:
        click.echo("\nOperation cancelled by user.", err=True)
        sys.exit(1)


if __name__ == '__main__':
    main()

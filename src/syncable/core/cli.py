"""Command line interface for operating the sync engine."""

import os
import sys
import json
import logging
from typing import Optional

import click

from .config import SyncSettings, setup_logging, load_environment
from ..engine.conflicts import ConflictResolver
from ..exceptions import SyncException
from ..models.records import ConflictStatus, SyncLogStatus
from ..services.encryption import EncryptionService
from ..services.store import SyncStore


def _get_store() -> SyncStore:
    """Store the CLI operates on: Firestore in the configured project."""
    from ..services.firestore import FirestoreStore
    return FirestoreStore(project_id=os.getenv("GOOGLE_CLOUD_PROJECT"))


def _get_settings() -> SyncSettings:
    """Settings from the environment, with keys from Secret Manager when a project is configured."""
    if not os.getenv("GOOGLE_CLOUD_PROJECT"):
        return SyncSettings.from_env()

    from ..services.secrets import SecretManagerService
    return SyncSettings.from_env(SecretManagerService())


@click.group()
@click.option('--log-level', default='INFO', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR']),
              help='Set the logging level')
@click.option('--env-file', type=click.Path(exists=True), help='Path to .env file')
def cli(log_level: str, env_file: Optional[str]) -> None:
    """Syncable record sync tool."""
    setup_logging(log_level)
    load_environment(env_file)


@cli.command()
def generate_key() -> None:
    """Generate a new encryption key for SYNCABLE_ENCRYPTION_KEY."""
    key = EncryptionService.generate_key()
    click.echo(key)
    click.echo("Set this value as SYNCABLE_ENCRYPTION_KEY on every participating system.", err=True)


@cli.group()
def conflicts() -> None:
    """Review conflicts stored for manual resolution."""


@conflicts.command('list')
@click.option('--status', type=click.Choice(['pending', 'resolved', 'all']), default='pending',
              help='Which conflicts to show')
@click.option('--model-type', help='Only conflicts for this model type')
@click.option('--limit', type=int, default=50, help='Maximum number of conflicts')
@click.option('--output', type=click.Choice(['table', 'json']), default='table',
              help='Output format')
def list_conflicts(status: str, model_type: Optional[str], limit: int, output: str) -> None:
    """List stored conflicts."""
    try:
        store = _get_store()
        wanted = None if status == 'all' else ConflictStatus(status)
        rows = store.list_conflicts(wanted, model_type, limit)

        if output == 'json':
            click.echo(json.dumps([c.model_dump(mode='json') for c in rows], indent=2))
            return

        if not rows:
            click.echo("No conflicts found.")
            return

        click.echo(f"{'ID':<38} {'Model':<20} {'Record':<12} {'Fields':<30} {'Origin':<15} {'Status':<10}")
        click.echo("-" * 130)
        for c in rows:
            fields = ", ".join(c.conflicting_fields)
            click.echo(f"{c.id:<38} {c.model_type:<20} {str(c.model_id):<12} {fields:<30} "
                       f"{c.origin_system_id:<15} {c.status.value:<10}")

    except Exception as e:
        logging.exception("Unexpected error occurred")
        click.echo(f"Unexpected error: {e}", err=True)
        sys.exit(1)


@conflicts.command('resolve')
@click.argument('conflict_id')
@click.option('--by', 'resolved_by', default=lambda: os.getenv('USER', 'cli'), help='Who resolved it')
@click.option('--notes', help='Resolution notes')
def resolve_conflict(conflict_id: str, resolved_by: str, notes: Optional[str]) -> None:
    """Mark a pending conflict as resolved."""
    try:
        resolver = ConflictResolver(_get_settings(), _get_store())
        conflict = resolver.mark_resolved(conflict_id, resolved_by=resolved_by, notes=notes)
        click.echo(f"Conflict {conflict.id} resolved by {conflict.resolved_by}")

    except SyncException as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except Exception as e:
        logging.exception("Unexpected error occurred")
        click.echo(f"Unexpected error: {e}", err=True)
        sys.exit(1)


@cli.group()
def mappings() -> None:
    """Inspect identity mappings."""


@mappings.command('show')
@click.argument('local_type')
@click.argument('local_id', required=False)
@click.option('--limit', type=int, default=100, help='Maximum number of mappings')
def show_mappings(local_type: str, local_id: Optional[str], limit: int) -> None:
    """Show mappings for a local model type, optionally one record."""
    try:
        rows = _get_store().list_mappings(local_type, local_id, limit)
        if not rows:
            click.echo("No mappings found.")
            return

        click.echo(f"{'Local':<30} {'Remote':<30} {'System':<20} {'Tenant':<10}")
        click.echo("-" * 95)
        for m in rows:
            tenant = str(m.tenant_id) if m.tenant_id is not None else "-"
            click.echo(f"{f'{m.local_type}#{m.local_id}':<30} {f'{m.remote_type}#{m.remote_id}':<30} "
                       f"{m.system_id:<20} {tenant:<10}")

    except Exception as e:
        logging.exception("Unexpected error occurred")
        click.echo(f"Unexpected error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.option('--model-type', help='Only entries for this model type')
@click.option('--model-id', help='Only entries for this record')
@click.option('--status', type=click.Choice(['success', 'failed']), help='Only entries with this status')
@click.option('--limit', type=int, default=20, help='Maximum number of entries')
def logs(model_type: Optional[str], model_id: Optional[str], status: Optional[str], limit: int) -> None:
    """Show recent sync log entries."""
    try:
        entries = _get_store().list_logs(
            model_type, model_id, SyncLogStatus(status) if status else None, limit
        )
        if not entries:
            click.echo("No sync log entries found.")
            return

        for entry in entries:
            origin = entry.origin_system_id or "-"
            click.echo(f"{entry.created_at:%Y-%m-%d %H:%M:%S} {entry.status.value:<8} {entry.action.value:<7} "
                       f"{entry.model_type}#{entry.model_id} from {origin}: {entry.message or ''}")

    except Exception as e:
        logging.exception("Unexpected error occurred")
        click.echo(f"Unexpected error: {e}", err=True)
        sys.exit(1)


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == '__main__':
    main()

"""
Operator commands for the preference tracker (``flask prefs ...``).
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional

import click
from celery import Celery
from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask.cli import ScriptInfo

from tcprefs_app.importer import collections as collection_service
from tcprefs_app.importer import services
from tcprefs_app.importer.celery_app import DEFAULT_QUEUE_NAME, get_celery_app
from tcprefs_app.importer.export import build_preferences_xml, build_revision_xml, suggested_export_filename
from tcprefs_app.importer.pipeline.compare import ComparisonEngine, build_comparison
from tcprefs_app.importer.pipeline.reconcile import PreferenceImportError, import_all
from tcprefs_app.importer.pipeline.status import PreferenceStatus, preference_status, summarize_statuses
from tcprefs_app.models import Connection, Preference, as_utc

IMPORT_TASK_NAME = "prefs.import_connection"
HEALTHCHECK_TASK_NAME = "prefs.healthcheck"


@click.group(name="prefs", invoke_without_command=True)
@click.pass_context
def prefs_cli(ctx):
    """Teamcenter preference tracker commands."""
    info = ctx.ensure_object(ScriptInfo)
    info.load_app()
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


def _resolve_celery(app) -> Optional[Celery]:
    celery_app = get_celery_app(app)
    if celery_app is None:
        raise click.ClickException(
            "Import worker is unavailable. Ensure the prefs extension is initialised before "
            "running worker commands."
        )
    return celery_app


def _resolve_connection(reference: str) -> Connection:
    try:
        return services.get_connection(reference)
    except services.ConnectionNotFound as exc:
        raise click.ClickException(str(exc)) from exc


def _format_timestamp(value: datetime | None) -> str:
    value = as_utc(value)
    return value.isoformat() if value is not None else "never"


def _connection_payload(connection: Connection) -> dict[str, object]:
    return {
        "id": connection.id,
        "title": connection.title,
        "name": connection.name,
        "url": connection.url,
        "description": connection.description,
        "username": connection.username,
        "last_import_started_at": _format_timestamp(connection.last_import_started_at),
        "last_import_completed_at": _format_timestamp(connection.last_import_completed_at),
    }


def _select_preferences(connection: Connection, terms: Iterable[str], collection_name: str | None) -> List[Preference]:
    selected: dict[str, Preference] = {}
    terms = list(terms)
    if terms:
        for preference in services.find_preferences(connection, terms):
            selected[preference.key] = preference
    if collection_name:
        collection = collection_service.find_collection(connection, collection_name)
        if collection is None:
            raise click.ClickException(f"No collection named '{collection_name}' on {connection.title}.")
        for preference in collection_service.collection_preferences(collection):
            selected[preference.key] = preference
    return list(selected.values())


# Connections ----------------------------------------------------------------------


@prefs_cli.command("connections")
@click.option("--json", "as_json", is_flag=True, help="Print connections as JSON.")
def connections_command(as_json: bool):
    """List configured Teamcenter connections."""
    connections = services.list_connections()
    if as_json:
        click.echo(json.dumps([_connection_payload(connection) for connection in connections], indent=2))
        return
    if not connections:
        click.echo("No connections configured.")
        return
    for connection in connections:
        click.echo(
            f"{connection.id}  {connection.title}  {connection.url}  "
            f"(last import: {_format_timestamp(connection.last_import_completed_at)})"
        )


@prefs_cli.command("add-connection")
@click.option("--url", required=True, help="Teamcenter web tier base URL.")
@click.option("--name", default="", help="Display name; the URL is shown when blank.")
@click.option("--description", default="")
@click.option("--username", default="")
@click.option("--password", default="", prompt=True, hide_input=True, prompt_required=False)
def add_connection_command(url: str, name: str, description: str, username: str, password: str):
    """Register a Teamcenter connection."""
    try:
        connection = services.create_connection(
            name=name,
            url=url,
            description=description,
            username=username,
            password=password,
        )
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(json.dumps({"id": connection.id, "title": connection.title}))


@prefs_cli.command("update-connection")
@click.argument("connection_ref")
@click.option("--url")
@click.option("--name")
@click.option("--description")
@click.option("--username")
@click.option("--password")
def update_connection_command(connection_ref: str, **changes):
    """Change fields of an existing connection."""
    connection = _resolve_connection(connection_ref)
    services.update_connection(connection, **{key: value for key, value in changes.items() if value is not None})
    click.echo(json.dumps(_connection_payload(connection), indent=2))


@prefs_cli.command("delete-connection")
@click.argument("connection_ref")
@click.confirmation_option(prompt="Delete the connection with all its preferences, history and collections?")
def delete_connection_command(connection_ref: str):
    """Delete a connection and everything stored for it."""
    connection = _resolve_connection(connection_ref)
    title = connection.title
    services.delete_connection(connection)
    click.echo(f"Deleted connection {title}.")


# Import -------------------------------------------------------------------------------


@prefs_cli.command("import")
@click.argument("connection_ref")
@click.option("--batch-size", type=click.IntRange(min=1), help="Records per committed batch.")
@click.option("--timeout", type=float, help="Abort at the next batch boundary after this many seconds.")
@click.option(
    "--queue/--inline",
    "queue",
    default=False,
    help="Hand the import to the Celery worker instead of running it in this process.",
)
@click.pass_context
def import_command(ctx, connection_ref: str, batch_size: Optional[int], timeout: Optional[float], queue: bool):
    """Import every preference of a connection and record changes."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    connection = _resolve_connection(connection_ref)

    if queue:
        if timeout is not None:
            raise click.ClickException("--timeout is only available for inline imports.")
        celery_app = _resolve_celery(app)
        try:
            async_result = celery_app.send_task(
                IMPORT_TASK_NAME,
                kwargs={"connection_id": connection.id, "batch_size": batch_size},
                queue=DEFAULT_QUEUE_NAME,
            )
        except Exception as exc:
            app.logger.exception(
                "Failed to enqueue preference import", extra={"prefs_connection_id": connection.id}
            )
            raise click.ClickException(f"Failed to enqueue preference import: {exc}") from exc
        click.echo(
            json.dumps({"status": "queued", "task_id": async_result.id, "connection_id": connection.id})
        )
        return

    try:
        summary = import_all(connection, batch_size=batch_size, timeout=timeout)
    except PreferenceImportError as exc:
        raise click.ClickException(f"Import of {connection.title} failed: {exc}") from exc
    click.echo(json.dumps({"status": "succeeded", **summary.to_dict()}, indent=2))


# Browsing -----------------------------------------------------------------------------


@prefs_cli.command("status")
@click.argument("connection_ref")
@click.option("--category", help="Only preferences of this category.")
@click.option("--scope", help="Only preferences with this protection scope.")
@click.option("--search", help="Whitespace-separated terms matched against name, description, values, comment.")
@click.option(
    "--only",
    "only_status",
    type=click.Choice([status.value for status in PreferenceStatus]),
    help="Only list preferences with this status.",
)
@click.option("--offset", type=click.IntRange(min=0), default=0, show_default=True)
@click.option("--limit", type=click.IntRange(min=1))
@click.option("--json", "as_json", is_flag=True)
def status_command(
    connection_ref: str,
    category: Optional[str],
    scope: Optional[str],
    search: Optional[str],
    only_status: Optional[str],
    offset: int,
    limit: Optional[int],
    as_json: bool,
):
    """Show status counts and per-preference status for a connection."""
    connection = _resolve_connection(connection_ref)
    preferences = services.list_preferences(connection, category=category, scope=scope, search=search)
    counts = summarize_statuses(preferences, connection)

    listed = [(preference, preference_status(preference, connection)) for preference in preferences]
    if only_status:
        listed = [(preference, status) for preference, status in listed if status.value == only_status]
    end = None if limit is None else offset + limit
    listed = listed[offset:end]

    if as_json:
        payload = {
            "connection": connection.title,
            "counts": {status.value: count for status, count in counts.items()},
            "preferences": [
                {
                    "name": preference.name,
                    "category": preference.category,
                    "type": preference.type_label,
                    "status": status.value,
                    "values": preference.value_list,
                    "comment": preference.comment,
                }
                for preference, status in listed
            ],
        }
        click.echo(json.dumps(payload, indent=2))
        return

    click.echo(f"{connection.title}: " + ", ".join(f"{status.value}={count}" for status, count in counts.items()))
    for preference, status in listed:
        click.echo(f"  {status.value:<8} {preference.name} [{preference.category}]")


@prefs_cli.command("history")
@click.argument("connection_ref")
@click.argument("name")
@click.option("--xml", "revision_id", type=int, help="Print the XML export of one revision.")
def history_command(connection_ref: str, name: str, revision_id: Optional[int]):
    """List the recorded revisions of one preference, newest first."""
    connection = _resolve_connection(connection_ref)
    preference = services.get_preference(connection, name)
    if preference is None:
        raise click.ClickException(f"No preference named '{name}' on {connection.title}.")

    revisions = services.preference_history(preference)
    if revision_id is not None:
        revision = next((item for item in revisions if item.id == revision_id), None)
        if revision is None:
            raise click.ClickException(f"Revision {revision_id} does not belong to '{name}'.")
        click.echo(build_revision_xml(preference, revision), nl=False)
        return

    for revision in revisions:
        values = ", ".join(revision.values or []) or "(no values)"
        click.echo(f"{revision.id}  {_format_timestamp(revision.captured_at)}  {values}")


@prefs_cli.command("comment")
@click.argument("connection_ref")
@click.argument("name")
@click.argument("text", required=False)
@click.option("--clear", is_flag=True, help="Remove the comment.")
def comment_command(connection_ref: str, name: str, text: Optional[str], clear: bool):
    """Set or clear the note attached to a preference."""
    connection = _resolve_connection(connection_ref)
    preference = services.get_preference(connection, name)
    if preference is None:
        raise click.ClickException(f"No preference named '{name}' on {connection.title}.")
    if not clear and text is None:
        click.echo(preference.comment or "")
        return
    services.update_comment(preference, None if clear else text)
    click.echo(f"Comment {'cleared' if clear else 'saved'} for {name}.")


# Comparison ---------------------------------------------------------------------------


def _column_payload(column) -> dict[str, object]:
    return {
        "connection_id": column.connection_id,
        "title": column.title,
        "snapshot_at": _format_timestamp(column.snapshot_at),
        "fresh": column.fresh,
        "error": column.error,
    }


def _echo_comparison(engine: ComparisonEngine, only_differences: bool, search: Optional[str]) -> None:
    columns = [engine.primary, *engine.secondaries]
    for column in columns:
        state = "refreshed" if column.fresh else "stored"
        suffix = f" - {column.error}" if column.error else ""
        click.echo(f"# {column.title} ({state}, snapshot {_format_timestamp(column.snapshot_at)}){suffix}")
    for row in engine.rows(only_differences=only_differences, search=search):
        statuses = " ".join(status.value for status in row.statuses)
        click.echo(f"{row.name} [{row.category}] {statuses}")


@prefs_cli.command("compare")
@click.argument("primary_ref")
@click.argument("secondary_refs", nargs=-1, required=True)
@click.option("--name", "names", multiple=True, help="Preference name to compare (repeatable).")
@click.option("--collection", help="Compare the members of this collection of the primary connection.")
@click.option("--refresh-primary", is_flag=True, help="Re-import the primary connection first.")
@click.option("--refresh", "refresh_secondaries", is_flag=True, help="Re-import every secondary connection first.")
@click.option("--only-differences", is_flag=True)
@click.option("--search")
@click.option("--max-workers", type=click.IntRange(min=1), help="Parallel secondary refreshes.")
@click.option("--json", "as_json", is_flag=True)
def compare_command(
    primary_ref: str,
    secondary_refs: tuple[str, ...],
    names: tuple[str, ...],
    collection: Optional[str],
    refresh_primary: bool,
    refresh_secondaries: bool,
    only_differences: bool,
    search: Optional[str],
    max_workers: Optional[int],
    as_json: bool,
):
    """Compare preference values of a primary connection against others."""
    primary = _resolve_connection(primary_ref)
    secondaries = [_resolve_connection(reference) for reference in secondary_refs]

    universe = list(names)
    if collection:
        universe.extend(preference.name for preference in _select_preferences(primary, (), collection))
    if not universe:
        raise click.ClickException("Provide at least one --name or a --collection to compare.")

    try:
        engine = build_comparison(
            primary.id,
            [connection.id for connection in secondaries],
            universe,
            refresh_primary=refresh_primary,
            refresh_secondaries=refresh_secondaries,
            max_workers=max_workers,
        )
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc

    if not as_json:
        _echo_comparison(engine, only_differences, search)
        return

    payload = {
        "primary": _column_payload(engine.primary),
        "secondaries": [_column_payload(column) for column in engine.secondaries],
        "rows": [
            {
                "name": row.name,
                "category": row.category,
                "primary": list(row.primary_values) if row.primary_values is not None else None,
                "secondaries": [list(values) if values is not None else None for values in row.secondary_values],
                "statuses": [status.value for status in row.statuses],
            }
            for row in engine.rows(only_differences=only_differences, search=search)
        ],
    }
    click.echo(json.dumps(payload, indent=2))


# Export -------------------------------------------------------------------------------


@prefs_cli.command("export")
@click.argument("connection_ref")
@click.argument("terms", nargs=-1)
@click.option("--collection", help="Export the members of this collection.")
@click.option("--all", "export_all", is_flag=True, help="Export every preference of the connection.")
@click.option(
    "--output",
    type=click.Path(path_type=Path),
    help="File or directory to write; the document is printed when omitted.",
)
def export_command(
    connection_ref: str,
    terms: tuple[str, ...],
    collection: Optional[str],
    export_all: bool,
    output: Optional[Path],
):
    """
    Export preferences as a Teamcenter preference XML document.

    TERMS containing a dot are exact preference names; other terms match
    names by substring.
    """
    connection = _resolve_connection(connection_ref)
    if export_all:
        preferences = services.list_preferences(connection)
    else:
        preferences = _select_preferences(connection, terms, collection)
    if not preferences:
        raise click.ClickException("No preferences selected for export.")

    document = build_preferences_xml(preferences)
    if output is None:
        click.echo(document, nl=False)
        return

    collection_name = None
    if collection and not terms and not export_all:
        collection_name = collection_service.find_collection(connection, collection).name
    target = (
        output / suggested_export_filename(preferences, collection_name=collection_name)
        if output.is_dir()
        else output
    )
    target.write_text(document, encoding="utf-8")
    click.echo(f"Exported {len(preferences)} preference(s) to {target}")


# Collections --------------------------------------------------------------------------


@prefs_cli.command("collections")
@click.argument("connection_ref")
@click.option("--json", "as_json", is_flag=True)
def collections_command(connection_ref: str, as_json: bool):
    """List a connection's preference collections."""
    connection = _resolve_connection(connection_ref)
    collections = collection_service.list_collections(connection)
    rows = [(collection.name, collection_service.member_count(collection)) for collection in collections]
    if as_json:
        click.echo(json.dumps([{"name": name, "members": count} for name, count in rows], indent=2))
        return
    if not rows:
        click.echo(f"No collections on {connection.title}.")
    for name, count in rows:
        click.echo(f"{name} ({count})")


@prefs_cli.command("collect")
@click.argument("connection_ref")
@click.argument("collection_name")
@click.argument("terms", nargs=-1, required=True)
@click.option("--remove", is_flag=True, help="Unlink the matching preferences instead.")
def collect_command(connection_ref: str, collection_name: str, terms: tuple[str, ...], remove: bool):
    """Add preferences matching TERMS to a collection, creating it if needed."""
    connection = _resolve_connection(connection_ref)
    preferences = services.find_preferences(connection, terms)

    if remove:
        collection = collection_service.find_collection(connection, collection_name)
        if collection is None:
            raise click.ClickException(f"No collection named '{collection_name}' on {connection.title}.")
        removed = collection_service.remove_preferences(collection, preferences)
        click.echo(f"Removed {removed} preference(s) from '{collection.name}'.")
        return

    try:
        collection = collection_service.get_or_create_collection(connection, collection_name)
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    linked = collection_service.assign_preferences(collection, preferences)
    click.echo(f"Linked {linked} preference(s) to '{collection.name}'.")


@prefs_cli.command("delete-collection")
@click.argument("connection_ref")
@click.argument("collection_name")
@click.option("--force", is_flag=True, help="Delete even when the collection still has members.")
def delete_collection_command(connection_ref: str, collection_name: str, force: bool):
    """Delete a collection (never the preferences in it)."""
    connection = _resolve_connection(connection_ref)
    collection = collection_service.find_collection(connection, collection_name)
    if collection is None:
        raise click.ClickException(f"No collection named '{collection_name}' on {connection.title}.")
    name = collection.name
    try:
        collection_service.delete_collection(collection, force=force)
    except collection_service.CollectionNotEmpty as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Deleted collection '{name}'.")


# Worker -------------------------------------------------------------------------------


@prefs_cli.group(name="worker")
@click.pass_context
def worker_group(ctx):
    """Manage the import background worker."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    state = app.extensions.get("prefs", {})
    if not state.get("worker_enabled") and not app.config.get("PREFS_WORKER_ENABLED"):
        click.echo(
            "Warning: PREFS_WORKER_ENABLED is false. Commands will still run, "
            "but queued imports need a running worker.",
            err=True,
        )


@worker_group.command("run")
@click.option("--loglevel", default="info", show_default=True)
@click.option("--concurrency", type=int, help="Number of worker processes/threads.")
@click.option("--pool", type=str, help="Celery pool implementation (e.g., 'prefork', 'solo', 'threads').")
@click.option("--queues", default=DEFAULT_QUEUE_NAME, show_default=True, help="Comma-separated queue list to consume.")
@click.pass_context
def worker_run(ctx, loglevel: str, concurrency: Optional[int], pool: Optional[str], queues: str):
    """Start the Celery worker in the current process."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    celery_app = _resolve_celery(app)
    app.extensions["prefs"]["worker_enabled"] = True

    argv = ["worker", "--loglevel", loglevel, "-Q", queues]
    if concurrency:
        argv.extend(["--concurrency", str(concurrency)])
    if pool:
        argv.extend(["--pool", pool])

    pool_msg = f", pool: {pool}" if pool else ""
    click.echo(f"Starting import worker (queues: {queues}, loglevel: {loglevel}{pool_msg})")
    try:
        celery_app.worker_main(argv=argv)
    except KeyboardInterrupt:
        click.echo("Worker shutdown requested. Exiting...")


@worker_group.command("ping")
@click.option("--timeout", default=10.0, show_default=True, help="Seconds to wait for a response.")
@click.pass_context
def worker_ping(ctx, timeout: float):
    """Check that a worker answers the heartbeat task."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    celery_app = _resolve_celery(app)
    task = celery_app.tasks.get(HEALTHCHECK_TASK_NAME)
    if task is None:
        raise click.ClickException(f"Heartbeat task '{HEALTHCHECK_TASK_NAME}' is not registered.")

    result = task.apply_async()
    try:
        payload = result.get(timeout=timeout)
    except CeleryTimeoutError as exc:
        raise click.ClickException(f"Worker did not respond within {timeout}s") from exc
    except Exception as exc:  # pragma: no cover - surfacing unexpected errors
        raise click.ClickException(f"Worker ping failed: {exc}") from exc

    click.echo(json.dumps(payload, indent=2))

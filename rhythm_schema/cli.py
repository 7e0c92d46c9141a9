"""
CLI entrypoint for rhythm-schema.

The command line is the UI collaborator of the migration engine. It shows the
pending migrations found at startup, previews merges under an editable policy,
and records the user's decision.

Commands:
    status: Run startup detection and show each domain's schema status
    preview: Show what a pending migration and merge would change
    accept: Apply a pending migration (merge or transform chain)
    keep: Keep current data and record the decision
    dismiss: Stop prompting for the current target version
    history: Show the last decision and dismissed versions per domain
    validate: Validate configuration without touching the store

Exit codes:
    0: Success
    1: Configuration error (invalid YAML, unknown domain)
    2: Storage error (cannot create/access the store)
    3: Migration failure (no pending migration, failing step, no path)

Examples:
    rhythm-schema status --config rhythm-schema.yaml
    rhythm-schema preview songs --update-modified
    rhythm-schema accept songs --yes --format json
    rhythm-schema dismiss instruments
"""

import logging
from pathlib import Path

import typer
from rich.traceback import install as install_rich_traceback

from rhythm_schema.config.loader import load_config, resolve_domains
from rhythm_schema.config.schema import RhythmSchemaConfig
from rhythm_schema.defaults import (
    DefaultsNotFoundError,
    InvalidDefaultsError,
    load_bundled_defaults,
)
from rhythm_schema.exceptions import (
    ConfigFileNotFoundError,
    ConfigValidationError,
    StorageError,
    UnknownDomainError,
)
from rhythm_schema.migration.models import MergePolicy, UserChoice
from rhythm_schema.migration.registry import get_domain
from rhythm_schema.migration.session import MigrationSession
from rhythm_schema.storage.persistence import SQLitePersistence
from rhythm_schema.utils.console import (
    error,
    info,
    output_mode,
    print_analysis,
    print_history,
    print_merge_preview,
    print_status_table,
    success,
    warning,
)
from rhythm_schema.utils.logging import setup_logging

install_rich_traceback(show_locals=False)

logger = logging.getLogger(__name__)

# Exit codes
EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1
EXIT_STORAGE_ERROR = 2
EXIT_MIGRATION_FAILED = 3

app = typer.Typer(
    name="rhythm-schema",
    help="Migrate and reconcile stored rhythm notation data",
    add_completion=False,
)


# ============================================================================
# Shared options and helpers
# ============================================================================

ConfigOption = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to YAML configuration file (built-in defaults if omitted)",
)
FormatOption = typer.Option(
    "text",
    "--format",
    "-f",
    help="Output format: 'text' (human-friendly) or 'json' (machine-readable)",
)
QuietOption = typer.Option(False, "--quiet", "-q", help="Minimal output (tab-separated values)")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Enable debug logging")


def _configure_output(format: str, quiet: bool, verbose: bool) -> None:
    if format not in ("text", "json"):
        error(f"Invalid format: {format}. Must be 'text' or 'json'")
        raise typer.Exit(EXIT_CONFIG_ERROR)
    output_mode.format = format
    output_mode.quiet = quiet
    setup_logging(verbose=verbose)


def _fail(message: str, code: int) -> None:
    error(message)
    output_mode.flush_json()
    raise typer.Exit(code)


def _load_config_or_exit(config: Path | None) -> RhythmSchemaConfig:
    try:
        return load_config(config)
    except ConfigFileNotFoundError as e:
        _fail(f"Configuration file not found: {e}", EXIT_CONFIG_ERROR)
    except ConfigValidationError as e:
        _fail(f"Configuration validation failed: {e}", EXIT_CONFIG_ERROR)


def _open_session(
    settings: RhythmSchemaConfig, policy: MergePolicy | None = None
) -> MigrationSession:
    defaults_dir = settings.storage.defaults_dir

    def provider(domain: str):
        return load_bundled_defaults(domain, Path(defaults_dir) if defaults_dir else None)

    try:
        persistence = SQLitePersistence(settings.storage.db_path)
    except StorageError as e:
        _fail(f"Storage error: {e}", EXIT_STORAGE_ERROR)

    return MigrationSession(
        persistence,
        defaults_provider=provider,
        domains=resolve_domains(settings),
        policy=policy or settings.merge_policy,
    )


def _start_or_exit(session: MigrationSession):
    try:
        return session.start()
    except StorageError as e:
        _fail(f"Storage error: {e}", EXIT_STORAGE_ERROR)
    except (DefaultsNotFoundError, InvalidDefaultsError) as e:
        _fail(f"Bundled defaults unavailable: {e}", EXIT_CONFIG_ERROR)


def _edited_policy(
    base: MergePolicy,
    preserve_user_data: bool | None,
    add_new_defaults: bool | None,
    update_modified: bool | None,
    remove_deleted: bool | None,
) -> MergePolicy:
    """Apply the flags the user actually passed on top of the configured policy."""
    overrides = {
        "preserve_user_data": preserve_user_data,
        "add_new_defaults": add_new_defaults,
        "update_modified": update_modified,
        "remove_deleted": remove_deleted,
    }
    return base.model_copy(update={k: v for k, v in overrides.items() if v is not None})


def _check_domain(domain: str) -> None:
    try:
        get_domain(domain)
    except UnknownDomainError as e:
        _fail(str(e), EXIT_CONFIG_ERROR)


PreserveOption = typer.Option(
    None,
    "--preserve-user-data/--drop-user-data",
    help="Keep custom records that are not bundled defaults",
)
AddOption = typer.Option(
    None,
    "--add-new-defaults/--skip-new-defaults",
    help="Add bundled records you do not have yet",
)
UpdateOption = typer.Option(
    None,
    "--update-modified/--keep-modified",
    help="Replace records you modified with the bundled version",
)
RemoveOption = typer.Option(
    None,
    "--remove-deleted/--keep-deleted",
    help=(
        "Recorded with the policy only; use --drop-user-data to drop records "
        "not shipped as defaults"
    ),
)


# ============================================================================
# Commands
# ============================================================================


@app.command()
def status(
    config: Path | None = ConfigOption,
    format: str = FormatOption,
    quiet: bool = QuietOption,
    verbose: bool = VerboseOption,
):
    """
    Run startup detection and show each domain's schema status.

    Stored data below a domain's minimum version is reset to bundled defaults
    here, without prompting.
    """
    _configure_output(format, quiet, verbose)
    settings = _load_config_or_exit(config)
    session = _open_session(settings)
    detections = _start_or_exit(session)

    print_status_table(detections)

    for detection in detections:
        if detection.forced_reset:
            warning(
                f"{detection.domain}: stored version {detection.stored_version} is below "
                f"the minimum; local data was replaced with bundled defaults"
            )

    pending = [d for d in detections if d.pending]
    if pending:
        info(
            f"{len(pending)} pending migration(s): "
            + ", ".join(d.domain for d in pending)
            + ". Use 'rhythm-schema preview DOMAIN' for details."
        )
    else:
        success("All domains are up to date")

    output_mode.flush_json()
    raise typer.Exit(EXIT_SUCCESS)


@app.command()
def preview(
    domain: str = typer.Argument(..., help="Domain to preview (songs, instruments, preferences)"),
    config: Path | None = ConfigOption,
    preserve_user_data: bool | None = PreserveOption,
    add_new_defaults: bool | None = AddOption,
    update_modified: bool | None = UpdateOption,
    remove_deleted: bool | None = RemoveOption,
    format: str = FormatOption,
    quiet: bool = QuietOption,
    verbose: bool = VerboseOption,
):
    """
    Show what a pending migration changes and what the merge would produce.

    Nothing is written. Policy flags override the configured merge policy.
    """
    _configure_output(format, quiet, verbose)
    _check_domain(domain)
    settings = _load_config_or_exit(config)
    policy = _edited_policy(
        settings.merge_policy,
        preserve_user_data,
        add_new_defaults,
        update_modified,
        remove_deleted,
    )
    session = _open_session(settings, policy)
    _start_or_exit(session)

    detection = session.pending().get(domain)
    if detection is None:
        success(f"No pending migration for {domain}")
        output_mode.flush_json()
        raise typer.Exit(EXIT_SUCCESS)

    print_analysis(domain, detection.analysis)

    result = session.preview(domain, policy)
    if result is not None:
        print_merge_preview(domain, result, policy)
    elif detection.error:
        warning(f"Stored {domain} cannot be brought forward: {detection.error}")

    output_mode.flush_json()
    raise typer.Exit(EXIT_SUCCESS)


def _decide(domain: str, choice: UserChoice, config: Path | None, policy_flags: tuple) -> None:
    _check_domain(domain)
    settings = _load_config_or_exit(config)
    policy = _edited_policy(settings.merge_policy, *policy_flags)
    session = _open_session(settings, policy)
    _start_or_exit(session)

    outcome = session.decide(domain, choice, policy)
    if not outcome.success:
        _fail(f"{domain}: {outcome.error}", EXIT_MIGRATION_FAILED)

    if choice is UserChoice.ACCEPTED:
        count = len(outcome.state.data) if isinstance(outcome.state.data, list) else 1
        success(f"{domain} migrated to {outcome.state.version} ({count} record(s))")
    elif choice is UserChoice.KEPT_DATA:
        success(f"Kept current {domain} data")
    else:
        success(f"Dismissed {domain} migration; you will not be asked again for this version")

    output_mode.flush_json()
    raise typer.Exit(EXIT_SUCCESS)


@app.command()
def accept(
    domain: str = typer.Argument(..., help="Domain to migrate"),
    config: Path | None = ConfigOption,
    preserve_user_data: bool | None = PreserveOption,
    add_new_defaults: bool | None = AddOption,
    update_modified: bool | None = UpdateOption,
    remove_deleted: bool | None = RemoveOption,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
    format: str = FormatOption,
    quiet: bool = QuietOption,
    verbose: bool = VerboseOption,
):
    """
    Apply a pending migration and record the decision.

    Reconcile domains (songs, instruments) are merged with bundled defaults
    under the merge policy; transform domains run their migration chain.
    """
    _configure_output(format, quiet, verbose)

    if (
        update_modified
        and output_mode.is_human()
        and not yes
        and not typer.confirm(
            "Records you modified will be replaced by bundled versions. Continue?"
        )
    ):
        warning("Accept cancelled")
        raise typer.Exit(EXIT_SUCCESS)

    _decide(
        domain,
        UserChoice.ACCEPTED,
        config,
        (preserve_user_data, add_new_defaults, update_modified, remove_deleted),
    )


@app.command()
def keep(
    domain: str = typer.Argument(..., help="Domain whose data to keep"),
    config: Path | None = ConfigOption,
    format: str = FormatOption,
    quiet: bool = QuietOption,
    verbose: bool = VerboseOption,
):
    """Keep current data unchanged and record the decision."""
    _configure_output(format, quiet, verbose)
    _decide(domain, UserChoice.KEPT_DATA, config, (None, None, None, None))


@app.command()
def dismiss(
    domain: str = typer.Argument(..., help="Domain whose prompt to dismiss"),
    config: Path | None = ConfigOption,
    format: str = FormatOption,
    quiet: bool = QuietOption,
    verbose: bool = VerboseOption,
):
    """Stop prompting for the current target version of a domain."""
    _configure_output(format, quiet, verbose)
    _decide(domain, UserChoice.DISMISSED, config, (None, None, None, None))


@app.command()
def history(
    config: Path | None = ConfigOption,
    format: str = FormatOption,
    quiet: bool = QuietOption,
    verbose: bool = VerboseOption,
):
    """Show the last migration decision and dismissed versions per domain."""
    _configure_output(format, quiet, verbose)
    settings = _load_config_or_exit(config)

    try:
        persistence = SQLitePersistence(settings.storage.db_path)
        domains = [d.name for d in resolve_domains(settings)]
        records = {name: persistence.load_last_migration_record(name) for name in domains}
        ledgers = {name: persistence.load_dismissal_ledger(name) for name in domains}
    except StorageError as e:
        _fail(f"Storage error: {e}", EXIT_STORAGE_ERROR)

    print_history(records, ledgers)
    output_mode.flush_json()
    raise typer.Exit(EXIT_SUCCESS)


@app.command()
def validate(
    config: Path = typer.Option(
        ...,
        "--config",
        "-c",
        help="Path to YAML configuration file",
    ),
    format: str = FormatOption,
):
    """Validate a configuration file without touching the store."""
    _configure_output(format, False, False)
    settings = _load_config_or_exit(config)

    domains = resolve_domains(settings)
    success(f"Configuration valid: {len(domains)} domain(s) enabled")
    if output_mode.is_agent():
        output_mode.add_json(
            "domains",
            [
                {
                    "domain": d.name,
                    "target_version": d.target_version,
                    "floor_version": d.floor_version,
                    "strategy": str(d.strategy),
                }
                for d in domains
            ],
        )
    output_mode.flush_json()
    raise typer.Exit(EXIT_SUCCESS)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
    ),
):
    """
    rhythm-schema - migrate and reconcile stored rhythm notation data.

    Exit codes:
      0: Success
      1: Configuration error
      2: Storage error
      3: Migration failure

    Use 'rhythm-schema COMMAND --help' for detailed command documentation.
    """
    if version:
        from rich.console import Console

        Console().print(f"[bold cyan]rhythm-schema[/bold cyan] version {_read_version()}")
        raise typer.Exit(EXIT_SUCCESS)

    if ctx.invoked_subcommand is None:
        from rich.console import Console

        console = Console()
        console.print("[yellow]Use --help to see available commands[/yellow]")
        console.print()
        console.print("Quick start:")
        console.print("  rhythm-schema status")


def _read_version() -> str:
    """Read version from package metadata (pyproject.toml)."""
    try:
        from importlib.metadata import version

        return version("rhythm-schema")
    except Exception:
        # Package metadata unavailable when running from a source checkout
        return "0.1.0"


if __name__ == "__main__":
    app()

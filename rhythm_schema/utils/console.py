"""
Rich console utilities for dual-mode CLI output.

The CLI is the UI collaborator of the migration engine: it shows what a
migration changes and what a merge would do before anything is written.
All output functions adapt to the global output_mode setting.

Human Mode (--format text):
    - Rich tables and panels, colored status symbols

Agent Mode (--format json):
    - Structured JSON buffered and flushed to stdout once
    - No ANSI codes

Quiet Mode (--quiet):
    - Tab-separated values, no decorations

Examples:
    >>> from rhythm_schema.utils.console import output_mode, print_analysis
    >>> output_mode.format = "json"
    >>> print_analysis("songs", analysis)
    >>> output_mode.flush_json()
"""

from __future__ import annotations

import json
import sys
from typing import TYPE_CHECKING, Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

if TYPE_CHECKING:
    from rhythm_schema.migration.detector import Detection
    from rhythm_schema.migration.models import (
        MergePolicy,
        MergeResult,
        MigrationAnalysis,
        MigrationRecord,
    )


class OutputMode:
    """
    Output mode configuration for dual-mode CLI.

    Attributes:
        format: Output format - "text" (human) or "json" (agent)
        quiet: If True, suppress non-essential output
    """

    def __init__(self, format_type: str = "text", quiet: bool = False):
        if format_type not in ["text", "json"]:
            raise ValueError(f"Invalid format: {format_type}. Must be 'text' or 'json'")

        self.format = format_type
        self.quiet = quiet
        self._json_buffer: dict[str, Any] = {}

    def is_human(self) -> bool:
        return self.format == "text"

    def is_agent(self) -> bool:
        return self.format == "json"

    def add_json(self, key: str, value: Any) -> None:
        """Add key-value pair to the JSON buffer (agent mode)."""
        self._json_buffer[key] = value

    def flush_json(self) -> None:
        """
        Output buffered JSON to stdout and clear the buffer.

        Only outputs in agent mode. In human mode, this is a no-op.
        """
        if self.is_agent() and self._json_buffer:
            json.dump(self._json_buffer, sys.stdout, indent=2, ensure_ascii=False)
            sys.stdout.write("\n")
            sys.stdout.flush()
            self._json_buffer.clear()


# Global output mode instance (set by CLI flags)
output_mode = OutputMode()

# Global Rich console instances for human mode
console = Console()  # stdout
console_err = Console(stderr=True)  # stderr


def success(message: str) -> None:
    """Green checkmark in human mode; buffered status in agent mode."""
    if output_mode.is_human():
        if not output_mode.quiet:
            console.print(f"[green]✓[/green] {message}")
    elif output_mode.is_agent():
        output_mode.add_json("status", "success")
        output_mode.add_json("message", message)


def error(message: str) -> None:
    """Red X to stderr in human mode; buffered error in agent mode."""
    if output_mode.is_human():
        console_err.print(f"[red]✗[/red] {message}", style="red")
    elif output_mode.is_agent():
        output_mode.add_json("status", "error")
        output_mode.add_json("error", message)


def warning(message: str) -> None:
    """Yellow warning in human mode; buffered warning in agent mode."""
    if output_mode.is_human():
        if not output_mode.quiet:
            console.print(f"[yellow]⚠[/yellow] {message}", style="yellow")
    elif output_mode.is_agent():
        output_mode.add_json("warning", message)


def info(message: str) -> None:
    """Blue info symbol in human mode. Silent for agents and quiet mode."""
    if output_mode.is_human() and not output_mode.quiet:
        console.print(f"[blue]ℹ[/blue] {message}")


def print_status_table(detections: list[Detection]) -> None:
    """
    Print one row per domain: stored version, target version, status.

    Quiet mode prints tab-separated rows: domain, stored, target, status.
    """
    rows = [
        {
            "domain": d.domain,
            "stored_version": d.stored_version,
            "target_version": d.target_version,
            "status": str(d.status),
            "forced_reset": d.forced_reset,
        }
        for d in detections
    ]

    if output_mode.is_agent():
        output_mode.add_json("domains", rows)
        return

    if output_mode.quiet:
        for row in rows:
            print(
                f"{row['domain']}\t{row['stored_version']}\t"
                f"{row['target_version']}\t{row['status']}"
            )
        return

    table = Table(title="Schema Status", box=box.ROUNDED)
    table.add_column("Domain", style="cyan", no_wrap=True)
    table.add_column("Stored", style="magenta")
    table.add_column("Target", style="magenta")
    table.add_column("Status", justify="center")

    for row in rows:
        status = row["status"]
        if row["forced_reset"]:
            status_str = "[red]reset to defaults[/red]"
        elif status == "pending":
            status_str = "[yellow]migration pending[/yellow]"
        else:
            status_str = "[green]up to date[/green]"
        table.add_row(row["domain"], row["stored_version"], row["target_version"], status_str)

    console.print(table)


def print_analysis(domain: str, analysis: MigrationAnalysis) -> None:
    """
    Show what a migration changes.

    A missing path is shown as a red panel with export/reset guidance rather
    than a list of steps.
    """
    if output_mode.is_agent():
        output_mode.add_json("analysis", analysis.to_dict())
        return

    if output_mode.quiet:
        for description in analysis.descriptions:
            print(f"{domain}\t{description}")
        return

    if analysis.no_path:
        console.print(
            Panel(
                f"{analysis.descriptions[0]}\n\n"
                "Export your data before continuing, or keep your current data.",
                title=f"[bold red]✗ {domain}: no migration path[/bold red]",
                border_style="red",
                box=box.ROUNDED,
            )
        )
        return

    lines = [f"• {description}" for description in analysis.descriptions]
    if analysis.has_breaking_changes:
        lines.append("")
        lines.append("[bold red]Contains breaking changes[/bold red]")

    console.print(
        Panel(
            "\n".join(lines),
            title=(
                f"[bold]{domain}: {analysis.from_version} → "
                f"{analysis.to_version} ({analysis.total_steps} step(s))[/bold]"
            ),
            border_style="yellow" if analysis.has_breaking_changes else "cyan",
            box=box.ROUNDED,
        )
    )


def print_merge_preview(
    domain: str,
    result: MergeResult,
    policy: MergePolicy,
    title_field: str = "title",
) -> None:
    """
    Before/after preview of a merge: counts per category and the record
    names in each.
    """
    summary = result.summary()

    def names(records) -> list[str]:
        return [str(r.get(title_field) or r.get("key") or r.get("name")) for r in records]

    if output_mode.is_agent():
        output_mode.add_json(
            "merge_preview",
            {
                "policy": policy.model_dump(),
                "counts": summary,
                "added": names(result.added),
                "updated": names(result.updated),
                "preserved": names(result.preserved),
                "conflicts": names(result.conflicts),
            },
        )
        return

    if output_mode.quiet:
        print(
            f"{domain}\t{summary['merged']}\t{summary['added']}\t"
            f"{summary['updated']}\t{summary['preserved']}\t{summary['conflicts']}"
        )
        return

    table = Table(title=f"{domain}: merge preview", box=box.ROUNDED)
    table.add_column("Category", style="cyan", no_wrap=True)
    table.add_column("Count", justify="right")
    table.add_column("Records")

    for category, style in (
        ("added", "green"),
        ("updated", "yellow"),
        ("preserved", "blue"),
        ("conflicts", "red"),
    ):
        records = getattr(result, category)
        table.add_row(
            f"[{style}]{category}[/{style}]",
            str(len(records)),
            ", ".join(names(records)),
        )

    console.print(table)
    console.print(f"[bold]Result:[/bold] {summary['merged']} record(s) after merge")


def print_history(records: dict[str, MigrationRecord | None], ledgers: dict[str, tuple]) -> None:
    """Show the last migration decision and dismissed versions per domain."""
    rows = []
    for domain, record in records.items():
        rows.append(
            {
                "domain": domain,
                "last_migration": record.model_dump(mode="json") if record else None,
                "dismissed_versions": list(ledgers.get(domain, ())),
            }
        )

    if output_mode.is_agent():
        output_mode.add_json("history", rows)
        return

    if output_mode.quiet:
        for row in rows:
            last = row["last_migration"] or {}
            print(
                f"{row['domain']}\t{last.get('user_choice', '')}\t"
                f"{last.get('timestamp', '')}\t{','.join(row['dismissed_versions'])}"
            )
        return

    table = Table(title="Migration History", box=box.ROUNDED)
    table.add_column("Domain", style="cyan", no_wrap=True)
    table.add_column("Last decision")
    table.add_column("When")
    table.add_column("Dismissed versions")

    for row in rows:
        last = row["last_migration"]
        if last:
            decision = f"{last['user_choice']} ({last['from_version']} → {last['to_version']})"
            when = last["timestamp"]
        else:
            decision, when = "-", "-"
        table.add_row(row["domain"], decision, when, ", ".join(row["dismissed_versions"]) or "-")

    console.print(table)

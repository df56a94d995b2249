"""Rich output formatting for the Rewind CLI.

All functions write to a :class:`rich.console.Console` (bound to *stderr*)
so that ``--json`` output on *stdout* stays machine-readable.
"""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table


def _ok(flag: bool) -> str:
    return "[green]ok[/green]" if flag else "[red]failed[/red]"


def _short_time(value: str | None) -> str:
    if not value:
        return "-"
    return value.replace("T", " ")[:19]


def display_groups(console: Console, groups: list[dict[str, Any]]) -> None:
    table = Table(title="Groups", show_lines=False)
    table.add_column("Name", style="bold")
    table.add_column("Databases")
    table.add_column("Snapshots", justify="right")
    table.add_column("ID", style="dim")
    for group in groups:
        table.add_row(
            group["name"],
            ", ".join(group.get("databases", [])),
            str(group.get("snapshot_count", 0)),
            group["id"],
        )
    console.print(table)


def display_snapshots(console: Console, snapshots: list[dict[str, Any]]) -> None:
    """Snapshot table; orphaned engine artifacts are shown dimmed."""
    table = Table(title="Snapshots")
    table.add_column("Seq", justify="right", width=4)
    table.add_column("Name", style="bold")
    table.add_column("Created")
    table.add_column("Databases")
    table.add_column("ID", style="dim")
    for snap in snapshots:
        entries = snap.get("database_snapshots", [])
        ok = sum(1 for e in entries if e.get("success"))
        style = "dim" if snap.get("is_orphaned") else None
        table.add_row(
            str(snap.get("sequence") or "-"),
            snap.get("display_name", ""),
            _short_time(snap.get("created_at")),
            f"{ok}/{len(entries)}",
            snap["id"],
            style=style,
        )
    console.print(table)


def display_rollback(console: Console, result: dict[str, Any]) -> None:
    lines = [
        f"[bold]Group:[/bold]       {result.get('group_name') or result.get('group_id')}",
        f"[bold]Snapshot:[/bold]    {result.get('snapshot_id')}",
        f"[bold]Status:[/bold]      {_ok(result.get('success', False))}",
        f"[bold]Restored:[/bold]    {', '.join(result.get('rolled_back_databases', [])) or '(none)'}",
        f"[bold]Siblings:[/bold]    {len(result.get('dropped_siblings', []))} dropped",
        f"[bold]Checkpoint:[/bold]  {'created' if result.get('checkpoint_created') else 'not created'}",
    ]
    if result.get("error"):
        lines.append(f"[red]{result['error']}[/red]")
    if result.get("checkpoint_error"):
        lines.append(f"[yellow]Checkpoint: {result['checkpoint_error']}[/yellow]")
    console.print(Panel("\n".join(lines), title="Rollback", expand=False))

    failed = result.get("failed_rollbacks", [])
    if failed:
        table = Table(title="Failed databases")
        table.add_column("Database", style="bold red")
        table.add_column("Error")
        for item in failed:
            table.add_row(item["database"], item["error"])
        console.print(table)


def display_warnings(console: Console, warnings: list[dict[str, Any]]) -> None:
    for warning in warnings:
        console.print(f"[yellow]warning[/yellow] {warning['step']} {warning['target']}: {warning['error']}")


def display_unmanaged(console: Console, report: dict[str, Any]) -> None:
    items = report.get("unmanaged_snapshots", [])
    if not items:
        console.print("[green]No unmanaged snapshots.[/green]")
        return
    table = Table(title=f"Unmanaged snapshots ({report.get('unmanaged_count', len(items))})")
    table.add_column("Name", style="bold")
    table.add_column("Source database")
    table.add_column("Created")
    table.add_column("State")
    for item in items:
        table.add_row(
            item["name"],
            item.get("source_database") or "-",
            _short_time(item.get("create_date")),
            item.get("state") or "-",
        )
    console.print(table)


def display_files(console: Console, report: dict[str, Any]) -> None:
    files = report.get("files_to_cleanup", [])
    if not files:
        console.print("[green]No unreferenced snapshot files.[/green]")
        return
    table = Table(title=f"Unreferenced files in {report.get('snapshot_path')}")
    table.add_column("File", style="bold")
    table.add_column("Size (MB)", justify="right")
    for item in files:
        table.add_row(item["file_name"], f"{item['size_mb']:.2f}")
    console.print(table)
    console.print(f"{report['total_files']} file(s), {report['total_size_gb']:.2f} GB")


def display_history(console: Console, entries: list[dict[str, Any]]) -> None:
    table = Table(title="History")
    table.add_column("When")
    table.add_column("Operation", style="bold")
    table.add_column("User")
    table.add_column("Results", justify="right")
    for entry in entries:
        results = entry.get("results", [])
        ok = sum(1 for r in results if r.get("success"))
        table.add_row(
            _short_time(entry.get("timestamp")),
            entry["operation_type"],
            entry.get("user_name") or "-",
            f"{ok}/{len(results)}" if results else "-",
        )
    console.print(table)

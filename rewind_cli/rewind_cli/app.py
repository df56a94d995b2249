"""Rewind CLI -- Typer front end for the Rewind API.

Every command except ``serve`` talks to a running API over HTTP.
Human-readable output goes to *stderr* via Rich; ``--json`` writes the raw
API response to *stdout* so scripts can compose cleanly.
"""

from __future__ import annotations

import json
import sys
from typing import Any

import httpx
import typer
from rich.console import Console

from rewind_cli.display import (
    display_files,
    display_groups,
    display_history,
    display_rollback,
    display_snapshots,
    display_unmanaged,
    display_warnings,
)

# ---------------------------------------------------------------------------
# App & global state
# ---------------------------------------------------------------------------

app = typer.Typer(
    name="rewind",
    help="Rewind - snapshot and rollback orchestration for SQL Server database groups",
    no_args_is_help=True,
)
console = Console(stderr=True)

_DEFAULT_API_URL = "http://127.0.0.1:3001"

# Mutable global options populated by the Typer callback.
_json_output: bool = False
_api_url: str = _DEFAULT_API_URL
_user: str | None = None


@app.callback()
def _global_options(
    json_mode: bool = typer.Option(
        False,
        "--json/--no-json",
        help="Emit the API response as JSON on stdout instead of tables.",
    ),
    api_url: str = typer.Option(
        _DEFAULT_API_URL,
        "--api-url",
        help="Base URL of the Rewind API.",
        envvar="REWIND_API_URL",
    ),
    user: str | None = typer.Option(
        None,
        "--user",
        help="Identity recorded in history (sent as X-User).",
        envvar="REWIND_USER",
    ),
) -> None:
    """Global options applied to every command."""
    global _json_output, _api_url, _user  # noqa: PLW0603
    _json_output = json_mode
    _api_url = api_url
    _user = user


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _api_request(
    method: str,
    path: str,
    *,
    body: dict[str, Any] | None = None,
    params: dict[str, Any] | None = None,
    allow_statuses: tuple[int, ...] = (),
) -> Any:
    """Send a request to the Rewind API and return the decoded JSON body.

    Responses with a status in *allow_statuses* are returned instead of
    treated as errors (the rollback endpoint answers 500 with a full result).
    """
    headers = {"Content-Type": "application/json"}
    if _user:
        headers["X-User"] = _user
    url = f"{_api_url.rstrip('/')}/api/v1{path}"
    try:
        with httpx.Client(timeout=300.0) as client:
            response = client.request(method, url, headers=headers, json=body, params=params)
    except httpx.TransportError as exc:
        console.print(f"[red]Cannot connect to API at {_api_url}: {exc}[/red]")
        raise typer.Exit(code=3) from exc

    if response.status_code in allow_statuses or response.is_success:
        return response.json()

    detail: Any = response.text
    try:
        detail = response.json().get("detail", detail)
    except (ValueError, AttributeError):
        pass
    if isinstance(detail, dict):
        detail = detail.get("error", detail)
    console.print(f"[red]API error ({response.status_code}): {detail}[/red]")
    raise typer.Exit(code=3)


def _emit_json(data: Any) -> None:
    sys.stdout.write(json.dumps(data, indent=2, default=str) + "\n")


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Host to bind the API server to."),
    port: int = typer.Option(3001, "--port", "-p", help="API server port."),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload on code changes."),
) -> None:
    """Run the Rewind API server."""
    import uvicorn

    uvicorn_config = uvicorn.Config(
        "rewind_api.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info",
        access_log=False,
    )
    server = uvicorn.Server(uvicorn_config)
    console.print(f"[green]✓[/green] API server starting on http://{host}:{port}")
    console.print(f"[green]✓[/green] OpenAPI docs at http://{host}:{port}/docs")
    try:
        server.run()
    except KeyboardInterrupt:
        console.print("[yellow]Server stopped.[/yellow]")


# ---------------------------------------------------------------------------
# Groups & snapshots
# ---------------------------------------------------------------------------


@app.command()
def groups() -> None:
    """List groups with their snapshot counts."""
    data = _api_request("GET", "/groups")
    if _json_output:
        _emit_json(data)
    elif not data:
        console.print("[yellow]No groups defined.[/yellow]")
    else:
        display_groups(console, data)


@app.command()
def snapshots(group_id: str = typer.Argument(..., help="Group identifier.")) -> None:
    """List the snapshots of a group, newest first."""
    data = _api_request("GET", f"/groups/{group_id}/snapshots")
    if _json_output:
        _emit_json(data)
    elif not data:
        console.print("[yellow]No snapshots.[/yellow]")
    else:
        display_snapshots(console, data)


@app.command()
def snapshot(
    group_id: str = typer.Argument(..., help="Group identifier."),
    name: str = typer.Option("", "--name", "-n", help="Display label; defaults to 'Snapshot N'."),
) -> None:
    """Create a snapshot of every database in a group."""
    data = _api_request("POST", f"/groups/{group_id}/snapshots", body={"name": name})
    if _json_output:
        _emit_json(data)
        return
    snap = data["snapshot"]
    console.print(f"[green]✓[/green] Created snapshot [bold]{snap['display_name']}[/bold] ({snap['id']})")
    for result in data.get("results", []):
        if result["success"]:
            console.print(f"  [green]ok[/green]     {result['database']}")
        else:
            console.print(f"  [red]failed[/red] {result['database']}: {result.get('error')}")


@app.command()
def rollback(
    snapshot_id: str = typer.Argument(..., help="Snapshot to restore."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
) -> None:
    """Restore a group's databases from one of its snapshots.

    Every other snapshot of the group is destroyed.
    """
    if not yes and not typer.confirm(
        f"Roll back to {snapshot_id}? All other snapshots of its group will be deleted.",
        err=True,
    ):
        raise typer.Exit(code=1)
    data = _api_request("POST", f"/snapshots/{snapshot_id}/rollback", allow_statuses=(500,))
    if _json_output:
        _emit_json(data)
    else:
        display_rollback(console, data)
        display_warnings(console, data.get("warnings", []))
    if not data.get("success", False):
        raise typer.Exit(code=2)


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


@app.command()
def reconcile() -> None:
    """Drop snapshot artifacts that can no longer be read."""
    data = _api_request("POST", "/snapshots/reconcile")
    if _json_output:
        _emit_json(data)
        return
    console.print(f"Dropped {data['cleaned_count']} orphaned snapshot(s)")
    for name in data.get("orphan_names", []):
        console.print(f"  {name}")
    display_warnings(console, data.get("warnings", []))


@app.command()
def unmanaged() -> None:
    """List engine snapshots that no metadata record references."""
    data = _api_request("GET", "/snapshots/unmanaged")
    if _json_output:
        _emit_json(data)
    else:
        display_unmanaged(console, data)


@app.command("files-to-cleanup")
def files_to_cleanup(
    group_id: str | None = typer.Option(None, "--group", "-g", help="Restrict to one group's files."),
    delete: bool = typer.Option(False, "--delete", help="Delete the listed files through the file API."),
) -> None:
    """Report snapshot files on disk that no metadata references."""
    if delete and group_id:
        console.print("[red]--delete removes every unreferenced file and cannot be combined with --group.[/red]")
        raise typer.Exit(code=3)
    params = {"group_id": group_id} if group_id else None
    report = _api_request("GET", "/snapshots/files-to-cleanup", params=params)
    if _json_output and not delete:
        _emit_json(report)
        return
    if not _json_output:
        display_files(console, report)
    if not delete or not report.get("files_to_cleanup"):
        return
    result = _api_request("POST", "/snapshots/files-cleanup")
    if _json_output:
        _emit_json(result)
    else:
        console.print(result["message"])


@app.command()
def history(limit: int = typer.Option(20, "--limit", "-l", min=1, help="Entries to show.")) -> None:
    """Show the most recent orchestration actions."""
    data = _api_request("GET", "/history", params={"limit": limit})
    if _json_output:
        _emit_json(data)
    else:
        display_history(console, data)

from __future__ import annotations

from pathlib import Path

import typer
from rich.table import Table

from .. import console
from ..backup import list_snapshots, prune_snapshots
from ..errors import InstallerError
from ..install_config import BACKUPS_DIRNAME, DEFAULT_INSTALL_DIR, LOCK_FILENAME
from ..lock import install_lock
from .common import fail

app = typer.Typer(help="List and prune pre-update backups.")


@app.command("list")
def list_backups(
        install_dir: Path = typer.Option(Path(DEFAULT_INSTALL_DIR), "--install-dir", help="Installation root."),
):
    snapshots = list_snapshots(install_dir / BACKUPS_DIRNAME)
    if not snapshots:
        console.info("No backups.")
        return
    table = Table(title="Backups")
    table.add_column("taken (UTC)")
    table.add_column("from version")
    table.add_column("path")
    table.add_column("contents")
    for snap in snapshots:
        table.add_row(
            snap.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            snap.from_version or "-",
            str(snap.backup_path),
            ", ".join(sorted(snap.stored_as.values())) or "-",
        )
    console.print(table)


@app.command("prune")
def prune_backups(
        keep: int = typer.Option(3, "--keep", min=0, help="Number of newest backups to keep."),
        install_dir: Path = typer.Option(Path(DEFAULT_INSTALL_DIR), "--install-dir", help="Installation root."),
        yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
):
    backups_dir = install_dir / BACKUPS_DIRNAME
    snapshots = list_snapshots(backups_dir)
    doomed = len(snapshots) - keep
    if doomed <= 0:
        console.info(f"{len(snapshots)} backup(s) present; nothing to prune.")
        return
    if not yes and not typer.confirm(f"Delete the {doomed} oldest backup(s)?", default=False):
        console.info("Aborted.")
        raise typer.Exit(code=0)
    try:
        with install_lock(install_dir / LOCK_FILENAME):
            removed = prune_snapshots(backups_dir, keep=keep)
    except InstallerError as exc:
        fail(exc)
    for snap in removed:
        console.ok(f"Removed {snap.backup_path}")

from __future__ import annotations

from pathlib import Path

import typer

from .. import console
from ..errors import InstallerError
from ..install_config import CONFIG_FILENAME, DEFAULT_INSTALL_DIR, LOCK_FILENAME, SECRET_FIELDS, rotate_secret
from ..lock import install_lock
from ..platform_probe import detect
from ..service import supervisor_for
from .common import fail

app = typer.Typer(help="Manage the generated LivOS configuration.")


@app.command("rotate-secret")
def rotate(
        name: str = typer.Argument(..., help=f"Secret to rotate: {', '.join(SECRET_FIELDS)}."),
        install_dir: Path = typer.Option(Path(DEFAULT_INSTALL_DIR), "--install-dir", help="Installation root."),
        yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
):
    """Replace one secret and restart the service."""
    key = name.strip().lower().replace("-", "_")
    if key not in SECRET_FIELDS:
        console.err(f"Unknown secret: {name}. Choose one of {', '.join(SECRET_FIELDS)}.")
        raise typer.Exit(code=2)
    console.warn(f"Rotating {key} invalidates everything derived from the old value.")
    if not yes and not typer.confirm("Continue?", default=False):
        console.info("Aborted.")
        raise typer.Exit(code=0)
    try:
        platform = detect()
        with install_lock(install_dir / LOCK_FILENAME):
            rotate_secret(install_dir / CONFIG_FILENAME, key)
            console.ok(f"{key} rotated in {install_dir / CONFIG_FILENAME}")
            supervisor_for(platform).restart()
    except InstallerError as exc:
        fail(exc)
    console.ok("Service restarted.")

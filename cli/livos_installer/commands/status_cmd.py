from __future__ import annotations

from pathlib import Path

import typer
from rich.markup import escape

from .. import console
from ..errors import InstallerError
from ..install_config import DEFAULT_INSTALL_DIR
from ..platform_probe import detect
from ..service import supervisor_for
from ..state import read_state
from .common import fail
from .update_cmd import data_dir_for


def status(
        install_dir: Path = typer.Option(Path(DEFAULT_INSTALL_DIR), "--install-dir", help="Installation root."),
):
    """Show the platform, the installed version and the service state."""
    try:
        platform = detect()
        installed = read_state(install_dir, data_dir_for(install_dir))
    except InstallerError as exc:
        fail(exc)

    running = supervisor_for(platform).is_running() if installed else False
    rows = [
        ("platform", f"{platform.pretty_name or platform.os_family.value} ({platform.platform_id()})"),
        ("container", "yes" if platform.is_container else "no"),
        ("install dir", escape(str(install_dir))),
        ("version", installed.version_text if installed else "not installed"),
    ]
    if installed:
        rows.append(("data dir", escape(str(installed.data_path))))
        rows.append(("service", "[green]running[/]" if running else "[red]stopped[/]"))
    console.key_values(rows)

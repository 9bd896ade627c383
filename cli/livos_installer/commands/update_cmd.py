from __future__ import annotations

import tempfile
from pathlib import Path

import typer

from .. import console
from ..config import load_settings
from ..errors import InstallerError
from ..http import make_release_client
from ..install_config import DEFAULT_INSTALL_DIR, FILE_KEYS, read_env_file
from ..migrate import MigrationEngine, plan
from ..orchestrator import download_release, install_app_dependencies, unpack_release
from ..platform_probe import detect
from ..semver import format_semver
from ..service import supervisor_for
from ..state import StateError, read_state
from .common import channel_or_exit, fail, query_release, version_or_exit


def data_dir_for(install_dir: Path) -> Path:
    env = read_env_file(install_dir / ".env")
    raw = (env.get(FILE_KEYS["data_dir"]) or "").strip()
    return Path(raw) if raw else install_dir / "data"


def _stage(archive: Path, install_dir: Path) -> None:
    unpack_release(archive, install_dir)
    install_app_dependencies(install_dir)


def update(
        dry_run: bool = typer.Option(False, "--dry-run", help="Print the migration plan and change nothing."),
        install_dir: Path = typer.Option(Path(DEFAULT_INSTALL_DIR), "--install-dir", help="Installation root."),
        channel: str | None = typer.Option(None, "--channel", help="Release channel (stable, beta)."),
        version: str | None = typer.Option(None, "--version", help="Require this release version."),
):
    """Update an existing installation and run its data migrations."""
    pinned = version_or_exit(version)
    settings = load_settings()
    chosen_channel = channel_or_exit(settings, channel)
    try:
        data_dir = data_dir_for(install_dir)
        installed = read_state(install_dir, data_dir)
        if installed is None:
            raise StateError(f"no installation found at {install_dir}; run `livos-installer install` first")
        platform = detect()

        with make_release_client(settings) as client:
            release = query_release(
                client,
                channel=chosen_channel,
                platform=platform,
                current=installed.version,
                pinned=pinned,
            )
            target = release.version
            steps = plan(installed.version, target)

            if dry_run:
                console.rule("[bold]Update plan (dry run)[/]")
                console.info(f"installed={installed.version_text} target={format_semver(target)}")
                if installed.version == target:
                    console.info("Already up to date; nothing would change.")
                    return
                console.info(f"would back up {data_dir} and {install_dir / '.env'} into {install_dir / 'backups'}")
                for step in steps:
                    console.print(f"  {step.version_text}: {step.description}")
                if not steps:
                    console.info("No data migrations between these versions.")
                return

            if installed.version == target:
                console.ok(f"LivOS {installed.version_text} is already the latest {chosen_channel} release.")
                return

            # Download and verify before anything is backed up or changed.
            with tempfile.TemporaryDirectory(prefix="livos-") as tmp:
                archive = download_release(client, release, platform, Path(tmp))
                engine = MigrationEngine(
                    install_dir,
                    supervisor_for(platform),
                    data_path=data_dir,
                    stage=lambda path: _stage(archive, path),
                )
                result = engine.run(target)
    except InstallerError as exc:
        fail(exc)

    console.ok(
        f"Updated LivOS {format_semver(result.from_version)} -> {format_semver(result.to_version)}"
        + (f" (migrations: {', '.join(result.applied)})" if result.applied else "")
    )

from __future__ import annotations

import getpass
from pathlib import Path

import typer

from .. import console
from ..capabilities import check, requirements_for
from ..config import load_settings
from ..dependencies import install as install_dependencies
from ..dependencies import plan_install as plan_dependencies
from ..errors import DependencyInstallFailed, InstallerError
from ..http import make_release_client
from ..install_config import DEFAULT_INSTALL_DIR, LOCK_FILENAME, Mode, overrides_from_env, resolve, select_mode
from ..lock import install_lock
from ..orchestrator import install_fresh, plan_install
from ..platform_probe import OsFamily, detect
from ..semver import format_semver
from ..service import supervisor_for
from .common import channel_or_exit, fail, query_release, version_or_exit


def _collect_overrides(**options) -> dict[str, str]:
    overrides = overrides_from_env()
    for key, value in options.items():
        if value is not None:
            overrides[key] = str(value)
    return overrides


def install(
        dry_run: bool = typer.Option(False, "--dry-run", help="Print the plan and change nothing."),
        non_interactive: bool = typer.Option(
            False, "--non-interactive", help="Never prompt; use flags, LIVOS_* env vars and defaults."
        ),
        domain: str | None = typer.Option(None, "--domain", help="Public domain name."),
        port: int | None = typer.Option(None, "--port", help="HTTP port for the server."),
        admin_email: str | None = typer.Option(None, "--admin-email", help="Administrator email."),
        install_dir: Path | None = typer.Option(None, "--install-dir", help="Installation root (default /opt/livos)."),
        data_dir: Path | None = typer.Option(None, "--data-dir", help="Data directory (default <install-dir>/data)."),
        run_as: str | None = typer.Option(None, "--run-as", help="Identity the service runs as."),
        channel: str | None = typer.Option(None, "--channel", help="Release channel (stable, beta)."),
        version: str | None = typer.Option(None, "--version", help="Require this release version."),
        yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
):
    """Install LivOS on this host."""
    pinned = version_or_exit(version)
    settings = load_settings()
    chosen_channel = channel_or_exit(settings, channel)
    try:
        platform = detect()
        console.info(
            f"Platform: {platform.pretty_name or platform.os_family.value} ({platform.arch.value})"
            + (" in a container" if platform.is_container else "")
        )

        if run_as is None and platform.os_family is OsFamily.MACOS:
            run_as = getpass.getuser()
        overrides = _collect_overrides(
            domain=domain,
            port=port,
            admin_email=admin_email,
            install_dir=install_dir,
            data_dir=data_dir,
            run_as=run_as,
        )
        mode = select_mode(non_interactive)
        if dry_run:
            config = resolve(mode, overrides)
            report = check(requirements_for(platform))
            console.rule("[bold]Install plan (dry run)[/]")
            for dep in report:
                console.info(f"missing: {dep.describe()}")
            for inv in plan_dependencies(report, platform):
                console.info(f"would run: {' '.join(inv.argv)}")
            for idx, step in enumerate(plan_install(config, platform), start=1):
                console.print(f"  {idx}. {step}")
            console.info(f"channel={chosen_channel} domain={config.domain} port={config.port}")
            return

        lock_path = Path(overrides.get("install_dir") or DEFAULT_INSTALL_DIR) / LOCK_FILENAME
        with install_lock(lock_path) as lock:
            config = resolve(mode, overrides)

            if mode is Mode.INTERACTIVE and not yes:
                if not typer.confirm(f"Install LivOS into {config.install_dir}?", default=True):
                    console.info("Aborted.")
                    raise typer.Exit(code=0)

            report = check(requirements_for(platform))
            if not report.ok:
                console.info(f"Installing missing dependencies: {', '.join(report.names)}")
                install_dependencies(report, platform)
                remaining = check(requirements_for(platform))
                if not remaining.ok:
                    raise DependencyInstallFailed(
                        ", ".join(remaining.names), None, "still missing after the package manager finished"
                    )
                console.ok("Dependencies satisfied.")

            config.freeze()
            with make_release_client(settings) as client:
                release = query_release(client, channel=chosen_channel, platform=platform, pinned=pinned)
                console.info(f"Installing LivOS {release.name or format_semver(release.version)}")
                state = install_fresh(
                    config,
                    platform,
                    release,
                    client=client,
                    supervisor=supervisor_for(platform),
                    lock=lock,
                )
    except InstallerError as exc:
        fail(exc)

    console.ok(f"LivOS {state.version_text} is installed and running.")
    console.info(f"Open http://{config.domain}:{config.port}/ to finish setup.")

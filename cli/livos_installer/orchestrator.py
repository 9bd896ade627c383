"""Fresh-install sequence.

Every step is idempotent for identical inputs: existing directories, the
run-as identity and persisted secrets are reused and the unit is rewritten.
The first failing step aborts the run; nothing is cleaned up automatically.
"""
from __future__ import annotations

import logging
import os
import pwd
import subprocess
import tarfile
import tempfile
import time
from pathlib import Path
from typing import Callable

from livos_client import ReleaseClient, ReleaseClientError
from livos_client.archive import extract_artifact
from livos_client.releases import Release

from . import console
from .errors import ArtifactError, ConfigurationInvalid, DependencyInstallFailed, InstallerError
from .install_config import InstallConfig, adopt_persisted_secrets, write_config
from .lock import InstallLock, install_lock
from .platform_probe import OsFamily, PlatformInfo
from .runner import Runner, local_runner, tail
from .semver import format_semver
from .service import VERIFY_GRACE_SECONDS, Supervisor, install_service, verify_running
from .state import InstalledState, read_state, write_state

logger = logging.getLogger(__name__)

NOLOGIN_SHELLS = ("/usr/sbin/nologin", "/sbin/nologin", "/bin/false")


def plan_install(config: InstallConfig, platform: PlatformInfo, release: Release | None = None) -> list[str]:
    """Human-readable list of the steps ``install_fresh`` would take."""
    version = format_semver(release.version) if release else "latest"
    steps = [
        f"create run-as identity {config.run_as!r} if absent",
        f"create {config.install_dir}, {config.data_dir} and {config.log_dir} owned by {config.run_as}",
        f"download livos {version} for {platform.arch.value}, verify SHA-256 and extract into {config.install_dir}",
        f"write {config.env_path} (mode 0600)",
        "install application dependencies (npm ci --omit=dev) if package.json is shipped",
        "install, enable and start the livos service",
        f"verify the service is running after {VERIFY_GRACE_SECONDS:g}s",
        f"record version {version} in {config.version_path}",
    ]
    return steps


def _user_exists(name: str) -> bool:
    try:
        pwd.getpwnam(name)
    except KeyError:
        return False
    return True


def ensure_user(name: str, platform: PlatformInfo, *, runner: Runner = local_runner) -> bool:
    """Create a system identity without a login shell; return True if created."""
    if _user_exists(name):
        logger.debug("identity %s already exists", name)
        return False
    if platform.os_family is OsFamily.MACOS:
        raise ConfigurationInvalid("run_as", f"user {name!r} does not exist; pass --run-as with an existing account")
    shell = next((s for s in NOLOGIN_SHELLS if Path(s).exists()), NOLOGIN_SHELLS[0])
    cmd = ["useradd", "--system", "--no-create-home", "--shell", shell, name]
    try:
        res = runner(cmd, timeout=60)
    except (FileNotFoundError, subprocess.TimeoutExpired) as exc:
        raise InstallerError(f"{' '.join(cmd)}: {exc}", step="create run-as identity") from exc
    if res.returncode != 0:
        raise InstallerError(
            f"useradd exited {res.returncode}: {tail(res)}",
            step="create run-as identity",
        )
    console.ok(f"Created system user {name}.")
    return True


def owner_ids(name: str) -> tuple[int, int]:
    try:
        entry = pwd.getpwnam(name)
    except KeyError:
        raise ConfigurationInvalid("run_as", f"user {name!r} does not exist") from None
    return entry.pw_uid, entry.pw_gid


def prepare_directories(config: InstallConfig, owner: tuple[int, int]) -> None:
    for path in (config.install_dir, config.data_dir, config.log_dir):
        try:
            path.mkdir(parents=True, exist_ok=True)
            if (os.stat(path).st_uid, os.stat(path).st_gid) != owner:
                os.chown(path, owner[0], owner[1])
        except OSError as exc:
            raise InstallerError(f"cannot prepare {path}: {exc}", step="create directories") from exc


def download_release(client: ReleaseClient, release: Release, platform: PlatformInfo, workdir: Path) -> Path:
    """Download the artifact for the detected architecture into ``workdir`` and verify it."""
    artifact = release.artifact_for(platform.arch.value)
    if artifact is None:
        raise ArtifactError(
            f"release {format_semver(release.version)} has no artifact for {platform.arch.value}"
        )
    if not artifact.sha256:
        raise ArtifactError(f"release {format_semver(release.version)} publishes no checksum for {artifact.url}")
    archive = Path(workdir) / f"livos-{format_semver(release.version)}-{platform.arch.value}.tar.gz"
    try:
        console.info(f"Downloading {artifact.url}")
        client.download(artifact.url, archive, expected_sha256=artifact.sha256)
    except ReleaseClientError as exc:
        raise ArtifactError(str(exc), retryable=getattr(exc, "retryable", False)) from exc
    except OSError as exc:
        raise ArtifactError(f"cannot save {artifact.url} to {archive}: {exc}") from exc
    return archive


def unpack_release(archive: Path, dest: Path) -> list[str]:
    try:
        names = extract_artifact(archive, dest)
    except ReleaseClientError as exc:
        raise ArtifactError(str(exc)) from exc
    except (tarfile.TarError, OSError) as exc:
        raise ArtifactError(f"cannot extract {archive.name} into {dest}: {exc}") from exc
    logger.debug("extracted %d members into %s", len(names), dest)
    return names


def fetch_release(client: ReleaseClient, release: Release, platform: PlatformInfo, dest: Path) -> list[str]:
    """Download, verify and extract the release into ``dest``."""
    with tempfile.TemporaryDirectory(prefix="livos-") as tmp:
        archive = download_release(client, release, platform, Path(tmp))
        return unpack_release(archive, dest)


def install_app_dependencies(install_dir: Path, *, runner: Runner = local_runner) -> bool:
    if not (install_dir / "package.json").exists():
        return False
    cmd = ["npm", "ci", "--omit=dev"]
    try:
        res = runner(cmd, cwd=str(install_dir))
    except FileNotFoundError as exc:
        raise DependencyInstallFailed("npm", None, str(exc)) from exc
    except subprocess.TimeoutExpired as exc:
        raise DependencyInstallFailed("npm", None, "timed out") from exc
    if res.returncode != 0:
        raise DependencyInstallFailed("npm", res.returncode, tail(res))
    return True


def install_fresh(
    config: InstallConfig,
    platform: PlatformInfo,
    release: Release,
    *,
    client: ReleaseClient,
    supervisor: Supervisor,
    runner: Runner = local_runner,
    sleep: Callable[[float], None] = time.sleep,
    lock: InstallLock | None = None,
) -> InstalledState:
    """Run every install step under the installation lock.

    A caller that already holds the lock for ``config.install_dir`` passes
    it as ``lock``; otherwise it is taken here for the duration of the run.
    """
    kwargs = dict(client=client, supervisor=supervisor, runner=runner, sleep=sleep)
    if lock is not None and lock.held and lock.lock_path == config.lock_path:
        return _install_locked(config, platform, release, **kwargs)
    with install_lock(config.lock_path):
        return _install_locked(config, platform, release, **kwargs)


def _install_locked(
    config: InstallConfig,
    platform: PlatformInfo,
    release: Release,
    *,
    client: ReleaseClient,
    supervisor: Supervisor,
    runner: Runner,
    sleep: Callable[[float], None],
) -> InstalledState:
    existing = read_state(config.install_dir, config.data_dir)
    if existing is not None and existing.version != release.version:
        raise ConfigurationInvalid(
            "version",
            f"{config.install_dir} already holds livos {existing.version_text}; "
            "use `livos-installer update` to move to another version",
        )

    console.rule("[bold]LivOS install[/]")
    total = 6
    console.step(1, total, f"Preparing identity {config.run_as} and directories")
    ensure_user(config.run_as, platform, runner=runner)
    owner = owner_ids(config.run_as)
    prepare_directories(config, owner)

    console.step(2, total, f"Fetching release {format_semver(release.version)}")
    fetch_release(client, release, platform, config.install_dir)

    console.step(3, total, f"Writing {config.env_path}")
    config = adopt_persisted_secrets(config)
    try:
        write_config(config, owner=owner)
    except OSError as exc:
        raise InstallerError(f"cannot write {config.env_path}: {exc}", step="write configuration") from exc

    console.step(4, total, "Installing application dependencies")
    if not install_app_dependencies(config.install_dir, runner=runner):
        console.info("No package.json shipped; skipping.")

    console.step(5, total, "Installing the service")
    install_service(config, supervisor)

    console.step(6, total, "Verifying the service")
    verify_running(supervisor, sleep=sleep)
    console.ok("Service is running.")

    state = InstalledState(release.version, config.install_dir, config.data_dir)
    try:
        write_state(state)
    except OSError as exc:
        raise InstallerError(
            f"cannot record version in {config.version_path}: {exc}", step="persist state"
        ) from exc
    return state

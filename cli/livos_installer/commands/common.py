from __future__ import annotations

from typing import NoReturn

import typer

from livos_client import ReleaseClient, ReleaseClientError
from livos_client.releases import Release

from .. import console
from ..config import InstallerSettings, resolve_channel
from ..errors import ArtifactError, InstallerError
from ..platform_probe import PlatformInfo
from ..semver import SemVer, format_semver, parse_semver


def fail(exc: InstallerError) -> NoReturn:
    console.err(exc.diagnostic())
    raise typer.Exit(code=exc.exit_code)


def channel_or_exit(settings: InstallerSettings, override: str | None) -> str:
    try:
        return resolve_channel(settings, override)
    except ValueError as exc:
        console.err(str(exc))
        raise typer.Exit(code=2)


def version_or_exit(raw: str | None) -> SemVer | None:
    if raw is None:
        return None
    parsed = parse_semver(raw)
    if parsed is None:
        console.err(f"Not a semantic version: {raw!r}")
        raise typer.Exit(code=2)
    return parsed


def query_release(
    client: ReleaseClient,
    *,
    channel: str,
    platform: PlatformInfo,
    current: SemVer | None = None,
    pinned: SemVer | None = None,
) -> Release:
    try:
        release = client.latest_release(channel=channel, current_version=current, platform=platform.platform_id())
    except ReleaseClientError as exc:
        raise ArtifactError(
            f"latest-release query failed: {exc}", retryable=getattr(exc, "retryable", False)
        ) from exc
    if pinned is not None and release.version != pinned:
        raise ArtifactError(
            f"the {channel} channel offers {format_semver(release.version)}, not {format_semver(pinned)}"
        )
    return release

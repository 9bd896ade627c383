from __future__ import annotations

from importlib import metadata

import httpx

from livos_client import ReleaseClient
from livos_client.config_types import ClientConfig

from .config import InstallerSettings, resolve_release_url

DIST_NAME = "livos-installer"


def installer_version() -> str:
    try:
        return metadata.version(DIST_NAME)
    except metadata.PackageNotFoundError:
        return "0.0.0"


def make_release_client(
    settings: InstallerSettings,
    *,
    base_url_override: str | None = None,
    transport: httpx.BaseTransport | None = None,
) -> ReleaseClient:
    base_url = (base_url_override or resolve_release_url(settings)).strip().rstrip("/")
    return ReleaseClient(
        ClientConfig(base_url=base_url, client_version=installer_version()),
        transport=transport,
    )

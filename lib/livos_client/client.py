from __future__ import annotations

import hashlib
from pathlib import Path

import httpx

from .config_types import ClientConfig
from .errors import ApiError, ChecksumMismatch, NetworkError
from .releases import Release, parse_release
from .semver import SemVer, format_semver
from .transport import Transport


class ReleaseClient:
    def __init__(self, cfg: ClientConfig, *, transport: httpx.BaseTransport | None = None):
        self._t = Transport(cfg, transport=transport)

    def close(self) -> None:
        self._t.close()

    def __enter__(self) -> "ReleaseClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def latest_release(
        self,
        *,
        channel: str = "stable",
        current_version: SemVer | None = None,
        platform: str | None = None,
    ) -> Release:
        params = {"channel": channel}
        if current_version is not None:
            params["version"] = format_semver(current_version)
        if platform:
            params["platform"] = platform
        data = self._t.request("GET", "/latest-release", params=params)
        return parse_release(data)

    def download(self, url: str, dest: Path, *, expected_sha256: str | None = None) -> str:
        """Stream ``url`` into ``dest`` and return its SHA-256 hex digest.

        On a checksum mismatch the partial file is removed and
        :class:`ChecksumMismatch` is raised.
        """
        sha = hashlib.sha256()
        dest.parent.mkdir(parents=True, exist_ok=True)
        try:
            with self._t.stream(url) as resp:
                if resp.status_code >= 400:
                    raise ApiError(resp.status_code, f"GET {url} failed with {resp.status_code}")
                with dest.open("wb") as f:
                    for chunk in resp.iter_bytes():
                        if not chunk:
                            continue
                        sha.update(chunk)
                        f.write(chunk)
        except httpx.TimeoutException as e:
            dest.unlink(missing_ok=True)
            raise NetworkError(f"download of {url} timed out", retryable=True) from e
        except httpx.RequestError as e:
            dest.unlink(missing_ok=True)
            raise NetworkError(str(e)) from e

        actual = sha.hexdigest()
        if expected_sha256 and actual.lower() != expected_sha256.lower():
            dest.unlink(missing_ok=True)
            raise ChecksumMismatch(url, expected_sha256, actual)
        return actual

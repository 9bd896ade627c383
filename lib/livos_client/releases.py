from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .errors import ApiError
from .semver import SemVer, parse_semver


@dataclass(frozen=True)
class Artifact:
    arch: str
    url: str
    sha256: str | None = None


@dataclass(frozen=True)
class Release:
    version: SemVer
    name: str = ""
    notes: str = ""
    artifacts: dict[str, Artifact] = field(default_factory=dict)

    def artifact_for(self, arch: str) -> Artifact | None:
        return self.artifacts.get(arch)


def _clean_str(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def parse_release(data: Any) -> Release:
    if not isinstance(data, dict):
        raise ApiError(502, "latest-release returned a non-object payload")
    version = parse_semver(_clean_str(data.get("version")))
    if version is None:
        raise ApiError(502, f"latest-release returned an invalid version: {data.get('version')!r}")

    artifacts: dict[str, Artifact] = {}
    raw_artifacts = data.get("artifacts")
    if isinstance(raw_artifacts, dict):
        for arch, entry in raw_artifacts.items():
            if not isinstance(entry, dict):
                continue
            url = _clean_str(entry.get("url"))
            if not url:
                continue
            sha = _clean_str(entry.get("sha256")).lower() or None
            artifacts[str(arch)] = Artifact(arch=str(arch), url=url, sha256=sha)

    return Release(
        version=version,
        name=_clean_str(data.get("name")),
        notes=_clean_str(data.get("releaseNotes")),
        artifacts=artifacts,
    )

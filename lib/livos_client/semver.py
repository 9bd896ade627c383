from __future__ import annotations

import re

# Pre-release and build metadata are accepted but ignored for ordering.
_SEMVER_RE = re.compile(r"^v?(\d+)\.(\d+)(?:\.(\d+))?(?:-[0-9A-Za-z.-]+)?(?:\+[0-9A-Za-z.-]+)?$")
_EMBEDDED_RE = re.compile(r"v?(\d+)\.(\d+)(?:\.(\d+))?")

SemVer = tuple[int, int, int]


def parse_semver(text: str) -> SemVer | None:
    m = _SEMVER_RE.match((text or "").strip())
    if not m:
        return None
    return int(m.group(1)), int(m.group(2)), int(m.group(3) or 0)


def find_semver(text: str) -> SemVer | None:
    """Pull the first version-looking token out of free-form tool output."""
    m = _EMBEDDED_RE.search(text or "")
    if not m:
        return None
    return int(m.group(1)), int(m.group(2)), int(m.group(3) or 0)


def format_semver(version: SemVer) -> str:
    return ".".join(str(part) for part in version)


def require_semver(text: str) -> SemVer:
    parsed = parse_semver(text)
    if parsed is None:
        raise ValueError(f"invalid semantic version: {text!r}")
    return parsed

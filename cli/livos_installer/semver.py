from __future__ import annotations

from livos_client.semver import SemVer, find_semver, format_semver, parse_semver, require_semver

__all__ = ["SemVer", "find_semver", "format_semver", "parse_semver", "require_semver"]

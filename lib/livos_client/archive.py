from __future__ import annotations

import tarfile
from pathlib import Path

from .errors import ReleaseClientError


class UnsafeArchive(ReleaseClientError):
    """Archive member would be written outside the destination."""


def _is_within(base: Path, target: Path) -> bool:
    try:
        target.relative_to(base)
    except ValueError:
        return False
    return True


def extract_artifact(archive: Path, dest: Path) -> list[str]:
    """Extract a release tarball into ``dest`` and return the member names.

    Absolute paths, ``..`` traversal, links pointing outside ``dest`` and
    device nodes are rejected before anything is written.
    """
    dest = dest.resolve()
    dest.mkdir(parents=True, exist_ok=True)
    with tarfile.open(archive, "r:*") as tar:
        members = tar.getmembers()
        for member in members:
            target = (dest / member.name).resolve()
            if not _is_within(dest, target):
                raise UnsafeArchive(f"refusing to extract {member.name!r} outside {dest}")
            if member.issym() or member.islnk():
                link_target = (target.parent / member.linkname).resolve()
                if member.islnk():
                    link_target = (dest / member.linkname).resolve()
                if not _is_within(dest, link_target):
                    raise UnsafeArchive(f"refusing link {member.name!r} -> {member.linkname!r}")
            if member.isdev():
                raise UnsafeArchive(f"refusing device node {member.name!r}")
        tar.extractall(dest, members=members, filter="data")
    return [m.name for m in members]

from __future__ import annotations

import json
import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from .errors import BackupFailed

logger = logging.getLogger(__name__)

MANIFEST_NAME = "snapshot.json"
_STAMP_FORMAT = "%Y%m%d%H%M%S"


@dataclass(frozen=True)
class BackupSnapshot:
    timestamp: datetime
    source_paths: frozenset[Path]
    backup_path: Path
    from_version: str = ""
    stored_as: dict[str, str] = field(default_factory=dict, compare=False)

    def location_of(self, source: Path) -> Path | None:
        name = self.stored_as.get(str(source))
        return self.backup_path / name if name else None


def _skip(excluded: Path):
    excluded = excluded.resolve()

    # A backups dir nested inside a source must not be copied into itself.
    def _ignore(directory: str, names: list[str]) -> list[str]:
        return [n for n in names if (Path(directory) / n).resolve() == excluded]

    return _ignore


def _unique_dir(backups_dir: Path, stamp: str) -> Path:
    candidate = backups_dir / stamp
    suffix = 1
    while candidate.exists():
        candidate = backups_dir / f"{stamp}-{suffix}"
        suffix += 1
    return candidate


def create_snapshot(
    sources: Iterable[Path],
    backups_dir: Path,
    *,
    from_version: str = "",
    now: datetime | None = None,
) -> BackupSnapshot:
    """Copy every existing source into a fresh timestamped directory.

    Any copy error removes the partial directory and raises BackupFailed;
    nothing else on disk has been touched at that point.
    """
    timestamp = now or datetime.now(timezone.utc)
    sources = [Path(p) for p in sources]
    backup_path = _unique_dir(Path(backups_dir), timestamp.strftime(_STAMP_FORMAT))
    stored_as: dict[str, str] = {}
    try:
        backup_path.mkdir(parents=True, exist_ok=False)
        for source in sources:
            if not source.exists():
                logger.warning("backup source %s does not exist; skipping", source)
                continue
            name = source.name or "root"
            while name in stored_as.values():
                name = f"_{name}"
            target = backup_path / name
            if source.is_dir():
                shutil.copytree(source, target, symlinks=True, ignore=_skip(Path(backups_dir)))
            else:
                shutil.copy2(source, target)
            stored_as[str(source)] = name
        manifest = {
            "timestamp": timestamp.isoformat(),
            "from_version": from_version,
            "sources": [{"path": path, "stored_as": name} for path, name in stored_as.items()],
        }
        (backup_path / MANIFEST_NAME).write_text(json.dumps(manifest, indent=2) + "\n", encoding="utf-8")
    except (OSError, shutil.Error) as exc:
        shutil.rmtree(backup_path, ignore_errors=True)
        raise BackupFailed(f"could not snapshot into {backup_path}: {exc}") from exc

    logger.debug("snapshot %s covers %s", backup_path, ", ".join(stored_as) or "nothing")
    return BackupSnapshot(
        timestamp=timestamp,
        source_paths=frozenset(Path(p) for p in stored_as),
        backup_path=backup_path,
        from_version=from_version,
        stored_as=stored_as,
    )


def _load(path: Path) -> BackupSnapshot | None:
    manifest = path / MANIFEST_NAME
    try:
        data = json.loads(manifest.read_text(encoding="utf-8"))
        timestamp = datetime.fromisoformat(str(data["timestamp"]))
    except (OSError, ValueError, KeyError, TypeError) as exc:
        logger.debug("ignoring %s: %s", path, exc)
        return None
    stored_as: dict[str, str] = {}
    for entry in data.get("sources") or []:
        if isinstance(entry, dict) and entry.get("path") and entry.get("stored_as"):
            stored_as[str(entry["path"])] = str(entry["stored_as"])
    return BackupSnapshot(
        timestamp=timestamp,
        source_paths=frozenset(Path(p) for p in stored_as),
        backup_path=path,
        from_version=str(data.get("from_version") or ""),
        stored_as=stored_as,
    )


def list_snapshots(backups_dir: Path) -> list[BackupSnapshot]:
    backups_dir = Path(backups_dir)
    if not backups_dir.is_dir():
        return []
    snapshots = [s for s in (_load(p) for p in backups_dir.iterdir() if p.is_dir()) if s is not None]
    return sorted(snapshots, key=lambda s: (s.timestamp, s.backup_path.name))


def prune_snapshots(backups_dir: Path, *, keep: int) -> list[BackupSnapshot]:
    """Delete all but the newest ``keep`` snapshots and return the removed ones."""
    if keep < 0:
        raise ValueError("keep must be >= 0")
    snapshots = list_snapshots(backups_dir)
    doomed = snapshots[: max(len(snapshots) - keep, 0)]
    for snap in doomed:
        shutil.rmtree(snap.backup_path)
    return doomed

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from .errors import InstallerError
from .install_config import VERSION_FILENAME
from .semver import SemVer, format_semver, parse_semver


class StateError(InstallerError):
    default_step = "read installed state"


@dataclass(frozen=True)
class InstalledState:
    version: SemVer
    install_path: Path
    data_path: Path

    @property
    def version_text(self) -> str:
        return format_semver(self.version)


def version_file(install_path: Path) -> Path:
    return Path(install_path) / VERSION_FILENAME


def read_state(install_path: Path, data_path: Path | None = None) -> InstalledState | None:
    """Return the installed state, or None when nothing is installed there."""
    install_path = Path(install_path)
    path = version_file(install_path)
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    lines = raw.strip().splitlines()
    version = parse_semver(lines[0]) if lines else None
    if version is None:
        raise StateError(f"{path} does not hold a semantic version: {raw.strip()!r}")
    return InstalledState(
        version=version,
        install_path=install_path,
        data_path=Path(data_path) if data_path else install_path / "data",
    )


def write_state(state: InstalledState) -> Path:
    path = version_file(state.install_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=".VERSION.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(state.version_text + "\n")
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, 0o644)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return path

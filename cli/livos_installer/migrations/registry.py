from __future__ import annotations

import json
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence

import yaml

from ..semver import SemVer, format_semver, require_semver

logger = logging.getLogger(__name__)

DATA_LAYOUT = ("apps", "storage", "db", "tmp")
LEGACY_USER_STORE = "users.json"
LEGACY_SETTINGS = "settings.json"
SETTINGS_YAML = "livos.yaml"


@dataclass(frozen=True)
class MigrationStep:
    version: SemVer
    apply: Callable[[Path], None]
    description: str = ""

    @property
    def version_text(self) -> str:
        return format_semver(self.version)


def _data_layout(data_path: Path) -> None:
    for name in DATA_LAYOUT:
        (data_path / name).mkdir(parents=True, exist_ok=True)


def _move_user_store(data_path: Path) -> None:
    legacy = data_path / LEGACY_USER_STORE
    target = data_path / "db" / LEGACY_USER_STORE
    if not legacy.exists():
        logger.debug("no legacy user store at %s", legacy)
        return
    if target.exists():
        raise FileExistsError(f"both {legacy} and {target} exist; refusing to overwrite")
    target.parent.mkdir(parents=True, exist_ok=True)
    shutil.move(str(legacy), str(target))


def _settings_to_yaml(data_path: Path) -> None:
    legacy = data_path / LEGACY_SETTINGS
    target = data_path / SETTINGS_YAML
    if not legacy.exists():
        logger.debug("no legacy settings at %s", legacy)
        return
    data = json.loads(legacy.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{legacy} must hold a JSON object")
    tmp = target.with_name(f".{target.name}.tmp")
    tmp.write_text(yaml.safe_dump(data, sort_keys=True, default_flow_style=False), encoding="utf-8")
    tmp.replace(target)
    legacy.unlink()


REGISTRY: tuple[MigrationStep, ...] = (
    MigrationStep(require_semver("1.1.0"), _data_layout, "create the apps/storage/db data layout"),
    MigrationStep(require_semver("1.2.0"), _move_user_store, "move the user store into db/"),
    MigrationStep(require_semver("2.0.0"), _settings_to_yaml, "convert settings.json to livos.yaml"),
)


def steps_between(from_version: SemVer, to_version: SemVer, registry: Sequence[MigrationStep] = REGISTRY) -> list[MigrationStep]:
    """Steps with ``from < version <= to``, ascending."""
    picked = [s for s in registry if from_version < s.version <= to_version]
    return sorted(picked, key=lambda s: s.version)

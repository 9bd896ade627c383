from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator

from .platform_probe import PlatformInfo
from .runner import Runner, local_runner
from .semver import SemVer, find_semver, format_semver, parse_semver

logger = logging.getLogger(__name__)

VERSION_QUERY_TIMEOUT = 10.0

_VERSION_ARGS: dict[str, list[str]] = {
    "systemctl": ["--version"],
    "redis-server": ["--version"],
    "launchctl": ["version"],
}

Requirement = tuple[str, "str | None"]

DEFAULT_REQUIREMENTS: list[Requirement] = [
    ("node", "20.0.0"),
    ("npm", None),
    ("redis-server", "6.0.0"),
    ("tar", None),
]


@dataclass
class Dependency:
    name: str
    min_version: SemVer | None = None
    present: bool = False
    detected_version: SemVer | None = None

    @property
    def satisfied(self) -> bool:
        if not self.present:
            return False
        if self.min_version is None:
            return True
        return self.detected_version is not None and self.detected_version >= self.min_version

    def describe(self) -> str:
        wanted = f" >= {format_semver(self.min_version)}" if self.min_version else ""
        if not self.present and self.detected_version is None:
            return f"{self.name}{wanted}: not found"
        found = format_semver(self.detected_version) if self.detected_version else "unknown version"
        return f"{self.name}{wanted}: found {found}"


@dataclass
class DeficiencyReport:
    deficiencies: list[Dependency] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.deficiencies

    @property
    def names(self) -> list[str]:
        return [d.name for d in self.deficiencies]

    def __iter__(self) -> Iterator[Dependency]:
        return iter(self.deficiencies)

    def __len__(self) -> int:
        return len(self.deficiencies)


def requirements_for(platform: PlatformInfo) -> list[Requirement]:
    reqs = list(DEFAULT_REQUIREMENTS)
    if platform.is_linux:
        reqs.append(("systemctl", None))
    return reqs


def probe(
    name: str,
    min_version: str | SemVer | None = None,
    *,
    runner: Runner = local_runner,
    which: Callable[[str], str | None] = shutil.which,
) -> Dependency:
    if isinstance(min_version, str):
        min_version = parse_semver(min_version)
    dep = Dependency(name=name, min_version=min_version)
    path = which(name)
    if not path:
        return dep
    args = _VERSION_ARGS.get(name, ["--version"])
    try:
        res = runner([path, *args], timeout=VERSION_QUERY_TIMEOUT)
    except (subprocess.TimeoutExpired, OSError) as exc:
        logger.debug("version query for %s failed: %s", name, exc)
        return dep
    if res.returncode != 0:
        logger.debug("version query for %s exited %s", name, res.returncode)
        return dep
    dep.present = True
    # A tool that answers without a parseable version fails any minimum.
    dep.detected_version = find_semver(res.stdout or "") or find_semver(res.stderr or "")
    return dep


def check(
    required: Iterable[tuple[str, str | SemVer | None]],
    *,
    runner: Runner = local_runner,
    which: Callable[[str], str | None] = shutil.which,
) -> DeficiencyReport:
    report = DeficiencyReport()
    for name, min_version in required:
        dep = probe(name, min_version, runner=runner, which=which)
        if not dep.satisfied:
            report.deficiencies.append(dep)
    return report

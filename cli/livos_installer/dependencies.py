from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field
from typing import Callable

from .capabilities import DeficiencyReport
from .errors import DependencyInstallFailed, UnsupportedPlatform
from .platform_probe import OsFamily, PlatformInfo
from .runner import Runner, local_runner, tail

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Invocation:
    tool: str
    argv: list[str]
    env: dict[str, str] = field(default_factory=dict)


_DEB_PACKAGES = {"node": "nodejs", "npm": "npm", "redis-server": "redis-server", "tar": "tar", "systemctl": "systemd"}
_LINUX_PACKAGES = {"node": "nodejs", "npm": "npm", "redis-server": "redis", "tar": "tar", "systemctl": "systemd"}

_PACKAGE_NAMES: dict[OsFamily, dict[str, str]] = {
    OsFamily.UBUNTU: _DEB_PACKAGES,
    OsFamily.DEBIAN: _DEB_PACKAGES,
    OsFamily.RHEL: _LINUX_PACKAGES,
    OsFamily.ARCH: _LINUX_PACKAGES,
    OsFamily.MACOS: {"node": "node", "npm": "node", "redis-server": "redis", "tar": "gnu-tar"},
}


def _packages(family: OsFamily, tools: list[str]) -> list[tuple[str, str]]:
    names = _PACKAGE_NAMES.get(family, {})
    out: list[tuple[str, str]] = []
    seen: set[str] = set()
    for tool in tools:
        pkg = names.get(tool, tool)
        if pkg in seen:
            continue
        seen.add(pkg)
        out.append((tool, pkg))
    return out


def _apt(tools: list[str]) -> list[Invocation]:
    env = {"DEBIAN_FRONTEND": "noninteractive"}
    plan = [Invocation("apt-get", ["apt-get", "update", "-qq"], env)]
    for tool, pkg in _packages(OsFamily.DEBIAN, tools):
        plan.append(Invocation(tool, ["apt-get", "install", "-y", "-qq", pkg], env))
    return plan


def _dnf(tools: list[str]) -> list[Invocation]:
    return [Invocation(tool, ["dnf", "install", "-y", pkg]) for tool, pkg in _packages(OsFamily.RHEL, tools)]


def _pacman(tools: list[str]) -> list[Invocation]:
    plan = [Invocation("pacman", ["pacman", "-Sy", "--noconfirm"])]
    for tool, pkg in _packages(OsFamily.ARCH, tools):
        plan.append(Invocation(tool, ["pacman", "-S", "--noconfirm", "--needed", pkg]))
    return plan


def _brew(tools: list[str]) -> list[Invocation]:
    return [Invocation(tool, ["brew", "install", pkg]) for tool, pkg in _packages(OsFamily.MACOS, tools)]


DISPATCH: dict[OsFamily, Callable[[list[str]], list[Invocation]]] = {
    OsFamily.UBUNTU: _apt,
    OsFamily.DEBIAN: _apt,
    OsFamily.RHEL: _dnf,
    OsFamily.ARCH: _pacman,
    OsFamily.MACOS: _brew,
}


def plan_install(report: DeficiencyReport, platform: PlatformInfo) -> list[Invocation]:
    if report.ok:
        return []
    builder = DISPATCH.get(platform.os_family)
    if builder is None:
        raise UnsupportedPlatform(platform.os_family.value, report.names)
    return builder(report.names)


def install(
    report: DeficiencyReport,
    platform: PlatformInfo,
    *,
    runner: Runner = local_runner,
) -> None:
    """Run the native package manager for every deficient tool.

    The first non-zero exit aborts the sequence.
    """
    for inv in plan_install(report, platform):
        logger.info("installing %s: %s", inv.tool, " ".join(inv.argv))
        try:
            res = runner(inv.argv, env=inv.env or None)
        except FileNotFoundError as exc:
            raise DependencyInstallFailed(inv.tool, None, f"{inv.argv[0]} not found") from exc
        except subprocess.TimeoutExpired as exc:
            raise DependencyInstallFailed(inv.tool, None, "timed out") from exc
        if res.returncode != 0:
            raise DependencyInstallFailed(inv.tool, res.returncode, tail(res))

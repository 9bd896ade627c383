from __future__ import annotations

import pytest

from livos_installer import dependencies
from livos_installer.capabilities import DeficiencyReport, Dependency
from livos_installer.errors import DependencyInstallFailed, EXIT_UNSUPPORTED, UnsupportedPlatform
from livos_installer.platform_probe import Arch, OsFamily, PlatformInfo

from conftest import FakeRunner


def _report(*names: str) -> DeficiencyReport:
    return DeficiencyReport([Dependency(name=n) for n in names])


def _platform(family: OsFamily) -> PlatformInfo:
    return PlatformInfo(family, "", Arch.AMD64, False)


def test_apt_plan_is_noninteractive() -> None:
    plan = dependencies.plan_install(_report("node", "redis-server"), _platform(OsFamily.UBUNTU))
    assert [inv.argv for inv in plan] == [
        ["apt-get", "update", "-qq"],
        ["apt-get", "install", "-y", "-qq", "nodejs"],
        ["apt-get", "install", "-y", "-qq", "redis-server"],
    ]
    assert all(inv.env == {"DEBIAN_FRONTEND": "noninteractive"} for inv in plan)


def test_dnf_and_pacman_package_names() -> None:
    dnf = dependencies.plan_install(_report("redis-server"), _platform(OsFamily.RHEL))
    assert dnf[0].argv == ["dnf", "install", "-y", "redis"]
    pacman = dependencies.plan_install(_report("node"), _platform(OsFamily.ARCH))
    assert pacman[0].argv[:2] == ["pacman", "-Sy"]
    assert pacman[-1].argv == ["pacman", "-S", "--noconfirm", "--needed", "nodejs"]


def test_systemctl_maps_to_systemd_package() -> None:
    apt = dependencies.plan_install(_report("systemctl"), _platform(OsFamily.UBUNTU))
    assert apt[-1].argv == ["apt-get", "install", "-y", "-qq", "systemd"]
    dnf = dependencies.plan_install(_report("systemctl"), _platform(OsFamily.RHEL))
    assert dnf[0].argv == ["dnf", "install", "-y", "systemd"]


def test_brew_merges_node_and_npm() -> None:
    plan = dependencies.plan_install(_report("node", "npm"), _platform(OsFamily.MACOS))
    assert [inv.argv for inv in plan] == [["brew", "install", "node"]]


def test_empty_report_plans_nothing() -> None:
    assert dependencies.plan_install(_report(), _platform(OsFamily.UNKNOWN)) == []


def test_unknown_family_is_unsupported() -> None:
    with pytest.raises(UnsupportedPlatform) as excinfo:
        dependencies.plan_install(_report("node"), _platform(OsFamily.UNKNOWN))
    assert excinfo.value.exit_code == EXIT_UNSUPPORTED
    assert excinfo.value.packages == ["node"]


def test_install_stops_at_first_failure() -> None:
    runner = FakeRunner({"apt-get install -y -qq nodejs": (100, "E: Unable to locate package nodejs")})
    with pytest.raises(DependencyInstallFailed) as excinfo:
        dependencies.install(_report("node", "redis-server"), _platform(OsFamily.DEBIAN), runner=runner)
    assert excinfo.value.tool == "node"
    assert excinfo.value.tool_exit_code == 100
    assert ["apt-get", "install", "-y", "-qq", "redis-server"] not in runner.calls


def test_install_missing_package_manager() -> None:
    def runner(cmd, **_kwargs):
        raise FileNotFoundError(cmd[0])

    with pytest.raises(DependencyInstallFailed) as excinfo:
        dependencies.install(_report("node"), _platform(OsFamily.RHEL), runner=runner)
    assert excinfo.value.tool_exit_code is None

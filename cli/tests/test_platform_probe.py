from __future__ import annotations

import pytest

from livos_installer import platform_probe
from livos_installer.errors import DetectionFailure, EXIT_UNSUPPORTED, UnsupportedArchitecture
from livos_installer.platform_probe import Arch, OsFamily


def _os_release(tmp_path, body: str):
    path = tmp_path / "os-release"
    path.write_text(body, encoding="utf-8")
    return [path]


@pytest.mark.parametrize("os_id", sorted(platform_probe._FAMILY_ALIASES) + ["", "plan9", "UBUNTU", '"debian"'])
def test_canonicalize_is_idempotent(os_id: str) -> None:
    once = platform_probe.canonicalize(os_id)
    assert platform_probe.canonicalize(once) is once
    assert platform_probe.canonicalize(once.value) is once


def test_canonicalize_collapses_derivatives() -> None:
    assert platform_probe.canonicalize("linuxmint") is OsFamily.UBUNTU
    assert platform_probe.canonicalize("raspbian") is OsFamily.DEBIAN
    assert platform_probe.canonicalize("rocky") is OsFamily.RHEL
    assert platform_probe.canonicalize("manjaro") is OsFamily.ARCH


def test_canonicalize_falls_back_to_id_like() -> None:
    assert platform_probe.canonicalize("someos", ["ubuntu", "debian"]) is OsFamily.UBUNTU
    assert platform_probe.canonicalize("someos", ["nothing"]) is OsFamily.UNKNOWN


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("x86_64", Arch.AMD64), ("amd64", Arch.AMD64), ("aarch64", Arch.ARM64), ("armv7l", Arch.ARMV7)],
)
def test_normalize_arch(raw: str, expected: Arch) -> None:
    assert platform_probe.normalize_arch(raw) is expected


@pytest.mark.parametrize("raw", ["riscv64", "i686", "", "s390x"])
def test_unsupported_arch_is_fatal(raw: str) -> None:
    with pytest.raises(UnsupportedArchitecture) as excinfo:
        platform_probe.normalize_arch(raw)
    assert excinfo.value.exit_code == EXIT_UNSUPPORTED


def test_unsupported_arch_stops_before_os_detection(tmp_path) -> None:
    # No os-release either: the architecture check must win.
    with pytest.raises(UnsupportedArchitecture):
        platform_probe.detect(
            system="Linux",
            machine="riscv64",
            os_release_paths=[tmp_path / "missing"],
            root=tmp_path,
            environ={},
        )


def test_detect_linux(tmp_path) -> None:
    paths = _os_release(
        tmp_path,
        'ID=ubuntu\nID_LIKE=debian\nVERSION_ID="22.04"\nPRETTY_NAME="Ubuntu 22.04.4 LTS"\n',
    )
    info = platform_probe.detect(
        system="Linux", machine="x86_64", os_release_paths=paths, root=tmp_path, environ={}
    )
    assert info.os_family is OsFamily.UBUNTU
    assert info.os_version == "22.04"
    assert info.arch is Arch.AMD64
    assert info.is_container is False
    assert info.pretty_name == "Ubuntu 22.04.4 LTS"
    assert info.platform_id() == "linux-amd64"


def test_detect_untested_family_still_detects(tmp_path) -> None:
    paths = _os_release(tmp_path, "ID=fedora\nVERSION_ID=40\n")
    info = platform_probe.detect(
        system="Linux", machine="aarch64", os_release_paths=paths, root=tmp_path, environ={}
    )
    assert info.os_family is OsFamily.RHEL
    assert info.os_id == "fedora"


def test_detect_without_os_release_fails(tmp_path) -> None:
    with pytest.raises(DetectionFailure):
        platform_probe.detect(
            system="Linux", machine="x86_64", os_release_paths=[tmp_path / "missing"], root=tmp_path, environ={}
        )


def test_detect_named_foreign_system_is_unknown_family(tmp_path) -> None:
    info = platform_probe.detect(system="FreeBSD", machine="amd64", root=tmp_path, environ={})
    assert info.os_family is OsFamily.UNKNOWN
    assert info.os_id == "freebsd"
    assert info.arch is Arch.AMD64


def test_detect_empty_system_fails(tmp_path) -> None:
    with pytest.raises(DetectionFailure):
        platform_probe.detect(system="", machine="x86_64", root=tmp_path, environ={})


def test_detect_darwin(monkeypatch) -> None:
    monkeypatch.setattr(platform_probe.platform_mod, "mac_ver", lambda: ("14.4", ("", "", ""), "arm64"))
    info = platform_probe.detect(system="Darwin", machine="arm64")
    assert info.os_family is OsFamily.MACOS
    assert info.is_linux is False
    assert info.platform_id() == "darwin-arm64"


def test_detect_container_markers(tmp_path) -> None:
    assert platform_probe.detect_container(root=tmp_path, environ={"container": "podman"}) is True
    assert platform_probe.detect_container(root=tmp_path, environ={}) is False
    (tmp_path / ".dockerenv").touch()
    assert platform_probe.detect_container(root=tmp_path, environ={}) is True


def test_detect_container_from_cgroup(tmp_path) -> None:
    cgroup = tmp_path / "proc" / "1" / "cgroup"
    cgroup.parent.mkdir(parents=True)
    cgroup.write_text("0::/system.slice/docker-abc.scope\n", encoding="utf-8")
    assert platform_probe.detect_container(root=tmp_path, environ={}) is True

from __future__ import annotations

import logging
import os
import platform as platform_mod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Mapping

from .errors import DetectionFailure, UnsupportedArchitecture

logger = logging.getLogger(__name__)

OS_RELEASE_PATHS = (Path("/etc/os-release"), Path("/usr/lib/os-release"))


class OsFamily(str, Enum):
    UBUNTU = "ubuntu"
    DEBIAN = "debian"
    RHEL = "rhel"
    ARCH = "arch"
    MACOS = "macos"
    UNKNOWN = "unknown"


class Arch(str, Enum):
    AMD64 = "amd64"
    ARM64 = "arm64"
    ARMV7 = "armv7"


TESTED_FAMILIES = {OsFamily.UBUNTU, OsFamily.DEBIAN}

_FAMILY_ALIASES: dict[str, OsFamily] = {
    "ubuntu": OsFamily.UBUNTU,
    "linuxmint": OsFamily.UBUNTU,
    "pop": OsFamily.UBUNTU,
    "elementary": OsFamily.UBUNTU,
    "zorin": OsFamily.UBUNTU,
    "neon": OsFamily.UBUNTU,
    "kubuntu": OsFamily.UBUNTU,
    "xubuntu": OsFamily.UBUNTU,
    "lubuntu": OsFamily.UBUNTU,
    "debian": OsFamily.DEBIAN,
    "raspbian": OsFamily.DEBIAN,
    "devuan": OsFamily.DEBIAN,
    "kali": OsFamily.DEBIAN,
    "mx": OsFamily.DEBIAN,
    "rhel": OsFamily.RHEL,
    "centos": OsFamily.RHEL,
    "fedora": OsFamily.RHEL,
    "rocky": OsFamily.RHEL,
    "almalinux": OsFamily.RHEL,
    "ol": OsFamily.RHEL,
    "amzn": OsFamily.RHEL,
    "arch": OsFamily.ARCH,
    "archlinux": OsFamily.ARCH,
    "manjaro": OsFamily.ARCH,
    "endeavouros": OsFamily.ARCH,
    "garuda": OsFamily.ARCH,
    "artix": OsFamily.ARCH,
    "macos": OsFamily.MACOS,
    "darwin": OsFamily.MACOS,
    "unknown": OsFamily.UNKNOWN,
}

_ARCH_ALIASES: dict[str, Arch] = {
    "x86_64": Arch.AMD64,
    "amd64": Arch.AMD64,
    "aarch64": Arch.ARM64,
    "arm64": Arch.ARM64,
    "armv7l": Arch.ARMV7,
    "armv7": Arch.ARMV7,
    "armhf": Arch.ARMV7,
}


@dataclass(frozen=True)
class PlatformInfo:
    os_family: OsFamily
    os_version: str
    arch: Arch
    is_container: bool
    os_id: str = ""
    pretty_name: str = ""

    @property
    def is_linux(self) -> bool:
        return self.os_family is not OsFamily.MACOS

    def platform_id(self) -> str:
        return f"{'darwin' if self.os_family is OsFamily.MACOS else 'linux'}-{self.arch.value}"


def canonicalize(os_id: str, id_like: Iterable[str] = ()) -> OsFamily:
    """Collapse a distribution identifier onto its upstream family.

    Canonical names map to themselves, so applying this to its own result
    is a no-op.
    """
    key = (os_id.value if isinstance(os_id, OsFamily) else os_id or "").strip().strip('"').lower()
    family = _FAMILY_ALIASES.get(key)
    if family is not None:
        return family
    for candidate in id_like:
        family = _FAMILY_ALIASES.get(candidate.strip().lower())
        if family is not None and family is not OsFamily.UNKNOWN:
            return family
    return OsFamily.UNKNOWN


def normalize_arch(raw: str) -> Arch:
    arch = _ARCH_ALIASES.get((raw or "").strip().lower())
    if arch is None:
        raise UnsupportedArchitecture(raw)
    return arch


def parse_os_release(content: str) -> dict[str, str]:
    data: dict[str, str] = {}
    for raw in content.splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        data[key.strip()] = value
    return data


def _read_os_release(paths: Iterable[Path]) -> dict[str, str] | None:
    for path in paths:
        try:
            return parse_os_release(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            continue
        except OSError as exc:
            logger.debug("cannot read %s: %s", path, exc)
    return None


def detect_container(
    *,
    root: Path = Path("/"),
    environ: Mapping[str, str] | None = None,
) -> bool:
    env = os.environ if environ is None else environ
    if env.get("container"):
        return True
    if (root / ".dockerenv").exists() or (root / "run" / ".containerenv").exists():
        return True
    try:
        cgroup = (root / "proc" / "1" / "cgroup").read_text(encoding="utf-8")
    except OSError:
        return False
    return any(marker in cgroup for marker in ("docker", "lxc", "kubepods", "containerd"))


def detect(
    *,
    system: str | None = None,
    machine: str | None = None,
    os_release_paths: Iterable[Path] = OS_RELEASE_PATHS,
    root: Path = Path("/"),
    environ: Mapping[str, str] | None = None,
) -> PlatformInfo:
    system = system if system is not None else platform_mod.system()
    machine = machine if machine is not None else platform_mod.machine()

    # Architecture first: an unsupported CPU stops everything else.
    arch = normalize_arch(machine)

    if system == "Darwin":
        version = platform_mod.mac_ver()[0] or ""
        return PlatformInfo(
            os_family=OsFamily.MACOS,
            os_version=version,
            arch=arch,
            is_container=False,
            os_id="macos",
            pretty_name=f"macOS {version}".strip(),
        )

    if not system:
        raise DetectionFailure("cannot identify the operating system")

    if system != "Linux":
        # Named but unsupported kernels (FreeBSD, ...) fall through to the
        # unsupported-platform path once dependencies are checked.
        logger.warning("operating system %r is not supported; a manual install is required", system)
        return PlatformInfo(
            os_family=OsFamily.UNKNOWN,
            os_version=platform_mod.release() if system == platform_mod.system() else "",
            arch=arch,
            is_container=False,
            os_id=system.lower(),
            pretty_name=system,
        )

    release = _read_os_release(os_release_paths)
    if release is None:
        raise DetectionFailure("cannot identify the OS: /etc/os-release not found")

    os_id = release.get("ID", "").lower()
    id_like = release.get("ID_LIKE", "").split()
    family = canonicalize(os_id, id_like)
    info = PlatformInfo(
        os_family=family,
        os_version=release.get("VERSION_ID", ""),
        arch=arch,
        is_container=detect_container(root=root, environ=environ),
        os_id=os_id,
        pretty_name=release.get("PRETTY_NAME", ""),
    )
    if family not in TESTED_FAMILIES:
        logger.warning("OS %r (%s) is not officially tested; tested on Ubuntu 22.04+, Debian 11+",
                       os_id, family.value)
    return info

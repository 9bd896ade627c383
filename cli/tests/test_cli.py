from __future__ import annotations

import functools
import hashlib
import io
import tarfile

import httpx
import pytest
from typer.testing import CliRunner

from livos_client import ReleaseClient
from livos_client.config_types import ClientConfig
from livos_installer import config, main
from livos_installer.capabilities import DeficiencyReport, Dependency
from livos_installer.commands import install_cmd, update_cmd
from livos_installer.errors import ArtifactError, UnsupportedArchitecture
from livos_installer.lock import install_lock
from livos_installer.platform_probe import Arch, OsFamily, PlatformInfo
from livos_installer.state import InstalledState, read_state, write_state

from conftest import FakeSupervisor

PLATFORM = PlatformInfo(OsFamily.UBUNTU, "22.04", Arch.AMD64, False, os_id="ubuntu", pretty_name="Ubuntu 22.04")


@pytest.fixture(autouse=True)
def _isolated(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "site_config_dir", lambda _app: str(tmp_path / "etc"))
    for var in ("LIVOS_RELEASE_URL", "LIVOS_CHANNEL", "LIVOS_DOMAIN", "LIVOS_PORT", "LIVOS_ADMIN_EMAIL"):
        monkeypatch.delenv(var, raising=False)


ARTIFACT_URL = "https://releases.test/livos-linux-amd64.tar.gz"


def _tarball() -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        body = b"#!/bin/sh\n"
        info = tarfile.TarInfo("bin/livos-server")
        info.size = len(body)
        info.mode = 0o755
        tar.addfile(info, io.BytesIO(body))
    return buf.getvalue()


PAYLOAD = _tarball()


def _release_client(version: str = "2.0.0", downloads: list[str] | None = None) -> ReleaseClient:
    artifacts = {"amd64": {"url": ARTIFACT_URL, "sha256": hashlib.sha256(PAYLOAD).hexdigest()}}

    def handler(request: httpx.Request) -> httpx.Response:
        if str(request.url) == ARTIFACT_URL:
            if downloads is not None:
                downloads.append(str(request.url))
            return httpx.Response(200, content=PAYLOAD)
        assert request.url.path == "/latest-release"
        return httpx.Response(200, json={"version": version, "name": f"LivOS {version}", "artifacts": artifacts})

    return ReleaseClient(ClientConfig(base_url="https://releases.test"), transport=httpx.MockTransport(handler))


def _installed(tmp_path, version=(1, 0, 0)):
    root = tmp_path / "livos"
    (root / "data").mkdir(parents=True)
    write_state(InstalledState(version, root, root / "data"))
    return root


def _patch_update(monkeypatch, tmp_path, version: str = "2.0.0", downloads: list[str] | None = None) -> FakeSupervisor:
    sup = FakeSupervisor(tmp_path / "livos.service")
    monkeypatch.setattr(update_cmd, "detect", lambda: PLATFORM)
    monkeypatch.setattr(update_cmd, "make_release_client", lambda _settings: _release_client(version, downloads))
    monkeypatch.setattr(update_cmd, "MigrationEngine", functools.partial(update_cmd.MigrationEngine, sleep=lambda _s: None))
    monkeypatch.setattr(update_cmd, "supervisor_for", lambda _platform: sup)
    return sup


def test_help_lists_commands() -> None:
    result = CliRunner().invoke(main._build_app(), ["--help"])
    assert result.exit_code == 0
    for name in ("install", "update", "status", "backups", "config", "settings"):
        assert name in result.output


def test_install_dry_run_changes_nothing(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(install_cmd, "detect", lambda: PLATFORM)
    monkeypatch.setattr(
        install_cmd, "check", lambda _reqs: DeficiencyReport([Dependency("redis-server", (6, 0, 0))])
    )
    root = tmp_path / "livos"
    result = CliRunner().invoke(
        main.app,
        ["install", "--dry-run", "--non-interactive", "--install-dir", str(root), "--domain", "demo.example"],
    )
    assert result.exit_code == 0, result.output
    assert "apt-get update -qq" in result.output
    assert "domain=demo.example" in result.output
    assert not root.exists()


def test_install_unsupported_arch_exit_code(monkeypatch) -> None:
    def boom():
        raise UnsupportedArchitecture("riscv64")

    monkeypatch.setattr(install_cmd, "detect", boom)
    result = CliRunner().invoke(main.app, ["install", "--non-interactive"])
    assert result.exit_code == 4
    assert "ERR detect platform" in result.output


def test_install_while_locked_touches_nothing(tmp_path, monkeypatch) -> None:
    checked: list = []
    monkeypatch.setattr(install_cmd, "detect", lambda: PLATFORM)
    monkeypatch.setattr(install_cmd, "check", lambda reqs: checked.append(reqs) or DeficiencyReport([]))
    root = tmp_path / "livos"
    with install_lock(root / ".install.lock"):
        result = CliRunner().invoke(main.app, ["install", "--non-interactive", "--install-dir", str(root)])
    assert result.exit_code == 3
    assert "ERR acquire lock" in result.output
    assert checked == []
    assert not (root / ".env").exists()


def test_install_on_unknown_os_needs_manual_install(tmp_path, monkeypatch) -> None:
    foreign = PlatformInfo(OsFamily.UNKNOWN, "", Arch.AMD64, False, os_id="freebsd", pretty_name="FreeBSD")
    monkeypatch.setattr(install_cmd, "detect", lambda: foreign)
    monkeypatch.setattr(install_cmd, "check", lambda _reqs: DeficiencyReport([Dependency("systemctl")]))
    root = tmp_path / "livos"
    result = CliRunner().invoke(main.app, ["install", "--non-interactive", "--install-dir", str(root)])
    assert result.exit_code == 4
    assert "manually" in result.output
    assert not (root / ".env").exists()


def test_install_rejects_bad_channel() -> None:
    result = CliRunner().invoke(main.app, ["install", "--non-interactive", "--channel", "nightly"])
    assert result.exit_code == 2


def test_update_dry_run_lists_steps(tmp_path, monkeypatch) -> None:
    root = _installed(tmp_path, (1, 1, 0))
    sup = _patch_update(monkeypatch, tmp_path)
    result = CliRunner().invoke(main.app, ["update", "--dry-run", "--install-dir", str(root)])
    assert result.exit_code == 0, result.output
    assert "1.2.0" in result.output and "2.0.0" in result.output
    assert "1.1.0:" not in result.output
    assert sup.calls == []
    assert not (root / "backups").exists()


def test_update_up_to_date_is_a_no_op(tmp_path, monkeypatch) -> None:
    root = _installed(tmp_path, (2, 0, 0))
    sup = _patch_update(monkeypatch, tmp_path)
    result = CliRunner().invoke(main.app, ["update", "--install-dir", str(root)])
    assert result.exit_code == 0, result.output
    assert "already" in result.output
    assert sup.calls == []
    assert not (root / "backups").exists()


def test_update_while_locked_exits_busy(tmp_path, monkeypatch) -> None:
    root = _installed(tmp_path)
    _patch_update(monkeypatch, tmp_path)
    with install_lock(root / ".install.lock"):
        result = CliRunner().invoke(main.app, ["update", "--install-dir", str(root)])
    assert result.exit_code == 3
    assert "ERR acquire lock" in result.output
    assert read_state(root).version == (1, 0, 0)
    assert not (root / "backups").exists()


def test_update_downloads_before_backing_up(tmp_path, monkeypatch) -> None:
    root = _installed(tmp_path)
    downloads: list[str] = []
    sup = _patch_update(monkeypatch, tmp_path, downloads=downloads)
    result = CliRunner().invoke(main.app, ["update", "--install-dir", str(root)])
    assert result.exit_code == 0, result.output
    assert downloads == [ARTIFACT_URL]
    assert (root / "bin" / "livos-server").exists()
    assert (root / "data" / "apps").is_dir()
    assert read_state(root).version == (2, 0, 0)
    assert sup.calls == ["restart", "is_running"]
    assert len(list((root / "backups").iterdir())) == 1


def test_update_download_failure_leaves_no_backup(tmp_path, monkeypatch) -> None:
    root = _installed(tmp_path)
    sup = _patch_update(monkeypatch, tmp_path)

    def offline(*_args, **_kwargs):
        raise ArtifactError("download of the artifact timed out", retryable=True)

    monkeypatch.setattr(update_cmd, "download_release", offline)
    result = CliRunner().invoke(main.app, ["update", "--install-dir", str(root)])
    assert result.exit_code == 1
    assert "timed out" in result.output
    assert not (root / "backups").exists()
    assert read_state(root).version == (1, 0, 0)
    assert sup.calls == []


def test_update_without_installation(tmp_path, monkeypatch) -> None:
    _patch_update(monkeypatch, tmp_path)
    result = CliRunner().invoke(main.app, ["update", "--install-dir", str(tmp_path / "nowhere")])
    assert result.exit_code == 1
    assert "no installation" in result.output


def test_settings_set_and_show(tmp_path) -> None:
    runner = CliRunner()
    result = runner.invoke(main.app, ["settings", "set", "--channel", "beta", "--release-url", "rel.example"])
    assert result.exit_code == 0, result.output
    shown = runner.invoke(main.app, ["settings", "show"])
    assert "channel=beta" in shown.output
    assert "https://rel.example" in shown.output


def test_backups_list_empty(tmp_path) -> None:
    result = CliRunner().invoke(main.app, ["backups", "list", "--install-dir", str(tmp_path)])
    assert result.exit_code == 0
    assert "No backups." in result.output


def test_rotate_unknown_secret_is_usage_error(tmp_path) -> None:
    result = CliRunner().invoke(
        main.app, ["config", "rotate-secret", "domain", "--yes", "--install-dir", str(tmp_path)]
    )
    assert result.exit_code == 2

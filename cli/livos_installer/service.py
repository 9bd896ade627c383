"""Supervision unit rendering and the supervisor control steps.

The unit is a fixed template; only identity, paths, the executable and the
port are substituted. Writing it is idempotent, so a failed reload, enable
or start is retried by simply running the installer again.
"""
from __future__ import annotations

import logging
import subprocess
import time
from pathlib import Path
from typing import Callable, Protocol

from .errors import ServiceError, ServiceFailedToStart
from .install_config import InstallConfig
from .platform_probe import OsFamily, PlatformInfo
from .runner import Runner, local_runner, tail

logger = logging.getLogger(__name__)

SERVICE_NAME = "livos"
LAUNCHD_LABEL = "io.livinity.livos"
SERVER_BINARY = Path("bin") / "livos-server"
RESTART_BACKOFF_SECONDS = 10
VERIFY_GRACE_SECONDS = 5.0

SYSTEMD_UNIT_PATH = Path("/etc/systemd/system") / f"{SERVICE_NAME}.service"
LAUNCHD_PLIST_PATH = Path("/Library/LaunchDaemons") / f"{LAUNCHD_LABEL}.plist"

_SYSTEMD_TEMPLATE = """\
[Unit]
Description=LivOS Server
After=network-online.target redis.service
Wants=network-online.target

[Service]
Type=simple
User={user}
Group={user}
WorkingDirectory={working_dir}
EnvironmentFile={env_file}
Environment=NODE_ENV=production
ExecStart={exec_start}
Restart=always
RestartSec={backoff}

NoNewPrivileges=true
PrivateTmp=true
ProtectSystem=strict
ProtectHome=true
ReadWritePaths={data_dir} {log_dir}

[Install]
WantedBy=multi-user.target
"""

_LAUNCHD_TEMPLATE = """\
<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE plist PUBLIC "-//Apple//DTD PLIST 1.0//EN" "http://www.apple.com/DTDs/PropertyList-1.0.dtd">
<plist version="1.0">
<dict>
    <key>Label</key>
    <string>{label}</string>
    <key>UserName</key>
    <string>{user}</string>
    <key>ProgramArguments</key>
    <array>
{arguments}
    </array>
    <key>WorkingDirectory</key>
    <string>{working_dir}</string>
    <key>EnvironmentVariables</key>
    <dict>
        <key>LIVOS_ENV_FILE</key>
        <string>{env_file}</string>
        <key>NODE_ENV</key>
        <string>production</string>
    </dict>
    <key>KeepAlive</key>
    <true/>
    <key>RunAtLoad</key>
    <true/>
    <key>ThrottleInterval</key>
    <integer>{backoff}</integer>
    <key>StandardOutPath</key>
    <string>{log_dir}/livos.log</string>
    <key>StandardErrorPath</key>
    <string>{log_dir}/livos-error.log</string>
</dict>
</plist>
"""


def server_command(config: InstallConfig) -> list[str]:
    return [
        str(config.install_dir / SERVER_BINARY),
        "--data-directory",
        str(config.data_dir),
        "--port",
        str(config.port),
    ]


def render_systemd_unit(config: InstallConfig) -> str:
    return _SYSTEMD_TEMPLATE.format(
        user=config.run_as,
        working_dir=config.install_dir,
        env_file=config.env_path,
        exec_start=" ".join(server_command(config)),
        backoff=RESTART_BACKOFF_SECONDS,
        data_dir=config.data_dir,
        log_dir=config.log_dir,
    )


def render_launchd_plist(config: InstallConfig) -> str:
    arguments = "\n".join(f"        <string>{arg}</string>" for arg in server_command(config))
    return _LAUNCHD_TEMPLATE.format(
        label=LAUNCHD_LABEL,
        user=config.run_as,
        arguments=arguments,
        working_dir=config.install_dir,
        env_file=config.env_path,
        backoff=RESTART_BACKOFF_SECONDS,
        log_dir=config.log_dir,
    )


class Supervisor(Protocol):
    unit_path: Path
    log_hint: str

    def render(self, config: InstallConfig) -> str: ...

    def reload(self) -> None: ...

    def enable(self) -> None: ...

    def start(self) -> None: ...

    def restart(self) -> None: ...

    def is_running(self) -> bool: ...


class _CommandSupervisor:
    unit_path: Path
    log_hint: str

    def __init__(self, *, runner: Runner = local_runner, unit_path: Path | None = None):
        self._runner = runner
        if unit_path is not None:
            self.unit_path = unit_path

    def _step(self, step: str, cmd: list[str]) -> None:
        try:
            res = self._runner(cmd, timeout=60)
        except (FileNotFoundError, subprocess.TimeoutExpired) as exc:
            raise ServiceError(step, f"{' '.join(cmd)}: {exc}") from exc
        if res.returncode != 0:
            raise ServiceError(step, f"{' '.join(cmd)} exited {res.returncode}: {tail(res)}")


class SystemdSupervisor(_CommandSupervisor):
    unit_path = SYSTEMD_UNIT_PATH
    log_hint = f"journalctl -u {SERVICE_NAME} -n 50"

    def render(self, config: InstallConfig) -> str:
        return render_systemd_unit(config)

    def reload(self) -> None:
        self._step("reload", ["systemctl", "daemon-reload"])

    def enable(self) -> None:
        self._step("enable", ["systemctl", "enable", SERVICE_NAME])

    def start(self) -> None:
        self._step("start", ["systemctl", "start", SERVICE_NAME])

    def restart(self) -> None:
        self._step("restart", ["systemctl", "restart", SERVICE_NAME])

    def is_running(self) -> bool:
        try:
            res = self._runner(["systemctl", "is-active", "--quiet", SERVICE_NAME], timeout=30)
        except (FileNotFoundError, subprocess.TimeoutExpired):
            return False
        return res.returncode == 0


class LaunchdSupervisor(_CommandSupervisor):
    unit_path = LAUNCHD_PLIST_PATH
    log_hint = "tail -n 50 <log dir>/livos-error.log"

    def render(self, config: InstallConfig) -> str:
        self.log_hint = f"tail -n 50 {config.log_dir}/livos-error.log"
        return render_launchd_plist(config)

    def reload(self) -> None:
        # bootout fails when the job was never loaded; that is expected on
        # the first install.
        self._runner(["launchctl", "bootout", f"system/{LAUNCHD_LABEL}"], timeout=60)
        self._step("reload", ["launchctl", "bootstrap", "system", str(self.unit_path)])

    def enable(self) -> None:
        self._step("enable", ["launchctl", "enable", f"system/{LAUNCHD_LABEL}"])

    def start(self) -> None:
        self._step("start", ["launchctl", "kickstart", f"system/{LAUNCHD_LABEL}"])

    def restart(self) -> None:
        self._step("restart", ["launchctl", "kickstart", "-k", f"system/{LAUNCHD_LABEL}"])

    def is_running(self) -> bool:
        try:
            res = self._runner(["launchctl", "print", f"system/{LAUNCHD_LABEL}"], timeout=30)
        except (FileNotFoundError, subprocess.TimeoutExpired):
            return False
        return res.returncode == 0 and "state = running" in (res.stdout or "")


def supervisor_for(platform: PlatformInfo, *, runner: Runner = local_runner) -> Supervisor:
    if platform.os_family is OsFamily.MACOS:
        return LaunchdSupervisor(runner=runner)
    return SystemdSupervisor(runner=runner)


def write_unit(config: InstallConfig, supervisor: Supervisor) -> Path:
    content = supervisor.render(config)
    path = supervisor.unit_path
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        path.chmod(0o644)
    except OSError as exc:
        raise ServiceError("write unit", f"cannot write {path}: {exc}") from exc
    return path


def install_service(config: InstallConfig, supervisor: Supervisor) -> Path:
    """Write the unit, then reload, enable and start it as separate steps."""
    path = write_unit(config, supervisor)
    logger.debug("wrote unit %s", path)
    supervisor.reload()
    supervisor.enable()
    supervisor.start()
    return path


def verify_running(
    supervisor: Supervisor,
    *,
    grace: float = VERIFY_GRACE_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Wait out the grace period once, then ask the supervisor. No retries."""
    sleep(grace)
    if not supervisor.is_running():
        raise ServiceFailedToStart(SERVICE_NAME, supervisor.log_hint)

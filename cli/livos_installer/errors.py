from __future__ import annotations

from pathlib import Path

EXIT_FAILURE = 1
EXIT_BUSY = 3
EXIT_UNSUPPORTED = 4


class InstallerError(Exception):
    """Base for every fatal installer condition.

    Components raise these; only the command layer turns them into a
    diagnostic and a process exit code.
    """

    exit_code = EXIT_FAILURE
    default_step = "install"

    def __init__(self, message: str, *, step: str | None = None):
        super().__init__(message)
        self.step = step or self.default_step

    def diagnostic(self) -> str:
        return f"{self.step}: {self}"


class DetectionFailure(InstallerError):
    default_step = "detect platform"


class UnsupportedArchitecture(InstallerError):
    exit_code = EXIT_UNSUPPORTED
    default_step = "detect platform"

    def __init__(self, raw_arch: str):
        super().__init__(
            f"unsupported CPU architecture {raw_arch!r}; supported: amd64, arm64, armv7"
        )
        self.raw_arch = raw_arch


class UnsupportedPlatform(InstallerError):
    exit_code = EXIT_UNSUPPORTED
    default_step = "install dependencies"

    def __init__(self, os_family: str, packages: list[str] | None = None):
        wanted = ", ".join(packages or []) or "the required tools"
        super().__init__(
            f"no package manager support for OS family {os_family!r}; "
            f"install {wanted} manually and re-run"
        )
        self.os_family = os_family
        self.packages = list(packages or [])


class DependencyInstallFailed(InstallerError):
    default_step = "install dependencies"

    def __init__(self, tool: str, exit_code: int | None, detail: str = ""):
        msg = f"installing {tool} failed"
        if exit_code is not None:
            msg += f" (exit code {exit_code})"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)
        self.tool = tool
        self.tool_exit_code = exit_code


class ConfigurationInvalid(InstallerError):
    default_step = "resolve configuration"

    def __init__(self, field: str, reason: str):
        super().__init__(f"invalid {field}: {reason}")
        self.field = field


class ArtifactError(InstallerError):
    default_step = "fetch release"

    def __init__(self, message: str, *, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class ServiceError(InstallerError):
    default_step = "install service"

    def __init__(self, step: str, message: str):
        super().__init__(message, step=f"install service ({step})")
        self.service_step = step


class ServiceFailedToStart(InstallerError):
    default_step = "verify service"

    def __init__(self, service: str, log_hint: str):
        super().__init__(f"{service} is not running after start; inspect logs with: {log_hint}")
        self.service = service
        self.log_hint = log_hint


class InstallationBusy(InstallerError):
    exit_code = EXIT_BUSY
    default_step = "acquire lock"

    def __init__(self, lock_path: Path, holder_pid: int | None = None):
        holder = f" (held by pid {holder_pid})" if holder_pid else ""
        super().__init__(f"another installer run holds {lock_path}{holder}; retry when it finishes")
        self.lock_path = lock_path
        self.holder_pid = holder_pid


class BackupFailed(InstallerError):
    default_step = "backup"


class MigrationFailed(InstallerError):
    """Failure after a backup exists; always names where it is."""

    default_step = "migrate"

    def __init__(self, message: str, *, backup_path: Path, step: str | None = None):
        super().__init__(message, step=step)
        self.backup_path = backup_path

    def diagnostic(self) -> str:
        return f"{super().diagnostic()}; backup preserved at {self.backup_path}"


class MigrationStepFailed(MigrationFailed):
    def __init__(self, version: str, cause: BaseException, *, applied: list[str], backup_path: Path):
        if applied:
            committed = f"steps {', '.join(applied)} already committed in this run"
        else:
            committed = "no steps were committed in this run"
        super().__init__(f"migration {version} failed: {cause}; {committed}", backup_path=backup_path)
        self.step = f"migrate ({version})"
        self.version = version
        self.applied = list(applied)
        self.cause = cause


class MigrationVerificationFailed(MigrationFailed):
    default_step = "verify after migration"

    def __init__(self, cause: InstallerError, *, backup_path: Path):
        super().__init__(
            f"data migrations succeeded but the service did not come up: {cause}",
            backup_path=backup_path,
        )
        self.cause = cause

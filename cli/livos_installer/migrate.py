from __future__ import annotations

import logging
import signal
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Iterator, Sequence

from . import console
from .backup import BackupSnapshot, create_snapshot
from .errors import (
    BackupFailed,
    ConfigurationInvalid,
    InstallerError,
    MigrationFailed,
    MigrationStepFailed,
    MigrationVerificationFailed,
)
from .install_config import BACKUPS_DIRNAME, CONFIG_FILENAME, LOCK_FILENAME
from .lock import install_lock
from .migrations.registry import REGISTRY, MigrationStep, steps_between
from .semver import SemVer, format_semver
from .service import VERIFY_GRACE_SECONDS, Supervisor, verify_running
from .state import InstalledState, StateError, read_state, write_state

logger = logging.getLogger(__name__)


class MigrationState(str, Enum):
    IDLE = "idle"
    BACKING_UP = "backing-up"
    APPLYING = "applying"
    VERIFYING = "verifying"
    COMPLETE = "complete"
    FAILED = "failed"


_ALLOWED: dict[MigrationState, frozenset[MigrationState]] = {
    MigrationState.IDLE: frozenset({MigrationState.BACKING_UP, MigrationState.COMPLETE}),
    MigrationState.BACKING_UP: frozenset({MigrationState.APPLYING, MigrationState.FAILED}),
    MigrationState.APPLYING: frozenset({MigrationState.VERIFYING, MigrationState.FAILED}),
    MigrationState.VERIFYING: frozenset({MigrationState.COMPLETE, MigrationState.FAILED}),
    MigrationState.COMPLETE: frozenset(),
    MigrationState.FAILED: frozenset(),
}


@dataclass
class MigrationResult:
    from_version: SemVer
    to_version: SemVer
    applied: list[str] = field(default_factory=list)
    backup: BackupSnapshot | None = None

    @property
    def changed(self) -> bool:
        return self.from_version != self.to_version


def plan(
    from_version: SemVer,
    to_version: SemVer,
    registry: Sequence[MigrationStep] = REGISTRY,
) -> list[MigrationStep]:
    if to_version < from_version:
        raise ConfigurationInvalid(
            "version",
            f"downgrade from {format_semver(from_version)} to {format_semver(to_version)} is not supported",
        )
    return steps_between(from_version, to_version, registry)


@contextmanager
def sigint_ignored() -> Iterator[None]:
    """Keep Ctrl-C from interrupting a run that has started mutating data."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _warn(signum, frame) -> None:
        console.warn("Interrupt ignored: the update is past the point where it can be safely stopped.")

    previous = signal.signal(signal.SIGINT, _warn)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


class MigrationEngine:
    """Backup, apply the planned steps, restart and verify.

    ``state`` follows IDLE -> BACKING_UP -> APPLYING -> VERIFYING -> COMPLETE,
    with FAILED reachable from the three working states. ``transitions``
    records every state entered, for diagnostics and tests.
    """

    def __init__(
        self,
        install_path: Path,
        supervisor: Supervisor,
        *,
        data_path: Path | None = None,
        registry: Sequence[MigrationStep] = REGISTRY,
        stage: Callable[[Path], None] | None = None,
        grace: float = VERIFY_GRACE_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] | None = None,
    ):
        self.install_path = Path(install_path)
        self.data_path = Path(data_path) if data_path else self.install_path / "data"
        self.supervisor = supervisor
        self.registry = registry
        self.stage = stage
        self.grace = grace
        self.sleep = sleep
        self.now = now
        self.state = MigrationState.IDLE
        self.transitions: list[MigrationState] = [MigrationState.IDLE]

    @property
    def lock_path(self) -> Path:
        return self.install_path / LOCK_FILENAME

    @property
    def backups_dir(self) -> Path:
        return self.install_path / BACKUPS_DIRNAME

    @property
    def env_path(self) -> Path:
        return self.install_path / CONFIG_FILENAME

    def _enter(self, new: MigrationState) -> None:
        if new not in _ALLOWED[self.state]:
            raise RuntimeError(f"illegal migration transition {self.state.value} -> {new.value}")
        logger.debug("migration %s -> %s", self.state.value, new.value)
        self.state = new
        self.transitions.append(new)

    def current(self) -> InstalledState:
        state = read_state(self.install_path, self.data_path)
        if state is None:
            raise StateError(f"no installation found at {self.install_path}; run install first")
        return state

    def plan(self, target: SemVer) -> list[MigrationStep]:
        return plan(self.current().version, target, self.registry)

    def run(self, target: SemVer) -> MigrationResult:
        if self.state is not MigrationState.IDLE:
            raise RuntimeError("a MigrationEngine runs at most once")
        installed = self.current()
        if installed.version == target:
            logger.info("already at %s; nothing to do", installed.version_text)
            self._enter(MigrationState.COMPLETE)
            return MigrationResult(installed.version, target)

        steps = plan(installed.version, target, self.registry)
        with install_lock(self.lock_path):
            # Another run may have finished while we were planning.
            installed = self.current()
            if installed.version == target:
                self._enter(MigrationState.COMPLETE)
                return MigrationResult(installed.version, target)
            steps = plan(installed.version, target, self.registry)
            with sigint_ignored():
                return self._run_locked(installed, target, steps)

    def _checkpoint(self, version: SemVer, snapshot: BackupSnapshot) -> None:
        try:
            write_state(InstalledState(version, self.install_path, self.data_path))
        except OSError as exc:
            self._enter(MigrationState.FAILED)
            raise MigrationFailed(
                f"cannot record version {format_semver(version)}: {exc}",
                backup_path=snapshot.backup_path,
                step="persist state",
            ) from exc

    def _run_locked(self, installed: InstalledState, target: SemVer, steps: list[MigrationStep]) -> MigrationResult:
        self._enter(MigrationState.BACKING_UP)
        try:
            snapshot = create_snapshot(
                [self.data_path, self.env_path],
                self.backups_dir,
                from_version=installed.version_text,
                now=self.now() if self.now else None,
            )
        except BackupFailed:
            self._enter(MigrationState.FAILED)
            raise
        console.info(f"Backup written to {snapshot.backup_path}")
        result = MigrationResult(installed.version, target, backup=snapshot)

        self._enter(MigrationState.APPLYING)
        if self.stage is not None:
            try:
                self.stage(self.install_path)
            except Exception as exc:
                self._enter(MigrationState.FAILED)
                raise MigrationFailed(
                    f"staging release {format_semver(target)} failed: {exc}",
                    backup_path=snapshot.backup_path,
                ) from exc
        for step in steps:
            logger.debug("applying %s: %s", step.version_text, step.description)
            try:
                step.apply(self.data_path)
            except Exception as exc:
                self._enter(MigrationState.FAILED)
                raise MigrationStepFailed(
                    step.version_text, exc, applied=list(result.applied), backup_path=snapshot.backup_path
                ) from exc
            self._checkpoint(step.version, snapshot)
            result.applied.append(step.version_text)
            console.ok(f"Migration {step.version_text} applied ({step.description}).")

        self._enter(MigrationState.VERIFYING)
        try:
            self.supervisor.restart()
            verify_running(self.supervisor, grace=self.grace, sleep=self.sleep)
        except InstallerError as exc:
            self._enter(MigrationState.FAILED)
            raise MigrationVerificationFailed(exc, backup_path=snapshot.backup_path) from exc

        self._checkpoint(target, snapshot)
        self._enter(MigrationState.COMPLETE)
        return result

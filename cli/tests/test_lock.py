from __future__ import annotations

import os

import pytest

from livos_installer.errors import EXIT_BUSY, InstallationBusy
from livos_installer.lock import InstallLock, install_lock


def test_second_holder_is_refused(tmp_path) -> None:
    path = tmp_path / ".install.lock"
    with install_lock(path):
        before = sorted(p.name for p in tmp_path.iterdir())
        with pytest.raises(InstallationBusy) as excinfo:
            InstallLock(path).acquire()
        assert sorted(p.name for p in tmp_path.iterdir()) == before
    assert excinfo.value.exit_code == EXIT_BUSY
    assert excinfo.value.holder_pid == os.getpid()


def test_lock_is_reusable_after_release(tmp_path) -> None:
    path = tmp_path / ".install.lock"
    with install_lock(path) as lock:
        assert lock.held
    assert not lock.held
    with InstallLock(path) as again:
        assert again.held

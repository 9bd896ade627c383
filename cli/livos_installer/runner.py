from __future__ import annotations

import logging
import os
import subprocess
from typing import Callable, Mapping, Sequence

logger = logging.getLogger(__name__)

# Every external command (package managers, supervisor, useradd) goes through
# a runner so that the engine can be exercised without touching the host.
Runner = Callable[..., subprocess.CompletedProcess[str]]

DEFAULT_TIMEOUT = 600.0


def local_runner(
    cmd: Sequence[str],
    *,
    env: Mapping[str, str] | None = None,
    cwd: str | None = None,
    timeout: float | None = DEFAULT_TIMEOUT,
) -> subprocess.CompletedProcess[str]:
    full_env = None
    if env:
        full_env = dict(os.environ)
        full_env.update(env)
    logger.debug("run: %s", " ".join(cmd))
    res = subprocess.run(
        list(cmd),
        check=False,
        capture_output=True,
        text=True,
        env=full_env,
        cwd=cwd,
        timeout=timeout,
    )
    logger.debug("exit %s: %s", res.returncode, " ".join(cmd))
    return res


def tail(res: subprocess.CompletedProcess[str], *, limit: int = 5) -> str:
    text = (res.stderr or "").strip() or (res.stdout or "").strip()
    lines = text.splitlines()
    return " | ".join(lines[-limit:])

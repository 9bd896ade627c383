from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

_QUIET_UNLESS_VERBOSE = ("httpx", "httpcore")


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        show_time=verbose,
        markup=False,
        rich_tracebacks=verbose,
    )
    logging.basicConfig(level=level, format="%(name)s: %(message)s", handlers=[handler], force=True)

    for name in _QUIET_UNLESS_VERBOSE:
        logging.getLogger(name).setLevel(logging.DEBUG if verbose else logging.WARNING)

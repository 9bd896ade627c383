from __future__ import annotations
from dataclasses import dataclass


@dataclass(frozen=True)
class ClientConfig:
    base_url: str
    timeout_s: float = 15.0
    download_timeout_s: float = 300.0
    client_version: str | None = None

from __future__ import annotations

import json
from typing import Any

import httpx

from .config_types import ClientConfig
from .errors import ApiError, NetworkError


class Transport:
    def __init__(self, cfg: ClientConfig, *, transport: httpx.BaseTransport | None = None):
        self._cfg = cfg
        headers = {"User-Agent": f"livos-installer/{cfg.client_version or '0.0.0'}"}
        self._client = httpx.Client(
            base_url=cfg.base_url.rstrip("/"),
            timeout=cfg.timeout_s,
            headers=headers,
            follow_redirects=True,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def request(self, method: str, path: str, *, params: dict[str, str] | None = None) -> Any:
        try:
            r = self._client.request(method, path, params=params)
        except httpx.TimeoutException as e:
            raise NetworkError(f"{method} {path} timed out", retryable=True) from e
        except httpx.RequestError as e:
            raise NetworkError(str(e)) from e

        data: Any = None
        text = None
        try:
            data = r.json()
        except Exception:
            text = r.text

        if r.status_code >= 400:
            msg = f"{method} {path} failed with {r.status_code}"
            details = None
            if isinstance(data, dict) and "detail" in data:
                details = json.dumps(data, ensure_ascii=False)
                msg = str(data.get("detail") or msg)
            elif text:
                details = text[:1000]
            raise ApiError(r.status_code, msg, details)

        return data if data is not None else r.text

    def stream(self, url: str):
        return self._client.stream("GET", url, timeout=self._cfg.download_timeout_s)

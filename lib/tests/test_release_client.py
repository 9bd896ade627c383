from __future__ import annotations

import hashlib

import httpx
import pytest

from livos_client import ApiError, ChecksumMismatch, NetworkError, ReleaseClient
from livos_client.config_types import ClientConfig

RELEASE = {
    "version": "v1.4.2",
    "name": "LivOS 1.4.2",
    "releaseNotes": "  fixes  ",
    "artifacts": {
        "amd64": {"url": "https://cdn.test/livos-1.4.2-linux-amd64.tar.gz", "sha256": "ABC123"},
        "arm64": {"url": ""},
        "armv7": "broken",
    },
}


def _client(handler, **cfg) -> ReleaseClient:
    return ReleaseClient(
        ClientConfig(base_url="https://releases.test/", client_version="0.3.0", **cfg),
        transport=httpx.MockTransport(handler),
    )


def test_latest_release_query() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=RELEASE)

    with _client(handler) as client:
        release = client.latest_release(channel="beta", current_version=(1, 3, 0), platform="linux-amd64")

    request = seen[0]
    assert request.url.path == "/latest-release"
    assert dict(request.url.params) == {"channel": "beta", "version": "1.3.0", "platform": "linux-amd64"}
    assert request.headers["User-Agent"] == "livos-installer/0.3.0"
    assert release.version == (1, 4, 2)
    assert release.notes == "fixes"
    assert list(release.artifacts) == ["amd64"]
    assert release.artifact_for("amd64").sha256 == "abc123"
    assert release.artifact_for("arm64") is None


def test_invalid_version_in_payload() -> None:
    with _client(lambda r: httpx.Response(200, json={"version": "latest"})) as client:
        with pytest.raises(ApiError):
            client.latest_release()


def test_http_error_carries_status() -> None:
    with _client(lambda r: httpx.Response(503, json={"detail": "maintenance"})) as client:
        with pytest.raises(ApiError) as excinfo:
            client.latest_release()
    assert excinfo.value.status_code == 503
    assert str(excinfo.value) == "maintenance"


def test_timeout_is_retryable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    with _client(handler) as client:
        with pytest.raises(NetworkError) as excinfo:
            client.latest_release()
    assert excinfo.value.retryable is True


def test_download_verifies_checksum(tmp_path) -> None:
    body = b"release bytes" * 1000
    digest = hashlib.sha256(body).hexdigest()
    with _client(lambda r: httpx.Response(200, content=body)) as client:
        got = client.download("https://cdn.test/a.tar.gz", tmp_path / "a.tar.gz", expected_sha256=digest.upper())
    assert got == digest
    assert (tmp_path / "a.tar.gz").read_bytes() == body


def test_download_mismatch_removes_file(tmp_path) -> None:
    dest = tmp_path / "a.tar.gz"
    with _client(lambda r: httpx.Response(200, content=b"tampered")) as client:
        with pytest.raises(ChecksumMismatch) as excinfo:
            client.download("https://cdn.test/a.tar.gz", dest, expected_sha256="0" * 64)
    assert not dest.exists()
    assert excinfo.value.expected == "0" * 64


def test_download_http_error(tmp_path) -> None:
    with _client(lambda r: httpx.Response(404)) as client:
        with pytest.raises(ApiError):
            client.download("https://cdn.test/missing.tar.gz", tmp_path / "m.tar.gz")
    assert not (tmp_path / "m.tar.gz").exists()

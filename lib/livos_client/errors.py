from __future__ import annotations


class ReleaseClientError(Exception):
    """Base client error."""


class NetworkError(ReleaseClientError):
    """Transport/network layer error."""

    def __init__(self, message: str, *, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class ApiError(ReleaseClientError):
    def __init__(self, status_code: int, message: str, details: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class ChecksumMismatch(ReleaseClientError):
    def __init__(self, url: str, expected: str, actual: str):
        super().__init__(f"checksum mismatch for {url}: expected {expected}, got {actual}")
        self.url = url
        self.expected = expected
        self.actual = actual

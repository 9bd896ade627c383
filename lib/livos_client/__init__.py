from .client import ReleaseClient
from .errors import ApiError, ChecksumMismatch, NetworkError, ReleaseClientError
from .releases import Artifact, Release

__all__ = [
    "ReleaseClient",
    "ApiError",
    "ChecksumMismatch",
    "NetworkError",
    "ReleaseClientError",
    "Artifact",
    "Release",
]

"""Engine exception types.

Convention:
- ``VaultIOError`` and ``LogParseError`` are *per-record* failures. Callers log
  them and skip the affected file or log line; the sync pass continues.
- ``ProviderError`` is the closed set of failures a remote provider may raise.
  Providers translate transport-specific errors (``OSError``, ``httpx``
  exceptions, HTTP status codes) into exactly one of its subclasses, so the
  retry policy can classify them by type alone.
- Unresolved conflicts are not exceptions. They are reported in the pass
  summary and retried on the next pass.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for every error raised by the engine."""


class VaultIOError(SyncError):
    """A vault file could not be read or written."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path


class LogParseError(SyncError):
    """A persisted record (log line or JSON file) could not be parsed."""


class BlobNotFoundError(SyncError):
    """A blob is missing from the local content-addressed store."""

    def __init__(self, blob_hash: str) -> None:
        super().__init__(f"Blob not found: {blob_hash}")
        self.blob_hash = blob_hash


class ProviderError(SyncError):
    """Base class for remote provider failures."""


class NetworkError(ProviderError):
    """Connection reset, timeout, DNS failure or similar transient fault."""


class RateLimitedError(ProviderError):
    """The remote asked the client to slow down (HTTP 408/429)."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class RemoteServerError(ProviderError):
    """The remote failed with a server-side error (HTTP 5xx)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthError(ProviderError):
    """Credentials are missing, invalid or revoked. Never retried."""


class RemoteNotFoundError(ProviderError):
    """A remote object (blob, snapshot, file) does not exist."""

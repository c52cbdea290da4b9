"""Error types shared across the pipeline.

Errors are recovered as close to their source as possible: per company
inside a fetcher, per row inside the lead processor. Only
StorageUnavailable is meant to surface as a poll-level failure.
"""

from __future__ import annotations

BODY_PREVIEW_CHARS = 240


class JobHuntError(Exception):
    """Base class for all jobhunt errors."""


class ConfigError(JobHuntError, ValueError):
    """Configuration is missing or malformed (e.g. email enabled without a host)."""


class UpstreamError(JobHuntError):
    """A vendor request failed (HTTP >= 400, connection error, timeout)."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class DecodeError(UpstreamError):
    """A vendor returned a body we could not parse."""

    def __init__(self, message: str, body: str = "", status: int | None = None):
        self.preview = (body or "")[:BODY_PREVIEW_CHARS]
        if self.preview:
            message = f"{message} body={self.preview!r}"
        super().__init__(message, status=status)


class BlockedHostError(UpstreamError):
    """The host answered with an anti-bot challenge and is skipped for the run."""

    def __init__(self, host: str, status: int | None = None):
        super().__init__(f"host {host} blocked by anti-bot challenge", status=status)
        self.host = host


class MissingURLError(JobHuntError, ValueError):
    """A lead reached persistence without a URL."""


class DeadlineExceeded(JobHuntError, TimeoutError):
    """A deadline expired or was cancelled."""


class StorageUnavailable(JobHuntError):
    """The job store cannot be reached at all."""

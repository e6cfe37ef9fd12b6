"""Error taxonomy for the agent metrics pipeline.

Exception Hierarchy:
    MetricsPipelineError (base)
    ├── NetworkError - Timeouts, connectivity failures, non-success status
    ├── SchemaError - Malformed monitoring payloads
    └── EmptyDatasetError - Backend reachable but reports no agents

None of these escape the fetcher. They are carried on the fetch result as
the cause of a fallback (network, schema) or of the empty state, and are
logged for diagnostics.
"""

from datetime import UTC, datetime
from typing import Any


class MetricsPipelineError(Exception):
    """Base exception for all metrics pipeline errors.

    Attributes:
        message: Human-readable error message.
        url: URL that was being fetched, if any.
        details: Additional error details.
        occurred_at: When the error was raised.
    """

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.url = url
        self.details = details or {}
        self.occurred_at = datetime.now(UTC)

    @property
    def falls_back(self) -> bool:
        """Whether this error substitutes the fallback dataset."""
        return True

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/API responses."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "url": self.url,
            "details": self.details,
            "occurred_at": self.occurred_at.isoformat(),
        }


class NetworkError(MetricsPipelineError):
    """Monitoring endpoint could not be reached in time or answered non-2xx.

    Attributes:
        status_code: HTTP status code, None for transport failures.
    """

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, url=url, details=details)
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        """Transport failures and server errors are worth another attempt."""
        return self.status_code is None or self.status_code >= 500

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        base = super().to_dict()
        base.update({"status_code": self.status_code, "retryable": self.retryable})
        return base


class SchemaError(MetricsPipelineError):
    """Monitoring payload did not have the expected shape."""

    pass


class EmptyDatasetError(MetricsPipelineError):
    """Backend answered successfully but reported zero agents."""

    @property
    def falls_back(self) -> bool:
        return False

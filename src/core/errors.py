"""Error taxonomy for the metrics pipeline.

Per-entity errors are caught by the fetch driver and reported; they never abort
a cycle. The API layer renders its own validation errors and never sees these.
"""

from __future__ import annotations


class MetricsPipelineError(Exception):
    """Base class for pipeline errors."""


class ConfigurationError(MetricsPipelineError):
    """A required credential, identifier or static table entry is missing or invalid."""


class UpstreamUnavailableError(MetricsPipelineError):
    """A provider returned a non-success status or nothing usable."""

    def __init__(self, provider: str, message: str, *, status_code: int | None = None) -> None:
        self.provider = provider
        self.status_code = status_code
        detail = f"{provider}: {message}"
        if status_code is not None:
            detail = f"{detail} (HTTP {status_code})"
        super().__init__(detail)


class RateLimitedError(UpstreamUnavailableError):
    """HTTP 429 from a provider. The only provider failure that is retried."""


class PersistenceError(MetricsPipelineError):
    """A store write failed after the retry policy was exhausted."""

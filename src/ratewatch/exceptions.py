"""Custom exceptions for the rate aggregation service.

Adapter, reconciliation and scheduler exceptions live here
to avoid circular imports between modules.
"""


class RatewatchError(Exception):
    """Base exception for all service errors."""


class UpstreamError(RatewatchError):
    """Raised when an external source is unreachable, times out or fails.

    Recovered locally by the reconciler and ranger (history fallback, empty
    offer list or degraded confidence). Never surfaced as a request error.
    """

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source
        self.message = message


class DataIntegrityError(UpstreamError):
    """Raised when an upstream answered but its payload cannot be parsed."""


class SchedulerRunFailure(RatewatchError):
    """Raised inside a scheduled job to abort the run before any write."""


class NarrativeUnavailableError(RatewatchError):
    """Raised when no LLM provider could produce a narrative report."""

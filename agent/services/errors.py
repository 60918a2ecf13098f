"""
Pipeline Errors
===============
Typed failures raised at the seams of the interaction pipeline.
Everything else an external dependency throws is caught where it happens
and degraded to a default.
"""


class WebhookParseError(ValueError):
    """The webhook body is not JSON or not a recognizable event envelope."""


class PlatformAPIError(Exception):
    """The Graph API rejected a call (after retries for transient failures)."""

    def __init__(self, message: str, status_code: int | None = None, error_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class GenerationError(Exception):
    """The completion service failed or returned nothing usable."""


class AuditWriteError(Exception):
    """A detected-intent row could not be written."""

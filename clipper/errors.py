"""
Error classes for clipper.

These error types classify failures at the dispatch/poll boundary:
- TransientError: Safe to retry (network issues, non-200 from listing endpoints)
- PermanentError: Do not retry (rejected dispatch, failed remote job, no keys)

Propagation contract:
- DispatchError, RemoteJobFailure and NoCredentialsAvailable abort the flow
- TransientFetchError is absorbed by the poll loop and retried on the next tick
- A run that has not appeared yet is not an error: the correlator returns None
"""


class ClipperError(Exception):
    """Base exception for clipper."""
    pass


class ConfigError(ClipperError):
    """Configuration validation error."""
    pass


class TransientError(ClipperError):
    """
    Transient error - safe to retry.

    Examples:
    - Network timeout
    - Connection reset
    - Listing endpoint returned 5xx or 403 rate limit
    """
    pass


class PermanentError(ClipperError):
    """
    Permanent error - do not retry.

    The orchestrator surfaces these immediately, paired with a
    best-effort failure notification.
    """
    pass


class TransientFetchError(TransientError):
    """Listing or detail fetch failed while polling."""

    def __init__(self, message: str, http_status: int | None = None):
        super().__init__(message)
        self.http_status = http_status


class DispatchError(PermanentError):
    """
    The remote platform rejected the dispatch request.

    Never retried automatically: a second dispatch creates a second remote job.
    """

    def __init__(self, http_status: int | None, body: str = "", token: str | None = None):
        self.http_status = http_status
        self.body = body
        self.token = token
        if http_status is None:
            message = f"Dispatch failed: {body}"
        else:
            message = f"Dispatch rejected with HTTP {http_status}: {body}"
        super().__init__(message)


class RemoteJobFailure(PermanentError):
    """The remote run completed with a non-success conclusion."""

    def __init__(self, reason: str, run=None):
        super().__init__(reason)
        self.reason = reason
        self.run = run


class NoCredentialsAvailable(PermanentError):
    """No API keys could be loaded for a service."""

    def __init__(self, service: str, message: str | None = None):
        self.service = service
        super().__init__(message or f"No API keys available for service: {service}")

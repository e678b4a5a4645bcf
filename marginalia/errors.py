"""Error taxonomy shared by the pipeline, its collaborators and the HTTP layer."""
from __future__ import annotations


class MarginaliaError(Exception):
    """Base error. ``status_code`` is the HTTP status the API responds with."""

    status_code: int = 500

    def __init__(self, message: str, *, upstream_status: int | None = None):
        super().__init__(message)
        self.message = message
        self.upstream_status = upstream_status


class ValidationError(MarginaliaError):
    """Bad input, raised before any external call."""

    status_code = 400


class NotFoundError(MarginaliaError):
    status_code = 404


class RateLimitExceededError(MarginaliaError):
    """Local per-identity limit on AI operations."""

    status_code = 429

    def __init__(self, message: str, *, retry_after: int):
        super().__init__(message)
        self.retry_after = retry_after


class UpstreamError(MarginaliaError):
    """A search provider or model call failed."""

    status_code = 502


class UpstreamAuthError(UpstreamError):
    pass


class UpstreamRateLimitError(UpstreamError):
    status_code = 503


class UpstreamBadRequestError(UpstreamError):
    """Rejected request, or a response that does not match the expected shape."""


class UpstreamServerError(UpstreamError):
    pass


class NetworkError(UpstreamError):
    """No response received (connection failure or timeout)."""

    status_code = 504


class CacheParseError(MarginaliaError):
    """Stored elaboration blob is unreadable. Treated as a cache miss."""

"""Exception hierarchy.

Two families live here:

- HealthCacheError and its subclasses are raised inside the caching
  pipeline. None of them is allowed to terminate the process; the pipeline
  logs them and stays in a retryable state.
- ProblemDetailError and its subclasses are RFC 9457 Problem Details errors,
  converted to application/problem+json responses by the exception handler
  middleware.
"""


class HealthCacheError(Exception):
    """Base class for caching pipeline failures."""


class AuthorizationError(HealthCacheError):
    """Health data is unavailable on this device or authorization failed."""


class ProviderQueryError(HealthCacheError):
    """An observer or anchored query against the health data provider failed."""


class SerializationError(HealthCacheError):
    """A single sample could not be represented as an Open mHealth data point."""

    def __init__(self, sample_id: str, reason: str):
        self.sample_id = sample_id
        self.reason = reason
        super().__init__(f"Cannot serialize sample {sample_id}: {reason}")


class PersistenceError(HealthCacheError):
    """A transactional write to the embedded store failed and was rolled back."""


class ProblemDetailError(Exception):
    def __init__(
        self,
        type_uri: str,
        title: str,
        status: int,
        detail: str,
        violations: list[dict] | None = None,
    ):
        self.type_uri = type_uri
        self.title = title
        self.status = status
        self.detail = detail
        self.violations = violations
        super().__init__(detail)


class UnsupportedStreamError(ProblemDetailError):
    def __init__(self, stream: str):
        super().__init__(
            type_uri="https://api.tidepool.org/problems/unsupported-stream",
            title="Unsupported Stream",
            status=422,
            detail=f"Stream '{stream}' is not supported. Must be one of: BloodGlucose, Workout",
        )


class UnsupportedActionError(ProblemDetailError):
    def __init__(self, action: str):
        super().__init__(
            type_uri="https://api.tidepool.org/problems/unsupported-action",
            title="Unsupported Action",
            status=422,
            detail=f"Action '{action}' is not supported. Must be one of: Added, Deleted",
        )


class InvalidCursorError(ProblemDetailError):
    def __init__(self, cursor: str):
        super().__init__(
            type_uri="https://api.tidepool.org/problems/invalid-cursor",
            title="Invalid Cursor",
            status=400,
            detail=f"Cursor '{cursor}' could not be decoded",
        )


class CacheUnavailableError(ProblemDetailError):
    def __init__(self):
        super().__init__(
            type_uri="https://api.tidepool.org/problems/cache-unavailable",
            title="Cache Unavailable",
            status=503,
            detail="The health data cache has not been started.",
        )

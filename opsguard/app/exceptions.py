"""Custom exceptions for the opsguard engine."""


class OpsGuardException(Exception):
    """Base class for opsguard exceptions with HTTP status code.

    All custom exceptions inherit from this class and define their
    specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500

    def __init__(self, message: str = "OpsGuard error"):
        self.message = message
        super().__init__(message)


class ConfigurationError(OpsGuardException):
    """Raised when a rate-limit rule, threshold or channel setting is invalid.

    Fatal at startup: the service refuses to start with an incomplete
    rate-limit or threshold table.
    """

    def __init__(self, message: str = "Invalid configuration", field: str | None = None):
        self.field = field
        if field:
            message = f"{field}: {message}"
        super().__init__(message)


class ProbeTimeoutError(OpsGuardException):
    """Raised when a metric probe does not answer within its time box.

    Recoverable: the sampler turns it into an unavailable sample.
    """
    status_code = 503

    def __init__(self, component: str, timeout: float):
        self.component = component
        self.timeout = timeout
        super().__init__(f"Probe '{component}' timed out after {timeout:.2f}s")


class ChannelDeliveryError(OpsGuardException):
    """Raised when a notification channel fails to deliver an alert.

    Recoverable per channel: retried once, then recorded as failed.
    """
    status_code = 502

    def __init__(self, channel: str, reason: str, retryable: bool = True):
        self.channel = channel
        self.reason = reason
        self.retryable = retryable
        super().__init__(f"Channel '{channel}' delivery failed: {reason}")


class CounterStoreError(OpsGuardException):
    """Raised when the counter store (memory or Redis) cannot serve a request.

    The rate limiter resolves it fail-open or fail-closed per scope.
    """
    status_code = 503

    def __init__(self, message: str = "Counter store unavailable", cause: Exception | None = None):
        self.cause = cause
        super().__init__(message)


class RateLimitExceededError(OpsGuardException):
    """Raised by callers that prefer exceptions over decisions.

    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429

    def __init__(self, scope: str, retry_after: int, message: str | None = None):
        self.scope = scope
        self.retry_after = retry_after
        super().__init__(
            message or f"Rate limit exceeded for '{scope}'. Retry after {retry_after}s."
        )

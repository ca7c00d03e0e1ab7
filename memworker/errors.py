from __future__ import annotations

# Statuses that mean the provider is unreachable, overloaded, or refusing our
# credentials. A session hitting one of these is handed to the fallback agent.
FALLBACK_STATUSES = frozenset({401, 403, 429, 500, 502, 503, 504, 529})
FALLBACK_PROVIDER_ERROR_TYPES = frozenset(
    {
        "authentication_error",
        "permission_error",
        "rate_limit_error",
        "overloaded_error",
        "api_error",
    }
)


class MemWorkerError(Exception):
    """Base class for memworker failures."""


class ConfigurationError(MemWorkerError):
    """A required setting (usually the API key) is missing."""


class TransportError(MemWorkerError):
    """The provider answered with a non-success status or could not be reached."""

    def __init__(self, status: int | None, body: str = "") -> None:
        self.status = status
        self.body = body
        label = str(status) if status is not None else "unreachable"
        message = f"Anthropic API error: {label}"
        if body:
            message = f"{message} - {body}"
        super().__init__(message)


class ProviderError(MemWorkerError):
    """The provider returned a well-formed error payload."""

    def __init__(self, error_type: str | None, message: str | None) -> None:
        self.error_type = error_type or "unknown_error"
        self.error_message = message or ""
        super().__init__(f"Anthropic API error: {self.error_type} - {self.error_message}")


class SessionAborted(MemWorkerError):
    """Cooperative cancellation of a session run; not a failure."""


def should_fallback(exc: BaseException) -> bool:
    if isinstance(exc, TransportError):
        return exc.status is None or exc.status in FALLBACK_STATUSES
    if isinstance(exc, ProviderError):
        return exc.error_type in FALLBACK_PROVIDER_ERROR_TYPES
    return False


def is_abort_error(exc: BaseException) -> bool:
    return isinstance(exc, SessionAborted)

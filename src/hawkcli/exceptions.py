"""Exception hierarchy for hawkcli.

All exceptions inherit from :class:`HawkError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`hawkcli.exit_codes`.
The top-level error handler in :func:`hawkcli.app.main` catches
``HawkError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

Subclass hierarchy::

    HawkError (exit 1)
    +-- InvalidUsageError      (exit 2)
    |   +-- BadRequestError    (exit 2)
    +-- AuthError              (exit 3)
    |   +-- UnauthorizedError  (exit 3)
    |   +-- ForbiddenError     (exit 3)
    +-- NotFoundError          (exit 4)
    +-- ServerError            (exit 5)
    +-- ConnectionError_       (exit 6)
    +-- InvalidResponseError   (exit 7)
    +-- RateLimitError         (exit 8)
    +-- ConfigError            (exit 1)
    +-- CacheError             (exit 1)
        +-- CacheIOError
        +-- CacheDatabaseError

Cache errors never escape :class:`~hawkcli.cache.client.CachedClient`;
they exist so the store can report faults that the facade downgrades to
a pass-through.
"""

from __future__ import annotations

from typing import Optional

from hawkcli.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_RESPONSE,
    EXIT_INVALID_USAGE,
    EXIT_NOT_FOUND,
    EXIT_RATE_LIMITED,
    EXIT_SERVER_ERROR,
)


class HawkError(Exception):
    """Base exception for all hawkcli errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`hawkcli.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(HawkError):
    """Raised for invalid CLI arguments or missing required parameters."""

    exit_code = EXIT_INVALID_USAGE


class BadRequestError(InvalidUsageError):
    """Raised when the API rejects a request with HTTP 400 or 422."""


class AuthError(HawkError):
    """Raised when authentication or authorisation fails."""

    exit_code = EXIT_AUTH_FAILURE


class UnauthorizedError(AuthError):
    """Raised when no API key is available or the key was rejected after a refresh."""

    def __init__(self, message: Optional[str] = None, exit_code: int | None = None):
        super().__init__(
            message
            or (
                "Authentication failed. Set a valid API key in HAWKCLI_API_KEY "
                "or the api_key field of the hawkcli config.json."
            ),
            exit_code,
        )


class ForbiddenError(AuthError):
    """Raised on HTTP 403: the token is valid but lacks the entitlement."""

    def __init__(self, message: Optional[str] = None, exit_code: int | None = None):
        super().__init__(
            message or "Access denied. Your API key may not have permission for this resource.",
            exit_code,
        )


class NotFoundError(HawkError):
    """Raised when the API returns HTTP 404 (resource not found)."""

    exit_code = EXIT_NOT_FOUND


class ServerError(HawkError):
    """Raised when the API returns an HTTP 5xx server error."""

    exit_code = EXIT_SERVER_ERROR


class ConnectionError_(HawkError):
    """Raised on network-level failures (timeout, DNS resolution, connection refused).

    Named with a trailing underscore to avoid shadowing the built-in
    ``ConnectionError``.
    """

    exit_code = EXIT_CONNECTION_ERROR


class InvalidResponseError(HawkError):
    """Raised when a response body or an access token cannot be parsed."""

    exit_code = EXIT_INVALID_RESPONSE


class RateLimitError(HawkError):
    """Raised when HTTP 429 persists past the retry budget.

    Args:
        message: Human-readable error description.
        retry_after: Seconds the server last asked the client to wait.
    """

    exit_code = EXIT_RATE_LIMITED

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class ConfigError(HawkError):
    """Raised for configuration problems (missing API key or org, unreadable config file)."""

    exit_code = EXIT_GENERIC_FAILURE


class CacheError(HawkError):
    """Base class for local response-cache faults."""


class CacheIOError(CacheError):
    """Raised when a cache blob or directory cannot be read or written."""


class CacheDatabaseError(CacheError):
    """Raised when a statement against the cache database fails."""

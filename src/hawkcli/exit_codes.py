"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~hawkcli.exceptions.HawkError` subclass.
Shell wrappers and CI jobs can inspect the exit code to tell a rejected
API key from a throttled request without parsing stderr.

Example::

    $ hawkcli cache status
    $ echo $?
    0
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred (including configuration and cache faults)."""

EXIT_INVALID_USAGE = 2
"""The command or the request it produced was rejected as malformed (HTTP 400/422)."""

EXIT_AUTH_FAILURE = 3
"""Authentication or authorisation failed (HTTP 401/403)."""

EXIT_NOT_FOUND = 4
"""The requested resource was not found (HTTP 404)."""

EXIT_SERVER_ERROR = 5
"""The StackHawk API returned an HTTP 5xx server error."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""

EXIT_INVALID_RESPONSE = 7
"""The API answered with a body that could not be parsed."""

EXIT_RATE_LIMITED = 8
"""The API kept answering HTTP 429 after the retry budget was spent."""

"""hawkcli -- command-line companion for the StackHawk application-security platform.

This package holds the client-side acceleration core used by every listing
and drill-down command: a persistent response cache, a rate-limited and
token-refreshing HTTP pipeline, and a parallel paginator.

Typical workflow::

    hawkcli cache status      # inspect the local response cache
    hawkcli cache clear       # drop every cached response

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic models for the config file and API resources.
    config: XDG-aware configuration loading and saving.
    context: Resolved-context builder shared by commands.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.3.0"

"""
Exception hierarchy for the explorer.

Every error raised by the engine inherits from ExplorerError so the
HTTP layer and the CLI can catch it uniformly and map it to a status.
"""


class ExplorerError(Exception):
    """Base exception for all explorer errors."""

    status_code = 500


class InvalidRequestError(ExplorerError):
    """A required parameter is missing or malformed."""

    status_code = 400


class StoreError(ExplorerError):
    """A query against a required table failed."""


class StoreUnavailableError(StoreError):
    """The graph database is missing or cannot be opened."""


class QueryTimeoutError(StoreError):
    """The request deadline expired before the work completed."""

    status_code = 504

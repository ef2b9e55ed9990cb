"""Exceptions shared across the search services."""


class ConfigurationError(Exception):
    """Invalid or missing configuration for the requested operation.

    Raised for unknown source types or indexes, unresolvable tenants and
    unknown named transformations. Never retried.
    """

    pass


class JobPermanentFailure(Exception):
    """An indexing job exhausted its retry budget."""

    def __init__(self, message: str, payload: dict | None = None):
        super().__init__(message)
        self.payload = payload or {}


class JobTimeoutError(Exception):
    """One job attempt ran past its time budget. Retried like any failure."""

    pass

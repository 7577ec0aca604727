# app/core/exceptions.py
"""Exception taxonomy of the query engine."""

from typing import Any, Dict, List, Optional


class TqueryValidationError(Exception):
    """User input error: the request does not match the schema of the entity.

    Carries a list of field-attributed errors, each a dict with ``field``,
    ``message`` and ``type`` keys.
    """

    def __init__(self, errors: List[Dict[str, str]]):
        self.errors = errors
        super().__init__("; ".join(f"{e['field']}: {e['message']}" for e in errors))

    @classmethod
    def single(cls, field: str, message: str, type: str = "invalid") -> "TqueryValidationError":
        return cls([{"field": field, "message": message, "type": type}])


class BadFilterError(ValueError):
    """A filter that cannot be reduced, indicating a defect in filter construction."""

    def __init__(self, filter: Any, reason: Optional[str] = None):
        self.filter = filter
        message = f"Bad filter: {filter!r}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class TqueryFatalError(Exception):
    """Internal query engine failure. The SQL is only attached in debug mode."""

    def __init__(self, sql: Optional[str] = None):
        self.sql = sql
        super().__init__("Query engine error")


class TqueryConfigError(Exception):
    """Invalid table descriptor, e.g. a duplicate column name."""


class NotFoundError(Exception):
    """The entity does not exist or is outside the caller's scope."""

    def __init__(self, detail: str = "Not found"):
        self.detail = detail
        super().__init__(detail)

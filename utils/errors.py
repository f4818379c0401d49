"""
CASCADE - Error taxonomy.
Query failures are caught per keyword/aggregate by the state engines, cache failures
never leave the cache store, persistence failures are surfaced as toasts without rollback.
"""

from typing import Any, Dict, Optional


class CascadeError(Exception):
    """Base class for all CASCADE errors."""


class QueryError(CascadeError):
    """A SQL query failed (syntax error, missing column, permission)."""


class TransientQueryFailure(QueryError):
    """Connection, network or timeout failure while talking to the SQL endpoint."""


class SchemaMismatch(QueryError):
    """The expected `<keyword>_Group` / `<keyword>_Group_Final` column pattern is absent.

    This is a valid "no mapping for this keyword" outcome, not a user-facing error.
    """


class InvalidIdentifierError(QueryError):
    """A table or column name failed the information-schema allow-list."""


class CacheFailure(CascadeError):
    """Local cache store could not complete an operation."""


class SerializationError(CacheFailure):
    """A value could not be serialized for the cache (circular or non-JSON data)."""


class PersistenceError(CascadeError):
    """Remote persistence endpoint rejected or could not complete a request."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Any = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details
        self.code = code

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": type(self).__name__,
            "message": self.message,
            "statusCode": self.status_code,
            "details": self.details,
            "code": self.code,
        }


class NotFoundError(PersistenceError):
    """404 from the persistence endpoint."""


class PersistenceConflict(PersistenceError):
    """Conflict or authorization failure (409, 401, 403)."""


class MappingsBusyError(CascadeError):
    """A mapping edit was attempted while a fetch or refresh is in flight."""

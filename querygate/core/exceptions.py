"""Error taxonomy for blueprint registration, query validation, and config resolution.

Every error carries a stable ``code``, a human-readable ``message``, the HTTP
status it maps to, and optional ``details`` naming the offending path,
operator, or value so a client can self-correct.
"""

from typing import Any

from fastapi import status


class QueryGateError(Exception):
    """Base class for all errors surfaced by the query engine."""

    code = "QUERY_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = {k: v for k, v in details.items() if v is not None}

    def to_dict(self) -> dict:
        body: dict = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class SchemaError(QueryGateError):
    """A blueprint declaration is invalid. Raised at startup, not recoverable."""

    code = "SCHEMA_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class NotFoundError(QueryGateError):
    """A blueprint key is not registered, or a record does not exist."""

    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class ConfigNotFoundError(QueryGateError):
    """No configuration exists for a key, for the caller or the system."""

    code = "CONFIG_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class DuplicateConfigError(QueryGateError):
    """A configuration already exists for the (key, user) slot."""

    code = "DUPLICATE_CONFIG"
    status_code = status.HTTP_409_CONFLICT


# --- Client input validation failures (400) ---

class ValidationError(QueryGateError):
    code = "INVALID_QUERY"


class MalformedFilterError(ValidationError):
    code = "MALFORMED_FILTER"


class UnknownFieldError(ValidationError):
    code = "UNKNOWN_FIELD"


class IllegalOperatorError(ValidationError):
    code = "ILLEGAL_OPERATOR"


class IllegalValueError(ValidationError):
    code = "ILLEGAL_VALUE"


class UnsupportedDepthError(ValidationError):
    code = "UNSUPPORTED_DEPTH"


class TooComplexError(ValidationError):
    code = "TOO_COMPLEX"

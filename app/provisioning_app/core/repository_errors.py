from __future__ import annotations


class SchemaBootstrapRequiredError(RuntimeError):
    """Raised when required runtime schema objects are missing or inaccessible."""


class DuplicateRecordError(RuntimeError):
    """Raised when a write is rejected because the record already exists."""


class AuthorizationConflictError(RuntimeError):
    """Raised when an existing authorization link carries a different role."""


class RecordNotFoundError(LookupError):
    """Raised when a requested record does not exist."""

"""Error types shared by the store layer and the orchestration components.

Taxonomy:
- StoreError: transient/network failure from the remote service (retry manually)
- DuplicateKeyError: uniqueness violation, branches into conflict resolution
- RecordNotFoundError: referenced row no longer exists
- InvalidRequestError: rejected locally before any remote call
"""

from __future__ import annotations

DUPLICATE_KEY_HTTP_STATUS = 409
DUPLICATE_KEY_PG_CODE = "23505"


class StoreError(Exception):
    """Base exception for remote store failures.

    Attributes:
        message: Human readable message
        status: HTTP-equivalent status, when known
        code: Storage error code (e.g. Postgres SQLSTATE), when known
    """

    def __init__(self, message: str, *, status: int | None = None, code: str | None = None):
        self.message = message
        self.status = status
        self.code = code
        super().__init__(message)


class DuplicateKeyError(StoreError):
    """Raised when an insert violates a uniqueness constraint."""

    def __init__(self, message: str = "duplicate key value violates unique constraint"):
        super().__init__(message, status=DUPLICATE_KEY_HTTP_STATUS, code=DUPLICATE_KEY_PG_CODE)


class RecordNotFoundError(StoreError):
    """Raised when a referenced row does not exist."""

    def __init__(self, entity: str, record_id: str):
        self.entity = entity
        self.record_id = record_id
        super().__init__(f"{entity} {record_id} not found", status=404)


class InvalidRequestError(ValueError):
    """Raised when a request is rejected before reaching the remote store."""


def is_duplicate_key_error(exc: BaseException) -> bool:
    """Classify an exception as a uniqueness violation.

    Matches on an HTTP 409 status or the Postgres unique_violation code, the
    two shapes a remote relational service reports duplicates in.
    """
    if isinstance(exc, DuplicateKeyError):
        return True
    status = getattr(exc, "status", None)
    if status is None:
        status = getattr(exc, "status_code", None)
    try:
        if status is not None and int(status) == DUPLICATE_KEY_HTTP_STATUS:
            return True
    except (TypeError, ValueError):
        pass
    return str(getattr(exc, "code", "") or "") == DUPLICATE_KEY_PG_CODE

"""Translate engine errors into HTTP responses with the standard error payload."""

from __future__ import annotations

import logging

from fastapi import HTTPException, status

from ...core.errors import (
    ConflictError,
    DispatchFailure,
    InsufficientHistoryError,
    NotFoundError,
    PersistenceError,
    ReminderError,
    ValidationError,
)

LOGGER = logging.getLogger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[ReminderError], int, str], ...] = (
    (NotFoundError, status.HTTP_404_NOT_FOUND, "customer_not_found"),
    (ConflictError, status.HTTP_409_CONFLICT, "conflict"),
    (ValidationError, status.HTTP_400_BAD_REQUEST, "invalid_request"),
    (InsufficientHistoryError, status.HTTP_400_BAD_REQUEST, "insufficient_history"),
    (DispatchFailure, status.HTTP_502_BAD_GATEWAY, "dispatch_failed"),
    (PersistenceError, status.HTTP_503_SERVICE_UNAVAILABLE, "storage_unavailable"),
)


def error_payload(code: str, message: str) -> dict[str, str]:
    """Return a standardised error payload."""

    return {"error": code, "message": message}


def http_error(exc: ReminderError) -> HTTPException:
    """Map a ``ReminderError`` onto an ``HTTPException``."""

    for error_type, status_code, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            if status_code >= 500:
                LOGGER.error("Request failed with %s: %s", exc.kind, exc)
            return HTTPException(status_code=status_code, detail=error_payload(code, str(exc)))

    LOGGER.error("Unmapped reminder error %s: %s", exc.kind, exc)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=error_payload(exc.kind, str(exc)),
    )

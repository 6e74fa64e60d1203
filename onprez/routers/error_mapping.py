from __future__ import annotations

from fastapi import HTTPException, status

from onprez.services.errors import (
    AccountLocked,
    AppointmentNotFound,
    ConcurrentModification,
    OnPrezError,
    OutsideBookingWindow,
    SlotUnavailable,
    WindowClosed,
)


def locked_exception(expires_at) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail={
            "message": "Too many failed attempts. Try again later.",
            "locked_until": expires_at.isoformat() if expires_at else None,
        },
    )


def http_error_for(exc: OnPrezError) -> HTTPException:
    """Translate a domain error into the HTTP response the client sees."""
    if isinstance(exc, AccountLocked):
        return locked_exception(exc.expires_at)
    if isinstance(exc, AppointmentNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ConcurrentModification):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="The record was changed by another request. Reload and try again.",
        )
    if isinstance(exc, SlotUnavailable):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": str(exc), "conflicting_ids": exc.conflicting_ids},
        )
    if isinstance(exc, OutsideBookingWindow) and exc.violations:
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "message": str(exc),
                "violations": [violation.as_dict() for violation in exc.violations],
            },
        )
    if isinstance(exc, WindowClosed):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(exc), "cutoff_hours": exc.cutoff_hours},
        )
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

# bookflow/api/errors.py
"""Domain exception -> HTTP error translation for routers"""
from fastapi import HTTPException, status

from bookflow.core.exceptions import (
    BookflowError,
    InvalidStatusTransition,
    MessagingGatewayError,
    NotFoundError,
    PaymentConfigurationError,
    PaymentProviderError,
    SlotUnavailableError,
)


def to_http_exception(exc: BookflowError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, SlotUnavailableError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": str(exc), "conflicting_appointment_id": exc.conflicting_id}
        )
    if isinstance(exc, InvalidStatusTransition):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": str(exc), "current": exc.current, "target": exc.target}
        )
    if isinstance(exc, PaymentConfigurationError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    if isinstance(exc, (PaymentProviderError, MessagingGatewayError)):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))

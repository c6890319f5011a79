"""Custom application exceptions."""

from typing import Any

from fastapi import HTTPException, status


class AppException(HTTPException):
    """Base application exception."""

    def __init__(
        self,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail: str = "An unexpected error occurred",
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(status_code=status_code, detail=detail, headers=headers)


class ValidationError(AppException):
    """Validation error exception."""

    def __init__(self, detail: str = "Validation failed", errors: list[dict[str, Any]] | None = None) -> None:
        self.errors = errors
        super().__init__(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)


class NotFoundError(AppException):
    """Resource not found exception."""

    def __init__(self, resource: str = "Resource", identifier: str | None = None) -> None:
        detail = f"{resource} not found"
        if identifier:
            detail = f"{resource} with ID '{identifier}' not found"
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class AuthenticationError(AppException):
    """Caller could not be authenticated."""

    def __init__(self, detail: str = "Authentication failed") -> None:
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class InvalidBookingStatus(AppException):
    """Invalid booking status for operation."""

    def __init__(self, detail: str = "This operation is not allowed for the current booking status") -> None:
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class PaymentError(AppException):
    """Payment processing error."""

    def __init__(
        self,
        detail: str = "Payment processing failed",
        status_code: int = status.HTTP_402_PAYMENT_REQUIRED,
    ) -> None:
        super().__init__(status_code=status_code, detail=detail)


class PayoutTransferError(PaymentError):
    """Payment provider failed to transfer a mentor payout.

    Retryable: the booking is left exactly as it was before the attempt.
    """

    def __init__(self, booking_id: str, reason: str | None = None) -> None:
        self.booking_id = booking_id
        self.reason = reason
        detail = f"Payout transfer failed for booking {booking_id}"
        if reason:
            detail = f"{detail}: {reason}"
        super().__init__(detail=detail, status_code=status.HTTP_502_BAD_GATEWAY)

"""
Domain errors raised by the booking lifecycle.

Each error carries a machine-readable ``code`` and the HTTP status it maps to,
so routers stay thin and a single exception handler renders them.
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse


class BookingError(Exception):
    code = "booking_error"
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Booking operation failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        self.message = message or self.message


# --- Conflict ---

class SlotNotAvailable(BookingError):
    code = "slot_not_available"
    status_code = status.HTTP_409_CONFLICT
    message = "Slot not available"


class BookingAlreadyCancelled(BookingError):
    code = "booking_already_cancelled"
    status_code = status.HTTP_409_CONFLICT
    message = "Booking is already cancelled"


class InvalidTransition(BookingError):
    code = "invalid_transition"
    status_code = status.HTTP_409_CONFLICT
    message = "Booking is not in a state that allows this operation"


class PaymentAlreadyCaptured(BookingError):
    code = "payment_already_captured"
    status_code = status.HTTP_409_CONFLICT
    message = "Payment was already captured with a different payment id"


# --- Not found / authorization ---

class SlotNotFound(BookingError):
    code = "slot_not_found"
    status_code = status.HTTP_404_NOT_FOUND
    message = "Slot not found"


class BookingNotFoundOrAlreadyCancelled(BookingError):
    code = "booking_not_found_or_already_cancelled"
    status_code = status.HTTP_404_NOT_FOUND
    message = "Booking not found or already cancelled"


class NotAuthorizedOrBookingNotFound(BookingError):
    code = "not_authorized_or_booking_not_found"
    status_code = status.HTTP_403_FORBIDDEN
    message = "Not authorized or booking not found"


class PaymentNotFound(BookingError):
    code = "payment_not_found"
    status_code = status.HTTP_404_NOT_FOUND
    message = "Payment not found for this order"


class PayerMismatch(BookingError):
    code = "payer_mismatch"
    status_code = status.HTTP_403_FORBIDDEN
    message = "You can only verify your own payments"


# --- Validation ---

class InvalidSignature(BookingError):
    code = "invalid_signature"
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Invalid signature"


# --- External dependency ---

class PaymentGatewayNotConfigured(BookingError):
    code = "payment_gateway_unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    message = "Payments not configured on server"


class PaymentGatewayError(BookingError):
    code = "payment_gateway_error"
    status_code = status.HTTP_502_BAD_GATEWAY
    message = "Payment gateway request failed"


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )

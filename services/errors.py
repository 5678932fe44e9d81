class DomainError(Exception):
    """Error surfaced to the authenticated client API as a 4xx response."""

    status_code = 400

    def __init__(self, message, status_code=None, **extra):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra

    def to_dict(self):
        body = {"error": self.message}
        body.update(self.extra)
        return body


class ValidationFailed(DomainError):
    status_code = 400


class AccessDenied(DomainError):
    status_code = 403


class BookingNotFound(DomainError):
    status_code = 404

    def __init__(self, message="Booking not found", **extra):
        super().__init__(message, **extra)


class PlaceNotFound(DomainError):
    status_code = 404

    def __init__(self, message="Place not found", **extra):
        super().__init__(message, **extra)


class InvalidTransition(DomainError):
    status_code = 409


class SlotConflict(DomainError):
    status_code = 409


class PaymentConfirmationRequired(DomainError):
    status_code = 400

    def __init__(self):
        super().__init__(
            "This booking was selected but payment is not confirmed. "
            "Approve with agent override or wait for the payment.",
            requiresPaymentCheck=True,
        )


class GatewayConfigError(Exception):
    """Gateway credentials are missing; treated as an infrastructure failure."""


class GatewayApiError(Exception):
    """The gateway merchant API could not be reached or refused the call."""

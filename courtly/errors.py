"""Error taxonomy for the booking and payment API.

Every class carries the HTTP status it renders as. The app-level error
handler in create_app() turns any CourtlyError into {"error": message}.
"""


class CourtlyError(Exception):
    status_code = 400
    default_message = "Bad request."

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class ValidationError(CourtlyError):
    default_message = "Invalid request."


class MissingField(ValidationError):
    default_message = "Missing required fields."


class AuthError(CourtlyError):
    status_code = 401
    default_message = "Authentication required."


class ForbiddenError(AuthError):
    status_code = 403
    default_message = "You do not have access to this resource."


class NotFoundError(CourtlyError):
    status_code = 404
    default_message = "Not found."


class ConflictError(CourtlyError):
    status_code = 409
    default_message = "Conflict."


class SlotConflict(ConflictError):
    default_message = (
        "This time slot is already booked. Please choose a different time."
    )


class AlreadyPaid(ConflictError):
    default_message = "This booking has already been paid for."


class PaymentInProgress(ConflictError):
    default_message = "Payment is already being processed for this booking."


class InsufficientBalance(CourtlyError):
    status_code = 402
    default_message = "Insufficient account balance."


class UpstreamError(CourtlyError):
    status_code = 500
    default_message = "The payment provider rejected the request."


class PaymentDeclined(UpstreamError):
    status_code = 402
    default_message = "Payment failed."


class TransientStoreError(UpstreamError):
    default_message = "The request could not be completed. Please try again."


class SignatureError(CourtlyError):
    default_message = "Invalid signature"


class MissingMetadata(CourtlyError):
    default_message = "Payment metadata is missing or incomplete."

# utilitrack/errors.py
"""
Error taxonomy shared by the services and the HTTP layer.

Every error carries the HTTP status it maps to and a message that is safe to
show to the user. The exception handlers in utilitrack.main turn them into
the standard `{success: false, message}` envelope.
"""


class UtiliTrackError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(UtiliTrackError):
    status_code = 400
    default_message = "Invalid request"


class NotFoundError(UtiliTrackError):
    status_code = 404
    default_message = "Resource not found"


class TariffNotFoundError(NotFoundError):
    # The reading exists but no tariff covers it.
    status_code = 422
    default_message = "No applicable tariff found"


class AlreadyBilledError(UtiliTrackError):
    status_code = 409
    default_message = "Meter reading has already been billed"


class InvalidReadingError(UtiliTrackError):
    status_code = 422
    default_message = "Current reading cannot be lower than previous reading"


class ConflictError(UtiliTrackError):
    status_code = 409
    default_message = "The record was modified by another request. Please try again."


class DatabaseError(UtiliTrackError):
    status_code = 500
    default_message = "Database error. Please try again later."

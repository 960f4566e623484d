"""Error kinds shared by every component of the weather alert service.

Each error carries a human-readable message and the HTTP status the API
answers with when the error reaches a request handler.
"""

from typing import Optional


class AppError(Exception):
    """Base class for all service errors."""

    status_code = 500
    label = "Internal error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.label}: {self.message}"

    @property
    def public_message(self) -> str:
        """Message exposed in API error envelopes."""
        return str(self)


class DatabaseError(AppError):
    label = "Database error"


class SchedulerError(AppError):
    label = "Scheduler error"


class WeatherApiError(AppError):
    label = "Weather API error"


class WeatherTransportError(WeatherApiError):
    """Network, timeout or payload parsing failure."""


class WeatherProtocolError(WeatherApiError):
    """The weather API answered with a non-2xx status."""

    def __init__(self, status: int, body: Optional[str]):
        super().__init__(f"API returned status {status}: {body or 'Unknown error'}")
        self.status = status
        self.body = body


class MailerError(AppError):
    label = "Email error"


class ConfigError(AppError):
    label = "Configuration error"


class NotFoundError(AppError):
    status_code = 404
    label = "Not found"

    @property
    def public_message(self) -> str:
        return self.message


class ConflictError(AppError):
    status_code = 409
    label = "Conflict"

    @property
    def public_message(self) -> str:
        return self.message


class ValidationError(AppError):
    status_code = 400
    label = "Validation error"

    @property
    def public_message(self) -> str:
        return self.message


class InternalError(AppError):
    label = "Internal error"


class IoError(AppError):
    label = "IO error"

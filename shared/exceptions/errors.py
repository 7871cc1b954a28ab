"""Error taxonomy shared by clients, services and the HTTP layer.

Each error carries the HTTP status code the API server answers with and a
generic public message. Internal details stay in the exception chain and the
log, they are never returned to the caller.
"""


class CompassError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500
    public_message: str = "Internal server error."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.public_message)


class InvalidInput(CompassError):
    status_code = 400
    public_message = "Invalid request."

    def __init__(self, message: str | None = None):
        # validation messages are safe to return as-is
        super().__init__(message)
        self.public_message = message or InvalidInput.public_message


class Unauthorized(CompassError):
    status_code = 401
    public_message = "Unauthorized."

    def __init__(self, message: str | None = None):
        super().__init__(message)
        self.public_message = message or Unauthorized.public_message


class Forbidden(CompassError):
    status_code = 403
    public_message = "Forbidden."


class NotFound(CompassError):
    status_code = 404
    public_message = "Not found."

    def __init__(self, message: str | None = None):
        super().__init__(message)
        self.public_message = message or NotFound.public_message


class ExtractionFailed(CompassError):
    status_code = 422
    public_message = "Could not extract any text from the uploaded file."


class StoreUnavailable(CompassError):
    status_code = 503
    public_message = "The storage backend is currently unavailable."


class StoreRejected(CompassError):
    status_code = 502
    public_message = "The storage backend rejected the request."


class ProviderUnavailable(CompassError):
    status_code = 503
    public_message = "The AI provider is currently unavailable."

"""API error taxonomy, rendered into the response envelope by the app's exception handlers."""


class DeviceApiError(Exception):
    """Base class for predictable, caller-facing API errors."""

    status_code: int = 400
    code: str = "BAD_REQUEST"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class BadRequestError(DeviceApiError):
    status_code = 400
    code = "BAD_REQUEST"


class UnauthorizedError(DeviceApiError):
    status_code = 401
    code = "UNAUTHORIZED"


class NotFoundError(DeviceApiError):
    status_code = 404
    code = "NOT_FOUND"

"""
Application errors

Component code raises these; main.py turns them into HTTP responses.
"""


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AppError):
    """Malformed or missing input."""
    status_code = 400


class AuthError(AppError):
    """Missing, invalid or expired token, or bad credentials."""
    status_code = 401


class AuthorizationError(AppError):
    """Authenticated but not permitted."""
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class ConflictError(AppError):
    """Request is incompatible with the current state of the record."""
    status_code = 409

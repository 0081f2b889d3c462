"""
Application errors raised by the service layer.

Each error carries the HTTP status the API responds with; main.py installs a
single handler that renders them as {"detail": message}.
"""


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AppError):
    status_code = 400


class AuthenticationError(AppError):
    status_code = 401


class AuthorizationError(AppError):
    status_code = 403


class InvalidTokenError(AppError):
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class InvalidStateError(AppError):
    status_code = 409

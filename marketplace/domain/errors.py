"""Error taxonomy shared by the application services.

Every error carries the HTTP status the API layer renders it with, so the
services never import FastAPI.
"""


class AppError(Exception):
    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class NotFound(AppError):
    status_code = 404


class InvalidInput(AppError):
    status_code = 400


class InvalidTransition(AppError):
    status_code = 400

    def __init__(self, current: str, target: str, message: str | None = None):
        super().__init__(message or f"Invalid status transition: {current} -> {target}")
        self.current = current
        self.target = target


class Forbidden(AppError):
    status_code = 403


class Conflict(AppError):
    status_code = 409


class UpstreamFailure(AppError):
    status_code = 502

"""
Error types raised by the meme service core.

Each error carries the HTTP status code the route layer answers with.
"""


class MemeServiceError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(MemeServiceError):
    status_code = 400


class Unauthorized(MemeServiceError):
    status_code = 401


class Forbidden(MemeServiceError):
    status_code = 403


class NotFound(MemeServiceError):
    status_code = 404

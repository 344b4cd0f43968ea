"""
TestHub Error Types
Domain exceptions carrying an HTTP status and a machine-readable code
"""

from typing import Optional


class AppError(Exception):
    """Base class for errors translated into HTTP responses"""

    status_code = 500
    default_code = "INTERNAL_ERROR"

    def __init__(self, message: str, error_code: Optional[str] = None):
        self.message = message
        self.error_code = error_code or self.default_code
        super().__init__(self.message)


class InvalidInputError(AppError):
    status_code = 400
    default_code = "BAD_REQUEST"


class AuthError(AppError):
    """Missing, malformed or rejected credentials"""
    status_code = 401
    default_code = "UNAUTHORIZED"


class ForbiddenError(AppError):
    status_code = 403
    default_code = "FORBIDDEN"


class NotFoundError(AppError):
    status_code = 404
    default_code = "NOT_FOUND"


class ConflictError(AppError):
    status_code = 409
    default_code = "CONFLICT"


class RateLimitedError(AppError):
    status_code = 429
    default_code = "RATE_LIMITED"


class TokenInvalidOrExpiredError(AuthError):
    """One-time email token is unknown, used, expired or of another purpose"""
    default_code = "TOKEN_INVALID_OR_EXPIRED"

    def __init__(self, message: str = "Token invalid or expired"):
        super().__init__(message)


class InvalidTokenError(AuthError):
    default_code = "INVALID_TOKEN"


class TokenNotFoundError(AuthError):
    default_code = "TOKEN_NOT_FOUND"


class ForbiddenTokenAccessError(ForbiddenError):
    default_code = "TOKEN_ACCESS_DENIED"

    def __init__(self, message: str = "You don't have permission to access this token"):
        super().__init__(message)


__all__ = [
    'AppError',
    'InvalidInputError',
    'AuthError',
    'ForbiddenError',
    'NotFoundError',
    'ConflictError',
    'RateLimitedError',
    'TokenInvalidOrExpiredError',
    'InvalidTokenError',
    'TokenNotFoundError',
    'ForbiddenTokenAccessError',
]

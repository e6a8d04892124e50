"""
core/errors.py -- Error taxonomy shared by the auth core and the HTTP edge.

Every service operation either returns a result or raises exactly one of the
AppError subclasses below. Each kind carries a fixed (code, status_code) pair;
clients branch on these, so the pairs must not change.

  ValidationError    validation_error     400
  ConflictError      validation_error     400  (duplicate email; same wire shape)
  UnauthorizedError  unauthorized         401
  ForbiddenError     forbidden            403  (reserved for scope checks)
  NotFoundError      not_found            404
  RateLimitError     rate_limit_exceeded  429  (reserved, not enforced)
  InternalError      internal_error       500

Layer rule: core/ is the kernel. No imports from api/ or auth/.
"""

from __future__ import annotations


class AppError(Exception):
    """Base class for errors that map onto the response envelope."""

    code = "internal_error"
    status_code = 500
    default_message = "An unexpected error occurred"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class ValidationError(AppError):
    code = "validation_error"
    status_code = 400
    default_message = "Invalid input"


class ConflictError(ValidationError):
    """Raised when a unique resource (an email address) already exists.

    Shares the validation_error code so existing clients see no new shape.
    """

    default_message = "Email already registered"


class UnauthorizedError(AppError):
    code = "unauthorized"
    status_code = 401
    default_message = "Unauthorized"


class ForbiddenError(AppError):
    code = "forbidden"
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(AppError):
    code = "not_found"
    status_code = 404
    default_message = "Resource not found"


class RateLimitError(AppError):
    code = "rate_limit_exceeded"
    status_code = 429
    default_message = "Too many requests"


class InternalError(AppError):
    pass


# Status -> code lookup for framework errors that are not AppErrors
# (unknown route, wrong method). Unlisted statuses fall back to http_<status>.
STATUS_CODES: dict[int, str] = {
    400: ValidationError.code,
    401: UnauthorizedError.code,
    403: ForbiddenError.code,
    404: NotFoundError.code,
    405: "method_not_allowed",
    429: RateLimitError.code,
    500: InternalError.code,
}

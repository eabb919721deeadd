"""
Domain error taxonomy.

Services raise these; the exception handler registered in `app.main`
turns each one into `{"error": code, "message": message}` with a fixed
HTTP status. Messages are safe to show to callers and never carry
internal state.
"""
from typing import Optional


class DomainError(Exception):
    status_code: int = 500
    code: str = "internal_error"
    message: str = "An unexpected error occurred."

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None):
        self.message = message or self.message
        self.code = code or self.code
        super().__init__(self.message)


class NotFoundError(DomainError):
    status_code = 404
    code = "not_found"
    message = "Resource not found."


class ValidationFailedError(DomainError):
    status_code = 400
    code = "validation_failed"
    message = "Invalid input."


class InvalidTransitionError(DomainError):
    status_code = 400
    code = "invalid_transition"
    message = "This status change is not allowed."


class CannotModifyError(DomainError):
    status_code = 400
    code = "cannot_modify"
    message = "This resource can no longer be modified."


class NotEditableError(DomainError):
    status_code = 400
    code = "not_editable"
    message = "This resource cannot be edited in its current state."


class CannotReviewError(DomainError):
    status_code = 400
    code = "cannot_review"
    message = "Cannot review this requirement."


class AlreadyExistsError(DomainError):
    status_code = 409
    code = "already_exists"
    message = "Resource already exists."


class InvalidLinkError(DomainError):
    status_code = 401
    code = "invalid_link"
    message = "This link is invalid or has expired."


class LinkNotFoundError(InvalidLinkError):
    code = "link_not_found"


class ExpiredError(InvalidLinkError):
    code = "link_expired"


class AlreadyUsedError(InvalidLinkError):
    code = "link_already_used"


class RateLimitExceededError(DomainError):
    status_code = 429
    code = "rate_limit_exceeded"
    message = "Too many requests. Please try again later."


class UnauthorizedError(DomainError):
    status_code = 401
    code = "unauthorized"
    message = "Could not validate credentials."


class ForbiddenError(DomainError):
    status_code = 403
    code = "forbidden"
    message = "You do not have permission to perform this action."


class InternalError(DomainError):
    pass

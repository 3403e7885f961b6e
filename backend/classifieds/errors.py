"""
Error taxonomy shared by the credential store, the photo store, the ad
repository and the HTTP layer.

Each error carries the HTTP status it is rendered with; the API layer turns
every `ClassifiedsError` into a `{"error": "<message>"}` response.
"""

from __future__ import annotations


class ClassifiedsError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(ClassifiedsError):
    status_code = 400
    default_message = "Invalid request"


class InvalidAdTypeError(ValidationError):
    default_message = "Unknown ad type"


class TooManyFilesError(ValidationError):
    default_message = "Too many files"


class UploadTooLargeError(ValidationError):
    status_code = 413
    default_message = "Upload too large"


class ConflictError(ClassifiedsError):
    status_code = 400
    default_message = "User with this email or username already exists"


class NotFoundError(ClassifiedsError):
    status_code = 404
    default_message = "Not found"


class AccountNotFoundError(NotFoundError):
    # Login and password reset report unknown accounts as a bad request.
    status_code = 400
    default_message = "User not found"


class ForbiddenError(ClassifiedsError):
    status_code = 403
    default_message = "No access to this ad or ad not found"


class InvalidCredentialsError(ClassifiedsError):
    status_code = 400
    default_message = "Invalid password"


class MissingTokenError(ClassifiedsError):
    status_code = 401
    default_message = "Missing authorization token"


class InvalidTokenError(ClassifiedsError):
    status_code = 403
    default_message = "Invalid token"


class InternalError(ClassifiedsError):
    status_code = 500


class RateLimitedError(ClassifiedsError):
    status_code = 429
    default_message = "Too many requests"

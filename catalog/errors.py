"""
Typed errors raised by the catalog layer.

Every error carries the HTTP status code the API surfaces it with, so the
request handlers can translate them without a lookup table.
"""

from typing import Dict, List, Optional


class CatalogError(Exception):
    """Base class for catalog errors."""

    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class ValidationError(CatalogError):
    """Missing or malformed required fields."""

    status_code = 400

    def __init__(self, message: str = "Validation Error", errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(message)
        self.errors = errors or []


class NotFoundError(CatalogError):
    """Book, review or user does not exist."""

    status_code = 404

    def __init__(self, resource: str, resource_id: Optional[str] = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with id '{resource_id}' not found"
        super().__init__(message)
        self.resource = resource
        self.resource_id = resource_id


class DuplicateReviewError(CatalogError):
    status_code = 400

    def __init__(self, message: str = "You have already reviewed this book"):
        super().__init__(message)


class DuplicateUserError(CatalogError):
    status_code = 400

    def __init__(self, message: str = "A user with this username or email already exists"):
        super().__init__(message)


class ForbiddenError(CatalogError):
    """Requesting user does not own the review."""

    status_code = 403

    def __init__(self, message: str = "Not authorized to modify this review"):
        super().__init__(message)


class InvalidRequestError(CatalogError):
    status_code = 400


class UnauthenticatedError(CatalogError):
    status_code = 401

    def __init__(self, message: str = "Please authenticate"):
        super().__init__(message)


class ConcurrentModificationError(CatalogError):
    """The book changed between read and write."""

    status_code = 409

    def __init__(self, book_id: str):
        super().__init__(f"Book '{book_id}' was modified by another request, please retry")
        self.book_id = book_id


def validation_error_from(exc, message: str = "Validation Error") -> ValidationError:
    """Convert a pydantic ValidationError into a catalog ValidationError with per-field messages."""
    errors = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ())) or "body"
        errors.append({"field": field, "message": error.get("msg", "Invalid value")})
    return ValidationError(message, errors=errors)

"""
API models and schemas for the FastAPI application.

JSON bodies use camelCase keys; Python attributes stay snake_case.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from catalog.models import BookPage, ResolvedBook, UserData


class APIModel(BaseModel):
    """Base model serializing with camelCase aliases."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RequestModel(APIModel):
    """Base model for request bodies; surrounding whitespace is stripped."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


# -----------------------------------------------------------------------------
# Requests
# -----------------------------------------------------------------------------

class BookCreateRequest(RequestModel):
    """Body for creating a book."""
    title: str = Field(..., min_length=1, description="Book title")
    author: str = Field(..., min_length=1, description="Book author")
    genre: str = Field(..., min_length=1, description="Book genre")
    description: str = Field(..., min_length=1, description="Book description")


class ReviewRequest(RequestModel):
    """Body for adding or updating a review."""
    rating: int = Field(..., ge=1, le=5, strict=True, description="Rating from 1 to 5")
    comment: str = Field(..., min_length=1, description="Review text")


class SignupRequest(RequestModel):
    username: str = Field(..., min_length=3, description="Display name")
    email: EmailStr = Field(..., description="Login email")
    password: str = Field(..., min_length=6, description="Plain-text password")


class LoginRequest(RequestModel):
    email: EmailStr = Field(..., description="Login email")
    password: str = Field(..., min_length=1, description="Plain-text password")


# -----------------------------------------------------------------------------
# Responses
# -----------------------------------------------------------------------------

class ReviewerResponse(APIModel):
    id: str = Field(..., description="User identifier")
    username: Optional[str] = Field(None, description="Username, None if the account no longer exists")


class ReviewResponse(APIModel):
    """Review response model with the author resolved."""
    id: str = Field(..., description="Review identifier")
    user: ReviewerResponse = Field(..., description="Review author")
    rating: int = Field(..., ge=1, le=5, description="Rating from 1 to 5")
    comment: str = Field(..., description="Review text")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")


class BookResponse(APIModel):
    """Book response model for API."""
    id: str = Field(..., description="Unique book identifier")
    title: str = Field(..., description="Book title")
    author: str = Field(..., description="Book author")
    genre: str = Field(..., description="Book genre")
    description: str = Field(..., description="Book description")
    reviews: List[ReviewResponse] = Field(default_factory=list, description="Reviews in insertion order")
    average_rating: float = Field(..., ge=0, le=5, description="Mean review rating")
    total_reviews: int = Field(..., ge=0, description="Number of reviews")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")

    @classmethod
    def from_resolved(cls, resolved: ResolvedBook) -> "BookResponse":
        book = resolved.book
        return cls(
            id=book.id,
            title=book.title,
            author=book.author,
            genre=book.genre,
            description=book.description,
            reviews=[
                ReviewResponse(
                    id=review.id,
                    user=ReviewerResponse(id=review.user_id, username=resolved.reviewers.get(review.user_id)),
                    rating=review.rating,
                    comment=review.comment,
                    created_at=review.created_at,
                    updated_at=review.updated_at,
                )
                for review in book.reviews
            ],
            average_rating=book.average_rating,
            total_reviews=book.total_reviews,
            created_at=book.created_at,
            updated_at=book.updated_at,
        )


class BookListResponse(APIModel):
    """Response model for book list with pagination."""
    books: List[BookResponse] = Field(..., description="List of books")
    current_page: int = Field(..., description="Current page number")
    total_pages: int = Field(..., description="Total number of pages")
    total_books: int = Field(..., description="Total number of matching books")

    @classmethod
    def from_page(cls, page: BookPage) -> "BookListResponse":
        return cls(
            books=[BookResponse.from_resolved(resolved) for resolved in page.books],
            current_page=page.current_page,
            total_pages=page.total_pages,
            total_books=page.total_books,
        )


class BookMessageResponse(APIModel):
    """Envelope returned by book and review mutations."""
    message: str = Field(..., description="Outcome message")
    data: BookResponse = Field(..., description="The book after the change")


class UserResponse(APIModel):
    id: str = Field(..., description="User identifier")
    username: str = Field(..., description="Display name")
    email: str = Field(..., description="Login email")
    created_at: datetime = Field(..., description="Signup timestamp")

    @classmethod
    def from_user(cls, user: UserData) -> "UserResponse":
        return cls(id=user.id, username=user.username, email=user.email, created_at=user.created_at)


class AuthResponse(APIModel):
    """Signup/login response carrying a bearer token."""
    message: str = Field(..., description="Outcome message")
    token: str = Field(..., description="JWT bearer token")
    user: UserResponse = Field(..., description="Authenticated user")


class FieldError(APIModel):
    field: str = Field(..., description="Offending field")
    message: str = Field(..., description="What is wrong with it")


class ErrorResponse(APIModel):
    """Error response model."""
    message: str = Field(..., description="Error message")
    error: Optional[str] = Field(None, description="Additional error details")
    errors: Optional[List[FieldError]] = Field(None, description="Per-field validation messages")
    status_code: int = Field(..., description="HTTP status code")


class HealthResponse(APIModel):
    """Health check response model."""
    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(..., description="Current timestamp")
    version: str = Field(..., description="API version")
    database_status: str = Field(..., description="Database connection status")

"""
Pydantic models for the book aggregate and its embedded reviews.

A Book exclusively owns its Reviews. The derived fields average_rating and
total_reviews are recomputed by calculate_rating on every mutation of the
review collection, never set independently.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from bson import ObjectId
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator

from .errors import (
    DuplicateReviewError,
    ForbiddenError,
    NotFoundError,
    validation_error_from,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_object_id() -> str:
    return str(ObjectId())


def calculate_rating(reviews: Iterable["ReviewData"]) -> Tuple[float, int]:
    """
    Compute (average_rating, total_reviews) for a review collection.

    The average is an unrounded float; an empty collection yields (0.0, 0).
    """
    ratings = [review.rating for review in reviews]
    if not ratings:
        return 0.0, 0
    return sum(ratings) / len(ratings), len(ratings)


def as_utc(value: Optional[datetime]) -> datetime:
    """Attach UTC to naive datetimes read back from MongoDB."""
    if value is None:
        return utc_now()
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _required_text(value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError("must be a string")
    value = value.strip()
    if not value:
        raise ValueError("must not be empty")
    return value


class ReviewData(BaseModel):
    """A single user's rating and comment for one book."""
    id: str = Field(default_factory=new_object_id, description="Review identifier")
    user_id: str = Field(..., description="Authoring user identifier")
    rating: int = Field(..., ge=1, le=5, description="Rating from 1 to 5")
    comment: str = Field(..., description="Review text")
    created_at: datetime = Field(default_factory=utc_now, description="When the review was written")
    updated_at: datetime = Field(default_factory=utc_now, description="Last edit timestamp")

    @field_validator('rating', mode='before')
    @classmethod
    def validate_rating(cls, v):
        if isinstance(v, bool):
            raise ValueError("must be an integer")
        return v

    @field_validator('comment')
    @classmethod
    def validate_comment(cls, v):
        return _required_text(v)

    @field_validator('user_id')
    @classmethod
    def validate_user_id(cls, v):
        return _required_text(v)

    def to_document(self) -> Dict[str, Any]:
        """Convert to the embedded MongoDB sub-document."""
        return {
            "_id": ObjectId(self.id),
            "user_id": self.user_id,
            "rating": self.rating,
            "comment": self.comment,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "ReviewData":
        return cls(
            id=str(doc["_id"]),
            user_id=str(doc["user_id"]),
            rating=doc["rating"],
            comment=doc["comment"],
            created_at=as_utc(doc.get("created_at")),
            updated_at=as_utc(doc.get("updated_at") or doc.get("created_at")),
        )


def build_review(user_id: str, rating: int, comment: str) -> ReviewData:
    """Create a validated review, raising the catalog ValidationError on bad input."""
    try:
        return ReviewData(user_id=user_id, rating=rating, comment=comment)
    except PydanticValidationError as e:
        raise validation_error_from(e) from e


class BookData(BaseModel):
    """
    The Book aggregate.

    Review mutations go through add_review, upsert_review and remove_review,
    each of which finishes by calling refresh_rating.
    """
    id: str = Field(default_factory=new_object_id, description="Book identifier")
    title: str = Field(..., description="Book title")
    author: str = Field(..., description="Book author")
    genre: str = Field(..., description="Book genre")
    description: str = Field(..., description="Book description")
    reviews: List[ReviewData] = Field(default_factory=list, description="Reviews in insertion order")
    average_rating: float = Field(default=0.0, ge=0, le=5, description="Derived mean rating")
    total_reviews: int = Field(default=0, ge=0, description="Derived review count")
    created_at: datetime = Field(default_factory=utc_now, description="Creation timestamp")
    updated_at: datetime = Field(default_factory=utc_now, description="Last update timestamp")
    version: int = Field(default=0, ge=0, description="Optimistic concurrency token")

    @field_validator('title', 'author', 'genre', 'description', mode='before')
    @classmethod
    def validate_text_fields(cls, v):
        return _required_text(v)

    # -------------------------------------------------------------------------
    # Review lookups
    # -------------------------------------------------------------------------

    def find_review(self, review_id: str) -> Optional[ReviewData]:
        for review in self.reviews:
            if review.id == review_id:
                return review
        return None

    def find_review_by_user(self, user_id: str) -> Optional[ReviewData]:
        for review in self.reviews:
            if review.user_id == user_id:
                return review
        return None

    # -------------------------------------------------------------------------
    # Aggregate mutations
    # -------------------------------------------------------------------------

    def refresh_rating(self) -> None:
        self.average_rating, self.total_reviews = calculate_rating(self.reviews)

    def add_review(self, user_id: str, rating: int, comment: str) -> ReviewData:
        """
        Append a new review by user_id.

        Raises:
            DuplicateReviewError: If the user already reviewed this book
            ValidationError: If rating or comment is invalid
        """
        review = build_review(user_id, rating, comment)
        if self.find_review_by_user(user_id) is not None:
            raise DuplicateReviewError()

        self.reviews.append(review)
        self.refresh_rating()
        return review

    def upsert_review(self, user_id: str, rating: int, comment: str) -> Tuple[ReviewData, bool, bool]:
        """
        Update the user's review in place, or add one if none exists.

        Returns:
            Tuple of (review, created, changed). Reapplying identical values
            leaves the aggregate untouched and reports changed=False.
        """
        candidate = build_review(user_id, rating, comment)
        existing = self.find_review_by_user(user_id)

        if existing is None:
            self.reviews.append(candidate)
            self.refresh_rating()
            return candidate, True, True

        if existing.rating == candidate.rating and existing.comment == candidate.comment:
            return existing, False, False

        existing.rating = candidate.rating
        existing.comment = candidate.comment
        existing.updated_at = candidate.updated_at
        self.refresh_rating()
        return existing, False, True

    def remove_review(self, review_id: str, requesting_user_id: str) -> ReviewData:
        """
        Remove a review authored by requesting_user_id.

        Raises:
            NotFoundError: If no review has this id
            ForbiddenError: If the review belongs to another user
        """
        review = self.find_review(review_id)
        if review is None:
            raise NotFoundError("Review", review_id)
        if review.user_id != requesting_user_id:
            raise ForbiddenError("Not authorized to delete this review")

        self.reviews = [r for r in self.reviews if r.id != review_id]
        self.refresh_rating()
        return review

    # -------------------------------------------------------------------------
    # Persistence mapping
    # -------------------------------------------------------------------------

    def to_document(self) -> Dict[str, Any]:
        """Convert to a MongoDB document."""
        return {
            "_id": ObjectId(self.id),
            "title": self.title,
            "author": self.author,
            "genre": self.genre,
            "description": self.description,
            "reviews": [review.to_document() for review in self.reviews],
            "average_rating": self.average_rating,
            "total_reviews": self.total_reviews,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "version": self.version,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "BookData":
        return cls(
            id=str(doc["_id"]),
            title=doc["title"],
            author=doc["author"],
            genre=doc["genre"],
            description=doc["description"],
            reviews=[ReviewData.from_document(r) for r in doc.get("reviews", [])],
            average_rating=doc.get("average_rating", 0.0),
            total_reviews=doc.get("total_reviews", 0),
            created_at=as_utc(doc.get("created_at")),
            updated_at=as_utc(doc.get("updated_at") or doc.get("created_at")),
            version=doc.get("version", 0),
        )


class UserData(BaseModel):
    """Stored user credentials."""
    id: str = Field(default_factory=new_object_id, description="User identifier")
    username: str = Field(..., min_length=3, description="Display name")
    email: str = Field(..., description="Login email, lowercased")
    password_hash: str = Field(..., description="bcrypt password hash")
    created_at: datetime = Field(default_factory=utc_now, description="Signup timestamp")

    @field_validator('username', mode='before')
    @classmethod
    def validate_username(cls, v):
        return _required_text(v)

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v):
        return _required_text(v).lower()

    def to_document(self) -> Dict[str, Any]:
        return {
            "_id": ObjectId(self.id),
            "username": self.username,
            "email": self.email,
            "password_hash": self.password_hash,
            "created_at": self.created_at,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "UserData":
        return cls(
            id=str(doc["_id"]),
            username=doc["username"],
            email=doc["email"],
            password_hash=doc["password_hash"],
            created_at=as_utc(doc.get("created_at")),
        )


class ResolvedBook(BaseModel):
    """A book together with the usernames of its reviewers."""
    book: BookData
    reviewers: Dict[str, Optional[str]] = Field(default_factory=dict, description="user_id -> username")


class BookPage(BaseModel):
    """One page of a filtered book listing."""
    books: List[ResolvedBook]
    current_page: int = Field(..., ge=1)
    total_pages: int = Field(..., ge=0)
    total_books: int = Field(..., ge=0)

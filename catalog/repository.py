"""
Repositories over the books and users collections.

Review mutations follow one pattern: load the aggregate, apply the change in
memory (which recomputes the rating), then write the review collection and the
derived fields back in a single update guarded by the version token.
"""

import math
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

import structlog
from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorCollection
from pydantic import ValidationError as PydanticValidationError
from pymongo.errors import DuplicateKeyError

from .errors import (
    ConcurrentModificationError,
    DuplicateUserError,
    ForbiddenError,
    InvalidRequestError,
    NotFoundError,
    validation_error_from,
)
from .models import BookData, BookPage, ResolvedBook, UserData, utc_now

logger = structlog.get_logger(__name__)

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
SEARCH_LIMIT = 10


class UserRepository:
    """Credential store backed by the users collection."""

    def __init__(self, collection: AsyncIOMotorCollection):
        self.collection = collection

    async def create_user(self, username: str, email: str, password_hash: str) -> UserData:
        """
        Insert a new user.

        Raises:
            ValidationError: If username or email is invalid
            DuplicateUserError: If the username or email is taken
        """
        try:
            user = UserData(username=username, email=email, password_hash=password_hash)
        except PydanticValidationError as e:
            raise validation_error_from(e) from e

        try:
            await self.collection.insert_one(user.to_document())
            logger.info("User created", user_id=user.id, username=user.username)
            return user

        except DuplicateKeyError:
            logger.warning("User already exists", username=user.username, email=user.email)
            raise DuplicateUserError()

        except Exception as e:
            logger.error("Failed to create user", username=user.username, error=str(e))
            raise

    async def get_by_email(self, email: str) -> Optional[UserData]:
        try:
            doc = await self.collection.find_one({"email": email.strip().lower()})
            return UserData.from_document(doc) if doc else None
        except Exception as e:
            logger.error("Failed to get user by email", error=str(e))
            raise

    async def get_by_id(self, user_id: str) -> Optional[UserData]:
        if not ObjectId.is_valid(user_id):
            return None
        try:
            doc = await self.collection.find_one({"_id": ObjectId(user_id)})
            return UserData.from_document(doc) if doc else None
        except Exception as e:
            logger.error("Failed to get user by ID", user_id=user_id, error=str(e))
            raise

    async def get_usernames(self, user_ids: Iterable[str]) -> Dict[str, Optional[str]]:
        """
        Resolve user ids to usernames in one query.

        Ids with no matching user map to None.
        """
        wanted = {user_id for user_id in user_ids}
        if not wanted:
            return {}

        object_ids = [ObjectId(user_id) for user_id in wanted if ObjectId.is_valid(user_id)]
        usernames: Dict[str, Optional[str]] = {user_id: None for user_id in wanted}
        if not object_ids:
            return usernames

        try:
            cursor = self.collection.find({"_id": {"$in": object_ids}}, {"username": 1})
            docs = await cursor.to_list(length=len(object_ids))
        except Exception as e:
            logger.error("Failed to resolve usernames", count=len(object_ids), error=str(e))
            raise

        for doc in docs:
            usernames[str(doc["_id"])] = doc.get("username")
        return usernames


class BookRepository:
    """Persistence and query operations over Book aggregates."""

    def __init__(self, collection: AsyncIOMotorCollection, users: UserRepository):
        self.collection = collection
        self.users = users

    # -------------------------------------------------------------------------
    # Books
    # -------------------------------------------------------------------------

    async def create(self, book_data: Dict[str, Any]) -> ResolvedBook:
        """
        Create a book with no reviews and zeroed derived fields.

        Raises:
            ValidationError: If title, author, genre or description is missing or blank
        """
        fields = {key: book_data.get(key) for key in ("title", "author", "genre", "description")}
        try:
            book = BookData(**fields)
        except PydanticValidationError as e:
            raise validation_error_from(e) from e

        try:
            await self.collection.insert_one(book.to_document())
            logger.info("Book created", book_id=book.id, title=book.title)
            return ResolvedBook(book=book)
        except Exception as e:
            logger.error("Failed to create book", title=book.title, error=str(e))
            raise

    async def get_by_id(self, book_id: str) -> ResolvedBook:
        """
        Get a single book with its reviewers resolved.

        Raises:
            NotFoundError: If the book does not exist
        """
        book = await self._load(book_id)
        return await self._resolve(book)

    async def list(
        self,
        author: Optional[str] = None,
        genre: Optional[str] = None,
        page: int = DEFAULT_PAGE,
        limit: int = DEFAULT_LIMIT,
    ) -> BookPage:
        """
        List books newest first with optional case-insensitive partial filters.

        Args:
            author: Substring to match against the author
            genre: Substring to match against the genre
            page: Page number (starts from 1)
            limit: Books per page

        Returns:
            BookPage with the page of books and pagination totals
        """
        if page < 1 or limit < 1:
            raise InvalidRequestError("page and limit must be positive integers")

        filter_query: Dict[str, Any] = {}
        if author:
            filter_query["author"] = {"$regex": re.escape(author), "$options": "i"}
        if genre:
            filter_query["genre"] = {"$regex": re.escape(genre), "$options": "i"}

        skip = (page - 1) * limit

        try:
            total = await self.collection.count_documents(filter_query)
            cursor = self.collection.find(filter_query).sort("created_at", -1).skip(skip).limit(limit)
            docs = await cursor.to_list(length=limit)
        except Exception as e:
            logger.error("Failed to list books", error=str(e), author=author, genre=genre, page=page, limit=limit)
            raise

        books = await self._resolve_many([BookData.from_document(doc) for doc in docs])
        return BookPage(
            books=books,
            current_page=page,
            total_pages=math.ceil(total / limit),
            total_books=total,
        )

    async def search(self, query: Optional[str]) -> List[ResolvedBook]:
        """
        Full-text search over title and author, best match first.

        Raises:
            InvalidRequestError: If the query is empty
        """
        if not query or not query.strip():
            raise InvalidRequestError("Search query is required")

        try:
            cursor = self.collection.find(
                {"$text": {"$search": query.strip()}},
                {"score": {"$meta": "textScore"}},
            ).sort([("score", {"$meta": "textScore"})]).limit(SEARCH_LIMIT)
            docs = await cursor.to_list(length=SEARCH_LIMIT)
        except Exception as e:
            logger.error("Failed to search books", query=query, error=str(e))
            raise

        return await self._resolve_many([BookData.from_document(doc) for doc in docs])

    # -------------------------------------------------------------------------
    # Reviews
    # -------------------------------------------------------------------------

    async def add_review(self, book_id: str, user_id: str, rating: int, comment: str) -> ResolvedBook:
        """
        Add a review by user_id.

        Raises:
            NotFoundError: If the book does not exist
            DuplicateReviewError: If the user already reviewed this book
        """
        book = await self._load(book_id)
        expected_version = book.version
        review = book.add_review(user_id, rating, comment)
        await self._save_reviews(book, expected_version)
        logger.info("Review added", book_id=book.id, review_id=review.id, user_id=user_id,
                    average_rating=book.average_rating, total_reviews=book.total_reviews)
        return await self._resolve(book)

    async def update_review(
        self,
        book_id: str,
        user_id: str,
        rating: int,
        comment: str,
        review_id: Optional[str] = None,
    ) -> Tuple[ResolvedBook, bool]:
        """
        Update the user's review on a book, adding one if none exists.

        Args:
            review_id: Review named by the request path, checked for ownership when it exists

        Returns:
            Tuple of (ResolvedBook, created)

        Raises:
            NotFoundError: If the book does not exist
            ForbiddenError: If review_id names another user's review
        """
        book = await self._load(book_id)

        if review_id:
            named = book.find_review(review_id)
            if named is not None and named.user_id != user_id:
                raise ForbiddenError("Not authorized to update this review")

        expected_version = book.version
        review, created, changed = book.upsert_review(user_id, rating, comment)
        if changed:
            await self._save_reviews(book, expected_version)
            logger.info("Review saved", book_id=book.id, review_id=review.id, user_id=user_id,
                        created=created, average_rating=book.average_rating,
                        total_reviews=book.total_reviews)
        else:
            logger.debug("Review unchanged", book_id=book.id, review_id=review.id, user_id=user_id)

        return await self._resolve(book), created

    async def delete_review(self, book_id: str, review_id: str, requesting_user_id: str) -> ResolvedBook:
        """
        Delete a review authored by requesting_user_id.

        Raises:
            NotFoundError: If the book or review does not exist
            ForbiddenError: If the review belongs to another user
        """
        book = await self._load(book_id)
        expected_version = book.version
        book.remove_review(review_id, requesting_user_id)
        await self._save_reviews(book, expected_version)
        logger.info("Review deleted", book_id=book.id, review_id=review_id, user_id=requesting_user_id,
                    average_rating=book.average_rating, total_reviews=book.total_reviews)
        return await self._resolve(book)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _load(self, book_id: str) -> BookData:
        if not book_id or not ObjectId.is_valid(book_id):
            raise NotFoundError("Book", book_id)

        try:
            doc = await self.collection.find_one({"_id": ObjectId(book_id)})
        except Exception as e:
            logger.error("Failed to get book by ID", book_id=book_id, error=str(e))
            raise

        if doc is None:
            raise NotFoundError("Book", book_id)
        return BookData.from_document(doc)

    async def _save_reviews(self, book: BookData, expected_version: int) -> None:
        """Write reviews and derived fields in one update, only if nobody else wrote first."""
        # Documents written before versioning have no version field
        version_filter: Any = {"$in": [0, None]} if expected_version == 0 else expected_version
        book.updated_at = utc_now()

        try:
            result = await self.collection.update_one(
                {"_id": ObjectId(book.id), "version": version_filter},
                {
                    "$set": {
                        "reviews": [review.to_document() for review in book.reviews],
                        "average_rating": book.average_rating,
                        "total_reviews": book.total_reviews,
                        "updated_at": book.updated_at,
                    },
                    "$inc": {"version": 1},
                },
            )
        except Exception as e:
            logger.error("Failed to save reviews", book_id=book.id, error=str(e))
            raise

        if result.matched_count == 0:
            logger.warning("Concurrent modification detected", book_id=book.id,
                           expected_version=expected_version)
            raise ConcurrentModificationError(book.id)

        book.version = expected_version + 1

    async def _resolve(self, book: BookData) -> ResolvedBook:
        reviewers = await self.users.get_usernames(review.user_id for review in book.reviews)
        return ResolvedBook(book=book, reviewers=reviewers)

    async def _resolve_many(self, books: List[BookData]) -> List[ResolvedBook]:
        user_ids = {review.user_id for book in books for review in book.reviews}
        reviewers = await self.users.get_usernames(user_ids)
        return [
            ResolvedBook(
                book=book,
                reviewers={review.user_id: reviewers.get(review.user_id) for review in book.reviews},
            )
            for book in books
        ]

"""
Pytest configuration and shared fixtures.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId

from catalog.models import BookData, ReviewData
from catalog.repository import UserRepository


ALICE_ID = "64b7f0c2a1e4d3b2c1a0f001"
BOB_ID = "64b7f0c2a1e4d3b2c1a0f002"
CAROL_ID = "64b7f0c2a1e4d3b2c1a0f003"


@pytest.fixture
def sample_book():
    """Create a book with no reviews."""
    return BookData(
        title="The Left Hand of Darkness",
        author="Ursula K. Le Guin",
        genre="Science Fiction",
        description="An envoy visits a planet whose inhabitants have no fixed sex.",
    )


@pytest.fixture
def reviewed_book(sample_book):
    """Create a book reviewed by three users with ratings 5, 3 and 4."""
    sample_book.add_review(ALICE_ID, 5, "A masterpiece")
    sample_book.add_review(BOB_ID, 3, "Slow in the middle")
    sample_book.add_review(CAROL_ID, 4, "Worth the effort")
    return sample_book


def make_book_document(title="Dune", author="Frank Herbert", genre="Science Fiction",
                       reviews=None, version=0):
    """Build a raw MongoDB book document."""
    now = datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc)
    reviews = reviews or []
    ratings = [r["rating"] for r in reviews]
    return {
        "_id": ObjectId(),
        "title": title,
        "author": author,
        "genre": genre,
        "description": f"{title} by {author}",
        "reviews": reviews,
        "average_rating": sum(ratings) / len(ratings) if ratings else 0.0,
        "total_reviews": len(ratings),
        "created_at": now,
        "updated_at": now,
        "version": version,
    }


def make_review_document(user_id, rating, comment="Great read"):
    """Build a raw embedded review sub-document."""
    return ReviewData(user_id=user_id, rating=rating, comment=comment).to_document()


@pytest.fixture
def mock_books_collection():
    """Create a mock Motor collection with a chainable cursor."""
    collection = MagicMock()
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.skip.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.to_list = AsyncMock(return_value=[])

    collection.find.return_value = cursor
    collection.find_one = AsyncMock(return_value=None)
    collection.insert_one = AsyncMock()
    collection.update_one = AsyncMock(return_value=MagicMock(matched_count=1))
    collection.count_documents = AsyncMock(return_value=0)
    return collection


@pytest.fixture
def mock_user_repository():
    """Create a mock user repository that knows alice, bob and carol."""
    users = AsyncMock(spec=UserRepository)
    names = {ALICE_ID: "alice", BOB_ID: "bob", CAROL_ID: "carol"}

    async def get_usernames(user_ids):
        return {user_id: names.get(user_id) for user_id in user_ids}

    users.get_usernames.side_effect = get_usernames
    return users


@pytest.fixture
def user_ids():
    """Ids of the known test users."""
    return {"alice": ALICE_ID, "bob": BOB_ID, "carol": CAROL_ID}


@pytest.fixture
def book_doc_factory():
    return make_book_document


@pytest.fixture
def review_doc_factory():
    return make_review_document

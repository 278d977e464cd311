"""
Unit tests for the book aggregate.
Tests rating recomputation, review uniqueness and ownership rules.
"""

from datetime import datetime, timezone

import bson
from bson import ObjectId
import pytest
from pydantic import ValidationError as PydanticValidationError

from catalog.errors import DuplicateReviewError, ForbiddenError, NotFoundError, ValidationError
from catalog.models import BookData, ReviewData, UserData, as_utc, calculate_rating


class TestCalculateRating:
    """Test cases for calculate_rating."""

    def test_empty_collection(self):
        assert calculate_rating([]) == (0.0, 0)

    def test_mixed_ratings(self):
        reviews = [ReviewData(user_id=f"user-{i}", rating=r, comment="ok") for i, r in enumerate([5, 3, 4])]
        assert calculate_rating(reviews) == (4.0, 3)

    @pytest.mark.parametrize("ratings", [[1], [5, 5], [1, 2], [2, 3, 3], [1, 2, 3, 4, 5, 5]])
    def test_average_is_unrounded_mean(self, ratings):
        reviews = [ReviewData(user_id=f"user-{i}", rating=r, comment="ok") for i, r in enumerate(ratings)]
        average, total = calculate_rating(reviews)
        assert average == sum(ratings) / len(ratings)
        assert total == len(ratings)

    def test_thirds_are_not_rounded(self):
        reviews = [ReviewData(user_id=f"user-{i}", rating=r, comment="ok") for i, r in enumerate([1, 1, 2])]
        average, _ = calculate_rating(reviews)
        assert average == 4 / 3


class TestBookData:
    """Test cases for the BookData aggregate."""

    def test_new_book_has_zeroed_derived_fields(self, sample_book):
        assert sample_book.reviews == []
        assert sample_book.average_rating == 0
        assert sample_book.total_reviews == 0

    def test_text_fields_are_trimmed(self):
        book = BookData(title="  Emma ", author=" Jane Austen", genre="Classic ", description=" Matchmaking ")
        assert book.title == "Emma"
        assert book.author == "Jane Austen"
        assert book.genre == "Classic"

    @pytest.mark.parametrize("field", ["title", "author", "genre", "description"])
    def test_blank_required_field_is_rejected(self, field):
        data = {"title": "Emma", "author": "Jane Austen", "genre": "Classic", "description": "Matchmaking"}
        data[field] = "   "
        with pytest.raises(PydanticValidationError):
            BookData(**data)

    def test_reviewed_book_scenario(self, reviewed_book):
        assert reviewed_book.average_rating == 4.0
        assert reviewed_book.total_reviews == 3

    def test_first_review_sets_rating(self, sample_book, user_ids):
        sample_book.add_review(user_ids["alice"], 5, "Loved it")
        assert sample_book.average_rating == 5.0
        assert sample_book.total_reviews == 1

    def test_reviews_keep_insertion_order(self, reviewed_book, user_ids):
        assert [r.user_id for r in reviewed_book.reviews] == [user_ids["alice"], user_ids["bob"], user_ids["carol"]]

    def test_second_review_by_same_user_is_rejected(self, sample_book, user_ids):
        sample_book.add_review(user_ids["alice"], 4, "Good")

        with pytest.raises(DuplicateReviewError):
            sample_book.add_review(user_ids["alice"], 1, "Changed my mind")

        assert sample_book.total_reviews == 1
        assert sample_book.average_rating == 4.0

    def test_invalid_rating_is_rejected(self, sample_book, user_ids):
        with pytest.raises(ValidationError) as exc_info:
            sample_book.add_review(user_ids["alice"], 6, "Off the charts")

        assert exc_info.value.errors[0]["field"] == "rating"
        assert sample_book.reviews == []

    def test_invalid_rating_reported_before_duplicate(self, sample_book, user_ids):
        sample_book.add_review(user_ids["alice"], 4, "Good")

        with pytest.raises(ValidationError) as exc_info:
            sample_book.add_review(user_ids["alice"], 9, "Again")

        assert exc_info.value.errors[0]["field"] == "rating"
        assert sample_book.total_reviews == 1

    def test_boolean_rating_is_rejected(self, sample_book, user_ids):
        with pytest.raises(ValidationError):
            sample_book.add_review(user_ids["alice"], True, "Yes")

        assert sample_book.reviews == []

    def test_blank_comment_is_rejected(self, sample_book, user_ids):
        with pytest.raises(ValidationError):
            sample_book.add_review(user_ids["alice"], 3, "   ")

    def test_comment_is_trimmed(self, sample_book, user_ids):
        review = sample_book.add_review(user_ids["alice"], 3, "  fine  ")
        assert review.comment == "fine"

    def test_add_then_delete_restores_rating(self, reviewed_book, user_ids):
        before = (reviewed_book.average_rating, reviewed_book.total_reviews)
        reviewer = "64b7f0c2a1e4d3b2c1a0f0ff"

        review = reviewed_book.add_review(reviewer, 1, "Not for me")
        assert reviewed_book.total_reviews == 4

        reviewed_book.remove_review(review.id, reviewer)
        assert (reviewed_book.average_rating, reviewed_book.total_reviews) == before

    def test_delete_last_review_zeroes_rating(self, sample_book, user_ids):
        review = sample_book.add_review(user_ids["alice"], 2, "Meh")
        sample_book.remove_review(review.id, user_ids["alice"])
        assert sample_book.average_rating == 0
        assert sample_book.total_reviews == 0

    def test_delete_by_other_user_is_forbidden(self, reviewed_book, user_ids):
        alice_review = reviewed_book.find_review_by_user(user_ids["alice"])

        with pytest.raises(ForbiddenError):
            reviewed_book.remove_review(alice_review.id, user_ids["bob"])

        assert reviewed_book.total_reviews == 3

    def test_delete_unknown_review(self, reviewed_book, user_ids):
        with pytest.raises(NotFoundError):
            reviewed_book.remove_review("64b7f0c2a1e4d3b2c1a0ffff", user_ids["alice"])

    def test_upsert_updates_existing_review_in_place(self, reviewed_book, user_ids):
        original = reviewed_book.find_review_by_user(user_ids["bob"])

        review, created, changed = reviewed_book.upsert_review(user_ids["bob"], 5, "Grew on me")

        assert created is False
        assert changed is True
        assert review.id == original.id
        assert reviewed_book.total_reviews == 3
        assert reviewed_book.average_rating == pytest.approx(14 / 3)
        assert reviewed_book.reviews[1].comment == "Grew on me"

    def test_upsert_adds_review_when_missing(self, sample_book, user_ids):
        review, created, changed = sample_book.upsert_review(user_ids["alice"], 4, "Solid")

        assert created is True
        assert changed is True
        assert sample_book.reviews == [review]
        assert sample_book.average_rating == 4.0

    def test_upsert_is_idempotent(self, reviewed_book, user_ids):
        reviewed_book.upsert_review(user_ids["carol"], 2, "Second thoughts")
        first = reviewed_book.model_dump()

        _, created, changed = reviewed_book.upsert_review(user_ids["carol"], 2, "Second thoughts")

        assert created is False
        assert changed is False
        assert reviewed_book.model_dump() == first

    def test_document_mapping_preserves_aggregate(self, reviewed_book):
        restored = BookData.from_document(reviewed_book.to_document())

        assert restored.id == reviewed_book.id
        assert [r.id for r in restored.reviews] == [r.id for r in reviewed_book.reviews]
        assert restored.average_rating == reviewed_book.average_rating
        assert restored.total_reviews == reviewed_book.total_reviews

    def test_timestamps_read_back_as_utc(self, reviewed_book):
        # BSON keeps millisecond precision and drops the offset
        stored = bson.decode(bson.encode(reviewed_book.to_document()))

        restored = BookData.from_document(stored)

        assert restored.created_at.tzinfo is not None
        assert restored.created_at.utcoffset().total_seconds() == 0
        assert abs(restored.created_at - reviewed_book.created_at).total_seconds() < 0.001
        assert all(r.updated_at.tzinfo is not None for r in restored.reviews)


class TestAsUtc:
    """Test cases for as_utc."""

    def test_naive_value_gets_utc(self):
        value = as_utc(datetime(2024, 1, 2, 3, 4, 5))
        assert value.tzinfo == timezone.utc
        assert value.hour == 3

    def test_user_created_at_is_utc(self):
        user = UserData.from_document({
            "_id": ObjectId(),
            "username": "alice",
            "email": "alice@example.com",
            "password_hash": "x",
            "created_at": datetime(2024, 1, 2),
        })
        assert user.created_at.tzinfo == timezone.utc

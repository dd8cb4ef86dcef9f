"""
Review submission
Folds a new review into its location's running averages inside one store
transaction, then awards experience points outside of it.
"""
import asyncio
import logging
import uuid
from typing import Any, Dict, Mapping, Optional

from .database.manager import DatabaseManager, StoreTransaction
from .database.models import Author, Review, LOCATIONS, REVIEWS
from .transformers.aggregates import fold_mean, fold_feature_ratings
from .utils import LocationNotFound, validate_review_payload

logger = logging.getLogger(__name__)

REVIEW_ACTION = "review"


def new_review_id() -> str:
    return uuid.uuid4().hex


class ReviewAggregator:
    """
    Submits reviews and keeps location aggregates consistent

    Each submission reads one location, writes one review and writes the
    location's new rating, review count and feature averages in the same
    transaction. Conflicting commits are retried by the store from a fresh
    read, so concurrent submissions never lose an update.
    """

    def __init__(self, db_manager: DatabaseManager, experience_service=None):
        """
        Args:
            db_manager: DatabaseManager with schema initialized
            experience_service: Anything with award(user_id, action_kind);
                                None disables awards
        """
        self.db = db_manager
        self.experience_service = experience_service

    def submit(
        self,
        location_id: str,
        author: Author,
        payload: Mapping[str, Any]
    ) -> Review:
        """
        Persist a review and update the location aggregate atomically

        Args:
            location_id: Target location
            author: Submitting user, snapshotted onto the review
            payload: {rating, comment, feature_ratings}

        Returns:
            The stored Review (created_at assigned by the store)

        Raises:
            ValidationError: Missing or out-of-range rating (store untouched)
            LocationNotFound: No such location (nothing written)
            TransactionConflict: Retries exhausted (nothing written)
        """
        clean = validate_review_payload(payload)
        review_id = new_review_id()
        snapshot = author.snapshot()

        def apply(txn: StoreTransaction) -> Review:
            location = txn.get(LOCATIONS, location_id)
            if location is None:
                raise LocationNotFound(location_id)

            review = Review(
                review_id=review_id,
                location_id=location_id,
                rating=clean["rating"],
                comment=clean["comment"],
                feature_ratings=clean["feature_ratings"],
                **snapshot,
            )
            txn.set(REVIEWS, review_id, review)

            txn.update(
                LOCATIONS,
                location_id,
                next_aggregate(location, clean["rating"], clean["feature_ratings"]),
                expected_version=location["version"],
            )
            return review

        review = self.db.run_transaction(apply)
        logger.info(
            f"Review {review.review_id} stored for location {location_id} "
            f"(rating {review.rating})"
        )

        self._award(author.user_id)
        return review

    async def submit_async(
        self,
        location_id: str,
        author: Author,
        payload: Mapping[str, Any]
    ) -> Review:
        """Awaitable submit; the transaction runs in a worker thread"""
        return await asyncio.to_thread(self.submit, location_id, author, payload)

    def _award(self, user_id: Optional[str]):
        if not user_id or self.experience_service is None:
            return
        try:
            self.experience_service.award(user_id, REVIEW_ACTION)
        except Exception as e:
            logger.warning(f"XP award failed for {user_id} (review kept): {e}")


def next_aggregate(
    location: Mapping[str, Any],
    rating: float,
    feature_ratings: Mapping[str, float]
) -> Dict[str, Any]:
    """
    New aggregate fields for a location after one more review

    Returns:
        Patch with rating, review_count and feature_stats
    """
    review_count = location.get("review_count") or 0
    return {
        "rating": fold_mean(location.get("rating"), review_count, rating),
        "review_count": review_count + 1,
        "feature_stats": fold_feature_ratings(
            location.get("feature_stats"), feature_ratings, review_count
        ),
    }

"""
Tests for reviews module
Tests review submission, aggregate folding, failure atomicity and concurrent writers
"""
import asyncio
import threading
import pytest
import sys
from pathlib import Path
from unittest.mock import MagicMock

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from accessible_places.database import DatabaseManager, StoreTransaction, Location, Author, LOCATIONS
from accessible_places.reviews import ReviewAggregator, next_aggregate
from accessible_places.utils import ValidationError, LocationNotFound, TransactionConflict


def _review_rows(db, location_id):
    return db.connection.execute(
        "SELECT COUNT(*) FROM reviews WHERE location_id = ?", [location_id]
    ).fetchone()[0]


# =========================
# next_aggregate Tests
# =========================
@pytest.mark.unit
class TestNextAggregate:
    """Test the aggregate patch computed for one more review"""

    def test_first_review(self):
        patch = next_aggregate({"rating": 0, "review_count": 0}, 4.0, {"wheelchair": 5.0})
        assert patch == {
            "rating": 4.0,
            "review_count": 1,
            "feature_stats": {"wheelchair": {"average": 5.0, "count": 1}},
        }

    def test_fold_into_existing(self):
        location = {"rating": 4.0, "review_count": 3, "feature_stats": {}}
        patch = next_aggregate(location, 5.0, {})
        assert patch["rating"] == pytest.approx(4.25)
        assert patch["review_count"] == 4

    def test_missing_fields_treated_as_new(self):
        patch = next_aggregate({}, 3.0, {})
        assert patch["rating"] == 3.0
        assert patch["review_count"] == 1


# =========================
# Submission Tests
# =========================
@pytest.mark.integration
class TestSubmit:
    """Test the happy path of ReviewAggregator.submit"""

    def test_submit_updates_aggregate(self, seeded_db, author, sample_payload):
        """One review sets rating, count and feature stats"""
        aggregator = ReviewAggregator(seeded_db)
        aggregator.submit("loc-paulista", author, sample_payload)

        location = seeded_db.get_location("loc-paulista")
        assert location["rating"] == 4.0
        assert location["review_count"] == 1
        assert location["feature_ratings"] == {"wheelchair": 5.0, "elevator": 3.0}
        assert location["feature_stats"]["elevator"] == {"average": 3.0, "count": 1}
        assert location["version"] == 1

    def test_review_persisted_with_author_snapshot(self, seeded_db, author, sample_payload):
        aggregator = ReviewAggregator(seeded_db)
        review = aggregator.submit("loc-paulista", author, sample_payload)

        stored = seeded_db.get_review(review.review_id)
        assert stored["location_id"] == "loc-paulista"
        assert stored["rating"] == 4.0
        assert stored["comment"] == "Rampa boa, elevador funcionando"
        assert stored["feature_ratings"] == {"wheelchair": 5.0, "elevator": 3.0}
        assert stored["author_id"] == "user-1"
        assert stored["author_name"] == "Ana"
        assert stored["author_photo"] == "photos/user-1.jpg"
        assert stored["created_at"] is not None
        assert review.created_at is not None

    def test_anonymous_author_name(self, seeded_db, other_author):
        aggregator = ReviewAggregator(seeded_db)
        review = aggregator.submit("loc-paulista", other_author, {"rating": 3})

        stored = seeded_db.get_review(review.review_id)
        assert stored["author_name"] == "Anônimo"
        assert stored["author_photo"] is None
        assert stored["comment"] is None
        assert stored["feature_ratings"] == {}

    def test_rating_is_mean_of_all_reviews(self, seeded_db, author):
        """After N submissions the rating is the arithmetic mean"""
        aggregator = ReviewAggregator(seeded_db)
        ratings = [5, 4, 2, 3.5, 0]
        for rating in ratings:
            aggregator.submit("loc-paulista", author, {"rating": rating})

        location = seeded_db.get_location("loc-paulista")
        assert location["review_count"] == len(ratings)
        assert location["rating"] == pytest.approx(sum(ratings) / len(ratings))
        assert _review_rows(seeded_db, "loc-paulista") == len(ratings)

    def test_features_averaged_over_their_own_ratings(self, seeded_db, author):
        aggregator = ReviewAggregator(seeded_db)
        aggregator.submit("loc-paulista", author, {"rating": 4, "feature_ratings": {"wheelchair": 5}})
        aggregator.submit("loc-paulista", author, {"rating": 2, "feature_ratings": {"ramp": 1}})
        aggregator.submit("loc-paulista", author, {"rating": 3, "feature_ratings": {"wheelchair": 2}})

        location = seeded_db.get_location("loc-paulista")
        assert location["feature_stats"]["wheelchair"] == {"average": 3.5, "count": 2}
        assert location["feature_stats"]["ramp"] == {"average": 1.0, "count": 1}

    def test_legacy_feature_means_are_weighted(self, db, author):
        """Bare legacy means weigh as many reviews as the location has"""
        db.upsert_location(Location.from_document({
            "id": "old",
            "name": "Old",
            "rating": 4.0,
            "reviewCount": 3,
            "featureRatings": {"wheelchair": 4.0},
        }))
        ReviewAggregator(db).submit("old", author, {"rating": 5, "featureRatings": {"wheelchair": 1}})

        location = db.get_location("old")
        assert location["rating"] == pytest.approx(4.25)
        assert location["review_count"] == 4
        assert location["feature_stats"]["wheelchair"]["average"] == pytest.approx(3.25)
        assert location["feature_stats"]["wheelchair"]["count"] == 4

    def test_stale_rating_with_zero_count(self, db, author):
        db.upsert_location(Location(location_id="stale", rating=2.0, review_count=0))
        ReviewAggregator(db).submit("stale", author, {"rating": 5})
        assert db.get_location("stale")["rating"] == 5.0

    def test_coordinates_untouched(self, seeded_db, author):
        ReviewAggregator(seeded_db).submit("loc-legacy", author, {"rating": 4})
        location = seeded_db.get_location("loc-legacy")
        assert location["location"] == "[23.5S, 46.6W]"
        assert location["latitude"] is None

    def test_submit_async(self, seeded_db, author, sample_payload):
        aggregator = ReviewAggregator(seeded_db)
        review = asyncio.run(aggregator.submit_async("loc-paulista", author, sample_payload))

        assert seeded_db.get_review(review.review_id) is not None
        assert seeded_db.get_location("loc-paulista")["review_count"] == 1


# =========================
# Failure Tests
# =========================
@pytest.mark.integration
class TestSubmitFailures:
    """Failed submissions leave the store unchanged"""

    @pytest.mark.parametrize("payload", [
        {"rating": 6},
        {"rating": -1},
        {"comment": "no rating"},
        {"rating": "5"},
        {"rating": True},
        {"rating": float("nan")},
        {"rating": 4, "feature_ratings": {"wheelchair": 7}},
        {"rating": 4, "feature_ratings": ["wheelchair"]},
        {"rating": 4, "comment": 12},
    ])
    def test_invalid_payload(self, seeded_db, author, mock_experience_service, payload):
        before = seeded_db.get_location("loc-paulista")
        aggregator = ReviewAggregator(seeded_db, mock_experience_service)

        with pytest.raises(ValidationError):
            aggregator.submit("loc-paulista", author, payload)

        after = seeded_db.get_location("loc-paulista")
        assert after["rating"] == before["rating"]
        assert after["review_count"] == before["review_count"]
        assert after["version"] == before["version"]
        assert _review_rows(seeded_db, "loc-paulista") == 0
        mock_experience_service.award.assert_not_called()

    def test_invalid_payload_never_reads_store(self, author):
        """Validation happens before any transaction"""
        db = MagicMock()
        with pytest.raises(ValidationError):
            ReviewAggregator(db).submit("loc-paulista", author, {"rating": 9})
        db.run_transaction.assert_not_called()

    def test_location_not_found(self, seeded_db, author, mock_experience_service):
        aggregator = ReviewAggregator(seeded_db, mock_experience_service)

        with pytest.raises(LocationNotFound) as exc_info:
            aggregator.submit("missing", author, {"rating": 4})

        assert exc_info.value.location_id == "missing"
        assert seeded_db.get_table_stats()["reviews"] == 0
        mock_experience_service.award.assert_not_called()

    def test_location_not_found_is_not_retried(self, seeded_db, author, monkeypatch):
        calls = []
        original_get = StoreTransaction.get

        def counting_get(self, collection, doc_id):
            calls.append(doc_id)
            return original_get(self, collection, doc_id)

        monkeypatch.setattr(StoreTransaction, "get", counting_get)
        with pytest.raises(LocationNotFound):
            ReviewAggregator(seeded_db).submit("missing", author, {"rating": 4})
        assert calls == ["missing"]

    def test_conflict_retried_from_fresh_read(self, seeded_db, author, monkeypatch):
        """Two conflicting attempts roll back, the third commits once"""
        attempts = []
        original_update = StoreTransaction.update

        def flaky_update(self, collection, doc_id, patch, expected_version=None):
            attempts.append(expected_version)
            if len(attempts) < 3:
                raise TransactionConflict("simulated conflict")
            return original_update(self, collection, doc_id, patch, expected_version)

        monkeypatch.setattr(StoreTransaction, "update", flaky_update)
        ReviewAggregator(seeded_db).submit("loc-paulista", author, {"rating": 4})

        assert len(attempts) == 3
        location = seeded_db.get_location("loc-paulista")
        assert location["review_count"] == 1
        assert _review_rows(seeded_db, "loc-paulista") == 1

    def test_retries_exhausted(self, seeded_db, author, mock_experience_service, monkeypatch):
        def always_conflict(self, collection, doc_id, patch, expected_version=None):
            raise TransactionConflict("simulated conflict")

        monkeypatch.setattr(StoreTransaction, "update", always_conflict)
        aggregator = ReviewAggregator(seeded_db, mock_experience_service)

        with pytest.raises(TransactionConflict) as exc_info:
            aggregator.submit("loc-paulista", author, {"rating": 4})

        assert exc_info.value.attempts == seeded_db.max_attempts
        assert _review_rows(seeded_db, "loc-paulista") == 0
        assert seeded_db.get_location("loc-paulista")["review_count"] == 0
        mock_experience_service.award.assert_not_called()


# =========================
# Experience Points Tests
# =========================
@pytest.mark.integration
class TestExperienceAward:
    """XP is awarded after commit and never fails a submission"""

    def test_award_after_commit(self, seeded_db, author, mock_experience_service):
        ReviewAggregator(seeded_db, mock_experience_service).submit(
            "loc-paulista", author, {"rating": 4}
        )
        mock_experience_service.award.assert_called_once_with("user-1", "review")

    def test_award_failure_keeps_review(self, seeded_db, author, mock_experience_service):
        mock_experience_service.award.side_effect = RuntimeError("XP service down")
        review = ReviewAggregator(seeded_db, mock_experience_service).submit(
            "loc-paulista", author, {"rating": 4}
        )

        assert seeded_db.get_review(review.review_id) is not None
        assert seeded_db.get_location("loc-paulista")["review_count"] == 1

    def test_no_user_no_award(self, seeded_db, mock_experience_service):
        ReviewAggregator(seeded_db, mock_experience_service).submit(
            "loc-paulista", Author(user_id=""), {"rating": 4}
        )
        mock_experience_service.award.assert_not_called()


# =========================
# Concurrency Tests
# =========================
@pytest.mark.integration
class TestConcurrentSubmissions:
    """Concurrent writers never lose an update"""

    def test_interleaved_commit_forces_retry(self, seeded_db, author, other_author, monkeypatch):
        """A review committed between read and write is not overwritten"""
        aggregator = ReviewAggregator(seeded_db)
        original_get = StoreTransaction.get
        state = {"interfered": False}
        errors = []

        def competing_submit():
            try:
                aggregator.submit("loc-paulista", other_author, {"rating": 1})
            except Exception as e:
                errors.append(e)

        def interfering_get(self, collection, doc_id):
            result = original_get(self, collection, doc_id)
            if collection == LOCATIONS and not state["interfered"]:
                state["interfered"] = True
                worker = threading.Thread(target=competing_submit)
                worker.start()
                worker.join()
            return result

        monkeypatch.setattr(StoreTransaction, "get", interfering_get)
        aggregator.submit("loc-paulista", author, {"rating": 5})

        assert errors == []
        location = seeded_db.get_location("loc-paulista")
        assert location["review_count"] == 2
        assert location["rating"] == pytest.approx(3.0)
        assert _review_rows(seeded_db, "loc-paulista") == 2

    def test_two_simultaneous_submissions(self, seeded_db, author, other_author):
        aggregator = ReviewAggregator(seeded_db)
        barrier = threading.Barrier(2)
        errors = []

        def submit(who, rating):
            try:
                barrier.wait()
                aggregator.submit("loc-paulista", who, {"rating": rating})
            except Exception as e:
                errors.append(e)

        threads = [
            threading.Thread(target=submit, args=(author, 4)),
            threading.Thread(target=submit, args=(other_author, 2)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        location = seeded_db.get_location("loc-paulista")
        assert location["review_count"] == 2
        assert location["rating"] == pytest.approx(3.0)

    @pytest.mark.slow
    def test_many_writers(self, sample_location):
        """Every committed review is reflected exactly once"""
        db = DatabaseManager(":memory:", max_attempts=100, retry_min_wait=0, retry_max_wait=0)
        db.initialize_schema()
        db.upsert_location(sample_location)
        aggregator = ReviewAggregator(db)

        writers = 8
        per_writer = 5
        barrier = threading.Barrier(writers)
        errors = []

        def work(n):
            try:
                barrier.wait()
                for i in range(per_writer):
                    aggregator.submit(
                        sample_location.location_id,
                        Author(user_id=f"user-{n}"),
                        {"rating": (n + i) % 6, "feature_ratings": {"ramp": 4}},
                    )
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=work, args=(n,)) for n in range(writers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        try:
            assert errors == []
            expected = [(n + i) % 6 for n in range(writers) for i in range(per_writer)]
            location = db.get_location(sample_location.location_id)
            assert location["review_count"] == len(expected)
            assert location["rating"] == pytest.approx(sum(expected) / len(expected))
            assert location["feature_stats"]["ramp"] == {"average": 4.0, "count": len(expected)}
        finally:
            db.close()

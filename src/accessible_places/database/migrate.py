"""
Import of exported location and review documents into DuckDB
Keeps legacy coordinate encodings as-is and rebuilds aggregates from reviews
"""
import logging
from pathlib import Path
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Iterable, List

from .. import utils
from ..geo import extract_coordinates
from .manager import DatabaseManager, StoreTransaction
from .models import Location, LOCATIONS
from .queries import LocationQueries
from ..transformers.aggregates import mean

logger = logging.getLogger(__name__)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO strings, epoch seconds, or exported {"seconds", "nanoseconds"} objects"""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, dict):
        seconds = value.get("seconds", value.get("_seconds"))
        if seconds is None:
            return None
        nanos = value.get("nanoseconds", value.get("_nanoseconds")) or 0
        value = seconds + nanos / 1e9
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed
    return None


class LocationImporter:
    """
    Imports exported documents into the database
    """

    def __init__(self, db_manager: DatabaseManager):
        """
        Initialize importer

        Args:
            db_manager: DatabaseManager instance (schema initialized)
        """
        self.db = db_manager

    def import_locations(self, records: Iterable[Dict[str, Any]]) -> Dict[str, int]:
        """
        Upsert location documents

        The documents' rating, review count and feature ratings replace
        those of locations already stored; rebuild_aggregates reconciles
        them with any reviews the store holds.

        Returns:
            Stats: imported, skipped (no id), without_coordinates
        """
        locations: List[Location] = []
        skipped = 0
        without_coordinates = 0

        for record in records:
            try:
                location = Location.from_document(record)
            except (ValueError, TypeError) as e:
                logger.warning(f"Skipping location document: {e}")
                skipped += 1
                continue
            if extract_coordinates(record) is None:
                without_coordinates += 1
                logger.debug(f"Location {location.location_id} has no usable coordinates")
            locations.append(location)

        imported = self.db.upsert_locations_bulk(locations, replace_aggregates=True)
        logger.info(
            f"Imported {imported} locations "
            f"({skipped} skipped, {without_coordinates} without coordinates)"
        )
        return {
            "imported": imported,
            "skipped": skipped,
            "without_coordinates": without_coordinates,
        }

    def import_reviews(self, records: Iterable[Dict[str, Any]]) -> Dict[str, int]:
        """
        Insert review documents as-is (legacy camelCase fields accepted)

        Aggregates are not touched; call rebuild_aggregates afterwards.
        Reviews with an invalid rating or no location are skipped.
        """
        imported = 0
        skipped = 0

        with self.db.transaction() as cursor:
            for record in records:
                review_id = record.get("review_id") or record.get("id")
                location_id = record.get("location_id") or record.get("locationId")
                try:
                    clean = utils.validate_review_payload(record)
                except utils.ValidationError as e:
                    logger.warning(f"Skipping review {review_id}: {e}")
                    skipped += 1
                    continue
                if not review_id or not location_id:
                    skipped += 1
                    continue

                cursor.execute("SELECT 1 FROM reviews WHERE review_id = ?", [str(review_id)])
                if cursor.fetchone() is not None:
                    logger.debug(f"Review {review_id} already imported")
                    skipped += 1
                    continue

                created_at = _parse_timestamp(record.get("created_at") or record.get("createdAt"))
                cursor.execute(
                    """
                    INSERT INTO reviews (
                        review_id, location_id, rating, comment, feature_ratings_json,
                        author_id, author_name, author_photo, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, COALESCE(CAST(? AS TIMESTAMP), CAST(CURRENT_TIMESTAMP AS TIMESTAMP)))
                    """,
                    [
                        str(review_id), str(location_id), clean["rating"], clean["comment"],
                        utils.dumps_compact(clean["feature_ratings"]),
                        record.get("author_id") or record.get("userId"),
                        record.get("author_name") or record.get("userName"),
                        record.get("author_photo") or record.get("photoURL"),
                        created_at,
                    ],
                )
                imported += 1

        logger.info(f"Imported {imported} reviews ({skipped} skipped)")
        return {"imported": imported, "skipped": skipped}

    def import_file(self, file_path: Path, kind: str = "locations") -> Dict[str, int]:
        """Import a JSON/NDJSON export of locations or reviews"""
        records = utils.read_records(file_path)
        logger.info(f"Read {len(records)} {kind} documents from {file_path}")
        if kind == "reviews":
            return self.import_reviews(records)
        return self.import_locations(records)


def rebuild_aggregates(
    db_manager: DatabaseManager,
    location_ids: Optional[Iterable[str]] = None
) -> List[str]:
    """
    Rewrite drifted location aggregates from their reviews

    Each location is fixed in its own transaction; recomputation happens
    inside it so concurrent submissions are not overwritten.

    Returns:
        IDs of the locations that were rewritten
    """
    queries = LocationQueries(db_manager)
    drifted = [d["location_id"] for d in queries.find_inconsistent_locations()]
    if location_ids is not None:
        wanted = set(location_ids)
        drifted = [loc_id for loc_id in drifted if loc_id in wanted]

    for location_id in drifted:
        def fix(txn: StoreTransaction, location_id=location_id):
            current = txn.get(LOCATIONS, location_id)
            if current is None:
                return
            expected = _recompute_in_txn(txn, location_id)
            txn.update(LOCATIONS, location_id, expected, expected_version=current["version"])

        db_manager.run_transaction(fix)
        logger.info(f"Rebuilt aggregates for location {location_id}")

    return drifted


def _recompute_in_txn(txn: StoreTransaction, location_id: str) -> Dict[str, Any]:
    txn.cursor.execute(
        "SELECT rating, feature_ratings_json FROM reviews WHERE location_id = ?",
        [location_id],
    )
    rows = txn.cursor.fetchall()

    totals: Dict[str, List[float]] = {}
    for _, raw in rows:
        for feature, value in (utils.loads_or_default(raw, {}) or {}).items():
            totals.setdefault(feature, []).append(float(value))

    ratings = [float(r[0]) for r in rows]
    return {
        "rating": mean(ratings) or 0.0,
        "review_count": len(ratings),
        "feature_stats": {
            feature: {"average": mean(values), "count": len(values)}
            for feature, values in totals.items()
        },
    }

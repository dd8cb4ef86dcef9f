"""
Pre-built queries over locations and reviews
Recomputes aggregates from the review population and answers listing queries
"""
import logging
from typing import Optional, List, Dict, Any

import pandas as pd

from ..geo import distance_to
from ..utils import loads_or_default
from ..transformers.aggregates import normalize_feature_stats

logger = logging.getLogger(__name__)


class LocationQueries:
    """
    Collection of read-only queries for location data
    Uses DuckDB for rating rollups, pandas for feature rollups
    """

    def __init__(self, db_manager):
        """
        Initialize with database manager

        Args:
            db_manager: DatabaseManager instance
        """
        self.db = db_manager
        self.conn = db_manager.connection

    # =========================
    # Aggregate Recomputation
    # =========================
    def recompute_aggregates(self, location_id: Optional[str] = None) -> Dict[str, Dict[str, Any]]:
        """
        Recompute aggregates from the reviews table

        Returns:
            {location_id: {"rating", "review_count", "feature_stats"}} for every
            location (locations without reviews get rating 0 and count 0)
        """
        params = []
        where = ""
        if location_id:
            where = "WHERE l.location_id = ?"
            params.append(location_id)

        sql = f"""
        SELECT
            l.location_id,
            COALESCE(AVG(r.rating), 0) AS rating,
            COUNT(r.review_id) AS review_count
        FROM locations l
        LEFT JOIN reviews r ON r.location_id = l.location_id
        {where}
        GROUP BY l.location_id
        ORDER BY l.location_id
        """
        totals = self.conn.execute(sql, params).fetchdf()

        features = self._feature_rollup(location_id)

        result = {}
        for row in totals.itertuples(index=False):
            result[row.location_id] = {
                "rating": float(row.rating),
                "review_count": int(row.review_count),
                "feature_stats": features.get(row.location_id, {}),
            }
        return result

    def _feature_rollup(self, location_id: Optional[str] = None) -> Dict[str, Dict[str, Dict[str, Any]]]:
        reviews = self.db.get_reviews_df(location_id=location_id)
        if reviews.empty:
            return {}

        rows = []
        for review in reviews.itertuples(index=False):
            ratings = loads_or_default(review.feature_ratings_json, {}) or {}
            for feature, value in ratings.items():
                rows.append({
                    "location_id": review.location_id,
                    "feature": feature,
                    "rating": float(value),
                })
        if not rows:
            return {}

        grouped = (
            pd.DataFrame(rows)
            .groupby(["location_id", "feature"])["rating"]
            .agg(average="mean", n="count")
            .reset_index()
        )

        rollup: Dict[str, Dict[str, Dict[str, Any]]] = {}
        for row in grouped.itertuples(index=False):
            rollup.setdefault(row.location_id, {})[row.feature] = {
                "average": float(row.average),
                "count": int(row.n),
            }
        return rollup

    def find_inconsistent_locations(self, tolerance: float = 1e-9) -> List[Dict[str, Any]]:
        """
        Locations whose stored aggregate differs from their reviews

        Returns:
            One entry per drifted location with stored and expected values
        """
        expected = self.recompute_aggregates()
        drifted = []

        for location in self.db.list_locations():
            want = expected.get(location["location_id"])
            if want is None:
                continue
            stored_features = normalize_feature_stats(location["feature_stats"])
            if (
                location["review_count"] != want["review_count"]
                or abs(location["rating"] - want["rating"]) > tolerance
                or not _same_features(stored_features, want["feature_stats"], tolerance)
            ):
                drifted.append({
                    "location_id": location["location_id"],
                    "stored": {
                        "rating": location["rating"],
                        "review_count": location["review_count"],
                        "feature_stats": stored_features,
                    },
                    "expected": want,
                })

        if drifted:
            logger.warning(f"{len(drifted)} location(s) have drifted aggregates")
        return drifted

    # =========================
    # Listings
    # =========================
    def top_rated(self, limit: int = 10, min_reviews: int = 1) -> pd.DataFrame:
        """Best rated locations with at least min_reviews reviews"""
        sql = """
        SELECT location_id, name, place_type, rating, review_count
        FROM locations
        WHERE review_count >= ?
        ORDER BY rating DESC, review_count DESC, location_id
        LIMIT ?
        """
        return self.conn.execute(sql, [min_reviews, limit]).fetchdf()

    def nearby(
        self,
        latitude: float,
        longitude: float,
        radius_km: float = 5.0
    ) -> List[Dict[str, Any]]:
        """
        Locations within radius_km of a point, nearest first

        Locations whose coordinates cannot be normalized are skipped.
        """
        results = []
        for location in self.db.list_locations():
            distance = distance_to(location, latitude, longitude)
            if distance is None or distance > radius_km:
                continue
            results.append({**location, "distance_km": distance})

        results.sort(key=lambda loc: loc["distance_km"])
        return results

    def get_overview_stats(self) -> Dict[str, Any]:
        """Get high-level statistics about the dataset"""
        row = self.conn.execute(
            """
            SELECT
                (SELECT COUNT(*) FROM locations) AS total_locations,
                (SELECT COUNT(*) FROM locations WHERE review_count > 0) AS reviewed_locations,
                (SELECT COUNT(*) FROM reviews) AS total_reviews,
                (SELECT COUNT(DISTINCT author_id) FROM reviews) AS total_authors,
                (SELECT AVG(rating) FROM reviews) AS avg_rating
            """
        ).fetchone()

        return {
            "total_locations": int(row[0]),
            "reviewed_locations": int(row[1]),
            "total_reviews": int(row[2]),
            "total_authors": int(row[3]),
            "avg_rating": float(row[4]) if row[4] is not None else 0,
        }


def _same_features(stored, expected, tolerance: float) -> bool:
    if set(stored) != set(expected):
        return False
    for feature, entry in expected.items():
        other = stored[feature]
        if other["count"] != entry["count"]:
            return False
        if abs(other["average"] - entry["average"]) > tolerance:
            return False
    return True

"""
Data models and schema definitions for the Accessible Places store
Uses dataclasses for Python-side representation, DuckDB for storage
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Any

from .. import config
from ..utils import dumps_compact, loads_or_default
from ..transformers.aggregates import feature_averages, normalize_feature_stats

LOCATIONS = "locations"
REVIEWS = "reviews"


@dataclass
class Author:
    """
    Submitting user as seen at submission time
    Copied onto the review and never re-synced
    """
    user_id: str
    display_name: Optional[str] = None
    photo_ref: Optional[str] = None

    def snapshot(self) -> Dict[str, Any]:
        return {
            "author_id": self.user_id,
            "author_name": self.display_name or config.DEFAULT_AUTHOR_NAME,
            "author_photo": self.photo_ref or None,
        }


@dataclass
class Location:
    """
    An accessible place and its review aggregate

    Coordinates are kept in whatever legacy shape they arrived in:
    latitude/longitude columns and/or the raw "location" field.
    """
    location_id: str
    name: str = ""
    address: str = ""
    place_type: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    location_raw: Any = None  # Legacy object, pair or string
    accessibility_features: List[str] = field(default_factory=list)
    rating: float = 0.0
    review_count: int = 0
    feature_stats: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    version: int = 0
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Location":
        """Build from an exported document (camelCase or snake_case keys)"""
        location_id = doc.get("location_id") or doc.get("id")
        if not location_id:
            raise ValueError("Location document has no id")

        review_count = doc.get("review_count", doc.get("reviewCount")) or 0
        raw_features = doc.get("feature_ratings", doc.get("featureRatings"))

        return cls(
            location_id=str(location_id),
            name=doc.get("name") or "",
            address=doc.get("address") or "",
            place_type=doc.get("place_type") or doc.get("type"),
            latitude=doc.get("latitude"),
            longitude=doc.get("longitude"),
            location_raw=doc.get("location"),
            accessibility_features=list(
                doc.get("accessibility_features") or doc.get("accessibilityFeatures") or []
            ),
            rating=float(doc.get("rating") or 0.0),
            review_count=int(review_count),
            feature_stats=normalize_feature_stats(raw_features, int(review_count)),
        )

    def to_params(self) -> List[Any]:
        """Column values in LOCATION_COLUMNS order"""
        return [
            self.location_id, self.name, self.address, self.place_type,
            _number_or_none(self.latitude), _number_or_none(self.longitude),
            dumps_compact(self.location_raw),
            dumps_compact(self.accessibility_features),
            self.rating, self.review_count,
            dumps_compact(self.feature_stats),
            self.version, self.created_at, self.updated_at,
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "location_id": self.location_id,
            "name": self.name,
            "address": self.address,
            "place_type": self.place_type,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "location": self.location_raw,
            "accessibility_features": list(self.accessibility_features),
            "rating": self.rating,
            "review_count": self.review_count,
            "feature_ratings": feature_averages(self.feature_stats),
            "feature_stats": self.feature_stats,
            "version": self.version,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class Review:
    """
    A single accessibility review
    Owned by its location through location_id; created once, never mutated
    """
    review_id: str
    location_id: str
    rating: float
    comment: Optional[str] = None
    feature_ratings: Dict[str, float] = field(default_factory=dict)
    author_id: Optional[str] = None
    author_name: Optional[str] = None
    author_photo: Optional[str] = None
    created_at: Optional[datetime] = None  # Assigned by the store

    def to_dict(self) -> Dict[str, Any]:
        return {
            "review_id": self.review_id,
            "location_id": self.location_id,
            "rating": self.rating,
            "comment": self.comment,
            "feature_ratings": dict(self.feature_ratings),
            "author_id": self.author_id,
            "author_name": self.author_name,
            "author_photo": self.author_photo,
            "created_at": self.created_at,
        }


def _number_or_none(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


# =========================
# Row Decoding
# =========================
LOCATION_COLUMNS = [
    "location_id", "name", "address", "place_type", "latitude", "longitude",
    "location_raw", "accessibility_features_json", "rating", "review_count",
    "feature_ratings_json", "version", "created_at", "updated_at",
]

REVIEW_COLUMNS = [
    "review_id", "location_id", "rating", "comment", "feature_ratings_json",
    "author_id", "author_name", "author_photo", "created_at",
]


def location_from_row(row: Dict[str, Any]) -> Location:
    """Rebuild a Location from a locations row keyed by column name"""
    review_count = int(row.get("review_count") or 0)
    return Location(
        location_id=row["location_id"],
        name=row.get("name") or "",
        address=row.get("address") or "",
        place_type=row.get("place_type"),
        latitude=row.get("latitude"),
        longitude=row.get("longitude"),
        location_raw=loads_or_default(row.get("location_raw")),
        accessibility_features=loads_or_default(row.get("accessibility_features_json"), []),
        rating=float(row.get("rating") or 0.0),
        review_count=review_count,
        feature_stats=normalize_feature_stats(
            loads_or_default(row.get("feature_ratings_json"), {}), review_count
        ),
        version=int(row.get("version") or 0),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def review_from_row(row: Dict[str, Any]) -> Review:
    """Rebuild a Review from a reviews row keyed by column name"""
    return Review(
        review_id=row["review_id"],
        location_id=row["location_id"],
        rating=float(row["rating"]),
        comment=row.get("comment"),
        feature_ratings=loads_or_default(row.get("feature_ratings_json"), {}),
        author_id=row.get("author_id"),
        author_name=row.get("author_name"),
        author_photo=row.get("author_photo"),
        created_at=row.get("created_at"),
    )


# =========================
# Schema SQL Definitions
# =========================
SCHEMA_SQL = """
-- Locations table: accessible places and their review aggregate
CREATE TABLE IF NOT EXISTS locations (
    location_id VARCHAR PRIMARY KEY,
    name VARCHAR,
    address VARCHAR,
    place_type VARCHAR,
    latitude DOUBLE,  -- Typed coordinates, when the document had them
    longitude DOUBLE,
    location_raw VARCHAR,  -- Legacy "location" field as JSON
    accessibility_features_json VARCHAR,  -- JSON array of feature keys
    rating DOUBLE DEFAULT 0,
    review_count INTEGER DEFAULT 0 CHECK (review_count >= 0),
    feature_ratings_json VARCHAR,  -- JSON {feature: {average, count}}
    version INTEGER DEFAULT 0,  -- Bumped on every aggregate update
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- Reviews table: insert-only, one row per submission
CREATE TABLE IF NOT EXISTS reviews (
    review_id VARCHAR PRIMARY KEY,
    location_id VARCHAR NOT NULL,
    rating DOUBLE NOT NULL CHECK (rating >= 0 AND rating <= 5),
    comment VARCHAR,
    feature_ratings_json VARCHAR,  -- JSON {feature: rating}
    author_id VARCHAR,  -- Denormalized author snapshot
    author_name VARCHAR,
    author_photo VARCHAR,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_reviews_location_id ON reviews(location_id);
CREATE INDEX IF NOT EXISTS idx_reviews_author_id ON reviews(author_id);

-- Experience events: one row per awarded action
CREATE TABLE IF NOT EXISTS experience_events (
    user_id VARCHAR NOT NULL,
    action_kind VARCHAR NOT NULL,
    points INTEGER NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_experience_user ON experience_events(user_id);
"""

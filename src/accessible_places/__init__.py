"""
Accessible Places - Review aggregation and coordinate normalization

Core of a directory of physically-accessible places:
1. Normalizing legacy coordinate encodings on location records
2. Folding new reviews into per-location and per-feature rating averages
3. Storing locations and reviews in DuckDB with atomic, retried transactions

Usage:
    from accessible_places import config, geo
    from accessible_places.reviews import ReviewAggregator
    from accessible_places.database import DatabaseManager, Author
"""

__version__ = "1.0.0"

# Make key modules available at package level
from . import config
from . import geo
from .utils import (
    AccessiblePlacesError,
    ValidationError,
    LocationNotFound,
    TransactionConflict,
)


def get_database_manager(*args, **kwargs):
    """Get a DatabaseManager instance (lazy import)"""
    from .database import DatabaseManager
    return DatabaseManager(*args, **kwargs)


def get_review_aggregator(db_manager, experience_service=None):
    """Get a ReviewAggregator instance (lazy import)"""
    from .reviews import ReviewAggregator
    return ReviewAggregator(db_manager, experience_service)


__all__ = [
    "config",
    "geo",
    "__version__",
    "AccessiblePlacesError",
    "ValidationError",
    "LocationNotFound",
    "TransactionConflict",
    "get_database_manager",
    "get_review_aggregator",
]

"""
Database module for Accessible Places
Provides DuckDB-based storage for locations and reviews
"""
from .manager import DatabaseManager, StoreTransaction
from .models import Author, Location, Review, LOCATIONS, REVIEWS
from .queries import LocationQueries

__all__ = [
    "DatabaseManager",
    "StoreTransaction",
    "Author",
    "Location",
    "Review",
    "LOCATIONS",
    "REVIEWS",
    "LocationQueries",
]

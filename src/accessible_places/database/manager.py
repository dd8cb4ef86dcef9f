"""
Database Manager for the Accessible Places store
Handles DuckDB connections, document-style reads/writes and retried transactions
"""
import logging
from pathlib import Path
from datetime import datetime
from typing import Optional, List, Dict, Any, Union, Callable, TypeVar
from contextlib import contextmanager

import duckdb
import pandas as pd
from tenacity import (
    Retrying,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from .. import config
from ..utils import TransactionConflict, dumps_compact
from .models import (
    Location, Review, LOCATIONS, REVIEWS,
    LOCATION_COLUMNS, REVIEW_COLUMNS, SCHEMA_SQL,
    location_from_row, review_from_row,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Aggregate fields a transaction may patch on a location
_LOCATION_PATCH_COLUMNS = {
    "rating": "rating",
    "review_count": "review_count",
    "feature_stats": "feature_ratings_json",
}


def _fetch_dicts(cursor, sql: str, params: Optional[List[Any]] = None) -> List[Dict[str, Any]]:
    cursor.execute(sql, params or [])
    columns = [d[0] for d in cursor.description]
    return [dict(zip(columns, row)) for row in cursor.fetchall()]


def _is_conflict(exc: Exception) -> bool:
    # Duplicate keys are caller errors, not write-write races
    if isinstance(exc, duckdb.ConstraintException):
        return False
    if isinstance(exc, duckdb.TransactionException):
        return True
    return isinstance(exc, duckdb.Error) and "conflict" in str(exc).lower()


class StoreTransaction:
    """
    Document-store verbs bound to one open DuckDB transaction

    Collections are "locations" and "reviews". Nothing written here is
    visible to other readers until the surrounding run_transaction commits.
    """

    def __init__(self, cursor: duckdb.DuckDBPyConnection):
        self.cursor = cursor

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Read one document, None if absent"""
        if collection == LOCATIONS:
            rows = _fetch_dicts(
                self.cursor,
                f"SELECT {', '.join(LOCATION_COLUMNS)} FROM locations WHERE location_id = ?",
                [doc_id],
            )
            return location_from_row(rows[0]).to_dict() if rows else None
        if collection == REVIEWS:
            rows = _fetch_dicts(
                self.cursor,
                f"SELECT {', '.join(REVIEW_COLUMNS)} FROM reviews WHERE review_id = ?",
                [doc_id],
            )
            return review_from_row(rows[0]).to_dict() if rows else None
        raise ValueError(f"Unknown collection: {collection}")

    def set(self, collection: str, doc_id: str, value: Union[Review, Location]) -> Dict[str, Any]:
        """
        Create a document

        Reviews are insert-only: an existing review_id raises a constraint
        error instead of being overwritten. The store assigns created_at.
        Locations are upserted, keeping an existing row's aggregates.
        """
        if collection == REVIEWS:
            if value.review_id != doc_id:
                raise ValueError("Review id does not match document id")
            self.cursor.execute(
                """
                INSERT INTO reviews (
                    review_id, location_id, rating, comment, feature_ratings_json,
                    author_id, author_name, author_photo
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                RETURNING created_at
                """,
                [
                    value.review_id, value.location_id, value.rating, value.comment,
                    dumps_compact(value.feature_ratings),
                    value.author_id, value.author_name, value.author_photo,
                ],
            )
            value.created_at = self.cursor.fetchone()[0]
            return value.to_dict()
        if collection == LOCATIONS:
            if value.location_id != doc_id:
                raise ValueError("Location id does not match document id")
            _upsert_location(self.cursor, value)
            return value.to_dict()
        raise ValueError(f"Unknown collection: {collection}")

    def update(
        self,
        collection: str,
        doc_id: str,
        patch: Dict[str, Any],
        expected_version: Optional[int] = None
    ) -> int:
        """
        Patch a location's aggregate fields and bump its version

        Args:
            collection: Must be "locations"
            doc_id: location_id
            patch: Any of rating, review_count, feature_stats
            expected_version: Compare-and-set guard; a mismatch means another
                              writer committed first

        Returns:
            New version

        Raises:
            TransactionConflict: expected_version no longer matches
        """
        if collection != LOCATIONS:
            raise ValueError(f"Collection '{collection}' does not support updates")

        unknown = set(patch) - set(_LOCATION_PATCH_COLUMNS)
        if unknown:
            raise ValueError(f"Cannot patch location fields: {sorted(unknown)}")

        assignments = []
        params: List[Any] = []
        for key, value in patch.items():
            assignments.append(f"{_LOCATION_PATCH_COLUMNS[key]} = ?")
            params.append(dumps_compact(value) if key == "feature_stats" else value)
        assignments.append("version = version + 1")
        assignments.append("updated_at = CAST(CURRENT_TIMESTAMP AS TIMESTAMP)")

        sql = f"UPDATE locations SET {', '.join(assignments)} WHERE location_id = ?"
        params.append(doc_id)
        if expected_version is not None:
            sql += " AND version = ?"
            params.append(expected_version)
        sql += " RETURNING version"

        self.cursor.execute(sql, params)
        row = self.cursor.fetchone()
        if row is None:
            raise TransactionConflict(
                f"Location {doc_id} changed since it was read (expected version {expected_version})"
            )
        return row[0]


# Descriptive columns a re-saved location may change
_LOCATION_DESCRIPTIVE_COLUMNS = [
    "name", "address", "place_type", "latitude", "longitude",
    "location_raw", "accessibility_features_json",
]
# Review aggregate columns, owned by review submissions once a row exists
_LOCATION_AGGREGATE_COLUMNS = ["rating", "review_count", "feature_ratings_json"]


def _upsert_location(cursor, location: Location, replace_aggregates: bool = False):
    """
    Insert a location, or update an existing row's descriptive fields

    An existing row keeps its rating, review_count and feature stats unless
    replace_aggregates is set (restoring exported documents).
    """
    columns = list(_LOCATION_DESCRIPTIVE_COLUMNS)
    if replace_aggregates:
        columns += _LOCATION_AGGREGATE_COLUMNS
    assignments = [f"{column} = EXCLUDED.{column}" for column in columns]
    assignments.append("version = version + 1")
    assignments.append("updated_at = EXCLUDED.updated_at")

    placeholders = ", ".join("?" for _ in LOCATION_COLUMNS)
    cursor.execute(
        f"""
        INSERT INTO locations ({', '.join(LOCATION_COLUMNS)})
        VALUES ({placeholders})
        ON CONFLICT (location_id) DO UPDATE SET {', '.join(assignments)}
        """,
        location.to_params(),
    )


class DatabaseManager:
    """
    Manages the DuckDB database backing locations and reviews

    Features:
    - Schema management
    - Document-style reads for locations and reviews
    - Atomic read-modify-write transactions with optimistic retry
    - Pandas exports for analysis
    """

    def __init__(
        self,
        db_path: Optional[Union[str, Path]] = None,
        read_only: bool = False,
        max_attempts: Optional[int] = None,
        retry_min_wait: Optional[float] = None,
        retry_max_wait: Optional[float] = None
    ):
        """
        Initialize database manager

        Args:
            db_path: Path to DuckDB file, or ":memory:" for an in-memory
                     database. Default is config.DEFAULT_DB_PATH
            read_only: Open database in read-only mode
            max_attempts: Transaction attempts before TransactionConflict
            retry_min_wait: Minimum backoff between attempts (seconds)
            retry_max_wait: Maximum backoff between attempts (seconds)
        """
        if db_path is None:
            db_path = config.DEFAULT_DB_PATH

        self.db_path = None if str(db_path) == ":memory:" else Path(db_path)
        self.read_only = read_only
        self.max_attempts = max_attempts or config.TRANSACTION_CONFIG["max_attempts"]
        self.retry_min_wait = (
            config.TRANSACTION_CONFIG["retry_min_wait"] if retry_min_wait is None else retry_min_wait
        )
        self.retry_max_wait = (
            config.TRANSACTION_CONFIG["retry_max_wait"] if retry_max_wait is None else retry_max_wait
        )
        self._connection: Optional[duckdb.DuckDBPyConnection] = None

        # Ensure directory exists
        if self.db_path:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        logger.info(f"DatabaseManager initialized: {self.db_path or 'in-memory'}")

    @property
    def connection(self) -> duckdb.DuckDBPyConnection:
        """Get or create database connection"""
        if self._connection is None:
            if self.db_path:
                self._connection = duckdb.connect(
                    str(self.db_path),
                    read_only=self.read_only
                )
            else:
                self._connection = duckdb.connect(":memory:")
        return self._connection

    def close(self):
        """Close database connection"""
        if self._connection:
            self._connection.close()
            self._connection = None
            logger.debug("Database connection closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @contextmanager
    def transaction(self):
        """Context manager for a single, non-retried transaction on a fresh cursor"""
        cursor = self.connection.cursor()
        cursor.execute("BEGIN TRANSACTION")
        try:
            yield cursor
            cursor.execute("COMMIT")
        except Exception:
            self._rollback(cursor)
            raise
        finally:
            cursor.close()

    def _query(self, sql: str, params: Optional[List[Any]] = None) -> List[Dict[str, Any]]:
        cursor = self.connection.cursor()
        try:
            return _fetch_dicts(cursor, sql, params)
        finally:
            cursor.close()

    @staticmethod
    def _rollback(cursor):
        try:
            cursor.execute("ROLLBACK")
        except duckdb.Error as e:
            # A failed COMMIT already ended the transaction
            logger.debug(f"Rollback skipped: {e}")

    # =========================
    # Transactions
    # =========================
    def run_transaction(self, fn: Callable[[StoreTransaction], T]) -> T:
        """
        Run fn(txn) atomically, retrying from a fresh read on conflict

        fn must derive everything it writes from what it reads through txn,
        since it may run several times. Exceptions other than write
        conflicts roll back and propagate without retry.

        Raises:
            TransactionConflict: conflicts persisted for max_attempts attempts
        """
        retrying = Retrying(
            reraise=True,
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.retry_min_wait or 0,
                min=self.retry_min_wait,
                max=self.retry_max_wait
            ),
            retry=retry_if_exception_type(TransactionConflict),
            before_sleep=before_sleep_log(logger, logging.WARNING),
        )
        try:
            return retrying(self._attempt, fn)
        except TransactionConflict as e:
            logger.error(f"Transaction gave up after {self.max_attempts} attempts: {e}")
            raise TransactionConflict(
                f"Transaction conflict persisted after {self.max_attempts} attempts: {e}",
                attempts=self.max_attempts,
            ) from e

    def _attempt(self, fn: Callable[[StoreTransaction], T]) -> T:
        cursor = self.connection.cursor()
        try:
            cursor.execute("BEGIN TRANSACTION")
            result = fn(StoreTransaction(cursor))
            cursor.execute("COMMIT")
            return result
        except TransactionConflict:
            self._rollback(cursor)
            raise
        except duckdb.Error as e:
            self._rollback(cursor)
            if _is_conflict(e):
                logger.warning(f"Write conflict, transaction will be retried: {e}")
                raise TransactionConflict(str(e)) from e
            raise
        except Exception:
            self._rollback(cursor)
            raise
        finally:
            cursor.close()

    # =========================
    # Schema Management
    # =========================
    def initialize_schema(self):
        """Create database schema if not exists"""
        logger.info("Initializing database schema...")

        statements = [s.strip() for s in SCHEMA_SQL.split(";") if s.strip()]
        for stmt in statements:
            self.connection.execute(stmt)

        logger.info("Database schema initialized")

    def get_table_stats(self) -> Dict[str, int]:
        """Get row counts for all tables"""
        tables = ["locations", "reviews", "experience_events"]
        stats = {}

        for table in tables:
            try:
                result = self.connection.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
                stats[table] = result[0] if result else 0
            except duckdb.CatalogException:
                stats[table] = 0

        return stats

    # =========================
    # Location Operations
    # =========================
    def upsert_location(self, location: Location) -> str:
        """
        Create a location, or update an existing one's descriptive fields

        The stored rating, review_count and feature stats of an existing
        location are kept; only review submissions change them.
        """
        location.updated_at = datetime.now()
        with self.transaction() as cursor:
            _upsert_location(cursor, location)
        return location.location_id

    def upsert_locations_bulk(self, locations: List[Location], replace_aggregates: bool = False) -> int:
        """
        Upsert many locations in one transaction

        Args:
            locations: Locations to write
            replace_aggregates: Overwrite existing rows' aggregates with the
                                documents' values (restoring an export);
                                run rebuild_aggregates afterwards when the
                                store already holds reviews
        """
        if not locations:
            return 0

        with self.transaction() as cursor:
            for location in locations:
                location.updated_at = datetime.now()
                _upsert_location(cursor, location, replace_aggregates)

        logger.info(f"Upserted {len(locations)} locations")
        return len(locations)

    def get_location(self, location_id: str) -> Optional[Dict[str, Any]]:
        """Get a location record by ID, in the shape the coordinate normalizer reads"""
        rows = self._query(
            f"SELECT {', '.join(LOCATION_COLUMNS)} FROM locations WHERE location_id = ?",
            [location_id],
        )
        return location_from_row(rows[0]).to_dict() if rows else None

    def list_locations(self, place_type: Optional[str] = None) -> List[Dict[str, Any]]:
        """List location records, optionally filtered by place type"""
        sql = f"SELECT {', '.join(LOCATION_COLUMNS)} FROM locations"
        params = []
        if place_type:
            sql += " WHERE place_type = ?"
            params.append(place_type)
        sql += " ORDER BY location_id"

        rows = self._query(sql, params)
        return [location_from_row(row).to_dict() for row in rows]

    def get_locations_df(self) -> pd.DataFrame:
        """Get locations as DataFrame (JSON columns left encoded)"""
        return self.connection.execute("SELECT * FROM locations").fetchdf()

    # =========================
    # Review Operations
    # =========================
    def get_review(self, review_id: str) -> Optional[Dict[str, Any]]:
        """Get a review by ID"""
        rows = self._query(
            f"SELECT {', '.join(REVIEW_COLUMNS)} FROM reviews WHERE review_id = ?",
            [review_id],
        )
        return review_from_row(rows[0]).to_dict() if rows else None

    def get_reviews(self, location_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Reviews for a location, newest first

        created_at comes from each submitting transaction, so commit order
        and timestamp order can differ.
        """
        sql = (
            f"SELECT {', '.join(REVIEW_COLUMNS)} FROM reviews "
            "WHERE location_id = ? ORDER BY created_at DESC, review_id"
        )
        params: List[Any] = [location_id]
        if limit:
            sql += " LIMIT ?"
            params.append(int(limit))

        rows = self._query(sql, params)
        return [review_from_row(row).to_dict() for row in rows]

    def get_reviews_df(
        self,
        location_id: Optional[str] = None,
        author_id: Optional[str] = None,
        limit: Optional[int] = None
    ) -> pd.DataFrame:
        """Get reviews as DataFrame with optional filters"""
        conditions = []
        params = []

        if location_id:
            conditions.append("location_id = ?")
            params.append(location_id)
        if author_id:
            conditions.append("author_id = ?")
            params.append(author_id)

        where = " AND ".join(conditions) if conditions else "1=1"
        sql = f"SELECT * FROM reviews WHERE {where} ORDER BY created_at"

        if limit:
            sql += f" LIMIT {int(limit)}"

        return self.connection.execute(sql, params).fetchdf()

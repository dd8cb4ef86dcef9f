"""
Shared utilities for the Accessible Places core
Contains the error taxonomy, logging setup, JSON helpers and payload validators
"""
import json
import logging
import logging.config
from pathlib import Path
from typing import Dict, Any, List, Mapping, Optional, Union

from . import config

logger = logging.getLogger(__name__)


# =========================
# Custom Exceptions
# =========================
class AccessiblePlacesError(Exception):
    """Base exception for review aggregation errors"""
    pass


class ValidationError(AccessiblePlacesError, ValueError):
    """Raised when a review payload is missing a rating or is out of range"""
    pass


class LocationNotFound(AccessiblePlacesError, LookupError):
    """Raised when the target location does not exist"""

    def __init__(self, location_id: str):
        super().__init__(f"Location not found: {location_id}")
        self.location_id = location_id


class TransactionConflict(AccessiblePlacesError):
    """Raised when optimistic-concurrency retries are exhausted"""

    def __init__(self, message: str, attempts: Optional[int] = None):
        super().__init__(message)
        self.attempts = attempts


# =========================
# Logging
# =========================
def setup_logging(debug: bool = False):
    """
    Apply config.LOG_CONFIG

    Args:
        debug: Lower the console handler to DEBUG
    """
    log_config = json.loads(json.dumps(config.LOG_CONFIG))
    if debug:
        log_config["handlers"]["console"]["level"] = "DEBUG"
    logging.config.dictConfig(log_config)


# =========================
# JSON Utilities
# =========================
def read_json(file_path: Path) -> Union[Dict[str, Any], List[Any]]:
    """
    Read JSON file safely

    Args:
        file_path: Path to JSON file

    Returns:
        Parsed content (empty dict if file doesn't exist or is invalid)
    """
    if not file_path.exists():
        return {}

    try:
        with open(file_path, "r", encoding="utf-8") as f:
            return json.load(f)
    except Exception as e:
        logger.warning(f"Failed to read JSON {file_path}: {e}")
        return {}


def write_json(file_path: Path, data: Any, atomic: bool = True):
    """
    Write JSON file safely

    Args:
        file_path: Path to output file
        data: Data to write
        atomic: Use atomic write (write to temp, then rename)
    """
    file_path.parent.mkdir(parents=True, exist_ok=True)

    if atomic:
        temp_path = file_path.with_suffix(file_path.suffix + ".tmp")
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2, default=str)
        temp_path.replace(file_path)
    else:
        with open(file_path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2, default=str)


def read_records(file_path: Path) -> List[Dict[str, Any]]:
    """
    Read exported documents from a JSON array, a JSON object keyed by id,
    or NDJSON (one document per line)

    Keyed objects get their key copied into "id" when the document has none.
    Blank or malformed NDJSON lines are skipped.
    """
    if file_path.suffix.lower() in (".ndjson", ".jsonl"):
        records = []
        with open(file_path, "r", encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(json.loads(line))
                except json.JSONDecodeError as e:
                    logger.warning(f"Skipping line {line_no} of {file_path}: {e}")
        return [r for r in records if isinstance(r, dict)]

    data = read_json(file_path)
    if isinstance(data, list):
        return [r for r in data if isinstance(r, dict)]

    records = []
    for key, value in data.items():
        if isinstance(value, dict):
            record = dict(value)
            record.setdefault("id", key)
            records.append(record)
    return records


def dumps_compact(data: Any) -> Optional[str]:
    """JSON-encode for a VARCHAR column; None stays NULL"""
    if data is None:
        return None
    return json.dumps(data, ensure_ascii=False, separators=(",", ":"))


def loads_or_default(raw: Optional[str], default: Any = None) -> Any:
    """Decode a JSON column, falling back to default on NULL or garbage"""
    if raw is None:
        return default
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        logger.debug(f"Undecodable JSON column value: {raw!r}")
        return default


# =========================
# Validation Utilities
# =========================
def validate_review_payload(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Validate and normalize a review payload

    Accepts "feature_ratings" or the legacy "featureRatings" key.

    Args:
        payload: {rating, comment, feature_ratings}

    Returns:
        Normalized dict with float rating, comment (str or None)
        and feature_ratings (dict of float)

    Raises:
        ValidationError: rating missing or outside [MIN_RATING, MAX_RATING],
                         malformed comment or feature ratings
    """
    if not isinstance(payload, Mapping):
        raise ValidationError("Review payload must be a mapping")

    rating = payload.get("rating")
    if rating is None:
        raise ValidationError("Rating is required")
    if not config.is_valid_rating(rating):
        raise ValidationError(
            f"Rating must be a number between {config.MIN_RATING} and "
            f"{config.MAX_RATING}, got {rating!r}"
        )

    comment = payload.get("comment")
    if comment is not None and not isinstance(comment, str):
        raise ValidationError("Comment must be a string")

    feature_ratings = payload.get("feature_ratings")
    if feature_ratings is None:
        feature_ratings = payload.get("featureRatings")
    if feature_ratings is None:
        feature_ratings = {}
    if not isinstance(feature_ratings, Mapping):
        raise ValidationError("Feature ratings must be a mapping")

    clean_features = {}
    for feature, value in feature_ratings.items():
        if not isinstance(feature, str) or not feature:
            raise ValidationError(f"Invalid feature key: {feature!r}")
        if not config.is_valid_rating(value):
            raise ValidationError(
                f"Feature '{feature}' rating must be between "
                f"{config.MIN_RATING} and {config.MAX_RATING}, got {value!r}"
            )
        clean_features[feature] = float(value)

    return {
        "rating": float(rating),
        "comment": comment,
        "feature_ratings": clean_features,
    }

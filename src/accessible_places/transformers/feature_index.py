"""
Feature Index Module - Display buckets for rating badges

Read-only views over aggregated ratings:
- feature_bucket: high / medium / low / unrated for one feature average
- rating_tier: new / excellent / good / regular / poor for a location rating
- build_feature_index / review_feature_index: per-feature rows for rendering
"""
from typing import Any, Dict, List, Mapping, Optional

from .. import config
from ..features import feature_label
from .aggregates import feature_averages

UNRATED = "unrated"
LOW = "low"


def feature_bucket(average: Optional[float]) -> str:
    """
    Bucket a feature average: >=4 high, >=3 medium, >0 low, else unrated

    A missing average (feature never rated) is unrated, and so is 0.
    """
    if average is None:
        return UNRATED
    for bucket, threshold in config.FEATURE_BUCKET_THRESHOLDS:
        if average >= threshold:
            return bucket
    if average > 0:
        return LOW
    return UNRATED


def rating_tier(rating: Optional[float]) -> str:
    """Location badge for an overall rating; missing or 0 means a new place"""
    if not rating:
        return "new"
    for tier, threshold in config.RATING_TIER_THRESHOLDS:
        if rating >= threshold:
            return tier
    return "poor"


def _rows(keys, averages: Mapping[str, float]) -> List[Dict[str, Any]]:
    rows = []
    for key in keys:
        average = averages.get(key)
        rows.append({
            "feature": key,
            "label": feature_label(key),
            "average": average,
            "bucket": feature_bucket(average),
        })
    return rows


def build_feature_index(location: Mapping[str, Any]) -> List[Dict[str, Any]]:
    """
    One row per accessibility feature of a location record

    Declared features (accessibility_features) come first in their declared
    order, followed by any other feature that has received ratings.
    """
    averages = feature_averages(location.get("feature_ratings"))
    keys = list(location.get("accessibility_features") or [])
    keys.extend(sorted(k for k in averages if k not in keys))
    return _rows(keys, averages)


def review_feature_index(review: Mapping[str, Any]) -> List[Dict[str, Any]]:
    """One row per feature rated in a single review"""
    averages = {
        k: float(v) for k, v in (review.get("feature_ratings") or {}).items()
    }
    return _rows(averages.keys(), averages)

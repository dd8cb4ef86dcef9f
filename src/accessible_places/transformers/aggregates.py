"""
Aggregates Module - Incremental rating means

Pure functions that fold one new review into a location's running averages:
- overall rating mean
- per-feature {average, count} pairs, each feature counted independently

No rounding is applied; display rounding belongs to rendering.
"""
from typing import Any, Dict, Mapping, Optional

FeatureStats = Dict[str, Dict[str, Any]]


def fold_mean(old_mean: Optional[float], old_count: Optional[int], new_value: float) -> float:
    """
    Fold one value into a running mean

    (old_mean * old_count + new_value) / (old_count + 1)

    A missing mean or a zero/missing count starts a fresh mean, so the
    result is new_value.
    """
    count = old_count or 0
    if count <= 0:
        return float(new_value)
    mean = old_mean or 0.0
    return (mean * count + new_value) / (count + 1)


def normalize_feature_stats(raw: Optional[Mapping[str, Any]], fallback_count: int = 0) -> FeatureStats:
    """
    Coerce stored feature aggregates into {feature: {"average", "count"}}

    Legacy documents keep only a bare mean per feature. Those entries get
    `fallback_count` as their count (at least 1, since a mean exists), which
    is the location's review count when called from the aggregator.
    """
    stats: FeatureStats = {}
    if not raw:
        return stats

    for feature, entry in raw.items():
        if isinstance(entry, Mapping):
            average = entry.get("average")
            count = entry.get("count") or 0
        else:
            average = entry
            count = max(fallback_count or 0, 1)
        if average is None:
            continue
        stats[feature] = {"average": float(average), "count": int(count)}
    return stats


def fold_feature_ratings(
    prior: Optional[Mapping[str, Any]],
    new_ratings: Optional[Mapping[str, float]],
    fallback_count: int = 0
) -> FeatureStats:
    """
    Fold a review's feature ratings into the location's per-feature stats

    Features absent from new_ratings are carried over unchanged. A feature
    rated for the first time starts from count 0.

    Args:
        prior: Stored stats ({feature: {"average", "count"}} or legacy
               {feature: mean})
        new_ratings: {feature: rating} from the review
        fallback_count: Count assumed for legacy bare means

    Returns:
        New stats mapping (prior is not mutated)
    """
    stats = normalize_feature_stats(prior, fallback_count)

    for feature, value in (new_ratings or {}).items():
        entry = stats.get(feature, {"average": 0.0, "count": 0})
        stats[feature] = {
            "average": fold_mean(entry["average"], entry["count"], value),
            "count": entry["count"] + 1,
        }
    return stats


def feature_averages(stats: Optional[Mapping[str, Any]]) -> Dict[str, float]:
    """Flatten feature stats into {feature: average}"""
    return {
        feature: entry["average"]
        for feature, entry in normalize_feature_stats(stats).items()
    }


def mean(values) -> Optional[float]:
    """Arithmetic mean, None for an empty iterable"""
    values = list(values)
    if not values:
        return None
    return sum(values) / len(values)

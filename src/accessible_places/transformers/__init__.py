"""
Transformers Module - Rating math and display views

- aggregates: incremental means for the overall and per-feature ratings
- feature_index: display buckets and badge tiers derived from the aggregates
"""

from .aggregates import (
    fold_mean,
    fold_feature_ratings,
    normalize_feature_stats,
    feature_averages,
    mean,
)

from .feature_index import (
    feature_bucket,
    rating_tier,
    build_feature_index,
    review_feature_index,
)

__all__ = [
    # Rating math
    "fold_mean",
    "fold_feature_ratings",
    "normalize_feature_stats",
    "feature_averages",
    "mean",
    # Display
    "feature_bucket",
    "rating_tier",
    "build_feature_index",
    "review_feature_index",
]

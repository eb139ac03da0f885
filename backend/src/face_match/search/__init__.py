"""Search module for selfie-based photo search.

This module provides:
- MatchAggregator for searching an event's collection by image
- Result utilities: per-photo deduplication, ranking, metadata join, formatting

Usage:
    from face_match.search import MatchAggregator

    aggregator = MatchAggregator(vision=vision, store=store, provisioner=provisioner)
    outcome = aggregator.search('42', selfie_bytes)
"""

from .aggregator import MatchAggregator, SearchOutcome, SearchStatus
from .results import (
    deduplicate_by_photo,
    rank_results,
    join_photo_metadata,
    format_results_simple,
    compute_result_statistics,
)

__all__ = [
    # Aggregator
    'MatchAggregator',
    'SearchOutcome',
    'SearchStatus',

    # Result utilities
    'deduplicate_by_photo',
    'rank_results',
    'join_photo_metadata',
    'format_results_simple',
    'compute_result_statistics',
]

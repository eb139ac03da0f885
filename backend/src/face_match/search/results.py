"""Result deduplication, ranking and formatting utilities.

A selfie search returns one raw match per matching face, so the same photo
can appear several times (several faces of one person, duplicate
detections). These helpers collapse raw matches to one per photo, rank them
and join them with stored photo metadata.
"""

from typing import List, Dict, Any, Optional, Callable, Iterable
import logging

from ..face import FaceMatch, MatchResult

logger = logging.getLogger(__name__)


def deduplicate_by_photo(matches: Iterable[FaceMatch]) -> List[FaceMatch]:
    """Keep only the highest-similarity match per photo id.

    Matches without an external id cannot be joined back to a photo and
    are dropped. On equal similarity the first match seen is kept.

    Args:
        matches: Raw matches

    Returns:
        One FaceMatch per photo id, in first-seen order
    """
    best: Dict[str, FaceMatch] = {}

    for match in matches:
        photo_id = match.external_id
        if not photo_id:
            continue
        current = best.get(photo_id)
        if current is None or match.similarity > current.similarity:
            best[photo_id] = match

    return list(best.values())


def rank_results(
    results: List[MatchResult],
    key: Optional[Callable[[MatchResult], float]] = None,
    reverse: bool = True
) -> List[MatchResult]:
    """Rank match results by a custom key.

    Args:
        results: List of match results
        key: Function to extract ranking key (default: similarity score)
        reverse: If True, sort in descending order (default for similarity)

    Returns:
        New list, sorted stably
    """
    if key is None:
        key = lambda r: r.similarity

    return sorted(results, key=key, reverse=reverse)


def join_photo_metadata(
    matches: List[FaceMatch],
    photos: Iterable[Any],
    url_for: Optional[Callable[[Any], Optional[str]]] = None
) -> List[MatchResult]:
    """Join deduplicated matches with photo records.

    Matches whose photo id has no stored record are dropped and logged.

    Args:
        matches: Deduplicated matches
        photos: Photo records with `id` and `storage_url` attributes
        url_for: Fallback URL builder for photos without a stored URL

    Returns:
        MatchResult list in the order of `matches`
    """
    by_id = {str(photo.id): photo for photo in photos}
    results = []
    missing = []

    for match in matches:
        photo = by_id.get(str(match.external_id))
        if photo is None:
            missing.append(match.external_id)
            continue

        image_url = photo.storage_url
        if not image_url and url_for is not None:
            image_url = url_for(photo)

        results.append(MatchResult(
            photo_id=str(photo.id),
            similarity=match.similarity,
            bounding_box=match.bounding_box,
            face_id=match.face_id,
            image_url=image_url,
            confidence=match.confidence
        ))

    if missing:
        logger.warning(f"Dropped {len(missing)} match(es) with no stored photo: {missing}")

    return results


def format_results_simple(
    results: List[MatchResult],
    max_results: Optional[int] = None
) -> List[Dict[str, Any]]:
    """Format match results as plain dictionaries.

    Args:
        results: List of match results
        max_results: Maximum results to include

    Returns:
        List of dictionaries with rounded scores
    """
    formatted = []

    for rank, result in enumerate(results[:max_results] if max_results else results, start=1):
        entry = result.to_dict()
        entry['rank'] = rank
        entry['similarity'] = round(result.similarity, 4)
        entry['confidence'] = round(result.confidence, 4)
        formatted.append(entry)

    return formatted


def compute_result_statistics(results: List[MatchResult]) -> Dict[str, Any]:
    """Compute summary statistics over match results.

    Returns:
        Dictionary with count and min/max/mean similarity
    """
    if not results:
        return {'count': 0, 'min_similarity': None, 'max_similarity': None, 'mean_similarity': None}

    similarities = [r.similarity for r in results]
    return {
        'count': len(results),
        'min_similarity': min(similarities),
        'max_similarity': max(similarities),
        'mean_similarity': sum(similarities) / len(similarities),
    }

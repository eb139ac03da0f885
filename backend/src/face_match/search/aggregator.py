"""Match aggregator for selfie searches.

This module provides the MatchAggregator class, which searches an event's
face collection with a query image and turns the raw per-face matches into
a deduplicated, similarity-ranked list of photos.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Dict, Any
import logging

from ..face import MatchResult, ValidationError
from ..provisioner import CollectionProvisioner
from ..storage import PhotoStore, BlobStore
from ..vision import BaseVisionService, ErrorKind, VisionServiceError
from .results import deduplicate_by_photo, join_photo_metadata, rank_results, format_results_simple

logger = logging.getLogger(__name__)


DEFAULT_THRESHOLD = 80.0
DEFAULT_MAX_RESULTS = 100


class SearchStatus(str, Enum):
    OK = "ok"
    NO_COLLECTION = "no_collection"


@dataclass
class SearchOutcome:
    """Result of a selfie search.

    Attributes:
        status: OK, or NO_COLLECTION when nothing was indexed for the event yet
        collection_id: Collection that was searched
        matches: Ranked matches (empty for NO_COLLECTION)
        raw_match_count: Matches returned by the vision service before dedup
        searched_face_confidence: Detection confidence of the query face
    """
    status: SearchStatus
    collection_id: str
    matches: List[MatchResult] = field(default_factory=list)
    raw_match_count: int = 0
    searched_face_confidence: Optional[float] = None

    @property
    def no_collection(self) -> bool:
        return self.status == SearchStatus.NO_COLLECTION

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'matches': format_results_simple(self.matches),
            'status': self.status.value,
            'collection_id': self.collection_id,
        }
        if self.no_collection:
            result['code'] = 'COLLECTION_NOT_FOUND'
        if self.searched_face_confidence is not None:
            result['searched_face_confidence'] = self.searched_face_confidence
        return result


class MatchAggregator:
    """Searches an event's collection and aggregates matches per photo.

    Usage:
        aggregator = MatchAggregator(vision=vision, store=store, provisioner=provisioner)

        outcome = aggregator.search(event_id='42', image_bytes=selfie)
        if outcome.no_collection:
            print("Nothing uploaded yet")
        for match in outcome.matches:
            print(match.photo_id, match.similarity, match.image_url)
    """

    def __init__(
        self,
        vision: BaseVisionService,
        store: PhotoStore,
        provisioner: CollectionProvisioner,
        blobs: Optional[BlobStore] = None,
        default_threshold: float = DEFAULT_THRESHOLD,
        default_max_results: int = DEFAULT_MAX_RESULTS
    ):
        """Initialize aggregator.

        Args:
            vision: Vision service client
            store: Photo metadata store
            provisioner: Provisioner used for collection key derivation
            blobs: Blob store used to build URLs for photos without a stored URL
            default_threshold: Default similarity threshold (0-100)
            default_max_results: Default maximum raw matches
        """
        self.vision = vision
        self.store = store
        self.provisioner = provisioner
        self.blobs = blobs
        self.default_threshold = default_threshold
        self.default_max_results = default_max_results

    def search(
        self,
        event_id: str,
        image_bytes: bytes,
        threshold: Optional[float] = None,
        max_results: Optional[int] = None
    ) -> SearchOutcome:
        """Find the photos of an event that contain the face in a query image.

        Args:
            event_id: Event to search
            image_bytes: Encoded query image (selfie)
            threshold: Minimum similarity (0-100)
            max_results: Maximum raw matches requested from the vision service

        Returns:
            SearchOutcome with matches sorted by similarity descending

        Raises:
            ValidationError: If the event id or image is missing, or the
                parameters are out of range
            VisionServiceError: On any vision service failure other than a
                missing collection
        """
        key = self.provisioner.collection_key(event_id)
        if not image_bytes:
            raise ValidationError("Query image is required")

        threshold = self.default_threshold if threshold is None else threshold
        max_results = self.default_max_results if max_results is None else max_results
        if not 0 <= threshold <= 100:
            raise ValidationError(f"Threshold must be between 0 and 100, got {threshold}")
        if max_results < 1:
            raise ValidationError(f"max_results must be >= 1, got {max_results}")

        logger.info(f"Searching collection {key} (threshold={threshold}, max_results={max_results})")

        try:
            response = self.vision.search_by_image(
                key.value,
                image_bytes,
                similarity_threshold=threshold,
                max_results=max_results
            )
        except VisionServiceError as e:
            if e.kind == ErrorKind.RESOURCE_MISSING:
                logger.info(f"Collection {key} does not exist yet")
                return SearchOutcome(status=SearchStatus.NO_COLLECTION, collection_id=key.value)
            raise

        unique = deduplicate_by_photo(response.matches)
        if not unique:
            logger.info(f"No matches in {key}")
            return SearchOutcome(
                status=SearchStatus.OK,
                collection_id=key.value,
                raw_match_count=len(response.matches),
                searched_face_confidence=response.searched_face_confidence
            )

        photos = self.store.get_photos_by_ids(m.external_id for m in unique)
        url_for = (lambda photo: self.blobs.public_url(photo.file_path)) if self.blobs else None
        results = rank_results(join_photo_metadata(unique, photos, url_for=url_for))

        logger.info(
            f"Found {len(results)} photo(s) from {len(response.matches)} raw match(es) in {key}"
        )
        return SearchOutcome(
            status=SearchStatus.OK,
            collection_id=key.value,
            matches=results,
            raw_match_count=len(response.matches),
            searched_face_confidence=response.searched_face_confidence
        )

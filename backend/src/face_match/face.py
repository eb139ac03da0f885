"""Face and photo data classes for the face matching system.

This module defines the core data structures passed between the vision
service adapter, the indexing queue drainer and the match aggregator:
bounding boxes, raw face matches, aggregated match results, per-photo
indexing outcomes and the collection key value type.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Dict, Any
import re


class ValidationError(ValueError):
    """Raised when required input is missing or malformed.

    Always raised before any side effect takes place.
    """
    pass


class ProcessingStatus(str, Enum):
    """Processing state of a photo in the indexing queue."""
    PENDING = "pending"
    INDEXED = "indexed"
    FAILED = "failed"


# Characters accepted by the vision service for collection ids
_COLLECTION_ID_PATTERN = re.compile(r'^[a-zA-Z0-9_.\-]+$')
_COLLECTION_ID_MAX_LENGTH = 255

DEFAULT_COLLECTION_PREFIX = "event-"


@dataclass(frozen=True)
class CollectionKey:
    """Deterministic face collection key for an event.

    Attributes:
        event_id: Event identifier the collection belongs to
        prefix: Prefix prepended to the event id
    """
    event_id: str
    prefix: str = DEFAULT_COLLECTION_PREFIX

    def __post_init__(self):
        """Validate the derived collection id."""
        if not self.event_id or not str(self.event_id).strip():
            raise ValidationError("Event ID is required")

        value = f"{self.prefix}{self.event_id}"
        if len(value) > _COLLECTION_ID_MAX_LENGTH:
            raise ValidationError(
                f"Collection id too long ({len(value)} > {_COLLECTION_ID_MAX_LENGTH}): {value!r}"
            )
        if not _COLLECTION_ID_PATTERN.match(value):
            raise ValidationError(f"Invalid characters in collection id: {value!r}")

    @property
    def value(self) -> str:
        """Collection id as sent to the vision service."""
        return f"{self.prefix}{self.event_id}"

    def __str__(self) -> str:
        return self.value


@dataclass
class BoundingBox:
    """Bounding box of a face, as ratios of the image size.

    Attributes:
        left: Left coordinate (0-1)
        top: Top coordinate (0-1)
        width: Box width (0-1)
        height: Box height (0-1)
    """
    left: float = 0.0
    top: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @property
    def right(self) -> float:
        return self.left + self.width

    @property
    def bottom(self) -> float:
        return self.top + self.height

    @property
    def area(self) -> float:
        """Get relative area of the bounding box."""
        return self.width * self.height

    def to_dict(self) -> Dict[str, float]:
        """Convert to the vision service's dictionary format.

        Returns:
            Dictionary with Width, Height, Left, Top keys
        """
        return {
            'Width': self.width,
            'Height': self.height,
            'Left': self.left,
            'Top': self.top
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, float]]) -> 'BoundingBox':
        """Create BoundingBox from a vision service dictionary.

        Args:
            data: Dictionary with Width, Height, Left, Top keys (may be None)

        Returns:
            BoundingBox instance
        """
        data = data or {}
        return cls(
            left=float(data.get('Left', 0.0)),
            top=float(data.get('Top', 0.0)),
            width=float(data.get('Width', 0.0)),
            height=float(data.get('Height', 0.0))
        )

    def __repr__(self) -> str:
        return (
            f"BoundingBox(left={self.left:.3f}, top={self.top:.3f}, "
            f"width={self.width:.3f}, height={self.height:.3f})"
        )


@dataclass
class FaceRecord:
    """A face stored in a collection by an index call.

    Attributes:
        face_id: Vision service face id
        external_id: Correlation key (the photo id)
        bounding_box: Location of the face in the indexed image
        confidence: Detection confidence (0-100)
    """
    face_id: str
    external_id: Optional[str] = None
    bounding_box: BoundingBox = field(default_factory=BoundingBox)
    confidence: float = 0.0


@dataclass
class FaceMatch:
    """A single raw face match returned by a search, before deduplication.

    Attributes:
        face_id: Vision service face id of the matched face
        external_id: Correlation key (photo id) of the matched face
        similarity: Similarity score (0-100)
        bounding_box: Location of the matched face in its photo
        confidence: Detection confidence of the matched face (0-100)
    """
    face_id: Optional[str]
    external_id: Optional[str]
    similarity: float
    bounding_box: BoundingBox = field(default_factory=BoundingBox)
    confidence: float = 0.0

    def __post_init__(self):
        if self.similarity < 0 or self.similarity > 100:
            raise ValueError(f"Similarity must be between 0 and 100, got {self.similarity}")

    def __repr__(self) -> str:
        return (
            f"FaceMatch(external_id={self.external_id!r}, "
            f"similarity={self.similarity:.2f}, face_id={self.face_id!r})"
        )


@dataclass
class SearchResponse:
    """Raw response of a search-by-image call.

    Attributes:
        matches: Raw matches, in the order returned by the service
        searched_face_confidence: Detection confidence of the query face
    """
    matches: List[FaceMatch] = field(default_factory=list)
    searched_face_confidence: Optional[float] = None


@dataclass
class MatchResult:
    """A photo matched by a selfie search.

    Attributes:
        photo_id: Matched photo id
        similarity: Best similarity score for this photo (0-100)
        bounding_box: Location of the best matching face
        face_id: Vision service face id of the best matching face
        image_url: Stored public URL of the photo
        confidence: Detection confidence of the best matching face
    """
    photo_id: str
    similarity: float
    bounding_box: BoundingBox
    face_id: Optional[str]
    image_url: Optional[str]
    confidence: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format.

        Returns:
            Dictionary representation
        """
        return {
            'photo_id': self.photo_id,
            'image_url': self.image_url,
            'similarity': self.similarity,
            'confidence': self.confidence,
            'face_id': self.face_id,
            'bounding_box': self.bounding_box.to_dict()
        }


@dataclass
class ItemOutcome:
    """Outcome of processing one photo during a drain.

    Attributes:
        photo_id: Photo id
        status: 'success' or 'failed'
        face_count: Faces indexed (0 on failure)
        error: Error message (failures only)
    """
    photo_id: str
    status: str
    face_count: int = 0
    error: Optional[str] = None

    SUCCESS = "success"
    FAILED = "failed"

    @classmethod
    def success(cls, photo_id: str, face_count: int) -> 'ItemOutcome':
        return cls(photo_id=photo_id, status=cls.SUCCESS, face_count=face_count)

    @classmethod
    def failed(cls, photo_id: str, error: str) -> 'ItemOutcome':
        return cls(photo_id=photo_id, status=cls.FAILED, error=error)

    @property
    def ok(self) -> bool:
        return self.status == self.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'id': self.photo_id,
            'status': self.status,
            'faces_indexed': self.face_count,
        }
        if self.error is not None:
            result['error'] = self.error
        return result

    def __repr__(self) -> str:
        mark = "✓" if self.ok else "✗"
        detail = f"{self.face_count} faces" if self.ok else self.error
        return f"ItemOutcome({mark} {self.photo_id}: {detail})"


@dataclass
class DrainStats:
    """Statistics from one or more drain calls.

    Attributes:
        total_photos: Photos claimed
        succeeded: Photos indexed successfully
        failed: Photos marked failed
        total_faces_indexed: Faces indexed across successful photos
        errors: Error messages of failed photos
        processing_time: Elapsed time in seconds
    """
    total_photos: int = 0
    succeeded: int = 0
    failed: int = 0
    total_faces_indexed: int = 0
    errors: List[str] = field(default_factory=list)
    processing_time: float = 0.0

    @classmethod
    def from_outcomes(cls, outcomes: List[ItemOutcome], processing_time: float = 0.0) -> 'DrainStats':
        """Summarize a list of item outcomes."""
        stats = cls(processing_time=processing_time)
        stats.add(outcomes)
        return stats

    def add(self, outcomes: List[ItemOutcome]):
        """Accumulate outcomes into these stats."""
        for outcome in outcomes:
            self.total_photos += 1
            if outcome.ok:
                self.succeeded += 1
                self.total_faces_indexed += outcome.face_count
            else:
                self.failed += 1
                self.errors.append(f"{outcome.photo_id}: {outcome.error}")

    @property
    def success_rate(self) -> float:
        """Calculate success rate."""
        return self.succeeded / self.total_photos if self.total_photos > 0 else 0.0

    @property
    def photos_per_second(self) -> float:
        return self.total_photos / self.processing_time if self.processing_time > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_photos': self.total_photos,
            'succeeded': self.succeeded,
            'failed': self.failed,
            'total_faces_indexed': self.total_faces_indexed,
            'success_rate': self.success_rate,
            'photos_per_second': self.photos_per_second,
            'processing_time': self.processing_time,
            'errors_count': len(self.errors)
        }

    def __repr__(self) -> str:
        return (
            f"DrainStats(photos={self.succeeded}/{self.total_photos}, "
            f"faces={self.total_faces_indexed}, "
            f"speed={self.photos_per_second:.1f} photos/sec, "
            f"errors={len(self.errors)})"
        )

"""Base interface for face recognition vision services.

A vision service stores faces in named collections and searches them by
image. Every failure is reported as a VisionServiceError tagged with an
ErrorKind so callers can branch on the kind of failure instead of
matching provider-specific error names.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional

from ..face import FaceRecord, SearchResponse


class ErrorKind(str, Enum):
    """Kinds of vision service failures."""
    RESOURCE_MISSING = "resource_missing"
    ALREADY_EXISTS = "already_exists"
    THROTTLED = "throttled"
    INVALID_IMAGE = "invalid_image"
    VALIDATION = "validation"
    TRANSIENT = "transient"
    UNKNOWN = "unknown"


class VisionServiceError(Exception):
    """Raised by vision service adapters.

    Attributes:
        kind: Tagged failure kind
        code: Provider error code, when one is available
    """

    def __init__(self, kind: ErrorKind, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.kind = kind
        self.code = code

    @property
    def is_resource_missing(self) -> bool:
        return self.kind == ErrorKind.RESOURCE_MISSING

    def __repr__(self) -> str:
        return f"VisionServiceError(kind={self.kind.value}, code={self.code!r}, message={str(self)!r})"


class BaseVisionService(ABC):
    """Abstract face collection service.

    Implementations must translate provider errors into VisionServiceError.
    """

    @abstractmethod
    def create_collection(self, collection_id: str) -> None:
        """Create a collection.

        Raises:
            VisionServiceError: ALREADY_EXISTS if the collection exists
        """

    @abstractmethod
    def describe_collection(self, collection_id: str) -> Dict[str, Any]:
        """Describe a collection (existence probe).

        Returns:
            Dictionary with at least a 'face_count' key

        Raises:
            VisionServiceError: RESOURCE_MISSING if the collection does not exist
        """

    @abstractmethod
    def delete_collection(self, collection_id: str) -> None:
        """Delete a collection and every face in it.

        Raises:
            VisionServiceError: RESOURCE_MISSING if the collection does not exist
        """

    @abstractmethod
    def index_faces(
        self,
        collection_id: str,
        image_bytes: bytes,
        external_id: str,
        max_faces: Optional[int] = None,
        quality_filter: Optional[str] = None
    ) -> List[FaceRecord]:
        """Detect faces in an image and add them to a collection.

        Args:
            collection_id: Target collection
            image_bytes: Encoded image
            external_id: Correlation key stored with every face
            max_faces: Maximum number of faces to index
            quality_filter: Provider quality filter

        Returns:
            Indexed face records (empty when no face was found)
        """

    @abstractmethod
    def search_by_image(
        self,
        collection_id: str,
        image_bytes: bytes,
        similarity_threshold: float = 80.0,
        max_results: int = 100
    ) -> SearchResponse:
        """Search a collection for faces matching the largest face in an image.

        Args:
            collection_id: Collection to search
            image_bytes: Encoded query image
            similarity_threshold: Minimum similarity (0-100)
            max_results: Maximum number of raw matches

        Returns:
            SearchResponse with matches ordered by similarity
        """

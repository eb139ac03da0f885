"""AWS Rekognition adapter for the vision service interface.

One Rekognition collection per event. Each face indexed from a photo carries
ExternalImageId = photo id, so search matches can be joined back to photo
metadata.
"""

from typing import Any, Callable, Dict, List, Optional
import logging
import time

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..face import BoundingBox, FaceMatch, FaceRecord, SearchResponse
from .base import BaseVisionService, ErrorKind, VisionServiceError
from .imaging import prepare_image_bytes, MAX_IMAGE_BYTES, IMAGE_MAX_DIM

logger = logging.getLogger(__name__)


_ERROR_KINDS = {
    'ResourceNotFoundException': ErrorKind.RESOURCE_MISSING,
    'ResourceAlreadyExistsException': ErrorKind.ALREADY_EXISTS,
    'ThrottlingException': ErrorKind.THROTTLED,
    'ProvisionedThroughputExceededException': ErrorKind.THROTTLED,
    'LimitExceededException': ErrorKind.THROTTLED,
    'InvalidImageFormatException': ErrorKind.INVALID_IMAGE,
    'ImageTooLargeException': ErrorKind.INVALID_IMAGE,
    'InvalidParameterException': ErrorKind.VALIDATION,
    'InternalServerError': ErrorKind.TRANSIENT,
    'ServiceUnavailableException': ErrorKind.TRANSIENT,
}


def classify_client_error(error: ClientError) -> VisionServiceError:
    """Translate a botocore ClientError into a tagged VisionServiceError.

    Args:
        error: Error raised by the Rekognition client

    Returns:
        VisionServiceError with the matching ErrorKind
    """
    details = error.response.get("Error", {})
    code = details.get("Code", "")
    message = details.get("Message") or str(error)
    kind = _ERROR_KINDS.get(code, ErrorKind.UNKNOWN)
    if kind == ErrorKind.UNKNOWN and "Throttl" in code:
        kind = ErrorKind.THROTTLED
    return VisionServiceError(kind, f"{code}: {message}" if code else message, code=code or None)


class RekognitionVisionService(BaseVisionService):
    """Vision service backed by AWS Rekognition collections.

    Throttled calls are retried with exponential backoff; every other
    failure is raised immediately as a VisionServiceError.

    Usage:
        vision = RekognitionVisionService(region='ap-southeast-1')
        vision.create_collection('event-42')
        records = vision.index_faces('event-42', image_bytes, external_id='p1')
    """

    def __init__(
        self,
        client: Optional[Any] = None,
        region: Optional[str] = None,
        max_retries: int = 2,
        backoff_base: float = 0.2,
        index_max_faces: int = 15,
        index_quality_filter: str = "NONE",
        search_quality_filter: str = "AUTO",
        max_image_bytes: int = MAX_IMAGE_BYTES,
        image_max_dim: int = IMAGE_MAX_DIM,
        sleep: Callable[[float], None] = time.sleep
    ):
        """Initialize the adapter.

        Args:
            client: Preconfigured boto3 Rekognition client (created from region if omitted)
            region: AWS region for a new client
            max_retries: Retries for throttled calls
            backoff_base: Base delay in seconds, doubled per retry
            index_max_faces: Default MaxFaces for IndexFaces
            index_quality_filter: Default QualityFilter for IndexFaces
            search_quality_filter: QualityFilter for SearchFacesByImage
            max_image_bytes: Payload limit before images are downscaled
            image_max_dim: Long side limit used when downscaling
            sleep: Sleep function used between retries
        """
        self.client = client if client is not None else boto3.client("rekognition", region_name=region)
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.index_max_faces = index_max_faces
        self.index_quality_filter = index_quality_filter
        self.search_quality_filter = search_quality_filter
        self.max_image_bytes = max_image_bytes
        self.image_max_dim = image_max_dim
        self._sleep = sleep

    def _call(self, operation: str, **kwargs) -> Dict[str, Any]:
        """Invoke a Rekognition operation, retrying throttled calls."""
        method = getattr(self.client, operation)
        for attempt in range(self.max_retries + 1):
            try:
                return method(**kwargs)
            except ClientError as e:
                error = classify_client_error(e)
                if error.kind == ErrorKind.THROTTLED and attempt < self.max_retries:
                    delay = self.backoff_base * (2 ** attempt)
                    logger.warning(
                        f"{operation} throttled ({error.code}), retrying in {delay:.2f}s "
                        f"(attempt {attempt + 1}/{self.max_retries})"
                    )
                    self._sleep(delay)
                    continue
                raise error from e
            except BotoCoreError as e:
                raise VisionServiceError(ErrorKind.TRANSIENT, f"{operation} failed: {e}") from e
        # Unreachable: the last attempt either returns or raises
        raise VisionServiceError(ErrorKind.THROTTLED, f"{operation} throttled")

    def _prepare(self, image_bytes: bytes) -> bytes:
        return prepare_image_bytes(
            image_bytes,
            max_bytes=self.max_image_bytes,
            max_dim=self.image_max_dim
        )

    def create_collection(self, collection_id: str) -> None:
        self._call("create_collection", CollectionId=collection_id)
        logger.info(f"Created collection {collection_id}")

    def describe_collection(self, collection_id: str) -> Dict[str, Any]:
        response = self._call("describe_collection", CollectionId=collection_id)
        return {
            'collection_id': collection_id,
            'face_count': response.get('FaceCount', 0),
            'face_model_version': response.get('FaceModelVersion'),
            'collection_arn': response.get('CollectionARN'),
            'created_at': response.get('CreationTimestamp'),
        }

    def delete_collection(self, collection_id: str) -> None:
        self._call("delete_collection", CollectionId=collection_id)
        logger.info(f"Deleted collection {collection_id}")

    def index_faces(
        self,
        collection_id: str,
        image_bytes: bytes,
        external_id: str,
        max_faces: Optional[int] = None,
        quality_filter: Optional[str] = None
    ) -> List[FaceRecord]:
        response = self._call(
            "index_faces",
            CollectionId=collection_id,
            Image={"Bytes": self._prepare(image_bytes)},
            ExternalImageId=external_id,
            DetectionAttributes=["DEFAULT"],
            MaxFaces=max_faces or self.index_max_faces,
            QualityFilter=quality_filter or self.index_quality_filter,
        )

        records = []
        for rec in response.get('FaceRecords') or []:
            face = rec.get('Face') or {}
            if not face.get('FaceId'):
                continue
            records.append(FaceRecord(
                face_id=face['FaceId'],
                external_id=face.get('ExternalImageId', external_id),
                bounding_box=BoundingBox.from_dict(face.get('BoundingBox')),
                confidence=float(face.get('Confidence', 0.0))
            ))

        unindexed = len(response.get('UnindexedFaces') or [])
        logger.debug(
            f"IndexFaces {collection_id}/{external_id}: {len(records)} indexed, "
            f"{unindexed} skipped"
        )
        return records

    def search_by_image(
        self,
        collection_id: str,
        image_bytes: bytes,
        similarity_threshold: float = 80.0,
        max_results: int = 100
    ) -> SearchResponse:
        try:
            response = self._call(
                "search_faces_by_image",
                CollectionId=collection_id,
                Image={"Bytes": self._prepare(image_bytes)},
                MaxFaces=max_results,
                FaceMatchThreshold=similarity_threshold,
                QualityFilter=self.search_quality_filter,
            )
        except VisionServiceError as e:
            # SearchFacesByImage reports a query image without a face this way
            if e.code == 'InvalidParameterException':
                raise VisionServiceError(ErrorKind.INVALID_IMAGE, str(e), code=e.code) from e
            raise

        matches = []
        for m in response.get('FaceMatches') or []:
            face = m.get('Face') or {}
            matches.append(FaceMatch(
                face_id=face.get('FaceId'),
                external_id=face.get('ExternalImageId'),
                similarity=float(m.get('Similarity', 0.0)),
                bounding_box=BoundingBox.from_dict(face.get('BoundingBox')),
                confidence=float(face.get('Confidence', 0.0))
            ))

        return SearchResponse(
            matches=matches,
            searched_face_confidence=response.get('SearchedFaceConfidence')
        )

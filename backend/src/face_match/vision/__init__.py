"""Vision service clients.

This module provides the face collection service interface and its
AWS Rekognition implementation:
- BaseVisionService: create/describe/delete collections, index and search faces
- VisionServiceError / ErrorKind: tagged failures
- RekognitionVisionService: boto3-backed adapter

Usage:
    from face_match.vision import RekognitionVisionService, ErrorKind, VisionServiceError

    vision = RekognitionVisionService(region='ap-southeast-1')
    try:
        vision.index_faces('event-42', image_bytes, external_id='p1')
    except VisionServiceError as e:
        if e.kind == ErrorKind.RESOURCE_MISSING:
            ...
"""

from .base import BaseVisionService, ErrorKind, VisionServiceError
from .imaging import prepare_image_bytes
from .rekognition import RekognitionVisionService, classify_client_error

__all__ = [
    'BaseVisionService',
    'ErrorKind',
    'VisionServiceError',
    'prepare_image_bytes',
    'RekognitionVisionService',
    'classify_client_error',
]

"""Storage layer for the face matching system.

This module provides storage for photo metadata and photo files:
- PhotoStore: events, photos and the indexing queue (SQLAlchemy)
- BlobStore: photo file download/upload (S3 or local directory)

Usage:
    from face_match.storage import PhotoStore, S3BlobStore

    store = PhotoStore(database_url='postgresql://...')
    pending = store.claim_pending(event_id='42', limit=50)

    blobs = S3BlobStore(bucket='event-photos')
    data = blobs.download(pending[0].file_path)
"""

from .metadata_db import (
    PhotoStore,
    Photo,
    Event,
    PhotoStoreError,
    ClaimError,
    DuplicateRecordError,
)
from .blob_store import (
    BlobStore,
    S3BlobStore,
    LocalBlobStore,
    BlobStoreError,
    BlobNotFound,
)

__all__ = [
    'PhotoStore',
    'Photo',
    'Event',
    'PhotoStoreError',
    'ClaimError',
    'DuplicateRecordError',
    'BlobStore',
    'S3BlobStore',
    'LocalBlobStore',
    'BlobStoreError',
    'BlobNotFound',
]

"""Shared fixtures: in-memory vision service and blob store, temporary store."""

import threading
import time
from typing import Dict, List, Optional

import pytest

from face_match.face import BoundingBox, FaceMatch, FaceRecord, SearchResponse
from face_match.indexer import IndexingQueueDrainer
from face_match.provisioner import CollectionProvisioner
from face_match.search import MatchAggregator
from face_match.storage import BlobStore, BlobNotFound, PhotoStore
from face_match.vision import BaseVisionService, ErrorKind, VisionServiceError


class FakeVisionService(BaseVisionService):
    """In-memory vision service with call instrumentation.

    Attributes:
        collections: collection id -> indexed FaceRecords
        faces_per_image: image bytes -> number of faces detected (default 1)
        search_matches: collection id -> raw matches returned by search
        index_errors: external id -> error raised when indexing that photo
        index_delay: seconds each index call takes
    """

    def __init__(self, index_delay: float = 0.0):
        self.collections: Dict[str, List[FaceRecord]] = {}
        self.faces_per_image: Dict[bytes, int] = {}
        self.search_matches: Dict[str, List[FaceMatch]] = {}
        self.index_errors: Dict[str, Exception] = {}
        self.index_delay = index_delay

        self.index_calls: List[tuple] = []
        self.search_calls: List[tuple] = []
        self.create_calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()
        self._face_seq = 0

    def create_collection(self, collection_id: str) -> None:
        with self._lock:
            self.create_calls.append(collection_id)
            if collection_id in self.collections:
                raise VisionServiceError(ErrorKind.ALREADY_EXISTS, f"{collection_id} exists")
            self.collections[collection_id] = []

    def describe_collection(self, collection_id: str) -> dict:
        if collection_id not in self.collections:
            raise VisionServiceError(ErrorKind.RESOURCE_MISSING, f"{collection_id} not found")
        return {'collection_id': collection_id, 'face_count': len(self.collections[collection_id])}

    def delete_collection(self, collection_id: str) -> None:
        with self._lock:
            if collection_id not in self.collections:
                raise VisionServiceError(ErrorKind.RESOURCE_MISSING, f"{collection_id} not found")
            del self.collections[collection_id]
            self.search_matches.pop(collection_id, None)

    def index_faces(self, collection_id, image_bytes, external_id, max_faces=None, quality_filter=None):
        with self._lock:
            self.index_calls.append((collection_id, external_id))
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.index_delay:
                time.sleep(self.index_delay)

            error = self.index_errors.get(external_id)
            if error is not None:
                raise error

            with self._lock:
                if collection_id not in self.collections:
                    raise VisionServiceError(ErrorKind.RESOURCE_MISSING, f"{collection_id} not found")

                records = []
                for _ in range(self.faces_per_image.get(image_bytes, 1)):
                    self._face_seq += 1
                    records.append(FaceRecord(
                        face_id=f"face-{self._face_seq}",
                        external_id=external_id,
                        bounding_box=BoundingBox(0.1, 0.1, 0.2, 0.2),
                        confidence=99.0
                    ))
                self.collections[collection_id].extend(records)
                return records
        finally:
            with self._lock:
                self.in_flight -= 1

    def search_by_image(self, collection_id, image_bytes, similarity_threshold=80.0, max_results=100):
        self.search_calls.append((collection_id, similarity_threshold, max_results))
        if collection_id not in self.collections:
            raise VisionServiceError(ErrorKind.RESOURCE_MISSING, f"{collection_id} not found")

        matches = [
            m for m in self.search_matches.get(collection_id, [])
            if m.similarity >= similarity_threshold
        ]
        return SearchResponse(matches=matches[:max_results], searched_face_confidence=99.5)


class InMemoryBlobStore(BlobStore):
    """Blob store holding bytes in a dict."""

    def __init__(self, blobs: Optional[Dict[str, bytes]] = None, public_base_url: Optional[str] = None):
        super().__init__(public_base_url)
        self.blobs = dict(blobs or {})
        self.downloads: List[str] = []

    def download(self, locator: str) -> bytes:
        self.downloads.append(locator)
        if locator not in self.blobs:
            raise BlobNotFound(f"Object not found: {locator}")
        return self.blobs[locator]

    def upload(self, locator: str, data: bytes, content_type: str = "image/jpeg") -> str:
        self.blobs[locator] = data
        return locator

    def delete(self, locator: str) -> bool:
        return self.blobs.pop(locator, None) is not None


def _make_match(external_id, similarity, face_id=None):
    """Build a raw search match."""
    return FaceMatch(
        face_id=face_id or f"face-{external_id}-{similarity}",
        external_id=external_id,
        similarity=similarity,
        bounding_box=BoundingBox(0.2, 0.3, 0.1, 0.1),
        confidence=99.0
    )


@pytest.fixture
def temp_db(tmp_path):
    """SQLite file URL (file-backed so worker threads share the database)."""
    return f"sqlite:///{tmp_path / 'face_match.db'}"


@pytest.fixture
def store(temp_db):
    """PhotoStore on a temporary database."""
    store = PhotoStore(temp_db)
    yield store
    store.engine.dispose()


@pytest.fixture
def vision():
    return FakeVisionService()


@pytest.fixture
def blobs():
    return InMemoryBlobStore(public_base_url="https://cdn.example.com/photos")


@pytest.fixture
def provisioner(vision):
    return CollectionProvisioner(vision)


@pytest.fixture
def drainer(store, blobs, vision, provisioner):
    return IndexingQueueDrainer(store=store, blobs=blobs, vision=vision, provisioner=provisioner)


@pytest.fixture
def aggregator(store, blobs, vision, provisioner):
    return MatchAggregator(vision=vision, store=store, provisioner=provisioner, blobs=blobs)


@pytest.fixture
def add_photos(store, blobs):
    """Register photos with blobs; returns a helper."""
    def _add(event_id, count, prefix=None, data=b"image"):
        if store.get_event(event_id) is None:
            store.add_event(event_id, name=f"Event {event_id}")
        prefix = prefix or f"{event_id}-p"
        photos = []
        for i in range(count):
            photo_id = f"{prefix}{i}"
            locator = f"{event_id}/{photo_id}.jpg"
            blobs.upload(locator, data)
            photos.append(store.register_photo(
                event_id=event_id,
                file_path=locator,
                storage_url=f"https://cdn.example.com/photos/{locator}",
                file_name=f"{photo_id}.jpg",
                file_size=len(data),
                photo_id=photo_id
            ))
        return photos
    return _add


@pytest.fixture
def make_match():
    """Factory for raw search matches."""
    return _make_match

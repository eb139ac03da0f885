"""Indexing queue drainer.

This module provides the IndexingQueueDrainer class, which claims a bounded
batch of pending photos and indexes their faces into each event's collection
through a capped worker pool.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Optional, Callable
import logging
import time

from tqdm import tqdm

from .face import ItemOutcome, DrainStats
from .provisioner import CollectionProvisioner
from .storage import PhotoStore, Photo, BlobStore
from .vision import BaseVisionService, ErrorKind, VisionServiceError

logger = logging.getLogger(__name__)


DEFAULT_BATCH_SIZE = 50
DEFAULT_CONCURRENCY = 5


class IndexingQueueDrainer:
    """Drains the queue of unprocessed photos into the vision service.

    Per photo: download the blob, index its faces with the photo id as
    external id, then record a terminal outcome. A "collection not found"
    failure provisions the collection and retries the index call once.
    Any other failure marks that photo failed without affecting the rest
    of the batch.

    Usage:
        drainer = IndexingQueueDrainer(
            store=store,
            blobs=blobs,
            vision=vision,
            provisioner=provisioner
        )

        outcomes = drainer.drain(event_id='42', batch_size=50, concurrency=5)
        if not outcomes:
            print("Queue empty")
    """

    def __init__(
        self,
        store: PhotoStore,
        blobs: BlobStore,
        vision: BaseVisionService,
        provisioner: CollectionProvisioner,
        max_faces: Optional[int] = None,
        quality_filter: Optional[str] = None
    ):
        """Initialize drainer.

        Args:
            store: Photo metadata store
            blobs: Blob store holding photo files
            vision: Vision service client
            provisioner: Collection provisioner (shares the vision client)
            max_faces: MaxFaces per index call (adapter default if None)
            quality_filter: Quality filter per index call (adapter default if None)
        """
        self.store = store
        self.blobs = blobs
        self.vision = vision
        self.provisioner = provisioner
        self.max_faces = max_faces
        self.quality_filter = quality_filter

    def drain(
        self,
        event_id: Optional[str] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        concurrency: int = DEFAULT_CONCURRENCY,
        show_progress: bool = False,
        progress_callback: Optional[Callable[[ItemOutcome], None]] = None
    ) -> List[ItemOutcome]:
        """Process one batch of pending photos.

        Args:
            event_id: Restrict to one event (None sweeps every event)
            batch_size: Maximum photos to claim
            concurrency: Maximum photos in flight at once
            show_progress: Show a tqdm progress bar
            progress_callback: Called with each outcome as it completes

        Returns:
            One ItemOutcome per claimed photo, in claim order. Empty when
            nothing was pending.

        Raises:
            ValueError: If batch_size or concurrency is not positive
            ClaimError: If pending photos cannot be read
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")

        photos = self._unique(self.store.claim_pending(event_id=event_id, limit=batch_size))
        if not photos:
            logger.debug(f"No pending photos (event={event_id})")
            return []

        scope = f"event {event_id}" if event_id is not None else "all events"
        logger.info(f"Processing {len(photos)} pending photo(s) for {scope} (concurrency={concurrency})")
        start_time = time.time()

        outcomes = {}
        with ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="indexer") as pool:
            futures = {pool.submit(self.process_photo, photo): photo for photo in photos}

            with tqdm(total=len(futures), desc="Indexing photos", unit="photo",
                      disable=not show_progress) as pbar:
                for future in as_completed(futures):
                    outcome = future.result()
                    outcomes[outcome.photo_id] = outcome

                    if progress_callback:
                        progress_callback(outcome)

                    pbar.update(1)

        ordered = [outcomes[photo.id] for photo in photos]
        stats = DrainStats.from_outcomes(ordered, processing_time=time.time() - start_time)
        logger.info(
            f"Batch complete: {stats.succeeded}/{stats.total_photos} indexed, "
            f"{stats.failed} failed, {stats.total_faces_indexed} faces "
            f"in {stats.processing_time:.1f}s"
        )
        return ordered

    def process_photo(self, photo: Photo) -> ItemOutcome:
        """Index a single photo and record its terminal state.

        Never raises: every failure becomes a failed outcome.

        Args:
            photo: Pending photo

        Returns:
            ItemOutcome for the photo
        """
        try:
            if not photo.file_path:
                raise ValueError("Photo has no file path")

            image_bytes = self.blobs.download(photo.file_path)
            face_count = self._index_with_self_heal(photo, image_bytes)
            self.store.mark_indexed(photo.id, face_count)

        except Exception as e:
            message = str(e) or e.__class__.__name__
            logger.warning(f"Failed to index photo {photo.id}: {message}")
            self._record_failure(photo, message)
            return ItemOutcome.failed(photo.id, message)

        logger.debug(f"Indexed photo {photo.id}: {face_count} face(s)")
        return ItemOutcome.success(photo.id, face_count)

    def _index_with_self_heal(self, photo: Photo, image_bytes: bytes) -> int:
        """Index faces, provisioning the collection and retrying once if it is missing."""
        key = self.provisioner.collection_key(photo.event_id)
        try:
            records = self._index(key.value, photo, image_bytes)
        except VisionServiceError as e:
            if e.kind != ErrorKind.RESOURCE_MISSING:
                raise
            logger.info(f"Collection {key} missing while indexing photo {photo.id}, provisioning")
            self.provisioner.ensure_collection(photo.event_id)
            records = self._index(key.value, photo, image_bytes)
        return len(records)

    def _index(self, collection_id: str, photo: Photo, image_bytes: bytes):
        return self.vision.index_faces(
            collection_id,
            image_bytes,
            external_id=str(photo.id),
            max_faces=self.max_faces,
            quality_filter=self.quality_filter
        )

    def _record_failure(self, photo: Photo, message: str):
        try:
            self.store.mark_failed(photo.id, message)
        except Exception as e:
            # Photo stays pending and will be claimed again
            logger.error(f"Could not record failure for photo {photo.id}: {e}")

    @staticmethod
    def _unique(photos: List[Photo]) -> List[Photo]:
        seen = set()
        unique = []
        for photo in photos:
            if photo.id not in seen:
                seen.add(photo.id)
                unique.append(photo)
        return unique

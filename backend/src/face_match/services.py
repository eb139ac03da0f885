"""Service wiring.

Builds the store, blob store, vision client and the pipeline components
from a configuration dictionary. Nothing is constructed at import time.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional
import logging

from .indexer import IndexingQueueDrainer
from .provisioner import CollectionProvisioner
from .search import MatchAggregator
from .storage import PhotoStore, BlobStore, S3BlobStore, LocalBlobStore
from .trigger import TriggerLoop
from .vision import BaseVisionService, RekognitionVisionService

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Wired pipeline components sharing one store and one vision client."""
    config: Dict[str, Any]
    store: PhotoStore
    blobs: BlobStore
    vision: BaseVisionService
    provisioner: CollectionProvisioner
    drainer: IndexingQueueDrainer
    aggregator: MatchAggregator

    @classmethod
    def build(
        cls,
        config: Dict[str, Any],
        store: PhotoStore,
        blobs: BlobStore,
        vision: BaseVisionService
    ) -> 'Services':
        """Wire pipeline components around existing store, blob and vision clients."""
        vision_config = config.get('vision', {})
        search_config = config.get('search', {})

        provisioner = CollectionProvisioner(
            vision,
            prefix=vision_config.get('collection_prefix', 'event-')
        )
        drainer = IndexingQueueDrainer(
            store=store,
            blobs=blobs,
            vision=vision,
            provisioner=provisioner
        )
        aggregator = MatchAggregator(
            vision=vision,
            store=store,
            provisioner=provisioner,
            blobs=blobs,
            default_threshold=float(search_config.get('threshold', 80.0)),
            default_max_results=int(search_config.get('max_results', 100))
        )
        return cls(
            config=config,
            store=store,
            blobs=blobs,
            vision=vision,
            provisioner=provisioner,
            drainer=drainer,
            aggregator=aggregator
        )

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None) -> 'Services':
        """Create every client from configuration.

        Args:
            config: Configuration dictionary (default: face_match.config.get_config())
        """
        if config is None:
            from .config import get_config
            config = get_config()

        store = PhotoStore(config['database']['url'])
        blobs = create_blob_store(config.get('storage', {}))

        vision_config = config.get('vision', {})
        vision = RekognitionVisionService(
            region=vision_config.get('region'),
            max_retries=int(vision_config.get('max_retries', 2)),
            backoff_base=float(vision_config.get('backoff_base', 0.2)),
            index_max_faces=int(vision_config.get('index_max_faces', 15)),
            index_quality_filter=vision_config.get('index_quality_filter', 'NONE'),
            search_quality_filter=vision_config.get('search_quality_filter', 'AUTO'),
            max_image_bytes=int(vision_config.get('max_image_bytes', 5 * 1024 * 1024)),
            image_max_dim=int(vision_config.get('image_max_dim', 3072))
        )

        logger.info(
            f"Services ready (storage={config.get('storage', {}).get('backend', 'local')}, "
            f"region={vision_config.get('region')})"
        )
        return cls.build(config, store=store, blobs=blobs, vision=vision)

    def trigger_loop(self, event_id: Optional[str] = None, **overrides) -> TriggerLoop:
        """Create a trigger loop using the indexing and worker settings."""
        indexing = self.config.get('indexing', {})
        worker = self.config.get('worker', {})

        options = {
            'event_id': event_id if event_id is not None else worker.get('event_id'),
            'batch_size': int(indexing.get('batch_size', 50)),
            'concurrency': int(indexing.get('concurrency', 5)),
            'idle_backoff': float(worker.get('idle_backoff', 30.0)),
            'error_backoff': float(worker.get('error_backoff', 5.0)),
            'max_error_backoff': float(worker.get('max_error_backoff', 60.0)),
        }
        options.update(overrides)
        return TriggerLoop(self.drainer, **options)


def create_blob_store(storage_config: Dict[str, Any]) -> BlobStore:
    """Create the blob store selected by `storage.backend`."""
    backend = storage_config.get('backend', 'local')
    public_base_url = storage_config.get('public_base_url') or None

    if backend == 's3':
        return S3BlobStore(
            bucket=storage_config.get('bucket', ''),
            region=storage_config.get('region') or None,
            public_base_url=public_base_url
        )
    if backend == 'local':
        return LocalBlobStore(storage_config['local_root'], public_base_url=public_base_url)

    raise ValueError(f"Unknown storage backend: {backend!r} (expected 's3' or 'local')")

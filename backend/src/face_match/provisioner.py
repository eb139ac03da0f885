"""Face collection provisioning.

Every event gets its own collection in the vision service. Collections are
created lazily: callers ensure one exists right before they need it, and
"already exists" is treated as success so concurrent provisioning is safe.
"""

from typing import Optional
import logging

from .face import CollectionKey, DEFAULT_COLLECTION_PREFIX
from .vision import BaseVisionService, ErrorKind, VisionServiceError

logger = logging.getLogger(__name__)


class CollectionProvisioner:
    """Creates, probes and resets per-event face collections.

    Usage:
        provisioner = CollectionProvisioner(vision)
        key = provisioner.ensure_collection('42')   # creates 'event-42'
        key = provisioner.ensure_collection('42')   # no-op
    """

    def __init__(self, vision: BaseVisionService, prefix: str = DEFAULT_COLLECTION_PREFIX):
        """Initialize provisioner.

        Args:
            vision: Vision service client
            prefix: Collection id prefix
        """
        self.vision = vision
        self.prefix = prefix

    def collection_key(self, event_id: str) -> CollectionKey:
        """Derive the collection key for an event.

        Raises:
            ValidationError: If the event id is empty or produces an invalid key
        """
        return CollectionKey(str(event_id) if event_id is not None else "", prefix=self.prefix)

    def ensure_collection(self, event_id: str) -> CollectionKey:
        """Make sure the event's collection exists.

        Args:
            event_id: Event identifier

        Returns:
            The event's CollectionKey

        Raises:
            ValidationError: If the event id is invalid
            VisionServiceError: If creation fails for any reason other than
                the collection already existing
        """
        key = self.collection_key(event_id)
        try:
            self.vision.create_collection(key.value)
            logger.info(f"Provisioned collection {key}")
        except VisionServiceError as e:
            if e.kind != ErrorKind.ALREADY_EXISTS:
                raise
            logger.debug(f"Collection {key} already exists")
        return key

    def collection_exists(self, event_id: str) -> bool:
        """Probe whether the event's collection exists."""
        key = self.collection_key(event_id)
        try:
            self.vision.describe_collection(key.value)
            return True
        except VisionServiceError as e:
            if e.kind == ErrorKind.RESOURCE_MISSING:
                return False
            raise

    def describe(self, event_id: str) -> Optional[dict]:
        """Describe the event's collection, or None if it does not exist."""
        key = self.collection_key(event_id)
        try:
            return self.vision.describe_collection(key.value)
        except VisionServiceError as e:
            if e.kind == ErrorKind.RESOURCE_MISSING:
                return None
            raise

    def delete_collection(self, event_id: str) -> bool:
        """Delete the event's collection.

        Returns:
            True if deleted, False if it did not exist
        """
        key = self.collection_key(event_id)
        try:
            self.vision.delete_collection(key.value)
        except VisionServiceError as e:
            if e.kind == ErrorKind.RESOURCE_MISSING:
                logger.debug(f"Collection {key} already absent")
                return False
            raise
        logger.info(f"Deleted collection {key}")
        return True

    def reset_collection(self, event_id: str) -> CollectionKey:
        """Drop every face of the event by recreating its collection.

        Photos already marked processed are not requeued.
        """
        self.delete_collection(event_id)
        return self.ensure_collection(event_id)

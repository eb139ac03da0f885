"""
Importable high-level operations for face-match.

These functions combine the store, provisioner and drainer into the
event-level workflows used by the CLI and the web API.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .face import DrainStats
from .indexer import DEFAULT_BATCH_SIZE, DEFAULT_CONCURRENCY
from .services import Services
from .trigger import drain_until_empty

logger = logging.getLogger(__name__)


class EventNotReady(Exception):
    """Raised when an event cannot be set up for matching.

    Attributes:
        reason: Why the event is not ready
        not_found: True when the event does not exist
    """

    def __init__(self, reason: str, not_found: bool = False):
        super().__init__(reason)
        self.reason = reason
        self.not_found = not_found


def check_event_ready(services: Services, event_id: str) -> Dict[str, Any]:
    """Check whether an event can be indexed and searched.

    An event is ready when it exists, is active and has at least one photo.

    Returns:
        Dict with keys: ready (bool), reason (str or None), event (dict or None).
    """
    event = services.store.get_event(event_id)
    if event is None:
        return {"ready": False, "reason": "Event not found", "event": None}

    if not event.is_active:
        return {"ready": False, "reason": "Event is not active", "event": event.to_dict()}

    if services.store.count_photos(event_id=event_id) == 0:
        return {"ready": False, "reason": "No photos found for this event", "event": event.to_dict()}

    return {"ready": True, "reason": None, "event": event.to_dict()}


def require_active_event(services: Services, event_id: str):
    """Return the event, raising EventNotReady if it is missing or inactive."""
    event = services.store.get_event(event_id)
    if event is None:
        raise EventNotReady("Event not found", not_found=True)
    if not event.is_active:
        raise EventNotReady("Event is not active")
    return event


def setup_event(
    services: Services,
    event_id: str,
    *,
    batch_size: Optional[int] = None,
    concurrency: Optional[int] = None,
    max_batches: int = 1000,
    show_progress: bool = False,
) -> Dict[str, Any]:
    """Provision an event's collection and index all of its pending photos.

    Args:
        services: Wired services.
        event_id: Event to set up.
        batch_size: Photos per drain (default: indexing.batch_size).
        concurrency: Worker pool size (default: indexing.concurrency).
        max_batches: Safety bound on the number of drains.
        show_progress: Show a tqdm progress bar per batch.

    Returns:
        Dict with keys: collection_id, photos_indexed, photos_failed,
        total_photos, faces_indexed.

    Raises:
        EventNotReady: If the event is missing, inactive or has no photos.
    """
    readiness = check_event_ready(services, event_id)
    if not readiness["ready"]:
        raise EventNotReady(readiness["reason"], not_found=readiness["event"] is None)

    indexing = services.config.get("indexing", {})
    if batch_size is None:
        batch_size = int(indexing.get("batch_size", DEFAULT_BATCH_SIZE))
    if concurrency is None:
        concurrency = int(indexing.get("concurrency", DEFAULT_CONCURRENCY))

    key = services.provisioner.ensure_collection(event_id)

    outcomes = drain_until_empty(
        services.drainer,
        event_id=event_id,
        batch_size=batch_size,
        concurrency=concurrency,
        max_batches=max_batches,
        show_progress=show_progress,
    )
    stats = DrainStats.from_outcomes(outcomes)

    logger.info(
        f"Event {event_id} set up: {stats.succeeded} indexed, {stats.failed} failed "
        f"into {key}"
    )
    return {
        "collection_id": key.value,
        "photos_indexed": stats.succeeded,
        "photos_failed": stats.failed,
        "total_photos": stats.total_photos,
        "faces_indexed": stats.total_faces_indexed,
    }

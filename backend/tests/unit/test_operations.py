"""Tests for event-level operations and service wiring."""

import pytest

from face_match._operations import EventNotReady, check_event_ready, require_active_event, setup_event
from face_match.config import get_default_config
from face_match.services import Services, create_blob_store
from face_match.storage import LocalBlobStore, S3BlobStore


@pytest.fixture
def services(store, blobs, vision):
    config = get_default_config()
    config['indexing']['batch_size'] = 2
    return Services.build(config, store=store, blobs=blobs, vision=vision)


class TestCheckEventReady:

    def test_missing_event(self, services):
        result = check_event_ready(services, "42")
        assert result == {'ready': False, 'reason': "Event not found", 'event': None}

    def test_inactive_event(self, services, store):
        store.add_event("42", status="inactive")
        assert check_event_ready(services, "42")['reason'] == "Event is not active"

    def test_no_photos(self, services, store):
        store.add_event("42")
        assert check_event_ready(services, "42")['reason'] == "No photos found for this event"

    def test_ready(self, services, add_photos):
        add_photos("42", 1)
        assert check_event_ready(services, "42")['ready'] is True


class TestRequireActiveEvent:

    def test_not_found(self, services):
        with pytest.raises(EventNotReady) as exc_info:
            require_active_event(services, "42")
        assert exc_info.value.not_found

    def test_inactive(self, services, store):
        store.add_event("42", status="inactive")
        with pytest.raises(EventNotReady) as exc_info:
            require_active_event(services, "42")
        assert not exc_info.value.not_found


class TestSetupEvent:

    def test_indexes_all_pending_photos(self, services, add_photos, vision, blobs, store):
        photos = add_photos("42", 5)
        blobs.delete(photos[3].file_path)

        summary = setup_event(services, "42")

        assert summary == {
            'collection_id': "event-42",
            'photos_indexed': 4,
            'photos_failed': 1,
            'total_photos': 5,
            'faces_indexed': 4,
        }
        assert store.count_photos("42", pending_only=True) == 0
        assert len(vision.collections["event-42"]) == 4

    def test_not_ready_raises_before_provisioning(self, services, store, vision):
        store.add_event("42")
        with pytest.raises(EventNotReady):
            setup_event(services, "42")
        assert vision.create_calls == []

    def test_only_touches_its_event(self, services, add_photos, store):
        add_photos("42", 2)
        add_photos("43", 2)

        setup_event(services, "42")

        assert store.count_photos("43", pending_only=True) == 2


class TestServices:

    def test_build_shares_clients(self, services, vision, store):
        assert services.drainer.vision is vision
        assert services.aggregator.store is store
        assert services.provisioner.prefix == "event-"

    def test_trigger_loop_uses_config(self, services):
        loop = services.trigger_loop(event_id="42", idle_backoff=1.0)
        assert loop.event_id == "42"
        assert loop.batch_size == 2
        assert loop.idle_backoff == 1.0

    def test_local_blob_store(self, tmp_path):
        blobs = create_blob_store({'backend': 'local', 'local_root': str(tmp_path)})
        assert isinstance(blobs, LocalBlobStore)

    def test_s3_blob_store(self):
        blobs = create_blob_store({'backend': 's3', 'bucket': 'event-photos', 'region': 'us-east-1'})
        assert isinstance(blobs, S3BlobStore)
        assert blobs.bucket == "event-photos"

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_blob_store({'backend': 'ftp'})

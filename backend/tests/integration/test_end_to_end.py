"""End-to-end integration tests for the face matching pipeline.

These tests wire the real SQLite store and local blob store to the
in-memory vision service and run upload registration, queue draining and
selfie search together.
"""

import pytest

from face_match._operations import setup_event
from face_match.config import get_default_config
from face_match.services import Services
from face_match.storage import LocalBlobStore, PhotoStore

from conftest import FakeVisionService, _make_match


pytestmark = pytest.mark.integration


@pytest.fixture
def services(tmp_path):
    config = get_default_config()
    config['database']['url'] = f"sqlite:///{tmp_path / 'e2e.db'}"
    config['storage']['local_root'] = str(tmp_path / "photos")

    store = PhotoStore(config['database']['url'])
    blobs = LocalBlobStore(config['storage']['local_root'], public_base_url="http://localhost:5050/media")
    services = Services.build(config, store=store, blobs=blobs, vision=FakeVisionService())
    yield services
    store.engine.dispose()


def _upload(services, event_id, photo_id, data=b"jpeg"):
    locator = f"{event_id}/{photo_id}.jpg"
    services.blobs.upload(locator, data)
    return services.store.register_photo(
        event_id=event_id,
        file_path=locator,
        file_name=f"{photo_id}.jpg",
        file_size=len(data),
        photo_id=photo_id
    )


class TestPipeline:
    """Upload, drain and search for one event."""

    def test_upload_drain_search(self, services):
        services.store.add_event("42", name="Wedding")
        for photo_id in ("p1", "p2", "p3"):
            _upload(services, "42", photo_id)

        outcomes = services.drainer.drain(event_id="42", batch_size=50, concurrency=5)

        assert [o.photo_id for o in outcomes] == ["p1", "p2", "p3"]
        assert all(o.ok for o in outcomes)
        assert services.store.get_stats("42")['indexed'] == 3

        # The selfie matches two faces of p1 and one of p3
        services.vision.search_matches["event-42"] = [
            _make_match("p1", 88.0),
            _make_match("p3", 81.0),
            _make_match("p1", 93.0),
        ]
        outcome = services.aggregator.search("42", b"selfie")

        assert [(m.photo_id, m.similarity) for m in outcome.matches] == [("p1", 93.0), ("p3", 81.0)]
        # No stored URL: built from the blob store
        assert outcome.matches[0].image_url == "http://localhost:5050/media/42/p1.jpg"

    def test_search_before_any_upload(self, services):
        services.store.add_event("42")
        outcome = services.aggregator.search("42", b"selfie")
        assert outcome.no_collection

    def test_setup_event_then_worker_finds_nothing(self, services):
        services.store.add_event("42")
        for i in range(7):
            _upload(services, "42", f"p{i}")

        summary = setup_event(services, "42", batch_size=3, concurrency=2)
        assert summary['photos_indexed'] == 7

        loop = services.trigger_loop(wait=lambda delay: True)
        stats = loop.run()
        assert stats.batches == 0
        assert stats.idle_waits == 1

    def test_late_upload_picked_up_by_worker(self, services):
        services.store.add_event("42")
        _upload(services, "42", "p1")
        setup_event(services, "42")

        _upload(services, "42", "p2")
        loop = services.trigger_loop(wait=lambda delay: True)
        stats = loop.run()

        assert stats.drain.succeeded == 1
        assert services.store.get_photo("p2").is_processed is True

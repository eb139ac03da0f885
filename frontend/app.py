from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from flask import Flask, current_app, jsonify, request

from face_match import __version__
from face_match._operations import EventNotReady, require_active_event, setup_event
from face_match.face import DrainStats, ValidationError
from face_match.services import Services
from face_match.storage import DuplicateRecordError, PhotoStoreError
from face_match.vision import ErrorKind, VisionServiceError


logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 25 * 1024 * 1024


def _services() -> Services:
    services = current_app.extensions.get("face_match")
    if services is None:
        services = Services.from_config()
        current_app.extensions["face_match"] = services
    return services


def _json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _int_arg(name: str, default: int, value: Any = None) -> int:
    if value is None:
        value = request.args.get(name)
    if value in (None, ""):
        return default
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")
    if parsed < 1:
        raise ValidationError(f"{name} must be >= 1")
    return parsed


def _indexing_defaults() -> Tuple[int, int]:
    indexing = _services().config.get("indexing", {})
    return int(indexing.get("batch_size", 50)), int(indexing.get("concurrency", 5))


def _drain_response(outcomes) -> Dict[str, Any]:
    stats = DrainStats.from_outcomes(outcomes)
    return {
        "success": True,
        "processedCount": len(outcomes),
        "results": [outcome.to_dict() for outcome in outcomes],
        "stats": stats.to_dict(),
    }


def _register_routes(app: Flask) -> None:
    @app.errorhandler(ValidationError)
    def handle_validation_error(exc: ValidationError):
        return jsonify({"error": str(exc)}), 400

    @app.errorhandler(EventNotReady)
    def handle_event_not_ready(exc: EventNotReady):
        return jsonify({"error": exc.reason}), 404 if exc.not_found else 400

    @app.errorhandler(VisionServiceError)
    def handle_vision_error(exc: VisionServiceError):
        if exc.kind in (ErrorKind.INVALID_IMAGE, ErrorKind.VALIDATION):
            return jsonify({"error": "No usable face found in the image", "detail": str(exc)}), 400
        logger.error(f"Vision service error: {exc}")
        return jsonify({"error": str(exc), "code": exc.code}), 502 if exc.kind == ErrorKind.THROTTLED else 500

    @app.errorhandler(DuplicateRecordError)
    def handle_duplicate(exc: DuplicateRecordError):
        return jsonify({"error": str(exc)}), 409

    @app.errorhandler(PhotoStoreError)
    def handle_store_error(exc: PhotoStoreError):
        logger.error(f"Store error: {exc}")
        return jsonify({"error": str(exc)}), 500

    @app.route("/api/health", methods=["GET"])
    def api_health():
        return jsonify({"status": "ok", "version": __version__})

    @app.route("/api/cron/process-queue", methods=["GET"])
    def api_process_queue():
        default_batch, default_concurrency = _indexing_defaults()
        event_id = request.args.get("eventId") or None
        batch_size = _int_arg("batchSize", default_batch)
        concurrency = _int_arg("concurrency", default_concurrency)

        outcomes = _services().drainer.drain(
            event_id=event_id,
            batch_size=batch_size,
            concurrency=concurrency,
        )
        if not outcomes:
            return jsonify({"message": "No photos to process"})
        return jsonify(_drain_response(outcomes))

    @app.route("/api/index-faces", methods=["POST"])
    def api_index_faces():
        payload = _json_body()
        event_id = payload.get("eventId")
        photo_id = payload.get("photoId")
        if not event_id:
            return jsonify({"error": "Missing eventId"}), 400

        services = _services()
        require_active_event(services, event_id)

        if photo_id:
            photo = services.store.get_photo(photo_id)
            if photo is None or str(photo.event_id) != str(event_id):
                return jsonify({"error": "Photo not found"}), 404
            outcome = services.drainer.process_photo(photo)
            return jsonify(_drain_response([outcome]))

        default_batch, default_concurrency = _indexing_defaults()
        outcomes = services.drainer.drain(
            event_id=event_id,
            batch_size=_int_arg("batchSize", default_batch, payload.get("batchSize")),
            concurrency=_int_arg("concurrency", default_concurrency, payload.get("concurrency")),
        )
        return jsonify(_drain_response(outcomes))

    @app.route("/api/search-faces", methods=["POST"])
    def api_search_faces():
        upload = request.files.get("file")
        event_id = request.form.get("eventId")
        if upload is None or not event_id:
            return jsonify({"error": "Missing file or eventId"}), 400

        image_bytes = upload.read()
        if not image_bytes:
            return jsonify({"error": "Uploaded file is empty"}), 400

        threshold = request.form.get("threshold")
        max_results = request.form.get("maxResults")
        try:
            threshold = float(threshold) if threshold not in (None, "") else None
            max_results = int(max_results) if max_results not in (None, "") else None
        except ValueError:
            return jsonify({"error": "threshold and maxResults must be numeric"}), 400

        services = _services()
        require_active_event(services, event_id)

        outcome = services.aggregator.search(
            event_id,
            image_bytes,
            threshold=threshold,
            max_results=max_results,
        )
        return jsonify(outcome.to_dict())

    @app.route("/api/create-collection", methods=["POST"])
    def api_create_collection():
        event_id = _json_body().get("eventId")
        if not event_id:
            return jsonify({"error": "Missing eventId"}), 400

        key = _services().provisioner.ensure_collection(event_id)
        return jsonify({"success": True, "collectionId": key.value})

    @app.route("/api/reset-collection", methods=["POST"])
    def api_reset_collection():
        event_id = _json_body().get("eventId")
        if not event_id:
            return jsonify({"error": "Missing eventId"}), 400

        key = _services().provisioner.reset_collection(event_id)
        return jsonify({"success": True, "collectionId": key.value, "message": "Collection reset"})

    @app.route("/api/events/<event_id>/setup-collection", methods=["POST"])
    def api_setup_collection(event_id: str):
        summary = setup_event(_services(), event_id)
        return jsonify({"success": True, **summary})

    @app.route("/api/register-photo", methods=["POST"])
    def api_register_photo():
        payload = _json_body()
        services = _services()

        photo = services.store.register_photo(
            event_id=payload.get("event_id"),
            file_path=payload.get("file_path"),
            storage_url=payload.get("storage_url"),
            file_name=payload.get("file_name"),
            file_size=int(payload.get("file_size") or 0),
            photo_id=payload.get("id"),
        )

        try:
            services.provisioner.ensure_collection(photo.event_id)
        except VisionServiceError as exc:
            # Photo is saved; the drainer provisions the collection on first index
            logger.warning(f"Could not provision collection for event {photo.event_id}: {exc}")

        return jsonify({
            "success": True,
            "photo": photo.to_dict(),
            "message": "Photo registered. Processing will start soon.",
        }), 201

    @app.route("/api/photos/bulk-register", methods=["POST"])
    def api_bulk_register():
        rows = _json_body().get("photos")
        if not isinstance(rows, list) or not rows:
            return jsonify({"error": "No photos to register"}), 400

        photos = _services().store.bulk_register(rows)
        return jsonify({
            "success": True,
            "count": len(photos),
            "data": [photo.to_dict() for photo in photos],
        }), 201

    @app.route("/api/events/<event_id>/stats", methods=["GET"])
    def api_event_stats(event_id: str):
        services = _services()
        if services.store.get_event(event_id) is None:
            return jsonify({"error": "Event not found"}), 404
        return jsonify(services.store.get_stats(event_id=event_id))


def create_app(services: Optional[Services] = None) -> Flask:
    """Create the API application.

    Services are built from configuration on first use unless given.
    """
    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = MAX_UPLOAD_BYTES
    if services is not None:
        app.extensions["face_match"] = services
    _register_routes(app)
    return app


app = create_app()


if __name__ == "__main__":
    from face_match.config import get_config

    server_config = get_config().get("server", {})
    app.run(
        host=server_config.get("host", "0.0.0.0"),
        port=server_config.get("port", 5050),
        debug=server_config.get("debug", False),
    )

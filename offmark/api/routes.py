from __future__ import annotations

from flask import current_app, jsonify, request

from offmark.api import api_bp
from offmark.services.common import InvalidURLError
from offmark.services.engine import SAVE_CREATED, OfflineEngine
from offmark.services.local_store import StorageError
from offmark.services.pending_deletes import UnknownTrackingIdError
from offmark.services.remote import RemoteError, RemoteUnavailableError


def _engine() -> OfflineEngine:
    return current_app.extensions["offmark"]


def _bookmark_payload():
    payload = request.get_json(silent=True) or {}
    url = (payload.get("url") or "").strip()
    title = (payload.get("title") or "").strip()
    tags = payload.get("tags") or []
    return url, title, tags


@api_bp.errorhandler(StorageError)
def handle_storage_error(exc):
    current_app.logger.warning("Storage failure in API request: %s", exc)
    return jsonify({"error": "local storage failure", "detail": str(exc)}), 500


@api_bp.errorhandler(RemoteError)
def handle_remote_error(exc):
    if isinstance(exc, RemoteUnavailableError):
        return jsonify({"error": "server not reachable", "detail": str(exc)}), 503
    return (
        jsonify(
            {
                "error": "server rejected request",
                "status_code": exc.status_code,
                "detail": exc.message,
            }
        ),
        502,
    )


@api_bp.route("/health")
def health():
    return jsonify({"status": "ok", "service": "Offmark"})


@api_bp.route("/reachability")
def reachability():
    engine = _engine()
    reachable = engine.is_server_reachable()
    payload = engine.reachability.snapshot()
    payload["reachable"] = reachable
    return jsonify(payload)


@api_bp.route("/offline/count")
def offline_count():
    engine = _engine()
    return jsonify({"count": engine.get_offline_pending_count()})


@api_bp.route("/sync", methods=["GET"])
def sync_status():
    engine = _engine()
    return jsonify(engine.sync_state().as_dict())


@api_bp.route("/sync", methods=["POST"])
def sync_trigger():
    engine = _engine()
    started = engine.trigger_sync()
    return (
        jsonify({"started": started, "state": engine.sync_state().as_dict()}),
        202,
    )


@api_bp.route("/bookmarks", methods=["GET"])
def bookmarks_list():
    return jsonify(_engine().list_bookmarks().as_dict())


@api_bp.route("/bookmarks", methods=["POST"])
def bookmarks_create():
    url, title, tags = _bookmark_payload()
    try:
        outcome = _engine().save_bookmark(url, title, tags)
    except InvalidURLError as exc:
        return jsonify({"error": str(exc)}), 400
    status_code = 201 if outcome.status == SAVE_CREATED else 202
    return jsonify(outcome.as_dict()), status_code


@api_bp.route("/bookmarks/offline", methods=["POST"])
def bookmarks_save_offline():
    url, title, tags = _bookmark_payload()
    try:
        record = _engine().save_bookmark_offline(url, title, tags)
    except InvalidURLError as exc:
        return jsonify({"error": str(exc)}), 400
    return jsonify(record.as_dict()), 201


@api_bp.route("/bookmarks/<item_id>", methods=["DELETE"])
def bookmarks_delete(item_id: str):
    engine = _engine()
    tracking_id = engine.begin_delete_with_undo(item_id)
    return jsonify(engine.pending_delete(tracking_id)), 202


@api_bp.route("/bookmarks/<item_id>/progress", methods=["POST"])
def bookmarks_progress(item_id: str):
    payload = request.get_json(silent=True) or {}
    try:
        value = int(payload.get("progress"))
    except (TypeError, ValueError):
        return jsonify({"error": "progress must be an integer"}), 400
    progress = _engine().record_read_progress(item_id, value)
    return jsonify({"id": item_id, "read_progress": progress})


@api_bp.route("/pending-deletes/<tracking_id>", methods=["GET"])
def pending_delete_status(tracking_id: str):
    try:
        payload = _engine().pending_delete(tracking_id)
    except UnknownTrackingIdError:
        return jsonify({"error": "pending delete not found"}), 404
    return jsonify(payload)


@api_bp.route("/pending-deletes/<tracking_id>/cancel", methods=["POST"])
def pending_delete_cancel(tracking_id: str):
    engine = _engine()
    try:
        engine.pending_delete(tracking_id)
    except UnknownTrackingIdError:
        return jsonify({"error": "pending delete not found"}), 404
    cancelled = engine.cancel_delete(tracking_id)
    payload = engine.pending_delete(tracking_id)
    if not cancelled:
        return jsonify({"error": "undo window has closed", **payload}), 409
    return jsonify(payload)


@api_bp.route("/labels", methods=["GET"])
def labels_list():
    labels = _engine().list_labels()
    return jsonify({"items": [label.as_dict() for label in labels]})


@api_bp.route("/labels", methods=["POST"])
def labels_create():
    payload = request.get_json(silent=True) or {}
    name = (payload.get("name") or "").strip()
    if not name:
        return jsonify({"error": "name is required"}), 400
    created = _engine().create_label(name)
    return jsonify({"name": name, "created": created}), 201 if created else 200


@api_bp.route("/labels/refresh", methods=["POST"])
def labels_refresh():
    labels = _engine().refresh_labels()
    return jsonify({"items": [label.as_dict() for label in labels]})

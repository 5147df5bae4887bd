import time

from offmark.services.local_store import StorageError
from offmark.services.remote import Label, RemoteBookmark, RemoteError


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_health_endpoint(client):
    response = client.get("/api/v1/health")
    assert response.status_code == 200
    assert response.get_json() == {"status": "ok", "service": "Offmark"}


def test_reachability_endpoint_reports_cache(client, remote):
    remote.reachable = False
    payload = client.get("/api/v1/reachability").get_json()
    assert payload["reachable"] is False
    assert payload["age_seconds"] == 0

    client.get("/api/v1/reachability")
    assert remote.health_checks == 1


def test_create_bookmark_online_and_offline(client, remote):
    response = client.post(
        "/api/v1/bookmarks",
        json={"url": "https://example.com/a", "title": "A", "tags": ["python"]},
    )
    assert response.status_code == 201
    assert response.get_json()["status"] == "created"
    assert remote.created == [("https://example.com/a", "A", ["python"])]

    response = client.post(
        "/api/v1/bookmarks/offline",
        json={"url": "https://example.com/b", "title": "B", "tags": "x, y, x"},
    )
    assert response.status_code == 201
    assert response.get_json()["tags"] == ["x", "y"]

    assert client.get("/api/v1/offline/count").get_json() == {"count": 1}
    state = client.get("/api/v1/sync").get_json()
    assert state["kind"] == "pending"
    assert state["count"] == 1
    assert state["is_syncing"] is False


def test_create_bookmark_queues_when_unreachable(client, remote):
    remote.reachable = False
    response = client.post("/api/v1/bookmarks", json={"url": "https://example.com/a"})

    assert response.status_code == 202
    payload = response.get_json()
    assert payload["status"] == "queued"
    assert payload["bookmark"]["url"] == "https://example.com/a"


def test_create_bookmark_rejects_invalid_url(client):
    response = client.post("/api/v1/bookmarks", json={"url": "not a url"})
    assert response.status_code == 400
    assert "invalid url" in response.get_json()["error"]

    response = client.post("/api/v1/bookmarks/offline", json={})
    assert response.status_code == 400


def test_manual_sync_runs_in_background(client, engine, remote):
    engine.save_bookmark_offline("https://example.com/a", "A")
    engine.save_bookmark_offline("https://example.com/b", "B")

    response = client.post("/api/v1/sync")
    assert response.status_code == 202
    assert response.get_json()["started"] is True

    assert _wait_for(lambda: engine.sync_state().kind == "success")
    assert sorted(url for url, _title, _tags in remote.created) == [
        "https://example.com/a",
        "https://example.com/b",
    ]
    assert client.get("/api/v1/offline/count").get_json() == {"count": 0}


def test_delete_with_undo_flow(client, remote):
    remote.bookmarks = [
        RemoteBookmark(id="bm-1", url="https://example.com/1", title="One")
    ]

    response = client.delete("/api/v1/bookmarks/bm-1")
    assert response.status_code == 202
    tracking_id = response.get_json()["tracking_id"]
    assert response.get_json()["state"] == "active"

    listing = client.get("/api/v1/bookmarks").get_json()
    assert listing["items"] == []

    response = client.get(f"/api/v1/pending-deletes/{tracking_id}")
    assert response.status_code == 200

    response = client.post(f"/api/v1/pending-deletes/{tracking_id}/cancel")
    assert response.status_code == 200
    assert response.get_json()["cancelled"] is True

    response = client.post(f"/api/v1/pending-deletes/{tracking_id}/cancel")
    assert response.status_code == 409

    listing = client.get("/api/v1/bookmarks").get_json()
    assert [item["id"] for item in listing["items"]] == ["bm-1"]


def test_unknown_pending_delete_returns_404(client):
    assert client.get("/api/v1/pending-deletes/nope").status_code == 404
    assert client.post("/api/v1/pending-deletes/nope/cancel").status_code == 404


def test_read_progress_endpoint(client):
    response = client.post("/api/v1/bookmarks/bm-1/progress", json={"progress": 40})
    assert response.get_json() == {"id": "bm-1", "read_progress": 40}

    response = client.post("/api/v1/bookmarks/bm-1/progress", json={"progress": 10})
    assert response.get_json()["read_progress"] == 40

    response = client.post(
        "/api/v1/bookmarks/bm-1/progress", json={"progress": "lots"}
    )
    assert response.status_code == 400


def test_labels_endpoints(client, remote):
    response = client.post("/api/v1/labels", json={"name": " later "})
    assert response.status_code == 201
    assert response.get_json() == {"name": "later", "created": True}

    response = client.post("/api/v1/labels", json={"name": "later"})
    assert response.status_code == 200
    assert response.get_json()["created"] is False

    assert client.post("/api/v1/labels", json={"name": "  "}).status_code == 400

    remote.labels = [Label("python", 2, "/labels/python")]
    response = client.post("/api/v1/labels/refresh")
    assert response.get_json()["items"] == [
        {"name": "python", "count": 2, "href": "/labels/python"}
    ]

    items = client.get("/api/v1/labels").get_json()["items"]
    assert items == [
        {"name": "later", "usage_count": 1},
        {"name": "python", "usage_count": 2},
    ]


def test_remote_rejection_maps_to_bad_gateway(client, remote):
    def _rejected():
        raise RemoteError(401, "unauthorized")

    remote.list_labels = _rejected

    response = client.post("/api/v1/labels/refresh")
    assert response.status_code == 502
    assert response.get_json()["status_code"] == 401


def test_storage_failure_maps_to_server_error(client, engine, monkeypatch):
    def _broken_count(max_attempts=0):
        raise StorageError("disk I/O error")

    monkeypatch.setattr(engine.store, "count_pending", _broken_count)

    response = client.get("/api/v1/offline/count")
    assert response.status_code == 500
    assert response.get_json()["error"] == "local storage failure"


def test_cli_pending_count_and_sync_now(app, engine, remote):
    runner = app.test_cli_runner()
    engine.save_bookmark_offline("https://example.com/a", "A")
    engine.save_bookmark_offline("https://example.com/b", "B")

    result = runner.invoke(args=["pending-count"])
    assert result.output.strip() == "2"

    remote.reachable = False
    result = runner.invoke(args=["sync-now"])
    assert result.output.strip() == "Server not reachable. Cannot sync."

    engine.reachability.invalidate()
    remote.reachable = True
    result = runner.invoke(args=["sync-now"])
    assert result.output.strip() == "Synced 2, failed 0, skipped 0 bookmarks."
    assert runner.invoke(args=["pending-count"]).output.strip() == "0"


def test_cli_init_db(app):
    result = app.test_cli_runner().invoke(args=["init-db"])
    assert "Initialized Offmark database." in result.output

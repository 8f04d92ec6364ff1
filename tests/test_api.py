"""
Integration tests for the HTTP API
"""

from unittest.mock import patch


def test_health_endpoint(client):
    response = client.get("/v1/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["database"] is True
    assert response.headers["X-API-Version"] == "v1"


def test_request_id_is_echoed(client):
    response = client.get("/v1/healthz", headers={"X-Request-ID": "trace-123"})
    assert response.headers.get("X-Request-ID") == "trace-123"


class TestJobs:

    def test_create_and_poll(self, client, admin_headers):
        response = client.post("/v1/jobs", json={"jobType": "extraction", "payload": {"documentId": "d1"}},
                               headers=admin_headers)
        assert response.status_code == 201
        job_id = response.json()["jobId"]

        status = client.get(f"/v1/jobs/{job_id}", headers=admin_headers).json()
        assert status["status"] == "pending"
        assert status["jobType"] == "extraction"

    def test_unauthenticated(self, client):
        response = client.post("/v1/jobs", json={"jobType": "extraction"})
        assert response.status_code == 401
        assert response.json()["detail"]["reason"] == "unauthenticated"

    def test_rate_limited(self, client, admin_headers, set_limits):
        set_limits("acme", concurrent=1)
        body = {"jobType": "extraction", "customerId": "acme"}
        assert client.post("/v1/jobs", json=body, headers=admin_headers).status_code == 201

        response = client.post("/v1/jobs", json=body, headers=admin_headers)

        assert response.status_code == 429
        assert response.json()["detail"]["reason"] == "rate_limited"

    def test_invalid_priority(self, client, admin_headers):
        response = client.post("/v1/jobs", json={"jobType": "extraction", "priority": "asap"},
                               headers=admin_headers)
        assert response.status_code == 422
        assert response.json()["detail"]["reason"] == "validation_error"

    def test_unknown_job(self, client, admin_headers):
        assert client.get("/v1/jobs/missing", headers=admin_headers).status_code == 404


class TestRateLimits:

    def test_check(self, client, admin_headers, set_limits):
        set_limits("acme", concurrent=0)
        response = client.post("/v1/rate-limit/check", json={"customerId": "acme"}, headers=admin_headers)
        assert response.json() == {"allowed": False}

        response = client.post("/v1/rate-limit/check", json={"customerId": "other"}, headers=admin_headers)
        assert response.json() == {"allowed": True}

    def test_usage(self, client, admin_headers, set_limits):
        set_limits("acme", per_hour=10)
        data = client.get("/v1/tenants/acme/usage", headers=admin_headers).json()
        assert data["limited"] is True
        assert data["percentages"]["per_hour"] == 0.0


class TestBatches:

    def test_requires_key(self, client):
        assert client.get("/v1/batches/anything").status_code == 401

    def test_dispatch_and_read_back(self, client, admin_headers, make_batch):
        batch_id, _ = make_batch([("png", 0), ("pdf", 0), ("jpg", 1)])

        response = client.post("/v1/batches/dispatch", json={"batchId": batch_id, "maxParallel": 2},
                               headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["processed"] == 3
        assert data["waves"] == 2

        batch = client.get(f"/v1/batches/{batch_id}", headers=admin_headers).json()
        assert batch["status"] == "indexing"
        assert batch["processed_documents"] == 3
        assert batch["phase"] == "ready_for_validation"

    def test_dispatch_empty_batch(self, client, admin_headers, make_batch):
        batch_id, _ = make_batch([("png", 0, True)])
        data = client.post("/v1/batches/dispatch", json={"batchId": batch_id}, headers=admin_headers).json()
        assert data["processed"] == 0
        assert data["message"] == "No documents to process"

    def test_dispatch_selection_failure(self, client, app, admin_headers):
        dispatcher = app.state.services.dispatcher
        with patch.object(dispatcher, "select_documents", side_effect=RuntimeError("db down")):
            response = client.post("/v1/batches/dispatch", json={"batchId": "b1"}, headers=admin_headers)
        assert response.status_code == 500
        data = response.json()
        assert data["success"] is False
        assert data["error"] == "db down"
        assert "durationMs" in data

    def test_max_parallel_must_be_positive(self, client, admin_headers):
        response = client.post("/v1/batches/dispatch", json={"batchId": "b1", "maxParallel": 0},
                               headers=admin_headers)
        assert response.status_code == 422

    def test_unknown_batch(self, client, admin_headers):
        assert client.get("/v1/batches/missing", headers=admin_headers).status_code == 404

    def test_export_lifecycle(self, client, admin_headers, make_batch):
        batch_id, _ = make_batch([("png", 0)], status="complete")

        started = client.post(f"/v1/batches/{batch_id}/export/start", headers=admin_headers).json()
        assert started["export_started_at"] is not None

        done = client.post(f"/v1/batches/{batch_id}/export/complete", headers=admin_headers).json()
        assert done["status"] == "exported"
        assert done["export_started_at"] is None

    def test_export_failure(self, client, admin_headers, make_batch):
        batch_id, _ = make_batch([("png", 0)], status="complete")
        client.post(f"/v1/batches/{batch_id}/export/start", headers=admin_headers)

        failed = client.post(f"/v1/batches/{batch_id}/export/fail", json={"error": "sftp refused"},
                             headers=admin_headers).json()

        assert failed["status"] == "error"
        assert failed["phase"] == "failed"
        assert failed["export_started_at"] is None

    def test_export_timeout_sweep(self, client, admin_headers):
        data = client.post("/v1/batches/export-timeouts", headers=admin_headers).json()
        assert data == {"success": True, "timedOut": 0, "batchIds": []}

    def test_resume(self, client, admin_headers, make_batch, extractor):
        batch_id, doc_ids = make_batch([("png", 0, True), ("png", 0)], status="error")

        response = client.post(f"/v1/batches/{batch_id}/resume", headers=admin_headers)

        assert response.status_code == 202
        # Background tasks run before TestClient returns
        assert extractor.calls == [doc_ids[1]]


class TestDocuments:

    def test_extraction_complete_and_validation(self, client, admin_headers, make_batch):
        batch_id, doc_ids = make_batch([("pdf", 0)], status="indexing")

        data = client.post(f"/v1/documents/{doc_ids[0]}/extraction-complete",
                           json={"confidence": 0.7, "metadata": {"total": 10}}, headers=admin_headers).json()
        assert data["processedDocuments"] == 1
        assert data["phase"] == "ready_for_validation"

        data = client.post(f"/v1/documents/{doc_ids[0]}/validated", headers=admin_headers).json()
        assert data["validatedDocuments"] == 1
        assert data["phase"] == "complete"

    def test_unknown_document(self, client, admin_headers):
        response = client.post("/v1/documents/nope/validated", headers=admin_headers)
        assert response.status_code == 404


class TestEntities:

    def test_crud(self, client, admin_headers):
        created = client.post("/v1/entities/batches", json={"batch_name": "offline"}, headers=admin_headers)
        assert created.status_code == 201
        batch_id = created.json()["id"]

        patched = client.patch(f"/v1/entities/batches/{batch_id}", json={"priority": 3}, headers=admin_headers)
        assert patched.json()["priority"] == 3

        deleted = client.delete(f"/v1/entities/batches/{batch_id}", headers=admin_headers)
        assert deleted.json() == {"deleted": True}
        again = client.delete(f"/v1/entities/batches/{batch_id}", headers=admin_headers)
        assert again.json() == {"deleted": False}

    def test_errors(self, client, admin_headers):
        assert client.post("/v1/entities/invoices", json={}, headers=admin_headers).status_code == 404
        assert client.patch("/v1/entities/batches/nope", json={"priority": 1},
                            headers=admin_headers).status_code == 404
        assert client.post("/v1/entities/batches", json={"bogus": 1}, headers=admin_headers).status_code == 422

    def test_tracker_fields_rejected(self, client, admin_headers, make_batch):
        batch_id, _ = make_batch([("png", 0)])
        response = client.patch(f"/v1/entities/batches/{batch_id}", json={"processed_documents": 99},
                                headers=admin_headers)
        assert response.status_code == 422
        batch = client.get(f"/v1/batches/{batch_id}", headers=admin_headers).json()
        assert batch["processed_documents"] == 0


def test_recent_logs(client, admin_headers):
    client.post("/v1/jobs", json={"jobType": "extraction"}, headers=admin_headers)

    data = client.get("/v1/logs", params={"limit": 500}, headers=admin_headers).json()

    assert data["count"] == len(data["logs"]) > 0
    assert any(r.get("logger") == "http" for r in data["logs"])

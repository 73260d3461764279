"""Tests for document ingestion: upload validation and job status."""

import base64
from unittest.mock import AsyncMock, patch

import pytest

from wessley.service import ingest
from wessley.service.errors import UpstreamServiceError
from wessley.service.rate_limit import MemoryWindowBackend, build_limiters
from wessley.service.runtime import get_runtime

VEHICLE = {"make": "Hyundai", "model": "Galloper", "year": 2000}


class TestUploadHelpers:
    """Pure helpers behind the upload routes."""

    def test_decoded_size_accounts_for_padding(self):
        encoded = base64.b64encode(b"abcd").decode()
        assert encoded == "YWJjZA=="
        assert ingest.decoded_size(encoded) == 4

    def test_decoded_size_of_data_uri(self):
        assert ingest.decoded_size("data:application/pdf;base64,YWJj") == 3

    def test_extract_base64(self):
        assert ingest.extract_base64("data:application/pdf;base64,QUJD") == "QUJD"
        assert ingest.extract_base64("https://example.com/a.pdf") == "https://example.com/a.pdf"

    @pytest.mark.parametrize(
        "content,valid",
        [("QUJD", True), ("QU JD\n", True), ("QUI=", True), ("QU$D", False), ("Q===", False)],
    )
    def test_is_valid_base64(self, content, valid):
        assert ingest.is_valid_base64(content) is valid

    def test_vehicle_file_name(self):
        vehicle = {"year": 1998, "make": "Land Rover", "model": "Range  Rover"}
        assert ingest.vehicle_file_name(vehicle) == "1998_land_rover_range_rover.pdf"

    def test_has_allowed_extension(self):
        assert ingest.has_allowed_extension("Wiring.PDF")
        assert ingest.has_allowed_extension("scan.webp")
        assert not ingest.has_allowed_extension("notes.docx")

    def test_upload_metadata_keeps_extra(self):
        metadata = ingest.upload_metadata("user-1", {"source": "manual"})
        assert metadata["source"] == "manual"
        assert metadata["uploaded_by"] == "user-1"
        assert metadata["uploaded_at"].endswith("Z")


class TestJobStatusBody:
    """Mapping of upstream job records to the public status view."""

    @pytest.mark.parametrize(
        "progress,step",
        [(0, "classifying_pages"), (29, "classifying_pages"), (30, "extracting_schematics"),
         (60, "indexing_text"), (89, "indexing_text"), (95, "finalizing")],
    )
    def test_current_step_thresholds(self, progress, step):
        body = ingest.job_status_body({"job_id": "j1", "status": "processing", "progress": progress})
        assert body["current_step"] == step
        assert body["progress"] == progress / 100

    def test_pending_maps_to_queued(self):
        body = ingest.job_status_body({"job_id": "j1", "status": "pending"})
        assert body["status"] == "queued"
        assert body["progress"] == 0

    def test_unknown_status_maps_to_queued(self):
        assert ingest.job_status_body({"status": "weird"})["status"] == "queued"

    def test_progress_is_clamped(self):
        assert ingest.job_status_body({"status": "processing", "progress": 150})["progress"] == 1

    def test_completed_job_reports_result(self):
        body = ingest.job_status_body(
            {
                "job_id": "j1",
                "status": "completed",
                "progress": 100,
                "result": {"chunks_created": 12, "embeddings_generated": 40},
            }
        )
        assert "current_step" not in body
        assert body["result"] == {
            "pages_processed": 12,
            "schematics_found": 0,
            "components_extracted": 0,
            "text_chunks_indexed": 40,
        }

    def test_failed_job_reports_error(self):
        body = ingest.job_status_body({"job_id": "j1", "status": "failed", "error": "bad scan"})
        assert body["error"] == {"code": "processing_failed", "message": "bad scan"}
        assert "current_step" not in body


class TestCreateIngestion:
    """POST /api/ingest."""

    def test_requires_auth(self, client):
        response = client.post("/api/ingest", json={"pdf_url": "https://x/a.pdf", "vehicle": VEHICLE})
        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"

    def test_requires_subscription(self, client, free_user):
        response = client.post(
            "/api/ingest", json={"pdf_url": "https://x/a.pdf", "vehicle": VEHICLE}, headers=free_user
        )
        assert response.status_code == 402
        body = response.json()
        assert body["error"] == "subscription_required"
        assert body["upgrade_url"] == "/pricing"

    @pytest.mark.parametrize(
        "payload,message",
        [
            ({"vehicle": VEHICLE}, "pdf_url is required"),
            ({"pdf_url": "https://x/a.pdf"}, "vehicle object is required"),
            (
                {"pdf_url": "https://x/a.pdf", "vehicle": {"make": "Hyundai"}},
                "vehicle.make, vehicle.model, and vehicle.year are required",
            ),
        ],
    )
    def test_validation(self, client, subscriber, payload, message):
        response = client.post("/api/ingest", json=payload, headers=subscriber)
        assert response.status_code == 400
        assert response.json() == {
            "error": "invalid_input",
            "message": message,
            "request_id": response.headers["X-Request-ID"],
        }

    def test_oversized_data_uri(self, client, subscriber):
        create_job = AsyncMock()
        # ~2 MiB decoded against a 1 MiB ceiling keeps the request small
        content = "A" * (2 * 1024 * 1024 * 4 // 3)
        with patch.object(ingest, "MAX_FILE_SIZE_BYTES", 1024 * 1024), patch.object(
            get_runtime().services.ingestion, "create_job", create_job
        ):
            response = client.post(
                "/api/ingest",
                json={"pdf_url": f"data:application/pdf;base64,{content}", "vehicle": VEHICLE},
                headers=subscriber,
            )
        assert response.status_code == 413
        assert response.json()["error"] == "file_too_large"
        assert response.json()["message"] == "Max file size is 50MB. Your file is 2MB."
        create_job.assert_not_called()

    def test_creates_job_from_url(self, client, subscriber):
        runtime = get_runtime()
        runtime.limiters = build_limiters(backend=MemoryWindowBackend())
        create_job = AsyncMock(return_value={"job_id": "job-1", "status": "pending"})
        with patch.object(runtime.services.ingestion, "create_job", create_job):
            response = client.post(
                "/api/ingest",
                json={"pdf_url": "https://files.example.com/manual.pdf", "vehicle": VEHICLE},
                headers=subscriber,
            )

        assert response.status_code == 202
        assert response.json() == {"job_id": "job-1", "status": "queued", "estimated_time": 60}
        assert response.headers["X-RateLimit-Limit"] == "10"
        assert response.headers["X-RateLimit-Remaining"] == "9"
        kwargs = create_job.call_args.kwargs
        assert kwargs["file_name"] == "2000_hyundai_galloper.pdf"
        assert kwargs["file_url"] == "https://files.example.com/manual.pdf"
        assert kwargs["file_content"] is None
        assert kwargs["metadata"]["vehicle"] == VEHICLE
        assert kwargs["metadata"]["uploaded_by"] == "user-pro"

    def test_data_uri_is_sent_as_content(self, client, subscriber):
        create_job = AsyncMock(return_value={"job_id": "job-2"})
        with patch.object(get_runtime().services.ingestion, "create_job", create_job):
            response = client.post(
                "/api/ingest",
                json={"pdf_url": "data:application/pdf;base64,JVBERi0=", "vehicle": VEHICLE},
                headers=subscriber,
            )
        assert response.status_code == 202
        assert create_job.call_args.kwargs["file_url"] is None
        assert create_job.call_args.kwargs["file_content"] == "JVBERi0="

    @pytest.mark.parametrize(
        "error,status,code",
        [
            (UpstreamServiceError("bad", 400, "ingestion", "invalid_pdf"), 400, "invalid_pdf"),
            (UpstreamServiceError("bad", 400, "ingestion", "corrupt_file"), 400, "corrupt_file"),
            (UpstreamServiceError("big", 413, "ingestion", "file_too_large"), 413, "file_too_large"),
            (UpstreamServiceError("busy", 503, "ingestion", "service_unavailable"), 503, "queue_full"),
            (UpstreamServiceError("oops", 502, "ingestion"), 500, "service_error"),
        ],
    )
    def test_upstream_errors(self, client, subscriber, error, status, code):
        with patch.object(
            get_runtime().services.ingestion, "create_job", AsyncMock(side_effect=error)
        ):
            response = client.post(
                "/api/ingest",
                json={"pdf_url": "https://x/a.pdf", "vehicle": VEHICLE},
                headers=subscriber,
            )
        assert response.status_code == status
        assert response.json()["error"] == code

    def test_upstream_detail_is_redacted(self, client, subscriber):
        error = UpstreamServiceError(
            "db error at /var/lib/app/secret.py sk_live_ABC123", 500, "ingestion"
        )
        with patch.object(
            get_runtime().services.ingestion, "create_job", AsyncMock(side_effect=error)
        ):
            response = client.post(
                "/api/ingest",
                json={"pdf_url": "https://x/a.pdf", "vehicle": VEHICLE},
                headers=subscriber,
            )
        assert response.status_code == 500
        assert response.json()["message"] == "db error at [redacted] [redacted]"

    def test_rate_limit_exhausted(self, client, subscriber):
        runtime = get_runtime()
        runtime.limiters = build_limiters(backend=MemoryWindowBackend())
        create_job = AsyncMock(return_value={"job_id": "job-1"})
        with patch.object(runtime.services.ingestion, "create_job", create_job):
            statuses = [
                client.post(
                    "/api/ingest",
                    json={"pdf_url": "https://x/a.pdf", "vehicle": VEHICLE},
                    headers=subscriber,
                ).status_code
                for _ in range(11)
            ]
        assert statuses == [202] * 10 + [429]
        assert create_job.call_count == 10


class TestIngestionStatus:
    """GET /api/ingest/{job_id}."""

    def test_requires_auth(self, client):
        assert client.get("/api/ingest/job-1").status_code == 401

    def test_returns_mapped_status(self, client, free_user):
        job = {"job_id": "job-1", "status": "processing", "progress": 45}
        with patch.object(get_runtime().services.ingestion, "get_job", AsyncMock(return_value=job)):
            response = client.get("/api/ingest/job-1", headers=free_user)
        assert response.status_code == 200
        assert response.json() == {
            "job_id": "job-1",
            "status": "processing",
            "progress": 0.45,
            "current_step": "extracting_schematics",
        }

    def test_unknown_job(self, client, free_user):
        error = UpstreamServiceError("Ingestion job not found", 404, "ingestion", "not_found")
        with patch.object(get_runtime().services.ingestion, "get_job", AsyncMock(side_effect=error)):
            response = client.get("/api/ingest/missing", headers=free_user)
        assert response.status_code == 404
        assert response.json()["message"] == "Ingestion job not found"


class TestRagIngest:
    """POST and GET /api/rag/ingest."""

    def _post(self, client, headers, **overrides):
        payload = {"file_content": "JVBERi0=", "file_name": "manual.pdf", "file_type": "pdf"}
        payload.update(overrides)
        return client.post("/api/rag/ingest", json=payload, headers=headers)

    def test_requires_auth(self, client):
        assert self._post(client, {}).status_code == 401

    def test_rejects_unknown_file_type(self, client, subscriber):
        response = self._post(client, subscriber, file_type="spreadsheet")
        assert response.status_code == 400
        assert "pdf, image, schematic" in response.json()["message"]

    def test_rejects_bad_extension(self, client, subscriber):
        response = self._post(client, subscriber, file_name="manual.docx")
        assert response.status_code == 400
        assert ".pdf" in response.json()["allowed"]

    def test_rejects_invalid_base64(self, client, subscriber):
        response = self._post(client, subscriber, file_content="not base64!")
        assert response.status_code == 400
        assert response.json()["message"] == "Invalid base64 encoding"

    def test_creates_job(self, client, subscriber):
        job = {"job_id": "rag-1", "status": "pending", "created_at": "2025-01-01T00:00:00Z"}
        create_job = AsyncMock(return_value=job)
        with patch.object(get_runtime().services.ingestion, "create_job", create_job):
            response = self._post(
                client, subscriber, vehicle_id="veh-1", metadata={"source": "upload"}
            )

        assert response.status_code == 200
        body = response.json()
        assert body["job_id"] == "rag-1"
        assert body["status"] == "pending"
        assert "GET /api/rag/ingest?job_id=<id>" in body["message"]
        kwargs = create_job.call_args.kwargs
        assert kwargs["vehicle_id"] == "veh-1"
        assert kwargs["metadata"]["source"] == "upload"
        assert kwargs["metadata"]["uploaded_by"] == "user-pro"

    def test_upstream_unsupported_type_passes_through(self, client, subscriber):
        error = UpstreamServiceError("Unsupported file type.", 415, "ingestion", "unsupported_type")
        with patch.object(
            get_runtime().services.ingestion, "create_job", AsyncMock(side_effect=error)
        ):
            response = self._post(client, subscriber)
        assert response.status_code == 415
        assert response.json()["error"] == "unsupported_type"

    def test_status_requires_job_id(self, client, free_user):
        response = client.get("/api/rag/ingest", headers=free_user)
        assert response.status_code == 400
        assert response.json()["message"] == "job_id query parameter is required"

    def test_status_returns_raw_fields(self, client, free_user):
        job = {"job_id": "rag-1", "status": "completed", "progress": 100, "result": {"chunks_created": 3}}
        with patch.object(get_runtime().services.ingestion, "get_job", AsyncMock(return_value=job)):
            response = client.get("/api/rag/ingest", params={"job_id": "rag-1"}, headers=free_user)
        body = response.json()
        assert body["status"] == "completed"
        assert body["progress"] == 100
        assert body["result"] == {"chunks_created": 3}
        assert body["error"] is None

"""Upload validation and job-status shaping for the ingestion endpoints."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict, Optional

MAX_FILE_SIZE_BYTES = 50 * 1024 * 1024
ESTIMATED_PROCESSING_SECONDS = 60

RAG_FILE_TYPES = ("pdf", "image", "schematic")
ALLOWED_EXTENSIONS = (".pdf", ".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg")

_BASE64_RE = re.compile(r"^[A-Za-z0-9+/]*={0,2}$")
_WHITESPACE_RE = re.compile(r"\s+")

# upstream ingestion status -> public status
_STATUS_MAP = {
    "pending": "queued",
    "processing": "processing",
    "completed": "completed",
    "failed": "failed",
}

# upstream error code -> (public code, status, message)
INGEST_ERROR_MAP = {
    "file_too_large": ("file_too_large", 413, "Max file size is 50MB"),
    "invalid_pdf": ("invalid_pdf", 400, "File is not a valid PDF"),
    "corrupt_file": ("corrupt_file", 400, "File appears corrupted"),
}


def is_data_uri(url: str) -> bool:
    return url.startswith("data:")


def extract_base64(data_uri: str) -> str:
    if not is_data_uri(data_uri):
        return data_uri
    _, sep, content = data_uri.partition(",")
    return content if sep else data_uri


def decoded_size(base64_content: str) -> int:
    """Byte size of a base64 payload without decoding it."""
    content = base64_content.split(",")[1] if "," in base64_content else base64_content
    padding = content.count("=")
    return (len(content) * 3) // 4 - padding


def size_in_mb(size: int) -> int:
    return round(size / 1024 / 1024)


def is_valid_base64(content: str) -> bool:
    return bool(_BASE64_RE.match(_WHITESPACE_RE.sub("", content)))


def has_allowed_extension(file_name: str) -> bool:
    return file_name.lower().endswith(ALLOWED_EXTENSIONS)


def vehicle_file_name(vehicle: Dict[str, Any]) -> str:
    name = f"{vehicle.get('year')}_{vehicle.get('make')}_{vehicle.get('model')}.pdf"
    return _WHITESPACE_RE.sub("_", name).lower()


def upload_metadata(user_id: str, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {
        **(extra or {}),
        "uploaded_by": user_id,
        "uploaded_at": datetime.utcnow().isoformat() + "Z",
    }


def map_job_status(status: Optional[str]) -> str:
    return _STATUS_MAP.get(status or "", "queued")


def map_progress(progress: Optional[float]) -> float:
    if progress is None:
        return 0
    return min(1, max(0, progress / 100))


def current_step(progress: Optional[float], status: Optional[str]) -> Optional[str]:
    if status in ("completed", "failed"):
        return None
    percent = progress or 0
    if percent < 30:
        return "classifying_pages"
    if percent < 60:
        return "extracting_schematics"
    if percent < 90:
        return "indexing_text"
    return "finalizing"


def job_status_body(job: Dict[str, Any]) -> Dict[str, Any]:
    """Public view of an upstream ingestion job."""

    status = job.get("status")
    body: Dict[str, Any] = {
        "job_id": job.get("job_id"),
        "status": map_job_status(status),
        "progress": map_progress(job.get("progress")),
    }
    step = current_step(job.get("progress"), status)
    if step:
        body["current_step"] = step

    result = job.get("result")
    if status == "completed" and result:
        body["result"] = {
            "pages_processed": result.get("chunks_created") or 0,
            "schematics_found": 0,
            "components_extracted": 0,
            "text_chunks_indexed": result.get("embeddings_generated") or 0,
        }
    if status == "failed" and job.get("error"):
        body["error"] = {"code": "processing_failed", "message": job["error"]}
    return body

from __future__ import annotations

import threading
from copy import deepcopy
from datetime import datetime
from typing import Any, Dict

SCRAPER_PHASES = ("reddit", "forums", "youtube", "parts", "idle")


def _now() -> str:
    return datetime.utcnow().isoformat() + "Z"


class ScraperStatusStore:
    """Process-local status record reported by the knowledge scraper."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._status: Dict[str, Any] = {
            "phase": "idle",
            "progress": {"documents_scraped": 0, "vectors_indexed": 0, "errors": 0},
            "current_source": None,
            "eta_hours": None,
            "last_error": None,
            "started_at": None,
            "last_updated": _now(),
        }

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            status = deepcopy(self._status)
        return {
            "phase": status["phase"],
            "progress": status["progress"],
            "current_source": status["current_source"],
            "eta_hours": status["eta_hours"],
            "last_error": status["last_error"],
            "_meta": {
                "started_at": status["started_at"],
                "last_updated": status["last_updated"],
            },
        }

    def update(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """Merge a scraper report.

        ``phase``, ``progress`` and ``started_at`` keep their previous value
        when absent; the transient fields are replaced outright.
        """

        if body.get("phase") and body["phase"] not in SCRAPER_PHASES:
            raise ValueError(f"unknown scraper phase: {body['phase']}")
        with self._lock:
            current = self._status
            self._status = {
                "phase": body.get("phase") or current["phase"],
                "progress": body.get("progress") or current["progress"],
                "current_source": body.get("current_source"),
                "eta_hours": body.get("eta_hours"),
                "last_error": body.get("last_error"),
                "started_at": body.get("started_at") or current["started_at"],
                "last_updated": _now(),
            }
            return deepcopy(self._status)

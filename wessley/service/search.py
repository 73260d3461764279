from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import quote

from wessley.logging import get_logger

logger = get_logger(__name__)

MIN_QUERY_LENGTH = 2
SEMANTIC_THRESHOLD = 0.5
DEFAULT_TYPES = ("person", "workspace", "component", "document")


def text_match_score(query: str, fields: Iterable[Optional[str]]) -> float:
    """Score how well ``query`` matches the best of ``fields``.

    1.0 exact, 0.9 prefix, 0.7 substring, 0.5 prefix of any word, else 0.
    """

    needle = query.lower()
    best = 0.0
    for value in fields:
        if not value:
            continue
        haystack = value.lower()
        if haystack == needle:
            return 1.0
        if haystack.startswith(needle):
            best = max(best, 0.9)
        if needle in haystack:
            best = max(best, 0.7)
        if any(word.startswith(needle) for word in haystack.split()):
            best = max(best, 0.5)
    return best


def _truncate(text: str, size: int) -> str:
    return text[:size] + ("..." if len(text) > size else "")


class SearchService:
    """Site-wide search across people, public workspaces and the semantic index."""

    def __init__(self, store, semantic) -> None:
        self.store = store
        self.semantic = semantic

    async def search_people(self, query: str, limit: int) -> List[Dict[str, Any]]:
        profiles = await asyncio.to_thread(self.store.search_profiles, query, limit)
        return [
            {
                "id": f"person-{p.user_id}",
                "title": p.display_name or p.username or "Unknown User",
                "type": "person",
                "url": f"/users/{p.username or p.user_id}",
                "score": text_match_score(query, [p.display_name, p.username, p.full_name]),
            }
            for p in profiles
        ]

    async def search_workspaces(self, query: str, limit: int) -> List[Dict[str, Any]]:
        workspaces = await asyncio.to_thread(self.store.search_public_workspaces, query, limit)
        results = []
        for w in workspaces:
            item = {
                "id": f"workspace-{w.id}",
                "title": w.name,
                "type": "workspace",
                "url": f"/g/{w.id}/project",
                "score": text_match_score(query, [w.name, w.description]),
            }
            if w.description:
                item["description"] = w.description
            results.append(item)
        return results

    async def search_semantic(self, query: str, limit: int) -> List[Dict[str, Any]]:
        data = await self.semantic.search(query, limit=limit, threshold=SEMANTIC_THRESHOLD)
        results = []
        for hit in data.get("results") or []:
            content = hit.get("content") or ""
            metadata = hit.get("metadata") or {}
            is_component = metadata.get("component_type") is not None
            item = {
                "id": f"semantic-{hit.get('id')}",
                "title": metadata.get("chapter")
                or metadata.get("component_type")
                or content[:50] + "...",
                "description": _truncate(content, 100),
                "type": "component" if is_component else "document",
                "score": hit.get("score") or 0,
            }
            if metadata.get("source"):
                item["url"] = f"/docs/{quote(metadata['source'], safe='')}"
            results.append(item)
        return results

    async def search(
        self, query: str, limit: int = 10, types: Optional[Iterable[str]] = None
    ) -> Dict[str, Any]:
        normalized = query.strip().lower()
        if len(normalized) < MIN_QUERY_LENGTH:
            return {"results": [], "query": query, "total": 0, "processing_time_ms": 0}

        wanted = set(DEFAULT_TYPES if types is None else types)
        sources = []
        if "person" in wanted:
            sources.append(("people", self.search_people(normalized, min(limit, 5))))
        if "workspace" in wanted:
            sources.append(("workspaces", self.search_workspaces(normalized, min(limit, 5))))
        if wanted & {"component", "document"}:
            sources.append(("semantic", self.search_semantic(normalized, min(limit, 10))))

        started = time.perf_counter()
        outcomes = await asyncio.gather(
            *(coro for _, coro in sources), return_exceptions=True
        )
        results: List[Dict[str, Any]] = []
        for (source, _), outcome in zip(sources, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(
                    "search_source_failed",
                    source=source,
                    error_type=type(outcome).__name__,
                )
                continue
            results.extend(outcome)

        results.sort(key=lambda r: r.get("score") or 0, reverse=True)
        results = results[:limit]
        return {
            "results": results,
            "query": query,
            "total": len(results),
            "processing_time_ms": int((time.perf_counter() - started) * 1000),
        }

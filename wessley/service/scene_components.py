"""Component catalogue from the 3D scene export, formatted for onboarding prompts."""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from wessley.logging import get_logger

logger = get_logger(__name__)

PRIORITY_TYPES = ("fuse", "relay", "connector", "sensor", "module", "wire", "ground_point")
MAX_PER_TYPE = 10


@dataclass
class ParsedScene:
    nodes_by_id: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    edges: List[Dict[str, Any]] = field(default_factory=list)
    by_zone: Dict[str, List[str]] = field(default_factory=dict)
    by_type: Dict[str, List[str]] = field(default_factory=dict)
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class SceneComponent:
    id: str
    canonical_id: str
    type: str
    zone: Optional[str] = None
    description: Optional[str] = None


@dataclass
class SceneComponents:
    components: List[SceneComponent] = field(default_factory=list)
    zones: List[str] = field(default_factory=list)


def parse_ndjson(text: str) -> ParsedScene:
    """Index ``meta``, ``node`` and ``edge`` records by id, zone and type."""

    parsed = ParsedScene()
    for line in text.strip().splitlines():
        if not line.strip():
            continue
        record = json.loads(line)
        kind = record.get("kind")
        if kind == "meta":
            parsed.metadata = record
        elif kind == "node":
            node_id = record["id"]
            parsed.nodes_by_id[node_id] = record
            zone = record.get("anchor_zone")
            if zone:
                parsed.by_zone.setdefault(zone, []).append(node_id)
            node_type = record.get("node_type")
            if node_type:
                parsed.by_type.setdefault(node_type, []).append(node_id)
        elif kind == "edge":
            parsed.edges.append(record)
    return parsed


def _is_positioned(node: Dict[str, Any]) -> bool:
    xyz = node.get("anchor_xyz")
    return isinstance(xyz, (list, tuple)) and len(xyz) == 3


def load_scene_components(path: Optional[str]) -> SceneComponents:
    """Positioned components from the NDJSON at ``path``.

    A missing path, unreadable file or malformed record yields an empty
    catalogue so onboarding still works without the scene export.
    """

    if not path:
        return SceneComponents()
    try:
        parsed = parse_ndjson(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError, KeyError) as exc:
        logger.warning("scene_components_load_failed", path=path, error=str(exc))
        return SceneComponents()

    components = [
        SceneComponent(
            id=node["id"],
            canonical_id=node.get("canonical_id") or node["id"],
            type=node.get("node_type") or "unknown",
            zone=node.get("anchor_zone"),
            description=node.get("code_id"),
        )
        for node in parsed.nodes_by_id.values()
        if _is_positioned(node)
    ]
    logger.info(
        "scene_components_loaded",
        path=path,
        components=len(components),
        zones=len(parsed.by_zone),
    )
    return SceneComponents(components=components, zones=list(parsed.by_zone))


def format_components_for_prompt(data: SceneComponents) -> str:
    components = data.components
    out = f"\n## Available Scene Components ({len(components)} total)\n\n"

    out += "### Zones:\n"
    out += "\n".join(f"- {zone}" for zone in data.zones)
    out += "\n\n### Components by Type:\n"

    by_type: Dict[str, List[SceneComponent]] = {}
    for comp in components:
        by_type.setdefault(comp.type, []).append(comp)

    for node_type in PRIORITY_TYPES:
        group = by_type.get(node_type)
        if not group:
            continue
        out += f"\n**{node_type.upper()}** ({len(group)}):\n"
        for comp in group[:MAX_PER_TYPE]:
            line = f"- ID: `{comp.id}` | Name: {comp.canonical_id}"
            if comp.zone:
                line += f" | Zone: {comp.zone}"
            if comp.description:
                line += f" | {comp.description}"
            out += line + "\n"
        if len(group) > MAX_PER_TYPE:
            out += f"  ... and {len(group) - MAX_PER_TYPE} more\n"

    example_id = components[0].id if components else "component_id"
    out += "\n### Usage Instructions:\n"
    out += f"- Use the exact component ID (e.g., `{example_id}`) in scene events\n"
    out += "- To find a component, search by canonical_id, type, or zone\n"
    out += '- For multiple components, use partial matching (e.g., all components with type "fuse")\n'
    return out


_cache_lock = threading.Lock()
_cached_prompt: Optional[str] = None


def get_scene_components_for_prompt(path: Optional[str]) -> str:
    """Formatted catalogue, built on first use and reused for the process."""

    global _cached_prompt
    if _cached_prompt is None:
        with _cache_lock:
            if _cached_prompt is None:
                _cached_prompt = format_components_for_prompt(load_scene_components(path))
    return _cached_prompt


def reset_scene_components_cache() -> None:
    global _cached_prompt
    with _cache_lock:
        _cached_prompt = None

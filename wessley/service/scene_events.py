from __future__ import annotations

import json
import re
import time
from enum import Enum
from typing import Any, Dict, List, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from wessley.logging import get_logger

logger = get_logger(__name__)

SCENE_EVENTS_BLOCK = re.compile(r"```scene-events\n([\s\S]*?)\n```")


class SceneEventType(str, Enum):
    FOCUS_COMPONENT = "focus_component"
    HIGHLIGHT_COMPONENTS = "highlight_components"
    SHOW_PATH = "show_path"
    SHOW_CIRCUIT = "show_circuit"
    ROTATE_VIEW = "rotate_view"
    ZOOM_TO_AREA = "zoom_to_area"
    RESET_VIEW = "reset_view"
    SHOW_CONNECTIONS = "show_connections"
    COMPARE_COMPONENTS = "compare_components"
    SHOW_GROUND_POINTS = "show_ground_points"
    SHOW_POWER_DISTRIBUTION = "show_power_distribution"
    ANIMATE_SIGNAL_FLOW = "animate_signal_flow"
    MARK_COMPONENT_FAULTY = "mark_component_faulty"
    MARK_COMPONENT_HEALTHY = "mark_component_healthy"


KNOWN_EVENT_TYPES = frozenset(t.value for t in SceneEventType)


class SceneEvent(BaseModel):
    """Instruction for the 3D viewer emitted inside an assistant reply."""

    model_config = ConfigDict(extra="allow")

    type: str
    data: Dict[str, Any] = Field(default_factory=dict)
    description: str | None = None
    timestamp: int


def extract_scene_events(text: str) -> Tuple[str, List[Dict[str, Any]]]:
    """Pull the first ``scene-events`` block out of ``text``.

    Returns the text with the block removed and the parsed events, each
    stamped with the current time in milliseconds. Malformed JSON leaves the
    text untouched and yields no events.
    """

    match = SCENE_EVENTS_BLOCK.search(text)
    if not match:
        return text, []
    try:
        raw_events = json.loads(match.group(1))
    except json.JSONDecodeError as exc:
        logger.warning("scene_events_parse_failed", error=str(exc))
        return text, []
    if not isinstance(raw_events, list):
        logger.warning("scene_events_not_a_list", kind=type(raw_events).__name__)
        return text, []

    stamp = int(time.time() * 1000)
    events = []
    for raw in raw_events:
        if not isinstance(raw, dict):
            continue
        try:
            event = SceneEvent.model_validate({**raw, "timestamp": stamp})
        except ValidationError:
            logger.info("scene_event_skipped", keys=sorted(raw))
            continue
        events.append(event.model_dump(exclude_none=True))
    unknown = [e.get("type") for e in events if e.get("type") not in KNOWN_EVENT_TYPES]
    if unknown:
        logger.info("scene_events_unknown_types", types=unknown)

    stripped = SCENE_EVENTS_BLOCK.sub("", text, count=1).strip()
    return stripped, events

"""Tests for scene-event extraction and the scene component catalogue."""

import json

import pytest

from wessley.service.scene_components import (
    MAX_PER_TYPE,
    SceneComponent,
    SceneComponents,
    format_components_for_prompt,
    get_scene_components_for_prompt,
    load_scene_components,
    parse_ndjson,
    reset_scene_components_cache,
)
from wessley.service.scene_events import extract_scene_events


def _block(events):
    return "```scene-events\n" + json.dumps(events) + "\n```"


class TestExtractSceneEvents:
    """Parsing of fenced scene-event blocks out of assistant replies."""

    def test_no_block(self):
        assert extract_scene_events("Plain answer.") == ("Plain answer.", [])

    def test_block_is_removed_and_events_stamped(self):
        text = "Check the relay.\n\n" + _block(
            [
                {"type": "highlight_components", "data": {"componentIds": ["r1", "r2"]}},
                {"type": "mark_component_faulty", "data": {"componentId": "r1"}, "description": "Stuck"},
            ]
        )
        stripped, events = extract_scene_events(text)

        assert stripped == "Check the relay."
        assert [e["type"] for e in events] == ["highlight_components", "mark_component_faulty"]
        assert events[1]["description"] == "Stuck"
        assert events[0]["timestamp"] == events[1]["timestamp"]
        assert events[0]["timestamp"] > 0

    def test_malformed_json_keeps_text(self):
        text = "Answer\n```scene-events\n[{not json}]\n```"
        assert extract_scene_events(text) == (text, [])

    def test_non_list_payload(self):
        text = "Answer\n" + _block({"type": "reset_view"})
        assert extract_scene_events(text) == (text, [])

    def test_entries_without_type_are_skipped(self):
        _, events = extract_scene_events(_block([{"data": {}}, {"type": "reset_view"}]))
        assert [e["type"] for e in events] == ["reset_view"]

    def test_only_first_block_is_consumed(self):
        text = _block([{"type": "reset_view"}]) + "\nmiddle\n" + _block([{"type": "rotate_view"}])
        stripped, events = extract_scene_events(text)
        assert [e["type"] for e in events] == ["reset_view"]
        assert "rotate_view" in stripped


NDJSON = "\n".join(
    json.dumps(record)
    for record in [
        {"kind": "meta", "model": "galloper"},
        {
            "kind": "node",
            "id": "fuse_f12",
            "canonical_id": "F12 Headlamp",
            "node_type": "fuse",
            "anchor_zone": "engine_bay",
            "anchor_xyz": [0.1, 0.2, 0.3],
            "code_id": "15A",
        },
        {
            "kind": "node",
            "id": "relay_r3",
            "node_type": "relay",
            "anchor_zone": "dashboard",
            "anchor_xyz": [0, 0, 1],
        },
        {"kind": "node", "id": "floating", "node_type": "wire"},
        {"kind": "edge", "source": "fuse_f12", "target": "relay_r3"},
    ]
)


class TestSceneComponents:
    """Loading and formatting the NDJSON scene export."""

    def test_parse_indexes_records(self):
        parsed = parse_ndjson(NDJSON + "\n\n")
        assert parsed.metadata == {"kind": "meta", "model": "galloper"}
        assert set(parsed.nodes_by_id) == {"fuse_f12", "relay_r3", "floating"}
        assert parsed.by_zone == {"engine_bay": ["fuse_f12"], "dashboard": ["relay_r3"]}
        assert parsed.by_type["wire"] == ["floating"]
        assert len(parsed.edges) == 1

    def test_load_keeps_only_positioned_nodes(self, tmp_path):
        path = tmp_path / "scene.ndjson"
        path.write_text(NDJSON, encoding="utf-8")

        data = load_scene_components(str(path))

        assert [c.id for c in data.components] == ["fuse_f12", "relay_r3"]
        assert data.components[0].canonical_id == "F12 Headlamp"
        assert data.components[1].canonical_id == "relay_r3"
        assert data.zones == ["engine_bay", "dashboard"]

    @pytest.mark.parametrize("contents", [None, "{broken"])
    def test_missing_or_bad_file_is_empty(self, tmp_path, contents):
        path = tmp_path / "scene.ndjson"
        if contents is not None:
            path.write_text(contents, encoding="utf-8")
        assert load_scene_components(str(path)) == SceneComponents()

    def test_format(self):
        data = SceneComponents(
            components=[
                SceneComponent("fuse_f12", "F12 Headlamp", "fuse", "engine_bay", "15A"),
                SceneComponent("relay_r3", "relay_r3", "relay"),
            ],
            zones=["engine_bay"],
        )
        text = format_components_for_prompt(data)
        assert "## Available Scene Components (2 total)" in text
        assert "- engine_bay" in text
        assert "**FUSE** (1):" in text
        assert "- ID: `fuse_f12` | Name: F12 Headlamp | Zone: engine_bay | 15A" in text
        assert "- ID: `relay_r3` | Name: relay_r3\n" in text
        assert "(e.g., `fuse_f12`)" in text

    def test_format_truncates_large_groups(self):
        components = [SceneComponent(f"f{i}", f"F{i}", "fuse") for i in range(MAX_PER_TYPE + 3)]
        text = format_components_for_prompt(SceneComponents(components=components))
        assert text.count("- ID: `f") == MAX_PER_TYPE
        assert "... and 3 more" in text

    def test_prompt_is_cached(self, tmp_path):
        path = tmp_path / "scene.ndjson"
        path.write_text(NDJSON, encoding="utf-8")
        first = get_scene_components_for_prompt(str(path))
        path.unlink()
        assert get_scene_components_for_prompt(str(path)) == first

        reset_scene_components_cache()
        assert "(0 total)" in get_scene_components_for_prompt(str(path))

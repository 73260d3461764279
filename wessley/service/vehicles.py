from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from wessley.logging import get_logger
from wessley.service.errors import UpstreamServiceError
from wessley.storage.models import Vehicle

logger = get_logger(__name__)

BASE_SYSTEMS = ("ignition", "charging", "starting")
_CABIN_BODY_STYLES = {"sedan", "coupe", "suv"}

# id, type, label, zone, position
_MOCK_COMPONENTS = (
    ("battery", "component", "Battery", "engine_bay", (0, 0, 0)),
    ("alternator", "component", "Alternator", "engine_bay", (0.5, 0, 0)),
    ("starter", "component", "Starter Motor", "engine_bay", (-0.5, 0, 0)),
    ("main_fuse_box", "connector", "Main Fuse Box", "engine_bay", (0, 0.5, 0)),
    ("ignition_switch", "component", "Ignition Switch", "dashboard", (0, 0, 0.5)),
    ("ecu", "component", "Engine Control Unit", "engine_bay", (0.3, 0.3, 0)),
    ("ground_point_1", "ground", "Ground Point (Chassis)", "chassis", (0, -0.5, 0)),
    ("headlight_relay", "component", "Headlight Relay", "engine_bay", (0.2, 0.5, 0)),
    ("headlight_left", "component", "Left Headlight", "exterior", (-0.8, 0, 0.3)),
    ("headlight_right", "component", "Right Headlight", "exterior", (0.8, 0, 0.3)),
)

# source, target, relationship, wire color, wire gauge
_MOCK_EDGES = (
    ("battery", "main_fuse_box", "powers", "red", "4AWG"),
    ("battery", "starter", "powers", "red", "2AWG"),
    ("alternator", "battery", "powers", "red", "6AWG"),
    ("main_fuse_box", "ecu", "powers", "red/blue", "14AWG"),
    ("ignition_switch", "starter", "controls", "yellow", "14AWG"),
    ("main_fuse_box", "headlight_relay", "powers", "red", "12AWG"),
    ("headlight_relay", "headlight_left", "powers", "green", "14AWG"),
    ("headlight_relay", "headlight_right", "powers", "green", "14AWG"),
    ("battery", "ground_point_1", "connects_to", "black", "4AWG"),
    ("starter", "ground_point_1", "connects_to", "black", "2AWG"),
)


def derive_systems(vehicle: Vehicle) -> List[str]:
    """Electrical systems a vehicle is expected to carry, from its attributes."""

    systems = list(BASE_SYSTEMS)
    if vehicle.electrical_voltage == 12:
        systems += ["lighting", "accessories"]
    if vehicle.electrical_voltage == 48:
        systems += ["mild_hybrid", "high_voltage"]
    if vehicle.body_style and vehicle.body_style.lower() in _CABIN_BODY_STYLES:
        systems += ["power_windows", "power_locks", "climate_control"]
    if vehicle.year and vehicle.year >= 2010:
        systems += ["infotainment", "can_bus"]
    if vehicle.year and vehicle.year >= 2015:
        systems += ["adas", "parking_sensors"]
    return systems


def _position(component: Dict[str, Any]) -> Optional[List[float]]:
    pos = component.get("position")
    if not pos:
        return None
    return [pos.get("x"), pos.get("y"), pos.get("z")]


def component_node(component: Dict[str, Any], system: Dict[str, Any]) -> Dict[str, Any]:
    node: Dict[str, Any] = {
        "id": component.get("id"),
        "type": component.get("type"),
        "label": component.get("name"),
        "properties": {
            "system": system.get("name"),
            "category": system.get("category"),
            **(component.get("specifications") or {}),
        },
    }
    position = _position(component)
    if position is not None:
        node["position"] = position
    return node


def build_graph(
    systems: Iterable[Dict[str, Any]],
    related: Dict[str, Dict[str, Any]],
) -> Dict[str, List[Dict[str, Any]]]:
    """Turn graph-service systems and per-component relations into nodes and edges.

    ``related`` maps a component id to its ``get_related_components`` answer.
    A connection already seen in either direction is not added twice.
    """

    nodes: List[Dict[str, Any]] = []
    edges: List[Dict[str, Any]] = []
    seen = set()
    for system in systems:
        components = system.get("components") or []
        nodes.extend(component_node(c, system) for c in components)
        for component in components:
            answer = related.get(component.get("id")) or {}
            for connection in answer.get("connections") or []:
                source = connection.get("from_component")
                target = connection.get("to_component")
                if (source, target) in seen or (target, source) in seen:
                    continue
                seen.add((source, target))
                wire = connection.get("wire") or {}
                edges.append(
                    {
                        "source": source,
                        "target": target,
                        "type": connection.get("relationship") or "connects_to",
                        "properties": {
                            "wire_id": wire.get("id"),
                            "wire_color": wire.get("color"),
                            "wire_gauge": wire.get("gauge"),
                            "din_code": wire.get("din_code"),
                        },
                    }
                )
    return {"nodes": nodes, "edges": edges}


async def load_vehicle_graph(graph_client, vehicle_signature: str) -> Dict[str, List[Dict[str, Any]]]:
    """Fetch systems and direct relations for ``vehicle_signature``.

    A failed systems query propagates ``UpstreamServiceError``; a failed
    relation lookup for one component only drops that component's edges.
    """

    systems = await graph_client.get_vehicle_systems(vehicle_signature)
    related: Dict[str, Dict[str, Any]] = {}
    for system in systems:
        for component in system.get("components") or []:
            component_id = component.get("id")
            try:
                related[component_id] = await graph_client.get_related_components(
                    vehicle_signature, component_id, 1
                )
            except UpstreamServiceError as exc:
                logger.info(
                    "graph_related_lookup_failed",
                    component_id=component_id,
                    status_code=exc.status_code,
                )
    return build_graph(systems, related)


def mock_graph(vehicle: Vehicle) -> Dict[str, List[Dict[str, Any]]]:
    """Fixed starter circuit used when the graph service has nothing to offer."""

    label = f"{vehicle.year} {vehicle.make} {vehicle.model}"
    nodes = [
        {
            "id": node_id,
            "type": node_type,
            "label": name,
            "properties": {"zone": zone, "vehicle": label, "mock": True},
            "position": list(position),
        }
        for node_id, node_type, name, zone, position in _MOCK_COMPONENTS
    ]
    edges = [
        {
            "source": source,
            "target": target,
            "type": relationship,
            "properties": {"wire_color": color, "wire_gauge": gauge, "mock": True},
        }
        for source, target, relationship, color, gauge in _MOCK_EDGES
    ]
    return {"nodes": nodes, "edges": edges}

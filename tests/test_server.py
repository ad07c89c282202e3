"""Tests for the MCP server tools (3-tool architecture)."""

import json
import math

import pytest

from noderoute.server import (
    _diagrams,
    config_defaults,
    diagram,
    inspect,
    route,
)


def setup_function() -> None:
    """Clear diagrams between tests."""
    _diagrams.clear()


_NODES = [
    {"id": "A", "x": 0, "y": 0, "outputs": ["o1", "o2"], "bottom_ports": ["b"]},
    {"id": "B", "x": 400, "y": 0, "inputs": ["i1", "i2"]},
]

_CONNECTIONS = [
    {"id": "c1", "source_node_id": "A", "source_port_id": "o1",
     "target_node_id": "B", "target_port_id": "i1"},
    {"id": "c2", "source_node_id": "A", "source_port_id": "o2",
     "target_node_id": "B", "target_port_id": "i2"},
]


def _create(name: str = "g", **kwargs) -> str:
    return diagram(
        action="create", name=name, nodes=_NODES, connections=_CONNECTIONS, **kwargs,
    )


def _last_point(path: dict) -> tuple[float, float]:
    x, y = path["segments"][-1]["points"][-1]
    return x, y


def test_create_and_list() -> None:
    result = _create()
    assert result == "Diagram 'g' created (workflow, 2 nodes, 2 connections)."
    _create("h", mode="architecture", variant="compact")

    listing = json.loads(diagram(action="list"))
    assert {d["name"] for d in listing} == {"g", "h"}
    h = next(d for d in listing if d["name"] == "h")
    assert h["mode"] == "architecture"
    assert h["variant"] == "compact"
    assert h["connections"] == 2


def test_route_single_path() -> None:
    _create()
    data = json.loads(route(action="path", diagram_name="g", connection_id="c1"))
    assert data["id"] == "c1"
    assert data["d"].startswith("M 100 -20 C ")
    assert data["stale"] is False
    assert "reason" not in data
    assert _last_point(data) == (293, -20)


def test_route_unknown_connection() -> None:
    _create()
    result = route(action="path", diagram_name="g", connection_id="nope")
    assert result == "Error: connection 'nope' not found."


def test_route_unknown_diagram() -> None:
    result = route(action="all", diagram_name="ghost")
    assert result == "Error: diagram 'ghost' not found."


def test_stale_connection_is_flagged() -> None:
    conns = _CONNECTIONS + [{
        "id": "c3", "source_node_id": "A", "source_port_id": "o1",
        "target_node_id": "B", "target_port_id": "missing",
    }]
    diagram(action="create", name="g", nodes=_NODES, connections=conns)
    data = json.loads(route(action="path", diagram_name="g", connection_id="c3"))
    assert data["stale"] is True
    assert data["reason"] == "Target port missing not found"
    # Still drawable: the missing port falls back to the node centre
    assert data["d"]


def test_route_all() -> None:
    _create()
    data = json.loads(route(action="all", diagram_name="g"))
    assert set(data) == {"c1", "c2"}
    assert _last_point(data["c2"]) == (293, 20)


def test_drag_then_drop() -> None:
    _create()
    result = diagram(action="drag", name="g", node_id="B", x=400, y=200)
    assert result == "Node 'B' dragged to (400.0, 200.0)."

    dragged = json.loads(route(action="path", diagram_name="g", connection_id="c1"))
    x, y = _last_point(dragged)
    assert math.hypot(300 - x, 180 - y) == pytest.approx(7)

    result = diagram(action="drop", name="g", node_id="B")
    assert result == "Node 'B' dropped at (400.0, 200.0)."
    router = _diagrams["g"]
    assert router.drag_positions == {}
    assert router.node("B").y == 200

    assert "not being dragged" in diagram(action="drop", name="g", node_id="B")


def test_drag_unknown_node() -> None:
    _create()
    result = diagram(action="drag", name="g", node_id="Z", x=1, y=1)
    assert result == "Error: node 'Z' not found in diagram 'g'."


def test_update_switches_mode() -> None:
    _create()
    assert diagram(action="update", name="g", mode="architecture") == "Diagram 'g' updated."
    assert _diagrams["g"].mode.value == "architecture"
    data = json.loads(route(action="path", diagram_name="g", connection_id="c1"))
    assert data["bends"] == 2
    assert " Q " in data["d"]


def test_update_replaces_connections() -> None:
    _create()
    diagram(action="update", name="g", connections=_CONNECTIONS[:1])
    data = json.loads(route(action="all", diagram_name="g"))
    assert list(data) == ["c1"]


def test_delete() -> None:
    _create()
    assert diagram(action="delete", name="g") == "Diagram 'g' deleted."
    assert json.loads(diagram(action="list")) == []


def test_bundles_in_architecture_mode() -> None:
    _create(mode="architecture")
    bundles = json.loads(route(action="bundles", diagram_name="g"))
    assert len(bundles) == 1
    bundle = bundles[0]
    assert bundle["count"] == 2
    assert bundle["source_side"] == "__side-right"
    assert bundle["target_side"] == "__side-left"
    assert bundle["label_point"] is not None


def test_preview_snaps_to_node() -> None:
    _create()
    data = json.loads(route(
        action="preview", diagram_name="g",
        source_node_id="A", source_port_id="o1",
        cursor={"x": 290, "y": 5},
    ))
    assert data["snapped_node_id"] == "B"
    assert data["snapped_side"] == "__side-left"
    assert data["end"] == {"x": 295, "y": 0}
    assert data["grid_snapped"] is False


def test_preview_grid_snap_and_unknown_source() -> None:
    _create()
    data = json.loads(route(
        action="preview", diagram_name="g",
        source_node_id="A", source_port_id="o1",
        cursor={"x": 133, "y": 47}, snap_to_nodes=False,
    ))
    assert data["grid_snapped"] is True
    assert data["end"] == {"x": 140, "y": 40}

    result = route(
        action="preview", diagram_name="g",
        source_node_id="Q", source_port_id="o1", cursor={"x": 0, "y": 0},
    )
    assert result == "Error: node 'Q' not found."


def test_inspect_anchors() -> None:
    _create()
    data = json.loads(inspect(action="anchors", diagram_name="g", node_id="A"))
    assert data["box"] == {"x": -100, "y": -60, "width": 200, "height": 120}
    assert data["outputs"] == [{"x": 100, "y": -20}, {"x": 100, "y": 20}]
    assert data["inputs"] == []
    assert data["bottom_ports"] == [{"x": 0, "y": 60}]
    assert len(data["sides"]) == 4


def test_inspect_groups_and_group_info() -> None:
    conns = _CONNECTIONS + [{
        "id": "c1b", "source_node_id": "A", "source_port_id": "o1",
        "target_node_id": "B", "target_port_id": "i1",
    }]
    diagram(action="create", name="g", nodes=_NODES, connections=conns, mode="architecture")
    groups = json.loads(inspect(action="groups", diagram_name="g"))
    assert sum(g["total"] for g in groups.values()) == 3

    info = json.loads(inspect(action="group_info", diagram_name="g", connection_id="c1b"))
    assert info == {"index": 1, "total": 2, "is_multiple": True, "group_key": "A:o1->B:i1"}

    unknown = json.loads(inspect(action="group_info", diagram_name="g", connection_id="zz"))
    assert unknown["group_key"] == "unknown"


def test_inspect_validate() -> None:
    conns = _CONNECTIONS + [
        {"id": "c2", "source_node_id": "A", "source_port_id": "o2",
         "target_node_id": "B", "target_port_id": "i2"},
        {"id": "lost", "source_node_id": "A", "source_port_id": "o1",
         "target_node_id": "Z", "target_port_id": "i1"},
    ]
    diagram(action="create", name="g", nodes=_NODES, connections=conns)
    report = json.loads(inspect(action="validate", diagram_name="g"))
    assert report["valid"] is False
    assert report["duplicate_ids"] == ["c2"]
    assert report["stale_connections"] == {"lost": "Missing source or target node"}
    assert report["issues"]["orphaned_connections"] == ["lost"]
    assert report["issues"]["potential_duplicates"] == ["c2"]


def test_inspect_stats() -> None:
    _create()
    route(action="all", diagram_name="g")
    route(action="all", diagram_name="g")
    stats = json.loads(inspect(action="stats", diagram_name="g"))
    assert stats["nodes"] == 2
    assert stats["cache"]["size"] == 2
    assert stats["cache"]["hits"] == 2
    assert stats["groups"]["total_groups"] == 2


def test_config_applies_to_routes() -> None:
    _create(config={"arrow_offset": 0})
    data = json.loads(route(action="path", diagram_name="g", connection_id="c1"))
    assert _last_point(data) == (300, -20)


def test_config_defaults_resource() -> None:
    data = json.loads(config_defaults())
    assert data["path"]["corner_radius"] == 16
    assert data["cache_presets"]["mobile"] == {"max_size": 100, "hard_limit": 120}


def test_zero_smoothing_factor_is_rejected_before_routing() -> None:
    result = _create(config={"smoothing_factor": 0})
    assert result.startswith("Error:")
    assert "smoothing_factor" in result
    assert route(action="path", diagram_name="g", connection_id="c1") == (
        "Error: diagram 'g' not found."
    )

    _create()
    result = diagram(action="update", name="g", config={"smoothing_factor": 0})
    assert result.startswith("Error:")
    data = json.loads(route(action="path", diagram_name="g", connection_id="c1"))
    assert _last_point(data) == (293, -20)


def test_update_applies_config_and_obstacles() -> None:
    _create()
    route(action="all", diagram_name="g")
    diagram(action="update", name="g", config={"arrow_offset": 0})
    router = _diagrams["g"]
    assert router.config.arrow_offset == 0
    assert len(router.cache) == 0
    data = json.loads(route(action="path", diagram_name="g", connection_id="c1"))
    assert _last_point(data) == (300, -20)

    assert not router.avoid_obstacles
    diagram(action="update", name="g", avoid_obstacles=True)
    assert router.avoid_obstacles
    assert router.config.arrow_offset == 0

"""
NodeRoute MCP Server: connection routing for node-graph editors via Model Context Protocol.

Exposes 3 tools that let a rendering client (or an LLM agent) register
diagram snapshots and ask for the paths to draw between node ports.

Tools:
  1. diagram  (lifecycle): create, update, drag, drop, delete, list
  2. route    (paths): single path, all paths, schematic bundles, drag preview
  3. inspect  (read-only): port anchors, groups, group info, validation, stats
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any

from mcp.server.fastmcp import FastMCP

from noderoute.anchors import all_port_anchors, node_box
from noderoute.config import PRESETS, PathConfig
from noderoute.grouping import connection_group_stats, detect_connection_issues
from noderoute.models import Point
from noderoute.router import ConnectionRouter
from noderoute.validation import (
    ValidationError,
    validate_action,
    validate_bool,
    validate_config_dict,
    validate_connection_integrity,
    validate_connection_parameters,
    validate_connections,
    validate_mode,
    validate_non_empty_string,
    validate_nodes,
    validate_number,
    validate_point_dict,
    validate_variant,
    _DIAGRAM_ACTIONS,
    _ROUTE_ACTIONS,
    _INSPECT_ACTIONS,
)

# ---------------------------------------------------------------------------
# Logging: suppress routine FastMCP INFO messages on stderr.
# ---------------------------------------------------------------------------
logging.getLogger("mcp.server").setLevel(logging.WARNING)
logger = logging.getLogger("noderoute-mcp")

# ---------------------------------------------------------------------------
# MCP Server
# ---------------------------------------------------------------------------
mcp = FastMCP(
    "noderoute-mcp",
    instructions=(
        "MCP server that computes connection paths for node-graph diagrams.\n\n"
        "=== ONLY 3 TOOLS: use the 'action' parameter to pick the operation ===\n\n"
        "1. diagram(action, ...): lifecycle: create, update, drag, drop,\n"
        "   delete, list.\n"
        "2. route(action, ...): paths: path, all, bundles, preview.\n"
        "3. inspect(action, ...): read-only: anchors, groups, group_info,\n"
        "   validate, stats.\n\n"
        "=== CONVENTIONS ===\n"
        "- Node x, y are CENTRE coordinates.\n"
        "- Ports are listed per node as inputs (left edge), outputs (right\n"
        "  edge) and bottom_ports (bottom edge).\n"
        "- '__side-top', '__side-right', '__side-bottom', '__side-left' are\n"
        "  reserved port ids for the midpoint of that edge.\n"
        "- mode 'workflow' draws smooth curves; mode 'architecture' draws\n"
        "  orthogonal rounded paths and bundles parallel connections.\n"
        "- Paths are returned as an SVG 'd' string plus a segment list.\n"
    ),
)

# In-memory diagram registry: name -> ConnectionRouter
# Guarded by _diagrams_lock for thread-safety.
_diagrams: dict[str, ConnectionRouter] = {}
_diagrams_lock = threading.Lock()


# ===================================================================
# RESOURCES
# ===================================================================

@mcp.resource("noderoute://config/defaults")
def config_defaults() -> str:
    """Return the default routing constants and cache presets."""
    return json.dumps({
        "path": PathConfig().to_dict(),
        "cache_presets": {
            name: {"max_size": p.max_size, "hard_limit": p.hard_limit}
            for name, p in PRESETS.items()
        },
    }, indent=2)


def _fail(message: str) -> str:
    logger.warning("Tool call rejected: %s", message)
    return f"Error: {message}"


def _get_router(name: str) -> ConnectionRouter | None:
    with _diagrams_lock:
        return _diagrams.get(name)


# ===================================================================
# TOOL 1: diagram (lifecycle)
# ===================================================================

@mcp.tool()
def diagram(
    action: str,
    name: str = "",
    nodes: list[dict[str, Any]] | None = None,
    connections: list[dict[str, Any]] | None = None,
    mode: str = "",
    variant: str = "",
    config: dict[str, Any] | None = None,
    avoid_obstacles: bool | None = None,
    node_id: str = "",
    x: float = 0,
    y: float = 0,
) -> str:
    """Diagram snapshot management.

    Actions:
      create: Register a diagram. Params: name, nodes, connections, mode,
               variant, config, avoid_obstacles.
      update: Replace nodes, connections or routing settings, or switch mode/variant.
               Params: name plus any of nodes, connections, mode, variant,
               config, avoid_obstacles.
      drag  : Set a live drag position for a node. Params: name, node_id, x, y.
      drop  : Commit the node's drag position and clear it. Params: name, node_id.
      delete: Remove a diagram. Params: name.
      list  : List all registered diagrams. No params needed.

    Args:
        action: One of: create, update, drag, drop, delete, list.
        name: Diagram name (registry key).
        nodes: List of {id, x, y, shape?, width?, height?, label?, inputs?,
               outputs?, bottom_ports?}; ports are ids or {id, label?, data_type?}.
        connections: List of {id, source_node_id, source_port_id,
                     target_node_id, target_port_id}.
        mode: 'workflow' (default) or 'architecture'.
        variant: 'standard' (default) or 'compact'.
        config: Partial routing constants, e.g. {"corner_radius": 8}. On update
                it replaces the whole config (unset keys go back to defaults).
        avoid_obstacles: Route schematic paths around all other nodes (default False).
        node_id: Node for drag / drop.
        x: Drag centre x.
        y: Drag centre y.

    Returns:
        Result string or JSON depending on action.
    """
    try:
        action = validate_action(action, "diagram", _DIAGRAM_ACTIONS)
    except ValidationError as exc:
        return _fail(exc.message)

    if action == "list":
        with _diagrams_lock:
            items = list(_diagrams.items())
        result = [
            {
                "name": n,
                "nodes": len(r.nodes),
                "connections": len(r.connections),
                "mode": r.mode.value,
                "variant": r.variant.value,
            }
            for n, r in items
        ]
        return json.dumps(result, indent=2)

    try:
        name = validate_non_empty_string(name, "name")
    except ValidationError as exc:
        return _fail(exc.message)

    if action == "create":
        try:
            node_list = validate_nodes(nodes if nodes is not None else [])
            conn_list = validate_connections(connections if connections is not None else [])
            render_mode = validate_mode(mode or "workflow")
            node_variant = validate_variant(variant or "standard")
            path_config = validate_config_dict(config)
            avoid = validate_bool(avoid_obstacles, "avoid_obstacles") if avoid_obstacles is not None else False
        except ValidationError as exc:
            return _fail(exc.message)
        router = ConnectionRouter(
            node_list, conn_list, render_mode, node_variant,
            config=path_config, avoid_obstacles=avoid,
        )
        with _diagrams_lock:
            _diagrams[name] = router
        return (
            f"Diagram '{name}' created ({render_mode.value}, "
            f"{len(node_list)} nodes, {len(conn_list)} connections)."
        )

    router = _get_router(name)
    if router is None:
        return _fail(f"diagram '{name}' not found.")

    if action == "update":
        try:
            node_list = validate_nodes(nodes) if nodes is not None else None
            conn_list = validate_connections(connections) if connections is not None else None
            render_mode = validate_mode(mode) if mode else None
            node_variant = validate_variant(variant) if variant else None
            path_config = validate_config_dict(config) if config is not None else None
            avoid = validate_bool(avoid_obstacles, "avoid_obstacles") if avoid_obstacles is not None else None
        except ValidationError as exc:
            return _fail(exc.message)
        router.set_graph(
            node_list, conn_list, render_mode, node_variant,
            config=path_config, avoid_obstacles=avoid,
        )
        return f"Diagram '{name}' updated."

    elif action == "drag":
        try:
            node_id = validate_non_empty_string(node_id, "node_id")
            px = validate_number(x, "x")
            py = validate_number(y, "y")
        except ValidationError as exc:
            return _fail(exc.message)
        if router.node(node_id) is None:
            return _fail(f"node '{node_id}' not found in diagram '{name}'.")
        router.update_drag_position(node_id, px, py)
        return f"Node '{node_id}' dragged to ({px}, {py})."

    elif action == "drop":
        try:
            node_id = validate_non_empty_string(node_id, "node_id")
        except ValidationError as exc:
            return _fail(exc.message)
        pos = router.drag_positions.get(node_id)
        if pos is None:
            return _fail(f"node '{node_id}' is not being dragged.")
        router.move_node(node_id, pos.x, pos.y)
        router.clear_drag_position(node_id)
        return f"Node '{node_id}' dropped at ({pos.x}, {pos.y})."

    elif action == "delete":
        with _diagrams_lock:
            _diagrams.pop(name, None)
        return f"Diagram '{name}' deleted."

    else:
        return _fail(f"unknown diagram action '{action}'. Use: create, update, drag, drop, delete, list.")


# ===================================================================
# TOOL 2: route (path computation)
# ===================================================================

@mcp.tool()
def route(
    action: str,
    diagram_name: str = "",
    connection_id: str = "",
    use_drag_positions: bool = False,
    source_node_id: str = "",
    source_port_id: str = "",
    cursor: dict[str, float] | None = None,
    hover_node_id: str = "",
    snap_to_nodes: bool = True,
) -> str:
    """Compute connection paths.

    Actions:
      path   : Path of one connection. Params: diagram_name, connection_id,
                use_drag_positions.
      all    : Paths of every connection. Params: diagram_name, use_drag_positions.
      bundles: One path per side bundle, with count and label point.
                Params: diagram_name.
      preview: Live path from a port to the cursor, snapped to a nearby node
                when possible. Params: diagram_name, source_node_id,
                source_port_id, cursor, hover_node_id, snap_to_nodes.

    Args:
        action: One of: path, all, bundles, preview.
        diagram_name: Target diagram name.
        connection_id: Connection for the 'path' action.
        use_drag_positions: Ignore the cache and apply every drag position.
        source_node_id: Node the preview starts from.
        source_port_id: Port the preview starts from.
        cursor: {x, y} pointer position for the preview.
        hover_node_id: Node currently under the pointer, if any.
        snap_to_nodes: Search nearby nodes for a snap target.

    Returns:
        JSON path records: {"d": svg path, "segments": [...], "bends": n}.
    """
    try:
        action = validate_action(action, "route", _ROUTE_ACTIONS)
        validate_non_empty_string(diagram_name, "diagram_name")
        validate_bool(use_drag_positions, "use_drag_positions")
    except ValidationError as exc:
        return _fail(exc.message)
    router = _get_router(diagram_name)
    if router is None:
        return _fail(f"diagram '{diagram_name}' not found.")

    if action == "path":
        try:
            connection_id = validate_non_empty_string(connection_id, "connection_id")
        except ValidationError as exc:
            return _fail(exc.message)
        conn = next((c for c in router.connections if c.id == connection_id), None)
        if conn is None:
            return _fail(f"connection '{connection_id}' not found.")
        path = router.get_connection_path(conn, use_drag_positions)
        check = validate_connection_parameters(
            router.node(conn.source_node_id), conn.source_port_id,
            router.node(conn.target_node_id), conn.target_port_id,
        )
        result = {"id": conn.id, **path.to_dict(), "stale": not check.valid}
        if check.reason:
            result["reason"] = check.reason
        return json.dumps(result, indent=2)

    elif action == "all":
        paths = router.route_all(use_drag_positions)
        return json.dumps({cid: p.to_dict() for cid, p in paths.items()}, indent=2)

    elif action == "bundles":
        return json.dumps([b.to_dict() for b in router.route_bundles()], indent=2)

    elif action == "preview":
        try:
            source_node_id = validate_non_empty_string(source_node_id, "source_node_id")
            source_port_id = validate_non_empty_string(source_port_id, "source_port_id")
            cx, cy = validate_point_dict(cursor, "cursor")
            validate_bool(snap_to_nodes, "snap_to_nodes")
        except ValidationError as exc:
            return _fail(exc.message)
        preview = router.preview(
            source_node_id, source_port_id, Point(cx, cy),
            hover_node_id=hover_node_id or None,
            snap_to_nodes=snap_to_nodes,
        )
        if preview is None:
            return _fail(f"node '{source_node_id}' not found.")
        return json.dumps(preview.to_dict(), indent=2)

    else:
        return _fail(f"unknown route action '{action}'. Use: path, all, bundles, preview.")


# ===================================================================
# TOOL 3: inspect (read-only queries)
# ===================================================================

@mcp.tool()
def inspect(
    action: str,
    diagram_name: str = "",
    node_id: str = "",
    connection_id: str = "",
) -> str:
    """Read-only inspection of a registered diagram.

    Actions:
      anchors   : Box and every port anchor of a node. Params: diagram_name, node_id.
      groups    : Side bundles (node pair + side + port role). Params: diagram_name.
      group_info: Index / total of a connection within its port-pair group.
                   Params: diagram_name, connection_id.
      validate  : Integrity report, stale connections and grouping issues.
                   Params: diagram_name.
      stats     : Counts, cache statistics and group statistics.
                   Params: diagram_name.

    Args:
        action: One of: anchors, groups, group_info, validate, stats.
        diagram_name: Target diagram name.
        node_id: Node for the 'anchors' action.
        connection_id: Connection for the 'group_info' action.

    Returns:
        JSON data.
    """
    try:
        action = validate_action(action, "inspect", _INSPECT_ACTIONS)
        validate_non_empty_string(diagram_name, "diagram_name")
    except ValidationError as exc:
        return _fail(exc.message)
    router = _get_router(diagram_name)
    if router is None:
        return _fail(f"diagram '{diagram_name}' not found.")

    if action == "anchors":
        try:
            node_id = validate_non_empty_string(node_id, "node_id")
        except ValidationError as exc:
            return _fail(exc.message)
        node = router.node(node_id)
        if node is None:
            return _fail(f"node '{node_id}' not found.")
        anchors = all_port_anchors(node, router.mode, router.variant)
        result: dict[str, Any] = {
            "box": node_box(node, router.mode, router.variant).to_dict(),
        }
        for key, points in anchors.items():
            result[key] = [p.to_dict() for p in points]
        return json.dumps(result, indent=2)

    elif action == "groups":
        buckets = router.groups()
        return json.dumps({key: b.to_dict() for key, b in buckets.items()}, indent=2)

    elif action == "group_info":
        try:
            connection_id = validate_non_empty_string(connection_id, "connection_id")
        except ValidationError as exc:
            return _fail(exc.message)
        return json.dumps(router.group_info(connection_id).to_dict(), indent=2)

    elif action == "validate":
        report = validate_connection_integrity(router.connections)
        stale = {}
        for conn in router.connections:
            check = validate_connection_parameters(
                router.node(conn.source_node_id), conn.source_port_id,
                router.node(conn.target_node_id), conn.target_port_id,
            )
            if not check.valid:
                stale[conn.id] = check.reason
        issues = detect_connection_issues(router.connections, {n.id: n for n in router.nodes})
        return json.dumps({
            **report.to_dict(),
            "stale_connections": stale,
            "issues": issues.to_dict(),
        }, indent=2)

    elif action == "stats":
        result = router.stats()
        result["groups"] = connection_group_stats(router.connections).to_dict()
        return json.dumps(result, indent=2)

    else:
        return _fail(f"unknown inspect action '{action}'. Use: anchors, groups, group_info, validate, stats.")


# ===================================================================
# Entry point
# ===================================================================

def main() -> None:
    """Run the MCP server."""
    mcp.run()


if __name__ == "__main__":
    main()

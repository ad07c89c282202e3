"""
Port anchor resolution.

Maps a node + port identifier + rendering mode to the absolute point where a
connection attaches.  Anchors are derived on demand and never stored.

Rules:
- Reserved ``__side-*`` ids resolve to the midpoint of that bounding-box edge.
- Input / output ports are spread evenly down the left / right edge with
  symmetric margins: y = top + h / (n + 1) * (i + 1).
- Bottom ports are spread across a capped usable width of the bottom edge.
- Schematic (architecture) mode uses one fixed square size for every node;
  free-form (workflow) mode uses shape-aware sizes scaled by the variant.
"""

from __future__ import annotations

import logging
from typing import Optional

from noderoute.config import (
    ARCHITECTURE_NODE_SIZE,
    COMPACT_SCALE,
    NODE_MIN_HEIGHT,
    NODE_WIDTH,
    PORT_ROW_HEIGHT,
    PORT_ROW_PADDING,
)
from noderoute.models import (
    Box,
    Node,
    NodeShape,
    NodeVariant,
    Orientation,
    Point,
    Port,
    PortRef,
    PortRole,
    RenderMode,
    Side,
    SidePort,
    SlotPort,
)

logger = logging.getLogger("noderoute.anchors")


# ---------------------------------------------------------------------------
# Dimension profiles
# ---------------------------------------------------------------------------

def variant_scale(variant: NodeVariant) -> float:
    """Scaling factor applied to free-form node dimensions."""
    if variant is NodeVariant.COMPACT:
        return COMPACT_SCALE
    return 1.0


def _base_size(node: Node) -> tuple[float, float]:
    width = node.width or NODE_WIDTH
    if node.height:
        return width, node.height
    rows = max(len(node.inputs), len(node.outputs))
    return width, max(NODE_MIN_HEIGHT, rows * PORT_ROW_HEIGHT + PORT_ROW_PADDING)


def node_dimensions(
    node: Node,
    mode: RenderMode = RenderMode.WORKFLOW,
    variant: NodeVariant = NodeVariant.STANDARD,
) -> tuple[float, float]:
    """Return (width, height) of the node as rendered in *mode*."""
    if mode is RenderMode.ARCHITECTURE:
        return ARCHITECTURE_NODE_SIZE, ARCHITECTURE_NODE_SIZE

    width, height = _base_size(node)
    if node.shape is NodeShape.CIRCLE:
        diameter = min(width, height) / 2.5 * 2
        width = height = diameter
    elif node.shape is NodeShape.SQUARE:
        width = height = min(width, height) * 1.2

    scale = variant_scale(variant)
    return width * scale, height * scale


def node_box(
    node: Node,
    mode: RenderMode = RenderMode.WORKFLOW,
    variant: NodeVariant = NodeVariant.STANDARD,
) -> Box:
    width, height = node_dimensions(node, mode, variant)
    return Box.from_center(node.x, node.y, width, height)


# ---------------------------------------------------------------------------
# Bottom port layout
# ---------------------------------------------------------------------------

def usable_width(node_width: float) -> float:
    """Width available to bottom ports: the smaller of 80% or width - 70."""
    return max(0.0, min(node_width * 0.8, node_width - 70))


def bottom_port_offset(index: int, count: int, usable: float) -> float:
    """Horizontal offset of a bottom port from the node centre."""
    if count <= 1:
        return 0.0
    if count == 2:
        spacing = usable / 3
        return (-spacing, spacing)[index] if index < 2 else 0.0
    if count == 3:
        half = usable / 2
        return (-half, 0.0, half)[index] if index < 3 else 0.0
    spacing = usable / (count - 1)
    return -usable / 2 + spacing * index


# ---------------------------------------------------------------------------
# Port lookup
# ---------------------------------------------------------------------------

def _ports_for(node: Node, role: PortRole) -> list[Port]:
    if role is PortRole.INPUT:
        return node.inputs
    if role is PortRole.OUTPUT:
        return node.outputs
    if role is PortRole.BOTTOM:
        return node.bottom_ports
    return []


def _index_of(ports: list[Port], port_id: str) -> int:
    for i, port in enumerate(ports):
        if port.id == port_id:
            return i
    return -1


def port_role(node: Node, port_id: str) -> Optional[PortRole]:
    """Which list *port_id* belongs to, or None if the node has no such port."""
    if Side.from_port_id(port_id) is not None:
        return PortRole.SIDE
    for role in (PortRole.INPUT, PortRole.OUTPUT, PortRole.BOTTOM):
        if _index_of(_ports_for(node, role), port_id) >= 0:
            return role
    return None


def port_exists(node: Node, port_id: str, role: Optional[PortRole] = None) -> bool:
    if role is None:
        return port_role(node, port_id) is not None
    if role is PortRole.SIDE:
        return Side.from_port_id(port_id) is not None
    return _index_of(_ports_for(node, role), port_id) >= 0


def is_bottom_facing(node: Node, port_id: str) -> bool:
    """True for bottom ports and the bottom side anchor."""
    return Side.from_port_id(port_id) is Side.BOTTOM or port_exists(node, port_id, PortRole.BOTTOM)


def parse_port_ref(
    node: Node,
    port_id: str,
    role: Optional[PortRole] = None,
) -> Optional[PortRef]:
    """Turn a raw port id into a tagged reference.

    The *role* hint is searched first, then bottom, input and output lists.
    Returns None when the id is unknown to the node.
    """
    side = Side.from_port_id(port_id)
    if side is not None:
        return SidePort(side)

    search = [PortRole.BOTTOM, PortRole.INPUT, PortRole.OUTPUT]
    if role in search:
        search.remove(role)
        search.insert(0, role)
    for candidate in search:
        ports = _ports_for(node, candidate)
        idx = _index_of(ports, port_id)
        if idx >= 0:
            return SlotPort(candidate, idx, len(ports))
    return None


# ---------------------------------------------------------------------------
# Anchor resolution
# ---------------------------------------------------------------------------

def resolve_port_ref(
    node: Node,
    ref: PortRef,
    mode: RenderMode = RenderMode.WORKFLOW,
    variant: NodeVariant = NodeVariant.STANDARD,
) -> Point:
    width, height = node_dimensions(node, mode, variant)
    if isinstance(ref, SidePort):
        return Box.from_center(node.x, node.y, width, height).edge_midpoint(ref.side)

    if ref.role is PortRole.BOTTOM:
        dx = bottom_port_offset(ref.ordinal, ref.count, usable_width(width))
        return Point(node.x + dx, node.y + height / 2)

    spacing = height / (ref.count + 1)
    y = node.y - height / 2 + spacing * (ref.ordinal + 1)
    if ref.role is PortRole.INPUT:
        return Point(node.x - width / 2, y)
    return Point(node.x + width / 2, y)


def resolve_anchor(
    node: Node,
    port_id: str,
    role: Optional[PortRole] = None,
    mode: RenderMode = RenderMode.WORKFLOW,
    variant: NodeVariant = NodeVariant.STANDARD,
) -> Point:
    """Resolve the absolute anchor of *port_id* on *node*.

    Unknown port ids fall back to the node centre; callers decide whether a
    connection using such a port is stale.
    """
    if node is None:
        raise TypeError("resolve_anchor() requires a node")
    ref = parse_port_ref(node, port_id, role)
    if ref is None:
        logger.debug("Port '%s' not found on node '%s', using centre", port_id, node.id)
        return node.center
    return resolve_port_ref(node, ref, mode, variant)


def all_port_anchors(
    node: Node,
    mode: RenderMode = RenderMode.WORKFLOW,
    variant: NodeVariant = NodeVariant.STANDARD,
) -> dict[str, list[Point]]:
    """Anchors for every port on the node, grouped by list."""
    result: dict[str, list[Point]] = {}
    for role, key in (
        (PortRole.INPUT, "inputs"),
        (PortRole.OUTPUT, "outputs"),
        (PortRole.BOTTOM, "bottom_ports"),
    ):
        ports = _ports_for(node, role)
        result[key] = [
            resolve_port_ref(node, SlotPort(role, i, len(ports)), mode, variant)
            for i in range(len(ports))
        ]
    result["sides"] = [resolve_port_ref(node, SidePort(side), mode, variant) for side in Side]
    return result


# ---------------------------------------------------------------------------
# Side selection
# ---------------------------------------------------------------------------

def detect_side(
    node: Node,
    port_id: str,
    anchor: Point,
    mode: RenderMode = RenderMode.WORKFLOW,
    variant: NodeVariant = NodeVariant.STANDARD,
) -> Side:
    """Which bounding-box edge an anchor sits on (nearest edge as fallback)."""
    side = Side.from_port_id(port_id)
    if side is not None:
        return side

    box = node_box(node, mode, variant)
    # Right/left first: a port on a corner exits horizontally
    for candidate, dist in (
        (Side.RIGHT, abs(anchor.x - box.right)),
        (Side.LEFT, abs(anchor.x - box.x)),
        (Side.TOP, abs(anchor.y - box.y)),
        (Side.BOTTOM, abs(anchor.y - box.bottom)),
    ):
        if dist <= 0.5:
            return candidate

    dx_left = abs(anchor.x - box.x)
    dx_right = abs(anchor.x - box.right)
    dy_top = abs(anchor.y - box.y)
    dy_bottom = abs(anchor.y - box.bottom)
    if min(dx_left, dx_right) < min(dy_top, dy_bottom):
        return Side.LEFT if dx_left < dx_right else Side.RIGHT
    return Side.TOP if dy_top < dy_bottom else Side.BOTTOM


def choose_auto_target_side(approach_from: Point, target_center: Point) -> Side:
    """Majority-axis rule: enter through the side facing the approach."""
    dx = target_center.x - approach_from.x
    dy = target_center.y - approach_from.y
    if abs(dx) >= abs(dy):
        return Side.LEFT if dx > 0 else Side.RIGHT
    return Side.TOP if dy > 0 else Side.BOTTOM


def choose_end_orientation(approach_from: Point, box: Optional[Box]) -> Optional[Orientation]:
    if box is None:
        return None
    dx = box.cx - approach_from.x
    dy = box.cy - approach_from.y
    if abs(dx) >= abs(dy):
        return Orientation.HORIZONTAL
    return Orientation.VERTICAL


def choose_bottom_target_side(source_y: float, target_box: Box, threshold: float) -> Side:
    """Side for a connection leaving a bottom port.

    Targets whose top edge is less than *threshold* below the source are
    entered from underneath; everything further down is entered from the top.
    """
    if (target_box.y - source_y) < threshold:
        return Side.BOTTOM
    return Side.TOP


def resolve_target_side(
    source_node: Node,
    source_port_id: str,
    source_anchor: Point,
    target_node: Node,
    target_port_id: str,
    mode: RenderMode = RenderMode.WORKFLOW,
    variant: NodeVariant = NodeVariant.STANDARD,
    bottom_threshold: float = 100,
) -> Side:
    """Side of the target node a connection enters through.

    Bottom-facing sources use the proximity rule; an explicit side id wins
    otherwise.  Schematic mode picks the side facing the source, free-form
    mode uses the edge the target port actually sits on.
    """
    if is_bottom_facing(source_node, source_port_id):
        box = node_box(target_node, mode, variant)
        return choose_bottom_target_side(source_anchor.y, box, bottom_threshold)
    explicit = Side.from_port_id(target_port_id)
    if explicit is not None:
        return explicit
    if mode is RenderMode.ARCHITECTURE:
        return choose_auto_target_side(source_anchor, target_node.center)
    anchor = resolve_anchor(target_node, target_port_id, PortRole.INPUT, mode, variant)
    return detect_side(target_node, target_port_id, anchor, mode, variant)

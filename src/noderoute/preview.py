"""
Live preview of a connection being dragged out of a port.

The endpoint is chosen in priority order:

1. the box the cursor is hovering, at its optimal entry side;
2. the nearest candidate node whose optimal side anchor is within the snap
   radius of the cursor;
3. the cursor itself, snapped to the grid.

Snapped endpoints are pushed outward by half the arrow marker so the
arrowhead does not overlap the target shape.  The path itself comes from the
same synthesizers as committed connections and is never cached.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from noderoute.anchors import (
    choose_auto_target_side,
    choose_bottom_target_side,
    detect_side,
    is_bottom_facing,
    node_box,
    resolve_anchor,
)
from noderoute.config import PathConfig
from noderoute.models import (
    Box,
    ConnectionPath,
    Node,
    NodeVariant,
    Point,
    PortRole,
    RenderMode,
    Side,
    is_finite_point,
    snap_to_grid,
)
from noderoute.paths import connection_flow, orthogonal_path, smooth_curve_path, straight_path

logger = logging.getLogger("noderoute.preview")


@dataclass
class PreviewResult:
    path: ConnectionPath
    end: Point
    snapped_node_id: Optional[str] = None
    snapped_side: Optional[Side] = None
    grid_snapped: bool = False

    def to_dict(self) -> dict:
        return {
            "path": self.path.to_dict(),
            "end": self.end.to_dict(),
            "snapped_node_id": self.snapped_node_id,
            "snapped_side": self.snapped_side.port_id if self.snapped_side else None,
            "grid_snapped": self.grid_snapped,
        }


@dataclass(frozen=True)
class SnapTarget:
    node_id: str
    side: Side
    anchor: Point
    distance: float


def trim_for_arrow(point: Point, side: Side, marker_size: float) -> Point:
    """Move *point* away from the box through *side* by half the marker."""
    nx, ny = side.normal
    half = marker_size / 2
    return Point(point.x + nx * half, point.y + ny * half)


def _entry_side(
    source_anchor: Point,
    source_bottom: bool,
    box: Box,
    config: PathConfig,
) -> Side:
    if source_bottom:
        return choose_bottom_target_side(source_anchor.y, box, config.bottom_snap_threshold)
    return choose_auto_target_side(source_anchor, box.center)


def find_snap_target(
    source_anchor: Point,
    cursor: Point,
    candidates: Iterable[Node],
    *,
    exclude_node_id: Optional[str] = None,
    source_bottom: bool = False,
    mode: RenderMode = RenderMode.WORKFLOW,
    variant: NodeVariant = NodeVariant.STANDARD,
    config: Optional[PathConfig] = None,
) -> Optional[SnapTarget]:
    """Nearest candidate whose optimal entry anchor is within the snap radius.

    Ties keep the earlier candidate.
    """
    cfg = config or PathConfig()
    best: Optional[SnapTarget] = None
    for node in candidates:
        if node.id == exclude_node_id:
            continue
        box = node_box(node, mode, variant)
        side = _entry_side(source_anchor, source_bottom, box, cfg)
        anchor = box.edge_midpoint(side)
        distance = cursor.distance_to(anchor)
        if distance > cfg.snap_radius:
            continue
        if best is None or distance < best.distance:
            best = SnapTarget(node.id, side, anchor, distance)
    return best


def preview_path(
    source_node: Node,
    source_port_id: str,
    cursor: Point,
    *,
    hover_target_box: Optional[Box] = None,
    hover_node_id: Optional[str] = None,
    available_nodes: Iterable[Node] = (),
    mode: RenderMode = RenderMode.WORKFLOW,
    variant: NodeVariant = NodeVariant.STANDARD,
    config: Optional[PathConfig] = None,
) -> PreviewResult:
    """Path from *source_port_id* toward the cursor, snapped where possible.

    Schematic previews route orthogonally to the trimmed endpoint with the
    wider preview U-turn clearance.  Free-form previews draw the smooth curve
    to the snapped anchor; the curve's own arrow clearance keeps it identical
    to the committed connection.
    """
    if source_node is None or cursor is None:
        raise TypeError("preview_path() requires a source node and a cursor point")
    cfg = config or PathConfig()
    available_nodes = list(available_nodes)

    source_anchor = resolve_anchor(source_node, source_port_id, PortRole.OUTPUT, mode, variant)
    if not is_finite_point(cursor):
        logger.warning("Non-finite preview cursor for node '%s'", source_node.id)
        return PreviewResult(path=straight_path(source_anchor, source_anchor), end=source_anchor)

    source_bottom = is_bottom_facing(source_node, source_port_id)
    source_side = detect_side(source_node, source_port_id, source_anchor, mode, variant)

    snapped_node_id: Optional[str] = None
    side: Optional[Side] = None
    target_box: Optional[Box] = None
    if hover_target_box is not None:
        target_box = hover_target_box
        side = _entry_side(source_anchor, source_bottom, target_box, cfg)
        anchor = target_box.edge_midpoint(side)
        snapped_node_id = hover_node_id
    else:
        snap = find_snap_target(
            source_anchor, cursor, available_nodes,
            exclude_node_id=source_node.id,
            source_bottom=source_bottom,
            mode=mode, variant=variant, config=cfg,
        )
        if snap is not None:
            side = snap.side
            anchor = snap.anchor
            snapped_node_id = snap.node_id
            for node in available_nodes:
                if node.id == snap.node_id:
                    target_box = node_box(node, mode, variant)
                    break

    if side is None:
        end = Point(snap_to_grid(cursor.x, cfg.grid_size), snap_to_grid(cursor.y, cfg.grid_size))
        anchor = end
        grid_snapped = True
    else:
        end = trim_for_arrow(anchor, side, cfg.arrow_marker_size)
        grid_snapped = False

    if mode is RenderMode.ARCHITECTURE:
        path = orthogonal_path(
            source_anchor, end, cfg,
            source_side=source_side,
            target_side=side,
            source_box=node_box(source_node, mode, variant),
            target_box=target_box,
            u_turn_clearance=cfg.preview_u_turn_clearance,
        )
    else:
        path = smooth_curve_path(source_anchor, anchor, connection_flow(source_bottom), cfg)

    return PreviewResult(
        path=path,
        end=end,
        snapped_node_id=snapped_node_id,
        snapped_side=side,
        grid_snapped=grid_snapped,
    )

"""
Mode-aware routing facade.

Free-form (workflow) mode draws smooth curves between the real port anchors,
offsetting parallel connections that share a port pair.  Schematic
(architecture) mode routes orthogonally from the source anchor to the
midpoint of the target side facing it, and bundles connections that share
sides into one path with a count label.

``ConnectionRouter`` owns the per-diagram state: the node / connection
snapshot, the path cache and the live drag positions.  Any connection that
touches a dragged node is recomputed on every call and never cached.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Sequence

from noderoute.anchors import (
    detect_side,
    is_bottom_facing,
    node_box,
    resolve_anchor,
    resolve_target_side,
)
from noderoute.cache import PathCache, cache_key
from noderoute.config import CacheConfig, PathConfig, optimal_cache_config
from noderoute.grouping import (
    ConnectionBucket,
    ConnectionGroupInfo,
    connection_offset,
    create_group_lookup,
    get_connection_group_info,
    group_connections,
)
from noderoute.models import (
    Box,
    Connection,
    ConnectionPath,
    Node,
    NodeVariant,
    Point,
    PortRole,
    RenderMode,
)
from noderoute.paths import (
    connection_flow,
    offset_smooth_path,
    orthogonal_path,
    smooth_curve_path,
)
from noderoute.preview import PreviewResult, preview_path

logger = logging.getLogger("noderoute.router")


# ---------------------------------------------------------------------------
# Stateless routing
# ---------------------------------------------------------------------------

def workflow_path(
    source_node: Node,
    source_port_id: str,
    target_node: Node,
    target_port_id: str,
    variant: NodeVariant = NodeVariant.STANDARD,
    config: Optional[PathConfig] = None,
) -> ConnectionPath:
    """Smooth curve between the two port anchors."""
    mode = RenderMode.WORKFLOW
    start = resolve_anchor(source_node, source_port_id, PortRole.OUTPUT, mode, variant)
    end = resolve_anchor(target_node, target_port_id, PortRole.INPUT, mode, variant)
    flow = connection_flow(is_bottom_facing(source_node, source_port_id))
    return smooth_curve_path(start, end, flow, config)


def architecture_path(
    source_node: Node,
    source_port_id: str,
    target_node: Node,
    target_port_id: str,
    config: Optional[PathConfig] = None,
    obstacles: Iterable[Box] = (),
) -> ConnectionPath:
    """Orthogonal route into the side of the target facing the source.

    Bottom-port sources enter close targets from underneath with a U route
    below both nodes.
    """
    cfg = config or PathConfig()
    mode = RenderMode.ARCHITECTURE
    variant = NodeVariant.STANDARD

    start = resolve_anchor(source_node, source_port_id, PortRole.OUTPUT, mode, variant)
    source_side = detect_side(source_node, source_port_id, start, mode, variant)
    target_side = resolve_target_side(
        source_node, source_port_id, start,
        target_node, target_port_id,
        mode, variant, cfg.bottom_snap_threshold,
    )
    target_box = node_box(target_node, mode, variant)
    return orthogonal_path(
        start,
        target_box.edge_midpoint(target_side),
        cfg,
        source_side=source_side,
        target_side=target_side,
        source_box=node_box(source_node, mode, variant),
        target_box=target_box,
        obstacles=obstacles,
    )


def multiple_connection_path(
    source_node: Node,
    source_port_id: str,
    target_node: Node,
    target_port_id: str,
    index: int = 0,
    total: int = 1,
    mode: RenderMode = RenderMode.WORKFLOW,
    variant: NodeVariant = NodeVariant.STANDARD,
    config: Optional[PathConfig] = None,
    obstacles: Iterable[Box] = (),
) -> ConnectionPath:
    """Path for one of *total* connections sharing a port pair.

    Schematic mode draws every member on the same bundled route; free-form
    mode shifts each curve by its parallel offset.
    """
    cfg = config or PathConfig()
    if mode is RenderMode.ARCHITECTURE:
        return architecture_path(
            source_node, source_port_id, target_node, target_port_id, cfg, obstacles,
        )
    if total <= 1 or is_bottom_facing(source_node, source_port_id):
        return workflow_path(source_node, source_port_id, target_node, target_port_id, variant, cfg)

    start = resolve_anchor(source_node, source_port_id, PortRole.OUTPUT, mode, variant)
    end = resolve_anchor(target_node, target_port_id, PortRole.INPUT, mode, variant)
    offset = connection_offset(index, total, cfg.parallel_spacing)
    return offset_smooth_path(start, end, offset, cfg)


def route_connection(
    connection: Connection,
    nodes: Mapping[str, Node],
    mode: RenderMode = RenderMode.WORKFLOW,
    variant: NodeVariant = NodeVariant.STANDARD,
    config: Optional[PathConfig] = None,
    obstacles: Iterable[Box] = (),
) -> ConnectionPath:
    """Route one connection; an empty path means an endpoint node is missing."""
    source = nodes.get(connection.source_node_id)
    target = nodes.get(connection.target_node_id)
    if source is None or target is None:
        logger.debug("Connection '%s' references a missing node", connection.id)
        return ConnectionPath()
    if mode is RenderMode.ARCHITECTURE:
        return architecture_path(
            source, connection.source_port_id, target, connection.target_port_id,
            config, obstacles,
        )
    return workflow_path(
        source, connection.source_port_id, target, connection.target_port_id, variant, config,
    )


# ---------------------------------------------------------------------------
# Stateful router
# ---------------------------------------------------------------------------

@dataclass
class BundledRoute:
    """One drawn path standing for every connection in a bucket."""
    key: str
    bucket: ConnectionBucket
    path: ConnectionPath
    label_point: Optional[Point]

    @property
    def count(self) -> int:
        return len(self.bucket.items)

    def to_dict(self) -> dict:
        data = self.bucket.to_dict()
        data.update({
            "key": self.key,
            "count": self.count,
            "path": self.path.to_dict(),
            "label_point": self.label_point.to_dict() if self.label_point else None,
        })
        return data


class ConnectionRouter:
    """Routes every connection of one diagram, with caching and drag overrides."""

    def __init__(
        self,
        nodes: Iterable[Node] = (),
        connections: Iterable[Connection] = (),
        mode: RenderMode = RenderMode.WORKFLOW,
        variant: NodeVariant = NodeVariant.STANDARD,
        config: Optional[PathConfig] = None,
        cache: Optional[PathCache] = None,
        cache_config: Optional[CacheConfig] = None,
        avoid_obstacles: bool = False,
    ) -> None:
        self.config = config or PathConfig()
        self.avoid_obstacles = avoid_obstacles
        self._nodes: list[Node] = list(nodes)
        self._connections: list[Connection] = list(connections)
        self._mode = mode
        self._variant = variant
        if cache is None:
            cache = PathCache(cache_config or optimal_cache_config(
                len(self._nodes),
                len(self._connections),
                architecture=mode is RenderMode.ARCHITECTURE,
            ))
        self.cache = cache
        self._drag_positions: dict[str, Point] = {}
        self._refresh()

    # -- graph snapshot ------------------------------------------------------

    @property
    def nodes(self) -> Sequence[Node]:
        return self._nodes

    @property
    def connections(self) -> Sequence[Connection]:
        return self._connections

    @property
    def mode(self) -> RenderMode:
        return self._mode

    @property
    def variant(self) -> NodeVariant:
        return self._variant

    def node(self, node_id: str) -> Optional[Node]:
        return self._node_map.get(node_id)

    def set_graph(
        self,
        nodes: Optional[Iterable[Node]] = None,
        connections: Optional[Iterable[Connection]] = None,
        mode: Optional[RenderMode] = None,
        variant: Optional[NodeVariant] = None,
        config: Optional[PathConfig] = None,
        avoid_obstacles: Optional[bool] = None,
    ) -> None:
        """Replace any part of the snapshot; the cache is cleared on change."""
        if config is not None:
            self.config = config
        if avoid_obstacles is not None:
            self.avoid_obstacles = avoid_obstacles
        if config is not None or avoid_obstacles is not None:
            # Cache keys do not cover routing settings
            self.cache.clear()
        if nodes is not None:
            self._nodes = list(nodes)
        if connections is not None:
            self._connections = list(connections)
        if mode is not None:
            self._mode = mode
        if variant is not None:
            self._variant = variant
        self._refresh()

    def _refresh(self) -> None:
        self._node_map = {n.id: n for n in self._nodes}
        self._group_lookup = create_group_lookup(self._connections)
        self.cache.invalidate_for(self._nodes, self._connections, self._mode, self._variant)

    def move_node(self, node_id: str, x: float, y: float) -> bool:
        """Commit a new centre position for *node_id*."""
        node = self._node_map.get(node_id)
        if node is None:
            return False
        self.set_graph(nodes=[n.moved_to(x, y) if n.id == node_id else n for n in self._nodes])
        return True

    # -- drag overrides ------------------------------------------------------

    @property
    def drag_positions(self) -> Mapping[str, Point]:
        return dict(self._drag_positions)

    def update_drag_position(self, node_id: str, x: float, y: float) -> None:
        self._drag_positions[node_id] = Point(x, y)

    def clear_drag_position(self, node_id: str) -> None:
        self._drag_positions.pop(node_id, None)

    def clear_all_drag_positions(self) -> None:
        self._drag_positions.clear()

    def _effective_node(self, node_id: str) -> Optional[Node]:
        node = self._node_map.get(node_id)
        pos = self._drag_positions.get(node_id)
        if node is None or pos is None:
            return node
        return node.moved_to(pos.x, pos.y)

    def _effective_nodes(self) -> dict[str, Node]:
        if not self._drag_positions:
            return self._node_map
        return {node_id: self._effective_node(node_id) for node_id in self._node_map}

    # -- routing -------------------------------------------------------------

    def _obstacles(self, connection: Connection, nodes: Mapping[str, Node]) -> list[Box]:
        if not self.avoid_obstacles or self._mode is not RenderMode.ARCHITECTURE:
            return []
        return [
            node_box(n, self._mode, self._variant)
            for n in nodes.values()
            if n.id not in (connection.source_node_id, connection.target_node_id)
        ]

    def _compute(self, connection: Connection, nodes: Mapping[str, Node]) -> ConnectionPath:
        source = nodes.get(connection.source_node_id)
        target = nodes.get(connection.target_node_id)
        if source is None or target is None:
            logger.debug("Connection '%s' references a missing node", connection.id)
            return ConnectionPath()
        info = self._group_lookup.get(connection.id)
        return multiple_connection_path(
            source, connection.source_port_id,
            target, connection.target_port_id,
            index=info.index if info else 0,
            total=info.total if info else 1,
            mode=self._mode,
            variant=self._variant,
            config=self.config,
            obstacles=self._obstacles(connection, nodes),
        )

    def get_connection_path(
        self,
        connection: Connection,
        use_drag_positions: bool = False,
    ) -> ConnectionPath:
        """Path for *connection*, from the cache when it is safe to use.

        A connection touching a node with a drag override always reflects the
        override and bypasses the cache, whatever *use_drag_positions* says.
        """
        dragged = (
            connection.source_node_id in self._drag_positions
            or connection.target_node_id in self._drag_positions
        )
        if dragged or use_drag_positions:
            return self._compute(connection, self._effective_nodes())

        key = cache_key(connection, self._mode, self._variant)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        path = self._compute(connection, self._node_map)
        if not path.is_empty:
            self.cache.put(key, path)
        return path

    def route_all(self, use_drag_positions: bool = False) -> dict[str, ConnectionPath]:
        return {
            c.id: self.get_connection_path(c, use_drag_positions)
            for c in self._connections
        }

    def groups(self) -> dict[str, ConnectionBucket]:
        return group_connections(
            self._connections, self._effective_nodes(),
            self._mode, self._variant, self.config,
        )

    def group_info(self, connection_id: str) -> ConnectionGroupInfo:
        return get_connection_group_info(connection_id, self._connections)

    def route_bundles(self) -> list[BundledRoute]:
        """One path per side bucket, labelled at its midpoint."""
        bundles = []
        for key, bucket in self.groups().items():
            path = self.get_connection_path(bucket.items[0])
            bundles.append(BundledRoute(key, bucket, path, path.midpoint()))
        return bundles

    def preview(
        self,
        source_node_id: str,
        source_port_id: str,
        cursor: Point,
        hover_node_id: Optional[str] = None,
        snap_to_nodes: bool = True,
    ) -> Optional[PreviewResult]:
        """Live preview from a port; None if the source node is unknown."""
        source = self._effective_node(source_node_id)
        if source is None:
            return None
        nodes = self._effective_nodes()
        hover_box = None
        if hover_node_id is not None and hover_node_id in nodes:
            hover_box = node_box(nodes[hover_node_id], self._mode, self._variant)
        return preview_path(
            source, source_port_id, cursor,
            hover_target_box=hover_box,
            hover_node_id=hover_node_id if hover_box is not None else None,
            available_nodes=list(nodes.values()) if snap_to_nodes else (),
            mode=self._mode,
            variant=self._variant,
            config=self.config,
        )

    def stats(self) -> dict:
        return {
            "nodes": len(self._nodes),
            "connections": len(self._connections),
            "mode": self._mode.value,
            "variant": self._variant.value,
            "dragging": sorted(self._drag_positions),
            "cache": self.cache.to_dict(),
        }

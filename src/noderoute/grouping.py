"""
Grouping and bundling of connections that share endpoints.

Two independent views over a connection list:

- Side buckets (``group_connections``): connections between the same node
  pair that leave and enter through the same sides with the same port roles
  collapse into one bucket.  Schematic mode draws a bucket as a single path
  with a count label.
- Port-pair groups (``analyze_connection_groups`` and friends): connections
  sharing the exact same (source port, target port) pair, used for offsetting
  parallel free-form curves and for diagnostics.

All views are derived on demand and never stored on the connections.  Group
indices follow input order; sort first (``optimize_connection_order``) when
a stable order is needed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional, Union

from noderoute.anchors import detect_side, port_role, resolve_anchor, resolve_target_side
from noderoute.config import PathConfig
from noderoute.models import Connection, Node, NodeVariant, PortRole, RenderMode, Side

logger = logging.getLogger("noderoute.grouping")

# Groups above this size are reported as a likely modelling problem
LARGE_GROUP_SIZE = 5

NodeCollection = Union[Mapping[str, Node], Iterable[Node]]


def _node_map(nodes: NodeCollection) -> Mapping[str, Node]:
    if isinstance(nodes, Mapping):
        return nodes
    return {n.id: n for n in nodes}


# ---------------------------------------------------------------------------
# Side buckets
# ---------------------------------------------------------------------------

@dataclass
class ConnectionBucket:
    """Connections sharing node pair, sides and port roles."""
    source_side: Side
    target_side: Side
    source_role: PortRole
    target_role: PortRole
    items: list[Connection] = field(default_factory=list)

    @property
    def source_node_id(self) -> str:
        return self.items[0].source_node_id if self.items else ""

    @property
    def target_node_id(self) -> str:
        return self.items[0].target_node_id if self.items else ""

    def to_dict(self) -> dict:
        return {
            "source_node_id": self.source_node_id,
            "target_node_id": self.target_node_id,
            "source_side": self.source_side.port_id,
            "target_side": self.target_side.port_id,
            "source_group": self.source_role.group_name,
            "target_group": self.target_role.group_name,
            "connection_ids": [c.id for c in self.items],
            "total": len(self.items),
        }


def bucket_key(
    source_node_id: str,
    source_side: Side,
    source_role: PortRole,
    target_node_id: str,
    target_side: Side,
    target_role: PortRole,
) -> str:
    return (
        f"{source_node_id}:{source_side.port_id}:{source_role.group_name}"
        f"->{target_node_id}:{target_side.port_id}:{target_role.group_name}"
    )


def group_connections(
    connections: Iterable[Connection],
    nodes: NodeCollection,
    mode: RenderMode = RenderMode.ARCHITECTURE,
    variant: NodeVariant = NodeVariant.STANDARD,
    config: Optional[PathConfig] = None,
) -> dict[str, ConnectionBucket]:
    """Bucket connections by (node, side, role) on both ends.

    Connections whose source or target node or port is missing are skipped.
    """
    cfg = config or PathConfig()
    node_map = _node_map(nodes)
    buckets: dict[str, ConnectionBucket] = {}

    for conn in connections:
        src = node_map.get(conn.source_node_id)
        tgt = node_map.get(conn.target_node_id)
        if src is None or tgt is None:
            logger.debug("Skipping connection '%s': endpoint node missing", conn.id)
            continue
        source_role = port_role(src, conn.source_port_id)
        target_role = port_role(tgt, conn.target_port_id)
        if source_role is None or target_role is None:
            logger.debug("Skipping connection '%s': endpoint port missing", conn.id)
            continue

        source_anchor = resolve_anchor(src, conn.source_port_id, PortRole.OUTPUT, mode, variant)
        source_side = detect_side(src, conn.source_port_id, source_anchor, mode, variant)
        target_side = resolve_target_side(
            src, conn.source_port_id, source_anchor,
            tgt, conn.target_port_id,
            mode, variant, cfg.bottom_snap_threshold,
        )
        key = bucket_key(src.id, source_side, source_role, tgt.id, target_side, target_role)
        bucket = buckets.get(key)
        if bucket is None:
            bucket = buckets[key] = ConnectionBucket(
                source_side, target_side, source_role, target_role,
            )
        bucket.items.append(conn)

    return buckets


# ---------------------------------------------------------------------------
# Port-pair groups
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ConnectionGroupInfo:
    index: int
    total: int
    is_multiple: bool
    group_key: str

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "total": self.total,
            "is_multiple": self.is_multiple,
            "group_key": self.group_key,
        }


@dataclass(frozen=True)
class GroupedConnection:
    """A connection annotated with its position inside its group."""
    connection: Connection
    index: int
    total: int
    group_key: str


UNKNOWN_GROUP = ConnectionGroupInfo(index=0, total=1, is_multiple=False, group_key="unknown")


def connection_group_key(
    source_node_id: str,
    target_node_id: str,
    source_port_id: Optional[str] = None,
    target_port_id: Optional[str] = None,
) -> str:
    """Key for a node pair plus port pair ('*' for an unspecified port)."""
    src_port = source_port_id if source_port_id is not None else "*"
    tgt_port = target_port_id if target_port_id is not None else "*"
    return f"{source_node_id}:{src_port}->{target_node_id}:{tgt_port}"


def _key_of(conn: Connection) -> str:
    return connection_group_key(
        conn.source_node_id, conn.target_node_id,
        conn.source_port_id, conn.target_port_id,
    )


def _group_by_port_pair(connections: Iterable[Connection]) -> dict[str, list[Connection]]:
    groups: dict[str, list[Connection]] = {}
    for conn in connections:
        groups.setdefault(_key_of(conn), []).append(conn)
    return groups


def analyze_connection_groups(
    connections: Iterable[Connection],
) -> dict[str, list[GroupedConnection]]:
    """Port-pair groups with index / total filled in."""
    result: dict[str, list[GroupedConnection]] = {}
    for key, members in _group_by_port_pair(connections).items():
        result[key] = [
            GroupedConnection(conn, i, len(members), key)
            for i, conn in enumerate(members)
        ]
    return result


def get_connection_group_info(
    connection_id: str,
    connections: Iterable[Connection],
) -> ConnectionGroupInfo:
    """Index and size of the group *connection_id* belongs to.

    Unknown ids report a single-member 'unknown' group.
    """
    connections = list(connections)
    target = next((c for c in connections if c.id == connection_id), None)
    if target is None:
        return UNKNOWN_GROUP

    key = _key_of(target)
    same_group = [c for c in connections if _key_of(c) == key]
    index = next((i for i, c in enumerate(same_group) if c.id == connection_id), 0)
    total = len(same_group)
    return ConnectionGroupInfo(index=index, total=total, is_multiple=total > 1, group_key=key)


def create_group_lookup(connections: Iterable[Connection]) -> dict[str, ConnectionGroupInfo]:
    """Group info for every connection, keyed by connection id."""
    lookup: dict[str, ConnectionGroupInfo] = {}
    for key, members in analyze_connection_groups(connections).items():
        for member in members:
            # First occurrence wins for duplicate ids
            lookup.setdefault(
                member.connection.id,
                ConnectionGroupInfo(member.index, member.total, member.total > 1, key),
            )
    return lookup


def connection_offset(index: int, total: int, spacing: float = 15) -> float:
    """Perpendicular offset of a parallel connection around the centre line."""
    if total <= 1:
        return 0.0
    if total == 2:
        return -spacing / 2 if index == 0 else spacing / 2
    return index * spacing - (total - 1) * spacing / 2


def optimize_connection_order(grouped: Iterable[GroupedConnection]) -> list[GroupedConnection]:
    """Sort by source then target port id and renumber."""
    ordered = sorted(
        grouped,
        key=lambda g: (g.connection.source_port_id, g.connection.target_port_id),
    )
    return [
        GroupedConnection(g.connection, i, g.total, g.group_key)
        for i, g in enumerate(ordered)
    ]


def find_connections_between_nodes(
    source_node_id: str,
    target_node_id: str,
    connections: Iterable[Connection],
) -> list[Connection]:
    return [
        c for c in connections
        if c.source_node_id == source_node_id and c.target_node_id == target_node_id
    ]


def find_connections_for_node(
    node_id: str,
    connections: Iterable[Connection],
) -> dict[str, list[Connection]]:
    """Outgoing, incoming and all connections touching *node_id*."""
    connections = list(connections)
    outgoing = [c for c in connections if c.source_node_id == node_id]
    incoming = [c for c in connections if c.target_node_id == node_id]
    return {"outgoing": outgoing, "incoming": incoming, "all": outgoing + incoming}


def find_multiple_connection_groups(
    connections: Iterable[Connection],
) -> dict[str, list[GroupedConnection]]:
    return {
        key: members
        for key, members in analyze_connection_groups(connections).items()
        if len(members) > 1
    }


# ---------------------------------------------------------------------------
# Statistics and diagnostics
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ConnectionGroupStats:
    total_groups: int
    total_connections: int
    multiple_connection_groups: int
    largest_group_size: int
    average_group_size: float

    def to_dict(self) -> dict:
        return {
            "total_groups": self.total_groups,
            "total_connections": self.total_connections,
            "multiple_connection_groups": self.multiple_connection_groups,
            "largest_group_size": self.largest_group_size,
            "average_group_size": self.average_group_size,
        }


def connection_group_stats(connections: Iterable[Connection]) -> ConnectionGroupStats:
    connections = list(connections)
    sizes = [len(g) for g in _group_by_port_pair(connections).values()]
    total_groups = len(sizes)
    return ConnectionGroupStats(
        total_groups=total_groups,
        total_connections=len(connections),
        multiple_connection_groups=sum(1 for s in sizes if s > 1),
        largest_group_size=max(sizes, default=0),
        average_group_size=len(connections) / total_groups if total_groups else 0.0,
    )


@dataclass
class ConnectionIssues:
    unusually_large_groups: list[str] = field(default_factory=list)
    potential_duplicates: list[str] = field(default_factory=list)
    orphaned_connections: list[str] = field(default_factory=list)

    @property
    def has_issues(self) -> bool:
        return bool(
            self.unusually_large_groups
            or self.potential_duplicates
            or self.orphaned_connections
        )

    def to_dict(self) -> dict:
        return {
            "unusually_large_groups": self.unusually_large_groups,
            "potential_duplicates": self.potential_duplicates,
            "orphaned_connections": self.orphaned_connections,
        }


def detect_connection_issues(
    connections: Iterable[Connection],
    nodes: Optional[NodeCollection] = None,
) -> ConnectionIssues:
    """Flag oversized groups, repeated port pairs and connections to missing nodes.

    Orphan detection needs *nodes*; without it that list stays empty.
    """
    connections = list(connections)
    issues = ConnectionIssues()
    for key, members in _group_by_port_pair(connections).items():
        if len(members) > LARGE_GROUP_SIZE:
            issues.unusually_large_groups.append(key)
        # Every member after the first shares the same port pair
        issues.potential_duplicates.extend(c.id for c in members[1:])

    if nodes is not None:
        node_map = _node_map(nodes)
        issues.orphaned_connections = [
            c.id for c in connections
            if c.source_node_id not in node_map or c.target_node_id not in node_map
        ]
    return issues

"""Tests for side bucketing and port-pair grouping of connections."""

from noderoute.grouping import (
    LARGE_GROUP_SIZE,
    UNKNOWN_GROUP,
    GroupedConnection,
    analyze_connection_groups,
    bucket_key,
    connection_group_key,
    connection_group_stats,
    connection_offset,
    create_group_lookup,
    detect_connection_issues,
    find_connections_between_nodes,
    find_connections_for_node,
    find_multiple_connection_groups,
    get_connection_group_info,
    group_connections,
    optimize_connection_order,
)
from noderoute.models import Connection, Node, Port, PortRole, RenderMode, Side


def _two_by_two(node_id: str, x: float, y: float) -> Node:
    return Node(
        node_id, x, y,
        inputs=[Port("in1"), Port("in2")],
        outputs=[Port("out1"), Port("out2")],
    )


def _nodes() -> list[Node]:
    a = _two_by_two("A", 0, 0)
    a.bottom_ports.append(Port("b"))
    return [a, _two_by_two("B", 300, 0), _two_by_two("C", 300, 200), _two_by_two("D", 0, 200)]


def _conn(cid: str, src: str, sp: str, tgt: str, tp: str) -> Connection:
    return Connection(cid, src, sp, tgt, tp)


# ---------------------------------------------------------------------------
# Side buckets
# ---------------------------------------------------------------------------

def test_parallel_connections_share_one_bucket() -> None:
    conns = [
        _conn("c1", "A", "out1", "B", "in1"),
        _conn("c2", "A", "out2", "B", "in2"),
    ]
    buckets = group_connections(conns, _nodes())
    assert len(buckets) == 1

    key, bucket = next(iter(buckets.items()))
    assert key == "A:__side-right:output-port-group->B:__side-left:input-port-group"
    data = bucket.to_dict()
    assert data["source_side"] == "__side-right"
    assert data["target_side"] == "__side-left"
    assert data["source_group"] == "output-port-group"
    assert data["target_group"] == "input-port-group"
    assert data["connection_ids"] == ["c1", "c2"]
    assert data["total"] == 2


def test_adding_connections_updates_buckets() -> None:
    conns = [
        _conn("c1", "A", "out1", "B", "in1"),
        _conn("c2", "A", "out2", "B", "in2"),
        _conn("c3", "A", "out1", "B", "in2"),
        _conn("c4", "A", "out1", "C", "in1"),
    ]
    buckets = group_connections(conns, _nodes())
    assert len(buckets) == 2
    totals = sorted(len(b.items) for b in buckets.values())
    assert totals == [1, 3]

    c_bucket = next(b for b in buckets.values() if b.target_node_id == "C")
    assert c_bucket.target_side is Side.LEFT


def test_bottom_port_bucket_uses_proximity_rule() -> None:
    conns = [
        _conn("near", "A", "b", "B", "in1"),
        _conn("far", "A", "b", "D", "in1"),
    ]
    buckets = group_connections(conns, _nodes())
    by_target = {b.target_node_id: b for b in buckets.values()}
    assert by_target["B"].source_side is Side.BOTTOM
    assert by_target["B"].source_role is PortRole.BOTTOM
    assert by_target["B"].target_side is Side.BOTTOM
    assert by_target["D"].target_side is Side.TOP


def test_explicit_side_ports_form_own_bucket() -> None:
    conns = [
        _conn("c1", "A", "out1", "B", "in1"),
        _conn("c2", "A", "out1", "B", "__side-top"),
    ]
    buckets = group_connections(conns, _nodes())
    assert len(buckets) == 2
    side_bucket = next(b for b in buckets.values() if b.target_role is PortRole.SIDE)
    assert side_bucket.target_side is Side.TOP


def test_buckets_partition_resolvable_connections() -> None:
    conns = [
        _conn("c1", "A", "out1", "B", "in1"),
        _conn("c2", "A", "out2", "C", "in2"),
        _conn("c3", "B", "out1", "C", "in1"),
        _conn("c4", "A", "b", "D", "in1"),
        _conn("orphan", "A", "out1", "ghost", "in1"),
        _conn("stale-src", "A", "gone", "B", "in1"),
        _conn("stale-tgt", "A", "out1", "B", "gone"),
    ]
    buckets = group_connections(conns, _nodes(), RenderMode.ARCHITECTURE)
    seen = [c.id for b in buckets.values() for c in b.items]
    assert sorted(seen) == ["c1", "c2", "c3", "c4"]


def test_group_connections_accepts_mapping() -> None:
    nodes = {n.id: n for n in _nodes()}
    conns = [_conn("c1", "A", "out1", "B", "in1")]
    assert len(group_connections(conns, nodes, RenderMode.ARCHITECTURE)) == 1


def test_bucket_key_format() -> None:
    key = bucket_key("s", Side.BOTTOM, PortRole.BOTTOM, "t", Side.TOP, PortRole.INPUT)
    assert key == "s:__side-bottom:bottom-port-group->t:__side-top:input-port-group"


# ---------------------------------------------------------------------------
# Port-pair groups
# ---------------------------------------------------------------------------

_PAIRED = [
    _conn("c1", "A", "o1", "B", "i1"),
    _conn("c2", "A", "o1", "B", "i1"),
    _conn("c3", "A", "o2", "B", "i1"),
]


def test_connection_group_key() -> None:
    assert connection_group_key("A", "B", "o1", "i1") == "A:o1->B:i1"
    assert connection_group_key("A", "B") == "A:*->B:*"


def test_analyze_connection_groups() -> None:
    groups = analyze_connection_groups(_PAIRED)
    assert set(groups) == {"A:o1->B:i1", "A:o2->B:i1"}
    pair = groups["A:o1->B:i1"]
    assert [(g.connection.id, g.index, g.total) for g in pair] == [("c1", 0, 2), ("c2", 1, 2)]


def test_get_connection_group_info() -> None:
    info = get_connection_group_info("c2", _PAIRED)
    assert info.index == 1
    assert info.total == 2
    assert info.is_multiple
    assert info.group_key == "A:o1->B:i1"

    single = get_connection_group_info("c3", _PAIRED)
    assert single.total == 1
    assert not single.is_multiple


def test_unknown_connection_reports_unknown_group() -> None:
    assert get_connection_group_info("nope", _PAIRED) == UNKNOWN_GROUP
    assert UNKNOWN_GROUP.to_dict() == {
        "index": 0, "total": 1, "is_multiple": False, "group_key": "unknown",
    }


def test_group_lookup_matches_direct_query() -> None:
    lookup = create_group_lookup(_PAIRED)
    for conn in _PAIRED:
        assert lookup[conn.id] == get_connection_group_info(conn.id, _PAIRED)


def test_connection_offset() -> None:
    assert connection_offset(0, 1) == 0
    assert connection_offset(0, 2) == -7.5
    assert connection_offset(1, 2) == 7.5
    assert [connection_offset(i, 3) for i in range(3)] == [-15, 0, 15]
    assert connection_offset(3, 4) == 22.5
    assert connection_offset(0, 2, spacing=20) == -10


def test_offsets_are_symmetric() -> None:
    for total in range(2, 8):
        offsets = [connection_offset(i, total) for i in range(total)]
        assert sum(offsets) == 0
        assert offsets == sorted(offsets)


def test_optimize_connection_order() -> None:
    grouped = [
        GroupedConnection(_conn("x", "A", "p2", "B", "i"), 0, 2, "k"),
        GroupedConnection(_conn("y", "A", "p1", "B", "i"), 1, 2, "k"),
    ]
    ordered = optimize_connection_order(grouped)
    assert [(g.connection.id, g.index) for g in ordered] == [("y", 0), ("x", 1)]


def test_find_connections() -> None:
    conns = _PAIRED + [_conn("c4", "B", "o1", "C", "i1")]
    assert [c.id for c in find_connections_between_nodes("A", "B", conns)] == ["c1", "c2", "c3"]
    assert find_connections_between_nodes("B", "A", conns) == []

    touching = find_connections_for_node("B", conns)
    assert [c.id for c in touching["outgoing"]] == ["c4"]
    assert [c.id for c in touching["incoming"]] == ["c1", "c2", "c3"]
    assert len(touching["all"]) == 4


def test_find_multiple_connection_groups() -> None:
    multiple = find_multiple_connection_groups(_PAIRED)
    assert list(multiple) == ["A:o1->B:i1"]


# ---------------------------------------------------------------------------
# Statistics and diagnostics
# ---------------------------------------------------------------------------

def test_connection_group_stats() -> None:
    stats = connection_group_stats(_PAIRED)
    assert stats.total_groups == 2
    assert stats.total_connections == 3
    assert stats.multiple_connection_groups == 1
    assert stats.largest_group_size == 2
    assert stats.average_group_size == 1.5


def test_stats_for_empty_list() -> None:
    stats = connection_group_stats([])
    assert stats.to_dict() == {
        "total_groups": 0,
        "total_connections": 0,
        "multiple_connection_groups": 0,
        "largest_group_size": 0,
        "average_group_size": 0.0,
    }


def test_detect_connection_issues() -> None:
    crowd = [_conn(f"k{i}", "A", "o", "B", "i") for i in range(LARGE_GROUP_SIZE + 1)]
    issues = detect_connection_issues(crowd)
    assert issues.unusually_large_groups == ["A:o->B:i"]
    assert issues.potential_duplicates == [f"k{i}" for i in range(1, LARGE_GROUP_SIZE + 1)]
    assert issues.orphaned_connections == []
    assert issues.has_issues


def test_detect_orphans_needs_nodes() -> None:
    conns = [_conn("c1", "A", "out1", "B", "in1"), _conn("lost", "A", "out1", "Z", "in1")]
    assert detect_connection_issues(conns).orphaned_connections == []
    issues = detect_connection_issues(conns, _nodes())
    assert issues.orphaned_connections == ["lost"]
    assert issues.potential_duplicates == []


def test_no_issues() -> None:
    issues = detect_connection_issues([_conn("c1", "A", "out1", "B", "in1")], _nodes())
    assert not issues.has_issues

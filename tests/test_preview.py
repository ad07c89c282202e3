"""Tests for live connection previews and target snapping."""

import math

import pytest

from noderoute.models import Box, Node, PathOp, Point, Port, RenderMode, Side
from noderoute.preview import find_snap_target, preview_path, trim_for_arrow


def _source() -> Node:
    # Single output anchored at the origin
    return Node("s", -100, 0, outputs=[Port("o")])


def _small(node_id: str, x: float, y: float) -> Node:
    return Node(node_id, x, y, width=56, height=56)


def test_trim_for_arrow() -> None:
    assert trim_for_arrow(Point(22, 0), Side.LEFT, 10) == Point(17, 0)
    assert trim_for_arrow(Point(0, 128), Side.BOTTOM, 10) == Point(0, 133)
    assert trim_for_arrow(Point(0, 0), Side.TOP, 8) == Point(0, -4)


def test_snaps_to_nearby_node() -> None:
    result = preview_path(_source(), "o", Point(45, 5), available_nodes=[_small("t", 50, 0)])
    assert result.snapped_node_id == "t"
    assert result.snapped_side is Side.LEFT
    assert result.end == Point(17, 0)
    assert not result.grid_snapped
    # Free-form preview curves to the anchor itself, with the usual arrow gap
    assert result.path.start == Point(0, 0)
    assert result.path.end.distance_to(Point(22, 0)) == pytest.approx(7)


def test_snap_ignores_distant_nodes() -> None:
    result = preview_path(_source(), "o", Point(133, 47), available_nodes=[_small("t", 500, 500)])
    assert result.snapped_node_id is None
    assert result.grid_snapped
    assert result.end == Point(140, 40)


def test_grid_snap_without_candidates() -> None:
    result = preview_path(_source(), "o", Point(133, 47))
    assert result.end == Point(140, 40)
    assert result.path.end.distance_to(Point(140, 40)) == pytest.approx(7)
    assert result.to_dict()["snapped_side"] is None


def test_source_node_never_snaps_to_itself() -> None:
    src = _source()
    result = preview_path(src, "o", Point(5, 5), available_nodes=[src])
    assert result.snapped_node_id is None
    assert result.grid_snapped


def test_hover_box_wins_over_snap() -> None:
    result = preview_path(
        _source(), "o", Point(45, 5),
        hover_target_box=Box(200, -50, 100, 100),
        hover_node_id="h",
        available_nodes=[_small("t", 50, 0)],
    )
    assert result.snapped_node_id == "h"
    assert result.snapped_side is Side.LEFT
    assert result.end == Point(195, 0)


def test_snap_tie_keeps_first_candidate() -> None:
    upper = _small("t1", 50, -40)
    lower = _small("t2", 50, 40)
    cursor = Point(22, 0)
    assert find_snap_target(Point(0, 0), cursor, [upper, lower]).node_id == "t1"
    assert find_snap_target(Point(0, 0), cursor, [lower, upper]).node_id == "t2"


def test_snap_picks_nearest() -> None:
    near = _small("near", 50, 0)
    far = _small("far", 60, 30)
    snap = find_snap_target(Point(0, 0), Point(25, 0), [far, near])
    assert snap.node_id == "near"
    assert snap.anchor == Point(22, 0)
    assert snap.distance == 3


def test_bottom_source_enters_close_target_from_below() -> None:
    src = Node("s", 0, 0, bottom_ports=[Port("b")])
    result = preview_path(src, "b", Point(10, 120), available_nodes=[_small("t", 0, 100)])
    assert result.snapped_side is Side.BOTTOM
    assert result.end == Point(0, 133)


def test_bottom_source_enters_far_target_from_top() -> None:
    src = Node("s", 0, 0, bottom_ports=[Port("b")])
    result = preview_path(src, "b", Point(0, 260), available_nodes=[_small("t", 0, 300)])
    assert result.snapped_side is Side.TOP
    assert result.end == Point(0, 267)


def test_architecture_preview_is_orthogonal() -> None:
    src = Node("s", 0, 0, outputs=[Port("o")])
    result = preview_path(
        src, "o", Point(170, 95),
        available_nodes=[Node("t", 200, 100)],
        mode=RenderMode.ARCHITECTURE,
    )
    assert result.snapped_side is Side.LEFT
    assert result.end == Point(163, 100)
    assert result.path.waypoints == [
        Point(32, 0), Point(97.5, 0), Point(97.5, 100), Point(163, 100),
    ]
    assert PathOp.QUADRATIC in {s.op for s in result.path.segments}


def test_architecture_bottom_preview_u_route() -> None:
    src = Node("s", 0, 0, bottom_ports=[Port("b")])
    result = preview_path(
        src, "b", Point(210, 40),
        hover_target_box=Box(168, -32, 64, 64),
        hover_node_id="t",
        mode=RenderMode.ARCHITECTURE,
    )
    assert result.snapped_side is Side.BOTTOM
    assert result.end == Point(200, 37)
    assert result.path.waypoints == [
        Point(0, 32), Point(0, 87), Point(200, 87), Point(200, 37),
    ]


def test_non_finite_cursor_gives_zero_length_path() -> None:
    result = preview_path(_source(), "o", Point(math.nan, 0))
    assert result.end == Point(0, 0)
    assert result.path.to_svg() == "M 0 0 L 0 0"


def test_preview_requires_cursor() -> None:
    with pytest.raises(TypeError):
        preview_path(_source(), "o", None)
    with pytest.raises(TypeError):
        preview_path(None, "o", Point(0, 0))

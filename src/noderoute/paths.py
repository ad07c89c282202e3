"""
Path synthesis between two resolved anchors.

Two interchangeable algorithms:

- Smooth curves (free-form mode): one cubic Bezier whose control points
  depend on the connection flow, ending ``arrow_offset`` short of the target so
  the arrow marker sits on the anchor.
- Orthogonal rounded paths (schematic mode): axis-aligned routes with
  quadratic corners.  The base candidate is a straight line, an L, a dogleg,
  or a lead/connector/approach route depending on the exit and entry
  orientations.  Candidates that cross the target box or an obstacle are
  escalated to wider doglegs, bounded by ``max_bends``; the best candidate is
  returned even if it still intersects.

Synthesis never raises for representable input: non-finite coordinates produce
a straight fallback.  Passing None for a required point is a TypeError.
"""

from __future__ import annotations

import logging
import math
from typing import Iterable, Optional, Sequence

from noderoute.config import PathConfig
from noderoute.models import (
    Box,
    ConnectionFlow,
    ConnectionPath,
    Orientation,
    PathOp,
    PathSegment,
    Point,
    Side,
    is_finite_point,
)

logger = logging.getLogger("noderoute.paths")

_EPS = 1e-9


def _sign(value: float) -> int:
    if value > 0:
        return 1
    if value < 0:
        return -1
    return 0


def _require(point: Optional[Point], name: str) -> Point:
    if point is None:
        raise TypeError(f"'{name}' point is required")
    return point


# ---------------------------------------------------------------------------
# Input checks
# ---------------------------------------------------------------------------

def validate_path_inputs(source: Optional[Point], target: Optional[Point]) -> bool:
    """True when both endpoints have finite coordinates."""
    return is_finite_point(source) and is_finite_point(target)


def _finite_or(value: float, fallback: float) -> float:
    if math.isfinite(value):
        return value
    return fallback if math.isfinite(fallback) else 0.0


def _sanitized(source: Point, target: Point) -> tuple[Point, Point]:
    """Replace non-finite coordinates with the best finite value available."""
    s = Point(_finite_or(source.x, target.x), _finite_or(source.y, target.y))
    t = Point(_finite_or(target.x, s.x), _finite_or(target.y, s.y))
    return s, t


def straight_path(source: Point, target: Point) -> ConnectionPath:
    return ConnectionPath(
        segments=[
            PathSegment(PathOp.MOVE, (source,)),
            PathSegment(PathOp.LINE, (target,)),
        ],
        waypoints=[source, target],
    )


def _fallback(source: Point, target: Point) -> ConnectionPath:
    logger.warning(
        "Invalid path endpoints (%s, %s) -> (%s, %s), drawing straight fallback",
        source.x, source.y, target.x, target.y,
    )
    return straight_path(*_sanitized(source, target))


# ---------------------------------------------------------------------------
# Smooth curves (free-form mode)
# ---------------------------------------------------------------------------

def connection_flow(is_source_bottom: bool) -> ConnectionFlow:
    if is_source_bottom:
        return ConnectionFlow.BOTTOM_TO_INPUT
    return ConnectionFlow.HORIZONTAL


def arrow_adjusted_target(source: Point, target: Point, arrow_offset: float) -> Point:
    """Pull *target* back toward *source* by *arrow_offset*."""
    dx = target.x - source.x
    dy = target.y - source.y
    distance = math.hypot(dx, dy)
    if distance == 0:
        return target
    ratio = arrow_offset / distance
    return Point(target.x - dx * ratio, target.y - dy * ratio)


def horizontal_control_points(
    source: Point, target: Point, config: PathConfig,
) -> tuple[Point, Point]:
    """Control points for a gentle horizontal S-curve."""
    dx = target.x - source.x
    dy = target.y - source.y
    offset = max(abs(dx) / config.smoothing_factor, config.control_offset_min)
    return (
        Point(source.x + offset, source.y + dy * config.vertical_nudge),
        Point(target.x - offset, target.y - dy * config.vertical_nudge),
    )


def bottom_to_input_control_points(
    source: Point, target: Point, config: PathConfig,
) -> tuple[Point, Point]:
    """Leave the source straight down, arrive at the input horizontally."""
    dx = target.x - source.x
    dy = target.y - source.y
    down = max(abs(dy) / config.smoothing_factor, config.control_offset_min)
    across = max(abs(dx) / config.smoothing_factor, config.bottom_control_min)
    return Point(source.x, source.y + down), Point(target.x - across, target.y)


def smooth_curve_path(
    source: Point,
    target: Point,
    flow: ConnectionFlow = ConnectionFlow.HORIZONTAL,
    config: Optional[PathConfig] = None,
) -> ConnectionPath:
    """Single cubic Bezier from *source* to just short of *target*."""
    _require(source, "source")
    _require(target, "target")
    cfg = config or PathConfig()
    if not validate_path_inputs(source, target):
        return _fallback(source, target)

    end = arrow_adjusted_target(source, target, cfg.arrow_offset)
    if flow is ConnectionFlow.BOTTOM_TO_INPUT:
        cp1, cp2 = bottom_to_input_control_points(source, end, cfg)
    else:
        cp1, cp2 = horizontal_control_points(source, end, cfg)
    return ConnectionPath(segments=[
        PathSegment(PathOp.MOVE, (source,)),
        PathSegment(PathOp.CUBIC, (cp1, cp2, end)),
    ])


def offset_smooth_path(
    source: Point,
    target: Point,
    offset_y: float,
    config: Optional[PathConfig] = None,
) -> ConnectionPath:
    """Horizontal curve shifted vertically, for parallel connections."""
    return smooth_curve_path(
        source.offset(0, offset_y),
        target.offset(0, offset_y),
        ConnectionFlow.HORIZONTAL,
        config,
    )


# ---------------------------------------------------------------------------
# Segment / rectangle tests
# ---------------------------------------------------------------------------

def _line_intersects_rect(a: Point, b: Point, rect: Box) -> bool:
    """Liang-Barsky parametric clipping test: does segment a-b cross rect?"""
    dx = b.x - a.x
    dy = b.y - a.y

    t0, t1 = 0.0, 1.0
    for edge_p, edge_q in [
        (-dx, a.x - rect.x),
        (dx, rect.right - a.x),
        (-dy, a.y - rect.y),
        (dy, rect.bottom - a.y),
    ]:
        if abs(edge_p) < _EPS:
            if edge_q < 0:
                return False
        else:
            t = edge_q / edge_p
            if edge_p < 0:
                t0 = max(t0, t)
            else:
                t1 = min(t1, t)
    return t0 <= t1


def segment_hits_rect(a: Point, b: Point, rect: Box, strict: bool = False) -> bool:
    """Check if a segment passes through a rectangle.

    With ``strict`` only the open interior counts, so a segment that merely
    ends on (or runs along) an edge does not hit.
    """
    if abs(a.x - b.x) < _EPS:  # Vertical segment
        y1, y2 = min(a.y, b.y), max(a.y, b.y)
        if strict:
            return rect.x < a.x < rect.right and y2 > rect.y and y1 < rect.bottom
        return rect.x <= a.x <= rect.right and not (y2 < rect.y or y1 > rect.bottom)
    if abs(a.y - b.y) < _EPS:  # Horizontal segment
        x1, x2 = min(a.x, b.x), max(a.x, b.x)
        if strict:
            return rect.y < a.y < rect.bottom and x2 > rect.x and x1 < rect.right
        return rect.y <= a.y <= rect.bottom and not (x2 < rect.x or x1 > rect.right)
    return _line_intersects_rect(a, b, rect)


def count_intersections(
    points: Sequence[Point],
    obstacles: Iterable[Box] = (),
    target_box: Optional[Box] = None,
) -> int:
    """Number of (segment, rectangle) hits along a polyline."""
    rects = list(obstacles)
    hits = 0
    for a, b in zip(points, points[1:]):
        for rect in rects:
            if segment_hits_rect(a, b, rect):
                hits += 1
        if target_box is not None and segment_hits_rect(a, b, target_box, strict=True):
            hits += 1
    return hits


# ---------------------------------------------------------------------------
# Polyline helpers
# ---------------------------------------------------------------------------

def _same(a: Point, b: Point) -> bool:
    return abs(a.x - b.x) < _EPS and abs(a.y - b.y) < _EPS


def _passes_through(a: Point, b: Point, c: Point) -> bool:
    """b lies on the axis-aligned run a-c without reversing direction."""
    if abs(a.x - b.x) < _EPS and abs(b.x - c.x) < _EPS:
        return min(a.y, c.y) - _EPS <= b.y <= max(a.y, c.y) + _EPS
    if abs(a.y - b.y) < _EPS and abs(b.y - c.y) < _EPS:
        return min(a.x, c.x) - _EPS <= b.x <= max(a.x, c.x) + _EPS
    return False


def _simplify(points: Sequence[Point]) -> list[Point]:
    """Remove repeated and collinear intermediate points, keep both ends."""
    deduped: list[Point] = []
    for p in points:
        if deduped and _same(p, deduped[-1]):
            continue
        deduped.append(p)
    if len(deduped) <= 2:
        return deduped

    result = [deduped[0]]
    for i in range(1, len(deduped) - 1):
        if _passes_through(result[-1], deduped[i], deduped[i + 1]):
            continue
        result.append(deduped[i])
    result.append(deduped[-1])
    return result


def round_corners(
    points: Sequence[Point],
    radius: float,
    min_segment: float = 12,
) -> ConnectionPath:
    """Replace every interior bend with a quadratic corner.

    The corner radius never exceeds half of either adjacent segment; bends
    next to a segment shorter than ``min_segment / 4`` stay sharp.
    """
    pts = _simplify(points)
    if not pts:
        return ConnectionPath()
    segments = [PathSegment(PathOp.MOVE, (pts[0],))]
    for i in range(1, len(pts) - 1):
        prev, corner, nxt = pts[i - 1], pts[i], pts[i + 1]
        seg_in = abs(corner.x - prev.x) + abs(corner.y - prev.y)
        seg_out = abs(nxt.x - corner.x) + abs(nxt.y - corner.y)
        if min(seg_in, seg_out) < min_segment / 4:
            segments.append(PathSegment(PathOp.LINE, (corner,)))
            continue
        r = min(radius, seg_in / 2, seg_out / 2)
        entry = Point(
            corner.x - _sign(corner.x - prev.x) * r,
            corner.y - _sign(corner.y - prev.y) * r,
        )
        leave = Point(
            corner.x + _sign(nxt.x - corner.x) * r,
            corner.y + _sign(nxt.y - corner.y) * r,
        )
        segments.append(PathSegment(PathOp.LINE, (entry,)))
        segments.append(PathSegment(PathOp.QUADRATIC, (corner, leave)))
    if len(pts) > 1:
        segments.append(PathSegment(PathOp.LINE, (pts[-1],)))
    return ConnectionPath(segments=segments, waypoints=pts)


def _bends(points: Sequence[Point]) -> int:
    return max(0, len(_simplify(points)) - 2)


def _transpose(p: Point) -> Point:
    return Point(p.y, p.x)


# ---------------------------------------------------------------------------
# Endpoint projection
# ---------------------------------------------------------------------------

def project_point_to_box_side(
    point: Point,
    box: Box,
    toward: Point,
    radius: float = 14,
) -> Point:
    """Move a point lying inside *box* onto the side facing *toward*.

    Points already outside the box are returned unchanged.  The projected
    point is kept at least ``radius`` (capped at half the box) from corners.
    """
    if not box.contains_point(point.x, point.y):
        return point
    dx = toward.x - box.cx
    dy = toward.y - box.cy
    pad = min(max(radius, 4), min(box.width, box.height) / 2)
    clamp_y = min(box.bottom - pad, max(box.y + pad, point.y))
    clamp_x = min(box.right - pad, max(box.x + pad, point.x))
    if abs(dx) >= abs(dy):
        return Point(box.right if dx >= 0 else box.x, clamp_y)
    return Point(clamp_x, box.bottom if dy >= 0 else box.y)


# ---------------------------------------------------------------------------
# Orthogonal candidates
# ---------------------------------------------------------------------------

def u_turn_points(
    start: Point,
    end: Point,
    side: Side,
    boxes: Iterable[Box] = (),
    lead: float = 50,
    clearance: float = 16,
) -> list[Point]:
    """Out, across, back: both endpoints face *side*.

    The crossing line sits a full lead beyond the further anchor and clear of
    every given box by *clearance*.
    """
    nx, ny = side.normal
    boxes = list(boxes)
    if nx:
        if nx > 0:
            line = max(start.x, end.x) + lead
            if boxes:
                line = max(line, max(b.right for b in boxes) + clearance)
        else:
            line = min(start.x, end.x) - lead
            if boxes:
                line = min(line, min(b.x for b in boxes) - clearance)
        return [start, Point(line, start.y), Point(line, end.y), end]

    if ny > 0:
        line = max(start.y, end.y) + lead
        if boxes:
            line = max(line, max(b.bottom for b in boxes) + clearance)
    else:
        line = min(start.y, end.y) - lead
        if boxes:
            line = min(line, min(b.y for b in boxes) - clearance)
    return [start, Point(start.x, line), Point(end.x, line), end]


def u_turn_path(
    start: Point,
    end: Point,
    side: Side,
    boxes: Iterable[Box] = (),
    config: Optional[PathConfig] = None,
    clearance: Optional[float] = None,
) -> ConnectionPath:
    cfg = config or PathConfig()
    gap = cfg.u_turn_clearance if clearance is None else clearance
    points = u_turn_points(start, end, side, boxes, cfg.lead_length, gap)
    return round_corners(points, cfg.corner_radius, cfg.min_segment)


def _channel(
    a: float, b: float, boxes: list[Box], clearance: float, lead: float, vertical: bool,
) -> float:
    """Coordinate of a crossing channel between (or around) the boxes."""
    if len(boxes) == 2:
        first, second = boxes
        lo_1, hi_1 = (first.y, first.bottom) if vertical else (first.x, first.right)
        lo_2, hi_2 = (second.y, second.bottom) if vertical else (second.x, second.right)
        if hi_1 <= lo_2:
            return (hi_1 + lo_2) / 2
        if hi_2 <= lo_1:
            return (hi_2 + lo_1) / 2
    if boxes:
        lows = [b.y if vertical else b.x for b in boxes]
        highs = [b.bottom if vertical else b.right for b in boxes]
        before = min(lows) - clearance
        after = max(highs) + clearance
        mid = (a + b) / 2
        return before if abs(before - mid) < abs(after - mid) else after
    if abs(a - b) < _EPS:
        return a + lead
    return (a + b) / 2


def _reverse_s_points(
    start: Point,
    end: Point,
    side: Side,
    boxes: list[Box],
    cfg: PathConfig,
    clearance: float,
) -> list[Point]:
    """Route for anchors that face each other with no forward room."""
    stub = max(cfg.min_segment * 2, cfg.corner_radius * 2)
    nx, ny = side.normal
    if nx:
        out_x = start.x + nx * stub
        back_x = end.x - nx * stub
        mid = _channel(start.y, end.y, boxes, clearance, cfg.lead_length, vertical=True)
        return [
            start, Point(out_x, start.y), Point(out_x, mid),
            Point(back_x, mid), Point(back_x, end.y), end,
        ]
    out_y = start.y + ny * stub
    back_y = end.y - ny * stub
    mid = _channel(start.x, end.x, boxes, clearance, cfg.lead_length, vertical=False)
    return [
        start, Point(start.x, out_y), Point(mid, out_y),
        Point(mid, back_y), Point(end.x, back_y), end,
    ]


def _u_turn_candidate(
    start: Point,
    end: Point,
    source_side: Optional[Side],
    target_side: Optional[Side],
    boxes: list[Box],
    cfg: PathConfig,
    clearance: float,
) -> Optional[list[Point]]:
    if source_side is None or target_side is None:
        return None
    if source_side is target_side:
        return u_turn_points(start, end, source_side, boxes, cfg.lead_length, clearance)
    if target_side is source_side.opposite:
        nx, ny = source_side.normal
        forward_gap = (end.x - start.x) * nx + (end.y - start.y) * ny
        if forward_gap < cfg.min_segment and cfg.max_bends >= 4:
            return _reverse_s_points(start, end, source_side, boxes, cfg, clearance)
    return None


def _dogleg_same_axis(
    start: Point, end: Point, exit_dir: int, cfg: PathConfig,
) -> list[Point]:
    """Two-bend jog for horizontal exit + horizontal entry (transpose for vertical)."""
    if abs(start.y - end.y) < 0.5:
        return [start, end]
    span = abs(end.x - start.x)
    if span >= cfg.lead_length * 2:
        jog = (start.x + end.x) / 2
    else:
        jog = start.x + exit_dir * span * cfg.close_span_ratio
    return [start, Point(jog, start.y), Point(jog, end.y), end]


def _lead_connector(
    start: Point,
    end: Point,
    exit_dir: int,
    entry_dir: int,
    cfg: PathConfig,
) -> list[Point]:
    """Horizontal exit, vertical entry: lead, connector, pre-end approach.

    Collapses to a single-corner L when both legs have room for a full lead.
    """
    span = abs(end.x - start.x) + abs(end.y - start.y)
    lead = cfg.effective_lead(span)
    forward_x = (end.x - start.x) * exit_dir
    forward_y = (end.y - start.y) * entry_dir

    if forward_x >= lead and forward_y >= lead:
        return [start, Point(end.x, start.y), end]

    approach_y = end.y - entry_dir * lead
    if forward_x >= lead * 2:
        mid_x = (start.x + end.x) / 2
    else:
        mid_x = start.x + exit_dir * lead
    return [
        start,
        Point(mid_x, start.y),
        Point(mid_x, approach_y),
        Point(end.x, approach_y),
        end,
    ]


def _l_shape(start: Point, end: Point, horizontal_first: bool) -> list[Point]:
    corner = Point(end.x, start.y) if horizontal_first else Point(start.x, end.y)
    return [start, corner, end]


def _dogleg_escalation(
    start: Point,
    end: Point,
    offset: float,
    horizontal_first: bool,
    target_orientation: Optional[Orientation],
    entry_dir: tuple[int, int],
    lead: float,
) -> list[Point]:
    """Push the route outward along the dominant axis by *offset*."""
    dir_x = _sign(end.x - start.x) or 1
    dir_y = _sign(end.y - start.y) or 1
    if horizontal_first:
        px = start.x + dir_x * offset
        if target_orientation is Orientation.VERTICAL:
            ay = end.y - (entry_dir[1] or dir_y) * lead
            return [start, Point(px, start.y), Point(px, ay), Point(end.x, ay), end]
        return [start, Point(px, start.y), Point(px, end.y), end]
    py = start.y + dir_y * offset
    if target_orientation is Orientation.HORIZONTAL:
        ax = end.x - (entry_dir[0] or dir_x) * lead
        return [start, Point(start.x, py), Point(ax, py), Point(ax, end.y), end]
    return [start, Point(start.x, py), Point(end.x, py), end]


def _exit_vector(
    side: Optional[Side], orientation: Optional[Orientation], dx: float, dy: float,
) -> tuple[int, int]:
    if side is not None:
        return side.normal
    if orientation is Orientation.HORIZONTAL:
        return (_sign(dx) or 1, 0)
    if orientation is Orientation.VERTICAL:
        return (0, _sign(dy) or 1)
    return (0, 0)


def _entry_vector(
    side: Optional[Side], orientation: Optional[Orientation], dx: float, dy: float,
) -> tuple[int, int]:
    if side is not None:
        nx, ny = side.normal
        return (-nx, -ny)
    return _exit_vector(None, orientation, dx, dy)


def _base_candidate(
    start: Point,
    end: Point,
    source_orientation: Optional[Orientation],
    target_orientation: Optional[Orientation],
    exit_vec: tuple[int, int],
    entry_vec: tuple[int, int],
    cfg: PathConfig,
) -> list[Point]:
    dx = end.x - start.x
    dy = end.y - start.y

    if source_orientation is not None and source_orientation is target_orientation:
        if source_orientation is Orientation.HORIZONTAL:
            return _dogleg_same_axis(start, end, exit_vec[0] or _sign(dx) or 1, cfg)
        flipped = _dogleg_same_axis(
            _transpose(start), _transpose(end), exit_vec[1] or _sign(dy) or 1, cfg,
        )
        return [_transpose(p) for p in flipped]

    if source_orientation is not None and target_orientation is not None:
        if source_orientation is Orientation.HORIZONTAL:
            return _lead_connector(start, end, exit_vec[0], entry_vec[1], cfg)
        flipped = _lead_connector(
            _transpose(start), _transpose(end), exit_vec[1], entry_vec[0], cfg,
        )
        return [_transpose(p) for p in flipped]

    if source_orientation is not None:
        horizontal_first = source_orientation is Orientation.HORIZONTAL
    elif target_orientation is not None:
        horizontal_first = target_orientation is Orientation.VERTICAL
    else:
        horizontal_first = abs(dx) >= abs(dy)
    return _l_shape(start, end, horizontal_first)


# ---------------------------------------------------------------------------
# Orthogonal router
# ---------------------------------------------------------------------------

def orthogonal_path(
    start: Point,
    end: Point,
    config: Optional[PathConfig] = None,
    *,
    source_side: Optional[Side] = None,
    target_side: Optional[Side] = None,
    source_orientation: Optional[Orientation] = None,
    target_orientation: Optional[Orientation] = None,
    source_box: Optional[Box] = None,
    target_box: Optional[Box] = None,
    obstacles: Iterable[Box] = (),
    u_turn_clearance: Optional[float] = None,
) -> ConnectionPath:
    """Manhattan route with rounded corners from *start* to *end*.

    Exit / entry orientation comes from the explicit overrides, else from the
    given sides, else from which edge of the given boxes the anchors lie on.
    The result never has more than ``config.max_bends`` bends.
    """
    _require(start, "start")
    _require(end, "end")
    cfg = config or PathConfig()
    if not validate_path_inputs(start, end):
        return _fallback(start, end)

    if source_box is not None and source_side is None:
        start = project_point_to_box_side(start, source_box, end, cfg.corner_radius)
    if target_box is not None and target_side is None:
        end = project_point_to_box_side(end, target_box, start, cfg.corner_radius)

    if source_side is None and source_box is not None:
        source_side = source_box.side_of(start)
    if target_side is None and target_box is not None:
        target_side = target_box.side_of(end)
    s_orient = source_orientation or (source_side.orientation if source_side else None)
    t_orient = target_orientation or (target_side.orientation if target_side else None)

    def finish(points: list[Point]) -> ConnectionPath:
        pts = _simplify(points)
        if len(pts) - 2 > cfg.max_bends:
            if cfg.max_bends >= 1:
                pts = _simplify(_l_shape(start, end, abs(end.x - start.x) >= abs(end.y - start.y)))
            else:
                pts = [start, end]
        return round_corners(pts, cfg.corner_radius, cfg.min_segment)

    boxes = [b for b in (source_box, target_box) if b is not None]
    clearance = cfg.u_turn_clearance if u_turn_clearance is None else u_turn_clearance
    u_route = _u_turn_candidate(start, end, source_side, target_side, boxes, cfg, clearance)
    if u_route is not None and _bends(u_route) <= cfg.max_bends:
        return finish(u_route)

    dx = end.x - start.x
    dy = end.y - start.y
    if dx == 0 or dy == 0:
        return straight_path(start, end)

    exit_vec = _exit_vector(source_side, s_orient, dx, dy)
    entry_vec = _entry_vector(target_side, t_orient, dx, dy)
    rects = [o.inflate(cfg.clearance) for o in obstacles]

    base = _base_candidate(start, end, s_orient, t_orient, exit_vec, entry_vec, cfg)
    hits = count_intersections(_simplify(base), rects, target_box)
    if hits == 0:
        return finish(base)

    # Escalation: bounded number of attempts, best-effort result
    candidates: list[tuple[int, list[Point]]] = [(hits, base)]
    horizontal_first = abs(dx) >= abs(dy)
    lead = cfg.effective_lead(abs(dx) + abs(dy))
    offsets = [cfg.dogleg_offset]
    if cfg.max_bends > 3:
        offsets.append(cfg.dogleg_offset * cfg.dogleg_escalation)
    for offset in offsets:
        points = _dogleg_escalation(
            start, end, offset, horizontal_first, t_orient, entry_vec, lead,
        )
        if _bends(points) > cfg.max_bends:
            continue
        hits = count_intersections(_simplify(points), rects, target_box)
        if hits == 0:
            return finish(points)
        candidates.append((hits, points))

    best_hits, best = min(candidates, key=lambda c: c[0])
    logger.debug("No collision-free route found, using candidate with %d hit(s)", best_hits)
    return finish(best)

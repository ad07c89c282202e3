"""
Core value types for the connection routing engine.

Provides the node / port / connection snapshots the engine consumes, and the
structured path representation it produces.  A path is a list of tagged
segments (move, line, quadratic, cubic); the SVG path string is only one
serialization of it.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union


SIDE_PORT_PREFIX = "__side-"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class RenderMode(Enum):
    """Rendering mode: free-form curves or schematic orthogonal routing."""
    WORKFLOW = "workflow"
    ARCHITECTURE = "architecture"


class NodeVariant(Enum):
    """Size preset applied to free-form node dimensions."""
    STANDARD = "standard"
    COMPACT = "compact"


class NodeShape(Enum):
    RECTANGLE = "rectangle"
    SQUARE = "square"
    CIRCLE = "circle"
    DIAMOND = "diamond"


class PortRole(Enum):
    INPUT = "input"
    OUTPUT = "output"
    BOTTOM = "bottom"
    SIDE = "side"

    @property
    def group_name(self) -> str:
        """Bucket label used when bundling connections by role."""
        return f"{self.value}-port-group"


class Orientation(Enum):
    """Axis a path leaves (or enters) an anchor along."""
    HORIZONTAL = "horizontal"
    VERTICAL = "vertical"


class Side(Enum):
    """One edge of a node's bounding box."""
    TOP = "top"
    RIGHT = "right"
    BOTTOM = "bottom"
    LEFT = "left"

    @property
    def port_id(self) -> str:
        return SIDE_PORT_PREFIX + self.value

    @property
    def orientation(self) -> Orientation:
        if self in (Side.LEFT, Side.RIGHT):
            return Orientation.HORIZONTAL
        return Orientation.VERTICAL

    @property
    def normal(self) -> tuple[int, int]:
        """Unit vector pointing away from the box through this side."""
        return {
            Side.TOP: (0, -1),
            Side.RIGHT: (1, 0),
            Side.BOTTOM: (0, 1),
            Side.LEFT: (-1, 0),
        }[self]

    @property
    def opposite(self) -> "Side":
        return {
            Side.TOP: Side.BOTTOM,
            Side.BOTTOM: Side.TOP,
            Side.LEFT: Side.RIGHT,
            Side.RIGHT: Side.LEFT,
        }[self]

    @classmethod
    def from_port_id(cls, port_id: str) -> Optional["Side"]:
        """Return the side named by a reserved ``__side-*`` port id, else None."""
        if not port_id or not port_id.startswith(SIDE_PORT_PREFIX):
            return None
        suffix = port_id[len(SIDE_PORT_PREFIX):]
        for side in cls:
            if side.value == suffix:
                return side
        return None


class ConnectionFlow(Enum):
    """Geometric approach of a free-form connection."""
    HORIZONTAL = "horizontal"
    BOTTOM_TO_INPUT = "bottom-to-input"


class PathOp(Enum):
    MOVE = "M"
    LINE = "L"
    QUADRATIC = "Q"
    CUBIC = "C"


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Point:
    """A 2-D coordinate."""
    x: float
    y: float

    def distance_to(self, other: "Point") -> float:
        return math.hypot(other.x - self.x, other.y - self.y)

    def offset(self, dx: float, dy: float) -> "Point":
        return Point(self.x + dx, self.y + dy)

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y}


@dataclass(frozen=True)
class Box:
    """Axis-aligned bounding box (top-left origin)."""
    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_center(cls, cx: float, cy: float, width: float, height: float) -> "Box":
        return cls(cx - width / 2, cy - height / 2, width, height)

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def cx(self) -> float:
        return self.x + self.width / 2

    @property
    def cy(self) -> float:
        return self.y + self.height / 2

    @property
    def center(self) -> Point:
        return Point(self.cx, self.cy)

    def inflate(self, pad: float) -> "Box":
        return Box(self.x - pad, self.y - pad, self.width + 2 * pad, self.height + 2 * pad)

    def intersects(self, other: "Box", margin: float = 0) -> bool:
        """Check if two bounding boxes overlap (with optional margin)."""
        return not (
            self.right + margin <= other.x
            or other.right + margin <= self.x
            or self.bottom + margin <= other.y
            or other.bottom + margin <= self.y
        )

    def contains_point(self, px: float, py: float, margin: float = 0) -> bool:
        """Check if a point is inside this bounding box (with margin)."""
        return (
            self.x - margin <= px <= self.right + margin
            and self.y - margin <= py <= self.bottom + margin
        )

    def edge_midpoint(self, side: Side) -> Point:
        if side is Side.TOP:
            return Point(self.cx, self.y)
        if side is Side.RIGHT:
            return Point(self.right, self.cy)
        if side is Side.BOTTOM:
            return Point(self.cx, self.bottom)
        return Point(self.x, self.cy)

    def side_of(self, point: Point, eps: float = 0.5) -> Optional[Side]:
        """Return the edge *point* lies on (within eps), or None."""
        if abs(point.x - self.x) < eps:
            return Side.LEFT
        if abs(point.x - self.right) < eps:
            return Side.RIGHT
        if abs(point.y - self.y) < eps:
            return Side.TOP
        if abs(point.y - self.bottom) < eps:
            return Side.BOTTOM
        return None

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


def snap_to_grid(value: float, grid_size: int = 20) -> float:
    """Snap a coordinate to the nearest grid point."""
    return round(value / grid_size) * grid_size


def is_finite_point(point: Optional[Point]) -> bool:
    return point is not None and math.isfinite(point.x) and math.isfinite(point.y)


# ---------------------------------------------------------------------------
# Diagram snapshots
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Port:
    """A connection slot on a node; its ordinal is its index in the owning list."""
    id: str
    label: str = ""
    data_type: str = "any"


@dataclass
class Node:
    """Read-only snapshot of a diagram node, positioned by its centre."""
    id: str
    x: float
    y: float
    shape: NodeShape = NodeShape.RECTANGLE
    inputs: list[Port] = field(default_factory=list)
    outputs: list[Port] = field(default_factory=list)
    bottom_ports: list[Port] = field(default_factory=list)
    # Base size overrides for free-form mode (None = derive from port count)
    width: Optional[float] = None
    height: Optional[float] = None
    label: str = ""

    @property
    def center(self) -> Point:
        return Point(self.x, self.y)

    def moved_to(self, x: float, y: float) -> "Node":
        """Copy of this node at another centre position."""
        return Node(
            id=self.id, x=x, y=y, shape=self.shape,
            inputs=self.inputs, outputs=self.outputs,
            bottom_ports=self.bottom_ports,
            width=self.width, height=self.height, label=self.label,
        )


@dataclass(frozen=True)
class Connection:
    id: str
    source_node_id: str
    source_port_id: str
    target_node_id: str
    target_port_id: str


@dataclass(frozen=True)
class SlotPort:
    """Reference to an ordinary input / output / bottom port by ordinal."""
    role: PortRole
    ordinal: int
    count: int

    kind = "slot"


@dataclass(frozen=True)
class SidePort:
    """Reference to a virtual anchor at the middle of a bounding-box edge."""
    side: Side

    kind = "side"


PortRef = Union[SlotPort, SidePort]


# ---------------------------------------------------------------------------
# Path representation
# ---------------------------------------------------------------------------

def _fmt(value: float) -> str:
    text = f"{value:.3f}".rstrip("0").rstrip(".")
    return "0" if text in ("-0", "") else text


@dataclass(frozen=True)
class PathSegment:
    """One drawing command; the last point of each op is the new pen position."""
    op: PathOp
    points: tuple[Point, ...]

    def to_svg(self) -> str:
        coords = " ".join(f"{_fmt(p.x)} {_fmt(p.y)}" for p in self.points)
        return f"{self.op.value} {coords}"

    def to_dict(self) -> dict:
        return {"op": self.op.value, "points": [[p.x, p.y] for p in self.points]}


@dataclass
class ConnectionPath:
    """Ordered drawing commands for one connection.

    ``waypoints`` keeps the un-rounded polyline for orthogonal routes so the
    bend count and label positions can be derived without re-parsing curves.
    """
    segments: list[PathSegment] = field(default_factory=list)
    waypoints: list[Point] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.segments

    @property
    def start(self) -> Optional[Point]:
        return self.segments[0].points[-1] if self.segments else None

    @property
    def end(self) -> Optional[Point]:
        return self.segments[-1].points[-1] if self.segments else None

    @property
    def bend_count(self) -> int:
        if self.waypoints:
            return max(0, len(self.waypoints) - 2)
        return sum(1 for s in self.segments if s.op is PathOp.QUADRATIC)

    def points(self) -> list[Point]:
        """Every point referenced by the path, control points included."""
        return [p for seg in self.segments for p in seg.points]

    def polyline(self) -> list[Point]:
        if self.waypoints:
            return list(self.waypoints)
        return [seg.points[-1] for seg in self.segments]

    def length(self) -> float:
        line = self.polyline()
        return sum(a.distance_to(b) for a, b in zip(line, line[1:]))

    def midpoint(self) -> Optional[Point]:
        """Point halfway along the polyline (used for bundle count labels)."""
        line = self.polyline()
        if not line:
            return None
        half = self.length() / 2
        walked = 0.0
        for a, b in zip(line, line[1:]):
            step = a.distance_to(b)
            if step > 0 and walked + step >= half:
                t = (half - walked) / step
                return Point(a.x + (b.x - a.x) * t, a.y + (b.y - a.y) * t)
            walked += step
        return line[0]

    def to_svg(self) -> str:
        return " ".join(seg.to_svg() for seg in self.segments)

    def to_dict(self) -> dict:
        return {
            "d": self.to_svg(),
            "segments": [seg.to_dict() for seg in self.segments],
            "bends": self.bend_count,
        }

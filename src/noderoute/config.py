"""
Tunable constants for the routing engine.

Every magic number the routing "feel" depends on lives here as a named field
so it can be tuned and tested independently of the algorithms.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from typing import Any


# ---------------------------------------------------------------------------
# Node geometry
# ---------------------------------------------------------------------------

NODE_WIDTH = 200
NODE_MIN_HEIGHT = 80
PORT_ROW_HEIGHT = 30
PORT_ROW_PADDING = 60
ARCHITECTURE_NODE_SIZE = 64
COMPACT_SCALE = 0.8


# ---------------------------------------------------------------------------
# Path configuration
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PathConfig:
    """Configuration for path synthesis, preview snapping and bundling."""
    # Smooth curves
    arrow_offset: float = 7            # Curve stops this far short of the target
    control_offset_min: float = 60     # Minimum control-point distance
    smoothing_factor: float = 2.5      # Curve tension (|delta| / factor)
    bottom_control_min: float = 40     # Min horizontal pull into an input from a bottom port
    vertical_nudge: float = 0.1        # Share of dy applied to horizontal control points

    # Orthogonal routing
    corner_radius: float = 16
    min_segment: float = 12            # Segments under min_segment / 4 get sharp corners
    lead_length: float = 50            # Straight run out of / into an anchor
    close_span_ratio: float = 0.25     # Lead shrink factor for close nodes
    clearance: float = 10              # Padding around explicit obstacles
    max_bends: int = 4
    dogleg_offset_min: float = 40
    dogleg_radius_factor: float = 3
    dogleg_escalation: float = 1.6
    u_turn_clearance: float = 16       # Gap below/beside both boxes for committed U routes
    preview_u_turn_clearance: float = 50

    # Preview / snapping
    arrow_marker_size: float = 10
    snap_radius: float = 50
    grid_size: int = 20

    # Parallel connections
    parallel_spacing: float = 15

    def __post_init__(self) -> None:
        if self.smoothing_factor <= 0:
            raise ValueError(
                f"smoothing_factor must be > 0, got {self.smoothing_factor}"
            )

    @property
    def dogleg_offset(self) -> float:
        return max(self.dogleg_offset_min, self.corner_radius * self.dogleg_radius_factor)

    @property
    def bottom_snap_threshold(self) -> float:
        return self.lead_length * 2

    def effective_lead(self, span: float) -> float:
        """Lead length, shrunk for nodes closer than twice the lead."""
        if span < self.lead_length * 2:
            return span * self.close_span_ratio
        return self.lead_length

    def with_overrides(self, **overrides: Any) -> "PathConfig":
        return replace(self, **overrides)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "PathConfig":
        """Build a config from a partial mapping; unknown keys raise ValueError."""
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown path config keys: {', '.join(unknown)}")
        return cls(**data)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Cache configuration
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CacheConfig:
    """Growth limits for the path cache."""
    max_size: int = 1000             # Above this, probabilistic pruning starts
    hard_limit: int = 1200           # Above this, oldest entries are dropped
    min_sample_rate: float = 0.02
    max_sample_rate: float = 0.10
    soft_target_ratio: float = 0.95
    enabled: bool = True


PRESETS: dict[str, CacheConfig] = {
    "standard": CacheConfig(max_size=500, hard_limit=600),
    "high_performance": CacheConfig(max_size=200, hard_limit=240),
    "mobile": CacheConfig(max_size=100, hard_limit=120),
    "demo": CacheConfig(max_size=2000, hard_limit=2400),
    "architecture": CacheConfig(max_size=1000, hard_limit=1200),
}

HIGH_DENSITY_NODE_COUNT = 100
HIGH_DENSITY_CONNECTION_COUNT = 500
BUSY_ARCHITECTURE_CONNECTION_COUNT = 100


def optimal_cache_config(
    node_count: int,
    connection_count: int,
    mobile: bool = False,
    architecture: bool = False,
) -> CacheConfig:
    """Pick a cache preset for the size and kind of diagram being edited."""
    if mobile:
        return PRESETS["mobile"]
    if node_count > HIGH_DENSITY_NODE_COUNT or connection_count > HIGH_DENSITY_CONNECTION_COUNT:
        return PRESETS["high_performance"]
    if architecture and connection_count > BUSY_ARCHITECTURE_CONNECTION_COUNT:
        return PRESETS["architecture"]
    return PRESETS["standard"]

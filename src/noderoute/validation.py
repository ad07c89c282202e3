"""
Input validation for the routing engine and its MCP tool parameters.

Two layers:

- Tool-boundary validators that raise ``ValidationError`` with a clear
  message for malformed payloads received from LLM / client callers.
- Advisory checks (``validate_connection_parameters``, ``can_connect``,
  ``validate_connection_integrity``) that report problems without raising;
  the routing engine itself never rejects representable input.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields
from typing import Any, Iterable, Optional

from noderoute.anchors import port_exists, port_role
from noderoute.config import PathConfig
from noderoute.models import Connection, Node, NodeShape, NodeVariant, Port, PortRole, RenderMode, Side


# ---------------------------------------------------------------------------
# Validation result
# ---------------------------------------------------------------------------

class ValidationError(Exception):
    """Raised when input validation fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


# ---------------------------------------------------------------------------
# Primitive validators
# ---------------------------------------------------------------------------

def validate_non_empty_string(value: Any, field_name: str) -> str:
    """Ensure *value* is a non-empty string after stripping whitespace."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"'{field_name}' must be a non-empty string.")
    return value.strip()


def validate_string(value: Any, field_name: str, *, allow_empty: bool = True) -> str:
    """Ensure *value* is a string (optionally non-empty)."""
    if not isinstance(value, str):
        raise ValidationError(f"'{field_name}' must be a string, got {type(value).__name__}.")
    if not allow_empty and not value.strip():
        raise ValidationError(f"'{field_name}' must not be empty.")
    return value


def validate_number(
    value: Any,
    field_name: str,
    *,
    min_val: float | None = None,
    max_val: float | None = None,
) -> float:
    """Validate a finite numeric value and optional range."""
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        raise ValidationError(
            f"'{field_name}' must be a number, got {type(value).__name__}."
        )
    val = float(value)
    if not math.isfinite(val):
        raise ValidationError(f"'{field_name}' must be finite, got {val}.")
    if min_val is not None and val < min_val:
        raise ValidationError(
            f"'{field_name}' must be >= {min_val}, got {val}."
        )
    if max_val is not None and val > max_val:
        raise ValidationError(
            f"'{field_name}' must be <= {max_val}, got {val}."
        )
    return val


def validate_int(
    value: Any,
    field_name: str,
    *,
    min_val: int | None = None,
    max_val: int | None = None,
) -> int:
    """Validate an integer value and optional range."""
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(
            f"'{field_name}' must be an integer, got {type(value).__name__}."
        )
    if min_val is not None and value < min_val:
        raise ValidationError(
            f"'{field_name}' must be >= {min_val}, got {value}."
        )
    if max_val is not None and value > max_val:
        raise ValidationError(
            f"'{field_name}' must be <= {max_val}, got {value}."
        )
    return value


def validate_bool(value: Any, field_name: str) -> bool:
    """Ensure *value* is a boolean."""
    if not isinstance(value, bool):
        raise ValidationError(
            f"'{field_name}' must be a boolean, got {type(value).__name__}."
        )
    return value


def validate_enum(value: Any, field_name: str, allowed: set[str]) -> str:
    """Validate that a string value is one of the allowed choices (case-insensitive)."""
    if not isinstance(value, str):
        raise ValidationError(
            f"'{field_name}' must be a string, got {type(value).__name__}."
        )
    normalized = value.strip().upper()
    if normalized not in {a.upper() for a in allowed}:
        choices = ", ".join(sorted(allowed))
        raise ValidationError(
            f"'{field_name}' must be one of [{choices}], got '{value}'."
        )
    return normalized


def validate_list(value: Any, field_name: str, *, min_length: int = 0) -> list:
    """Ensure *value* is a list with at least *min_length* items."""
    if not isinstance(value, list):
        raise ValidationError(
            f"'{field_name}' must be a list, got {type(value).__name__}."
        )
    if len(value) < min_length:
        raise ValidationError(
            f"'{field_name}' must have at least {min_length} item(s), got {len(value)}."
        )
    return value


def validate_dict(value: Any, field_name: str) -> dict:
    """Ensure *value* is a dict."""
    if not isinstance(value, dict):
        raise ValidationError(
            f"'{field_name}' must be a dict/object, got {type(value).__name__}."
        )
    return value


# ---------------------------------------------------------------------------
# Composite / domain validators
# ---------------------------------------------------------------------------

_DIAGRAM_ACTIONS = {"CREATE", "UPDATE", "DRAG", "DROP", "DELETE", "LIST"}
_ROUTE_ACTIONS = {"PATH", "ALL", "BUNDLES", "PREVIEW"}
_INSPECT_ACTIONS = {"ANCHORS", "GROUPS", "GROUP_INFO", "VALIDATE", "STATS"}

_MODES = {m.value for m in RenderMode}
_VARIANTS = {v.value for v in NodeVariant}
_SHAPES = {s.value for s in NodeShape}


def validate_action(value: Any, tool_name: str, allowed: set[str]) -> str:
    """Validate the action parameter for a tool."""
    if not isinstance(value, str) or not value.strip():
        choices = ", ".join(sorted(a.lower() for a in allowed))
        raise ValidationError(
            f"'{tool_name}' requires an 'action' parameter. Valid actions: {choices}."
        )
    normalized = value.strip().upper()
    if normalized not in allowed:
        choices = ", ".join(sorted(a.lower() for a in allowed))
        raise ValidationError(
            f"Unknown {tool_name} action '{value}'. Valid actions: {choices}."
        )
    return value.strip().lower()


def validate_mode(value: Any) -> RenderMode:
    """Validate a rendering mode name (workflow / architecture)."""
    return RenderMode(validate_enum(value, "mode", _MODES).lower())


def validate_variant(value: Any) -> NodeVariant:
    """Validate a node size variant name (standard / compact)."""
    return NodeVariant(validate_enum(value, "variant", _VARIANTS).lower())


def validate_point_dict(value: Any, field_name: str) -> tuple[float, float]:
    """Validate an ``{"x": .., "y": ..}`` mapping and return the pair."""
    validate_dict(value, field_name)
    if "x" not in value or "y" not in value:
        raise ValidationError(f"'{field_name}' must have 'x' and 'y' keys.")
    return (
        validate_number(value["x"], f"{field_name}.x"),
        validate_number(value["y"], f"{field_name}.y"),
    )


def _validate_port_list(value: Any, field_name: str) -> list[Port]:
    ports: list[Port] = []
    seen: set[str] = set()
    for i, item in enumerate(validate_list(value, field_name)):
        if isinstance(item, str):
            item = {"id": item}
        if not isinstance(item, dict):
            raise ValidationError(f"'{field_name}[{i}]' must be a port id string or a dict/object.")
        port_id = validate_non_empty_string(item.get("id"), f"{field_name}[{i}].id")
        if Side.from_port_id(port_id) is not None:
            raise ValidationError(f"'{field_name}[{i}].id' '{port_id}' is a reserved side anchor id.")
        if port_id in seen:
            raise ValidationError(f"'{field_name}' contains duplicate port id '{port_id}'.")
        seen.add(port_id)
        ports.append(Port(
            id=port_id,
            label=validate_string(item.get("label", ""), f"{field_name}[{i}].label"),
            data_type=validate_non_empty_string(item.get("data_type", "any"), f"{field_name}[{i}].data_type"),
        ))
    return ports


def validate_node_dict(n: Any, index: int) -> Node:
    """Validate a single node dict from the nodes list and build the snapshot."""
    if not isinstance(n, dict):
        raise ValidationError(f"Node at index {index} must be a dict/object.")
    if "id" not in n:
        raise ValidationError(f"Node at index {index} missing required key 'id'.")
    if not isinstance(n["id"], str) or not n["id"].strip():
        raise ValidationError(f"Node at index {index}: 'id' must be a non-empty string.")
    if "x" not in n:
        raise ValidationError(f"Node at index {index} missing required key 'x'.")
    if "y" not in n:
        raise ValidationError(f"Node at index {index} missing required key 'y'.")
    x = validate_number(n["x"], f"nodes[{index}].x")
    y = validate_number(n["y"], f"nodes[{index}].y")

    shape = NodeShape.RECTANGLE
    if "shape" in n:
        shape = NodeShape(validate_enum(n["shape"], f"nodes[{index}].shape", _SHAPES).lower())

    width = height = None
    if "width" in n:
        width = validate_number(n["width"], f"nodes[{index}].width", min_val=1)
    if "height" in n:
        height = validate_number(n["height"], f"nodes[{index}].height", min_val=1)
    if "label" in n and not isinstance(n["label"], str):
        raise ValidationError(f"Node at index {index}: 'label' must be a string.")

    inputs = _validate_port_list(n.get("inputs", []), f"nodes[{index}].inputs")
    outputs = _validate_port_list(n.get("outputs", []), f"nodes[{index}].outputs")
    bottom = _validate_port_list(n.get("bottom_ports", []), f"nodes[{index}].bottom_ports")
    all_ids = [p.id for p in inputs + outputs + bottom]
    if len(all_ids) != len(set(all_ids)):
        raise ValidationError(f"Node at index {index}: port ids must be unique across all port lists.")

    return Node(
        id=n["id"].strip(), x=x, y=y, shape=shape,
        inputs=inputs, outputs=outputs, bottom_ports=bottom,
        width=width, height=height, label=n.get("label", ""),
    )


def validate_nodes(value: Any) -> list[Node]:
    nodes = [validate_node_dict(n, i) for i, n in enumerate(validate_list(value, "nodes"))]
    seen: set[str] = set()
    for node in nodes:
        if node.id in seen:
            raise ValidationError(f"Duplicate node id '{node.id}'.")
        seen.add(node.id)
    return nodes


def validate_connection_dict(c: Any, index: int) -> Connection:
    """Validate a single connection dict and build the snapshot."""
    if not isinstance(c, dict):
        raise ValidationError(f"Connection at index {index} must be a dict/object.")
    for key in ("id", "source_node_id", "source_port_id", "target_node_id", "target_port_id"):
        if key not in c:
            raise ValidationError(f"Connection at index {index} missing required key '{key}'.")
        if not isinstance(c[key], str) or not c[key].strip():
            raise ValidationError(f"Connection at index {index}: '{key}' must be a non-empty string.")
    return Connection(
        id=c["id"].strip(),
        source_node_id=c["source_node_id"].strip(),
        source_port_id=c["source_port_id"].strip(),
        target_node_id=c["target_node_id"].strip(),
        target_port_id=c["target_port_id"].strip(),
    )


def validate_connections(value: Any) -> list[Connection]:
    return [
        validate_connection_dict(c, i)
        for i, c in enumerate(validate_list(value, "connections"))
    ]


def validate_config_dict(value: Any) -> PathConfig:
    """Validate a partial PathConfig mapping (numbers only, known keys only)."""
    if value is None:
        return PathConfig()
    validate_dict(value, "config")
    unknown = sorted(set(value) - {f.name for f in fields(PathConfig)})
    if unknown:
        raise ValidationError(f"Unknown path config keys: {', '.join(unknown)}")
    for key, val in value.items():
        if key == "max_bends" or key == "grid_size":
            validate_int(val, f"config.{key}", min_val=0 if key == "max_bends" else 1)
        else:
            num = validate_number(val, f"config.{key}", min_val=0)
            if key == "smoothing_factor" and num <= 0:
                raise ValidationError(f"'config.{key}' must be > 0, got {num}.")
    try:
        return PathConfig.from_dict(value)
    except ValueError as e:
        raise ValidationError(str(e)) from e


# ---------------------------------------------------------------------------
# Advisory checks
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ConnectionCheck:
    valid: bool
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {"valid": self.valid, "reason": self.reason}


def validate_connection_parameters(
    source_node: Optional[Node],
    source_port_id: Optional[str],
    target_node: Optional[Node],
    target_port_id: Optional[str],
) -> ConnectionCheck:
    """Check that both nodes and both ports exist before trusting a path."""
    if source_node is None or target_node is None:
        return ConnectionCheck(False, "Missing source or target node")
    if not source_port_id or not target_port_id:
        return ConnectionCheck(False, "Missing port IDs")
    if not port_exists(source_node, source_port_id):
        return ConnectionCheck(False, f"Source port {source_port_id} not found")
    if not port_exists(target_node, target_port_id):
        return ConnectionCheck(False, f"Target port {target_port_id} not found")
    if source_node.id == target_node.id:
        return ConnectionCheck(False, "Self-connection")
    return ConnectionCheck(True)


def _find_port(node: Node, port_id: str) -> Optional[Port]:
    for port in node.inputs + node.outputs + node.bottom_ports:
        if port.id == port_id:
            return port
    return None


def can_connect(
    source_node: Node,
    source_port_id: str,
    target_node: Node,
    target_port_id: str,
) -> bool:
    """Whether the user may draw this connection.

    Sources must be output, bottom or side anchors; targets must be input or
    side anchors.  Typed ports only connect to the same type or 'any'.
    """
    if source_node.id == target_node.id:
        return False
    if port_role(source_node, source_port_id) not in (PortRole.OUTPUT, PortRole.BOTTOM, PortRole.SIDE):
        return False
    if port_role(target_node, target_port_id) not in (PortRole.INPUT, PortRole.SIDE):
        return False

    source_port = _find_port(source_node, source_port_id)
    target_port = _find_port(target_node, target_port_id)
    if source_port is None or target_port is None:
        return True
    if source_port.data_type != "any" and target_port.data_type != "any":
        return source_port.data_type == target_port.data_type
    return True


@dataclass
class IntegrityReport:
    valid: bool = True
    duplicate_ids: list[str] = field(default_factory=list)
    invalid_connections: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "duplicate_ids": self.duplicate_ids,
            "invalid_connections": self.invalid_connections,
            "warnings": self.warnings,
        }


def validate_connection_integrity(connections: Iterable[Connection]) -> IntegrityReport:
    """Duplicate ids, missing endpoints, missing ports and self-connections."""
    report = IntegrityReport()
    seen: set[str] = set()
    for conn in connections:
        if conn.id in seen:
            report.duplicate_ids.append(conn.id)
        else:
            seen.add(conn.id)
        if not conn.source_node_id or not conn.target_node_id:
            report.invalid_connections.append(conn.id)
        if not conn.source_port_id or not conn.target_port_id:
            report.warnings.append(f"Connection {conn.id} missing port IDs")
        if conn.source_node_id == conn.target_node_id:
            report.warnings.append(f"Connection {conn.id} is a self-connection")
    report.valid = not report.duplicate_ids and not report.invalid_connections
    return report

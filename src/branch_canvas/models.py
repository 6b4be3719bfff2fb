"""
Data models for Branch-Canvas — the conversation tree on an infinite canvas.

A conversation is a flat collection of nodes.  Each node points at most one
parent through ``parent_id``; following those pointers always ends at a
root, so the collection forms a forest:

    root (user)
    ├── reply (assistant)
    │   ├── follow-up (user)      ← branch A
    │   └── follow-up (user)      ← branch B
    └── thought (assistant)       ← annotation, not laid out

Positions live in ``metadata`` and are expressed in **grid units**.  Screen
pixels are grid units multiplied by ``EngineConfig.grid_step``.

This module also defines the **node type system**:

    text    — an ordinary message
    code    — a message rendered as code
    thought — an annotation attached to its parent; it never receives a
              computed position and does not take part in layout
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

logger = logging.getLogger(__name__)


class BasicNodeTypes(str, Enum):
    TEXT = "text"
    CODE = "code"
    THOUGHT = "thought"


ANNOTATION_TYPE = BasicNodeTypes.THOUGHT.value

Role = Literal["user", "assistant", "system"]
NodeStatus = Literal["streaming", "done", "error"]


# ---------------------------------------------------------------------------
# Engine configuration
# ---------------------------------------------------------------------------

# Fields that must never go negative; a negative gap or size only produces
# overlapping boxes.
_NON_NEGATIVE_FIELDS = (
    "node_width",
    "node_height_default",
    "layout_gap_x",
    "layout_gap_y",
    "height_change_threshold",
)


class EngineConfig(BaseModel):
    """Flat numeric configuration for the store and layout engine.

    Supplied once at construction and immutable afterwards.  Only the
    sizing fields matter for layout; the zoom and focus fields are carried
    for the viewport layer that shares the same record.

    Attributes:
        focus_duration_ms:     Duration of the focus animation.
        zoom_speed:            Wheel delta → scale factor.
        zoom_line_mode_boost:  Multiplier for line-mode wheel events.
        scale_min:             Lower zoom bound.
        scale_max:             Upper zoom bound.
        node_width:            Fixed box width in pixels.
        node_height_default:   Box height in pixels until a measured one arrives.
        stream_interval_ms:    Interval between streamed content chunks.
        root_node_offset_x:    Initial root placement offset (pixels).
        root_node_offset_y:    Initial root placement offset (pixels).
        layout_gap_x:          Horizontal gap between sibling subtrees (pixels).
        layout_gap_y:          Vertical gap between a parent and its child row (pixels).
        height_change_threshold: Height deltas below this are ignored (pixels).
        grid_step:             Pixels per grid unit.
    """
    model_config = ConfigDict(frozen=True)

    focus_duration_ms: float = 280
    zoom_speed: float = 0.004
    zoom_line_mode_boost: float = 20
    scale_min: float = 0.05
    scale_max: float = 8
    node_width: float = 350
    node_height_default: float = 100
    stream_interval_ms: float = 30
    root_node_offset_x: float = -175
    root_node_offset_y: float = -50
    layout_gap_x: float = 35
    layout_gap_y: float = 50
    height_change_threshold: float = 5
    grid_step: float = 20

    @model_validator(mode="before")
    @classmethod
    def _clamp(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for name in _NON_NEGATIVE_FIELDS:
            value = data.get(name)
            if isinstance(value, (int, float)) and value < 0:
                logger.warning(f"EngineConfig.{name}={value} is negative, clamping to 0")
                data[name] = 0
        step = data.get("grid_step")
        if isinstance(step, (int, float)) and step <= 0:
            logger.warning(f"EngineConfig.grid_step={step} is not positive, clamping to 1")
            data["grid_step"] = 1
        return data


DEFAULT_ENGINE_CONFIG = EngineConfig()


# ---------------------------------------------------------------------------
# Node
# ---------------------------------------------------------------------------

class NodeMetadata(BaseModel):
    """Placement and sizing data for a node.

    Attributes:
        x, y:            Top-left corner in grid units.
        height:          Last rendered height in pixels, if known.
        manual_position: Set when the position was chosen explicitly (drag,
                         explicit coordinates).  Automatic layout never
                         overwrites such a position.
        tags:            Free-form labels.
    """
    model_config = ConfigDict(extra="allow")

    x: float = 0.0
    y: float = 0.0
    height: Optional[float] = None
    manual_position: bool = False
    tags: list[str] = Field(default_factory=list)


class CanvasNode(BaseModel):
    """A single message or annotation on the canvas.

    The ``id`` is opaque and unique within a store.  ``parent_id`` is the
    only structural link; it is ``None`` for roots.  ``data`` carries any
    payload the embedding application wants to keep next to the node.
    """
    id: str
    parent_id: Optional[str] = None
    role: Role = "user"
    type: str = BasicNodeTypes.TEXT.value
    content: str = ""
    status: Optional[NodeStatus] = None
    error_message: Optional[str] = None
    created_at: float = 0.0
    metadata: NodeMetadata = Field(default_factory=NodeMetadata)
    data: Any = None

    @property
    def is_annotation(self) -> bool:
        """Annotation nodes are attached to their parent and skip layout."""
        return self.type == ANNOTATION_TYPE


class NodePayload(BaseModel):
    """One record of a bulk import.

    ``id`` may be omitted; the store assigns one.  ``parent_id`` must name a
    node in the same batch or one already in the store.  If ``metadata``
    carries ``x`` or ``y`` the node is imported with a manual position.
    """
    id: Optional[str] = None
    parent_id: Optional[str] = None
    content: str = ""
    role: Role = "user"
    type: str = BasicNodeTypes.TEXT.value
    status: Optional[NodeStatus] = None
    error_message: Optional[str] = None
    created_at: Optional[float] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    data: Any = None


# ---------------------------------------------------------------------------
# Merging
# ---------------------------------------------------------------------------

_MERGEABLE_FIELDS = (
    "parent_id",
    "role",
    "type",
    "content",
    "status",
    "error_message",
    "created_at",
    "data",
)


def merge_node(node: CanvasNode, updates: dict[str, Any]) -> list[str]:
    """Apply a partial update to ``node`` in place.

    Top-level fields are replaced, ``metadata`` is merged key by key and
    ``id`` is left untouched.  Unknown keys are ignored.  Returns the names
    of the fields that actually changed.
    """
    changed: list[str] = []
    for name in _MERGEABLE_FIELDS:
        if name in updates and getattr(node, name) != updates[name]:
            setattr(node, name, updates[name])
            changed.append(name)

    meta_updates = updates.get("metadata")
    if isinstance(meta_updates, NodeMetadata):
        meta_updates = meta_updates.model_dump(exclude_unset=True)
    if meta_updates:
        merged = node.metadata.model_dump()
        merged.update(meta_updates)
        new_meta = NodeMetadata(**merged)
        if new_meta != node.metadata:
            node.metadata = new_meta
            changed.append("metadata")
    return changed

"""
Tree layout for Branch-Canvas.

Every parent's non-annotation children are placed in a single row directly
below it.  The row is centered under the parent's horizontal center, and
each child is centered over the width its own subtree needs, so deeper
levels never overlap:

              ┌────────┐
              │ parent │
              └────────┘
      ┌────────┐      ┌────────┐
      │ child  │      │ child  │
      └────────┘      └────────┘
    ┌───┐  ┌───┐
    │ a │  │ b │
    └───┘  └───┘

The metrics are computed bottom-up and the placement top-down:

    subtree_width(n)  = node width                        (no children)
                      = Σ subtree_width(c) + gap_x·(k−1)  (k children)
    subtree_height(n) = own height                        (no children)
                      = own height + gap_y + max subtree_height(c)

Two operating modes share the placement rule:

  1. Incremental — ``layout_children`` recomputes metrics on every call by
     walking the standing parent→children index.  Meant for one move, one
     resize or one insert.
  2. Bulk — ``flush_layout`` builds a fresh parent→children map and memo
     tables for width and height once, then places every root's forest in
     a single pass.  Meant for imports and batched height changes.

A node with ``manual_position`` keeps its stored x/y, but still reserves its
subtree footprint in its parent's row, and its own children are still laid
out below it.  Annotation nodes (``thought``) are invisible to both modes.
All computed coordinates are rounded to whole grid units.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping, Optional, Sequence

from .models import CanvasNode, EngineConfig

logger = logging.getLogger(__name__)


@dataclass
class GridMetrics:
    """Layout constants converted from pixels to grid units."""
    node_width: float
    default_height: float
    gap_x: float
    gap_y: float
    step: float

    @classmethod
    def from_config(cls, config: EngineConfig) -> "GridMetrics":
        step = config.grid_step
        return cls(
            node_width=config.node_width / step,
            default_height=config.node_height_default,
            gap_x=config.layout_gap_x / step,
            gap_y=config.layout_gap_y / step,
            step=step,
        )

    def node_height(self, node: CanvasNode) -> float:
        """Rendered height of ``node`` in grid units."""
        height = node.metadata.height
        if height is None:
            height = self.default_height
        return height / self.step


@dataclass
class LayoutResult:
    """Memo tables produced by a bulk pass, keyed by node id (grid units)."""
    subtree_widths: dict[str, float] = field(default_factory=dict)
    subtree_heights: dict[str, float] = field(default_factory=dict)
    roots: list[str] = field(default_factory=list)


def round_grid(value: float) -> int:
    """Round half up, so a tie lands on the same side wherever it occurs."""
    return int(math.floor(value + 0.5))


def _layout_children_of(
    nodes: Mapping[str, CanvasNode],
    child_ids: Iterable[str],
) -> list[CanvasNode]:
    result = []
    for child_id in child_ids:
        child = nodes.get(child_id)
        if child is not None and not child.is_annotation:
            result.append(child)
    return result


def _bottom_up(root: str, children_of: Callable[[str], list[CanvasNode]]) -> list[str]:
    """Ids of the subtree under ``root`` with every child before its parent.

    Walks with an explicit stack; long linear conversations are deeper than
    the interpreter's recursion limit.
    """
    order = []
    seen = {root}
    stack = [root]
    while stack:
        node_id = stack.pop()
        order.append(node_id)
        for child in children_of(node_id):
            if child.id not in seen:
                seen.add(child.id)
                stack.append(child.id)
    order.reverse()
    return order


def _place_row(
    parent: CanvasNode,
    children: Sequence[CanvasNode],
    widths: Sequence[float],
    grid: GridMetrics,
) -> None:
    """Write positions for one row of children below ``parent``."""
    total_row_width = sum(widths) + grid.gap_x * (len(children) - 1)
    parent_center_x = parent.metadata.x + grid.node_width / 2
    child_y = parent.metadata.y + grid.node_height(parent) + grid.gap_y
    current_x = parent_center_x - total_row_width / 2

    for child, subtree_w in zip(children, widths):
        offset_in_slot = (subtree_w - grid.node_width) / 2
        if not child.metadata.manual_position:
            child.metadata.x = round_grid(current_x + offset_in_slot)
            child.metadata.y = round_grid(child_y)
        current_x += subtree_w + grid.gap_x


# ---------------------------------------------------------------------------
# Incremental mode
# ---------------------------------------------------------------------------

def subtree_width(
    node_id: str,
    nodes: Mapping[str, CanvasNode],
    children_index: Mapping[Optional[str], Sequence[str]],
    grid: GridMetrics,
) -> float:
    """Width in grid units reserved for ``node_id`` and its descendants."""
    if node_id not in nodes:
        return 0.0

    def children_of(nid: str) -> list[CanvasNode]:
        return _layout_children_of(nodes, children_index.get(nid, ()))

    widths: dict[str, float] = {}
    for nid in _bottom_up(node_id, children_of):
        children = children_of(nid)
        if not children:
            widths[nid] = grid.node_width
        else:
            total = sum(widths.get(c.id, grid.node_width) for c in children)
            widths[nid] = total + grid.gap_x * (len(children) - 1)
    return widths[node_id]


def subtree_height(
    node_id: str,
    nodes: Mapping[str, CanvasNode],
    children_index: Mapping[Optional[str], Sequence[str]],
    grid: GridMetrics,
) -> float:
    """Height in grid units: the node, a gap, then its tallest child subtree."""
    if node_id not in nodes:
        return 0.0

    def children_of(nid: str) -> list[CanvasNode]:
        return _layout_children_of(nodes, children_index.get(nid, ()))

    heights: dict[str, float] = {}
    for nid in _bottom_up(node_id, children_of):
        own = grid.node_height(nodes[nid])
        children = children_of(nid)
        if not children:
            heights[nid] = own
        else:
            heights[nid] = own + grid.gap_y + max(heights.get(c.id, 0.0) for c in children)
    return heights[node_id]


def layout_children(
    parent_id: str,
    nodes: Mapping[str, CanvasNode],
    children_index: Mapping[Optional[str], Sequence[str]],
    config: EngineConfig,
) -> int:
    """Lay out the subtree below ``parent_id`` without memoization.

    Every row recomputes the subtree widths it needs from scratch.  Returns
    the number of rows placed; 0 when the parent is unknown or has no
    non-annotation children.
    """
    if parent_id not in nodes:
        logger.debug(f"layout_children: unknown parent {parent_id}")
        return 0

    grid = GridMetrics.from_config(config)
    rows = 0
    seen = {parent_id}
    stack = [parent_id]
    while stack:
        parent = nodes[stack.pop()]
        children = _layout_children_of(nodes, children_index.get(parent.id, ()))
        if not children:
            continue
        widths = [subtree_width(c.id, nodes, children_index, grid) for c in children]
        _place_row(parent, children, widths, grid)
        rows += 1
        for child in reversed(children):
            if child.id not in seen:
                seen.add(child.id)
                stack.append(child.id)
    return rows


# ---------------------------------------------------------------------------
# Bulk mode
# ---------------------------------------------------------------------------

def build_children_map(
    nodes: Iterable[CanvasNode],
) -> dict[Optional[str], list[CanvasNode]]:
    """Map parent id → children in creation order.  Roots are keyed under None.

    Annotation nodes are dropped here so no later step has to filter them.
    """
    children_map: dict[Optional[str], list[CanvasNode]] = {}
    for node in nodes:
        if node.is_annotation:
            continue
        children_map.setdefault(node.parent_id, []).append(node)
    return children_map


def fill_subtree_width_cache(
    root: CanvasNode,
    children_map: Mapping[Optional[str], Sequence[CanvasNode]],
    cache: dict[str, float],
    grid: GridMetrics,
) -> float:
    def children_of(nid: str) -> list[CanvasNode]:
        return list(children_map.get(nid, ()))

    for nid in _bottom_up(root.id, children_of):
        children = children_of(nid)
        if not children:
            cache[nid] = grid.node_width
        else:
            cache[nid] = sum(cache[c.id] for c in children) + grid.gap_x * (len(children) - 1)
    return cache[root.id]


def fill_subtree_height_cache(
    root: CanvasNode,
    children_map: Mapping[Optional[str], Sequence[CanvasNode]],
    nodes: Mapping[str, CanvasNode],
    cache: dict[str, float],
    grid: GridMetrics,
) -> float:
    def children_of(nid: str) -> list[CanvasNode]:
        return list(children_map.get(nid, ()))

    for nid in _bottom_up(root.id, children_of):
        own = grid.node_height(nodes[nid])
        children = children_of(nid)
        if not children:
            cache[nid] = own
        else:
            cache[nid] = own + grid.gap_y + max(cache[c.id] for c in children)
    return cache[root.id]


def layout_children_with_cache(
    root: CanvasNode,
    children_map: Mapping[Optional[str], Sequence[CanvasNode]],
    width_cache: Mapping[str, float],
    grid: GridMetrics,
) -> None:
    stack = [root]
    while stack:
        parent = stack.pop()
        children = children_map.get(parent.id, ())
        if not children:
            continue
        _place_row(parent, children, [width_cache[c.id] for c in children], grid)
        stack.extend(reversed(children))


def flush_layout(nodes: Sequence[CanvasNode], config: EngineConfig) -> LayoutResult:
    """Lay out every root's forest in one pass over ``nodes``.

    Nodes whose parent is missing are neither roots nor reachable from one,
    so they keep their stored positions.
    """
    grid = GridMetrics.from_config(config)
    by_id = {n.id: n for n in nodes}
    children_map = build_children_map(nodes)
    roots = children_map.get(None, [])

    result = LayoutResult(roots=[r.id for r in roots])
    for root in roots:
        fill_subtree_height_cache(root, children_map, by_id, result.subtree_heights, grid)
        fill_subtree_width_cache(root, children_map, result.subtree_widths, grid)
    for root in roots:
        layout_children_with_cache(root, children_map, result.subtree_widths, grid)

    logger.debug(f"flush_layout: {len(roots)} roots, {len(result.subtree_widths)} nodes measured")
    return result

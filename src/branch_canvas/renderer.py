"""Conversation renderer — draws a store's positions as an SVG document.

The renderer is a pure reader: it never lays anything out.  Positions come
from the store in grid units and are scaled by ``grid_step`` into pixels;
edges come from ``get_connection_path``.  Measure heights first (see
``TextMeasurer.auto_size``) and let the store run its frame so the layout
reflects the measured boxes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import drawsvg as draw

from .connectors import get_connection_path
from .measure import TextMeasurer
from .models import CanvasNode, EngineConfig, DEFAULT_ENGINE_CONFIG
from .themes import ThemePalette, get_theme

logger = logging.getLogger(__name__)


@dataclass
class Box:
    """A node's box in canvas pixels."""
    x: float
    y: float
    width: float
    height: float


class SvgRenderer:
    """Renders a ConversationStore with drawsvg."""

    # Layout constants
    PADDING = 60
    CORNER_RADIUS = 12
    BORDER_WIDTH = 2
    ACTIVE_BORDER_WIDTH = 4
    CONNECTOR_WIDTH = 3

    # Annotation attachments
    ANNOTATION_GAP = 16
    ANNOTATION_WIDTH = 220
    ANNOTATION_LINE_HEIGHT = 18
    ANNOTATION_MAX_LINES = 3
    ANNOTATION_PADDING = 12

    FONT_FAMILY = "DejaVu Sans, Liberation Sans, sans-serif"

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        theme: str = "dark",
        measurer: Optional[TextMeasurer] = None,
    ):
        self.config = config or DEFAULT_ENGINE_CONFIG
        self.theme: ThemePalette = get_theme(theme)
        self.measurer = measurer or TextMeasurer(self.config)

    # --- Geometry ---

    def node_box(self, node: CanvasNode) -> Box:
        step = self.config.grid_step
        height = node.metadata.height
        if height is None:
            height = self.config.node_height_default
        return Box(
            x=node.metadata.x * step,
            y=node.metadata.y * step,
            width=self.config.node_width,
            height=height,
        )

    def annotation_boxes(self, nodes: list[CanvasNode]) -> dict[str, Box]:
        """Stack each parent's annotations beside its right edge."""
        by_id = {n.id: n for n in nodes}
        stacked: dict[str, float] = {}
        boxes: dict[str, Box] = {}
        for node in nodes:
            if not node.is_annotation:
                continue
            lines = min(len(self.measurer.wrap(node.content)), self.ANNOTATION_MAX_LINES)
            height = 2 * self.ANNOTATION_PADDING + lines * self.ANNOTATION_LINE_HEIGHT
            parent = by_id.get(node.parent_id) if node.parent_id else None
            if parent is None:
                own = self.node_box(node)
                boxes[node.id] = Box(own.x, own.y, self.ANNOTATION_WIDTH, height)
                continue
            anchor = self.node_box(parent)
            offset = stacked.get(parent.id, 0.0)
            boxes[node.id] = Box(
                x=anchor.x + anchor.width + self.ANNOTATION_GAP,
                y=anchor.y + offset,
                width=self.ANNOTATION_WIDTH,
                height=height,
            )
            stacked[parent.id] = offset + height + self.ANNOTATION_GAP / 2
        return boxes

    # --- Rendering ---

    def build_drawing(self, store) -> draw.Drawing:
        """Build the drawing for every node outside a collapsed subtree."""
        nodes = [n for n in store.nodes if not store.is_in_collapsed_subtree(n.id)]
        visible = {n.id: n for n in nodes}
        boxes = {n.id: self.node_box(n) for n in nodes if not n.is_annotation}
        annotations = self.annotation_boxes(nodes)

        all_boxes = list(boxes.values()) + list(annotations.values())
        if all_boxes:
            min_x = min(b.x for b in all_boxes) - self.PADDING
            min_y = min(b.y for b in all_boxes) - self.PADDING
            max_x = max(b.x + b.width for b in all_boxes) + self.PADDING
            max_y = max(b.y + b.height for b in all_boxes) + self.PADDING
        else:
            min_x, min_y, max_x, max_y = 0, 0, 400, 300
        width = max_x - min_x
        height = max_y - min_y

        d = draw.Drawing(width, height, origin=(min_x, min_y))
        d.append(draw.Rectangle(min_x, min_y, width, height, fill=self.theme.background))

        # Draw connections first (behind nodes)
        edges = draw.Group(
            fill="none",
            stroke=self.theme.connection_color,
            stroke_width=self.CONNECTOR_WIDTH,
            stroke_linecap="round",
        )
        for node_id, box in boxes.items():
            parent_id = visible[node_id].parent_id
            parent_box = boxes.get(parent_id) if parent_id else None
            if parent_box is None:
                continue
            edges.append(draw.Path(
                d=get_connection_path(
                    parent_box.x, parent_box.y, parent_box.width, parent_box.height,
                    box.x, box.y, box.width, box.height,
                ),
                data_parent=parent_id,
                data_child=node_id,
            ))
        d.append(edges)

        for node_id, box in boxes.items():
            d.append(self._draw_node(visible[node_id], box, node_id == store.active_node_id))
        for node_id, box in annotations.items():
            d.append(self._draw_annotation(visible[node_id], box))
        return d

    def render(self, store, output_path: Optional[str] = None) -> str:
        """Render the store to an SVG document.  Optionally save to file."""
        drawing = self.build_drawing(store)
        if output_path:
            drawing.save_svg(output_path)
            logger.info(f"Rendered {len(store)} nodes to {output_path}")
        return drawing.as_svg()

    def _draw_node(self, node: CanvasNode, box: Box, is_active: bool) -> draw.Group:
        """Draw a single message box.

        Text positioning uses the same constants as ``TextMeasurer`` so
        measured nodes always have room for their content.
        """
        m = self.measurer
        group = draw.Group(data_node=node.id)

        group.append(draw.Rectangle(
            box.x, box.y, box.width, box.height,
            rx=self.CORNER_RADIUS, ry=self.CORNER_RADIUS,
            fill=self.theme.node_fill,
            stroke=self.theme.active_border if is_active else self.theme.node_border,
            stroke_width=self.ACTIVE_BORDER_WIDTH if is_active else self.BORDER_WIDTH,
        ))
        # Role accent bar
        group.append(draw.Rectangle(
            box.x + 2, box.y + 2, box.width - 4, m.NODE_TOP_BAR,
            rx=3, ry=3,
            fill=self.theme.role_color(node.role),
        ))

        text_x = box.x + m.NODE_PADDING
        label_top = box.y + m.NODE_TOP_BAR + m.NODE_LABEL_GAP
        label_h = m.label_height(node)
        group.append(draw.Text(
            m.label_for(node), 20, text_x, label_top + label_h,
            fill=self.theme.label_color,
            font_family=self.FONT_FAMILY,
            font_weight="bold",
        ))

        if node.content:
            content_top = label_top + label_h + m.NODE_CONTENT_GAP
            for i, line in enumerate(m.wrap(node.content)):
                baseline = content_top + (i + 1) * m.NODE_LINE_HEIGHT - 6
                if baseline > box.y + box.height:
                    break
                if not line:
                    continue
                group.append(draw.Text(
                    line, 18, text_x, baseline,
                    fill=self.theme.body_text_color,
                    font_family=self.FONT_FAMILY,
                ))

        return group

    def _draw_annotation(self, node: CanvasNode, box: Box) -> draw.Group:
        lines = self.measurer.wrap(node.content)
        shown = lines[: self.ANNOTATION_MAX_LINES]
        if len(lines) > self.ANNOTATION_MAX_LINES:
            shown[-1] = shown[-1][:20] + "..."

        group = draw.Group(data_annotation=node.id)
        group.append(draw.Rectangle(
            box.x, box.y, box.width, box.height,
            rx=8, ry=8,
            fill=self.theme.annotation_fill,
            stroke=self.theme.node_border,
            stroke_dasharray="4 3",
        ))
        for i, line in enumerate(shown):
            if not line:
                continue
            baseline = box.y + self.ANNOTATION_PADDING + (i + 1) * self.ANNOTATION_LINE_HEIGHT - 4
            group.append(draw.Text(
                line, 14, box.x + self.ANNOTATION_PADDING, baseline,
                fill=self.theme.annotation_text,
                font_family=self.FONT_FAMILY,
                font_style="italic",
            ))
        return group

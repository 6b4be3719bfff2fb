"""Text measurement using Pillow — turns message content into box heights.

The layout engine only knows a node's height once something has measured
it.  ``TextMeasurer`` plays the part of the rendering layer here: it wraps
content at the fixed node width with real font metrics and reports the
resulting height back through ``ConversationStore.update_node_height``.
"""

from __future__ import annotations

import logging
import textwrap
from pathlib import Path
from typing import Optional

from PIL import ImageFont

from .models import CanvasNode, EngineConfig, DEFAULT_ENGINE_CONFIG

logger = logging.getLogger(__name__)


# --- Font handling ---

REGULAR_FONTS = (
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
    "/usr/share/fonts/truetype/freefont/FreeSans.ttf",
    "/usr/share/fonts/TTF/DejaVuSans.ttf",
)

BOLD_FONTS = (
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf",
    "/usr/share/fonts/truetype/freefont/FreeSansBold.ttf",
    "/usr/share/fonts/TTF/DejaVuSans-Bold.ttf",
) + REGULAR_FONTS


def load_font(size: int, paths=REGULAR_FONTS) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    """Load the first TrueType font in ``paths`` that exists.

    Falls back to Pillow's built-in font when none of them is installed.
    """
    for fp in paths:
        if Path(fp).exists():
            return ImageFont.truetype(fp, size)
    logger.debug(f"No TrueType font found for size {size}; using Pillow default")
    return ImageFont.load_default()


def _text_width(font, text: str) -> int:
    bbox = font.getbbox(text)
    return bbox[2] - bbox[0]


def _wrap_text(text: str, font, max_width: int) -> list[str]:
    """Word-wrap text to fit within max_width pixels.

    Explicit line breaks are kept; blank lines survive as empty strings.
    """
    lines: list[str] = []

    for paragraph in text.split("\n"):
        current = ""
        for word in paragraph.split():
            test = f"{current} {word}" if current else word
            if _text_width(font, test) <= max_width:
                current = test
                continue
            if current:
                lines.append(current)
            # If single word is too long, force-wrap it
            if _text_width(font, word) > max_width:
                chunks = textwrap.wrap(word, width=max(1, max_width // 8))
                lines.extend(chunks[:-1])
                current = chunks[-1] if chunks else ""
            else:
                current = word
        lines.append(current)

    return lines if lines else [""]


class TextMeasurer:
    """Measure the rendered pixel height of message boxes.

    Layout breakdown (top to bottom):
        NODE_TOP_BAR          — role accent bar
        NODE_LABEL_GAP        — gap below bar
        label text height     — single line, bold font
        NODE_CONTENT_GAP      — gap between label and content
        content text lines    — wrapped body text
        NODE_BOTTOM_PAD       — breathing room
    """

    NODE_PADDING = 24
    NODE_TOP_BAR = 6
    NODE_LABEL_GAP = 12
    NODE_CONTENT_GAP = 10
    NODE_BOTTOM_PAD = 20
    NODE_LINE_HEIGHT = 24
    MIN_NODE_HEIGHT = 80

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or DEFAULT_ENGINE_CONFIG
        self.font_body = load_font(18)
        self.font_label = load_font(20, BOLD_FONTS)

    @property
    def text_width(self) -> int:
        return max(1, int(self.config.node_width - 2 * self.NODE_PADDING))

    def label_for(self, node: CanvasNode) -> str:
        label = node.role.capitalize()
        if node.type not in ("text", "thought"):
            label = f"{label} · {node.type}"
        return label

    def wrap(self, text: str) -> list[str]:
        return _wrap_text(text, self.font_body, self.text_width)

    def label_height(self, node: CanvasNode) -> int:
        bbox = self.font_label.getbbox(self.label_for(node))
        return bbox[3] - bbox[1]

    def measure_height(self, node: CanvasNode) -> float:
        """Pixel height of ``node``'s box at the configured node width."""
        height = (
            self.NODE_TOP_BAR
            + self.NODE_LABEL_GAP
            + self.label_height(node)
            + self.NODE_CONTENT_GAP
        )
        if node.content:
            height += len(self.wrap(node.content)) * self.NODE_LINE_HEIGHT
        height += self.NODE_BOTTOM_PAD
        return float(max(height, self.MIN_NODE_HEIGHT))

    def auto_size(self, store) -> int:
        """Report measured heights for every laid-out node.

        Changes below the store's threshold are ignored there.  Returns the
        number of nodes whose height was accepted; the relayout itself runs
        on the store's next frame.
        """
        accepted = 0
        for node in store.nodes:
            if node.is_annotation:
                continue
            if store.update_node_height(node.id, self.measure_height(node)):
                accepted += 1
        logger.debug(f"auto_size: {accepted} heights changed")
        return accepted

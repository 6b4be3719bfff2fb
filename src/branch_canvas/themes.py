"""
Theme definitions for Branch-Canvas.

Provides dark and light color palettes for rendering conversations.
Each theme defines colors for:
- Canvas background
- Text (role labels, message body)
- Node boxes, with an accent bar per role
- Annotation attachments
- Connectors
"""

from __future__ import annotations
from dataclasses import dataclass, field


@dataclass
class ThemePalette:
    """Color palette for a theme."""

    # Canvas
    background: str

    # Text
    label_color: str
    body_text_color: str
    muted_text_color: str

    # Nodes
    node_fill: str
    node_border: str
    active_border: str

    # Annotations (thought nodes)
    annotation_fill: str
    annotation_text: str

    # Connectors
    connection_color: str

    # Accent bar per role
    role_colors: dict[str, str] = field(default_factory=dict)

    def role_color(self, role: str) -> str:
        return self.role_colors.get(role, self.node_border)


# Catppuccin Mocha (dark theme) - default
DARK_THEME = ThemePalette(
    background="#11111b",
    label_color="#cdd6f4",
    body_text_color="#a6adc8",
    muted_text_color="#6c7086",
    node_fill="#1e1e2e",
    node_border="#313244",
    active_border="#f9e2af",
    annotation_fill="#181825",
    annotation_text="#9399b2",
    connection_color="#585b70",
    role_colors={
        "user": "#89b4fa",       # Blue
        "assistant": "#cba6f7",  # Mauve
        "system": "#a6e3a1",     # Green
    },
)


# Light theme - clean white background with darker accents
LIGHT_THEME = ThemePalette(
    background="#ffffff",
    label_color="#1e1e2e",
    body_text_color="#4c4f69",
    muted_text_color="#6c6f85",
    node_fill="#eff1f5",
    node_border="#bcc0cc",
    active_border="#df8e1d",
    annotation_fill="#e6e9ef",
    annotation_text="#5c5f77",
    connection_color="#8c8fa1",
    role_colors={
        "user": "#1e66f5",
        "assistant": "#8839ef",
        "system": "#40a02b",
    },
)


# Theme registry
THEMES: dict[str, ThemePalette] = {
    "dark": DARK_THEME,
    "light": LIGHT_THEME,
}


def get_theme(name: str) -> ThemePalette:
    """Get a theme palette by name.

    Args:
        name: Theme name ("dark" or "light")

    Returns:
        ThemePalette for the requested theme

    Raises:
        ValueError: If theme name is not recognized
    """
    if name not in THEMES:
        valid = ", ".join(THEMES.keys())
        raise ValueError(f"Unknown theme '{name}'. Valid themes: {valid}")
    return THEMES[name]

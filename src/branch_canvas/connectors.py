"""
Connector paths between a parent box and a child box.

Every edge leaves the parent at its bottom-center anchor and enters the
child at its top-center anchor.  The result is an SVG path ``d`` string, so
any vector renderer can draw it.  Two regimes, chosen from the anchors:

Downward (child anchor at or below the parent anchor):

    parent ─┐
            │
            ╰──────╮            vertical → horizontal → vertical,
                   │            corners rounded with quarter-circle cubics
                child

Upward (child anchor above the parent anchor, usually after a drag): the
edge escapes below the parent, runs up a clear lane beside both boxes, and
comes down into the child from above:

        ╭───╮
        │ child
        │
        │ parent
        ╰───╯  (escape)

The lane runs through the middle of the horizontal gap when the boxes do
not overlap horizontally; otherwise it runs around whichever outer side is
closer to the two anchors.  Every input yields a valid path; zero-size or
coincident boxes degrade to straight segments.
"""

from __future__ import annotations

import math

CONNECTION_CORNER_RADIUS = 12
ESCAPE_DISTANCE = 30
SIDE_MARGIN = 30

# Control-point factor for a 90° circular arc drawn as one cubic Bezier.
QUARTER_BEZIER = 4 * (math.sqrt(2) - 1) / 3


def _finite(value: float) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0.0
    return value if math.isfinite(value) else 0.0


def fmt(value: float) -> str:
    """Format a coordinate compactly: ``150``, ``162.5``, never ``-0``."""
    text = f"{_finite(value):.3f}".rstrip("0").rstrip(".")
    return "0" if text in ("-0", "") else text


def _pt(x: float, y: float) -> str:
    return f"{fmt(x)} {fmt(y)}"


def straight_path(x1: float, y1: float, x2: float, y2: float) -> str:
    return f"M {_pt(x1, y1)} L {_pt(x2, y2)}"


def path_vertical_horizontal_vertical(
    x1: float,
    y1: float,
    x2: float,
    y2: float,
    radius: float = CONNECTION_CORNER_RADIUS,
) -> str:
    """Rectilinear path with two rounded corners at the vertical midpoint.

    The corner radius shrinks to fit short runs; when it reaches zero the
    path is a single straight segment.
    """
    mid_y = (y1 + y2) / 2
    dx = x2 - x1
    r = min(radius, abs(dx) / 2, abs(y2 - y1) / 4)
    if r <= 0:
        return straight_path(x1, y1, x2, y2)

    # Distance from a corner's tangent point to its control point.
    t = r * (1 - QUARTER_BEZIER)
    sign = 1 if dx >= 0 else -1

    return " ".join([
        f"M {_pt(x1, y1)}",
        f"L {_pt(x1, mid_y - r)}",
        f"C {_pt(x1, mid_y - t)} {_pt(x1 + sign * t, mid_y)} {_pt(x1 + sign * r, mid_y)}",
        f"L {_pt(x2 - sign * r, mid_y)}",
        f"C {_pt(x2 - sign * t, mid_y)} {_pt(x2, mid_y + t)} {_pt(x2, mid_y + r)}",
        f"L {_pt(x2, y2)}",
    ])


def path_through_points(
    points: list[tuple[float, float]],
    radius: float = CONNECTION_CORNER_RADIUS,
) -> str:
    """Polyline through ``points`` with every interior vertex rounded.

    Each corner's radius is clamped to half of the shorter adjacent segment,
    so neighbouring corners never overlap.  A vertex whose radius comes out
    as zero (repeated point) is kept as a sharp turn.
    """
    if len(points) < 2:
        x, y = points[0] if points else (0.0, 0.0)
        return straight_path(x, y, x, y)

    parts = [f"M {_pt(*points[0])}"]
    for prev, curr, nxt in zip(points, points[1:], points[2:]):
        dx1, dy1 = prev[0] - curr[0], prev[1] - curr[1]
        dx2, dy2 = nxt[0] - curr[0], nxt[1] - curr[1]
        len1 = math.hypot(dx1, dy1)
        len2 = math.hypot(dx2, dy2)

        r = min(radius, len1 / 2, len2 / 2)
        if r <= 0:
            parts.append(f"L {_pt(*curr)}")
            continue

        # Unit vectors from the vertex back along each adjacent segment.
        u1x, u1y = dx1 / len1, dy1 / len1
        u2x, u2y = dx2 / len2, dy2 / len2
        t = r * (1 - QUARTER_BEZIER)
        cx, cy = curr
        parts.append(f"L {_pt(cx + u1x * r, cy + u1y * r)}")
        parts.append(
            f"C {_pt(cx + u1x * t, cy + u1y * t)} "
            f"{_pt(cx + u2x * t, cy + u2y * t)} "
            f"{_pt(cx + u2x * r, cy + u2y * r)}"
        )

    parts.append(f"L {_pt(*points[-1])}")
    return " ".join(parts)


def choose_lane_x(
    parent_x: float,
    parent_w: float,
    child_x: float,
    child_w: float,
    side_margin: float = SIDE_MARGIN,
) -> float:
    """Pick the x of the vertical lane used by an upward edge."""
    parent_right = parent_x + parent_w
    child_right = child_x + child_w

    if child_x > parent_right:
        return (parent_right + child_x) / 2
    if child_right < parent_x:
        return (child_right + parent_x) / 2

    right_side = max(parent_right, child_right) + side_margin
    left_side = min(parent_x, child_x) - side_margin
    anchors_mid = ((parent_x + parent_w / 2) + (child_x + child_w / 2)) / 2
    if right_side - anchors_mid <= anchors_mid - left_side:
        return right_side
    return left_side


def get_connection_path(
    parent_x: float,
    parent_y: float,
    parent_w: float,
    parent_h: float,
    child_x: float,
    child_y: float,
    child_w: float,
    child_h: float,
    *,
    radius: float = CONNECTION_CORNER_RADIUS,
    escape: float = ESCAPE_DISTANCE,
    side_margin: float = SIDE_MARGIN,
) -> str:
    """SVG path from the parent's bottom-center to the child's top-center.

    Arguments are the two boxes in the same coordinate space (normally
    canvas pixels).  ``child_h`` does not influence the route; it is
    accepted so both boxes are passed the same way.
    """
    parent_x, parent_y, parent_w, parent_h = map(_finite, (parent_x, parent_y, parent_w, parent_h))
    child_x, child_y, child_w = map(_finite, (child_x, child_y, child_w))

    x1 = parent_x + parent_w / 2
    y1 = parent_y + parent_h
    x2 = child_x + child_w / 2
    y2 = child_y

    if y2 >= y1:
        return path_vertical_horizontal_vertical(x1, y1, x2, y2, radius)

    lane_x = choose_lane_x(parent_x, parent_w, child_x, child_w, side_margin)
    return path_through_points(
        [
            (x1, y1),
            (x1, y1 + escape),
            (lane_x, y1 + escape),
            (lane_x, y2 - escape),
            (x2, y2 - escape),
            (x2, y2),
        ],
        radius,
    )

"""
Hex → human color names for prompt text.

Prompts read better with "dark brown and light gold" than with hex codes,
so palette colors are snapped to the nearest of a small named reference set.
"""

import math
import re
from typing import Optional, Sequence, Tuple

RGB = Tuple[int, int, int]

# Declaration order breaks distance ties
BASE_COLORS: Tuple[Tuple[str, RGB], ...] = (
    ("red", (255, 0, 0)),
    ("orange", (255, 165, 0)),
    ("yellow", (255, 255, 0)),
    ("green", (0, 128, 0)),
    ("cyan", (0, 255, 255)),
    ("blue", (0, 0, 255)),
    ("indigo", (75, 0, 130)),
    ("purple", (128, 0, 128)),
    ("pink", (255, 192, 203)),
    ("brown", (139, 69, 19)),
    ("gray", (128, 128, 128)),
    ("black", (0, 0, 0)),
    ("white", (255, 255, 255)),
    ("gold", (255, 215, 0)),
    ("silver", (192, 192, 192)),
    ("bronze", (205, 127, 50)),
    ("amber", (255, 191, 0)),
    ("teal", (0, 128, 128)),
    ("navy", (0, 0, 128)),
    ("maroon", (128, 0, 0)),
    ("olive", (128, 128, 0)),
    ("coral", (255, 127, 80)),
    ("azure", (0, 127, 255)),
)

LIGHT_LUMINANCE = 180
DARK_LUMINANCE = 80
UNMODIFIED_COLORS = ("black", "white")

_HEX = re.compile(r"^[0-9a-fA-F]{6}$")


def hex_to_rgb(hex_color: str) -> Optional[RGB]:
    """Parse ``#RGB`` / ``#RRGGBB`` (``#`` optional). Returns None if invalid."""
    if not isinstance(hex_color, str):
        return None
    clean = hex_color.strip()
    if clean.startswith("#"):
        clean = clean[1:]
    if len(clean) == 3:
        clean = "".join(c * 2 for c in clean)
    if not _HEX.match(clean):
        return None
    return int(clean[0:2], 16), int(clean[2:4], 16), int(clean[4:6], 16)


def _luminance(rgb: RGB) -> float:
    r, g, b = rgb
    return 0.299 * r + 0.587 * g + 0.114 * b


def get_color_modifier(hex_color: str) -> str:
    """'light', 'dark', or '' for mid-tones and invalid input."""
    rgb = hex_to_rgb(hex_color)
    if rgb is None:
        return ""
    lum = _luminance(rgb)
    if lum > LIGHT_LUMINANCE:
        return "light"
    if lum < DARK_LUMINANCE:
        return "dark"
    return ""


def hex_to_simple_color_name(hex_color: str) -> str:
    rgb = hex_to_rgb(hex_color)
    if rgb is None:
        return "unknown"

    closest = BASE_COLORS[0][0]
    best = math.inf
    for name, ref in BASE_COLORS:
        dist = math.dist(rgb, ref)
        if dist < best:
            best = dist
            closest = name
    return closest


def format_color_with_modifier(hex_color: str) -> str:
    """e.g. "dark brown"; black and white are never modified."""
    name = hex_to_simple_color_name(hex_color)
    if name in UNMODIFIED_COLORS:
        return name
    modifier = get_color_modifier(hex_color)
    return f"{modifier} {name}" if modifier else name


def format_color_palette(colors: Sequence[str]) -> str:
    """Describe the first two palette colors as "<a> and <b>"."""
    if not colors:
        return ""
    first = format_color_with_modifier(colors[0])
    if len(colors) == 1:
        return first
    second = format_color_with_modifier(colors[1])
    if first == second:
        return first
    return f"{first} and {second}"

import logging
import math
from typing import List, Optional, Tuple

import numpy as np
from PIL import Image

from .models import Rect

logger = logging.getLogger(__name__)

WHITE = "#FFFFFF"
NEAR_BLACK = "#0B0B0B"
DEFAULT_SAMPLE_COLOR = "#000000"
SAMPLE_GRID = 8


def normalize_hex_color(c: Optional[str]) -> Optional[str]:
    """Normalize a CSS hex color string to #rrggbb. Returns None if invalid.
    Accepts #rgb or #rrggbb (case-insensitive), with or without leading '#'."""
    if not isinstance(c, str):
        return None
    s = c.strip()
    if s.startswith('#'):
        s = s[1:]
    # Allow 3 or 6 hex digits
    if len(s) == 3 and all(ch in '0123456789abcdefABCDEF' for ch in s):
        s = ''.join(ch * 2 for ch in s)
    if len(s) == 6 and all(ch in '0123456789abcdefABCDEF' for ch in s):
        return '#' + s.lower()
    return None


def hex_to_rgb(hex_color: str) -> Tuple[int, int, int]:
    h = normalize_hex_color(hex_color) or DEFAULT_SAMPLE_COLOR
    return int(h[1:3], 16), int(h[3:5], 16), int(h[5:7], 16)


def rgb_to_hex(r: int, g: int, b: int) -> str:
    return f"#{int(r):02x}{int(g):02x}{int(b):02x}"


def _linear(v: float) -> float:
    return v / 12.92 if v <= 0.03928 else ((v + 0.055) / 1.055) ** 2.4


def relative_luminance(hex_color: str) -> float:
    """WCAG relative luminance of an sRGB hex color."""
    r, g, b = (c / 255.0 for c in hex_to_rgb(hex_color))
    return 0.2126 * _linear(r) + 0.7152 * _linear(g) + 0.0722 * _linear(b)


def contrast_ratio(a: str, b: str) -> float:
    la, lb = relative_luminance(a), relative_luminance(b)
    hi, lo = (la, lb) if la > lb else (lb, la)
    return (hi + 0.05) / (lo + 0.05)


def pick_text_color(bg: str) -> str:
    """Whichever of pure white or near-black reads better on `bg` (white wins ties)."""
    white = contrast_ratio(bg, WHITE)
    black = contrast_ratio(bg, NEAR_BLACK)
    return WHITE if white >= black else NEAR_BLACK


def sample_region_color(image: Image.Image, rect: Rect) -> str:
    """Mean color under `rect`, as #rrggbb.

    The rectangle is clamped to the image; anything that ends up empty
    (fully outside, zero or negative size) yields the default black.
    """
    x0 = max(0, rect.x)
    y0 = max(0, rect.y)
    x1 = min(image.width, rect.x + rect.w)
    y1 = min(image.height, rect.y + rect.h)
    if x1 <= x0 or y1 <= y0:
        logger.debug(f"Degenerate sample region {rect} on {image.width}x{image.height}; using default")
        return DEFAULT_SAMPLE_COLOR

    try:
        region = image.crop((x0, y0, x1, y1)).convert("RGB")
        region = region.resize((SAMPLE_GRID, SAMPLE_GRID), Image.Resampling.BOX)
        pixels = np.asarray(region, dtype=np.float64).reshape(-1, 3)
    except (OSError, ValueError) as e:
        logger.warning(f"Background sampling failed for {rect}: {e}")
        return DEFAULT_SAMPLE_COLOR

    r, g, b = (int(math.floor(v + 0.5)) for v in pixels.mean(axis=0))
    return rgb_to_hex(r, g, b)


def extract_palette(image: Image.Image, num_colors: int = 5) -> List[str]:
    """Extract dominant colors from image using Pillow quantization.
    Returns a list of hex strings like ['#rrggbb', ...], most frequent first.
    """
    if image.mode != 'RGB':
        image = image.convert('RGB')

    # Resize for faster processing
    small_image = image.resize((150, 150))

    # Quantize to a palette of num_colors
    paletted = small_image.quantize(colors=max(1, num_colors), method=Image.Quantize.MEDIANCUT)

    palette = paletted.getpalette() or []  # flat list [r0,g0,b0, r1,g1,b1, ...]
    max_colors = paletted.width * paletted.height
    counts = paletted.getcolors(maxcolors=max_colors) or []  # list of (count, index)

    # Sort by frequency descending (index breaks ties) and map indices to RGB
    counts.sort(key=lambda x: (-x[0], x[1]))
    result: List[str] = []
    for _, idx in counts[:num_colors]:
        base = int(idx) * 3
        if base + 2 < len(palette):
            result.append(rgb_to_hex(palette[base], palette[base + 1], palette[base + 2]))

    # Ensure we return at least one color
    if not result:
        r, g, b = small_image.resize((1, 1)).getpixel((0, 0))
        result = [rgb_to_hex(r, g, b)]

    return result

"""Approximate text measurement and greedy wrap-and-shrink fitting."""

from typing import List, NamedTuple, Optional

from .geometry import round_half_up
from .models import TextStyle

# ~0.55 em per glyph works reasonably for sans-serif at weight 600
AVG_CHAR_WIDTH = 0.55
LINE_HEIGHT = 1.2
MIN_FONT_SIZE = 10


class FittedText(NamedTuple):
    lines: List[str]
    font_size: float


def text_width(text: str, font_size: float, style: Optional[TextStyle] = None) -> float:
    weight = (style.font_weight if style and style.font_weight else 600) / 600.0
    letter = (style.letter_spacing if style and style.letter_spacing else 0.0)
    n = len(text)
    return max(1.0, n * font_size * AVG_CHAR_WIDTH * weight + letter * max(0, n - 1))


def line_height(font_size: float) -> int:
    return round_half_up(font_size * LINE_HEIGHT)


def _hard_break(word: str, max_width: float, font_size: float, style: Optional[TextStyle]) -> List[str]:
    chunks: List[str] = []
    acc = ""
    for ch in word:
        cand = acc + ch
        if acc and text_width(cand, font_size, style) > max_width:
            chunks.append(acc)
            acc = ch
        else:
            acc = cand
    if acc:
        chunks.append(acc)
    return chunks


def wrap_text(text: str, max_width: float, font_size: float, style: Optional[TextStyle] = None) -> List[str]:
    """Greedy word wrap; words wider than a line are split character by character."""
    lines: List[str] = []
    line = ""
    for word in (text or "").split():
        test = f"{line} {word}" if line else word
        if text_width(test, font_size, style) <= max_width:
            line = test
            continue
        if line:
            lines.append(line)
            line = ""
        if text_width(word, font_size, style) <= max_width:
            line = word
        else:
            pieces = _hard_break(word, max_width, font_size, style)
            lines.extend(pieces[:-1])
            line = pieces[-1]
    if line:
        lines.append(line)
    return lines


def fit_text(
    text: str,
    max_width: float,
    font_size: float,
    style: Optional[TextStyle] = None,
    min_font: float = MIN_FONT_SIZE,
    max_lines: int = 3,
    max_height: Optional[float] = None,
) -> FittedText:
    """Largest size (stepping down by one from `font_size`) whose wrap fits.

    A wrap fits when it has at most `max_lines` lines and, if `max_height` is
    given, its block height stays within it. If nothing fits down to the floor
    the unwrapped text is returned at the floor size. The floor never exceeds
    the starting size, so the result is never larger than the suggestion.
    """
    text = (text or "").strip()
    if not text:
        return FittedText([], font_size)

    floor = min(min_font, font_size)
    size = font_size
    while size >= floor:
        lines = wrap_text(text, max_width, size, style)
        fits_height = max_height is None or len(lines) * line_height(size) <= max_height
        if len(lines) <= max(1, max_lines) and fits_height:
            return FittedText(lines, size)
        size -= 1
    return FittedText([text], floor)

"""SVG overlay layers for resolved boxes, rasterized with CairoSVG.

Every user-supplied string goes through Jinja's `e` filter; colors are
normalized to #rrggbb before they reach a template.
"""

import io
import logging
from typing import NamedTuple, Optional

from jinja2 import Template
from PIL import Image

from .color import normalize_hex_color, pick_text_color
from .config import DEFAULT_FONT_FAMILY, configure_cairo_dll_dir
from .geometry import round_half_up
from .models import ResolvedBox, TextStyle
from .typesetting import line_height, text_width

logger = logging.getLogger(__name__)

TEXT_PAD = 16
PILL_PAD_X = 20
PILL_PAD_Y = 10
PILL_MAX_MIN_WIDTH = 280
PILL_MAX_MIN_HEIGHT = 64
PILL_MIN_FONT = 10

_TEXT_TEMPLATE = Template("""<svg xmlns="http://www.w3.org/2000/svg" width="{{ w }}" height="{{ h }}" viewBox="0 0 {{ w }} {{ h }}">
  <g{% if rotate %} transform="rotate({{ rotate }} {{ w / 2 }} {{ h / 2 }})"{% endif %}>
    <text x="{{ tx }}" text-anchor="{{ anchor }}" font-family="{{ font_family | e }}" font-size="{{ font_size }}" font-weight="{{ font_weight }}" fill="{{ color }}" letter-spacing="{{ letter_spacing }}"{% if stroke %} stroke="{{ stroke_color }}" stroke-width="{{ stroke_width }}" stroke-linejoin="round" paint-order="stroke"{% endif %}>
      {% for line in lines %}<tspan x="{{ tx }}" {% if loop.first %}y="{{ start_y }}"{% else %}dy="{{ lh }}"{% endif %}>{{ line | e }}</tspan>{% endfor %}
    </text>
  </g>
</svg>
""")

_PILL_TEMPLATE = Template("""<svg xmlns="http://www.w3.org/2000/svg" width="{{ w }}" height="{{ h }}" viewBox="0 0 {{ w }} {{ h }}">
  <g{% if rotate %} transform="rotate({{ rotate }} {{ w / 2 }} {{ h / 2 }})"{% endif %}>
    <rect x="{{ px }}" y="{{ py }}" width="{{ pw }}" height="{{ ph }}" rx="{{ radius }}" ry="{{ radius }}" fill="{{ bg }}" fill-opacity="0.96"/>
    <text x="{{ px + pw / 2 }}" y="{{ py + ph / 2 + font_size / 3 }}" text-anchor="middle" font-family="{{ font_family | e }}" font-size="{{ font_size }}" font-weight="{{ font_weight }}" fill="{{ color }}" letter-spacing="{{ letter_spacing }}">{{ text | e }}</text>
  </g>
</svg>
""")

_BAND_TEMPLATE = Template("""<svg xmlns="http://www.w3.org/2000/svg" width="{{ w }}" height="{{ h }}" viewBox="0 0 {{ w }} {{ h }}">
  <rect x="0" y="0" width="{{ w }}" height="{{ h }}" fill="{{ bg }}"{% if rotate %} transform="rotate({{ rotate }} {{ w / 2 }} {{ h / 2 }})"{% endif %}/>
</svg>
""")


class PillGeometry(NamedTuple):
    x: float
    y: float
    w: int
    h: int
    font_size: float


def _anchor(align: Optional[str]) -> str:
    if align == "center":
        return "middle"
    if align == "right":
        return "end"
    return "start"


def _font_family(style: TextStyle) -> str:
    return style.font_family or DEFAULT_FONT_FAMILY


def _pill_width(text: str, font_size: float, style: TextStyle, box_w: int) -> int:
    natural = text_width(text, font_size, style) + PILL_PAD_X * 2
    preferred = min(PILL_MAX_MIN_WIDTH, round_half_up(box_w * 0.7))
    return max(1, min(box_w - 8, round_half_up(max(natural, preferred))))


def cta_pill_geometry(box_w: int, box_h: int, text: str, font_size: float, style: TextStyle, align: Optional[str] = "center") -> PillGeometry:
    """Capsule sized to its label, never wider than the box.

    The label size steps down while the natural pill (label + padding) would not
    fit inside the box.
    """
    fs = font_size
    while text_width(text, fs, style) + PILL_PAD_X * 2 > box_w - 8 and fs > PILL_MIN_FONT:
        fs -= 1
    pw = _pill_width(text, fs, style, box_w)
    ph = max(1, min(box_h - 8, round_half_up(max(fs + PILL_PAD_Y * 2, min(PILL_MAX_MIN_HEIGHT, box_h * 0.8)))))
    if align == "left":
        px = 4.0
    elif align == "right":
        px = float(box_w - pw - 4)
    else:
        px = (box_w - pw) / 2.0
    py = (box_h - ph) / 2.0
    return PillGeometry(px, py, pw, ph, fs)


def text_block_svg(rb: ResolvedBox) -> str:
    """Multi-line text anchored per alignment and vertically centered in the box."""
    w, h = rb.rect.w, rb.rect.h
    style = rb.style
    fs = rb.font_size
    lh = line_height(fs)
    align = rb.box.align
    tx = w / 2.0 if align == "center" else (w - TEXT_PAD if align == "right" else TEXT_PAD)
    start_y = max(lh, (h - lh * (len(rb.lines) - 0.2)) / 2.0)
    stroke = style.stroke
    return _TEXT_TEMPLATE.render(
        w=w,
        h=h,
        rotate=rb.box.rotate,
        tx=tx,
        anchor=_anchor(align),
        font_family=_font_family(style),
        font_size=fs,
        font_weight=style.font_weight or 700,
        color=normalize_hex_color(style.color) or "#111111",
        letter_spacing=style.letter_spacing or 0,
        stroke=stroke is not None and stroke.width > 0,
        stroke_color=(normalize_hex_color(stroke.color) if stroke else None) or "#000000",
        stroke_width=stroke.width if stroke else 0,
        lines=rb.lines,
        start_y=start_y,
        lh=lh,
    )


def cta_pill_svg(rb: ResolvedBox) -> str:
    w, h = rb.rect.w, rb.rect.h
    style = rb.style
    text = " ".join(rb.lines)
    geo = cta_pill_geometry(w, h, text, rb.font_size, style, rb.box.align or "center")
    bg = normalize_hex_color(style.bg) or "#111111"
    return _PILL_TEMPLATE.render(
        w=w,
        h=h,
        rotate=rb.box.rotate,
        px=geo.x,
        py=geo.y,
        pw=geo.w,
        ph=geo.h,
        radius=geo.h / 2.0,
        bg=bg,
        font_family=_font_family(style),
        font_size=geo.font_size,
        font_weight=style.font_weight or 600,
        color=normalize_hex_color(style.color) or pick_text_color(bg),
        letter_spacing=style.letter_spacing or 0,
        text=text,
    )


def band_svg(rb: ResolvedBox) -> str:
    return _BAND_TEMPLATE.render(
        w=rb.rect.w,
        h=rb.rect.h,
        rotate=rb.box.rotate,
        bg=normalize_hex_color(rb.style.bg) or "#111111",
    )


def build_layer_svg(rb: ResolvedBox) -> str:
    if rb.id == "band":
        return band_svg(rb)
    if rb.id in ("cta", "badge"):
        return cta_pill_svg(rb)
    return text_block_svg(rb)


def rasterize_svg(svg: str, width: int, height: int) -> Image.Image:
    """Render an SVG document to an RGBA image of exactly width x height."""
    configure_cairo_dll_dir()
    # cairosvg is lazily imported so a missing native cairo only fails rendering
    import cairosvg

    png_bytes = cairosvg.svg2png(
        bytestring=svg.encode("utf-8"),
        output_width=width,
        output_height=height,
    )
    with Image.open(io.BytesIO(png_bytes)) as im:
        layer = im.convert("RGBA")
    if layer.size != (width, height):
        layer = layer.resize((width, height), Image.Resampling.LANCZOS)
    return layer


def render_layer(rb: ResolvedBox) -> Image.Image:
    """Drawable overlay for one finalized box, sized to its rectangle."""
    return rasterize_svg(build_layer_svg(rb), rb.rect.w, rb.rect.h)

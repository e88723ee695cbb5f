"""Layout sources: an OpenAI vision model with a deterministic local fallback.

The pipeline always ends up with a usable LayoutResult: the primary source is
tried first and any failure (transport error, non-JSON, unusable payload)
substitutes the fallback.
"""

import asyncio
import base64
import hashlib
import io
import json
import logging
from time import perf_counter
from typing import Any, Dict, List, Optional, Tuple

from openai import AsyncOpenAI
from PIL import Image

from . import config
from .color import extract_palette, normalize_hex_color, pick_text_color
from .errors import LayoutSourceError
from .models import (
    BOX_IDS,
    CreativeCopy,
    LayoutBox,
    LayoutResult,
    Palette,
    ProductMask,
    Suggestions,
)

logger = logging.getLogger(__name__)

FALLBACK_MASK = {"type": "bbox", "x": 20, "y": 28, "w": 60, "h": 44}
DEFAULT_FONT = "Inter, system-ui, Arial, sans-serif"

# Per-id geometry defaults (percent) used when the model omits a field
_BOX_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "headline": {"x": 6, "y": 6, "w": 88, "h": 16, "align": "left", "font_size": 40},
    "subhead": {"x": 6, "y": 20, "w": 88, "h": 10, "align": "left", "font_size": 22},
    "cta": {"x": 6, "y": 82, "w": 44, "h": 10, "align": "center", "font_size": 20},
    "price": {"x": 52, "y": 82, "w": 42, "h": 10, "align": "right", "font_size": 28},
    "badge": {"x": 74, "y": 74, "w": 20, "h": 7, "align": "center", "font_size": 18},
    "band": {"x": 0, "y": 0, "w": 22, "h": 100, "align": "left", "font_size": 20},
}
_STYLE_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "headline": {"font_weight": 800, "color": "#111111", "max_lines": 2},
    "subhead": {"font_weight": 500, "color": "#1f2937", "max_lines": 2},
    "cta": {"font_weight": 600},
    "price": {"font_weight": 700, "color": "#111111", "max_lines": 1},
    "badge": {"font_weight": 700, "bg": "#111111", "color": "#ffffff"},
    "band": {"bg": "#111111"},
}

LAYOUT_SYSTEM_PROMPT = """
Return ONLY JSON with this schema:

{
 "mask": { "type":"bbox","x":number,"y":number,"w":number,"h":number } | { "type":"polygon","points":[{"x":number,"y":number},...] },
 "palette": { "primary":string, "secondary":string, "onPrimary":string, "onSecondary":string },
 "boxes": [
   { "id":"headline","x":number,"y":number,"w":number,"h":number,"align":"left"|"center"|"right","fontSize":number,
     "style":{"fontFamily":string,"fontWeight":number,"letterSpacing":number,"color":string,"stroke":{"color":string,"width":number}} },
   { "id":"subhead", ... },
   { "id":"cta","x":number,"y":number,"w":number,"h":number,"align":"center","fontSize":number,
     "style":{"fontFamily":string,"fontWeight":number,"letterSpacing":number,"bg":string,"color":string} },
   { "id":"price", ... }, { "id":"badge", ... },
   { "id":"band","x":number,"y":number,"w":number,"h":number,"style":{"bg":string}, "rotate":0 }
 ],
 "suggestions": { "notes":[string] }
}

Rules:
- All coordinates are percentages (0-100) of the frame.
- Text MUST NOT overlap the product mask.
- Prefer generous whitespace. Headline top band, subhead below it; CTA bottom band.
- Only include price/badge boxes when that copy is provided.
- Fonts: use web-safe names (Inter/Roboto/system-ui). Colors must be readable on the image.
""".strip()

SUGGEST_SYSTEM_PROMPT = """
You are a marketing copy assistant. Suggest 5 alternative headlines, 5 subheads, and 5 CTAs
that match the style of the image. Keep them concise and brand-neutral.
Return JSON only: {"altHeadlines":[...], "altSubheads":[...], "altCTAs":[...]}
""".strip()


# ── Sanitizing model output ────────────────────────────────────────────

def _clamp_float(x: Any, lo: float, hi: float, default: Optional[float] = None) -> Optional[float]:
    try:
        v = float(x)
    except (TypeError, ValueError):
        return default
    if v != v or v in (float("inf"), float("-inf")):
        return default
    return max(lo, min(hi, v))


def _pick(raw: Dict[str, Any], *keys: str) -> Any:
    """First present key; the model may answer in camelCase or snake_case."""
    for k in keys:
        if k in raw and raw[k] is not None:
            return raw[k]
    return None


def parse_json_loose(content: str) -> Dict[str, Any]:
    """Parse a JSON object from model output, tolerating fences and chatter."""
    content = (content or "").strip()
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        start = content.find("{")
        end = content.rfind("}")
        if start == -1 or end <= start:
            raise LayoutSourceError("model returned no JSON object")
        try:
            parsed = json.loads(content[start:end + 1])
        except json.JSONDecodeError as e:
            raise LayoutSourceError(f"model returned malformed JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise LayoutSourceError("model JSON is not an object")
    return parsed


def sanitize_mask(raw: Any) -> ProductMask:
    if not isinstance(raw, dict):
        return ProductMask(**FALLBACK_MASK)
    if raw.get("type") == "polygon":
        points = []
        for p in raw.get("points") or []:
            if not isinstance(p, dict):
                continue
            x = _clamp_float(p.get("x"), 0, 100)
            y = _clamp_float(p.get("y"), 0, 100)
            if x is not None and y is not None:
                points.append({"x": x, "y": y})
        if len(points) >= 3:
            return ProductMask(type="polygon", points=points)
    return ProductMask(
        type="bbox",
        **{k: _clamp_float(raw.get(k), 0, 100, FALLBACK_MASK[k]) for k in ("x", "y", "w", "h")},
    )


def sanitize_style(raw: Any, box_id: str) -> Dict[str, Any]:
    raw = raw if isinstance(raw, dict) else {}
    fb = _STYLE_DEFAULTS[box_id]
    out: Dict[str, Any] = {"font_family": DEFAULT_FONT}

    family = _pick(raw, "fontFamily", "font_family")
    if isinstance(family, str) and family.strip():
        out["font_family"] = family.strip()[:120]
    weight = _clamp_float(_pick(raw, "fontWeight", "font_weight"), 100, 900)
    out["font_weight"] = int(weight) if weight is not None else fb.get("font_weight", 700)
    spacing = _clamp_float(_pick(raw, "letterSpacing", "letter_spacing"), -5, 40)
    out["letter_spacing"] = spacing if spacing is not None else 0.0

    for key in ("color", "bg"):
        c = normalize_hex_color(raw.get(key)) or fb.get(key)
        if c:
            out[key] = c
    stroke = raw.get("stroke")
    if isinstance(stroke, dict):
        sc = normalize_hex_color(stroke.get("color"))
        sw = _clamp_float(stroke.get("width"), 0, 64)
        if sc and sw:
            out["stroke"] = {"color": sc, "width": sw}
    max_lines = _clamp_float(_pick(raw, "maxLines", "max_lines"), 1, 12)
    if max_lines is not None:
        out["max_lines"] = int(max_lines)
    elif "max_lines" in fb:
        out["max_lines"] = fb["max_lines"]
    return out


def sanitize_box(raw: Any) -> Optional[LayoutBox]:
    """Allow only known ids/keys and clamp values to safe ranges."""
    if not isinstance(raw, dict) or raw.get("id") not in BOX_IDS:
        return None
    box_id = raw["id"]
    d = _BOX_DEFAULTS[box_id]
    align = raw.get("align")
    align = align.strip().lower() if isinstance(align, str) else None
    return LayoutBox(
        id=box_id,
        x=_clamp_float(raw.get("x"), 0, 100, d["x"]),
        y=_clamp_float(raw.get("y"), 0, 100, d["y"]),
        w=_clamp_float(raw.get("w"), 0, 100, d["w"]),
        h=_clamp_float(raw.get("h"), 0, 100, d["h"]),
        align=align if align in ("left", "center", "right") else d["align"],
        font_size=_clamp_float(_pick(raw, "fontSize", "font_size"), 8, 400, d["font_size"]),
        style=sanitize_style(raw.get("style"), box_id),
        rotate=_clamp_float(raw.get("rotate"), -360, 360, 0.0),
    )


def sanitize_palette(raw: Any) -> Palette:
    raw = raw if isinstance(raw, dict) else {}
    defaults = Palette()
    return Palette(
        primary=normalize_hex_color(raw.get("primary")) or defaults.primary,
        secondary=normalize_hex_color(raw.get("secondary")) or defaults.secondary,
        on_primary=normalize_hex_color(_pick(raw, "onPrimary", "on_primary")) or defaults.on_primary,
        on_secondary=normalize_hex_color(_pick(raw, "onSecondary", "on_secondary")) or defaults.on_secondary,
    )


def _str_list(v: Any, limit: int = 10) -> List[str]:
    if not isinstance(v, list):
        return []
    return [s.strip()[:200] for s in v if isinstance(s, str) and s.strip()][:limit]


def sanitize_suggestions(raw: Any) -> Suggestions:
    raw = raw if isinstance(raw, dict) else {}
    return Suggestions(
        alt_headlines=_str_list(_pick(raw, "altHeadlines", "alt_headlines")),
        alt_subheads=_str_list(_pick(raw, "altSubheads", "alt_subheads")),
        alt_ctas=_str_list(_pick(raw, "altCTAs", "altCtas", "alt_ctas")),
        notes=_str_list(raw.get("notes")),
    )


def sanitize_layout(raw: Dict[str, Any]) -> LayoutResult:
    """Turn raw model JSON into a LayoutResult; raises LayoutSourceError if unusable."""
    boxes = [b for b in (sanitize_box(r) for r in (raw.get("boxes") or [])) if b is not None]
    if not any(b.id != "band" for b in boxes):
        raise LayoutSourceError("layout has no text boxes")
    palette = sanitize_palette(raw.get("palette"))

    # CTA label always reads against its own fill
    fixed: List[LayoutBox] = []
    for b in boxes:
        if b.id == "cta":
            bg = b.style.bg or palette.primary
            b = b.model_copy(update={"style": b.style.model_copy(update={"bg": bg, "color": pick_text_color(bg)})})
        fixed.append(b)

    return LayoutResult(
        mask=sanitize_mask(raw.get("mask")),
        boxes=fixed,
        palette=palette,
        suggestions=sanitize_suggestions(raw.get("suggestions")),
    )


# ── Sources ────────────────────────────────────────────────────────────

class LayoutSource:
    """Capability returning a layout proposal for an image and its copy."""

    name = "base"

    async def propose(self, image_bytes: bytes, image: Image.Image, copy: CreativeCopy) -> LayoutResult:
        raise NotImplementedError


def fallback_layout(image: Image.Image, copy: CreativeCopy) -> LayoutResult:
    """Deterministic layout from basic image statistics and a fixed box set."""
    primary = normalize_hex_color(extract_palette(image, num_colors=5)[0]) or "#111111"
    base_w = image.width or 1080
    on_primary = pick_text_color(primary)

    boxes: List[LayoutBox] = [
        LayoutBox(
            id="headline", x=6, y=6, w=88, h=16, align="left",
            font_size=max(32, round(base_w * 0.038)),
            style={"font_weight": 800, "color": "#0b0b0b", "max_lines": 2},
        ),
    ]
    if copy.subhead:
        boxes.append(LayoutBox(
            id="subhead", x=6, y=22, w=88, h=10, align="left",
            font_size=max(18, round(base_w * 0.022)),
            style={"font_weight": 500, "color": "#1f2937", "max_lines": 2},
        ))
    if copy.cta:
        boxes.append(LayoutBox(
            id="cta", x=6, y=82, w=44, h=10, align="center",
            font_size=max(16, round(base_w * 0.02)),
            style={"font_weight": 600, "bg": primary, "color": on_primary},
        ))
    if copy.price:
        boxes.append(LayoutBox(
            id="price", x=52, y=82, w=42, h=10, align="right",
            font_size=max(20, round(base_w * 0.026)),
            style={"font_weight": 700, "max_lines": 1},
        ))
    if copy.badge:
        boxes.append(LayoutBox(
            id="badge", x=74, y=74, w=20, h=7, align="center",
            font_size=max(14, round(base_w * 0.016)),
            style={"font_weight": 700, "bg": "#111111", "color": "#ffffff"},
        ))

    return LayoutResult(
        mask=ProductMask(**FALLBACK_MASK),
        boxes=boxes,
        palette=Palette(primary=primary, secondary="#e5e7eb", on_primary=on_primary, on_secondary="#111111"),
        suggestions=Suggestions(notes=["AI layout unavailable; local fallback used."]),
    )


class FallbackLayoutSource(LayoutSource):
    name = "fallback"

    async def propose(self, image_bytes: bytes, image: Image.Image, copy: CreativeCopy) -> LayoutResult:
        return fallback_layout(image, copy)


# Simple in-memory cache for AI layouts to reduce API calls
_layout_cache: Dict[str, Tuple[float, LayoutResult]] = {}
LAYOUT_CACHE_MAX_ENTRIES = 128


def _cache_key(image_bytes: bytes, copy: CreativeCopy, model: str) -> str:
    key_obj = {
        "img": hashlib.sha256(image_bytes).hexdigest(),
        "copy": copy.model_dump(),
        "model": model,
    }
    return hashlib.sha256(json.dumps(key_obj, sort_keys=True).encode("utf-8")).hexdigest()


def clear_layout_cache() -> None:
    _layout_cache.clear()


def _prune_layout_cache(now: float, ttl_s: float) -> None:
    """Drop expired entries, then the oldest ones beyond the size cap."""
    for key in [k for k, (ts, _) in _layout_cache.items() if (now - ts) >= ttl_s]:
        del _layout_cache[key]
    while len(_layout_cache) > LAYOUT_CACHE_MAX_ENTRIES:
        del _layout_cache[next(iter(_layout_cache))]


def _jpeg_data_url(image: Image.Image, max_side: int = 1024) -> str:
    img = image.convert("RGB")
    img.thumbnail((max_side, max_side))
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=85)
    return "data:image/jpeg;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


class OpenAILayoutSource(LayoutSource):
    """Vision chat completion proposing mask, boxes, palette and copy ideas."""

    name = "ai"

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        cache_ttl_s: Optional[float] = None,
    ) -> None:
        self.client = client or AsyncOpenAI(api_key=config.OPENAI_API_KEY, timeout=config.LAYOUT_TIMEOUT_S)
        self.model = model or config.LAYOUT_MODEL
        self.temperature = config.LAYOUT_TEMPERATURE if temperature is None else temperature
        self.cache_ttl_s = config.AI_LAYOUT_CACHE_TTL_S if cache_ttl_s is None else cache_ttl_s

    async def _chat_json(self, system: str, user: str, image_url: str) -> Dict[str, Any]:
        chat_args: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": [
                    {"type": "text", "text": user},
                    {"type": "image_url", "image_url": {"url": image_url}},
                ]},
            ],
        }
        # Some models (e.g., gpt-5 family) only support default temperature; omit to avoid 400s
        if not str(self.model).strip().lower().startswith("gpt-5"):
            chat_args["temperature"] = float(self.temperature)
        response = await self.client.chat.completions.create(**chat_args)
        content = (response.choices[0].message.content or "").strip()
        return parse_json_loose(content)

    async def _suggest(self, copy: CreativeCopy, image_url: str) -> Suggestions:
        user = f'seedHeadline: "{copy.headline}" ; seedCTA: "{copy.cta or "Shop Now"}"'
        try:
            raw = await self._chat_json(SUGGEST_SYSTEM_PROMPT, user, image_url)
        except Exception as e:
            logger.warning(f"Copy suggestions unavailable: {e}")
            return Suggestions()
        return sanitize_suggestions(raw)

    async def propose(self, image_bytes: bytes, image: Image.Image, copy: CreativeCopy) -> LayoutResult:
        key = _cache_key(image_bytes, copy, self.model)
        now = perf_counter()
        hit = _layout_cache.get(key)
        if hit and (now - hit[0]) < float(self.cache_ttl_s):
            return hit[1].model_copy(deep=True)

        image_url = _jpeg_data_url(image)
        user = (
            "User input:\n"
            f'- headline: "{copy.headline}"\n'
            f'- subhead: "{copy.subhead or ""}"\n'
            f'- cta: "{copy.cta or "Shop Now"}"\n'
            f'- price: "{copy.price or ""}"\n'
            f'- badge: "{copy.badge or ""}"\n\n'
            "Make choices that look premium/minimal. Keep it balanced for 1080x1080, 1080x1350, 1080x1920."
        )
        t0 = perf_counter()
        try:
            raw, suggestions = await asyncio.gather(
                self._chat_json(LAYOUT_SYSTEM_PROMPT, user, image_url),
                self._suggest(copy, image_url),
            )
        except LayoutSourceError:
            raise
        except Exception as e:
            raise LayoutSourceError(f"layout request failed: {e}") from e

        layout = sanitize_layout(raw)
        layout.suggestions = Suggestions(
            alt_headlines=suggestions.alt_headlines,
            alt_subheads=suggestions.alt_subheads,
            alt_ctas=suggestions.alt_ctas,
            notes=layout.suggestions.notes,
        )
        logger.info(f"AI layout: {[b.id for b in layout.boxes]} mask={layout.mask.type} in {perf_counter()-t0:.2f}s")
        _layout_cache.pop(key, None)
        _layout_cache[key] = (now, layout.model_copy(deep=True))
        _prune_layout_cache(now, float(self.cache_ttl_s))
        return layout


def default_primary_source() -> Optional[LayoutSource]:
    """The configured primary source, or None when AI layout is disabled."""
    if not config.USE_AI_LAYOUT:
        return None
    if not config.OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY not set; AI layout disabled.")
        return None
    return OpenAILayoutSource()


async def propose_with_fallback(
    primary: Optional[LayoutSource],
    fallback: LayoutSource,
    image_bytes: bytes,
    image: Image.Image,
    copy: CreativeCopy,
) -> Tuple[LayoutResult, str]:
    """Try the primary source; on any failure use the fallback.

    Returns the layout and the name of the source that produced it.
    """
    if primary is not None:
        try:
            layout = await primary.propose(image_bytes, image, copy)
            return layout, primary.name
        except Exception as e:
            logger.warning(f"Layout source '{primary.name}' failed, using fallback: {e}")
    return await fallback.propose(image_bytes, image, copy), fallback.name

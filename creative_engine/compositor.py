"""Multi-size / multi-format compositor.

Per canvas: smart cover crop -> resolved boxes -> bands -> background
sampling -> contrast colors -> text fitting -> overlays -> encoding. Every
(size, format) pair is an isolated unit of work; a failure in one is logged and
recorded without touching the others.
"""

import io
import logging
import zipfile
from concurrent.futures import ThreadPoolExecutor
from time import perf_counter
from typing import Dict, List, Sequence, Tuple

from PIL import Image

from .color import WHITE, normalize_hex_color, pick_text_color, sample_region_color
from .config import RENDER_WORKERS
from .crop import smart_cover
from .errors import EncodingError
from .geometry import resolve_boxes
from .layers import TEXT_PAD, render_layer
from .models import (
    MIME_TYPES,
    Artifact,
    CanvasTarget,
    CreativeCopy,
    LayoutResult,
    RenderRequest,
    ResolvedBox,
    TextStyle,
)
from .typesetting import MIN_FONT_SIZE, fit_text

logger = logging.getLogger(__name__)

ARCHIVE_NAME = "bundle.zip"
# Fixed member timestamp keeps archives byte-identical across runs
ARCHIVE_DATE_TIME = (1980, 1, 1, 0, 0, 0)

DEFAULT_FONT_SIZES: Dict[str, float] = {
    "headline": 40,
    "subhead": 22,
    "cta": 22,
    "price": 28,
    "badge": 18,
}
DEFAULT_WEIGHTS: Dict[str, int] = {
    "headline": 800,
    "subhead": 500,
    "cta": 600,
    "price": 700,
    "badge": 700,
}
DEFAULT_MAX_LINES = 2


def finalize_box(rb: ResolvedBox, text: str, background: str) -> ResolvedBox:
    """Fill in colors, wrapped lines and font size for one text box."""
    style = rb.box.style
    fore = pick_text_color(background)
    base_fs = rb.box.font_size or DEFAULT_FONT_SIZES.get(rb.id, 22)
    updates = {
        "font_weight": style.font_weight or DEFAULT_WEIGHTS.get(rb.id, 600),
        "letter_spacing": style.letter_spacing or 0.0,
        "max_lines": style.max_lines or DEFAULT_MAX_LINES,
    }

    if rb.id in ("cta", "badge"):
        # Pill label reads against its own fill, not the photo
        bg = normalize_hex_color(style.bg) or ("#111111" if fore == WHITE else "#ffffff")
        updates.update(bg=bg, color=pick_text_color(bg))
        final_style = style.model_copy(update=updates)
        return rb.model_copy(update={"style": final_style, "lines": [text], "font_size": base_fs})

    updates["color"] = fore
    final_style = style.model_copy(update=updates)
    fitted = fit_text(
        text,
        max(1, rb.rect.w - TEXT_PAD * 2),
        base_fs,
        final_style,
        min_font=MIN_FONT_SIZE,
        max_lines=final_style.max_lines,
        max_height=rb.rect.h,
    )
    return rb.model_copy(update={"style": final_style, "lines": fitted.lines, "font_size": fitted.font_size})


def _band_box(rb: ResolvedBox, layout: LayoutResult) -> ResolvedBox:
    bg = normalize_hex_color(rb.box.style.bg) or normalize_hex_color(layout.palette.primary) or "#111111"
    return rb.model_copy(update={"style": TextStyle(bg=bg)})


def _paste(canvas: Image.Image, rb: ResolvedBox) -> None:
    canvas.alpha_composite(render_layer(rb), dest=(rb.rect.x, rb.rect.y))


def compose_size(image: Image.Image, layout: LayoutResult, copy: CreativeCopy, canvas: CanvasTarget) -> Tuple[Image.Image, List[ResolvedBox]]:
    """Composite every layer for one canvas size; returns the RGBA image and final boxes."""
    t0 = perf_counter()
    base = smart_cover(image, canvas.width, canvas.height).convert("RGBA")
    resolved = [rb for rb in resolve_boxes(layout, canvas) if not rb.hidden]

    # Decorative bands are part of the base composite that text is sampled against
    for rb in resolved:
        if rb.id == "band":
            _paste(base, _band_box(rb, layout))

    finals: List[ResolvedBox] = []
    for rb in resolved:
        if rb.id == "band":
            continue
        text = copy.text_for(rb.id)
        if not text:
            continue
        background = sample_region_color(base, rb.rect)
        finals.append(finalize_box(rb, text, background))

    for rb in finals:
        _paste(base, rb)

    logger.info(f"compose: {canvas.name} {canvas.width}x{canvas.height} with {len(finals)} text layer(s) in {perf_counter()-t0:.2f}s")
    return base, finals


def encode_image(image: Image.Image, fmt: str, quality: int) -> bytes:
    """Encode with PNG lossless and JPEG/WebP/AVIF lossy at the shared quality."""
    buf = io.BytesIO()
    rgb = image.convert("RGB")
    if fmt == "png":
        rgb.save(buf, format="PNG")
    elif fmt == "jpeg":
        rgb.save(buf, format="JPEG", quality=quality)
    elif fmt == "webp":
        rgb.save(buf, format="WEBP", quality=quality, method=4)
    elif fmt == "avif":
        rgb.save(buf, format="AVIF", quality=quality)
    else:
        raise EncodingError(fmt, "unsupported format")
    return buf.getvalue()


def artifact_name(canvas: CanvasTarget, fmt: str) -> str:
    return f"{canvas.name}.{fmt}"


def render_size_formats(
    image: Image.Image,
    layout: LayoutResult,
    request: RenderRequest,
    canvas: CanvasTarget,
) -> Tuple[List[Artifact], List[str]]:
    """Compose one size and encode it in every requested format."""
    composed, _ = compose_size(image, layout, request.copy_text, canvas)
    artifacts: List[Artifact] = []
    failures: List[str] = []
    for fmt in request.formats:
        name = artifact_name(canvas, fmt)
        try:
            data = encode_image(composed, fmt, request.quality)
        except (EncodingError, OSError, KeyError, ValueError) as e:
            logger.error(f"Encoding {name} failed: {e}")
            failures.append(f"{name}: {e}")
            continue
        artifacts.append(Artifact(name=name, mime_type=MIME_TYPES[fmt], data=data))
    return artifacts, failures


def build_archive(artifacts: Sequence[Artifact]) -> Artifact:
    """Bundle every artifact into one deflated zip."""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=6) as zf:
        for a in artifacts:
            info = zipfile.ZipInfo(a.name, date_time=ARCHIVE_DATE_TIME)
            info.compress_type = zipfile.ZIP_DEFLATED
            info.external_attr = 0o644 << 16
            zf.writestr(info, a.data, compresslevel=6)
    return Artifact(name=ARCHIVE_NAME, mime_type=MIME_TYPES["zip"], data=buf.getvalue())


def render_all(image: Image.Image, layout: LayoutResult, request: RenderRequest) -> Tuple[List[Artifact], List[str]]:
    """Render every (size, format) unit plus the archive.

    Returns (artifacts, failures). Artifacts follow request order: sizes, then
    formats within a size, then the archive last.
    """
    t0 = perf_counter()
    image.load()
    artifacts: List[Artifact] = []
    failures: List[str] = []

    workers = max(1, min(RENDER_WORKERS, len(request.sizes)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="render") as pool:
        futures = [pool.submit(render_size_formats, image, layout, request, canvas) for canvas in request.sizes]
        for canvas, fut in zip(request.sizes, futures):
            try:
                arts, fails = fut.result()
            except Exception as e:
                # One size failing must not abort the others
                logger.exception(f"Rendering size {canvas.name} failed")
                failures.extend(f"{artifact_name(canvas, fmt)}: {e}" for fmt in request.formats)
                continue
            artifacts.extend(arts)
            failures.extend(fails)

    if artifacts:
        try:
            artifacts.append(build_archive(artifacts))
        except (OSError, ValueError, zipfile.BadZipFile) as e:
            logger.error(f"Archiving failed: {e}")
            failures.append(f"{ARCHIVE_NAME}: {e}")

    logger.info(f"render_all: {len(artifacts)} artifact(s), {len(failures)} failure(s) in {perf_counter()-t0:.2f}s")
    return artifacts, failures

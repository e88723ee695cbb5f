"""Request entry point: validate inputs, obtain a layout, render, package."""

import asyncio
import io
import logging
from time import perf_counter
from typing import Optional

from PIL import Image, ImageOps, UnidentifiedImageError

from .compositor import render_all
from .errors import InvalidImageError, MissingInputError, PipelineError
from .layout_source import FallbackLayoutSource, LayoutSource, default_primary_source, propose_with_fallback
from .models import CreativeResult, LayoutResult, RenderRequest

logger = logging.getLogger(__name__)


def decode_image(image_bytes: bytes) -> Image.Image:
    """Decode an image payload into an upright RGB image."""
    try:
        with Image.open(io.BytesIO(image_bytes)) as im:
            im = ImageOps.exif_transpose(im)
            rgb = im.convert("RGB")
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise InvalidImageError(f"Could not decode image: {e}") from e
    if rgb.width == 0 or rgb.height == 0:
        raise InvalidImageError("Image has no pixels")
    return rgb


async def generate_creatives(
    image_bytes: Optional[bytes],
    request: RenderRequest,
    *,
    layout: Optional[LayoutResult] = None,
    primary: Optional[LayoutSource] = None,
    fallback: Optional[LayoutSource] = None,
    use_ai: bool = True,
) -> CreativeResult:
    """Produce one artifact per (size, format) plus the archive.

    `layout` skips the layout sources entirely. Otherwise `primary` (default:
    the configured AI source when `use_ai`) is tried and `fallback` substitutes
    on failure. Raises MissingInputError, InvalidImageError or PipelineError.
    """
    t0 = perf_counter()
    if not image_bytes:
        raise MissingInputError("No image provided")
    if not request.copy_text.headline:
        raise MissingInputError("No headline text provided")

    image = await asyncio.to_thread(decode_image, image_bytes)
    logger.info(f"generate: image {image.width}x{image.height}, sizes={[s.name for s in request.sizes]}, formats={request.formats}")

    if layout is not None:
        source = "provided"
    else:
        if primary is None and use_ai:
            primary = default_primary_source()
        layout, source = await propose_with_fallback(
            primary if use_ai else None,
            fallback or FallbackLayoutSource(),
            image_bytes,
            image,
            request.copy_text,
        )
    logger.info(f"generate: layout from {source} with {len(layout.boxes)} box(es)")

    artifacts, failures = await asyncio.to_thread(render_all, image, layout, request)
    if not artifacts:
        raise PipelineError(f"No artifacts produced ({len(failures)} failure(s)): {'; '.join(failures)[:500]}")

    logger.info(f"generate: success total_elapsed={perf_counter()-t0:.2f}s")
    return CreativeResult(
        artifacts=artifacts,
        suggestions=layout.suggestions,
        layout_source=source,
        failures=failures,
    )


def generate_creatives_sync(image_bytes: Optional[bytes], request: RenderRequest, **kwargs) -> CreativeResult:
    return asyncio.run(generate_creatives(image_bytes, request, **kwargs))

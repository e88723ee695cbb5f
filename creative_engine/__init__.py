"""
Creative composition engine: multi-size ad creatives from one product photo.

Modules:
  models         - Canvas, mask, layout box, artifact and request/result models
  geometry       - Percent -> pixel boxes, mask avoidance, collision resolution
  color          - Background sampling, contrast color selection, palettes
  typesetting    - Approximate text measurement and wrap-and-shrink fitting
  layers         - SVG overlays (text, CTA pill, band) rasterized with CairoSVG
  crop           - Saliency-driven cover crop
  layout_source  - OpenAI layout proposals with a deterministic local fallback
  compositor     - Per-size composition, multi-format encoding, zip bundle
  pipeline       - Request entry point
"""

from .errors import (
    CreativeEngineError,
    InvalidImageError,
    MissingInputError,
    PipelineError,
)
from .models import (
    Artifact,
    CanvasTarget,
    CreativeCopy,
    CreativeResult,
    LayoutBox,
    LayoutResult,
    ProductMask,
    RenderRequest,
)
from .pipeline import generate_creatives, generate_creatives_sync

__all__ = [
    "Artifact",
    "CanvasTarget",
    "CreativeCopy",
    "CreativeEngineError",
    "CreativeResult",
    "InvalidImageError",
    "LayoutBox",
    "LayoutResult",
    "MissingInputError",
    "PipelineError",
    "ProductMask",
    "RenderRequest",
    "generate_creatives",
    "generate_creatives_sync",
]

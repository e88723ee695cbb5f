"""
Command-line entry point: render creatives for a product photo into a folder.
"""

import argparse
import json
import logging
import pathlib
import sys
from typing import List, Optional

from pydantic import ValidationError

from . import config
from .errors import InvalidImageError, MissingInputError, PipelineError
from .models import CanvasTarget, CreativeCopy, LayoutResult, RenderRequest
from .pipeline import generate_creatives_sync

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="creative-engine",
        description="Compose ad creatives at several sizes and formats from one product photo.",
    )
    parser.add_argument("image", type=pathlib.Path, help="Product photo (any format Pillow reads)")
    parser.add_argument("--headline", required=True)
    parser.add_argument("--subhead")
    parser.add_argument("--cta", default="Shop Now")
    parser.add_argument("--price")
    parser.add_argument("--badge")
    parser.add_argument(
        "--size", dest="sizes", action="append", default=None,
        help="Preset (square, portrait, story, landscape) or WxH[:name]; repeatable",
    )
    parser.add_argument(
        "--format", dest="formats", action="append", default=None,
        choices=["png", "jpeg", "jpg", "webp", "avif"], help="Output format; repeatable",
    )
    parser.add_argument("--quality", type=int, default=config.DEFAULT_QUALITY, help="Lossy quality 50-100")
    parser.add_argument("--layout", type=pathlib.Path, help="Use this layout JSON instead of asking a layout source")
    parser.add_argument("--no-ai", action="store_true", help="Skip the AI layout source; use the local fallback")
    parser.add_argument("--out", type=pathlib.Path, default=pathlib.Path("creatives"), help="Output directory")
    parser.add_argument("--log-level", default="", help="Logging level (default from LOG_LEVEL)")
    return parser.parse_args(argv)


def build_request(args: argparse.Namespace) -> RenderRequest:
    sizes = [CanvasTarget.parse(s) for s in (args.sizes or ["square"])]
    return RenderRequest(
        copy=CreativeCopy(
            headline=args.headline,
            subhead=args.subhead,
            cta=args.cta,
            price=args.price,
            badge=args.badge,
        ),
        sizes=sizes,
        formats=args.formats or ["png"],
        quality=args.quality,
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    config.configure_logging(args.log_level)

    try:
        request = build_request(args)
        layout = None
        if args.layout:
            layout = LayoutResult.model_validate_json(args.layout.read_text(encoding="utf-8"))
    except (ValueError, ValidationError) as e:
        logger.error(f"Invalid arguments: {e}")
        return 2

    try:
        image_bytes = args.image.read_bytes()
    except OSError as e:
        logger.error(f"Cannot read image {args.image}: {e}")
        return 2

    try:
        result = generate_creatives_sync(image_bytes, request, layout=layout, use_ai=not args.no_ai)
    except (MissingInputError, InvalidImageError) as e:
        logger.error(str(e))
        return 2
    except PipelineError as e:
        logger.error(str(e))
        return 1

    args.out.mkdir(parents=True, exist_ok=True)
    for artifact in result.artifacts:
        (args.out / artifact.name).write_bytes(artifact.data)

    summary = {
        "layout_source": result.layout_source,
        "artifacts": [
            {"name": a.name, "mime_type": a.mime_type, "bytes": len(a.data)} for a in result.artifacts
        ],
        "failures": result.failures,
        "suggestions": result.suggestions.model_dump(),
    }
    json.dump(summary, sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())

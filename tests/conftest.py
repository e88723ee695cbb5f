"""
Pytest configuration for local imports and shared fixtures.
"""

import io
import os
import sys

import numpy as np
import pytest
from PIL import Image


def _ensure_repo_on_path() -> None:
    """
    Ensure the repository root is on sys.path.
    """
    repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    if repo_root not in sys.path:
        sys.path.insert(0, repo_root)


_ensure_repo_on_path()


def _cairo_available() -> bool:
    try:
        import cairosvg  # noqa: F401
    except (ImportError, OSError):
        return False
    return True


requires_cairo = pytest.mark.skipif(not _cairo_available(), reason="native cairo library not available")


def make_product_photo(width: int = 640, height: int = 480) -> Image.Image:
    """Light studio backdrop with a dark 'product' block right of center."""
    arr = np.full((height, width, 3), 235, dtype=np.uint8)
    arr[height // 4: height * 3 // 4, width // 2: width * 5 // 6] = (30, 60, 120)
    return Image.fromarray(arr, "RGB")


@pytest.fixture
def photo() -> Image.Image:
    return make_product_photo()


@pytest.fixture
def photo_bytes(photo: Image.Image) -> bytes:
    buf = io.BytesIO()
    photo.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture(autouse=True)
def _fresh_layout_cache():
    from creative_engine.layout_source import clear_layout_cache

    clear_layout_cache()
    yield
    clear_layout_cache()

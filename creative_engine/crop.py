"""Content-aware cover crop.

The base photo is scaled to cover the canvas, then the crop window slides
along the overflowing axis to the position holding the most saliency
(spectral residual + edge energy) instead of a naive center crop.
"""

import logging
from typing import Tuple

import cv2
import numpy as np
from PIL import Image

from .geometry import round_half_up

logger = logging.getLogger(__name__)

# Saliency is computed on a downscaled copy with this longest side
SALIENCY_MAX_SIDE = 256
# Windows scoring within this fraction of the best are treated as ties
TIE_TOLERANCE = 0.02


def _spectral_residual(gray: np.ndarray) -> np.ndarray:
    """Spectral residual saliency on a grayscale float image."""
    scale = min(1.0, 64.0 / max(gray.shape))
    small = cv2.resize(gray, None, fx=scale, fy=scale, interpolation=cv2.INTER_AREA)

    f = np.fft.fft2(small)
    log_amplitude = np.log(np.abs(f) + 1e-6)
    phase = np.angle(f)
    # Spectral residual (difference from average)
    residual = log_amplitude - cv2.blur(log_amplitude, (3, 3))

    saliency = np.abs(np.fft.ifft2(np.exp(residual + 1j * phase))) ** 2
    saliency = cv2.GaussianBlur(saliency.astype(np.float32), (0, 0), 3)
    return cv2.resize(saliency, (gray.shape[1], gray.shape[0]))


def _edge_energy(gray: np.ndarray) -> np.ndarray:
    sobel_x = cv2.Sobel(gray, cv2.CV_32F, 1, 0, ksize=3)
    sobel_y = cv2.Sobel(gray, cv2.CV_32F, 0, 1, ksize=3)
    return np.sqrt(sobel_x ** 2 + sobel_y ** 2)


def _normalized(m: np.ndarray) -> np.ndarray:
    lo, hi = float(m.min()), float(m.max())
    if hi - lo < 1e-9:
        return np.zeros_like(m, dtype=np.float32)
    return ((m - lo) / (hi - lo)).astype(np.float32)


def saliency_map(image: Image.Image) -> np.ndarray:
    """Saliency in [0, 1] with the image's (height, width) shape."""
    gray = np.asarray(image.convert("L"), dtype=np.float32)
    combined = 0.6 * _normalized(_spectral_residual(gray)) + 0.4 * _normalized(_edge_energy(gray))
    return _normalized(combined)


def best_window(profile: np.ndarray, window: int) -> int:
    """Start index of the `window`-long slice of `profile` with the largest sum.

    Near-ties resolve to the slice closest to the center.
    """
    n = len(profile)
    if window >= n:
        return 0
    csum = np.concatenate(([0.0], np.cumsum(profile, dtype=np.float64)))
    scores = csum[window:] - csum[:-window]
    best = float(scores.max())
    center = (n - window) / 2.0
    if best <= 0:
        return int(round_half_up(center))
    candidates = np.flatnonzero(scores >= best * (1.0 - TIE_TOLERANCE))
    return int(min(candidates, key=lambda i: (abs(i - center), i)))


def crop_offset(image: Image.Image, width: int, height: int) -> Tuple[int, int]:
    """Top-left offset of the most salient width x height window in `image`."""
    if image.width <= width and image.height <= height:
        return 0, 0
    ratio = min(1.0, SALIENCY_MAX_SIDE / float(max(image.width, image.height)))
    small_w = max(1, round_half_up(image.width * ratio))
    small_h = max(1, round_half_up(image.height * ratio))
    small = image.resize((small_w, small_h), Image.Resampling.BILINEAR)
    sal = saliency_map(small)

    if image.width > width:
        window = max(1, round_half_up(width * small_w / float(image.width)))
        start = best_window(sal.sum(axis=0), window)
        ox = round_half_up(start * image.width / float(small_w))
        return max(0, min(ox, image.width - width)), 0
    window = max(1, round_half_up(height * small_h / float(image.height)))
    start = best_window(sal.sum(axis=1), window)
    oy = round_half_up(start * image.height / float(small_h))
    return 0, max(0, min(oy, image.height - height))


def smart_cover(image: Image.Image, width: int, height: int) -> Image.Image:
    """Resize to exactly fill width x height, cropping around the salient region."""
    img = image.convert("RGB")
    scale = max(width / float(img.width), height / float(img.height))
    new_w = max(width, round_half_up(img.width * scale))
    new_h = max(height, round_half_up(img.height * scale))
    resized = img.resize((new_w, new_h), Image.Resampling.LANCZOS)
    if (new_w, new_h) == (width, height):
        return resized
    ox, oy = crop_offset(resized, width, height)
    logger.debug(f"smart_cover: {img.width}x{img.height} -> {new_w}x{new_h}, crop at ({ox},{oy})")
    return resized.crop((ox, oy, ox + width, oy + height))

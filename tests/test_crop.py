import numpy as np
import pytest
from PIL import Image

from conftest import make_product_photo

from creative_engine.crop import best_window, crop_offset, saliency_map, smart_cover


def test_best_window_finds_peak():
    profile = np.array([0, 0, 0, 5, 5, 0, 0, 0, 0, 0], dtype=np.float64)
    assert best_window(profile, 2) == 3


def test_best_window_ties_go_to_center():
    assert best_window(np.ones(10), 4) == 3
    assert best_window(np.zeros(10), 4) == 3


def test_best_window_larger_than_profile():
    assert best_window(np.ones(5), 8) == 0


def test_saliency_map_shape_and_range():
    img = make_product_photo(200, 120)
    sal = saliency_map(img)
    assert sal.shape == (120, 200)
    assert float(sal.min()) >= 0.0
    assert float(sal.max()) <= 1.0


@pytest.mark.parametrize("size", [(1080, 1080), (1080, 1920), (1920, 1080), (300, 301)])
def test_smart_cover_returns_exact_size(size):
    out = smart_cover(make_product_photo(640, 480), *size)
    assert out.size == size
    assert out.mode == "RGB"


def test_crop_keeps_salient_object():
    arr = np.full((100, 400, 3), 240, dtype=np.uint8)
    arr[30:70, 300:340] = 0
    img = Image.fromarray(arr, "RGB")
    ox, oy = crop_offset(img, 100, 100)
    assert oy == 0
    assert ox <= 320 <= ox + 100


def test_no_crop_needed():
    img = make_product_photo(100, 100)
    assert crop_offset(img, 100, 100) == (0, 0)

import pytest
from pydantic import ValidationError

from creative_engine.models import (
    CanvasTarget,
    CreativeCopy,
    LayoutBox,
    LayoutResult,
    Rect,
    RenderRequest,
)


def test_canvas_presets_and_custom_sizes():
    assert CanvasTarget.parse("story") == CanvasTarget(width=1080, height=1920, name="story")
    assert CanvasTarget.parse("Square").width == 1080
    assert CanvasTarget.parse("728x90") == CanvasTarget(width=728, height=90, name="728x90")
    assert CanvasTarget.parse("300x250:mrec").name == "mrec"


@pytest.mark.parametrize("spec", ["", "huge", "10x", "0x100"])
def test_canvas_parse_rejects_bad_specs(spec):
    with pytest.raises(ValueError):
        CanvasTarget.parse(spec)


def test_layout_box_clamps_percentages_and_rotation():
    box = LayoutBox(id="headline", x=-5, y=150, w=float("nan"), h="12.5", rotate=-90)
    assert (box.x, box.y, box.w, box.h) == (0, 100, 0, 12.5)
    assert box.rotate == 270


def test_layout_box_rejects_non_numbers():
    with pytest.raises(ValidationError):
        LayoutBox(id="headline", x="left", y=0, w=10, h=10)
    with pytest.raises(ValidationError):
        LayoutBox(id="logo", x=0, y=0, w=10, h=10)


def test_layout_result_round_trips_json():
    layout = LayoutResult.model_validate_json(
        '{"mask": {"type": "polygon", "points": [{"x": 1, "y": 2}, {"x": 3, "y": 4}, {"x": 5, "y": 6}]},'
        ' "boxes": [{"id": "headline", "x": 6, "y": 6, "w": 88, "h": 16, "font_size": 48}]}'
    )
    assert layout.mask.type == "polygon"
    assert layout.boxes[0].font_size == 48
    assert layout.palette.primary == "#0b0b12"


def test_rect_intersection_needs_positive_area():
    a = Rect(x=0, y=0, w=10, h=10)
    assert a.intersects(Rect(x=5, y=5, w=10, h=10))
    assert not a.intersects(Rect(x=10, y=0, w=10, h=10))
    assert not a.intersects(Rect(x=5, y=5, w=0, h=10))


def test_copy_text_lookup():
    copy = CreativeCopy(headline="  Big Sale ", price="$19")
    assert copy.headline == "Big Sale"
    assert copy.text_for("headline") == "Big Sale"
    assert copy.text_for("cta") == "Shop Now"
    assert copy.text_for("subhead") == ""
    assert copy.text_for("band") == ""


def test_render_request_normalizes_formats():
    req = RenderRequest(
        copy=CreativeCopy(headline="Hi"),
        sizes=[CanvasTarget.parse("square")],
        formats=["PNG", "jpg", "jpeg", "webp"],
    )
    assert req.formats == ["png", "jpeg", "webp"]
    assert req.quality == 85


def test_render_request_validation():
    copy = CreativeCopy(headline="Hi")
    with pytest.raises(ValidationError):
        RenderRequest(copy=copy, sizes=[])
    with pytest.raises(ValidationError):
        RenderRequest(copy=copy, sizes=[CanvasTarget.parse("square")], quality=40)
    with pytest.raises(ValidationError):
        RenderRequest(copy=copy, sizes=[CanvasTarget.parse("square")], formats=["gif"])
    with pytest.raises(ValidationError):
        RenderRequest(copy=copy, sizes=[CanvasTarget.parse("square"), CanvasTarget.parse("1080x1080:square")])

import io
import zipfile

import pytest
from PIL import Image

from conftest import requires_cairo

from creative_engine import compositor
from creative_engine.color import NEAR_BLACK, WHITE, contrast_ratio, pick_text_color
from creative_engine.compositor import (
    ARCHIVE_NAME,
    build_archive,
    compose_size,
    encode_image,
    finalize_box,
    render_all,
)
from creative_engine.errors import EncodingError
from creative_engine.geometry import resolve_boxes
from creative_engine.layout_source import fallback_layout
from creative_engine.models import Artifact, CanvasTarget, CreativeCopy, LayoutBox, LayoutResult, ProductMask, Rect, RenderRequest, ResolvedBox


def _resolved(box_id, rect, **style):
    box = LayoutBox(id=box_id, x=0, y=0, w=50, h=10, font_size=40, style=style)
    return ResolvedBox(box=box, order=0, rect=rect, style=box.style)


def test_text_color_follows_sampled_background():
    rb = _resolved("headline", Rect(x=0, y=0, w=600, h=120), color="#ffffff")
    assert finalize_box(rb, "Hello", "#fafafa").style.color == NEAR_BLACK
    assert finalize_box(rb, "Hello", "#101010").style.color == WHITE


def test_text_is_fitted_inside_box():
    rb = _resolved("headline", Rect(x=0, y=0, w=300, h=60))
    final = finalize_box(rb, "An unusually long headline for a small box", "#ffffff")
    assert final.font_size <= 40
    assert len(final.lines) <= 2
    assert final.box == rb.box


def test_pill_label_reads_against_pill_fill():
    rb = _resolved("cta", Rect(x=0, y=0, w=300, h=80), bg="#ffcc00", color="#ffffff")
    final = finalize_box(rb, "Shop Now", "#000000")
    assert final.style.bg == "#ffcc00"
    assert final.style.color == pick_text_color("#ffcc00")
    assert final.lines == ["Shop Now"]

    plain = finalize_box(_resolved("badge", Rect(x=0, y=0, w=100, h=40)), "New", "#000000")
    assert plain.style.bg == "#111111"
    assert contrast_ratio(plain.style.bg, plain.style.color) >= 4.5


@pytest.mark.parametrize(
    "fmt,offset,magic",
    [("png", 0, b"\x89PNG"), ("jpeg", 0, b"\xff\xd8"), ("webp", 0, b"RIFF"), ("avif", 4, b"ftyp")],
)
def test_encode_image_formats(fmt, offset, magic):
    img = Image.new("RGBA", (32, 24), (200, 100, 50, 255))
    data = encode_image(img, fmt, 80)
    assert data[offset:offset + len(magic)] == magic
    with Image.open(io.BytesIO(data)) as decoded:
        assert decoded.size == (32, 24)


def test_encode_image_unknown_format():
    with pytest.raises(EncodingError):
        encode_image(Image.new("RGB", (4, 4)), "gif", 80)


def test_archive_is_deterministic():
    artifacts = [
        Artifact(name="square.png", mime_type="image/png", data=b"png-bytes" * 100),
        Artifact(name="square.jpeg", mime_type="image/jpeg", data=b"jpeg-bytes" * 100),
    ]
    first = build_archive(artifacts)
    second = build_archive(artifacts)
    assert first.name == ARCHIVE_NAME
    assert first.mime_type == "application/zip"
    assert first.data == second.data
    with zipfile.ZipFile(io.BytesIO(first.data)) as zf:
        assert zf.namelist() == ["square.png", "square.jpeg"]
        assert zf.read("square.jpeg") == artifacts[1].data
        assert all(info.compress_type == zipfile.ZIP_DEFLATED for info in zf.infolist())


def test_failed_size_does_not_stop_others(monkeypatch, photo):
    real = compositor.render_size_formats

    def flaky(image, layout, request, canvas):
        if canvas.name == "broken":
            raise RuntimeError("boom")
        return real(image, layout, request, canvas)

    def fake_compose(image, layout, copy, canvas):
        return Image.new("RGBA", (canvas.width, canvas.height), (255, 255, 255, 255)), []

    monkeypatch.setattr(compositor, "render_size_formats", flaky)
    monkeypatch.setattr(compositor, "compose_size", fake_compose)
    request = RenderRequest(
        copy=CreativeCopy(headline="Hi"),
        sizes=[CanvasTarget(width=120, height=80, name="ok"), CanvasTarget(width=80, height=80, name="broken")],
        formats=["png", "jpeg"],
    )
    layout = fallback_layout(photo, request.copy_text)
    artifacts, failures = render_all(photo, layout, request)
    assert [a.name for a in artifacts] == ["ok.png", "ok.jpeg", ARCHIVE_NAME]
    assert len(failures) == 2
    assert all(f.startswith("broken.") for f in failures)


def test_failed_format_does_not_stop_others(monkeypatch, photo):
    real_encode = compositor.encode_image

    def picky(image, fmt, quality):
        if fmt == "webp":
            raise EncodingError(fmt, "encoder missing")
        return real_encode(image, fmt, quality)

    def fake_compose(image, layout, copy, canvas):
        return Image.new("RGBA", (canvas.width, canvas.height), (0, 0, 0, 255)), []

    monkeypatch.setattr(compositor, "encode_image", picky)
    monkeypatch.setattr(compositor, "compose_size", fake_compose)
    request = RenderRequest(
        copy=CreativeCopy(headline="Hi"),
        sizes=[CanvasTarget(width=64, height=64, name="a"), CanvasTarget(width=32, height=64, name="b")],
        formats=["png", "webp"],
    )
    artifacts, failures = render_all(photo, fallback_layout(photo, request.copy_text), request)
    assert [a.name for a in artifacts] == ["a.png", "b.png", ARCHIVE_NAME]
    assert sorted(failures) == ["a.webp: webp: encoder missing", "b.webp: webp: encoder missing"]


@requires_cairo
def test_compose_size_contrast_and_geometry(photo):
    copy = CreativeCopy(headline="Summer Collection", subhead="Light layers for warm days", cta="Shop Now", price="$49")
    layout = fallback_layout(photo, copy)
    canvas = CanvasTarget.parse("portrait")
    image, finals = compose_size(photo, layout, copy, canvas)
    assert image.size == (1080, 1350)
    assert {rb.id for rb in finals} == {"headline", "subhead", "cta", "price"}
    for rb in finals:
        if rb.id not in ("cta", "badge"):
            assert rb.style.color in (WHITE, NEAR_BLACK)
    geometry = {rb.id: rb.rect for rb in resolve_boxes(layout, canvas)}
    assert {rb.id: rb.rect for rb in finals} == {k: geometry[k] for k in ("headline", "subhead", "cta", "price")}


@requires_cairo
def test_band_is_drawn_under_text(photo):
    layout = LayoutResult(
        mask=ProductMask(type="bbox", x=60, y=60, w=30, h=30),
        boxes=[
            LayoutBox(id="band", x=0, y=0, w=100, h=30, style={"bg": "#ffffff"}),
            LayoutBox(id="headline", x=5, y=5, w=90, h=20),
        ],
    )
    copy = CreativeCopy(headline="On white")
    _, finals = compose_size(photo, layout, copy, CanvasTarget(width=400, height=400, name="sq"))
    assert [rb.id for rb in finals] == ["headline"]
    assert finals[0].style.color == NEAR_BLACK

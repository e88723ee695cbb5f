import asyncio
import io
import zipfile

import pytest
from PIL import Image

from conftest import requires_cairo

from creative_engine import compositor
from creative_engine.errors import InvalidImageError, LayoutSourceError, MissingInputError, PipelineError
from creative_engine.layout_source import LayoutSource
from creative_engine.models import CanvasTarget, CreativeCopy, LayoutBox, LayoutResult, ProductMask, RenderRequest
from creative_engine.pipeline import decode_image, generate_creatives, generate_creatives_sync


class _BrokenAI(LayoutSource):
    name = "ai"

    async def propose(self, image_bytes, image, copy):
        raise LayoutSourceError("timeout")


def _request(**overrides) -> RenderRequest:
    params = {
        "copy": CreativeCopy(headline="Fresh Roast", subhead="Small batch beans", cta="Order Now"),
        "sizes": [CanvasTarget(width=400, height=400, name="sq"), CanvasTarget(width=300, height=500, name="tall")],
        "formats": ["png", "jpeg"],
        "quality": 80,
    }
    params.update(overrides)
    return RenderRequest(**params)


def test_missing_image_is_rejected():
    with pytest.raises(MissingInputError):
        generate_creatives_sync(None, _request(), use_ai=False)
    with pytest.raises(MissingInputError):
        generate_creatives_sync(b"", _request(), use_ai=False)


def test_missing_headline_is_rejected(photo_bytes):
    request = _request(copy=CreativeCopy(headline="   "))
    with pytest.raises(MissingInputError):
        generate_creatives_sync(photo_bytes, request, use_ai=False)


def test_undecodable_image_is_rejected():
    with pytest.raises(InvalidImageError):
        generate_creatives_sync(b"definitely not an image", _request(), use_ai=False)


def test_decode_image_respects_exif_orientation():
    img = Image.new("RGB", (40, 20), (10, 200, 10))
    exif = Image.Exif()
    exif[0x0112] = 6  # rotate 90 CW on display
    buf = io.BytesIO()
    img.save(buf, format="JPEG", exif=exif.tobytes())
    decoded = decode_image(buf.getvalue())
    assert decoded.size == (20, 40)
    assert decoded.mode == "RGB"


def test_zero_artifacts_is_a_pipeline_error(monkeypatch, photo_bytes):
    def always_fails(image, layout, copy, canvas):
        raise RuntimeError("renderer down")

    monkeypatch.setattr(compositor, "compose_size", always_fails)
    with pytest.raises(PipelineError):
        generate_creatives_sync(photo_bytes, _request(), use_ai=False)


@requires_cairo
def test_full_run_produces_every_unit_and_archive(photo_bytes):
    result = asyncio.run(generate_creatives(photo_bytes, _request(), primary=_BrokenAI()))
    assert result.names() == ["sq.png", "sq.jpeg", "tall.png", "tall.jpeg", "bundle.zip"]
    assert result.layout_source == "fallback"
    assert result.failures == []
    assert [a.mime_type for a in result.artifacts] == [
        "image/png", "image/jpeg", "image/png", "image/jpeg", "application/zip",
    ]
    with Image.open(io.BytesIO(result.artifacts[2].data)) as tall:
        assert tall.size == (300, 500)
    with zipfile.ZipFile(io.BytesIO(result.artifacts[-1].data)) as zf:
        assert zf.namelist() == result.names()[:-1]
        for a in result.artifacts[:-1]:
            assert zf.read(a.name) == a.data


@requires_cairo
def test_runs_are_byte_identical(photo_bytes):
    first = generate_creatives_sync(photo_bytes, _request(), use_ai=False)
    second = generate_creatives_sync(photo_bytes, _request(), use_ai=False)
    assert first.names() == second.names()
    for a, b in zip(first.artifacts, second.artifacts):
        if a.name.endswith((".png", ".zip")):
            assert a.data == b.data, a.name


@requires_cairo
def test_provided_layout_skips_sources(photo_bytes):
    layout = LayoutResult(
        mask=ProductMask(type="bbox", x=40, y=40, w=50, h=50),
        boxes=[LayoutBox(id="headline", x=5, y=5, w=90, h=20, font_size=36)],
    )
    result = generate_creatives_sync(
        photo_bytes, _request(formats=["png"]), layout=layout, primary=_BrokenAI()
    )
    assert result.layout_source == "provided"
    assert result.names() == ["sq.png", "tall.png", "bundle.zip"]

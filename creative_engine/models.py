import math
import re
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

BoxId = Literal["headline", "subhead", "cta", "price", "badge", "band"]
Align = Literal["left", "center", "right"]
ImageFormat = Literal["png", "jpeg", "webp", "avif"]

BOX_IDS = ("headline", "subhead", "cta", "price", "badge", "band")

# Common ad canvases
SIZE_PRESETS: Dict[str, Dict[str, int]] = {
    "square": {"width": 1080, "height": 1080},
    "portrait": {"width": 1080, "height": 1350},
    "story": {"width": 1080, "height": 1920},
    "landscape": {"width": 1920, "height": 1080},
}

MIME_TYPES: Dict[str, str] = {
    "png": "image/png",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
    "avif": "image/avif",
    "zip": "application/zip",
}


def _pct(v: Any) -> float:
    """Coerce a percentage coordinate into [0, 100]; NaN/inf collapse to 0."""
    try:
        f = float(v)
    except (TypeError, ValueError):
        raise ValueError(f"not a number: {v!r}")
    if f != f or f in (float("inf"), float("-inf")):
        return 0.0
    return max(0.0, min(100.0, f))


class CanvasTarget(BaseModel):
    model_config = {"frozen": True}

    width: int = Field(gt=0, le=8192)
    height: int = Field(gt=0, le=8192)
    name: str = Field(min_length=1)

    @classmethod
    def parse(cls, spec: str) -> "CanvasTarget":
        """Build a canvas from a preset name ('story') or 'WxH[:name]'."""
        s = (spec or "").strip().lower()
        if s in SIZE_PRESETS:
            return cls(name=s, **SIZE_PRESETS[s])
        m = re.fullmatch(r"(\d+)x(\d+)(?::([\w\-]+))?", s)
        if not m:
            raise ValueError(f"Unknown size {spec!r}; expected a preset or WxH[:name]")
        w, h = int(m.group(1)), int(m.group(2))
        return cls(width=w, height=h, name=m.group(3) or f"{w}x{h}")


class Point(BaseModel):
    x: float
    y: float

    @field_validator("x", "y", mode="before")
    @classmethod
    def _clamp(cls, v: Any) -> float:
        return _pct(v)


class ProductMask(BaseModel):
    """Frame region occupied by the product, in percent coordinates."""

    type: Literal["bbox", "polygon"] = "bbox"
    x: float = 0.0
    y: float = 0.0
    w: float = 0.0
    h: float = 0.0
    points: List[Point] = Field(default_factory=list)

    @field_validator("x", "y", "w", "h", mode="before")
    @classmethod
    def _clamp(cls, v: Any) -> float:
        return _pct(v)


class Stroke(BaseModel):
    color: str = "#000000"
    width: float = Field(default=1.0, ge=0, le=64)


class TextStyle(BaseModel):
    font_family: Optional[str] = None
    font_weight: Optional[int] = Field(default=None, ge=100, le=900)
    letter_spacing: Optional[float] = None
    color: Optional[str] = None
    bg: Optional[str] = None
    stroke: Optional[Stroke] = None
    max_lines: Optional[int] = Field(default=None, ge=1, le=12)


class LayoutBox(BaseModel):
    """Symbolic layout region in percent coordinates; shared read-only across sizes."""

    model_config = {"frozen": True}

    id: BoxId
    x: float
    y: float
    w: float
    h: float
    align: Optional[Align] = None
    font_size: Optional[float] = Field(default=None, gt=0)
    style: TextStyle = Field(default_factory=TextStyle)
    rotate: float = 0.0

    @field_validator("x", "y", "w", "h", mode="before")
    @classmethod
    def _clamp(cls, v: Any) -> float:
        return _pct(v)

    @field_validator("rotate", mode="before")
    @classmethod
    def _rotation(cls, v: Any) -> float:
        try:
            f = float(v or 0.0)
        except (TypeError, ValueError):
            raise ValueError(f"not a number: {v!r}")
        if math.isnan(f) or math.isinf(f):
            return 0.0
        return f % 360.0


class Palette(BaseModel):
    primary: str = "#0b0b12"
    secondary: str = "#e5e7eb"
    on_primary: str = "#ffffff"
    on_secondary: str = "#111111"


class Suggestions(BaseModel):
    alt_headlines: List[str] = Field(default_factory=list)
    alt_subheads: List[str] = Field(default_factory=list)
    alt_ctas: List[str] = Field(default_factory=list)
    notes: List[str] = Field(default_factory=list)


class LayoutResult(BaseModel):
    mask: ProductMask
    boxes: List[LayoutBox]
    palette: Palette = Field(default_factory=Palette)
    suggestions: Suggestions = Field(default_factory=Suggestions)


class Rect(BaseModel):
    """Absolute pixel rectangle."""

    model_config = {"frozen": True}

    x: int
    y: int
    w: int
    h: int

    @property
    def right(self) -> int:
        return self.x + self.w

    @property
    def bottom(self) -> int:
        return self.y + self.h

    @property
    def area(self) -> int:
        return max(0, self.w) * max(0, self.h)

    def intersects(self, other: "Rect") -> bool:
        """True when the two rectangles share a positive-area region."""
        if self.area == 0 or other.area == 0:
            return False
        return self.x < other.right and other.x < self.right and self.y < other.bottom and other.y < self.bottom

    def overlaps_x(self, other: "Rect") -> bool:
        return self.x < other.right and other.x < self.right

    def overlaps_y(self, other: "Rect") -> bool:
        return self.y < other.bottom and other.y < self.bottom

    def with_y(self, y: int, h: Optional[int] = None) -> "Rect":
        return Rect(x=self.x, y=int(y), w=self.w, h=self.h if h is None else int(h))


class ResolvedBox(BaseModel):
    """A symbolic box instantiated for one canvas size."""

    box: LayoutBox
    order: int
    rect: Rect
    style: TextStyle = Field(default_factory=TextStyle)
    lines: List[str] = Field(default_factory=list)
    font_size: float = 0.0
    hidden: bool = False

    @property
    def id(self) -> str:
        return self.box.id


class Artifact(BaseModel):
    name: str
    mime_type: str
    data: bytes


class CreativeCopy(BaseModel):
    headline: str = ""
    subhead: Optional[str] = None
    cta: Optional[str] = "Shop Now"
    price: Optional[str] = None
    badge: Optional[str] = None

    @field_validator("headline", "subhead", "cta", "price", "badge", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    def text_for(self, box_id: str) -> str:
        """Copy text rendered inside a box of the given id ('' when none)."""
        if box_id == "band":
            return ""
        return getattr(self, box_id, None) or ""


class RenderRequest(BaseModel):
    copy_text: CreativeCopy = Field(alias="copy")
    sizes: List[CanvasTarget] = Field(min_length=1)
    formats: List[ImageFormat] = Field(default_factory=lambda: ["png"], min_length=1)
    quality: int = Field(default=85, ge=50, le=100)

    model_config = {"populate_by_name": True}

    @field_validator("formats", mode="before")
    @classmethod
    def _dedupe_formats(cls, v: Any) -> Any:
        if not isinstance(v, list):
            return v
        out: List[str] = []
        for f in v:
            f = str(f).strip().lower()
            f = "jpeg" if f == "jpg" else f
            if f not in out:
                out.append(f)
        return out

    @model_validator(mode="after")
    def _unique_size_names(self) -> "RenderRequest":
        names = [s.name for s in self.sizes]
        if len(set(names)) != len(names):
            raise ValueError(f"Size names must be unique: {names}")
        return self


class CreativeResult(BaseModel):
    artifacts: List[Artifact]
    suggestions: Suggestions
    layout_source: str
    failures: List[str] = Field(default_factory=list)

    def names(self) -> List[str]:
        return [a.name for a in self.artifacts]

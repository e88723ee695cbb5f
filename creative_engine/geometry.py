"""Box geometry: percent -> pixels, product-mask avoidance and text collision.

Everything here works on immutable models. Symbolic boxes are never mutated;
each canvas size gets its own ResolvedBox list.
"""

import logging
import math
from typing import List, Optional, Sequence, Tuple

from .models import CanvasTarget, LayoutBox, LayoutResult, ProductMask, Rect, ResolvedBox

logger = logging.getLogger(__name__)

# Separation margin, in percent units of the canvas height
GAP_UNITS = 2.0
# Boxes clipped below this height are hidden instead of rendered
MIN_BOX_HEIGHT = 8


def round_half_up(v: float) -> int:
    return int(math.floor(v + 0.5))


def pct(total: int, p: float) -> int:
    return round_half_up(total * p / 100.0)


def gap_px(canvas: CanvasTarget, units: float = GAP_UNITS) -> int:
    return max(1, pct(canvas.height, units))


def clamp_rect(rect: Rect, canvas: CanvasTarget) -> Rect:
    """Clamp a rectangle into the canvas; malformed sizes collapse to zero."""
    x = max(0, min(rect.x, canvas.width))
    y = max(0, min(rect.y, canvas.height))
    w = max(0, min(rect.w, canvas.width - x))
    h = max(0, min(rect.h, canvas.height - y))
    return Rect(x=x, y=y, w=w, h=h)


def to_pixels(box: LayoutBox, canvas: CanvasTarget) -> Rect:
    """Convert a symbolic percent box into an absolute pixel rectangle."""
    rect = Rect(
        x=pct(canvas.width, box.x),
        y=pct(canvas.height, box.y),
        w=pct(canvas.width, box.w),
        h=pct(canvas.height, box.h),
    )
    return clamp_rect(rect, canvas)


def mask_rect(mask: Optional[ProductMask], canvas: CanvasTarget) -> Optional[Rect]:
    """Pixel rectangle of the product mask.

    Polygon masks are rasterized to their bounding box so they are avoided the
    same way bbox masks are. Returns None for empty masks.
    """
    if mask is None:
        return None
    if mask.type == "polygon":
        if not mask.points:
            return None
        xs = [p.x for p in mask.points]
        ys = [p.y for p in mask.points]
        x0, y0 = pct(canvas.width, min(xs)), pct(canvas.height, min(ys))
        x1, y1 = pct(canvas.width, max(xs)), pct(canvas.height, max(ys))
        rect = Rect(x=x0, y=y0, w=x1 - x0, h=y1 - y0)
    else:
        rect = Rect(
            x=pct(canvas.width, mask.x),
            y=pct(canvas.height, mask.y),
            w=pct(canvas.width, mask.w),
            h=pct(canvas.height, mask.h),
        )
    rect = clamp_rect(rect, canvas)
    return rect if rect.area > 0 else None


def avoid_mask(rect: Rect, mrect: Optional[Rect], canvas: CanvasTarget, gap: int) -> Rect:
    """Push a box whose vertical span meets the product mask above or below it.

    Boxes whose top sits in the upper half go above the mask, the rest go
    below it. When the preferred side is too short the other side is tried,
    and when neither holds the box it is clipped into the larger free side.
    """
    if mrect is None or rect.area == 0 or not rect.overlaps_y(mrect):
        return rect

    above_y = mrect.y - rect.h - gap
    below_y = mrect.bottom + gap
    fits_above = above_y >= 0
    fits_below = below_y + rect.h <= canvas.height

    if rect.y < canvas.height / 2.0:
        if fits_above:
            return rect.with_y(above_y)
        if fits_below:
            return rect.with_y(below_y)
    else:
        if fits_below:
            return rect.with_y(below_y)
        if fits_above:
            return rect.with_y(above_y)

    room_above = max(0, mrect.y - gap)
    room_below = max(0, canvas.height - below_y)
    if room_above >= room_below:
        return rect.with_y(0, room_above)
    return rect.with_y(below_y, room_below)


def priority(box_id: str) -> int:
    if box_id == "headline":
        return 0
    if box_id == "subhead":
        return 1
    return 2


def _push_below(mover: Rect, anchor: Rect, canvas: CanvasTarget, gap: int) -> Rect:
    return mover.with_y(min(canvas.height - mover.h, anchor.bottom + gap))


def _push_above(mover: Rect, anchor: Rect, gap: int) -> Rect:
    return mover.with_y(max(0, anchor.y - gap - mover.h))


def _ranked(boxes: Sequence[ResolvedBox]) -> List[ResolvedBox]:
    return sorted(boxes, key=lambda b: (priority(b.id), b.order))


def resolve_collisions(boxes: Sequence[ResolvedBox], canvas: CanvasTarget, gap: int) -> List[ResolvedBox]:
    """Single pass over text box pairs in priority order.

    When a pair overlaps and the higher-priority box anchors in the upper half
    of the canvas, the lower-priority box is pushed below it; otherwise the
    higher-priority box is pushed above the other one. Not iterated; see
    settle() for the guarantee.
    """
    ranked = _ranked([b for b in boxes if b.id != "band"])
    rects = [b.rect for b in ranked]
    mid = canvas.height / 2.0
    for i in range(len(rects)):
        for j in range(i + 1, len(rects)):
            a, b = rects[i], rects[j]
            if not a.intersects(b):
                continue
            if a.bottom <= mid:
                rects[j] = _push_below(b, a, canvas, gap)
            else:
                rects[i] = _push_above(a, b, gap)
    moved = {id(b): r for b, r in zip(ranked, rects)}
    return [b.model_copy(update={"rect": moved[id(b)]}) if id(b) in moved else b for b in boxes]


def _free_intervals(obstacles: Sequence[Rect], canvas: CanvasTarget, gap: int) -> List[Tuple[int, int]]:
    blocked = sorted((max(0, o.y - gap), min(canvas.height, o.bottom + gap)) for o in obstacles)
    free: List[Tuple[int, int]] = []
    cursor = 0
    for start, end in blocked:
        if start > cursor:
            free.append((cursor, start))
        cursor = max(cursor, end)
    if cursor < canvas.height:
        free.append((cursor, canvas.height))
    return free


def _place(rect: Rect, obstacles: Sequence[Rect], canvas: CanvasTarget, gap: int) -> Optional[Rect]:
    """Nearest vertical slot for `rect` that clears every obstacle."""
    relevant = [o for o in obstacles if o.overlaps_x(rect)]
    if not any(rect.intersects(o) for o in relevant):
        return rect
    free = _free_intervals(relevant, canvas, gap)
    fitting = [(s, e) for s, e in free if e - s >= rect.h]
    if fitting:
        candidates = [min(max(rect.y, s), e - rect.h) for s, e in fitting]
        y = min(candidates, key=lambda c: (abs(c - rect.y), c))
        return rect.with_y(y)
    if not free:
        return None
    start, end = max(free, key=lambda se: (se[1] - se[0], -se[0]))
    if end - start < MIN_BOX_HEIGHT:
        return None
    return rect.with_y(start, end - start)


def settle(
    boxes: Sequence[ResolvedBox],
    mrect: Optional[Rect],
    canvas: CanvasTarget,
    gap: int,
) -> List[ResolvedBox]:
    """Guarantee the geometry invariants left open by the single collision pass.

    Boxes are placed in priority order; a box that still touches the mask or an
    already placed text box moves to the nearest free vertical slot, is clipped
    into the largest one, or is hidden when nothing is left.
    """
    mask_obstacles = [mrect] if mrect is not None else []
    placed: List[Rect] = []
    settled = {}
    for b in _ranked(boxes):
        if b.hidden or b.rect.area == 0:
            settled[id(b)] = b.model_copy(update={"hidden": True})
            continue
        others = mask_obstacles if b.id == "band" else mask_obstacles + placed
        rect = _place(b.rect, others, canvas, gap)
        if rect is None:
            logger.warning(f"No free slot for {b.id} on {canvas.name}; hiding box")
            settled[id(b)] = b.model_copy(update={"hidden": True, "rect": b.rect.with_y(b.rect.y, 0)})
            continue
        if rect != b.rect:
            logger.debug(f"Settled {b.id} on {canvas.name}: {b.rect} -> {rect}")
        if b.id != "band":
            placed.append(rect)
        settled[id(b)] = b.model_copy(update={"rect": rect})
    return [settled[id(b)] for b in boxes]


def resolve_boxes(layout: LayoutResult, canvas: CanvasTarget) -> List[ResolvedBox]:
    """Instantiate every layout box for one canvas, free of mask and text overlap."""
    gap = gap_px(canvas)
    mrect = mask_rect(layout.mask, canvas)
    resolved: List[ResolvedBox] = []
    for i, box in enumerate(layout.boxes):
        rect = avoid_mask(to_pixels(box, canvas), mrect, canvas, gap)
        resolved.append(ResolvedBox(box=box, order=i, rect=rect, style=box.style, hidden=rect.area == 0))
    resolved = resolve_collisions(resolved, canvas, gap)
    return settle(resolved, mrect, canvas, gap)

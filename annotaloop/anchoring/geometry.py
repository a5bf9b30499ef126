from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from annotaloop.anchoring.text_index import TextRun, Viewport
from annotaloop.config import get_settings
from annotaloop.types import AnnotationCoord, BoundingRect


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center_y(self) -> float:
        return self.y + self.height / 2.0

    @property
    def area(self) -> float:
        return self.width * self.height

    def to_bounding_rect(self) -> BoundingRect:
        return BoundingRect(
            x1=self.x,
            y1=self.y,
            x2=self.right,
            y2=self.bottom,
            width=self.width,
            height=self.height,
        )


@dataclass(frozen=True)
class MergeTolerance:
    gap_min: float = -5.0
    gap_max: float = 15.0

    @classmethod
    def for_scale(cls, scale: float) -> 'MergeTolerance':
        settings = get_settings()
        factor = max(float(scale), 1e-6)
        return cls(gap_min=settings.merge_gap_min * factor, gap_max=settings.merge_gap_max * factor)


def _same_row(a: Rect, b: Rect) -> bool:
    return abs(a.center_y - b.center_y) < min(a.height, b.height) * 0.5


def _rows(rects: Iterable[Rect]) -> list[list[Rect]]:
    rows: list[list[Rect]] = []
    for rect in sorted(rects, key=lambda item: (item.center_y, item.x)):
        if rows and _same_row(rows[-1][0], rect):
            rows[-1].append(rect)
        else:
            rows.append([rect])
    return rows


def merge_boxes(rects: Sequence[Rect], tolerance: MergeTolerance | None = None) -> list[Rect]:
    """Collapse per-run rectangles into one rectangle per visual line where they touch."""
    if not rects:
        return []
    limits = tolerance or MergeTolerance()

    ordered = [rect for row in _rows(rects) for rect in sorted(row, key=lambda item: item.x)]
    merged: list[Rect] = []
    current = ordered[0]
    for rect in ordered[1:]:
        gap = rect.x - current.right
        if _same_row(current, rect) and limits.gap_min < gap < limits.gap_max:
            top = min(current.y, rect.y)
            current = Rect(
                x=current.x,
                y=top,
                width=max(current.right, rect.right) - current.x,
                height=max(current.bottom, rect.bottom) - top,
            )
        else:
            merged.append(current)
            current = rect
    merged.append(current)
    return merged


def run_rect(
    run: TextRun,
    viewport: Viewport,
    start_char: int,
    end_char: int,
) -> Rect | None:
    length = len(run.text)
    start = max(0, min(start_char, length))
    end = max(start, min(end_char, length))
    if end == start or length == 0:
        return None

    char_width = run.width / length
    _, _, _, scale_y, tx, ty = run.transform
    pdf_x = tx + start * char_width
    pdf_width = (end - start) * char_width
    pdf_height = abs(scale_y)

    vx1, vy1, vx2, vy2 = viewport.convert_to_viewport_rectangle(
        (pdf_x, ty, pdf_x + pdf_width, ty + pdf_height)
    )
    rect = Rect(
        x=min(vx1, vx2),
        y=min(vy1, vy2),
        width=abs(vx2 - vx1),
        height=abs(vy2 - vy1),
    )
    if rect.width <= 0 or rect.height <= 0:
        return None
    return rect


def compute_boxes(
    runs: Sequence[TextRun],
    viewport: Viewport,
    start_offset: int = 0,
    end_offset: int | None = None,
    *,
    tolerance: MergeTolerance | None = None,
) -> list[Rect]:
    boxes: list[Rect] = []
    last = len(runs) - 1
    for position, run in enumerate(runs):
        start = start_offset if position == 0 else 0
        end = len(run.text)
        if position == last and end_offset is not None:
            end = end_offset
        rect = run_rect(run, viewport, start, end)
        if rect is not None:
            boxes.append(rect)
    return merge_boxes(boxes, tolerance or MergeTolerance.for_scale(viewport.scale))


def to_coords(page_number: int, rects: Iterable[Rect]) -> list[AnnotationCoord]:
    return [AnnotationCoord(page_index=page_number, bounding_rect=rect.to_bounding_rect()) for rect in rects]

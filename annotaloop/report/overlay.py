from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Sequence

import pymupdf as fitz

from annotaloop.anchoring.cache import CoordinateCache, document_version
from annotaloop.anchoring.service import AnchoringReport, anchor_annotations
from annotaloop.anchoring.text_index import PageIndex, open_document
from annotaloop.config import get_settings
from annotaloop.errors import ExportError
from annotaloop.report.plain_text import markdown_to_plain
from annotaloop.types import Annotation, AnnotationColor, AnnotationCoord, Label


logger = logging.getLogger(__name__)

COMMENT_MARKER_SIZE = 20.0
COMMENT_MARKER_GAP = 2.0


@dataclass(frozen=True)
class OverlayItem:
    annotation_id: str
    label: str
    comment: str
    color: AnnotationColor
    coords: list[AnnotationCoord]


@dataclass
class OverlayResult:
    pdf_bytes: bytes
    anchoring: AnchoringReport
    drawn_ids: list[str]


def _clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def _viewport_scales(pages: Sequence[PageIndex]) -> dict[int, float]:
    return {page.page_number: page.viewport.scale for page in pages}


def _to_page_rect(page, coord: AnnotationCoord, scale: float):
    """Viewport pixels (top-left origin) back to page points."""
    rect = coord.bounding_rect
    factor = 1.0 / scale if scale > 0 else 1.0
    page_rect = page.rect
    return fitz.Rect(
        page_rect.x0 + rect.x1 * factor,
        page_rect.y0 + rect.y1 * factor,
        page_rect.x0 + (rect.x1 + rect.width) * factor,
        page_rect.y0 + (rect.y1 + rect.height) * factor,
    )


def _comment_text(annotation: Annotation) -> str:
    rationale = markdown_to_plain(annotation.rationale)
    if not rationale:
        return annotation.label_id
    return f'{annotation.label_id}\n\n{rationale}'


def _comment_point(page, first_rect):
    page_rect = page.rect
    x = _clamp(first_rect.x0, page_rect.x0, page_rect.x1 - COMMENT_MARKER_SIZE)
    y = _clamp(
        first_rect.y0 - COMMENT_MARKER_GAP - COMMENT_MARKER_SIZE,
        page_rect.y0,
        page_rect.y1 - COMMENT_MARKER_SIZE,
    )
    return fitz.Point(x, y)


def _draw_item_on_page(page, item: OverlayItem, coords: list[AnnotationCoord], scale: float) -> bool:
    settings = get_settings()
    rects = [_to_page_rect(page, coord, scale) for coord in coords]
    rects = [rect for rect in rects if rect.get_area() > 0]
    if not rects:
        return False

    fill = tuple(item.color.rgb)
    for rect in rects:
        page.draw_rect(
            rect,
            color=None,
            fill=fill,
            fill_opacity=settings.highlight_opacity,
            overlay=True,
        )

    annot = page.add_text_annot(_comment_point(page, rects[0]), item.comment, icon=settings.comment_icon)
    annot.set_info(title=item.label, content=item.comment)
    annot.set_colors(stroke=fill)
    annot.update()
    return True


def build_overlay_items(
    annotations: Sequence[Annotation],
    anchoring: AnchoringReport,
) -> list[OverlayItem]:
    items: list[OverlayItem] = []
    for annotation in annotations:
        result = anchoring.anchored.get(annotation.id)
        if result is None or not result.coords:
            continue
        items.append(
            OverlayItem(
                annotation_id=annotation.id,
                label=annotation.label_id,
                comment=_comment_text(annotation),
                color=result.color,
                coords=result.coords,
            )
        )
    return items


def render_overlay(
    document_bytes: bytes,
    annotations: Sequence[Annotation],
    pages: Sequence[PageIndex],
    labels: Sequence[Label] | None = None,
    *,
    cache: CoordinateCache | None = None,
) -> OverlayResult:
    """Burn highlights and comment markers for every non-rejected annotation.

    Raises ``MalformedDocumentError`` when the bytes cannot be opened and
    ``ExportError`` when drawing fails or the annotated copy cannot be
    written.
    """
    version = document_version(document_bytes)
    anchoring = anchor_annotations(annotations, pages, labels, version=version, cache=cache)
    items = build_overlay_items(annotations, anchoring)
    scales = _viewport_scales(pages)

    doc = open_document(document_bytes)
    drawn_ids: list[str] = []
    try:
        for item in items:
            by_page: dict[int, list[AnnotationCoord]] = defaultdict(list)
            for coord in item.coords:
                by_page[coord.page_index].append(coord)

            drawn = False
            for page_number, page_coords in sorted(by_page.items()):
                if page_number < 1 or page_number > doc.page_count:
                    logger.warning(
                        'Annotation %s points at missing page %d; skipped',
                        item.annotation_id,
                        page_number,
                    )
                    continue
                page = doc.load_page(page_number - 1)
                try:
                    if _draw_item_on_page(page, item, page_coords, scales.get(page_number, 1.0)):
                        drawn = True
                except Exception as exc:
                    raise ExportError(
                        f'failed to draw annotation {item.annotation_id} on page {page_number}: {exc}'
                    ) from exc
            if drawn:
                drawn_ids.append(item.annotation_id)

        try:
            pdf_bytes = doc.tobytes(garbage=3, deflate=True)
        except Exception as exc:
            raise ExportError(f'failed to write annotated document: {exc}') from exc
    finally:
        doc.close()

    logger.info(
        'Overlay drawn for %d annotations (%d unanchored, %d rejected)',
        len(drawn_ids),
        len(anchoring.unanchored_ids),
        len(anchoring.skipped_ids),
    )
    return OverlayResult(pdf_bytes=pdf_bytes, anchoring=anchoring, drawn_ids=drawn_ids)


def overlay_annotations(
    document_bytes: bytes,
    annotations: Sequence[Annotation],
    pages: Sequence[PageIndex],
    labels: Sequence[Label] | None = None,
    *,
    cache: CoordinateCache | None = None,
) -> bytes:
    return render_overlay(document_bytes, annotations, pages, labels, cache=cache).pdf_bytes

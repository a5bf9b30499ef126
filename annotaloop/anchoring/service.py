from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

from annotaloop.anchoring.cache import CachedGeometry, CoordinateCache
from annotaloop.anchoring.colors import resolve_color
from annotaloop.anchoring.geometry import compute_boxes, to_coords
from annotaloop.anchoring.matcher import MatchThresholds, TextMatch, find_match
from annotaloop.anchoring.text_index import PageIndex
from annotaloop.types import Annotation, AnnotationColor, AnnotationCoord, AnnotationStatus, Label


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnchorResult:
    coords: list[AnnotationCoord]
    color: AnnotationColor
    match: TextMatch | None = None


@dataclass
class AnchoringReport:
    anchored: dict[str, AnchorResult] = field(default_factory=dict)
    unanchored_ids: list[str] = field(default_factory=list)
    skipped_ids: list[str] = field(default_factory=list)


def match_annotation(
    pages: Sequence[PageIndex],
    text: str,
    label_id: str,
    labels: Sequence[Label] | None = None,
    *,
    thresholds: MatchThresholds | None = None,
) -> AnchorResult | None:
    match = find_match(pages, text, thresholds=thresholds)
    if match is None:
        return None
    boxes = compute_boxes(match.runs, match.viewport, match.start_offset, match.end_offset)
    if not boxes:
        return None
    return AnchorResult(
        coords=to_coords(match.page_number, boxes),
        color=resolve_color(label_id, labels),
        match=match,
    )


def anchor_annotation(
    annotation: Annotation,
    pages: Sequence[PageIndex],
    labels: Sequence[Label] | None = None,
    *,
    version: str | None = None,
    cache: CoordinateCache | None = None,
) -> AnchorResult | None:
    """Coordinates and color for ``annotation``, reusing whatever is already known.

    Order of reuse: coordinates carried on the annotation, then the cache
    entry for ``(version, annotation.id)``, then a fresh match. Fresh results
    are stored in the cache; the annotation itself is left untouched.
    """
    color = annotation.color or resolve_color(annotation.label_id, labels)
    if annotation.coords:
        return AnchorResult(coords=list(annotation.coords), color=color)

    if cache is not None and version is not None:
        cached = cache.get(version, annotation.id)
        if cached is not None and cached.coords:
            return AnchorResult(coords=list(cached.coords), color=cached.color or color)

    result = match_annotation(pages, annotation.text, annotation.label_id, labels)
    if result is None:
        return None
    if annotation.color is not None:
        result = AnchorResult(coords=result.coords, color=annotation.color, match=result.match)
    if cache is not None and version is not None:
        cache.put(version, annotation.id, CachedGeometry(coords=result.coords, color=result.color))
    return result


def anchor_annotations(
    annotations: Sequence[Annotation],
    pages: Sequence[PageIndex],
    labels: Sequence[Label] | None = None,
    *,
    version: str | None = None,
    cache: CoordinateCache | None = None,
) -> AnchoringReport:
    report = AnchoringReport()
    for annotation in annotations:
        if annotation.status == AnnotationStatus.rejected:
            report.skipped_ids.append(annotation.id)
            continue
        try:
            result = anchor_annotation(annotation, pages, labels, version=version, cache=cache)
        except Exception as exc:
            logger.warning('Failed to anchor annotation %s: %s', annotation.id, exc)
            result = None
        if result is None:
            logger.warning('Annotation %s could not be anchored; exporting without highlight', annotation.id)
            report.unanchored_ids.append(annotation.id)
            continue
        report.anchored[annotation.id] = result
    return report

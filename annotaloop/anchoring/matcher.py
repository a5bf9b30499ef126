from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Iterable, Sequence

from annotaloop.anchoring.text_index import (
    CharPosition,
    NormalizedProjection,
    PageIndex,
    TextRun,
    Viewport,
    normalize_compact,
    normalize_strict,
    strict_projection,
)
from annotaloop.config import get_settings


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchThresholds:
    min_fuzzy_length: int = 16
    fragment_ratio: float = 0.3
    fragment_min: int = 8
    fragment_max: int = 24
    span_ratio: float = 1.4

    @classmethod
    def from_settings(cls) -> 'MatchThresholds':
        settings = get_settings()
        return cls(
            min_fuzzy_length=settings.fuzzy_min_length,
            fragment_ratio=settings.fuzzy_fragment_ratio,
            fragment_min=settings.fuzzy_fragment_min,
            fragment_max=settings.fuzzy_fragment_max,
            span_ratio=settings.fuzzy_span_ratio,
        )

    def fragment_length(self, needle_length: int) -> int:
        return min(self.fragment_max, max(self.fragment_min, int(needle_length * self.fragment_ratio)))

    def max_span(self, needle_length: int) -> int:
        return int(needle_length * self.span_ratio)


@dataclass(frozen=True)
class TextMatch:
    page_number: int
    runs: tuple[TextRun, ...]
    viewport: Viewport
    start_offset: int
    end_offset: int
    start_run_index: int = 0
    strategy: str = 'strict'

    def clipped_runs(self) -> list[TextRun]:
        """Contributing runs cut down to the matched characters."""
        clipped: list[TextRun] = []
        last = len(self.runs) - 1
        for position, run in enumerate(self.runs):
            start = self.start_offset if position == 0 else 0
            end = min(self.end_offset, len(run.text)) if position == last else len(run.text)
            clipped.append(
                replace(
                    run,
                    text=run.text[start:end],
                    has_eol=run.has_eol and end == len(run.text),
                )
            )
        return clipped

    @property
    def text(self) -> str:
        return strict_projection(self.clipped_runs()).text


def _span_positions(
    projection: NormalizedProjection,
    start: int,
    end: int,
) -> tuple[CharPosition, CharPosition] | None:
    if start < 0 or end < start or end >= len(projection.positions):
        return None
    return projection.positions[start], projection.positions[end]


def find_exact_span(projection: NormalizedProjection, needle: str) -> tuple[int, int] | None:
    if not needle:
        return None
    index = projection.text.find(needle)
    if index == -1:
        return None
    return index, index + len(needle) - 1


def find_fuzzy_span(
    projection: NormalizedProjection,
    needle: str,
    thresholds: MatchThresholds,
) -> tuple[int, int] | None:
    """Anchor on a head and a tail fragment of ``needle`` and accept the span between them.

    The tail is searched after the head fragment and the whole span may not
    exceed ``span_ratio`` times the needle length.
    """
    fragment = thresholds.fragment_length(len(needle))
    head = needle[:fragment]
    tail = needle[-fragment:]

    head_index = projection.text.find(head)
    if head_index == -1:
        return None
    tail_index = projection.text.find(tail, head_index + len(head))
    if tail_index == -1:
        return None

    span_end = tail_index + len(tail) - 1
    if span_end - head_index + 1 > thresholds.max_span(len(needle)):
        return None
    return head_index, span_end


def _to_match(
    page: PageIndex,
    start: CharPosition,
    end: CharPosition,
    strategy: str,
) -> TextMatch:
    return TextMatch(
        page_number=page.page_number,
        runs=page.runs[start.run_index:end.run_index + 1],
        viewport=page.viewport,
        start_offset=start.char_index,
        end_offset=end.char_index + 1,
        start_run_index=start.run_index,
        strategy=strategy,
    )


def match_on_page(
    page: PageIndex,
    strict_needle: str,
    compact_needle: str,
    thresholds: MatchThresholds,
) -> TextMatch | None:
    if strict_needle:
        span = find_exact_span(page.strict, strict_needle)
        if span is not None:
            positions = _span_positions(page.strict, *span)
            if positions is not None:
                return _to_match(page, *positions, strategy='strict')

    # Short needles either match exactly or not at all.
    if len(compact_needle) < thresholds.min_fuzzy_length:
        return None

    strategy = 'compact'
    span = find_exact_span(page.compact, compact_needle)
    if span is None:
        strategy = 'fuzzy'
        span = find_fuzzy_span(page.compact, compact_needle, thresholds)
    if span is None:
        return None

    positions = _span_positions(page.compact, *span)
    if positions is None:
        return None
    return _to_match(page, *positions, strategy=strategy)


def find_match(
    pages: Iterable[PageIndex] | Sequence[PageIndex],
    needle: str,
    *,
    thresholds: MatchThresholds | None = None,
) -> TextMatch | None:
    """Locate ``needle`` on the first page that contains it."""
    limits = thresholds or MatchThresholds.from_settings()
    strict_needle = normalize_strict(needle)
    compact_needle = normalize_compact(needle)
    if not strict_needle and not compact_needle:
        return None

    for page in pages:
        if page.is_empty:
            continue
        match = match_on_page(page, strict_needle, compact_needle, limits)
        if match is not None:
            logger.debug(
                'Anchored %r on page %d via %s match',
                needle[:40],
                match.page_number,
                match.strategy,
            )
            return match
    return None

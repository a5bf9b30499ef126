from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, NamedTuple, Union

import pymupdf as fitz

from annotaloop.config import get_settings
from annotaloop.errors import MalformedDocumentError


logger = logging.getLogger(__name__)

DocumentSource = Union[bytes, bytearray, str, Path, 'fitz.Document']

_DASHES = {'-', '\u2010', '\u2011', '\u2012', '\u2013', '\u2014'}
_SKIPPABLE = {'\u00ad', '\u200b', '\u200c', '\u200d', '\ufeff'}
_CHAR_REPLACEMENTS = {
    '\u201c': '"',
    '\u201d': '"',
    '\u2018': "'",
    '\u2019': "'",
    '\u2013': '-',
    '\u2014': '-',
    '\u2026': '...',
    '\ufb00': 'ff',
    '\ufb01': 'fi',
    '\ufb02': 'fl',
    '\ufb03': 'ffi',
    '\ufb04': 'ffl',
}


@dataclass(frozen=True)
class TextRun:
    text: str
    transform: tuple[float, float, float, float, float, float]
    width: float
    height: float
    has_eol: bool = False


@dataclass(frozen=True)
class Viewport:
    """Maps PDF user space (origin bottom-left, points) to display pixels (origin top-left)."""

    page_width: float
    page_height: float
    scale: float = 1.0

    @property
    def width(self) -> float:
        return self.page_width * self.scale

    @property
    def height(self) -> float:
        return self.page_height * self.scale

    @property
    def transform(self) -> tuple[float, float, float, float, float, float]:
        return (self.scale, 0.0, 0.0, -self.scale, 0.0, self.page_height * self.scale)

    def convert_to_viewport_point(self, x: float, y: float) -> tuple[float, float]:
        a, b, c, d, e, f = self.transform
        return (a * x + c * y + e, b * x + d * y + f)

    def convert_to_viewport_rectangle(
        self,
        rect: tuple[float, float, float, float],
    ) -> tuple[float, float, float, float]:
        x1, y1 = self.convert_to_viewport_point(rect[0], rect[1])
        x2, y2 = self.convert_to_viewport_point(rect[2], rect[3])
        return (x1, y1, x2, y2)


class CharPosition(NamedTuple):
    run_index: int
    char_index: int


@dataclass(frozen=True)
class NormalizedProjection:
    text: str
    positions: tuple[CharPosition, ...]

    def __post_init__(self) -> None:
        if len(self.text) != len(self.positions):
            raise ValueError('projection text and position map differ in length')


@dataclass(frozen=True)
class PageIndex:
    page_number: int
    runs: tuple[TextRun, ...]
    viewport: Viewport
    strict: NormalizedProjection
    compact: NormalizedProjection

    @property
    def is_empty(self) -> bool:
        return not self.runs


def _is_dash(ch: str) -> bool:
    return ch in _DASHES


def build_projection(
    runs: Iterable[TextRun],
    *,
    keep_spaces: bool = True,
    drop_hyphens: bool = False,
    alphanumeric: bool = False,
) -> NormalizedProjection:
    chars: list[str] = []
    positions: list[CharPosition] = []
    last_was_space = False

    for run_index, run in enumerate(runs):
        text = run.text or ''
        hyphen_wrap = bool(run.has_eol and text and _is_dash(text[-1]))
        for char_index, ch in enumerate(text):
            if hyphen_wrap and char_index == len(text) - 1:
                continue
            if ch in _SKIPPABLE:
                continue
            if ch.isspace():
                if keep_spaces and not last_was_space:
                    chars.append(' ')
                    positions.append(CharPosition(run_index, char_index))
                    last_was_space = True
                continue

            for normalized in _CHAR_REPLACEMENTS.get(ch, ch):
                if drop_hyphens and normalized == '-':
                    continue
                # casefold() may expand one char into several; each keeps the source position.
                for folded in normalized.casefold():
                    if alphanumeric and not folded.isalnum():
                        continue
                    chars.append(folded)
                    positions.append(CharPosition(run_index, char_index))
            last_was_space = False

        if keep_spaces and not last_was_space and not hyphen_wrap:
            chars.append(' ')
            positions.append(CharPosition(run_index, len(text)))
            last_was_space = True

    if keep_spaces and chars and chars[-1] == ' ':
        chars.pop()
        positions.pop()

    return NormalizedProjection(text=''.join(chars), positions=tuple(positions))


def strict_projection(runs: Iterable[TextRun]) -> NormalizedProjection:
    return build_projection(runs, keep_spaces=True, drop_hyphens=False)


def compact_projection(runs: Iterable[TextRun]) -> NormalizedProjection:
    return build_projection(runs, keep_spaces=False, drop_hyphens=True, alphanumeric=True)


def normalize_strict(text: str) -> str:
    return strict_projection([TextRun(text=text or '', transform=(1, 0, 0, 1, 0, 0), width=0.0, height=0.0)]).text.strip()


def normalize_compact(text: str) -> str:
    return compact_projection([TextRun(text=text or '', transform=(1, 0, 0, 1, 0, 0), width=0.0, height=0.0)]).text


def build_page_index(page_number: int, runs: Iterable[TextRun], viewport: Viewport) -> PageIndex:
    run_tuple = tuple(runs)
    return PageIndex(
        page_number=page_number,
        runs=run_tuple,
        viewport=viewport,
        strict=strict_projection(run_tuple),
        compact=compact_projection(run_tuple),
    )


def extract_page_runs(page) -> list[TextRun]:
    """Turn every span of every text line into one run with a PDF-space transform."""
    page_rect = page.rect
    data = page.get_text('dict', flags=fitz.TEXTFLAGS_TEXT)
    runs: list[TextRun] = []

    for block in data.get('blocks', []):
        if block.get('type', 0) != 0:
            continue
        for line in block.get('lines', []):
            spans = [span for span in line.get('spans', []) if span.get('text')]
            dx, dy = line.get('dir', (1.0, 0.0))
            for position, span in enumerate(spans):
                size = float(span.get('size') or 0.0)
                x0, y0, x1, y1 = span.get('bbox', (0.0, 0.0, 0.0, 0.0))
                origin_x, origin_y = span.get('origin', (x0, y1))
                if abs(dx) >= abs(dy):
                    width = abs(float(x1) - float(x0))
                else:
                    width = abs(float(y1) - float(y0))
                # PyMuPDF reports y growing downwards; flip into PDF user space.
                transform = (
                    size * dx,
                    -size * dy,
                    size * dy,
                    size * dx,
                    float(origin_x) - page_rect.x0,
                    page_rect.y1 - float(origin_y),
                )
                runs.append(
                    TextRun(
                        text=span['text'],
                        transform=transform,
                        width=width,
                        height=size,
                        has_eol=position == len(spans) - 1,
                    )
                )
    return runs


def open_document(source: DocumentSource) -> 'fitz.Document':
    if isinstance(source, fitz.Document):
        return source
    try:
        if isinstance(source, (bytes, bytearray)):
            if not source:
                raise MalformedDocumentError('document is empty')
            doc = fitz.open(stream=bytes(source), filetype='pdf')
        else:
            doc = fitz.open(str(source))
    except MalformedDocumentError:
        raise
    except Exception as exc:
        raise MalformedDocumentError(f'cannot open document: {exc}') from exc

    if doc.is_encrypted:
        authenticated = False
        try:
            authenticated = bool(doc.authenticate(''))
        except Exception:
            authenticated = False
        if not authenticated:
            doc.close()
            raise MalformedDocumentError('document is encrypted')
    if doc.page_count == 0:
        doc.close()
        raise MalformedDocumentError('document has no pages')
    return doc


def index_pages(source: DocumentSource, *, scale: float | None = None) -> list[PageIndex]:
    """Build a PageIndex for every page of ``source``.

    Pages that yield no text (scans, blank pages) get an empty index instead of
    failing the whole document.
    """
    render_scale = float(scale if scale is not None else get_settings().render_scale)
    owns_doc = not isinstance(source, fitz.Document)
    doc = open_document(source)

    pages: list[PageIndex] = []
    try:
        for page_index in range(doc.page_count):
            page = doc.load_page(page_index)
            viewport = Viewport(
                page_width=float(page.rect.width),
                page_height=float(page.rect.height),
                scale=render_scale,
            )
            try:
                runs = extract_page_runs(page)
            except Exception as exc:
                logger.warning('Text extraction failed on page %d: %s', page_index + 1, exc)
                runs = []
            pages.append(build_page_index(page_index + 1, runs, viewport))
    finally:
        if owns_doc:
            doc.close()

    logger.debug(
        'Indexed %d pages (%d without text)',
        len(pages),
        sum(1 for page in pages if page.is_empty),
    )
    return pages

from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from pypdf import PdfReader, PdfWriter
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.cidfonts import UnicodeCIDFont
from reportlab.pdfgen.canvas import Canvas

from annotaloop.anchoring.colors import parse_label_color
from annotaloop.anchoring.text_index import open_document
from annotaloop.config import Settings, get_settings
from annotaloop.errors import ExportError, MalformedDocumentError
from annotaloop.report.plain_text import markdown_to_plain
from annotaloop.types import Label, Rule, RuleEvaluation, SummaryPayload


logger = logging.getLogger(__name__)

PAGE_WIDTH, PAGE_HEIGHT = A4

MARGIN_TOP = 70.0
MARGIN_BOTTOM = 50.0
MARGIN_LEFT = 40.0
MARGIN_RIGHT = 40.0
CONTENT_WIDTH = PAGE_WIDTH - MARGIN_LEFT - MARGIN_RIGHT
FOOTER_RESERVE = 20.0
BOTTOM_LIMIT = MARGIN_BOTTOM + FOOTER_RESERVE
FIRST_PAGE_TOP = PAGE_HEIGHT - MARGIN_TOP
CONTINUATION_TOP = PAGE_HEIGHT - 50.0
PAGE_CONTENT_HEIGHT = CONTINUATION_TOP - BOTTOM_LIMIT

LINE_HEIGHT = 11.0
SECTION_TITLE_HEIGHT = 25.0
STAT_CARD_HEIGHT = 75.0
STAT_CARD_GAP = 15.0
TABLE_HEADER_HEIGHT = 24.0
TABLE_ROW_HEIGHT = 28.0
TABLE_COLUMNS = (25.0, 175.0, 80.0, CONTENT_WIDTH - 280.0)
CARD_BASELINE_OFFSET = 20.0
CARD_HEADER_HEIGHT = 20.0
CARD_PAD_BOTTOM = 4.0
CARD_GAP = 15.0
CARD_INNER_WIDTH = CONTENT_WIDTH - 24.0
CITATION_INDENT = 24.0

CJK_FONT_NAME = 'STSong-Light'

_CITATION_MARKER_RE = re.compile(r'^(\[\d+\])\s*(.*)$', re.DOTALL)


class Theme:
    primary = colors.Color(0.96, 0.42, 0.25)
    primary_light = colors.Color(0.99, 0.95, 0.93)
    primary_border = colors.Color(0.95, 0.85, 0.80)
    primary_text = colors.Color(0.85, 0.35, 0.20)
    text_primary = colors.Color(0.07, 0.09, 0.16)
    text_secondary = colors.Color(0.42, 0.43, 0.50)
    text_muted = colors.Color(0.62, 0.63, 0.66)
    bg_cream = colors.Color(0.98, 0.98, 0.98)
    bg_grey = colors.Color(0.97, 0.97, 0.98)
    white = colors.Color(1, 1, 1)
    border = colors.Color(0.90, 0.90, 0.91)
    border_light = colors.Color(0.94, 0.94, 0.95)
    success = colors.Color(0.06, 0.72, 0.51)
    success_light = colors.Color(0.93, 0.99, 0.96)
    warning = colors.Color(0.8, 0.6, 0.0)
    danger = colors.Color(0.94, 0.27, 0.27)
    danger_light = colors.Color(0.99, 0.95, 0.95)


@dataclass(frozen=True)
class ReportFonts:
    body: str
    heading: str
    mono: str


@dataclass(frozen=True)
class BlockPlacement:
    kind: str
    page: int
    top: float
    height: float
    overflow: bool = False

    @property
    def bottom(self) -> float:
        return self.top - self.height


@dataclass
class SummaryLayout:
    page_count: int = 0
    placements: list[BlockPlacement] = field(default_factory=list)

    def of_kind(self, kind: str) -> list[BlockPlacement]:
        return [item for item in self.placements if item.kind == kind]


@dataclass(frozen=True)
class _CardLine:
    height: float
    draw: Callable[[float], None]


def _contains_cjk(text: str) -> bool:
    for ch in text:
        if '一' <= ch <= '鿿' or '぀' <= ch <= 'ヿ' or '가' <= ch <= '힯':
            return True
    return False


def _payload_text(payload: SummaryPayload) -> str:
    parts = [payload.document_name, payload.project_name or '', payload.llm_model or '']
    parts.extend(label.name + ' ' + (label.desc or '') for label in payload.labels)
    parts.extend(rule.logic for rule in payload.rules or [])
    for evaluation in payload.rule_evaluations or []:
        parts.append(evaluation.rule_id)
        parts.append(evaluation.rationale)
        parts.extend(evaluation.citations)
    return ' '.join(parts)


def _resolve_fonts(payload: SummaryPayload, settings: Settings) -> ReportFonts:
    fonts = ReportFonts(
        body=settings.report_font_regular,
        heading=settings.report_font_bold,
        mono=settings.report_font_mono,
    )
    if not _contains_cjk(_payload_text(payload)):
        return fonts
    try:
        pdfmetrics.registerFont(UnicodeCIDFont(CJK_FONT_NAME))
    except Exception as exc:
        logger.warning('Failed to register CJK font %s: %s', CJK_FONT_NAME, exc)
        return fonts
    return ReportFonts(body=CJK_FONT_NAME, heading=CJK_FONT_NAME, mono=CJK_FONT_NAME)


def _string_width(text: str, font_name: str, size: float) -> float:
    try:
        return float(pdfmetrics.stringWidth(text, font_name, size))
    except Exception:
        return float(pdfmetrics.stringWidth(text, 'Helvetica', size))


def _split_token_by_width(token: str, *, max_width: float, font_name: str, size: float) -> list[str]:
    chunks: list[str] = []
    current = ''
    for char in token:
        candidate = f'{current}{char}'
        if _string_width(candidate, font_name, size) <= max_width or not current:
            current = candidate
            continue
        chunks.append(current)
        current = char
    if current:
        chunks.append(current)
    return chunks


def wrap_text(text: str, max_width: float, font_name: str, size: float) -> list[str]:
    """Greedy word wrap against real font metrics; words wider than a line are split."""
    lines: list[str] = []
    for paragraph in str(text or '').split('\n'):
        words = paragraph.split()
        current = ''
        for word in words:
            candidate = f'{current} {word}' if current else word
            if _string_width(candidate, font_name, size) <= max_width:
                current = candidate
                continue
            if current:
                lines.append(current)
                current = ''
            if _string_width(word, font_name, size) <= max_width:
                current = word
                continue
            pieces = _split_token_by_width(word, max_width=max_width, font_name=font_name, size=size)
            lines.extend(pieces[:-1])
            current = pieces[-1] if pieces else ''
        if current:
            lines.append(current)
    return lines


def _ellipsize(text: str, max_width: float, font_name: str, size: float) -> str:
    value = str(text or '')
    if _string_width(value, font_name, size) <= max_width:
        return value
    while value and _string_width(value + '...', font_name, size) > max_width:
        value = value[:-1]
    return value + '...'


def _format_date(dt: datetime) -> str:
    return dt.strftime('%Y-%m-%d')


def _confidence_color(confidence: float):
    if confidence > 0.8:
        return Theme.success
    if confidence > 0.5:
        return Theme.warning
    return Theme.danger


class SummaryReportBuilder:
    """Draws the summary report page by page with an explicit ``(page, y)`` cursor.

    Every block measures itself first and calls ``ensure_space`` before drawing,
    so table rows and rule cards never straddle a page break.
    """

    def __init__(self, payload: SummaryPayload, *, settings: Settings | None = None) -> None:
        self.payload = payload
        self.settings = settings or get_settings()
        self.fonts = _resolve_fonts(payload, self.settings)
        self.layout = SummaryLayout()
        self._buffer = io.BytesIO()
        self._canvas = Canvas(self._buffer, pagesize=A4)
        self._canvas.setTitle(f'{self.settings.report_brand} Summary - {payload.document_name}')
        self._canvas.setAuthor(self.settings.report_brand)
        self._canvas.setCreator(self.settings.report_brand)
        self.page_number = 1
        self.cursor_y = FIRST_PAGE_TOP
        self._built: bytes | None = None

    def ensure_space(self, height: float) -> bool:
        if self.cursor_y - height < BOTTOM_LIMIT:
            self._break_page()
            return True
        return False

    def _break_page(self) -> None:
        self._draw_footer()
        self._canvas.showPage()
        self.page_number += 1
        self.cursor_y = CONTINUATION_TOP
        self._draw_running_header()

    def _place(self, kind: str, height: float, *, overflow: bool = False, top: float | None = None) -> None:
        self.layout.placements.append(
            BlockPlacement(
                kind=kind,
                page=self.page_number,
                top=self.cursor_y if top is None else top,
                height=height,
                overflow=overflow,
            )
        )

    def _font(self, name: str, size: float) -> None:
        for candidate in (name, self.fonts.body, 'Helvetica'):
            try:
                self._canvas.setFont(candidate, size)
                return
            except Exception:
                continue

    def _text(self, x: float, y: float, text: str, *, font: str, size: float, color) -> None:
        self._canvas.setFillColor(color)
        self._font(font, size)
        self._canvas.drawString(x, y, text)

    def _rect(self, x: float, y: float, width: float, height: float, *, fill=None, stroke=None, line_width: float = 1.0) -> None:
        self._canvas.saveState()
        if fill is not None:
            self._canvas.setFillColor(fill)
        if stroke is not None:
            self._canvas.setStrokeColor(stroke)
            self._canvas.setLineWidth(line_width)
        self._canvas.rect(x, y, width, height, stroke=1 if stroke is not None else 0, fill=1 if fill is not None else 0)
        self._canvas.restoreState()

    def _line(self, x1: float, y1: float, x2: float, y2: float, *, color, width: float) -> None:
        self._canvas.saveState()
        self._canvas.setStrokeColor(color)
        self._canvas.setLineWidth(width)
        self._canvas.line(x1, y1, x2, y2)
        self._canvas.restoreState()

    def _draw_accent_bar(self) -> None:
        self._rect(0, PAGE_HEIGHT - 8, PAGE_WIDTH, 8, fill=Theme.primary)

    def _draw_running_header(self) -> None:
        self._draw_accent_bar()
        self._line(
            MARGIN_LEFT,
            PAGE_HEIGHT - 35,
            PAGE_WIDTH - MARGIN_RIGHT,
            PAGE_HEIGHT - 35,
            color=Theme.border_light,
            width=0.5,
        )
        self._text(
            MARGIN_LEFT,
            PAGE_HEIGHT - 30,
            self.settings.report_running_title,
            font=self.fonts.body,
            size=8,
            color=Theme.text_muted,
        )

    def _draw_footer(self) -> None:
        label = f'Page {self.page_number}'
        width = _string_width(label, self.fonts.body, 8)
        self._text((PAGE_WIDTH - width) / 2, 25, label, font=self.fonts.body, size=8, color=Theme.text_muted)

    def _draw_section_title(self, title: str) -> None:
        self._rect(MARGIN_LEFT - 10, self.cursor_y - 4, 3, 14, fill=Theme.primary)
        self._text(MARGIN_LEFT, self.cursor_y, title, font=self.fonts.heading, size=11, color=Theme.primary)
        self.cursor_y -= SECTION_TITLE_HEIGHT

    def _draw_title_block(self) -> None:
        height = 20.0 + 22.0 + 30.0 + 25.0
        self.ensure_space(height)
        self._place('title', height)
        payload = self.payload

        self._text(MARGIN_LEFT, self.cursor_y, self.settings.report_brand, font=self.fonts.heading, size=24, color=Theme.text_primary)
        self.cursor_y -= 20
        self._text(MARGIN_LEFT, self.cursor_y, self.settings.report_tagline, font=self.fonts.body, size=11, color=Theme.text_secondary)
        self.cursor_y -= 22

        if payload.project_name:
            badge_text = _ellipsize(f'Project: {payload.project_name}', CONTENT_WIDTH * 0.6, self.fonts.heading, 10)
            badge_width = _string_width(badge_text, self.fonts.heading, 10) + 16
            self._rect(
                MARGIN_LEFT,
                self.cursor_y - 3,
                badge_width,
                18,
                fill=Theme.primary_light,
                stroke=Theme.primary_border,
            )
            self._text(MARGIN_LEFT + 8, self.cursor_y + 2, badge_text, font=self.fonts.heading, size=10, color=Theme.primary_text)

        self.cursor_y -= 30
        self._line(MARGIN_LEFT, self.cursor_y, PAGE_WIDTH - MARGIN_RIGHT, self.cursor_y, color=Theme.border, width=1)
        self.cursor_y -= 25

    def _draw_metadata_block(self) -> None:
        payload = self.payload
        rows = [
            ('Generated:', _format_date(payload.generated_at)),
            ('Document:', payload.document_name or 'N/A'),
            ('Model:', payload.llm_model or 'N/A'),
            ('Version:', payload.version),
        ]
        top = FIRST_PAGE_TOP
        right_x = PAGE_WIDTH - MARGIN_RIGHT
        self._place('metadata', len(rows) * 14.0, top=top)
        for index, (label, value) in enumerate(rows):
            y = top - index * 14
            value = _ellipsize(value, 200, self.fonts.body, 10)
            full_width = _string_width(f'{label} {value}', self.fonts.body, 10)
            label_width = _string_width(label, self.fonts.heading, 10)
            self._text(right_x - full_width, y, label, font=self.fonts.heading, size=10, color=Theme.text_muted)
            self._text(right_x - full_width + label_width + 3, y, value, font=self.fonts.body, size=10, color=Theme.text_primary)

    def _draw_overview(self) -> None:
        stats = self.payload.stats
        height = SECTION_TITLE_HEIGHT + STAT_CARD_HEIGHT
        self.ensure_space(height)
        self._place('overview', height)
        self._draw_section_title('OVERVIEW')

        card_width = (CONTENT_WIDTH - STAT_CARD_GAP * 2) / 3
        cards = [
            (
                'ANNOTATIONS',
                str(stats.accepted_count + stats.rejected_count),
                f'{stats.accepted_count} Accepted / {stats.rejected_count} Rejected',
            ),
            ('TOTAL TOKENS', str(stats.total_tokens or 0), 'Estimated usage'),
            ('LABELS', str(stats.labels_count), f'{stats.rules_count} Rules defined'),
        ]
        for index, (title, value, subtitle) in enumerate(cards):
            x = MARGIN_LEFT + index * (card_width + STAT_CARD_GAP)
            y = self.cursor_y - STAT_CARD_HEIGHT
            self._rect(x, y, card_width, STAT_CARD_HEIGHT, fill=Theme.bg_cream, stroke=Theme.border)
            self._text(x + 12, y + STAT_CARD_HEIGHT - 18, title, font=self.fonts.heading, size=9, color=Theme.text_muted)
            self._text(x + 12, y + STAT_CARD_HEIGHT - 45, value, font=self.fonts.heading, size=22, color=Theme.text_primary)
            self._text(
                x + 12,
                y + 18,
                _ellipsize(subtitle, card_width - 24, self.fonts.body, 9),
                font=self.fonts.body,
                size=9,
                color=Theme.text_secondary,
            )
        self.cursor_y -= STAT_CARD_HEIGHT + 30

    def _draw_table_header(self) -> None:
        self._rect(MARGIN_LEFT, self.cursor_y - TABLE_HEADER_HEIGHT, CONTENT_WIDTH, TABLE_HEADER_HEIGHT, fill=Theme.bg_grey)
        x = MARGIN_LEFT
        for header, width in zip(('', 'LABEL NAME', 'COUNT', 'DESCRIPTION'), TABLE_COLUMNS):
            if header:
                self._text(x + 10, self.cursor_y - 16, header, font=self.fonts.heading, size=9, color=Theme.text_muted)
            x += width
        self.cursor_y -= TABLE_HEADER_HEIGHT

    def _draw_label_row(self, label: Label, count: int) -> None:
        self.ensure_space(TABLE_ROW_HEIGHT)
        self._place('label_row', TABLE_ROW_HEIGHT)
        top = self.cursor_y
        self._line(MARGIN_LEFT, top, PAGE_WIDTH - MARGIN_RIGHT, top, color=Theme.border_light, width=0.5)

        x = MARGIN_LEFT
        swatch = parse_label_color(label.color or label.name)
        self._rect(
            x + 8,
            top - 20,
            12,
            12,
            fill=colors.Color(*swatch.rgb),
            stroke=Theme.border_light,
            line_width=0.5,
        )
        x += TABLE_COLUMNS[0]
        name = _ellipsize(label.name, TABLE_COLUMNS[1] - 20, self.fonts.mono, 10)
        self._text(x + 10, top - 18, name, font=self.fonts.mono, size=10, color=Theme.text_primary)
        x += TABLE_COLUMNS[1]
        self._text(x + 10, top - 18, str(count), font=self.fonts.heading, size=10, color=Theme.text_primary)
        x += TABLE_COLUMNS[2]
        desc_lines = wrap_text(label.desc or '', TABLE_COLUMNS[3] - 20, self.fonts.body, 9)
        for index, line in enumerate(desc_lines[:2]):
            if index == 1 and len(desc_lines) > 2:
                line = _ellipsize(line + ' ...', TABLE_COLUMNS[3] - 20, self.fonts.body, 9)
            self._text(x + 10, top - 15 - index * 10, line, font=self.fonts.body, size=9, color=Theme.text_secondary)
        self.cursor_y -= TABLE_ROW_HEIGHT

    def _draw_empty_row(self, message: str) -> None:
        self.ensure_space(TABLE_ROW_HEIGHT)
        self._place('empty_row', TABLE_ROW_HEIGHT)
        self._line(MARGIN_LEFT, self.cursor_y, PAGE_WIDTH - MARGIN_RIGHT, self.cursor_y, color=Theme.border_light, width=0.5)
        self._text(MARGIN_LEFT + 10, self.cursor_y - 18, message, font=self.fonts.body, size=9, color=Theme.text_muted)
        self.cursor_y -= TABLE_ROW_HEIGHT

    def _draw_label_table(self) -> None:
        height = SECTION_TITLE_HEIGHT + TABLE_HEADER_HEIGHT
        self.ensure_space(height)
        self._place('label_table', height)
        self._draw_section_title('LABEL BREAKDOWN')
        self._draw_table_header()

        counts = {item.label: item.count for item in self.payload.stats.annotation_counts}
        if not self.payload.labels:
            self._draw_empty_row('No labels defined.')
        for label in self.payload.labels:
            self._draw_label_row(label, counts.get(label.name, 0))
        self.cursor_y -= 20

    def _rule_for(self, evaluation: RuleEvaluation) -> Rule | None:
        for rule in self.payload.rules or []:
            if rule.name == evaluation.rule_id:
                return rule
        return None

    def _card_header(self, evaluation: RuleEvaluation) -> _CardLine:
        def draw(baseline: float) -> None:
            right = PAGE_WIDTH - MARGIN_RIGHT
            has_confidence = evaluation.confidence is not None
            status_text = 'PASSED' if evaluation.passed else 'FAILED'
            status_color = Theme.success if evaluation.passed else Theme.danger
            status_bg = Theme.success_light if evaluation.passed else Theme.danger_light
            status_width = _string_width(status_text, self.fonts.heading, 8) + 12
            badge_x = right - status_width - 12 - (60 if has_confidence else 0)

            name = _ellipsize(evaluation.rule_id, badge_x - MARGIN_LEFT - 24, self.fonts.heading, 10)
            self._text(MARGIN_LEFT + 12, baseline, name, font=self.fonts.heading, size=10, color=Theme.text_primary)
            self._rect(badge_x, baseline - 2, status_width, 14, fill=status_bg, stroke=status_color, line_width=0.5)
            self._text(badge_x + 6, baseline + 2, status_text, font=self.fonts.heading, size=8, color=status_color)
            if has_confidence:
                confidence = float(evaluation.confidence)
                self._text(right - 50, baseline + 2, 'Conf:', font=self.fonts.heading, size=8, color=Theme.text_muted)
                self._text(
                    right - 25,
                    baseline + 2,
                    f'{confidence * 100:.0f}%',
                    font=self.fonts.mono,
                    size=8,
                    color=_confidence_color(confidence),
                )

        return _CardLine(height=CARD_HEADER_HEIGHT, draw=draw)

    def _text_line(self, text: str, *, x: float, font: str, size: float, color, background=None) -> _CardLine:
        def draw(baseline: float) -> None:
            if background is not None:
                self._rect(MARGIN_LEFT + 12, baseline - 3, CARD_INNER_WIDTH, LINE_HEIGHT, fill=background)
            self._text(x, baseline, text, font=font, size=size, color=color)

        return _CardLine(height=LINE_HEIGHT, draw=draw)

    @staticmethod
    def _spacer(height: float) -> _CardLine:
        return _CardLine(height=height, draw=lambda baseline: None)

    def _card_lines(self, evaluation: RuleEvaluation) -> list[_CardLine]:
        rule = self._rule_for(evaluation)
        logic = (rule.logic if rule else '').strip()
        lines: list[_CardLine] = [self._card_header(evaluation)]

        if logic:
            for text in wrap_text(logic, CARD_INNER_WIDTH, self.fonts.mono, 9):
                lines.append(
                    self._text_line(
                        text,
                        x=MARGIN_LEFT + 18,
                        font=self.fonts.mono,
                        size=9,
                        color=Theme.text_secondary,
                        background=Theme.bg_grey,
                    )
                )
            lines.append(self._spacer(16))

        lines.append(
            _CardLine(
                height=12,
                draw=lambda baseline: self._text(
                    MARGIN_LEFT + 12, baseline, 'RATIONALE', font=self.fonts.heading, size=8, color=Theme.text_muted
                ),
            )
        )
        rationale = markdown_to_plain(evaluation.rationale) or 'No rationale provided.'
        for text in wrap_text(rationale, CARD_INNER_WIDTH, self.fonts.body, 9):
            lines.append(self._text_line(text, x=MARGIN_LEFT + 12, font=self.fonts.body, size=9, color=Theme.text_primary))
        lines.append(self._spacer(14))

        citations = [str(item).strip() for item in evaluation.citations if str(item).strip()]
        if citations:
            lines.append(
                _CardLine(
                    height=12,
                    draw=lambda baseline: self._text(
                        MARGIN_LEFT + 12, baseline, 'EVIDENCE', font=self.fonts.heading, size=8, color=Theme.text_muted
                    ),
                )
            )
            for citation in citations:
                lines.extend(self._citation_lines(citation))
        return lines

    def _citation_lines(self, citation: str) -> list[_CardLine]:
        marker = ''
        content = citation
        match = _CITATION_MARKER_RE.match(citation)
        if match:
            marker, content = match.group(1), match.group(2)
        content = markdown_to_plain(content)
        indent = CITATION_INDENT if marker else 0.0
        wrapped = wrap_text(content, CONTENT_WIDTH - CITATION_INDENT - 20, self.fonts.body, 9) or ['']

        lines: list[_CardLine] = []
        for index, text in enumerate(wrapped):
            line = self._text_line(
                text,
                x=MARGIN_LEFT + 12 + indent,
                font=self.fonts.body,
                size=9,
                color=Theme.text_secondary,
            )
            if index == 0 and marker:
                line = _CardLine(height=line.height, draw=self._with_marker(line.draw, marker))
            lines.append(line)
        lines.append(self._spacer(6))
        return lines

    def _with_marker(self, draw: Callable[[float], None], marker: str) -> Callable[[float], None]:
        def wrapped(baseline: float) -> None:
            self._text(MARGIN_LEFT + 12, baseline, marker, font=self.fonts.mono, size=9, color=Theme.text_secondary)
            draw(baseline)

        return wrapped

    @staticmethod
    def card_height(lines: list[_CardLine]) -> float:
        return CARD_BASELINE_OFFSET + sum(line.height for line in lines) + CARD_PAD_BOTTOM

    def _draw_rule_card(self, evaluation: RuleEvaluation, *, follows_title: bool = False) -> None:
        lines = self._card_lines(evaluation)
        height = self.card_height(lines)
        # the first card shares its page with the section title
        limit = PAGE_CONTENT_HEIGHT - (SECTION_TITLE_HEIGHT if follows_title else 0.0)
        if height > limit:
            self._spill_rule_card(evaluation, lines, height)
            return

        self.ensure_space(height)
        self._place('rule_card', height)
        top = self.cursor_y
        self._rect(MARGIN_LEFT, top - height, CONTENT_WIDTH, height, fill=Theme.white, stroke=Theme.border_light)
        baseline = top - CARD_BASELINE_OFFSET
        for line in lines:
            line.draw(baseline)
            baseline -= line.height
        self.cursor_y = top - height - CARD_GAP

    def _close_card_segment(self, top: float, bottom: float) -> None:
        self._place('rule_card_segment', top - bottom, top=top)
        self._rect(MARGIN_LEFT, bottom, CONTENT_WIDTH, top - bottom, stroke=Theme.border_light)

    def _spill_rule_card(self, evaluation: RuleEvaluation, lines: list[_CardLine], height: float) -> None:
        logger.warning(
            'Rule evaluation %s needs %.0fpt, more than the room on a page (%.0fpt); spilling across pages',
            evaluation.rule_id,
            height,
            PAGE_CONTENT_HEIGHT,
        )
        self.ensure_space(CARD_BASELINE_OFFSET + lines[0].height)
        self._place('rule_card', height, overflow=True)
        segment_top = self.cursor_y
        baseline = self.cursor_y - CARD_BASELINE_OFFSET
        for line in lines:
            if baseline - line.height < BOTTOM_LIMIT:
                self._close_card_segment(segment_top, baseline - CARD_PAD_BOTTOM)
                self._break_page()
                segment_top = self.cursor_y
                baseline = self.cursor_y - LINE_HEIGHT
            line.draw(baseline)
            baseline -= line.height
        self._close_card_segment(segment_top, baseline - CARD_PAD_BOTTOM)
        self.cursor_y = baseline - CARD_PAD_BOTTOM - CARD_GAP

    def _draw_rule_evaluations(self) -> None:
        evaluations = list(self.payload.rule_evaluations or [])
        if not evaluations:
            return
        first_height = min(self.card_height(self._card_lines(evaluations[0])), PAGE_CONTENT_HEIGHT - SECTION_TITLE_HEIGHT)
        self.ensure_space(SECTION_TITLE_HEIGHT + first_height)
        self._place('rule_section', SECTION_TITLE_HEIGHT)
        self._draw_section_title('RULE EVALUATIONS')
        for index, evaluation in enumerate(evaluations):
            self._draw_rule_card(evaluation, follows_title=index == 0)

    def build(self) -> bytes:
        if self._built is not None:
            return self._built
        self._draw_accent_bar()
        self._draw_title_block()
        self._draw_metadata_block()
        self._draw_overview()
        self._draw_label_table()
        self._draw_rule_evaluations()
        self._draw_footer()
        self._canvas.showPage()
        self._canvas.save()
        self.layout.page_count = self.page_number
        self._built = self._buffer.getvalue()
        logger.info('Summary report laid out on %d page(s)', self.page_number)
        return self._built


def build_summary(payload: SummaryPayload) -> bytes:
    return SummaryReportBuilder(payload).build()


def _merge_with_pypdf(report_pdf_bytes: bytes, document_bytes: bytes) -> bytes | None:
    try:
        document = PdfReader(io.BytesIO(document_bytes))
        if document.is_encrypted and not document.decrypt(''):
            logger.warning('Annotated document is encrypted; pypdf cannot merge it')
            return None
        writer = PdfWriter()
        writer.append(PdfReader(io.BytesIO(report_pdf_bytes)))
        writer.append(document)
        output = io.BytesIO()
        writer.write(output)
    except Exception as exc:
        logger.warning('pypdf merge failed, trying PyMuPDF: %s', exc)
        return None
    return output.getvalue()


def _merge_with_pymupdf(report_pdf_bytes: bytes, document_bytes: bytes) -> bytes | None:
    try:
        report = open_document(report_pdf_bytes)
    except MalformedDocumentError as exc:
        logger.warning('Summary report could not be reopened: %s', exc)
        return None
    try:
        document = open_document(document_bytes)
        try:
            report.insert_pdf(document)
        finally:
            document.close()
        return report.tobytes(garbage=3, deflate=True)
    except Exception as exc:
        logger.warning('PyMuPDF merge failed: %s', exc)
        return None
    finally:
        report.close()


def prepend_summary(report_pdf_bytes: bytes, document_bytes: bytes) -> bytes:
    """Report pages first, then every page of ``document_bytes`` in original order."""
    if not document_bytes:
        return report_pdf_bytes

    merged = _merge_with_pypdf(report_pdf_bytes, document_bytes)
    if merged:
        return merged

    merged = _merge_with_pymupdf(report_pdf_bytes, document_bytes)
    if merged:
        return merged

    raise ExportError('failed to prepend summary pages to the annotated document')


def build_and_prepend_summary(overlaid_bytes: bytes, payload: SummaryPayload) -> bytes:
    return prepend_summary(build_summary(payload), overlaid_bytes)

from __future__ import annotations

from datetime import datetime, timezone

import pymupdf as fitz
import pytest

from annotaloop.errors import ExportError
from annotaloop.report import summary_pdf
from annotaloop.report.summary_pdf import (
    BOTTOM_LIMIT,
    CARD_PAD_BOTTOM,
    CONTENT_WIDTH,
    CONTINUATION_TOP,
    SummaryReportBuilder,
    build_summary,
    prepend_summary,
    wrap_text,
)
from annotaloop.types import Label, LabelCount, Rule, RuleEvaluation, SummaryPayload, SummaryStats
from conftest import make_pdf


GENERATED_AT = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _payload(**overrides) -> SummaryPayload:
    values = dict(
        document_name='contract.pdf',
        project_name='Vendor Contracts',
        llm_model='test-model',
        generated_at=GENERATED_AT,
    )
    values.update(overrides)
    return SummaryPayload(**values)


def _page_count(data: bytes) -> int:
    doc = fitz.open(stream=data, filetype='pdf')
    try:
        return doc.page_count
    finally:
        doc.close()


def _page_text(data: bytes, index: int) -> str:
    doc = fitz.open(stream=data, filetype='pdf')
    try:
        return doc.load_page(index).get_text()
    finally:
        doc.close()


def test_empty_payload_fits_on_one_page():
    builder = SummaryReportBuilder(_payload(project_name=None, llm_model=None))
    data = builder.build()
    assert builder.layout.page_count == 1
    assert _page_count(data) == 1
    text = _page_text(data, 0)
    assert 'AnnotaLoop' in text
    assert 'No labels defined.' in text
    assert 'RULE EVALUATIONS' not in text


def test_header_shows_document_and_stats():
    payload = _payload(
        labels=[Label(name='Amount', color='#10b981', desc='Monetary amounts')],
        stats=SummaryStats(
            labels_count=1,
            rules_count=0,
            accepted_count=3,
            rejected_count=1,
            total_tokens=1500,
            annotation_counts=[LabelCount(label='Amount', count=3)],
        ),
    )
    text = _page_text(build_summary(payload), 0)
    assert 'contract.pdf' in text
    assert 'Project: Vendor Contracts' in text
    assert '2024-05-01' in text
    assert '3 Accepted / 1 Rejected' in text
    assert '1500' in text
    assert 'Monetary amounts' in text


def test_label_rows_never_straddle_a_page_break():
    labels = [Label(name=f'Label {index:02d}', color='bg-blue-500', desc='Description ' * 12) for index in range(60)]
    builder = SummaryReportBuilder(_payload(labels=labels, stats=SummaryStats(labels_count=60)))
    data = builder.build()

    rows = builder.layout.of_kind('label_row')
    assert len(rows) == 60
    assert builder.layout.page_count > 1
    assert _page_count(data) == builder.layout.page_count
    for row in rows:
        assert row.bottom >= BOTTOM_LIMIT
    first_on_page_two = next(row for row in rows if row.page == 2)
    assert first_on_page_two.top == CONTINUATION_TOP
    assert 'AnnotaLoop Summary' in _page_text(data, 1)


def test_rule_card_moves_whole_to_next_page():
    labels = [Label(name=f'L{index}') for index in range(14)]
    evaluations = [
        RuleEvaluation(
            rule_id=f'Rule {index}',
            passed=index % 2 == 0,
            rationale='The clause satisfies the requirement. ' * 6,
            citations=['[1] Section 4.2 payment terms', '[2] Schedule B'],
            confidence=0.75,
        )
        for index in range(6)
    ]
    rules = [Rule(name=f'Rule {index}', logic='Payment terms must not exceed 45 days.') for index in range(6)]
    builder = SummaryReportBuilder(_payload(labels=labels, rules=rules, rule_evaluations=evaluations))
    builder.build()

    cards = builder.layout.of_kind('rule_card')
    assert len(cards) == 6
    assert not any(card.overflow for card in cards)
    for card in cards:
        assert card.bottom >= BOTTOM_LIMIT
    breaks = [current for previous, current in zip(cards, cards[1:]) if current.page > previous.page]
    assert breaks
    for card in breaks:
        assert card.top == CONTINUATION_TOP


def test_oversized_rule_card_is_flagged_and_spills(caplog):
    rationale = '\n\n'.join(f'Finding {index}: the clause deviates from policy.' for index in range(150))
    payload = _payload(
        rule_evaluations=[RuleEvaluation(rule_id='Exhaustive rule', passed=False, rationale=rationale)],
    )
    builder = SummaryReportBuilder(payload)
    with caplog.at_level('WARNING', logger='annotaloop.report.summary_pdf'):
        data = builder.build()

    cards = builder.layout.of_kind('rule_card')
    assert len(cards) == 1
    assert cards[0].overflow
    assert builder.layout.page_count >= 3
    assert _page_count(data) == builder.layout.page_count
    assert any('spilling' in record.getMessage() for record in caplog.records)
    assert 'Finding 149' in _page_text(data, builder.layout.page_count - 1)

    segments = builder.layout.of_kind('rule_card_segment')
    assert [segment.page for segment in segments] == list(range(cards[0].page, builder.layout.page_count + 1))
    for segment in segments:
        assert segment.bottom >= BOTTOM_LIMIT - CARD_PAD_BOTTOM

    doc = fitz.open(stream=data, filetype='pdf')
    try:
        for index in range(cards[0].page - 1, builder.layout.page_count):
            frames = [
                drawing['rect']
                for drawing in doc.load_page(index).get_drawings()
                if drawing['rect'].height > 5 and abs(drawing['rect'].width - CONTENT_WIDTH) < 1
            ]
            assert frames, f'page {index + 1} has no card frame'
    finally:
        doc.close()


@pytest.mark.parametrize('finding_count', [57, 58, 59])
def test_section_title_stays_with_a_nearly_full_page_card(finding_count):
    rationale = '\n\n'.join(f'Finding {index}.' for index in range(finding_count))
    payload = _payload(rule_evaluations=[RuleEvaluation(rule_id='Long rule', passed=True, rationale=rationale)])
    builder = SummaryReportBuilder(payload)
    builder.build()

    section = builder.layout.of_kind('rule_section')[0]
    card = builder.layout.of_kind('rule_card')[0]
    assert card.page == section.page
    assert card.top == section.bottom


def test_wrap_text_respects_width_and_newlines():
    lines = wrap_text('alpha beta gamma delta epsilon\nzeta', 60, 'Helvetica', 10)
    assert lines[-1] == 'zeta'
    assert all(summary_pdf._string_width(line, 'Helvetica', 10) <= 60 for line in lines)
    assert ' '.join(lines[:-1]) == 'alpha beta gamma delta epsilon'


def test_wrap_text_splits_long_tokens():
    token = 'x' * 200
    lines = wrap_text(token, 50, 'Helvetica', 10)
    assert len(lines) > 1
    assert ''.join(lines) == token


def test_prepend_places_report_first():
    document = make_pdf([[((72, 100), 'Original page one')], [((72, 100), 'Original page two')]])
    report = build_summary(_payload())
    merged = prepend_summary(report, document)
    assert _page_count(merged) == _page_count(report) + 2
    assert 'AnnotaLoop' in _page_text(merged, 0)
    assert 'Original page one' in _page_text(merged, 1)
    assert 'Original page two' in _page_text(merged, 2)


def test_prepend_falls_back_to_pymupdf(monkeypatch):
    monkeypatch.setattr(summary_pdf, '_merge_with_pypdf', lambda report, source: None)
    document = make_pdf([[((72, 100), 'Only page')]])
    merged = prepend_summary(build_summary(_payload()), document)
    assert _page_count(merged) == 2
    assert 'Only page' in _page_text(merged, 1)


def test_prepend_raises_when_every_merge_fails(monkeypatch):
    monkeypatch.setattr(summary_pdf, '_merge_with_pypdf', lambda report, source: None)
    monkeypatch.setattr(summary_pdf, '_merge_with_pymupdf', lambda report, source: None)
    with pytest.raises(ExportError):
        prepend_summary(build_summary(_payload()), make_pdf([[]]))


def test_build_and_prepend_summary():
    document = make_pdf([[((72, 100), 'Annotated body')]])
    merged = summary_pdf.build_and_prepend_summary(document, _payload())
    assert _page_count(merged) == 2
    assert 'Annotated body' in _page_text(merged, 1)


def test_cjk_payload_renders():
    payload = _payload(labels=[Label(name='金额', desc='合同金额')])
    builder = SummaryReportBuilder(payload)
    builder.build()
    assert builder.fonts.body == summary_pdf.CJK_FONT_NAME
    assert builder.layout.page_count == 1

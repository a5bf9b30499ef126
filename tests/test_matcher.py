from __future__ import annotations

from annotaloop.anchoring.matcher import MatchThresholds, find_fuzzy_span, find_match
from annotaloop.anchoring.text_index import compact_projection, index_pages, normalize_strict
from conftest import make_page, make_run


REVENUE_LINE = 'The quarterly revenue increased by twelve percent compared to last year.'


def test_thresholds_clamp_fragment_length():
    thresholds = MatchThresholds()
    assert thresholds.fragment_length(10) == 8
    assert thresholds.fragment_length(56) == 16
    assert thresholds.fragment_length(200) == 24
    assert thresholds.max_span(50) == 70


def test_strict_match_returns_the_needle(invoice_pdf):
    pages = index_pages(invoice_pdf)
    needle = 'Payment due in 30 days'
    match = find_match(pages, needle)
    assert match is not None
    assert match.strategy == 'strict'
    assert match.page_number == 1
    assert match.text == normalize_strict(needle)


def test_match_on_later_page(invoice_pdf):
    match = find_match(index_pages(invoice_pdf), 'interest at 1.5% per month')
    assert match is not None
    assert match.page_number == 2


def test_blank_pages_are_skipped(blank_then_text_pdf):
    match = find_match(index_pages(blank_then_text_pdf), 'State of Delaware')
    assert match is not None
    assert match.page_number == 2


def test_match_spanning_hyphenated_line_break():
    page = make_page([make_run('the inter-'), make_run('national market', y=686)])
    match = find_match([page], 'international market')
    assert match is not None
    assert match.strategy == 'strict'
    assert match.start_offset == 4
    assert len(match.runs) == 2
    assert match.end_offset == len('national market')
    assert match.text == 'international market'


def test_compact_match_ignores_punctuation_and_spacing():
    page = make_page([make_run('Payment due in 30 days from the invoice date.')])
    match = find_match([page], 'Payment due in 30-days, from')
    assert match is not None
    assert match.strategy == 'compact'
    assert match.text == 'payment due in 30 days from'


def test_short_needle_never_matches_loosely():
    page = make_page([make_run('Payment due in 30 days')])
    # compact form "duein30days" would match exactly but is too short
    assert find_match([page], 'due-in 30 days') is None
    assert find_match([page], 'due in 31 days') is None
    assert find_match([page], 'due in 30 days') is not None


def test_fuzzy_match_tolerates_changed_middle():
    page = make_page([make_run(REVENUE_LINE)])
    needle = 'The quarterly revenue rose by twelve percent compared to last year'
    match = find_match([page], needle)
    assert match is not None
    assert match.strategy == 'fuzzy'
    assert match.text.startswith('the quarterly reve')
    assert match.text.endswith('last year')


def test_fuzzy_match_rejects_spans_that_are_too_long():
    filler = ' '.join(['unrelated words'] * 10)
    page = make_page([make_run(f'The quarterly revenue {filler} compared to last year')])
    needle = 'The quarterly revenue rose by twelve percent compared to last year'
    assert find_match([page], needle) is None


def test_fuzzy_tail_must_follow_head():
    projection = compact_projection([make_run('compared to last year. The quarterly revenue fell.')])
    needle = 'thequarterlyrevenuerosebytwelvepercentcomparedtolastyear'
    assert find_fuzzy_span(projection, needle, MatchThresholds()) is None


def test_custom_thresholds_allow_longer_spans():
    filler = ' '.join(['unrelated words'] * 10)
    page = make_page([make_run(f'The quarterly revenue {filler} compared to last year')])
    needle = 'The quarterly revenue rose by twelve percent compared to last year'
    match = find_match([page], needle, thresholds=MatchThresholds(span_ratio=5.0))
    assert match is not None
    assert match.strategy == 'fuzzy'


def test_empty_needle_has_no_match(invoice_pdf):
    assert find_match(index_pages(invoice_pdf), '   ') is None

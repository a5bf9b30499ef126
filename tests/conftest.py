from __future__ import annotations

import json
from pathlib import Path

import pymupdf as fitz
import pytest

from annotaloop.anchoring.text_index import TextRun, Viewport, build_page_index


PAGE_SIZE = (595.0, 842.0)


def make_pdf(pages: list[list[tuple[tuple[float, float], str]]]) -> bytes:
    """One entry per page; each line is ``((x, baseline_y), text)`` in top-left page points."""
    doc = fitz.open()
    for lines in pages:
        page = doc.new_page(width=PAGE_SIZE[0], height=PAGE_SIZE[1])
        for point, text in lines:
            page.insert_text(point, text, fontsize=12, fontname='helv')
    data = doc.tobytes()
    doc.close()
    return data


def make_run(text: str, x: float = 72.0, y: float = 700.0, *, char_width: float = 6.0, size: float = 12.0, eol: bool = True) -> TextRun:
    return TextRun(
        text=text,
        transform=(size, 0.0, 0.0, size, x, y),
        width=char_width * len(text),
        height=size,
        has_eol=eol,
    )


def make_page(runs: list[TextRun], *, page_number: int = 1, scale: float = 1.0):
    return build_page_index(page_number, runs, Viewport(page_width=PAGE_SIZE[0], page_height=PAGE_SIZE[1], scale=scale))


@pytest.fixture
def invoice_pdf() -> bytes:
    return make_pdf(
        [
            [
                ((72, 100), 'INVOICE 2024-117'),
                ((72, 130), 'Total due: $542.10 today'),
                ((72, 160), 'Payment due in 30 days from the invoice date.'),
            ],
            [
                ((72, 100), 'Late payments accrue interest at 1.5% per month.'),
            ],
        ]
    )


@pytest.fixture
def blank_then_text_pdf() -> bytes:
    return make_pdf([[], [((72, 100), 'Governing law is the State of Delaware.')]])


@pytest.fixture
def review_payload() -> dict:
    return {
        'projectName': 'Vendor Contracts',
        'documentName': 'invoice.pdf',
        'labels': [
            {'id': 'l1', 'name': 'Amount', 'color': 'bg-emerald-500', 'desc': 'Monetary amounts'},
            {'id': 'l2', 'name': 'Terms', 'color': '#3366ff', 'desc': 'Payment terms'},
        ],
        'rules': [
            {'id': 'r1', 'name': 'Net terms', 'logic': 'Payment terms must not exceed 45 days.'},
        ],
        'review': {
            'modelUsed': 'test-model',
            'inputTokens': 1200,
            'outputTokens': 300,
            'annotations': [
                {
                    'id': 'a1',
                    'text': '$542.10',
                    'labelId': 'Amount',
                    'rationale': 'The **total** amount owed.',
                    'status': 'accepted',
                },
                {
                    'id': 'a2',
                    'text': 'Payment due in 30 days',
                    'labelId': 'Terms',
                    'status': 'rejected',
                },
                {
                    'id': 'a3',
                    'text': 'This passage does not appear anywhere in the document',
                    'labelId': 'Terms',
                    'status': 'pending',
                },
            ],
            'ruleEvaluations': [
                {
                    'ruleId': 'Net terms',
                    'pass': True,
                    'rationale': 'Terms are net 30.',
                    'citations': ['[1] Payment due in 30 days from the invoice date.'],
                    'confidence': 0.92,
                }
            ],
        },
    }


@pytest.fixture
def review_file(tmp_path: Path, review_payload: dict) -> Path:
    path = tmp_path / 'review.json'
    path.write_text(json.dumps(review_payload), encoding='utf-8')
    return path


@pytest.fixture(autouse=True)
def isolated_data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    from annotaloop.config import get_settings

    monkeypatch.setenv('DATA_DIR', str(tmp_path / 'data'))
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Sequence

from annotaloop.anchoring.cache import CoordinateCache
from annotaloop.anchoring.text_index import index_pages, open_document
from annotaloop.config import get_settings
from annotaloop.errors import MalformedDocumentError
from annotaloop.report.overlay import render_overlay
from annotaloop.report.summary_pdf import build_summary, prepend_summary
from annotaloop.types import (
    AnnotationStatus,
    Label,
    LabelCount,
    ReviewData,
    Rule,
    SummaryPayload,
    SummaryStats,
    utcnow,
)


logger = logging.getLogger(__name__)


@dataclass
class ExportResult:
    pdf_bytes: bytes
    unanchored_ids: list[str] = field(default_factory=list)
    page_count: int = 0
    summary_pages: int = 0


def build_summary_payload(
    document_name: str,
    review: ReviewData | None,
    labels: Sequence[Label] | None = None,
    rules: Sequence[Rule] | None = None,
    *,
    project_name: str | None = None,
    generated_at: datetime | None = None,
) -> SummaryPayload:
    review = review or ReviewData()
    labels = list(labels or [])
    rules = list(rules or [])
    annotations = review.annotations

    accepted = sum(1 for item in annotations if item.status == AnnotationStatus.accepted)
    rejected = sum(1 for item in annotations if item.status == AnnotationStatus.rejected)
    counts = [
        LabelCount(
            label=label.name,
            count=sum(
                1
                for item in annotations
                if item.label_id == label.name and item.status == AnnotationStatus.accepted
            ),
        )
        for label in labels
    ]

    return SummaryPayload(
        document_name=document_name,
        project_name=project_name,
        llm_model=review.model_used or 'Unknown',
        generated_at=generated_at or review.processed_at or utcnow(),
        version=get_settings().report_version,
        labels=labels,
        stats=SummaryStats(
            labels_count=len(labels),
            rules_count=len(rules),
            accepted_count=accepted,
            rejected_count=rejected,
            input_tokens=review.input_tokens,
            output_tokens=review.output_tokens,
            total_tokens=(review.input_tokens or 0) + (review.output_tokens or 0),
            annotation_counts=counts,
        ),
        rules=rules,
        rule_evaluations=review.rule_evaluations,
    )


def _page_count(pdf_bytes: bytes) -> int:
    doc = open_document(pdf_bytes)
    try:
        return int(doc.page_count)
    finally:
        doc.close()


def export_annotated_pdf(
    source_bytes: bytes,
    review: ReviewData | None,
    labels: Sequence[Label] | None = None,
    rules: Sequence[Rule] | None = None,
    *,
    document_name: str = 'document.pdf',
    project_name: str | None = None,
    include_summary: bool = True,
    cache: CoordinateCache | None = None,
) -> ExportResult:
    """Produce the annotated copy of ``source_bytes``, optionally led by summary pages.

    Annotations that cannot be located are exported without a highlight and
    reported in ``unanchored_ids``. The summary is only added when the review
    carries at least one annotation.
    """
    if not source_bytes:
        raise MalformedDocumentError('document is empty')

    review = review or ReviewData()
    pages = index_pages(source_bytes)
    overlay = render_overlay(source_bytes, review.annotations, pages, labels, cache=cache)
    pdf_bytes = overlay.pdf_bytes

    summary_pages = 0
    if include_summary and review.annotations:
        payload = build_summary_payload(
            document_name,
            review,
            labels,
            rules,
            project_name=project_name,
        )
        report_bytes = build_summary(payload)
        summary_pages = _page_count(report_bytes)
        pdf_bytes = prepend_summary(report_bytes, pdf_bytes)

    result = ExportResult(
        pdf_bytes=pdf_bytes,
        unanchored_ids=list(overlay.anchoring.unanchored_ids),
        page_count=_page_count(pdf_bytes),
        summary_pages=summary_pages,
    )
    logger.info(
        'Exported %s: %d pages (%d summary), %d unanchored annotations',
        document_name,
        result.page_count,
        summary_pages,
        len(result.unanchored_ids),
    )
    return result

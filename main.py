from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from annotaloop.anchoring.cache import CoordinateCache
from annotaloop.anchoring.service import match_annotation
from annotaloop.anchoring.text_index import index_pages
from annotaloop.config import get_settings
from annotaloop.errors import AnnotaloopError
from annotaloop.export import export_annotated_pdf
from annotaloop.storage import coordinate_cache_path, load_review_bundle, write_bytes_atomic
from annotaloop.types import Label


def _print_json(payload: dict) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _error(message: str) -> int:
    _print_json({'status': 'error', 'message': message})
    return 2


def _read_pdf(value: str) -> tuple[Path, bytes | None, str | None]:
    settings = get_settings()
    pdf_path = Path(value).expanduser().resolve()
    if not pdf_path.exists() or not pdf_path.is_file():
        return pdf_path, None, f'PDF not found: {pdf_path}'
    file_size = int(pdf_path.stat().st_size)
    if file_size <= 0:
        return pdf_path, None, f'PDF is empty: {pdf_path}'
    if file_size > int(settings.max_pdf_bytes):
        return (
            pdf_path,
            None,
            f'PDF too large: {file_size} bytes, max allowed {int(settings.max_pdf_bytes)} bytes',
        )
    return pdf_path, pdf_path.read_bytes(), None


def cmd_index(args: argparse.Namespace) -> int:
    pdf_path, data, problem = _read_pdf(args.pdf)
    if problem:
        return _error(problem)

    pages = index_pages(data, scale=args.scale)
    _print_json(
        {
            'document': pdf_path.name,
            'page_count': len(pages),
            'pages': [
                {
                    'page_number': page.page_number,
                    'runs': len(page.runs),
                    'strict_length': len(page.strict.text),
                    'compact_length': len(page.compact.text),
                    'empty': page.is_empty,
                    'viewport': {'width': page.viewport.width, 'height': page.viewport.height},
                }
                for page in pages
            ],
        }
    )
    return 0


def cmd_match(args: argparse.Namespace) -> int:
    _, data, problem = _read_pdf(args.pdf)
    if problem:
        return _error(problem)

    pages = index_pages(data, scale=args.scale)
    labels = [Label(name=args.label, color=args.label_color or '')] if args.label else []
    result = match_annotation(pages, args.text, args.label or '', labels)
    if result is None:
        _print_json({'status': 'not_found', 'text': args.text})
        return 0

    _print_json(
        {
            'status': 'found',
            'strategy': result.match.strategy if result.match else None,
            'matched_text': result.match.text if result.match else None,
            'coords': [coord.model_dump(mode='json', by_alias=True) for coord in result.coords],
            'color': result.color.model_dump(mode='json', by_alias=True),
        }
    )
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    pdf_path, data, problem = _read_pdf(args.pdf)
    if problem:
        return _error(problem)

    review_path = Path(args.review).expanduser().resolve()
    if not review_path.exists():
        return _error(f'Review file not found: {review_path}')
    try:
        bundle = load_review_bundle(review_path)
    except (ValueError, OSError) as exc:
        return _error(f'Invalid review file {review_path}: {exc}')

    document_name = args.document_name or bundle.document_name or pdf_path.name
    cache_path = coordinate_cache_path(document_name) if args.cache else None
    cache = CoordinateCache.load(cache_path) if cache_path is not None else None

    try:
        result = export_annotated_pdf(
            data,
            bundle.review,
            bundle.labels,
            bundle.rules,
            document_name=document_name,
            project_name=args.project_name or bundle.project_name,
            include_summary=not args.no_summary,
            cache=cache,
        )
    except AnnotaloopError as exc:
        return _error(str(exc))

    out_path = Path(args.out).expanduser().resolve()
    write_bytes_atomic(out_path, result.pdf_bytes)
    if cache is not None and cache_path is not None:
        cache.save(cache_path)

    _print_json(
        {
            'status': 'ok',
            'output_path': str(out_path),
            'page_count': result.page_count,
            'summary_pages': result.summary_pages,
            'unanchored_ids': result.unanchored_ids,
        }
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='AnnotaLoop annotation export CLI')
    parser.add_argument('--log-level', default='WARNING', help='Logging level (DEBUG, INFO, WARNING, ...)')
    sub = parser.add_subparsers(dest='command', required=True)

    index = sub.add_parser('index', help='Extract and normalize the text layer of a PDF')
    index.add_argument('--pdf', required=True, help='Path to PDF file')
    index.add_argument('--scale', type=float, required=False, help='Viewport scale override')
    index.set_defaults(func=cmd_index)

    match = sub.add_parser('match', help='Locate a passage and print its highlight boxes')
    match.add_argument('--pdf', required=True, help='Path to PDF file')
    match.add_argument('--text', required=True, help='Passage to locate')
    match.add_argument('--label', required=False, help='Label name used for the highlight color')
    match.add_argument('--label-color', required=False, help='Label color token (hex or bg-<name>-<shade>)')
    match.add_argument('--scale', type=float, required=False, help='Viewport scale override')
    match.set_defaults(func=cmd_match)

    export = sub.add_parser('export', help='Write the annotated PDF')
    export.add_argument('--pdf', required=True, help='Path to source PDF file')
    export.add_argument('--review', required=True, help='Path to review bundle JSON')
    export.add_argument('--out', required=True, help='Output PDF path')
    export.add_argument('--no-summary', action='store_true', help='Skip the summary pages')
    export.add_argument('--document-name', required=False, help='Document name shown in the summary')
    export.add_argument('--project-name', required=False, help='Project name shown in the summary')
    export.add_argument('--cache', action='store_true', help='Reuse and persist resolved coordinates')
    export.set_defaults(func=cmd_export)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    try:
        return int(args.func(args))
    except AnnotaloopError as exc:
        return _error(str(exc))


if __name__ == '__main__':
    raise SystemExit(main())

from __future__ import annotations

import re
from typing import Any

from markdown_it import MarkdownIt


_MARKDOWN_PARSER: MarkdownIt | None = None


def _normalize_newlines(value: str) -> str:
    return value.replace('\r\n', '\n').replace('\r', '\n')


def _markdown_parser() -> MarkdownIt:
    global _MARKDOWN_PARSER
    if _MARKDOWN_PARSER is None:
        _MARKDOWN_PARSER = MarkdownIt('commonmark', {'html': False}).enable('table').enable('strikethrough')
    return _MARKDOWN_PARSER


def _inline_text(token: Any) -> str:
    parts: list[str] = []
    for child in token.children or []:
        if child.type in {'text', 'code_inline'}:
            parts.append(child.content)
        elif child.type in {'softbreak', 'hardbreak'}:
            parts.append(' ')
        elif child.type == 'image':
            parts.append(child.content)
    return ''.join(parts)


def markdown_to_plain(value: Any) -> str:
    """Strip markdown markup from model-written text so it can be drawn as plain lines."""
    text = _normalize_newlines(str(value or '')).strip()
    if not text:
        return ''

    lines: list[str] = []
    bullet_pending = False
    ordinal_stack: list[int] = []
    for token in _markdown_parser().parse(text):
        if token.type == 'ordered_list_open':
            ordinal_stack.append(int(token.attrGet('start') or 1))
        elif token.type == 'bullet_list_open':
            ordinal_stack.append(0)
        elif token.type in {'ordered_list_close', 'bullet_list_close'}:
            if ordinal_stack:
                ordinal_stack.pop()
        elif token.type == 'list_item_open':
            bullet_pending = True
        elif token.type == 'inline':
            content = _inline_text(token).strip()
            if not content:
                continue
            if bullet_pending:
                ordinal = ordinal_stack[-1] if ordinal_stack else 0
                if ordinal:
                    content = f'{ordinal}) {content}'
                    ordinal_stack[-1] = ordinal + 1
                else:
                    content = '• ' + content
                bullet_pending = False
            lines.append(content)
        elif token.type in {'fence', 'code_block'}:
            lines.extend(line for line in token.content.rstrip('\n').split('\n'))

    plain = '\n'.join(lines)
    return re.sub(r'[ \t]+', ' ', plain).strip()

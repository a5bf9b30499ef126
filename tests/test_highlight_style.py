from __future__ import annotations

from annotaloop.anchoring.colors import parse_label_color
from annotaloop.anchoring.highlight_style import DEFAULT_HIGHLIGHT_FILL, highlight_style


COLOR = parse_label_color('#ff0000')


def test_active_highlight_is_ringed():
    style = highlight_style('a1', 'a1', COLOR)
    assert style.active
    assert style.opacity == 0.8
    assert style.background_color == 'rgba(255, 0, 0, 0.35)'
    assert style.to_css()['box-shadow'] == '0 0 0 2px #3b82f6'


def test_inactive_highlight_has_no_ring():
    style = highlight_style('a1', 'a2', COLOR)
    assert not style.active
    assert style.opacity == 1.0
    assert 'box-shadow' not in style.to_css()


def test_hovered_highlight_is_dimmed():
    assert highlight_style('a1', None, COLOR, hovered_id='a1').opacity == 0.7


def test_missing_color_uses_default_fill():
    assert highlight_style('a1', None, None).background_color == DEFAULT_HIGHLIGHT_FILL


def test_style_depends_only_on_selection():
    assert highlight_style('a1', 'a3', COLOR) == highlight_style('a1', 'a2', COLOR)

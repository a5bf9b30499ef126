from __future__ import annotations

from dataclasses import dataclass

from annotaloop.types import AnnotationColor


DEFAULT_HIGHLIGHT_FILL = 'rgba(255, 200, 0, 0.35)'
ACTIVE_RING_COLOR = '#3b82f6'


@dataclass(frozen=True)
class HighlightStyle:
    background_color: str
    opacity: float
    box_shadow: str | None = None
    active: bool = False

    def to_css(self) -> dict[str, str]:
        css = {
            'background-color': self.background_color,
            'opacity': f'{self.opacity:g}',
            'border-radius': '3px',
        }
        if self.box_shadow:
            css['box-shadow'] = self.box_shadow
        return css


def highlight_style(
    annotation_id: str,
    active_id: str | None,
    color: AnnotationColor | None,
    *,
    hovered_id: str | None = None,
) -> HighlightStyle:
    """Display style of one highlight, derived from the current selection only."""
    fill = color.soft if color is not None else DEFAULT_HIGHLIGHT_FILL
    active = active_id is not None and annotation_id == active_id
    hovered = hovered_id is not None and annotation_id == hovered_id
    if active:
        return HighlightStyle(
            background_color=fill,
            opacity=0.8,
            box_shadow=f'0 0 0 2px {ACTIVE_RING_COLOR}',
            active=True,
        )
    return HighlightStyle(background_color=fill, opacity=0.7 if hovered else 1.0)

from __future__ import annotations

import colorsys
import math
import re
from typing import Iterable

from annotaloop.types import AnnotationColor, Label


TAILWIND_SWATCHES: dict[str, tuple[int, int, int]] = {
    'slate': (100, 116, 139),
    'gray': (107, 114, 128),
    'red': (239, 68, 68),
    'orange': (249, 115, 22),
    'amber': (245, 158, 11),
    'yellow': (234, 179, 8),
    'lime': (132, 204, 22),
    'green': (34, 197, 94),
    'emerald': (16, 185, 129),
    'teal': (20, 184, 166),
    'cyan': (6, 182, 212),
    'sky': (14, 165, 233),
    'blue': (59, 130, 246),
    'indigo': (99, 102, 241),
    'violet': (139, 92, 246),
    'purple': (168, 85, 247),
    'fuchsia': (217, 70, 239),
    'pink': (236, 72, 153),
    'rose': (244, 63, 94),
}
FALLBACK_SWATCH = TAILWIND_SWATCHES['gray']

_HEX_RE = re.compile(r'#([0-9a-fA-F]{6})')
_SWATCH_RE = re.compile(r'bg-([a-z]+)-(\d+)')


def _round_channel(value: float) -> int:
    return int(math.floor(value * 255 + 0.5))


def _rgb_to_hex(rgb: tuple[int, int, int]) -> str:
    return '#' + ''.join(f'{channel:02x}' for channel in rgb)


def _from_rgb255(rgb: tuple[int, int, int]) -> AnnotationColor:
    r, g, b = rgb
    return AnnotationColor(
        rgb=(r / 255.0, g / 255.0, b / 255.0),
        hex=_rgb_to_hex(rgb),
        soft=f'rgba({r}, {g}, {b}, 0.35)',
    )


def label_hash(name: str) -> int:
    """32-bit signed ``h * 31 + c`` string hash over UTF-16 code units."""
    value = 0
    encoded = name.encode('utf-16-le')
    for index in range(0, len(encoded), 2):
        unit = encoded[index] | (encoded[index + 1] << 8)
        value = (value * 31 + unit) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return value


def color_for_label(name: str) -> AnnotationColor:
    hue = abs(label_hash(name)) % 360
    r, g, b = colorsys.hls_to_rgb(hue / 360.0, 0.52, 0.68)
    rgb = (_round_channel(r), _round_channel(g), _round_channel(b))
    return AnnotationColor(
        rgb=(rgb[0] / 255.0, rgb[1] / 255.0, rgb[2] / 255.0),
        hex=_rgb_to_hex(rgb),
        soft=f'hsla({hue}, 80%, 70%, 0.35)',
    )


def parse_label_color(token: str) -> AnnotationColor:
    value = str(token or '').strip()
    hex_match = _HEX_RE.fullmatch(value)
    if hex_match:
        digits = hex_match.group(1)
        rgb = (int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16))
        return _from_rgb255(rgb)

    swatch_match = _SWATCH_RE.search(value)
    if swatch_match:
        return _from_rgb255(TAILWIND_SWATCHES.get(swatch_match.group(1), FALLBACK_SWATCH))

    return color_for_label(value)


def find_label(label_id: str, labels: Iterable[Label] | None) -> Label | None:
    for label in labels or []:
        if label.name == label_id:
            return label
    return None


def resolve_color(label_id: str, labels: Iterable[Label] | None = None) -> AnnotationColor:
    """Color for an annotation label, whether or not the label is defined."""
    label = find_label(label_id, labels)
    if label is None:
        return color_for_label(label_id)
    return parse_label_color(label.color or label.name)

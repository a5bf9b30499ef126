from __future__ import annotations

import pytest

from annotaloop.anchoring.geometry import MergeTolerance, Rect, compute_boxes, merge_boxes, run_rect, to_coords
from annotaloop.anchoring.text_index import Viewport
from conftest import PAGE_SIZE, make_run


VIEWPORT = Viewport(page_width=PAGE_SIZE[0], page_height=PAGE_SIZE[1], scale=1.0)


def test_run_rect_uses_uniform_character_width():
    run = make_run('Total due: $542.10 today', x=72, y=700)
    rect = run_rect(run, VIEWPORT, 11, 18)
    assert rect is not None
    assert rect.x == pytest.approx(72 + 11 * 6)
    assert rect.width == pytest.approx(7 * 6)
    assert rect.height == pytest.approx(12)
    # the box sits above the baseline in top-left coordinates
    assert rect.bottom == pytest.approx(PAGE_SIZE[1] - 700)


def test_run_rect_scales_with_viewport():
    run = make_run('abcdef', x=100, y=500)
    viewport = Viewport(page_width=PAGE_SIZE[0], page_height=PAGE_SIZE[1], scale=2.0)
    rect = run_rect(run, viewport, 0, 6)
    assert rect.x == pytest.approx(200)
    assert rect.width == pytest.approx(72)
    assert rect.height == pytest.approx(24)


def test_run_rect_empty_range():
    assert run_rect(make_run('abc'), VIEWPORT, 2, 2) is None
    assert run_rect(make_run(''), VIEWPORT, 0, 1) is None


def test_merge_joins_touching_boxes_on_one_line():
    rects = [Rect(10, 100, 40, 12), Rect(53, 100, 30, 12), Rect(80, 101, 20, 11)]
    merged = merge_boxes(rects)
    assert merged == [Rect(10, 100, 90, 12)]


def test_merge_keeps_distant_boxes_apart():
    rects = [Rect(10, 100, 40, 12), Rect(70, 100, 30, 12)]
    assert len(merge_boxes(rects)) == 2


def test_merge_keeps_lines_apart():
    rects = [Rect(10, 100, 40, 12), Rect(10, 114, 40, 12)]
    assert merge_boxes(rects) == rects


def test_merge_is_idempotent():
    rects = [
        Rect(10, 100, 40, 12),
        Rect(52, 100, 30, 12),
        Rect(120, 100, 30, 12),
        Rect(10, 114, 60, 12),
        Rect(72, 115, 10, 10),
    ]
    once = merge_boxes(rects)
    assert merge_boxes(once) == once


def test_merge_tolerance_scales_with_viewport():
    rects = [Rect(20, 200, 80, 24), Rect(120, 200, 60, 24)]
    assert len(merge_boxes(rects, MergeTolerance.for_scale(1.0))) == 2
    assert len(merge_boxes(rects, MergeTolerance.for_scale(2.0))) == 1


def test_merge_empty():
    assert merge_boxes([]) == []


def test_compute_boxes_across_wrapped_lines():
    runs = [make_run('the inter-', y=700), make_run('national market', y=686)]
    boxes = compute_boxes(runs, VIEWPORT, 4, 15)
    assert len(boxes) == 2
    assert boxes[0].x == pytest.approx(72 + 4 * 6)
    assert boxes[1].width == pytest.approx(15 * 6)


def test_compute_boxes_merges_runs_on_same_line():
    runs = [make_run('Total', x=72, y=700, eol=False), make_run('due', x=104, y=700)]
    boxes = compute_boxes(runs, VIEWPORT, 0, 3)
    assert len(boxes) == 1
    assert boxes[0].width == pytest.approx(104 + 18 - 72)


def test_to_coords_uses_one_based_page_index():
    coords = to_coords(3, [Rect(1, 2, 3, 4)])
    assert coords[0].page_index == 3
    rect = coords[0].bounding_rect
    assert (rect.x1, rect.y1, rect.x2, rect.y2) == (1, 2, 4, 6)
    assert coords[0].model_dump(by_alias=True)['pageIndex'] == 3

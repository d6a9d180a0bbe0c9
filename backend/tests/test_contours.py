"""Tests for staff line removal and contour boxes.

Synthetic line image: light gray paper (220) with one staff line across
row 30 and two dark blobs crossing it.

Run with:
    cd backend && pytest tests/ -v
"""

import numpy as np

from glyphscan.config import ContourConfig
from glyphscan.contours import get_contour_boxes, remove_staff_lines
from glyphscan.geometry import Rect

BLOBS = [Rect(300, 15, 12, 30), Rect(100, 15, 10, 30)]


def make_line_image():
    img = np.full((60, 600), 220, dtype=np.uint8)
    img[30, :] = 40
    for r in BLOBS:
        img[r.y:r.bottom, r.x:r.right] = 40
    return img


def test_staff_line_is_whitened_and_blobs_survive():
    cleaned = remove_staff_lines(make_line_image())
    assert cleaned[30, 200] == 255
    assert cleaned[10, 200] == 255
    assert cleaned[20, 105] < 128


def test_contour_boxes_are_sorted_and_cover_the_blobs():
    img = make_line_image()
    original = img.copy()
    boxes = get_contour_boxes(img)

    assert len(boxes) == 2
    assert [b.x for b in boxes] == sorted(b.x for b in boxes)
    for box, blob in zip(boxes, sorted(BLOBS)):
        for got, expected in zip(box, blob):
            assert abs(got - expected) <= 2
    np.testing.assert_array_equal(img, original)


def test_contour_boxes_accept_bgr():
    bgr = np.dstack([make_line_image()] * 3)
    boxes = get_contour_boxes(bgr, ContourConfig())
    assert len(boxes) == 2

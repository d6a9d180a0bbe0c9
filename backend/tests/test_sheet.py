"""Tests for pages, sheet lines and PDF loading.

Run with:
    cd backend && pytest tests/ -v
"""

import cv2 as cv
import fitz
import numpy as np
import pytest

from glyphscan.geometry import Rect
from glyphscan.pdf import load_pdf_page
from glyphscan.sheet import (
    Page, PageError, PageLoadError, SheetLine, SheetLineError, crop_image,
)


def page_image(rows=200, cols=700):
    img = np.full((rows, cols), 220, dtype=np.uint8)
    img[:, 0] = 0
    return img


@pytest.mark.parametrize("inner, bounding, relative", [
    (Rect(10, 60, 600, 40), Rect(0, 40, 620, 80), Rect(10, 20, 600, 40)),
    (Rect(5, 10, 100, 40), Rect(0, 0, 115, 70), Rect(5, 10, 100, 40)),
    (Rect(650, 170, 50, 30), Rect(640, 150, 60, 50), Rect(10, 20, 50, 30)),
], ids=["padded", "clipped_top_left", "clipped_bottom_right"])
def test_sheet_line_boxes(inner, bounding, relative):
    line = SheetLine(inner, page_image())
    assert line.bounding_box == bounding
    assert line.relative_inner_box == relative
    assert line.coordinates == (relative.y, relative.bottom)
    assert line.viewport.shape == (bounding.height, bounding.width)
    assert (line.left_edge, line.right_edge) == (bounding.x, bounding.right)


def test_viewport_is_a_copy():
    img = page_image()
    line = SheetLine(Rect(10, 60, 600, 40), img)
    line.viewport[:] = 1
    assert img[50, 50] == 220


def test_explicit_coordinates():
    line = SheetLine(Rect(10, 60, 600, 40), page_image(), coordinates=(22, 58))
    assert line.coordinates == (22, 58)


@pytest.mark.parametrize("inner", [Rect(10, 60, 0, 40), Rect(900, 500, 10, 10)],
                         ids=["empty", "off_page"])
def test_invalid_inner_box(inner):
    with pytest.raises(SheetLineError):
        SheetLine(inner, page_image())


def test_crop_image():
    img = np.arange(100).reshape(10, 10)
    assert crop_image(img, Rect(2, 3, 4, 2)).tolist() == [[32, 33, 34, 35], [42, 43, 44, 45]]


def test_page_converts_color_and_rejects_empty():
    page = Page(np.zeros((20, 30, 3), dtype=np.uint8))
    assert page.img.ndim == 2
    assert (page.height, page.width) == (20, 30)
    with pytest.raises(PageError):
        Page(np.zeros((0, 0), dtype=np.uint8))


def test_page_from_missing_path(tmp_path):
    with pytest.raises(PageLoadError):
        Page.from_path(str(tmp_path / "missing.png"))


def test_page_from_unreadable_image(tmp_path):
    path = tmp_path / "broken.png"
    path.write_bytes(b"not an image")
    with pytest.raises(PageLoadError):
        Page.from_path(str(path))


def test_page_from_png(tmp_path):
    path = str(tmp_path / "page.png")
    cv.imwrite(path, page_image(50, 60))
    page = Page.from_path(path)
    assert (page.height, page.width) == (50, 60)
    assert page.path == path


@pytest.fixture
def two_page_pdf(tmp_path):
    path = str(tmp_path / "score.pdf")
    doc = fitz.open()
    for _ in range(2):
        page = doc.new_page(width=72, height=144)
        page.draw_rect(fitz.Rect(10, 18, 60, 23), color=(0, 0, 0), fill=(0, 0, 0))
    doc.save(path)
    doc.close()
    return path


def test_load_pdf_page(two_page_pdf):
    img = load_pdf_page(two_page_pdf, 1, dpi=72)
    assert img.shape == (144, 72)
    assert img.dtype == np.uint8
    assert img[20, 30] < 128
    assert load_pdf_page(two_page_pdf, 0, dpi=72, grayscale=False).shape == (144, 72, 3)


def test_pdf_page_out_of_range(two_page_pdf):
    with pytest.raises(ValueError):
        load_pdf_page(two_page_pdf, 2)
    with pytest.raises(PageLoadError):
        Page.from_path(two_page_pdf, page_num=5)

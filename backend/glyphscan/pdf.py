"""PDF page extraction for scanned scores."""

import cv2 as cv
import fitz  # PyMuPDF
import numpy as np

DEFAULT_DPI = 300


def load_pdf_page(pdf_path, page_num=0, dpi=DEFAULT_DPI, grayscale=True):
    """Render a single PDF page to a numpy array.

    Args:
        pdf_path: path to the PDF file.
        page_num: 0-based page index.
        dpi: rendering resolution (default 300).
        grayscale: return a single-channel image (default) instead of BGR.

    Returns:
        uint8 numpy array, grayscale or BGR like cv.imread.
    """
    with fitz.open(pdf_path) as doc:
        if page_num < 0 or page_num >= len(doc):
            raise ValueError(
                f"Page {page_num} out of range (PDF has {len(doc)} pages)"
            )
        pix = doc[page_num].get_pixmap(dpi=dpi, alpha=False)
        img = np.frombuffer(pix.samples, dtype=np.uint8).reshape(pix.h, pix.w, pix.n)

    if pix.n == 1:
        return img[:, :, 0].copy() if grayscale else cv.cvtColor(img, cv.COLOR_GRAY2BGR)
    if grayscale:
        return cv.cvtColor(img, cv.COLOR_RGB2GRAY)
    return cv.cvtColor(img, cv.COLOR_RGB2BGR)

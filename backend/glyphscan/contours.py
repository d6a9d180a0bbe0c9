"""Contour boxes of the ink blobs in one sheet line.

Pipeline:
    1. Horizontal close (dilate + erode) keeps only long horizontal strokes,
       i.e. the staff lines.
    2. Add the inverted result to the line image, which whitens the staff
       lines and leaves everything else.
    3. Threshold + Gaussian blur
    4. findContours, convex hull, bounding rectangle per contour
    5. Sort left to right
"""

import logging

import cv2 as cv

from .config import ContourConfig
from .geometry import Rect

logger = logging.getLogger(__name__)


def _to_grayscale(img):
    if len(img.shape) == 2:
        return img
    return cv.cvtColor(img, cv.COLOR_BGR2GRAY)


def remove_staff_lines(line_image, config=ContourConfig()):
    """Whiten the long horizontal lines of a grayscale line image."""
    gray = _to_grayscale(line_image)
    width = max(1, gray.shape[1] // config.horizontal_size_fudge)
    kernel = cv.getStructuringElement(
        cv.MORPH_RECT, (width, config.horizontal_height)
    )
    closed = cv.dilate(gray, kernel)
    closed = cv.erode(closed, kernel)
    return cv.add(gray, cv.bitwise_not(closed))


def get_contour_boxes(line_image, config=ContourConfig()):
    """Bounding boxes of all contours, sorted by left edge.

    Boxes with the same left edge keep the order findContours produced them
    in (stable sort).

    Args:
        line_image: grayscale (or BGR) viewport of a sheet line, dark ink
            on light paper. Not modified.
        config: a ``ContourConfig``.

    Returns:
        list of ``Rect`` in line-relative coordinates.
    """
    processed = remove_staff_lines(line_image, config)
    _, processed = cv.threshold(
        processed, config.threshold_value, 255, config.threshold_type
    )
    processed = cv.GaussianBlur(
        processed, (config.gaussian_kernel, config.gaussian_kernel), 0, 0
    )

    contours, _ = cv.findContours(
        processed, cv.RETR_TREE, cv.CHAIN_APPROX_SIMPLE
    )
    boxes = [Rect(*cv.boundingRect(cv.convexHull(c))) for c in contours]
    boxes.sort(key=lambda r: r.x)
    logger.debug("Found %d contour boxes", len(boxes))
    return boxes

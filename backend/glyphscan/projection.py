"""Staff detection by horizontal projection.

Pipeline:
    1. Binarize (grayscale + Otsu threshold, ink = 255)
    2. Horizontal projection (ink pixels per row)
    3. Peak detection (scipy find_peaks on the smoothed projection)
    4. Group peaks into five-line staves, repairing groups with one or two
       missing lines and trimming groups with one extra line
    5. Horizontal extent of each stave from the columns where most of its
       lines carry ink

Each stave becomes one sheet line, see ``sheet.SheetLine``.
"""

import logging

import cv2 as cv
import numpy as np
from scipy.signal import find_peaks

logger = logging.getLogger(__name__)

STAFF_LINES = 5


def binarize(img):
    """Grayscale + inverted Otsu threshold: ink pixels become 255."""
    gray = cv.cvtColor(img, cv.COLOR_BGR2GRAY) if len(img.shape) == 3 else img
    _, binary = cv.threshold(gray, 0, 255, cv.THRESH_BINARY_INV + cv.THRESH_OTSU)
    return binary


def horizontal_projection(binary):
    return np.sum(binary > 0, axis=1).astype(np.float64)


def find_staff_line_peaks(projection, min_prominence_ratio=0.15):
    """Rows that are local maxima of the projection, i.e. staff line candidates.

    Args:
        projection: 1D array from horizontal_projection().
        min_prominence_ratio: required prominence as a fraction of the
            highest row count.

    Returns:
        (peaks, smoothed): peak row indices and the smoothed projection.
    """
    if len(projection) == 0 or np.max(projection) == 0:
        return np.array([], dtype=int), projection

    # Odd moving-average window of about 1/500th of the height.
    kernel_size = max(3, len(projection) // 500) | 1
    smoothed = np.convolve(
        projection, np.ones(kernel_size) / kernel_size, mode='same'
    )
    min_distance = max(3, len(projection) // 300)
    peaks, _ = find_peaks(
        smoothed,
        prominence=np.max(projection) * min_prominence_ratio,
        distance=min_distance,
    )
    return peaks, smoothed


def cluster_into_staves(peaks, expected_lines=STAFF_LINES, tolerance=0.4):
    """Group peak rows into staves of ``expected_lines`` rows each.

    The typical line spacing is the 25th percentile of all peak gaps (gaps
    between staves are rare and large, so they do not move it). A new group
    starts whenever a gap exceeds twice that spacing or the group would
    grow taller than one stave.

    Returns:
        (staves, orphans): list of int arrays, and the peaks left over.
    """
    peaks = np.asarray(peaks)
    if len(peaks) < expected_lines:
        return [], peaks.tolist()

    gaps = np.diff(peaks)
    spacing = np.sort(gaps)[len(gaps) // 4]
    max_span = spacing * (expected_lines - 1) * (1 + tolerance)

    groups = [[peaks[0]]]
    for gap, peak in zip(gaps, peaks[1:]):
        if gap > spacing * 2 or peak - groups[-1][0] > max_span:
            groups.append([peak])
        else:
            groups[-1].append(peak)

    staves, orphans = [], []
    for group in map(np.array, groups):
        stave = None
        if len(group) == expected_lines:
            stave = group
        elif expected_lines - 2 <= len(group) < expected_lines:
            stave = _repair_stave(group, expected_lines, spacing, tolerance)
        elif len(group) == expected_lines + 1:
            stave = _trim_stave(group)
        if stave is None:
            orphans.extend(group.tolist())
        else:
            staves.append(stave)
    return staves, orphans


def _repair_stave(group, expected_lines, spacing, tolerance):
    """Spread ``expected_lines`` rows evenly over the group, or None if the
    implied spacing is off by more than ``tolerance``."""
    implied = (group[-1] - group[0]) / (expected_lines - 1)
    if spacing > 0 and abs(implied - spacing) / spacing > tolerance:
        return None
    return np.array([int(round(group[0] + i * implied))
                     for i in range(expected_lines)])


def _trim_stave(group):
    """Drop the row whose removal gives the most even spacing."""
    candidates = [np.delete(group, i) for i in range(len(group))]
    return min(candidates, key=lambda c: np.var(np.diff(c)))


def stave_extent(binary, stave, min_lines=3):
    """Left and right column of a stave (right exclusive).

    A column belongs to the stave if at least ``min_lines`` of its staff
    line rows carry ink there. Returns None if no column qualifies.
    """
    rows = binary[np.asarray(stave), :] > 0
    # Staff lines are often a pixel thicker than the detected peak row.
    below = binary[np.minimum(np.asarray(stave) + 1, binary.shape[0] - 1), :] > 0
    columns = np.nonzero(np.sum(rows | below, axis=0) >= min_lines)[0]
    if len(columns) == 0:
        return None
    return int(columns[0]), int(columns[-1]) + 1


def find_staves(img):
    """Run the staff detection pipeline on a page image.

    Returns a list of ``(stave, (left, right))`` pairs, top to bottom,
    where ``stave`` holds the row of each staff line.
    """
    binary = binarize(img)
    peaks, _ = find_staff_line_peaks(horizontal_projection(binary))
    staves, orphans = cluster_into_staves(peaks)
    logger.info("Found %d staves (%d peaks, %d orphans)",
                len(staves), len(peaks), len(orphans))

    result = []
    for stave in sorted(staves, key=lambda s: s[0]):
        extent = stave_extent(binary, stave)
        if extent is None:
            logger.debug("Skipping stave at y=%d: no horizontal extent", stave[0])
            continue
        result.append((stave, extent))
    return result

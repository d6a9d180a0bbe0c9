"""Tuning parameters for contour extraction and line scanning.

All values are in pixels of the rectified page unless noted. The defaults
were tuned on phone photos of A4 pages scaled to roughly 700x900.
"""

from dataclasses import dataclass

import cv2 as cv


@dataclass(frozen=True)
class ContourConfig:
    """Parameters for ``contours.get_contour_boxes``."""

    gaussian_kernel: int = 3
    threshold_value: float = 0.0
    threshold_type: int = cv.THRESH_TOZERO_INV + cv.THRESH_OTSU
    # Staff lines are removed with a horizontal kernel of width
    # image_width / horizontal_size_fudge.
    horizontal_size_fudge: int = 30
    horizontal_height: int = 1


@dataclass(frozen=True)
class ScanConfig:
    """Thresholds for bar-line, line-start, note and discard scans."""

    # Voice connectors must exceed the staff height by this much.
    voice_connector_margin: int = 20
    # Height/width ratio for a composite to count as a vertical connector.
    connector_aspect: float = 3.0
    # Height/width ratio for a composite to count as a bar line.
    bar_aspect: float = 3.5
    # Window at the start of the line for the opening bar line.
    line_start_window: int = 30
    # A bar line may be this much shorter than the staff.
    staff_height_slack: int = 6
    # Bar line ends must be this close to the outer staff lines.
    staff_end_tolerance: int = 5
    # Minimum distance between two retained bar lines.
    min_bar_distance: int = 40
    # Width of the line-start furniture window (clef, time, key).
    furniture_window: int = 100
    # Round shapes at least this big are note heads.
    notehead_area: int = 50
    # Round shapes smaller than this next to a note head are dots.
    note_dot_area: int = 12
    bar_belief: int = 10

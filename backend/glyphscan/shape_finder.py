"""Interpret the ink blobs of one sheet line.

Can be used as a library or run directly for visual debugging:
    python -m glyphscan.shape_finder [image_or_pdf] [model] [page_num]

Pipeline per sheet line:
    1. Contour boxes of the line's viewport, left to right
    2. First pass: classify every box, build the neighbour graph
    3. Bar lines: find voice connectors and decide the voice position,
       then pick (single voice) or take (several voices) the bar lines
    4. Line start furniture scan (clef, time, key); logging only
    5. Belief heuristics, then discards (writing outside the staff) and
       notes as composite shapes
"""

import logging
import sys
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

import cv2 as cv

from .categories import Category, TopLevelCategory
from .config import ContourConfig, ScanConfig
from .contours import get_contour_boxes
from .geometry import Rect
from .shapes import CompositeShape, CompositeType, Neighbourhood, Shape

logger = logging.getLogger(__name__)

BAR_CATEGORIES = (TopLevelCategory.vline, TopLevelCategory.composite)

# Neighbours in these directions do not make a vertical line a note stem.
_STEM_IGNORED = {Neighbourhood.IN, Neighbourhood.AROUND,
                 Neighbourhood.E, Neighbourhood.W}

# What a note head takes in from its neighbours, by neighbour category.
_NOTE_DIRECTIONS = {
    # dots and flag pieces to the right
    TopLevelCategory.round: {Neighbourhood.E, Neighbourhood.SE},
    # accidentals to the left
    TopLevelCategory.composite: {Neighbourhood.W, Neighbourhood.SW,
                                 Neighbourhood.NW},
    # beams, ties, slurs above or below
    TopLevelCategory.hline: {Neighbourhood.N, Neighbourhood.S,
                             Neighbourhood.NE, Neighbourhood.SE,
                             Neighbourhood.NW, Neighbourhood.SW},
}

_NOTE_SEED_CATEGORIES = (Category.notehead, Category.note)


def _aspect(rect):
    """Height / width; infinite for zero-width boxes."""
    return rect.height / rect.width if rect.width else float("inf")


@dataclass
class LineStartScan:
    """Outcome of ``ShapeFinder.scan_start_of_line``.

    ``inspected`` lists the shapes looked at in order, ``candidates`` the
    composite shapes that may be clef, time or key signature, ``note_x``
    the position of the note head that ended the scan (None if the window
    ended first).
    """

    inspected: list = field(default_factory=list)
    candidates: list = field(default_factory=list)
    note_x: Optional[int] = None


class ShapeFinder:
    """Shapes, bar lines and composites of one sheet line.

    Use a fresh instance (or ``reset()``) per sheet line; instances share
    no state.
    """

    def __init__(self, contour_config=ContourConfig(), scan_config=ScanConfig()):
        self.contour_config = contour_config
        self.config = scan_config
        self.reset()

    def reset(self):
        self.shapes: list[Shape] = []
        # Left x -> indices of the shapes starting there, in insertion order.
        self._shapes_at: dict[int, list[int]] = {}
        self.composites: list[CompositeShape] = []
        self.bar_lines: dict[int, Shape] = {}
        self.voice_position = -1
        self.line_start = None
        # Set by first_pass when a fine classifier assigned the categories.
        self.fine_classified = False
        self._contour_boxes = None

    # ------------------------------------------------------------------
    # Shape access
    # ------------------------------------------------------------------

    def shapes_at(self, x) -> list[Shape]:
        return [self.shapes[i] for i in self._shapes_at.get(x, [])]

    def iter_by_x(self):
        """(x, shape) pairs, left to right."""
        for x in sorted(self._shapes_at):
            for i in self._shapes_at[x]:
                yield x, self.shapes[i]

    def neighbours(self, shape):
        """(direction, neighbour) pairs of ``shape``, by direction."""
        for direction in sorted(shape.neighbours_by_direction):
            for i in shape.neighbours_by_direction[direction]:
                yield direction, self.shapes[i]

    # ------------------------------------------------------------------
    # First pass
    # ------------------------------------------------------------------

    def get_contour_boxes(self, viewport):
        if self._contour_boxes is None:
            self._contour_boxes = get_contour_boxes(viewport, self.contour_config)
        return self._contour_boxes

    def first_pass(self, rectangles, viewport, classifier, fine_classifier=None):
        """Create one classified shape per rectangle and link neighbours.

        Rectangles are processed left to right, so every new shape only has
        to be checked against the shapes already known.
        """
        self.fine_classified = fine_classifier is not None
        for rect in sorted((Rect(*r) for r in rectangles), key=lambda r: r.x):
            crop = viewport[rect.y:rect.bottom, rect.x:rect.right]
            shape = Shape(
                rect,
                index=len(self.shapes),
                top_level_category=TopLevelCategory.from_code(
                    classifier.predict(crop, rect.x, rect.y)),
            )
            if fine_classifier is not None:
                shape.category = Category.from_code(
                    fine_classifier.predict(crop, rect.x, rect.y))

            for known in self.shapes:
                known.maybe_add_neighbour(shape)
            self.shapes.append(shape)
            self._shapes_at.setdefault(rect.x, []).append(shape.index)
        logger.debug("First pass: %d shapes at %d positions",
                     len(self.shapes), len(self._shapes_at))

    # ------------------------------------------------------------------
    # Bar lines
    # ------------------------------------------------------------------

    def scan_for_bar_lines(self, inner_box, staff_coords):
        """Decide the voice position and the bar lines of the line.

        Args:
            inner_box: line-relative ``Rect`` expected to hold the staff.
            staff_coords: (top, bottom) y of the outer staff lines.

        Returns:
            sorted x positions of the retained bar lines.
        """
        inner_box = Rect(*inner_box)
        top_line, bottom_line = staff_coords
        staff_height = bottom_line - top_line
        self.bar_lines = {}

        positions = self._find_voice_connectors(inner_box, staff_height)
        counts = Counter(p for p in positions.values() if p > 0)
        # Ties go to the lowest position.
        self.voice_position = max(sorted(counts), key=counts.get) if counts else 0

        if self.voice_position > 0:
            # Every tall connector is a bar line, undecided ones included.
            for x in sorted(positions):
                for shape in self.shapes_at(x):
                    if shape.top_level_category in BAR_CATEGORIES:
                        self._accept_bar(x, shape)
        else:
            self._find_single_voice_bar_lines(inner_box, top_line, bottom_line)
            self._prune_bar_lines()

        for x in sorted(self.bar_lines):
            self.add_composite_shape(CompositeType.BARLINE, self.bar_lines[x])
        return self.get_bar_positions()

    def _find_voice_connectors(self, inner_box, staff_height):
        """Long vertical shapes linking this staff to the ones above/below.

        Returns the voice position per x of every connector taller than the
        staff (1 top, 2 middle, 3 bottom, -1 undecided; first shape at an x
        wins).
        """
        cfg = self.config
        positions = {}
        have_first_vline = False
        for x, shape in self.iter_by_x():
            rect = shape.rectangle
            category = shape.top_level_category
            is_candidate = shape.category == Category.vertical
            if category == TopLevelCategory.composite:
                # Other vertical lines can be part of larger composites,
                # those are not found here.
                if (_aspect(rect) >= cfg.connector_aspect
                        or (not have_first_vline and x < cfg.line_start_window)):
                    is_candidate = True
                have_first_vline = True
            elif category == TopLevelCategory.vline:
                is_candidate = True
                have_first_vline = True
            if not is_candidate:
                continue
            if rect.height <= staff_height + cfg.voice_connector_margin:
                continue
            above_top = rect.y < inner_box.y
            below_bottom = rect.bottom > inner_box.bottom
            if below_bottom and not above_top:
                position = 1
            elif above_top and below_bottom:
                position = 2
            elif above_top:
                position = 3
            else:
                position = -1
            positions.setdefault(x, position)
        logger.debug("Voice connector positions: %s", positions)
        return positions

    def _find_single_voice_bar_lines(self, inner_box, top_line, bottom_line):
        cfg = self.config
        staff_height = bottom_line - top_line
        last_x = max((x for x, s in self.iter_by_x()
                      if s.top_level_category in BAR_CATEGORIES), default=None)
        have_first_vline = False

        for x in sorted(self._shapes_at):
            if x < inner_box.x:
                continue
            if x > inner_box.right:
                break
            for shape in self.shapes_at(x):
                category = shape.top_level_category
                if category not in BAR_CATEGORIES:
                    continue
                rect = shape.rectangle
                if not rect.intersects(inner_box):
                    continue

                # Whatever else is there, this ends the last bar.
                if x == last_x:
                    self._accept_bar(x, shape)
                    break

                if category == TopLevelCategory.composite and _aspect(rect) < cfg.bar_aspect:
                    continue

                if (not have_first_vline and x < cfg.line_start_window
                        and not self._bar_candidate_before(shape, inner_box)):
                    self._accept_bar(x, shape)
                    have_first_vline = True
                    continue

                if rect.height < staff_height - cfg.staff_height_slack:
                    continue
                if (abs(rect.y - top_line) > cfg.staff_end_tolerance
                        or abs(rect.bottom - bottom_line) > cfg.staff_end_tolerance):
                    continue
                if self._looks_like_note_stem(shape):
                    continue
                self._accept_bar(x, shape)

    def _bar_candidate_before(self, shape, inner_box):
        """True if a vline/composite touching the staff precedes ``shape``."""
        return any(
            other.top_level_category in BAR_CATEGORIES
            and other.rectangle.intersects(inner_box)
            for other in self.shapes[:shape.index]
        )

    def _looks_like_note_stem(self, shape):
        """Stems have note heads or beams above or below them."""
        for direction, neighbour in self.neighbours(shape):
            if direction in _STEM_IGNORED:
                continue
            if neighbour.top_level_category in (TopLevelCategory.round,
                                                TopLevelCategory.hline):
                return True
        return False

    def _accept_bar(self, x, shape):
        if x in self.bar_lines:
            return
        logger.debug("Adding bar line at %d", x)
        self.bar_lines[x] = shape
        shape.update_belief(Category.bar, self.config.bar_belief)

    def _prune_bar_lines(self):
        """Drop bar lines that are too close to the previous one.

        The first bar line is trusted. When two are closer than
        ``min_bar_distance``, the later one goes if nothing precedes the
        pair; otherwise the middle one of the last three goes.
        """
        xs = sorted(self.bar_lines)
        if not xs:
            logger.debug("No bar lines found")
            return

        before_previous, previous = None, xs[0]
        drop = []
        for x in xs[1:]:
            distance = x - previous
            logger.debug("Bar line distance: %d", distance)
            if distance >= self.config.min_bar_distance:
                before_previous, previous = previous, x
            elif before_previous is None:
                drop.append(x)
            else:
                logger.debug("Triplet: %d, %d, %d", before_previous, previous, x)
                drop.append(previous)
                previous = x

        for x in drop:
            shape = self.bar_lines.pop(x)
            shape.update_belief(Category.bar, -self.config.bar_belief)
            logger.debug("Dropping bar line at %d: %s", x, shape.describe())
        if drop:
            logger.info("Dropped %d bar lines", len(drop))

    def get_voice_position(self) -> int:
        """-1: not scanned, 0: single voice, 1/2/3: top/middle/bottom voice."""
        return self.voice_position

    def get_bar_positions(self) -> list[int]:
        return sorted(self.bar_lines)

    def get_bar_at(self, x):
        shape = self.bar_lines.get(x)
        if shape is None:
            logger.warning("No bar line exists at position %d", x)
        return shape

    # ------------------------------------------------------------------
    # Composites
    # ------------------------------------------------------------------

    def add_composite_shape(self, composite_type, seed):
        """Group ``seed`` with the neighbours that belong to the same symbol."""
        composite = CompositeShape(composite_type, seed)
        for direction, neighbour in self.neighbours(seed):
            if self._absorbs(composite_type, direction, neighbour):
                composite.add_shape(neighbour)
        self.composites.append(composite)
        return composite

    def _absorbs(self, composite_type, direction, neighbour):
        category = neighbour.top_level_category
        if composite_type == CompositeType.BARLINE:
            # Horizontal neighbours of a bar line are unrelated ink.
            return (category in (TopLevelCategory.round, TopLevelCategory.vline)
                    and direction not in (Neighbourhood.E, Neighbourhood.W))
        if composite_type == CompositeType.NOTE:
            if (category == TopLevelCategory.round
                    and neighbour.rectangle.area >= self.config.note_dot_area):
                return False
            return direction in _NOTE_DIRECTIONS.get(category, ())
        return True

    def is_shape_in_composite(self, shape) -> bool:
        return any(shape in composite for composite in self.composites)

    def get_composites(self) -> list[CompositeShape]:
        return self.composites

    # ------------------------------------------------------------------
    # Line scans
    # ------------------------------------------------------------------

    def scan_start_of_line(self, inner_box):
        """Walk the start of the line until the first note head.

        Composite shapes in the window are clef, time or key candidates;
        they are logged, not classified.
        """
        scan = LineStartScan()
        for x, shape in self.iter_by_x():
            if x - inner_box.x >= self.config.furniture_window:
                break
            scan.inspected.append(shape)
            category = shape.top_level_category
            if (category == TopLevelCategory.round
                    and shape.rectangle.area >= self.config.notehead_area):
                scan.note_x = x
                logger.debug("Line start ends with note head at %d", x)
                break
            if category == TopLevelCategory.composite:
                scan.candidates.append(shape)
                logger.debug("Clef/time/accidental candidate at %d", x)
        return scan

    def weigh_shapes(self, inner_box):
        """Adjust beliefs from size, position and containment."""
        for shape in self.shapes:
            category = shape.top_level_category
            if category not in (TopLevelCategory.round, TopLevelCategory.vline):
                continue
            rect = shape.rectangle
            small = rect.area <= self.config.notehead_area
            if category == TopLevelCategory.round and not small:
                # Note heads are at least this big, even outside the staff.
                shape.update_belief(Category.notehead, 1)
            if not rect.intersects(inner_box):
                if shape.number_of_neighbours() == 0 and small:
                    shape.update_belief(Category.speck, 2)
                else:
                    shape.update_belief(Category.piece, 1)
            if category == TopLevelCategory.round and shape.neighbours_in(Neighbourhood.IN):
                shape.update_belief(Category.piece, 1)

    def scan_for_discards(self, inner_box):
        """Wrap writing between staves and bleed from adjacent lines."""
        for shape in self.shapes:
            if self.is_shape_in_composite(shape):
                continue
            if shape.rectangle.intersects(inner_box):
                continue
            if any(n.rectangle.intersects(inner_box) for _, n in self.neighbours(shape)):
                continue
            self.add_composite_shape(CompositeType.OUTOFLINE, shape)

    def scan_for_notes(self):
        for shape in self.shapes:
            if self.is_shape_in_composite(shape):
                continue
            if self._is_note_seed(shape):
                self.add_composite_shape(CompositeType.NOTE, shape)

    def _is_note_seed(self, shape):
        """Fine category notehead or note.

        Only lines scanned without a fine classifier fall back on the
        ``weigh_shapes`` beliefs.
        """
        if self.fine_classified:
            return shape.category in _NOTE_SEED_CATEGORIES
        return shape.most_likely_category() == Category.notehead

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def init_line_scan(self, sheet_line, classifier, fine_classifier=None,
                       rectangles=None):
        """Build the shapes of ``sheet_line`` and find its bar lines.

        ``rectangles`` overrides contour extraction when the boxes are
        already known.
        """
        self.reset()
        viewport = sheet_line.viewport
        if rectangles is None:
            rectangles = self.get_contour_boxes(viewport)
        self.first_pass(rectangles, viewport, classifier, fine_classifier)
        self.scan_for_bar_lines(sheet_line.relative_inner_box, sheet_line.coordinates)
        logger.info("%s: voice position %d, %d bar lines",
                    sheet_line, self.voice_position, len(self.bar_lines))

    def scan_line(self, sheet_line, classifier, fine_classifier=None,
                  rectangles=None):
        """Run the full pipeline on one sheet line; returns the composites."""
        self.init_line_scan(sheet_line, classifier, fine_classifier, rectangles)
        inner_box = sheet_line.relative_inner_box
        self.line_start = self.scan_start_of_line(inner_box)
        self.weigh_shapes(inner_box)
        self.scan_for_discards(inner_box)
        self.scan_for_notes()
        return self.composites


def bar_line_extent(voice_position, sheet_line):
    """Page y range a bar line of this sheet line spans.

    Single lines span their own staff. Voice connectors reach to the edge
    of the sheet line on the side of the other voices.
    """
    box = sheet_line.bounding_box
    top, bottom = (box.y + c for c in sheet_line.coordinates)
    if voice_position == 1:
        return top, box.bottom
    if voice_position == 2:
        return box.y, box.bottom
    if voice_position == 3:
        return box.y, bottom
    return top, bottom


def scan_page(page, classifier, fine_classifier=None,
              contour_config=ContourConfig(), scan_config=ScanConfig()):
    """Scan every sheet line of ``page``; returns (sheet_line, finder) pairs."""
    results = []
    for sheet_line in page.sheet_lines():
        finder = ShapeFinder(contour_config, scan_config)
        finder.scan_line(sheet_line, classifier, fine_classifier)
        results.append((sheet_line, finder))
    return results


# ---------------------------------------------------------------------------
# Visualization (only used when running directly)
# ---------------------------------------------------------------------------

COMPOSITE_COLORS = {
    CompositeType.BARLINE: (127, 0, 0),
    CompositeType.NOTE: (0, 0, 200),
    CompositeType.OUTOFLINE: (127, 127, 127),
}


def draw_composites(sheet_line, finder):
    """BGR copy of the line's viewport with inner box, staff lines and composites."""
    display = sheet_line.viewport
    if len(display.shape) == 2:
        display = cv.cvtColor(display, cv.COLOR_GRAY2BGR)
    else:
        display = display.copy()
    inner = sheet_line.relative_inner_box
    cv.rectangle(display, (inner.x, inner.y), (inner.right, inner.bottom), (127, 0, 0), 1)
    for y in sheet_line.coordinates:
        cv.line(display, (0, y), (display.shape[1], y), (0, 127, 0), 1)
    for composite in finder.composites:
        r = composite.rectangle
        color = COMPOSITE_COLORS.get(composite.type, (0, 127, 127))
        cv.rectangle(display, (r.x, r.y), (r.right, r.bottom), color, 2)
    return display


def plot_results(page, results):
    """Page with bar lines drawn across their voice extent, plus every line overlay."""
    import matplotlib
    matplotlib.use('TkAgg')
    import matplotlib.pyplot as plt

    display = cv.cvtColor(page.img, cv.COLOR_GRAY2BGR)
    for sheet_line, finder in results:
        top, bottom = bar_line_extent(finder.voice_position, sheet_line)
        for x in finder.get_bar_positions():
            r = finder.get_bar_at(x).rectangle.shifted(
                sheet_line.bounding_box.x, sheet_line.bounding_box.y)
            middle = r.x + r.width // 2
            cv.line(display, (middle, top), (middle, bottom), (0, 0, 127), 1)
            cv.rectangle(display, (r.x, r.y), (r.right, r.bottom), (0, 200, 0), 1)

    n = max(1, len(results))
    _, axes = plt.subplots(n + 1, 1, figsize=(14, 4 + 2 * n), squeeze=False)
    axes[0][0].imshow(cv.cvtColor(display, cv.COLOR_BGR2RGB))
    axes[0][0].set_title(f"{len(results)} sheet lines")
    axes[0][0].axis('off')
    for ax, (sheet_line, finder) in zip(axes[1:], results):
        ax[0].imshow(cv.cvtColor(draw_composites(sheet_line, finder), cv.COLOR_BGR2RGB))
        ax[0].set_title(f"voice {finder.voice_position}, bars {finder.get_bar_positions()}")
        ax[0].axis('off')
    plt.tight_layout()
    plt.show()


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

def _print_summary(results, label):
    print(f"\n{label}: {len(results)} sheet lines")
    for i, (sheet_line, finder) in enumerate(results):
        types = Counter(c.type.name for c in finder.composites)
        print(f"  line {i}: y={sheet_line.inner_box.y}, "
              f"x={sheet_line.left_edge}..{sheet_line.right_edge}, "
              f"voice position {finder.voice_position}, "
              f"bars at {finder.get_bar_positions()}")
        print(f"    {len(finder.shapes)} shapes, composites: {dict(types)}")
        if finder.line_start is not None:
            print(f"    line start: {len(finder.line_start.candidates)} "
                  f"furniture candidates, first note at {finder.line_start.note_x}")


def main():
    """Usage: python -m glyphscan.shape_finder image_or_pdf model [page_num]
    [--kind=knn|svm|dtrees] [--fine=model] [--no-plot]
    """
    from .classifier import load_classifier
    from .sheet import Page

    logging.basicConfig(level=logging.INFO)
    args = [a for a in sys.argv[1:] if not a.startswith('--')]
    options = dict(a[2:].split('=', 1) for a in sys.argv[1:]
                   if a.startswith('--') and '=' in a)
    if len(args) < 2:
        print(main.__doc__)
        sys.exit(1)

    source, model_path = args[0], args[1]
    page_num = int(args[2]) if len(args) > 2 else 0
    kind = options.get('kind', 'knn')
    classifier = load_classifier(model_path, kind=kind)
    fine_classifier = None
    if 'fine' in options:
        fine_classifier = load_classifier(options['fine'], kind=kind)

    page = Page.from_path(source, page_num)
    results = scan_page(page, classifier, fine_classifier)
    _print_summary(results, source)
    if '--no-plot' not in sys.argv:
        plot_results(page, results)


if __name__ == "__main__":
    main()

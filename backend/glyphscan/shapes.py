"""Classified ink blobs and groups of them.

A ``Shape`` is one bounding box found by contour extraction, with the
category the classifier assigned to it, a set of accumulated beliefs about
what it really is, and its adjacent shapes by compass direction.

A ``CompositeShape`` groups shapes that together form one symbol: a bar
line, a note with its dots and accidentals, text outside the staff.

Shapes are owned by a ``ShapeFinder`` in a flat list; neighbour links are
indices into that list.
"""

import logging
from enum import Enum, IntEnum

from .categories import Category, TopLevelCategory, category_name
from .geometry import Rect

logger = logging.getLogger(__name__)

# Distances (in pixels) up to this are considered adjacent.
SMALL_DISTANCE = 2


class Neighbourhood(IntEnum):
    """Compass directions plus inside/outside/overlap."""

    UNKNOWN = 0
    N = 1
    NE = 2
    E = 3
    SE = 4
    S = 5
    SW = 6
    W = 7
    NW = 8
    IN = 9
    AROUND = 10
    INTERSECT = 11

    @property
    def opposite(self):
        return _OPPOSITES[self]


_OPPOSITES = {
    Neighbourhood.UNKNOWN: Neighbourhood.UNKNOWN,
    Neighbourhood.N: Neighbourhood.S,
    Neighbourhood.NE: Neighbourhood.SW,
    Neighbourhood.E: Neighbourhood.W,
    Neighbourhood.SE: Neighbourhood.NW,
    Neighbourhood.S: Neighbourhood.N,
    Neighbourhood.SW: Neighbourhood.NE,
    Neighbourhood.W: Neighbourhood.E,
    Neighbourhood.NW: Neighbourhood.SE,
    Neighbourhood.IN: Neighbourhood.AROUND,
    Neighbourhood.AROUND: Neighbourhood.IN,
    Neighbourhood.INTERSECT: Neighbourhood.INTERSECT,
}


class Shape:
    def __init__(self, rectangle: Rect, index: int = 0,
                 top_level_category: TopLevelCategory = TopLevelCategory.unknown,
                 category: Category = Category.undefined):
        self._rectangle = Rect(*rectangle)
        self.index = index
        self.top_level_category = top_level_category
        self.category = category
        self.beliefs: dict[Category, int] = {}
        self.neighbours_by_direction: dict[Neighbourhood, list[int]] = {}

    def __repr__(self):
        return (f"Shape(#{self.index}, {tuple(self._rectangle)}, "
                f"{self.top_level_category.name}/{self.category.name})")

    @property
    def rectangle(self) -> Rect:
        """Location relative to the enclosing sheet line's viewport."""
        return self._rectangle

    # --- Beliefs ---

    def update_belief(self, category: Category, diff: int):
        self.beliefs[category] = self.beliefs.get(category, 0) + diff

    def most_likely_category(self) -> Category:
        """Category with the strongest positive belief.

        Ties go to the lowest category value; without any positive belief
        the result is ``Category.undefined``.
        """
        best, best_belief = Category.undefined, 0
        for category in sorted(self.beliefs):
            if self.beliefs[category] > best_belief:
                best, best_belief = category, self.beliefs[category]
        return best

    def category_confidence(self, category: Category) -> int:
        return self.beliefs.get(category, 0)

    # --- Neighbours ---

    def number_of_neighbours(self) -> int:
        return sum(len(v) for v in self.neighbours_by_direction.values())

    def neighbours_in(self, direction: Neighbourhood) -> list[int]:
        return self.neighbours_by_direction.get(direction, [])

    def has_neighbour(self, other: "Shape", direction: Neighbourhood) -> bool:
        return other.index in self.neighbours_in(direction)

    def _add_neighbour(self, where: Neighbourhood, other: "Shape"):
        self.neighbours_by_direction.setdefault(where, []).append(other.index)

    def _link(self, where: Neighbourhood, other: "Shape"):
        self._add_neighbour(where, other)
        other._add_neighbour(where.opposite, self)
        return where

    def maybe_add_neighbour(self, other: "Shape"):
        """Record ``other`` as a neighbour if it is adjacent to this shape.

        Shapes are inserted left to right, so ``other`` never starts left
        of ``self``; only its left edge needs checking against this shape's
        right edge. At most one relation is recorded per pair. Returns the
        direction recorded on ``self``, or ``None``.
        """
        this = self._rectangle
        rect = other.rectangle

        if this.contains(rect):
            return self._link(Neighbourhood.AROUND, other)

        if this.intersects(rect):
            return self._link(Neighbourhood.INTERSECT, other)

        if abs(rect.x - this.right) <= SMALL_DISTANCE:
            # Top above ours, bottom near our top or within our span.
            if rect.y <= this.y and (
                    abs(rect.bottom - this.y) <= SMALL_DISTANCE
                    or this.y < rect.bottom <= this.bottom):
                return self._link(Neighbourhood.NE, other)
            # Bottom below ours, top near our bottom or within our span.
            if rect.bottom >= this.bottom and (
                    abs(rect.y - this.bottom) <= SMALL_DISTANCE
                    or this.y < rect.y <= this.bottom):
                return self._link(Neighbourhood.SE, other)
            nested = rect.y >= this.y and rect.bottom <= this.bottom
            straddling = rect.y <= this.y and rect.bottom >= this.bottom
            if nested or straddling:
                return self._link(Neighbourhood.E, other)

        overlaps_horizontally = rect.x <= this.right and rect.right >= this.x
        if abs(this.y - rect.bottom) <= SMALL_DISTANCE:
            if overlaps_horizontally:
                return self._link(Neighbourhood.N, other)
            return None
        if abs(rect.y - this.bottom) <= SMALL_DISTANCE and overlaps_horizontally:
            return self._link(Neighbourhood.S, other)
        return None

    def describe(self) -> str:
        beliefs = ", ".join(f"{category_name(c)}={v}"
                            for c, v in sorted(self.beliefs.items()))
        return (f"rectangle {tuple(self._rectangle)}, "
                f"top level {self.top_level_category.name}, "
                f"category {category_name(self.category)}"
                + (f", beliefs: {beliefs}" if beliefs else ""))


class CompositeType(Enum):
    """What a group of shapes stands for.

    NOTE: note head plus stem, dots, accidentals, expressive marks.
    NOTEGROUP: notes joined by connectors (chords, beamed notes).
    LINESTART: bar line, clef, time and key at the start of a line.
    BARLINE: single or double bar line, possibly with repeat marks.
    OTHER: unidentified item inside the staff.
    OUTOFLINE: outside the staff and unidentified, usually writing or a
    piece of an adjacent line.
    """

    UNKNOWN = 0
    NOTE = 1
    NOTEGROUP = 2
    LINESTART = 3
    BARLINE = 4
    OTHER = 5
    OUTOFLINE = 6


class CompositeShape:
    def __init__(self, type: CompositeType, seed: Shape):
        self.type = type
        self.shapes: list[Shape] = [seed]
        self._bounding_box = seed.rectangle

    def __repr__(self):
        return (f"CompositeShape({self.type.name}, {tuple(self._bounding_box)}, "
                f"{len(self.shapes)} shapes)")

    @property
    def seed(self) -> Shape:
        return self.shapes[0]

    @property
    def rectangle(self) -> Rect:
        return self._bounding_box

    def add_shape(self, shape: Shape):
        self.shapes.append(shape)
        self._bounding_box = self._bounding_box.union(shape.rectangle)

    def __contains__(self, shape):
        return any(s is shape for s in self.shapes)

    def __len__(self):
        return len(self.shapes)

"""Unit tests for rectangles, categories, shapes and composite shapes.

The adjacency cases all use the same reference shape, a 10x10 box at
(10, 10), and place a second box around it:

    x: 10..20, y: 10..20 (right/bottom exclusive)

Run with:
    cd backend && pytest tests/ -v
"""

import pytest

from glyphscan.categories import Category, TopLevelCategory, category_name
from glyphscan.geometry import Rect
from glyphscan.shapes import (
    CompositeShape, CompositeType, Neighbourhood as N, Shape,
)

REFERENCE = Rect(10, 10, 10, 10)


# ---------------------------------------------------------------------------
# Rect
# ---------------------------------------------------------------------------

def test_rect_edges_are_exclusive():
    r = Rect(10, 20, 5, 8)
    assert (r.right, r.bottom, r.area) == (15, 28, 40)


def test_touching_rects_do_not_intersect():
    assert not Rect(0, 0, 10, 10).intersects(Rect(10, 0, 10, 10))
    assert Rect(0, 0, 10, 10).intersection(Rect(10, 0, 10, 10)).area == 0


def test_rect_union_and_contains():
    a, b = Rect(0, 0, 10, 10), Rect(20, 5, 5, 20)
    u = a.union(b)
    assert u == Rect(0, 0, 25, 25)
    assert u.contains(a) and u.contains(b)
    assert not a.contains(u)


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("code, expected", [
    (108, TopLevelCategory.vline),
    (100.0, TopLevelCategory.round),
    (99.2, TopLevelCategory.hline),
    (109, TopLevelCategory.composite),
    (42, TopLevelCategory.unknown),
    (float("nan"), TopLevelCategory.unknown),
    (None, TopLevelCategory.unknown),
], ids=["vline", "float", "rounded", "composite", "out_of_range", "nan", "none"])
def test_top_level_code_decoding(code, expected):
    assert TopLevelCategory.from_code(code) == expected


def test_fine_code_decoding_falls_back_to_undefined():
    assert Category.from_code(104) == Category.notehead
    assert Category.from_code(-3) == Category.undefined


def test_category_names():
    assert category_name(Category.natural) == "undo accidental"
    assert category_name(12345) == "Unknown Category"


# ---------------------------------------------------------------------------
# Adjacency
# ---------------------------------------------------------------------------

ADJACENCY_CASES = [
    # (other rectangle, direction on reference, direction on other)
    ((12, 12, 4, 4), N.AROUND, N.IN),
    ((15, 15, 10, 10), N.INTERSECT, N.INTERSECT),
    ((21, 2, 5, 9), N.NE, N.SW),
    ((20, 15, 5, 10), N.SE, N.NW),
    ((21, 12, 5, 5), N.E, N.W),
    ((21, 5, 5, 20), N.E, N.W),
    ((12, 0, 5, 9), N.N, N.S),
    ((12, 21, 5, 5), N.S, N.N),
]


@pytest.mark.parametrize(
    "other_rect, here, there", ADJACENCY_CASES,
    ids=["contained", "overlap", "north_east", "south_east", "east_nested",
         "east_straddling", "north", "south"],
)
def test_adjacency(other_rect, here, there):
    this = Shape(REFERENCE, index=0)
    other = Shape(Rect(*other_rect), index=1)

    assert this.maybe_add_neighbour(other) == here
    assert this.neighbours_by_direction == {here: [1]}
    assert other.neighbours_by_direction == {there: [0]}
    assert here.opposite == there


@pytest.mark.parametrize("other_rect", [(40, 40, 5, 5), (24, 10, 5, 5), (12, 30, 5, 5)],
                         ids=["far", "gap_east", "gap_south"])
def test_distant_shapes_are_not_neighbours(other_rect):
    this = Shape(REFERENCE, index=0)
    other = Shape(Rect(*other_rect), index=1)
    assert this.maybe_add_neighbour(other) is None
    assert this.number_of_neighbours() == 0
    assert other.number_of_neighbours() == 0


def test_adjacency_is_symmetric():
    rects = [
        Rect(0, 10, 10, 20), Rect(2, 12, 4, 4), Rect(10, 5, 6, 6),
        Rect(10, 28, 6, 6), Rect(11, 12, 3, 12), Rect(14, 20, 8, 8),
        Rect(22, 0, 5, 9), Rect(23, 9, 3, 3), Rect(40, 10, 2, 30),
    ]
    shapes = []
    for i, r in enumerate(rects):
        shape = Shape(r, index=i)
        for known in shapes:
            known.maybe_add_neighbour(shape)
        shapes.append(shape)

    links = 0
    for shape in shapes:
        for direction, indices in shape.neighbours_by_direction.items():
            for i in indices:
                assert shapes[i].has_neighbour(shape, direction.opposite)
                links += 1
    assert links > 0


def test_containment_records_around_on_container():
    outer = Shape(Rect(0, 0, 50, 50), index=0)
    inner = Shape(Rect(10, 10, 5, 5), index=1)
    outer.maybe_add_neighbour(inner)
    assert outer.neighbours_in(N.AROUND) == [1]
    assert inner.neighbours_in(N.IN) == [0]


# ---------------------------------------------------------------------------
# Beliefs
# ---------------------------------------------------------------------------

def test_belief_update_is_reversible():
    shape = Shape(REFERENCE)
    shape.update_belief(Category.notehead, 3)
    before = shape.category_confidence(Category.notehead)
    shape.update_belief(Category.notehead, 7)
    shape.update_belief(Category.notehead, -7)
    assert shape.category_confidence(Category.notehead) == before == 3


def test_most_likely_category_ignores_non_positive_beliefs():
    shape = Shape(REFERENCE)
    assert shape.most_likely_category() == Category.undefined
    shape.update_belief(Category.speck, -2)
    shape.update_belief(Category.piece, 0)
    assert shape.most_likely_category() == Category.undefined
    shape.update_belief(Category.piece, 1)
    assert shape.most_likely_category() == Category.piece


def test_most_likely_category_tie_goes_to_lowest_value():
    shape = Shape(REFERENCE)
    shape.update_belief(Category.speck, 2)
    shape.update_belief(Category.dot, 2)
    shape.update_belief(Category.bar, 2)
    assert shape.most_likely_category() == Category.dot


def test_unknown_category_has_zero_confidence():
    assert Shape(REFERENCE).category_confidence(Category.flat) == 0


def test_rectangle_is_read_only():
    shape = Shape(REFERENCE)
    with pytest.raises(AttributeError):
        shape.rectangle = Rect(0, 0, 1, 1)


# ---------------------------------------------------------------------------
# Composite shapes
# ---------------------------------------------------------------------------

def test_composite_bounding_box_grows_monotonically():
    seed = Shape(Rect(50, 50, 10, 10), index=0)
    composite = CompositeShape(CompositeType.NOTE, seed)
    assert composite.rectangle == seed.rectangle
    for i, r in enumerate([(55, 40, 3, 5), (30, 52, 8, 8), (52, 52, 2, 2), (61, 70, 10, 3)]):
        previous = composite.rectangle
        composite.add_shape(Shape(Rect(*r), index=i + 1))
        assert composite.rectangle.contains(previous)
        assert composite.rectangle.contains(Rect(*r))
    assert composite.rectangle == Rect(30, 40, 41, 33)
    assert composite.seed is seed
    assert len(composite) == 5


def test_composite_membership_is_by_identity():
    seed = Shape(Rect(0, 0, 5, 5))
    twin = Shape(Rect(0, 0, 5, 5))
    composite = CompositeShape(CompositeType.BARLINE, seed)
    assert seed in composite
    assert twin not in composite

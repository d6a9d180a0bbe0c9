"""Glyph categories.

Two vocabularies are in use:

- ``TopLevelCategory``: the coarse classes a first classifier can tell apart
  reliably (vertical line, round blob, horizontal/curved connector, complex
  shape).
- ``Category``: the finer classes. Their values are the key codes used when
  labelling samples, so a trained model's raw output maps directly onto them.
"""

from enum import IntEnum


class TopLevelCategory(IntEnum):
    unknown = 0
    hline = 99       # connector piece
    round = 100      # dot
    vline = 108      # vertical line
    composite = 109  # complex

    @classmethod
    def from_code(cls, code):
        """Decode a classifier output, falling back to ``unknown``."""
        return _decode(cls, code, cls.unknown)


class Category(IntEnum):
    undefined = 0
    character = 97       # 'a'
    beats_break = 98     # 'b', 2-4 beats
    connector = 99       # 'c'
    dot = 100            # 'd'
    eighth_break = 101   # 'e'
    flat = 102           # 'f'
    violin_clef = 103    # 'g'
    notehead = 104       # 'h'
    bass_clef = 105      # 'i'
    speck = 107          # 'k'
    vertical = 108       # 'l'
    complex = 109        # 'm'
    note = 110           # 'n'
    piece = 112          # 'p'
    sharp = 115          # 's'
    natural = 117        # 'u'
    quarter_break = 120  # 'x'
    bar = 124            # '|', never labelled, only inferred

    @classmethod
    def from_code(cls, code):
        return _decode(cls, code, cls.undefined)


CATEGORY_NAMES = {
    Category.undefined: "undefined",
    Category.character: "character",
    Category.beats_break: "2-4 beats break",
    Category.connector: "connector piece",
    Category.dot: "dot",
    Category.eighth_break: "eighth break",
    Category.flat: "flat",
    Category.violin_clef: "violin clef",
    Category.notehead: "note head",
    Category.bass_clef: "bass clef",
    Category.speck: "speck",
    Category.vertical: "vertical line",
    Category.complex: "complex",
    Category.note: "note",
    Category.piece: "piece",
    Category.sharp: "sharp",
    Category.natural: "undo accidental",
    Category.quarter_break: "quarter break",
    Category.bar: "bar line",
}

UNKNOWN_CATEGORY_NAME = "Unknown Category"


def category_name(category):
    """Human-readable name for a fine or coarse category code."""
    try:
        return CATEGORY_NAMES[Category(int(category))]
    except (KeyError, ValueError):
        return UNKNOWN_CATEGORY_NAME


def _decode(enum_cls, code, default):
    # Stat models return floats; NaN and garbage decode to the default.
    try:
        return enum_cls(int(round(float(code))))
    except (TypeError, ValueError, OverflowError):
        return default

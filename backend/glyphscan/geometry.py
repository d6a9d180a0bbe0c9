"""Axis-aligned rectangles in image coordinates.

Follows the OpenCV convention: ``(x, y)`` is the top-left corner and the
right/bottom edges are exclusive, so ``right == x + width``.
"""

from typing import NamedTuple


class Rect(NamedTuple):
    x: int
    y: int
    width: int
    height: int

    @classmethod
    def from_corners(cls, left, top, right, bottom):
        return cls(left, top, max(0, right - left), max(0, bottom - top))

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    @property
    def area(self) -> int:
        return self.width * self.height

    def intersection(self, other: "Rect") -> "Rect":
        """Overlapping part of both rectangles (zero-sized if disjoint)."""
        left = max(self.x, other.x)
        top = max(self.y, other.y)
        right = min(self.right, other.right)
        bottom = min(self.bottom, other.bottom)
        if right <= left or bottom <= top:
            return Rect(left, top, 0, 0)
        return Rect(left, top, right - left, bottom - top)

    def intersects(self, other: "Rect") -> bool:
        return self.intersection(other).area > 0

    def union(self, other: "Rect") -> "Rect":
        """Smallest rectangle containing both."""
        return Rect.from_corners(
            min(self.x, other.x), min(self.y, other.y),
            max(self.right, other.right), max(self.bottom, other.bottom),
        )

    def contains(self, other: "Rect") -> bool:
        return (other.x >= self.x and other.y >= self.y
                and other.right <= self.right and other.bottom <= self.bottom)

    def shifted(self, dx: int, dy: int) -> "Rect":
        return Rect(self.x + dx, self.y + dy, self.width, self.height)

import logging
import os

import cv2
import numpy as np

from .geometry import Rect
from .pdf import load_pdf_page
from .projection import find_staves

logger = logging.getLogger(__name__)

# Padding around the staff lines that still belongs to a sheet line.
VERTICAL_PADDING_PX = 20
HORIZONTAL_PADDING_PX = 10


def crop_image(image, rect: Rect):
	"""View of ``image`` inside ``rect`` (no copy)."""
	return image[rect.y:rect.bottom, rect.x:rect.right]


class PageError(Exception):
	"""Base exception for Page-related errors."""
	pass


class PageLoadError(PageError):
	"""Raised when loading a page fails."""
	pass


class Page:
	"""A rectified grayscale page of sheet music."""

	def __init__(self, img: np.ndarray, path: str = None):
		if img is None or img.size == 0:
			raise PageError("Page image is empty")
		if len(img.shape) == 3:
			img = cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)
		self.img = img
		self.path = path
		self._sheet_lines: list[SheetLine] = None

	@classmethod
	def from_path(cls, path: str, page_num: int = 0):
		"""Load a page from an image file or one page of a PDF."""
		if not os.path.exists(path):
			raise PageLoadError(f"File not found: {path}")
		if path.lower().endswith(".pdf"):
			try:
				img = load_pdf_page(path, page_num)
			except ValueError as e:
				raise PageLoadError(str(e)) from e
		else:
			img = cv2.imread(path, cv2.IMREAD_GRAYSCALE)
		if img is None:
			raise PageLoadError(f"Failed to load image: {path}")
		return cls(img, path=path)

	@property
	def height(self) -> int:
		return self.img.shape[0]

	@property
	def width(self) -> int:
		return self.img.shape[1]

	def sheet_lines(self) -> list["SheetLine"]:
		"""Sheet lines of this page, top to bottom. Detected once."""
		if self._sheet_lines is None:
			self._sheet_lines = []
			for stave, (left, right) in find_staves(self.img):
				inner = Rect.from_corners(left, int(stave[0]), right, int(stave[-1]))
				try:
					self._sheet_lines.append(SheetLine(inner, self.img))
				except SheetLineError as e:
					logger.warning("Skipping sheet line at y=%d: %s", inner.y, e)
			logger.info("Page has %d sheet lines", len(self._sheet_lines))
		return self._sheet_lines


class SheetLineError(Exception):
	"""Raised when a sheet line cannot be built from its inner box."""
	pass


class SheetLine:
	"""One staff cut out of a page.

	``inner_box`` is the region holding the staff lines, in page coordinates.
	``bounding_box`` pads it by VERTICAL_PADDING_PX / HORIZONTAL_PADDING_PX,
	clipped to the page; ``viewport`` is a copy of the page inside it.
	Everything the shape finder sees is relative to ``bounding_box``.
	"""

	def __init__(self, inner_box: Rect, page_img: np.ndarray, coordinates: tuple = None):
		self.inner_box = Rect(*inner_box)
		if self.inner_box.area == 0:
			raise SheetLineError(f"Inner box {tuple(self.inner_box)} is empty")
		rows, cols = page_img.shape[:2]
		self.bounding_box = Rect.from_corners(
			max(0, self.inner_box.x - HORIZONTAL_PADDING_PX),
			max(0, self.inner_box.y - VERTICAL_PADDING_PX),
			min(cols, self.inner_box.right + HORIZONTAL_PADDING_PX),
			min(rows, self.inner_box.bottom + VERTICAL_PADDING_PX),
		)
		if self.bounding_box.area == 0:
			raise SheetLineError(f"Inner box {tuple(self.inner_box)} lies outside the page")
		self.viewport = crop_image(page_img, self.bounding_box).copy()
		if coordinates is None:
			relative = self.relative_inner_box
			coordinates = (relative.y, relative.bottom)
		self._coordinates = tuple(coordinates)

	def __repr__(self):
		return f"SheetLine(inner_box={tuple(self.inner_box)})"

	@property
	def relative_inner_box(self) -> Rect:
		"""Inner box relative to the bounding box."""
		return self.inner_box.shifted(-self.bounding_box.x, -self.bounding_box.y)

	@property
	def coordinates(self) -> tuple:
		"""(top, bottom) staff line y, relative to the bounding box."""
		return self._coordinates

	@property
	def left_edge(self) -> int:
		return self.bounding_box.x

	@property
	def right_edge(self) -> int:
		return self.bounding_box.right

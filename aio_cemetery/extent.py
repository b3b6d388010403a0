"""Bounding extents of rings."""

import math
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TypeAlias

from aio_cemetery.geometry import Point, Ring

from shapely.geometry import Polygon, box


__docformat__ = "google"
__all__ = (
    "Bbox",
    "Extent",
    "aggregate",
)


Bbox: TypeAlias = tuple[float, float, float, float]
"""``(minx, miny, maxx, maxy)``"""


@dataclass(kw_only=True, slots=True, frozen=True, repr=False)
class Extent:
    """
    Axis-aligned bounding rectangle of zero or more geometries.

    The empty extent contains no points at all, and is represented by infinite bounds,
    which makes it the neutral element when extending it. It is distinct from the extent
    of a single point, which has zero width and height, but is not empty.

    Attributes:
        min_x: smallest easting/longitude
        min_y: smallest northing/latitude
        max_x: largest easting/longitude
        max_y: largest northing/latitude
    """

    min_x: float = math.inf
    min_y: float = math.inf
    max_x: float = -math.inf
    max_y: float = -math.inf

    def __post_init__(self) -> None:
        if self.is_empty:
            return
        if self.min_x > self.max_x or self.min_y > self.max_y:
            msg = f"expected min <= max for a non-empty extent, got {self!r}"
            raise ValueError(msg)

    @classmethod
    def empty(cls) -> "Extent":
        """The extent without any points."""
        return cls()

    @property
    def is_empty(self) -> bool:
        """``True`` if no point was ever added to this extent."""
        return self.min_x == math.inf

    def extend(self, point: Point) -> "Extent":
        """The smallest extent that contains both this extent and the given point."""
        x, y = point
        return Extent(
            min_x=min(self.min_x, x),
            min_y=min(self.min_y, y),
            max_x=max(self.max_x, x),
            max_y=max(self.max_y, y),
        )

    def union(self, other: "Extent") -> "Extent":
        """The smallest extent that contains both extents."""
        if other.is_empty:
            return self
        if self.is_empty:
            return other
        return Extent(
            min_x=min(self.min_x, other.min_x),
            min_y=min(self.min_y, other.min_y),
            max_x=max(self.max_x, other.max_x),
            max_y=max(self.max_y, other.max_y),
        )

    @property
    def bounds(self) -> Bbox:
        """
        The extent as ``(minx, miny, maxx, maxy)`` tuple.

        Raises:
            ValueError: if the extent is empty
        """
        self._raise_if_empty()
        return self.min_x, self.min_y, self.max_x, self.max_y

    @property
    def width(self) -> float:
        """Extent along the x axis, or zero if empty."""
        return 0.0 if self.is_empty else self.max_x - self.min_x

    @property
    def height(self) -> float:
        """Extent along the y axis, or zero if empty."""
        return 0.0 if self.is_empty else self.max_y - self.min_y

    @property
    def center(self) -> Point:
        """
        The center of this extent, f.e. to center a map view on.

        Raises:
            ValueError: if the extent is empty
        """
        self._raise_if_empty()
        return Point((self.min_x + self.max_x) / 2, (self.min_y + self.max_y) / 2)

    def to_polygon(self) -> Polygon:
        """
        This extent as rectangular Shapely polygon.

        Raises:
            ValueError: if the extent is empty
        """
        return box(*self.bounds)

    def _raise_if_empty(self) -> None:
        if self.is_empty:
            msg = "an empty extent cannot frame a viewport"
            raise ValueError(msg)

    def __repr__(self) -> str:
        if self.is_empty:
            return f"{type(self).__name__}(empty)"
        return f"{type(self).__name__}({self.min_x}, {self.min_y}, {self.max_x}, {self.max_y})"


def aggregate(rings: Iterable[Ring]) -> Extent:
    """Fold all points of the given rings into one extent, starting from the empty extent."""
    extent = Extent.empty()
    for ring in rings:
        for point in ring:
            extent = extent.extend(point)
    return extent

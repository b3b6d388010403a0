"""Points, rings, and normalization of GeoJSON coordinate payloads."""

import math
from collections.abc import Sequence
from typing import Any, NamedTuple, TypeAlias

from aio_cemetery.error import MalformedGeometryError


__docformat__ = "google"
__all__ = (
    "Point",
    "Ring",
    "normalize",
    "normalize_holes",
)


class Point(NamedTuple):
    """
    A 2D coordinate.

    Whether this is easting/northing or longitude/latitude depends on the CRS
    of the ring it is part of.
    """

    x: float
    y: float


Ring: TypeAlias = tuple[Point, ...]
"""
A non-empty sequence of points that make up a polygon boundary.

The first and last point are expected to coincide, but this is not enforced.
"""


def normalize(payload: Any) -> Ring:
    """
    Turn a feature's ``coordinates`` into a single ring.

    Two encodings are accepted:
     - a bare ring ``[[x, y], ...]``, which is returned as is
     - a polygon ``[[[x, y], ...], ...]``, of which only the outer ring is returned

    Holes of polygons are dropped (see ``normalize_holes()`` to get them).
    Additional ordinates, like elevation, are dropped as well.

    Raises:
        MalformedGeometryError: if the payload is not a list, if it is empty,
                                or if any of its points is not a pair of numbers
    """
    rings = _rings(payload)
    return _ring(rings[0])


def normalize_holes(payload: Any) -> tuple[Ring, ...]:
    """
    The hole rings of a polygon payload, or an empty tuple for bare rings.

    Raises:
        MalformedGeometryError: under the same conditions as ``normalize()``,
                                or if a hole is malformed
    """
    rings = _rings(payload)
    return tuple(_ring(hole) for hole in rings[1:])


def _rings(payload: Any) -> Sequence[Any]:
    if not isinstance(payload, list):
        msg = f"expected coordinates to be an array, got {type(payload).__name__}"
        raise MalformedGeometryError(reason=msg)

    if not payload:
        raise MalformedGeometryError(reason="expected coordinates to be non-empty")

    first = payload[0]
    if isinstance(first, list) and first and isinstance(first[0], list):
        return payload  # polygon with rings

    return [payload]  # bare ring


def _ring(raw: Any) -> Ring:
    if not isinstance(raw, list) or not raw:
        raise MalformedGeometryError(reason="expected a ring to be a non-empty array")
    return tuple(_point(raw_point, idx) for idx, raw_point in enumerate(raw))


def _point(raw: Any, idx: int) -> Point:
    if not isinstance(raw, list) or len(raw) < 2:
        msg = f"expected point #{idx} to be an array of at least two numbers"
        raise MalformedGeometryError(reason=msg)

    x, y = raw[0], raw[1]

    if not _is_number(x) or not _is_number(y):
        msg = f"expected point #{idx} to have finite numeric coordinates, got {raw!r}"
        raise MalformedGeometryError(reason=msg)

    return Point(float(x), float(y))


def _is_number(value: Any) -> bool:
    # bool is an int subclass
    return isinstance(value, int | float) and not isinstance(value, bool) and math.isfinite(value)

"""Reprojection of rings between registered coordinate reference systems."""

import re
from functools import lru_cache
from typing import Final

from aio_cemetery.error import MalformedGeometryError, UnsupportedCRSError
from aio_cemetery.geometry import Point, Ring

from pyproj import Transformer
from pyproj.exceptions import ProjError


__docformat__ = "google"
__all__ = (
    "SUPPORTED_CRS",
    "ETRS89_UTM32N",
    "WGS84_UTM32N",
    "WEB_MERCATOR",
    "WGS84",
    "canonical_crs",
    "reproject",
)


ETRS89_UTM32N: Final[str] = "EPSG:25832"
"""ETRS89 / UTM zone 32N, metric. The cemetery datasets are published in this CRS."""

WGS84_UTM32N: Final[str] = "EPSG:32632"
"""WGS 84 / UTM zone 32N, metric."""

WEB_MERCATOR: Final[str] = "EPSG:3857"
"""WGS 84 / Pseudo-Mercator, which is what web maps display tiles in."""

WGS84: Final[str] = "EPSG:4326"
"""WGS 84 geographic coordinates, in longitude/latitude order."""

SUPPORTED_CRS: Final[frozenset[str]] = frozenset(
    {
        ETRS89_UTM32N,
        WGS84_UTM32N,
        WEB_MERCATOR,
        WGS84,
    }
)
"""Identifiers of all registered coordinate reference systems."""

_EPSG_PATTERN = re.compile(r"^(?:urn:ogc:def:crs:)?epsg:(?:[\d.]*:)?(\d+)$", re.IGNORECASE)
"""Matches ``EPSG:3857``, ``epsg:3857`` and ``urn:ogc:def:crs:EPSG::3857``."""


def canonical_crs(identifier: str) -> str:
    """
    Canonical form of a CRS identifier, f.e. ``"EPSG:3857"``.

    Raises:
        UnsupportedCRSError: if the CRS is not registered
    """
    m = _EPSG_PATTERN.match(identifier.strip()) if isinstance(identifier, str) else None
    canonical = f"EPSG:{m.group(1)}" if m else None

    if canonical not in SUPPORTED_CRS:
        raise UnsupportedCRSError(crs=str(identifier))

    return canonical


def reproject(ring: Ring, source_crs: str, target_crs: str) -> Ring:
    """
    Map every point of a ring from one CRS to another.

    This function has no side effects, and the transformers it uses are cached per pair of CRS.

    Raises:
        UnsupportedCRSError: if either CRS is not registered
        MalformedGeometryError: if any point cannot be transformed,
                                f.e. because it is outside the CRS's area of use
    """
    source_crs = canonical_crs(source_crs)
    target_crs = canonical_crs(target_crs)

    if source_crs == target_crs:
        return ring

    transformer = _transformer(source_crs, target_crs)

    try:
        return tuple(Point(x, y) for x, y in transformer.itransform(ring, errcheck=True))
    except ProjError as err:
        msg = f"could not reproject from {source_crs} to {target_crs}: {err}"
        raise MalformedGeometryError(reason=msg) from err


@lru_cache(maxsize=None)
def _transformer(source_crs: str, target_crs: str) -> Transformer:
    # always_xy keeps (lon, lat) order for geographic CRSs
    return Transformer.from_crs(source_crs, target_crs, always_xy=True)

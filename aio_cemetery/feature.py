"""Typed feature properties, classification rules, and classified features."""

import copy
import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, TypeAlias

from aio_cemetery.geometry import Ring
from aio_cemetery.spatial import GeoJsonDict, Spatial


__docformat__ = "google"
__all__ = (
    "FeatureKind",
    "Person",
    "GraveProperties",
    "PlotProperties",
    "UnknownProperties",
    "FeatureProperties",
    "Classification",
    "ClassifiedFeature",
    "parse_properties",
    "classify",
)

_NULL_LOGGER = logging.getLogger("aio_cemetery")
_NULL_LOGGER.addHandler(logging.NullHandler())


class FeatureKind(Enum):
    """The kind of features a dataset contains."""

    GRAVE = "grave"
    PLOT = "plot"

    def __repr__(self) -> str:
        return f"{type(self).__name__}.{self.name}"


@dataclass(kw_only=True, slots=True, frozen=True)
class Person:
    """
    A deceased person buried in a grave.

    Attributes:
        vorname: first name
        nachname: last name
        beisetzungsart: type of burial, f.e. urn or coffin
        zusatz: additional remarks
        sterbedatum: date of death, as given by the API
    """

    vorname: str | None
    nachname: str | None
    beisetzungsart: str | None
    zusatz: str | None = None
    sterbedatum: str | None = None


@dataclass(kw_only=True, slots=True, frozen=True)
class GraveProperties:
    """
    Properties of a single grave.

    Attributes:
        grab_id: identifies the grave (``grabId``)
        grabnummer: the grave number displayed on site
        grabart: the type of grave
        friedhof: name of the cemetery
        nutzungsfristende: the end of the usage period, or ``None`` if missing or malformed
        ruhefristende: the end of the rest period, or ``None`` if missing or malformed
        verstorbene: persons buried in this grave
    """

    grab_id: str | None = None
    grabnummer: str | None = None
    grabart: str | None = None
    friedhof: str | None = None
    nutzungsfristende: date | None = None
    ruhefristende: date | None = None
    verstorbene: tuple[Person, ...] = ()


@dataclass(kw_only=True, slots=True, frozen=True)
class PlotProperties:
    """
    Properties of a burial plot.

    Attributes:
        grab_id: identifies the plot (``grabId``)
        verstorbene: persons buried on this plot, or ``None`` if the list is missing
    """

    grab_id: str | None = None
    verstorbene: tuple[Person, ...] | None = None


@dataclass(kw_only=True, slots=True, frozen=True)
class UnknownProperties:
    """
    Properties that could not be interpreted.

    Attributes:
        reason: why the property bag was not understood
    """

    reason: str


FeatureProperties: TypeAlias = GraveProperties | PlotProperties | UnknownProperties
"""Validated properties of a feature, depending on its kind."""


class Classification(Enum):
    """Classification of a feature, which decides how it is styled on a map."""

    NONE = "none"
    """Nothing remarkable."""

    EXPIRED_GRAVE = "expired-grave"
    """A grave whose usage period ended before today."""

    OCCUPIED_PLOT = "occupied-plot"
    """A plot with at least one deceased person."""

    def __str__(self) -> str:
        return self.value


def parse_properties(
    kind: FeatureKind,
    bag: Any,
    logger: logging.Logger = _NULL_LOGGER,
) -> FeatureProperties:
    """
    Validate the untyped property bag of a feature.

    This function never raises: fields that are missing or malformed are logged,
    and end up as ``None``. If the bag is not a JSON object at all,
    ``UnknownProperties`` are returned.
    """
    if not isinstance(bag, dict):
        reason = f"expected properties to be an object, got {type(bag).__name__}"
        logger.warning(reason)
        return UnknownProperties(reason=reason)

    match kind:
        case FeatureKind.GRAVE:
            return GraveProperties(
                grab_id=_str(bag, "grabId"),
                grabnummer=_str(bag, "grabnummer"),
                grabart=_str(bag, "grabart"),
                friedhof=_str(bag, "friedhof"),
                nutzungsfristende=_date(bag, "nutzungsfristende", logger),
                ruhefristende=_date(bag, "ruhefristende", logger),
                verstorbene=_persons(bag, logger) or (),
            )
        case FeatureKind.PLOT:
            return PlotProperties(
                grab_id=_str(bag, "grabId"),
                verstorbene=_persons(bag, logger),
            )
        case _:
            raise AssertionError(kind)


def classify(properties: FeatureProperties, today: date) -> Classification:
    """
    Decide the classification of a feature.

     - Graves are ``EXPIRED_GRAVE`` if their usage period ended strictly before ``today``.
     - Plots are ``OCCUPIED_PLOT`` if they have at least one deceased person.
     - Everything else is ``NONE``, including features with missing data.

    Args:
        properties: the validated properties of a feature
        today: the evaluation date; the pipeline reads it once per run
    """
    match properties:
        case GraveProperties(nutzungsfristende=end) if end is not None and end < today:
            return Classification.EXPIRED_GRAVE
        case PlotProperties(verstorbene=persons) if persons:
            return Classification.OCCUPIED_PLOT
        case _:
            return Classification.NONE


@dataclass(kw_only=True, slots=True, frozen=True, repr=False, eq=False)
class ClassifiedFeature(Spatial):
    """
    A feature whose geometry was normalized and reprojected, and that was classified.

    Attributes:
        dataset_id: the dataset this feature is from
        index: the index of this feature in its raw collection
        ring: the outer ring of the feature, in the pipeline's target CRS
        holes: hole rings, only present if the pipeline was configured to keep them
        raw_properties: a copy of the original property bag
        properties: the validated properties
        classification: the classification of this feature
    """

    dataset_id: str
    index: int
    ring: Ring
    holes: tuple[Ring, ...] = ()
    raw_properties: dict[str, Any]
    properties: FeatureProperties
    classification: Classification

    @classmethod
    def build(  # noqa: PLR0913
        cls,
        *,
        dataset_id: str,
        index: int,
        ring: Ring,
        holes: tuple[Ring, ...] = (),
        raw_properties: Any,
        properties: FeatureProperties,
        classification: Classification,
    ) -> "ClassifiedFeature":
        """Build a feature with a deep copy of the given property bag."""
        return cls(
            dataset_id=dataset_id,
            index=index,
            ring=ring,
            holes=holes,
            raw_properties=copy.deepcopy(raw_properties) if isinstance(raw_properties, dict) else {},
            properties=properties,
            classification=classification,
        )

    @property
    def is_grave(self) -> bool:
        """``True`` if this feature is a grave, as opposed to a plot."""
        return isinstance(self.properties, GraveProperties)

    @property
    def expires_on(self) -> date | None:
        """End of the usage period of a grave, or ``None`` for plots."""
        if isinstance(self.properties, GraveProperties):
            return self.properties.nutzungsfristende
        return None

    @property
    def deceased(self) -> tuple[Person, ...]:
        """Persons buried in this grave or on this plot."""
        match self.properties:
            case GraveProperties(verstorbene=persons) | PlotProperties(verstorbene=persons):
                return persons or ()
            case _:
                return ()

    @property
    def geojson(self) -> GeoJsonDict:
        """
        A ``Feature`` with ``Polygon`` geometry.

        The ``properties`` are the original ones, plus the ``classification`` key.
        """
        rings = (self.ring, *self.holes)
        return {
            "type": "Feature",
            "geometry": {
                "type": "Polygon",
                "coordinates": [[[p.x, p.y] for p in ring] for ring in rings],
            },
            "properties": {
                **self.raw_properties,
                "classification": self.classification.value,
            },
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.dataset_id}[{self.index}], {self.classification})"


def _str(bag: dict[str, Any], key: str) -> str | None:
    value = bag.get(key)
    if value is None:
        return None
    return str(value)


def _date(bag: dict[str, Any], key: str, logger: logging.Logger) -> date | None:
    value = bag.get(key)
    if value is None:
        logger.warning(f"missing '{key}'")
        return None

    # ISO dates, possibly followed by a time like "2031-12-31T00:00:00"
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            pass

    logger.warning(f"malformed '{key}': {value!r}")
    return None


def _persons(bag: dict[str, Any], logger: logging.Logger) -> tuple[Person, ...] | None:
    raw = bag.get("verstorbene")
    if raw is None:
        return None

    if not isinstance(raw, list):
        logger.warning(f"expected 'verstorbene' to be an array, got {type(raw).__name__}")
        return None

    persons = []
    for idx, raw_person in enumerate(raw):
        if not isinstance(raw_person, dict):
            logger.warning(f"skip malformed person #{idx}: {raw_person!r}")
            continue
        persons.append(
            Person(
                vorname=_str(raw_person, "vorname"),
                nachname=_str(raw_person, "nachname"),
                beisetzungsart=_str(raw_person, "beisetzungsart"),
                zusatz=_str(raw_person, "zusatz"),
                sterbedatum=_str(raw_person, "sterbedatum"),
            )
        )

    return tuple(persons)

"""Raw feature collections, as they are received from the web GIS API."""

from dataclasses import dataclass
from typing import Any

from aio_cemetery.spatial import GeoJsonDict


__docformat__ = "google"
__all__ = (
    "GRAVES_DATASET",
    "PLOTS_DATASET",
    "RawFeatureCollection",
)


GRAVES_DATASET = "grab"
"""Dataset of individual graves."""

PLOTS_DATASET = "grabstelle"
"""Dataset of burial plots."""


@dataclass(kw_only=True, slots=True, frozen=True, repr=False)
class RawFeatureCollection:
    """
    An undecoded GeoJSON feature collection.

    Only the envelope of the collection is validated; its features are untrusted,
    and are validated one by one when processed by the pipeline.

    Attributes:
        dataset_id: the dataset this collection was retrieved for
        features: the raw ``features`` member
        crs: the raw ``crs`` member, or ``None`` if there is none
    """

    dataset_id: str
    features: list[Any]
    crs: GeoJsonDict | None = None

    @classmethod
    def from_json(cls, dataset_id: str, obj: Any) -> "RawFeatureCollection":
        """
        Validate the envelope of a decoded JSON response.

        Raises:
            ValueError: if the object is not a ``FeatureCollection`` with a list of features
        """
        if not isinstance(obj, dict):
            msg = f"expected a JSON object, got {type(obj).__name__}"
            raise ValueError(msg)

        if obj.get("type") != "FeatureCollection":
            msg = f"expected type 'FeatureCollection', got {obj.get('type')!r}"
            raise ValueError(msg)

        features = obj.get("features")
        if not isinstance(features, list):
            msg = "expected 'features' to be an array"
            raise ValueError(msg)

        crs = obj.get("crs")
        return cls(
            dataset_id=dataset_id,
            features=features,
            crs=crs if isinstance(crs, dict) else None,
        )

    @property
    def declared_crs(self) -> str | None:
        """
        The name of the CRS declared in the legacy ``crs`` member, if any.

        This is informational only: the pipeline never uses it to pick a source CRS.

        References:
            - https://geojson.org/geojson-spec.html#named-crs
        """
        if not self.crs:
            return None
        properties = self.crs.get("properties")
        if not isinstance(properties, dict):
            return None
        name = properties.get("name")
        return name if isinstance(name, str) else None

    def __len__(self) -> int:
        return len(self.features)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.dataset_id!r}, {len(self)} features)"

import json
import logging
from datetime import date

from aio_cemetery.client import DEFAULT_API_URL
from aio_cemetery.feature import Classification, ClassifiedFeature
from aio_cemetery.pipeline import PipelineResult

import geojson
import pytest
import shapely.geometry
from aioresponses import aioresponses


URL_GRAVES = f"{DEFAULT_API_URL}grab"
URL_PLOTS = f"{DEFAULT_API_URL}grabstelle"

TODAY = date(2026, 10, 19)

# ETRS89 / UTM zone 32N, around the cemetery in Wipperfürth
GRAVE_POLYGON = [
    [
        [386850.0, 5664070.0],
        [386852.0, 5664070.0],
        [386852.0, 5664072.5],
        [386850.0, 5664072.5],
        [386850.0, 5664070.0],
    ]
]

PLOT_RING = [
    [386860.0, 5664080.0],
    [386865.0, 5664080.0],
    [386865.0, 5664085.0],
    [386860.0, 5664085.0],
    [386860.0, 5664080.0],
]

PERSON = {
    "vorname": "Anna",
    "nachname": "Müller",
    "beisetzungsart": "Urne",
    "zusatz": None,
    "sterbedatum": "1998-03-02",
}


@pytest.fixture
def mock_response():
    with aioresponses() as m:
        yield m


@pytest.fixture
def pipeline_logger() -> logging.Logger:
    formatter = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d | %(levelname)-8s | %(module)s:%(funcName)s:%(lineno)d - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    logger = logging.getLogger("aio_cemetery.test")
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)

    return logger


def feature(coordinates, properties=None, geometry_type="Polygon") -> dict:
    return {
        "type": "Feature",
        "geometry": {"type": geometry_type, "coordinates": coordinates},
        "properties": properties if properties is not None else {},
    }


def collection(*features: dict) -> dict:
    return {
        "type": "FeatureCollection",
        "features": list(features),
        "crs": {"type": "name", "properties": {"name": "urn:ogc:def:crs:EPSG::25832"}},
    }


def grave_properties(nutzungsfristende: str = "2000-01-01", **kwargs) -> dict:
    return {
        "grabId": "G-1",
        "grabnummer": "A-12",
        "grabart": "Reihengrab",
        "friedhof": "Wipperfürth",
        "nutzungsfristende": nutzungsfristende,
        "ruhefristende": "1999-12-31",
        "verstorbene": [PERSON],
        **kwargs,
    }


def verify_feature(feat: ClassifiedFeature) -> None:
    msg = repr(feat)

    assert isinstance(feat, ClassifiedFeature), msg
    assert feat.index >= 0, msg
    assert len(feat.ring) > 0, msg
    assert feat.classification in Classification, msg

    assert geojson.loads(json.dumps(feat.geojson)), msg  # valid GeoJSON

    try:
        for spatial_dict in feat.geo_interfaces:
            _ = shapely.geometry.shape(spatial_dict)
    except BaseException as err:
        raise AssertionError(f"{msg}: bad __geo_interface__: {err}")

    assert str(feat), msg  # just test this doesn't raise
    assert repr(feat), msg  # just test this doesn't raise


def verify_result(result: PipelineResult) -> None:
    msg = repr(result)

    for feat in result.features:
        verify_feature(feat)

    assert all(feat.is_grave for feat in result.graves), msg
    assert not any(feat.is_grave for feat in result.plots), msg

    if result.features:
        assert not result.extent.is_empty, msg
        min_x, min_y, max_x, max_y = result.extent.bounds
        assert min_x <= max_x, msg
        assert min_y <= max_y, msg
    else:
        assert result.extent.is_empty, msg

    assert geojson.loads(json.dumps(result.geojson)), msg  # valid GeoJSON

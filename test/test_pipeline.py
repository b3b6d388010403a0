import asyncio
import logging
from datetime import date

from aio_cemetery import Pipeline, PipelineConfig
from aio_cemetery.cache import CacheState, DatasetCache
from aio_cemetery.client import Client
from aio_cemetery.error import DecodeError, TransportError, UnsupportedCRSError
from aio_cemetery.extent import aggregate
from aio_cemetery.feature import Classification, FeatureKind
from aio_cemetery.geometry import normalize
from aio_cemetery.pipeline import Diagnostic, PipelineState, process_feature
from aio_cemetery.projection import ETRS89_UTM32N, WEB_MERCATOR, WGS84, reproject
from test.util import (
    GRAVE_POLYGON,
    PERSON,
    PLOT_RING,
    TODAY,
    URL_GRAVES,
    URL_PLOTS,
    collection,
    feature,
    grave_properties,
    mock_response,
    pipeline_logger,
    verify_result,
)

import pytest


def _pipeline(**kwargs) -> Pipeline:
    return Pipeline(today=lambda: TODAY, **kwargs)


@pytest.mark.asyncio
@pytest.mark.xdist_group(name="fast")
async def test_end_to_end(mock_response, pipeline_logger: logging.Logger):
    mock_response.get(
        url=URL_GRAVES,
        payload=collection(
            feature(GRAVE_POLYGON, grave_properties(nutzungsfristende="2000-01-01")),
            feature("not-an-array", grave_properties(grabId="G-2")),
        ),
        status=200,
    )
    mock_response.get(
        url=URL_PLOTS,
        payload=collection(
            feature(PLOT_RING, {"grabId": "P-1", "verstorbene": [PERSON]}),
        ),
        status=200,
    )

    pipeline = _pipeline(logger=pipeline_logger)
    run = await pipeline.run()
    await pipeline.close()

    assert run.state is PipelineState.SUCCEEDED
    assert run.done
    assert run.error is None

    result = run.result
    assert result is not None
    verify_result(result)

    (grave,) = result.graves
    (plot,) = result.plots

    assert grave.classification is Classification.EXPIRED_GRAVE
    assert plot.classification is Classification.OCCUPIED_PLOT
    assert grave.raw_properties["grabId"] == "G-1"
    assert plot.raw_properties["grabId"] == "P-1"

    assert result.diagnostics == [
        Diagnostic(
            dataset_id="grab",
            feature_index=1,
            reason="expected coordinates to be an array, got str",
        )
    ]

    expected_grave = reproject(normalize(GRAVE_POLYGON), ETRS89_UTM32N, WEB_MERCATOR)
    expected_plot = reproject(normalize(PLOT_RING), ETRS89_UTM32N, WEB_MERCATOR)

    assert grave.ring == expected_grave
    assert plot.ring == expected_plot
    assert result.extent == aggregate([expected_grave, expected_plot])
    assert result.crs == WEB_MERCATOR
    assert result.evaluated_on == TODAY

    # graves are drawn above plots
    assert result.features == [plot, grave]
    assert result.geojson["bbox"] == result.extent.bounds


@pytest.mark.asyncio
@pytest.mark.xdist_group(name="fast")
async def test_empty_datasets(mock_response):
    mock_response.get(url=URL_GRAVES, payload=collection(), status=200)
    mock_response.get(url=URL_PLOTS, payload=collection(), status=200)

    pipeline = _pipeline()
    run = await pipeline.run()
    await pipeline.close()

    verify_result(run.result)
    assert run.result.extent.is_empty
    assert "bbox" not in run.result.geojson


@pytest.mark.asyncio
@pytest.mark.xdist_group(name="fast")
async def test_only_malformed_features(mock_response):
    mock_response.get(
        url=URL_GRAVES,
        payload=collection(
            feature([], grave_properties()),
            {"type": "Feature", "geometry": None, "properties": {}},
            "not-a-feature",
        ),
        status=200,
    )
    mock_response.get(
        url=URL_PLOTS,
        payload=collection(feature([[1, 2], [3]], {})),
        status=200,
    )

    pipeline = _pipeline()
    run = await pipeline.run()
    await pipeline.close()

    result = run.result
    assert result.graves == []
    assert result.plots == []
    assert result.extent.is_empty
    assert [(d.dataset_id, d.feature_index) for d in result.diagnostics] == [
        ("grab", 0),
        ("grab", 1),
        ("grab", 2),
        ("grabstelle", 0),
    ]


@pytest.mark.asyncio
@pytest.mark.xdist_group(name="fast")
async def test_transport_failure(mock_response):
    mock_response.get(url=URL_GRAVES, status=500)
    mock_response.get(url=URL_PLOTS, payload=collection(), status=200)

    pipeline = _pipeline()

    with pytest.raises(TransportError) as err:
        await pipeline.run()

    assert err.value.dataset_id == "grab"
    assert err.value.status == 500

    # the other fetch still settled
    assert pipeline.cache.state("grabstelle") is CacheState.SETTLED

    await pipeline.close()


@pytest.mark.asyncio
@pytest.mark.xdist_group(name="fast")
async def test_failed_run_without_raising(mock_response):
    mock_response.get(url=URL_GRAVES, payload=collection(), status=200)
    mock_response.get(url=URL_PLOTS, body="not json", status=200)

    pipeline = _pipeline()
    run = await pipeline.run(raise_on_failure=False)
    await pipeline.close()

    assert run.state is PipelineState.FAILED
    assert run.done
    assert run.result is None
    assert isinstance(run.error, DecodeError)
    assert run.error.dataset_id == "grabstelle"


@pytest.mark.asyncio
@pytest.mark.xdist_group(name="fast")
async def test_both_datasets_fail(mock_response, caplog: pytest.LogCaptureFixture):
    mock_response.get(url=URL_GRAVES, status=502)
    mock_response.get(url=URL_PLOTS, status=404)

    pipeline = _pipeline()
    with caplog.at_level(logging.ERROR, logger="aio_cemetery"):
        run = await pipeline.run(raise_on_failure=False)
    await pipeline.close()

    assert run.error.dataset_id == "grab"
    assert run.error.status == 502
    assert "'grab' failed with status 502" in caplog.text
    assert "'grabstelle' failed with status 404" in caplog.text


@pytest.mark.asyncio
@pytest.mark.xdist_group(name="fast")
async def test_datasets_are_fetched_once(mock_response):
    # each url is mocked for a single request; a second request would fail to connect
    mock_response.get(url=URL_GRAVES, payload=collection(feature(GRAVE_POLYGON)), status=200)
    mock_response.get(url=URL_PLOTS, payload=collection(feature(PLOT_RING)), status=200)

    pipeline = _pipeline()

    first, second = await asyncio.gather(pipeline.run(), pipeline.run())
    third = await pipeline.run()
    await pipeline.close()

    # runs are not coalesced, but they share datasets
    assert first is not second
    for run in (first, second, third):
        assert run.state is PipelineState.SUCCEEDED
        assert len(run.result.graves) == 1
        assert len(run.result.plots) == 1


@pytest.mark.asyncio
@pytest.mark.xdist_group(name="fast")
async def test_failures_are_not_retried(mock_response):
    mock_response.get(url=URL_GRAVES, status=503)
    mock_response.get(url=URL_PLOTS, payload=collection(), status=200)

    pipeline = _pipeline()

    with pytest.raises(TransportError) as first:
        await pipeline.run()

    with pytest.raises(TransportError) as second:
        await pipeline.run()

    await pipeline.close()

    assert first.value is second.value
    assert second.value.status == 503


@pytest.mark.asyncio
@pytest.mark.xdist_group(name="fast")
async def test_shared_cache(mock_response):
    mock_response.get(url=URL_GRAVES, payload=collection(feature(GRAVE_POLYGON)), status=200)
    mock_response.get(url=URL_PLOTS, payload=collection(feature(PLOT_RING)), status=200)

    cache = DatasetCache()
    client = Client()

    web = _pipeline(client=client, cache=cache)
    lon_lat = _pipeline(client=client, cache=cache, config=PipelineConfig(target_crs=WGS84))

    web_run = await web.run()
    lon_lat_run = await lon_lat.run()
    await client.close()

    assert web_run.result.crs == WEB_MERCATOR
    assert lon_lat_run.result.crs == WGS84

    lon, lat = lon_lat_run.result.extent.center
    assert 7.3 < lon < 7.5
    assert 51.0 < lat < 51.2


@pytest.mark.asyncio
@pytest.mark.xdist_group(name="fast")
async def test_today_is_read_once_per_run(mock_response):
    mock_response.get(
        url=URL_GRAVES,
        payload=collection(
            feature(GRAVE_POLYGON, grave_properties(nutzungsfristende="2026-10-19")),
            feature(GRAVE_POLYGON, grave_properties(nutzungsfristende="2026-10-19")),
        ),
        status=200,
    )
    mock_response.get(url=URL_PLOTS, payload=collection(), status=200)

    days = iter([date(2026, 10, 19), date(2026, 10, 20)])
    pipeline = Pipeline(today=lambda: next(days))

    run = await pipeline.run()
    await pipeline.close()

    assert run.result.evaluated_on == date(2026, 10, 19)
    assert [g.classification for g in run.result.graves] == [Classification.NONE] * 2


@pytest.mark.asyncio
@pytest.mark.xdist_group(name="fast")
async def test_keep_holes(mock_response):
    outer = [[386850, 5664070], [386860, 5664070], [386860, 5664080], [386850, 5664070]]
    hole = [[386852, 5664072], [386854, 5664072], [386854, 5664074], [386852, 5664072]]

    mock_response.get(url=URL_GRAVES, payload=collection(feature([outer, hole])), status=200)
    mock_response.get(url=URL_PLOTS, payload=collection(), status=200)

    pipeline = _pipeline(config=PipelineConfig(keep_holes=True))
    run = await pipeline.run()
    await pipeline.close()

    (grave,) = run.result.graves
    assert len(grave.holes) == 1
    assert len(grave.geojson["geometry"]["coordinates"]) == 2
    verify_result(run.result)


@pytest.mark.asyncio
@pytest.mark.xdist_group(name="fast")
async def test_declared_crs_mismatch_is_logged(mock_response, caplog: pytest.LogCaptureFixture):
    payload = collection()
    payload["crs"]["properties"]["name"] = "EPSG:4326"

    mock_response.get(url=URL_GRAVES, payload=payload, status=200)
    mock_response.get(url=URL_PLOTS, payload=collection(), status=200)

    pipeline = _pipeline()
    with caplog.at_level(logging.WARNING, logger="aio_cemetery"):
        await pipeline.run()
    await pipeline.close()

    assert "'grab' declares CRS 'EPSG:4326'" in caplog.text
    assert "'grabstelle' declares" not in caplog.text


def test_config():
    config = PipelineConfig(source_crs="urn:ogc:def:crs:EPSG::25832", target_crs="epsg:3857")

    assert config.source_crs == ETRS89_UTM32N
    assert config.target_crs == WEB_MERCATOR
    assert config.graves_dataset == "grab"
    assert config.plots_dataset == "grabstelle"
    assert not config.keep_holes


def test_unsupported_crs_is_a_configuration_error():
    with pytest.raises(UnsupportedCRSError):
        _ = PipelineConfig(source_crs="EPSG:31466")

    with pytest.raises(UnsupportedCRSError):
        _ = PipelineConfig(target_crs="EPSG:900913")


@pytest.mark.parametrize("field", ["graves_dataset", "plots_dataset"])
def test_config_value_errors(field: str):
    with pytest.raises(ValueError, match=f"'{field}' must not be empty"):
        _ = PipelineConfig(**{field: ""})


def test_process_feature():
    config = PipelineConfig()

    outcome = process_feature(
        feature(PLOT_RING, {"verstorbene": []}),
        dataset_id="grabstelle",
        index=7,
        kind=FeatureKind.PLOT,
        config=config,
        today=TODAY,
    )

    assert not isinstance(outcome, Diagnostic)
    assert outcome.index == 7
    assert outcome.classification is Classification.NONE

    outcome = process_feature(
        feature([[0.0, 1000.0]], {}),
        dataset_id="grabstelle",
        index=8,
        kind=FeatureKind.PLOT,
        config=PipelineConfig(source_crs=WGS84),
        today=TODAY,
    )

    assert isinstance(outcome, Diagnostic)
    assert outcome.feature_index == 8
    assert "could not reproject" in outcome.reason

"""
Loading, classifying and framing both cemetery datasets.

A ``Pipeline`` owns a client and a dataset cache. Every call to ``Pipeline.run()`` creates
a ``PipelineRun``, that fetches graves and plots concurrently, and then processes each feature
on its own:

```
fetch ─► normalize ─► reproject ─► classify ─┐
                                             ├─► aggregate extent
fetch ─► normalize ─► reproject ─► classify ─┘
```

A dataset that cannot be retrieved or decoded fails the entire run. A feature with a malformed
geometry is dropped, and a ``Diagnostic`` is recorded in its place.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from enum import Enum, auto
from typing import Any

from aio_cemetery.cache import DatasetCache
from aio_cemetery.client import Client
from aio_cemetery.dataset import GRAVES_DATASET, PLOTS_DATASET, RawFeatureCollection
from aio_cemetery.error import DatasetError, MalformedGeometryError, UnsupportedCRSError
from aio_cemetery.extent import Extent, aggregate
from aio_cemetery.feature import (
    Classification,
    ClassifiedFeature,
    FeatureKind,
    classify,
    parse_properties,
)
from aio_cemetery.geometry import Ring, normalize, normalize_holes
from aio_cemetery.projection import ETRS89_UTM32N, WEB_MERCATOR, canonical_crs, reproject
from aio_cemetery.spatial import GeoJsonDict, Spatial


__docformat__ = "google"
__all__ = (
    "Pipeline",
    "PipelineConfig",
    "PipelineResult",
    "PipelineRun",
    "PipelineState",
    "Diagnostic",
    "process_feature",
    "DEFAULT_SOURCE_CRS",
    "DEFAULT_TARGET_CRS",
)


DEFAULT_SOURCE_CRS = ETRS89_UTM32N
"""The CRS both datasets are published in."""

DEFAULT_TARGET_CRS = WEB_MERCATOR
"""The CRS web maps display tiles in."""

_NULL_LOGGER = logging.getLogger("aio_cemetery")
_NULL_LOGGER.addHandler(logging.NullHandler())


@dataclass(kw_only=True, slots=True)
class PipelineConfig:
    """
    Configuration of a pipeline.

    The source CRS is never detected from the ``crs`` member of a response;
    it has to be configured here.

    Attributes:
        source_crs: the CRS the datasets are published in
        target_crs: the CRS features and extent are reprojected to
        graves_dataset: the id of the dataset of graves
        plots_dataset: the id of the dataset of burial plots
        keep_holes: if ``True``, classified features retain the holes of polygon geometries.
                    By default, only outer rings are kept.

    Raises:
        UnsupportedCRSError: if either CRS is not registered
        ValueError: if a dataset id is empty
    """

    source_crs: str = DEFAULT_SOURCE_CRS
    target_crs: str = DEFAULT_TARGET_CRS
    graves_dataset: str = GRAVES_DATASET
    plots_dataset: str = PLOTS_DATASET
    keep_holes: bool = False

    def __post_init__(self) -> None:
        self.source_crs = canonical_crs(self.source_crs)
        self.target_crs = canonical_crs(self.target_crs)

        if not self.graves_dataset:
            msg = "'graves_dataset' must not be empty"
            raise ValueError(msg)

        if not self.plots_dataset:
            msg = "'plots_dataset' must not be empty"
            raise ValueError(msg)


@dataclass(kw_only=True, slots=True, frozen=True)
class Diagnostic:
    """
    Explains why a feature was dropped.

    Attributes:
        dataset_id: the dataset the feature is from
        feature_index: the index of the feature in its raw collection
        reason: what was wrong with the feature
    """

    dataset_id: str
    feature_index: int
    reason: str

    def __str__(self) -> str:
        return f"{self.dataset_id}[{self.feature_index}]: {self.reason}"


@dataclass(kw_only=True, slots=True, repr=False, eq=False)
class PipelineResult(Spatial):
    """
    The outcome of a successful run.

    Attributes:
        graves: classified graves, in the order of the raw collection
        plots: classified plots, in the order of the raw collection
        extent: the extent of all graves and plots. Check ``extent.is_empty`` before
                using it to frame a viewport.
        diagnostics: one entry for each dropped feature
        crs: the CRS of all coordinates
        evaluated_on: the date the classification was evaluated on
    """

    graves: list[ClassifiedFeature]
    plots: list[ClassifiedFeature]
    extent: Extent
    diagnostics: list[Diagnostic]
    crs: str
    evaluated_on: date

    @property
    def features(self) -> list[ClassifiedFeature]:
        """Plots, followed by graves, which is the order they should be drawn in."""
        return [*self.plots, *self.graves]

    @property
    def geojson(self) -> GeoJsonDict:
        """A ``FeatureCollection`` of all plots and graves."""
        collection: GeoJsonDict = {
            "type": "FeatureCollection",
            "features": [feature.geojson for feature in self.features],
            "crs": {"type": "name", "properties": {"name": self.crs}},
        }
        if not self.extent.is_empty:
            collection["bbox"] = self.extent.bounds
        return collection

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}("
            f"graves={len(self.graves)}, "
            f"plots={len(self.plots)}, "
            f"dropped={len(self.diagnostics)}, "
            f"extent={self.extent!r})"
        )


class PipelineState(Enum):
    """States of a ``PipelineRun``. ``SUCCEEDED`` and ``FAILED`` are terminal."""

    IDLE = auto()
    LOADING = auto()
    SUCCEEDED = auto()
    FAILED = auto()


class PipelineRun:
    """
    State of a single pipeline run.

    Attributes:
        config: the configuration of the pipeline at the time the run was created
    """

    __slots__ = (
        "_error",
        "_result",
        "_state",
        "config",
    )

    def __init__(self, config: PipelineConfig) -> None:
        self.config = config
        self._state = PipelineState.IDLE
        self._result: PipelineResult | None = None
        self._error: DatasetError | None = None

    @property
    def state(self) -> PipelineState:
        """The current state of this run."""
        return self._state

    @property
    def done(self) -> bool:
        """``True`` if this run succeeded or failed."""
        return self._state in {PipelineState.SUCCEEDED, PipelineState.FAILED}

    @property
    def result(self) -> PipelineResult | None:
        """The result of this run, or ``None`` if it has not succeeded (yet)."""
        return self._result

    @property
    def error(self) -> DatasetError | None:
        """
        The error of a failed run.

        If both datasets failed, this is the error of the graves dataset.
        """
        return self._error

    def _begin(self) -> None:
        if self._state is not PipelineState.IDLE:
            msg = f"cannot begin a run in state {self._state.name}"
            raise RuntimeError(msg)
        self._state = PipelineState.LOADING

    def _succeed(self, result: PipelineResult) -> None:
        assert self._state is PipelineState.LOADING
        self._result = result
        self._state = PipelineState.SUCCEEDED

    def _fail(self, err: DatasetError) -> None:
        assert self._state is PipelineState.LOADING
        self._error = err
        self._state = PipelineState.FAILED

    def __repr__(self) -> str:
        if self._result is not None:
            return f"{type(self).__name__}({self._state.name}, {self._result!r})"
        if self._error is not None:
            return f"{type(self).__name__}({self._state.name}, {self._error})"
        return f"{type(self).__name__}({self._state.name})"


class Pipeline:
    """
    Loads graves and plots, and turns them into classified features and an extent.

    Runs are not coalesced: running the pipeline twice concurrently results in two runs.
    Both runs share the dataset cache though, so each dataset is still only fetched once.

    Args:
        client: The client to fetch datasets with. A default client is created if not given.
        config: The configuration of this pipeline. A default configuration is created
                if not given.
        cache: The cache that memoizes fetched datasets. Passing the same cache to multiple
               pipelines lets them share datasets.
        logger: The logger to use for all logging output related to runs of this pipeline.
        today: Returns the date that features are classified against.
               It is called once per run.
    """

    __slots__ = (
        "_cache",
        "_client",
        "_config",
        "_logger",
        "_today",
    )

    def __init__(  # noqa: PLR0913
        self,
        client: Client | None = None,
        config: PipelineConfig | None = None,
        cache: DatasetCache | None = None,
        logger: logging.Logger = _NULL_LOGGER,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._client = client or Client(logger=logger)
        self._config = config or PipelineConfig()
        self._cache = cache if cache is not None else DatasetCache(logger=logger)
        self._logger = logger
        self._today = today

    @property
    def config(self) -> PipelineConfig:
        """The configuration of this pipeline."""
        return self._config

    @property
    def cache(self) -> DatasetCache:
        """The cache that memoizes fetched datasets."""
        return self._cache

    async def close(self) -> None:
        """Close the underlying client."""
        await self._client.close()

    async def run(self, raise_on_failure: bool = True) -> PipelineRun:
        """
        Fetch both datasets, and process all of their features.

        Both datasets are fetched concurrently. If a fetch fails, the run still waits for the
        other one to settle before failing, so that its outcome is logged and cached as well.

        Args:
            raise_on_failure: if ``True``, raises ``run.error`` if the run failed

        Raises:
            DatasetError: if either dataset could not be retrieved or decoded.
                          Raising can be prevented by setting ``raise_on_failure`` to ``False``.
        """
        config = self._config
        run = PipelineRun(config)
        run._begin()

        self._logger.info(f"load {config.graves_dataset!r} and {config.plots_dataset!r}")

        outcomes = await asyncio.gather(
            self._cache.get_or_fetch(config.graves_dataset, self._client.fetch),
            self._cache.get_or_fetch(config.plots_dataset, self._client.fetch),
            return_exceptions=True,
        )

        errors: list[DatasetError] = []
        for outcome in outcomes:
            if isinstance(outcome, DatasetError):
                errors.append(outcome)
            elif isinstance(outcome, BaseException):
                raise outcome

        if errors:
            for err in errors:
                self._logger.error(f"run failed: {err}")
            run._fail(errors[0])
            if raise_on_failure:
                raise errors[0]
            return run

        graves_raw, plots_raw = outcomes
        assert isinstance(graves_raw, RawFeatureCollection)
        assert isinstance(plots_raw, RawFeatureCollection)

        today = self._today()
        diagnostics: list[Diagnostic] = []

        graves = self._process(graves_raw, FeatureKind.GRAVE, today, diagnostics)
        plots = self._process(plots_raw, FeatureKind.PLOT, today, diagnostics)

        extent = aggregate(feature.ring for feature in (*graves, *plots))

        result = PipelineResult(
            graves=graves,
            plots=plots,
            extent=extent,
            diagnostics=diagnostics,
            crs=config.target_crs,
            evaluated_on=today,
        )

        self._logger.info(f"run succeeded: {result!r}")
        run._succeed(result)
        return run

    def _process(
        self,
        collection: RawFeatureCollection,
        kind: FeatureKind,
        today: date,
        diagnostics: list[Diagnostic],
    ) -> list[ClassifiedFeature]:
        self._warn_if_crs_mismatch(collection)

        features = []

        for idx, raw_feature in enumerate(collection.features):
            outcome = process_feature(
                raw_feature,
                dataset_id=collection.dataset_id,
                index=idx,
                kind=kind,
                config=self._config,
                today=today,
                logger=self._logger,
            )
            match outcome:
                case ClassifiedFeature():
                    features.append(outcome)
                case Diagnostic():
                    self._logger.warning(f"drop {outcome}")
                    diagnostics.append(outcome)

        self._logger.info(
            f"processed {len(features)}/{len(collection)} features of {collection.dataset_id!r}"
        )
        return features

    def _warn_if_crs_mismatch(self, collection: RawFeatureCollection) -> None:
        declared = collection.declared_crs
        if declared is None:
            return

        try:
            matches = canonical_crs(declared) == self._config.source_crs
        except UnsupportedCRSError:
            matches = False

        if not matches:
            self._logger.warning(
                f"{collection.dataset_id!r} declares CRS {declared!r}, "
                f"but is read as {self._config.source_crs}"
            )


def process_feature(  # noqa: PLR0913
    raw_feature: Any,
    *,
    dataset_id: str,
    index: int,
    kind: FeatureKind,
    config: PipelineConfig,
    today: date,
    logger: logging.Logger = _NULL_LOGGER,
) -> ClassifiedFeature | Diagnostic:
    """
    Normalize, reproject and classify a single raw feature.

    This function does not raise for bad input: it returns a ``Diagnostic``
    for any feature whose geometry is unusable.
    """
    if not isinstance(raw_feature, dict):
        reason = f"expected feature to be an object, got {type(raw_feature).__name__}"
        return Diagnostic(dataset_id=dataset_id, feature_index=index, reason=reason)

    geometry = raw_feature.get("geometry")
    if not isinstance(geometry, dict) or "coordinates" not in geometry:
        reason = "feature has no geometry"
        return Diagnostic(dataset_id=dataset_id, feature_index=index, reason=reason)

    try:
        payload = geometry["coordinates"]
        ring = reproject(normalize(payload), config.source_crs, config.target_crs)
        holes: tuple[Ring, ...] = ()
        if config.keep_holes:
            holes = tuple(
                reproject(hole, config.source_crs, config.target_crs)
                for hole in normalize_holes(payload)
            )
    except MalformedGeometryError as err:
        return Diagnostic(dataset_id=dataset_id, feature_index=index, reason=err.reason)

    raw_properties = raw_feature.get("properties")
    properties = parse_properties(kind, raw_properties, logger)
    classification = classify(properties, today)

    if classification is not Classification.NONE:
        logger.debug(f"{dataset_id}[{index}] is {classification}")

    return ClassifiedFeature.build(
        dataset_id=dataset_id,
        index=index,
        ring=ring,
        holes=holes,
        raw_properties=raw_properties,
        properties=properties,
        classification=classification,
    )

"""Single-flight memoization of dataset fetches."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum, auto
from typing import TypeAlias

from aio_cemetery.dataset import RawFeatureCollection


__docformat__ = "google"
__all__ = (
    "CacheState",
    "DatasetCache",
    "Fetch",
)

_NULL_LOGGER = logging.getLogger("aio_cemetery")
_NULL_LOGGER.addHandler(logging.NullHandler())


Fetch: TypeAlias = Callable[[str], Awaitable[RawFeatureCollection]]
"""A function that retrieves the dataset with the given id, like ``Client.fetch``."""


class CacheState(Enum):
    """State of a dataset in a ``DatasetCache``."""

    NOT_REQUESTED = auto()
    """The dataset was never requested."""

    IN_FLIGHT = auto()
    """The dataset is being fetched; callers share the pending result."""

    SETTLED = auto()
    """The dataset was fetched, or failed to be fetched."""


class DatasetCache:
    """
    Memoizes the outcome of dataset fetches, keyed by dataset id.

    The first request for a dataset starts exactly one fetch. Every concurrent or later
    request for the same dataset shares its outcome, be it a collection or an error.
    Failures are cached as well, and are never retried. Entries are never evicted,
    so a cache lives as long as its owner.

    The transition of an entry from "not requested" to "in flight" happens without
    yielding to the event loop, which is what guarantees a single fetch per dataset.
    Instances must therefore not be shared between event loops.

    Args:
        logger: The logger to use for all logging output of this cache.
    """

    __slots__ = (
        "_entries",
        "_logger",
    )

    def __init__(self, logger: logging.Logger = _NULL_LOGGER) -> None:
        self._entries: dict[str, asyncio.Future[RawFeatureCollection]] = {}
        self._logger = logger

    def state(self, dataset_id: str) -> CacheState:
        """The current state of the given dataset."""
        entry = self._entries.get(dataset_id)
        if entry is None:
            return CacheState.NOT_REQUESTED
        if not entry.done():
            return CacheState.IN_FLIGHT
        return CacheState.SETTLED

    async def get_or_fetch(self, dataset_id: str, fetch: Fetch) -> RawFeatureCollection:
        """
        Get the memoized outcome for a dataset, or fetch it if it was never requested.

        Cancelling the caller does not cancel a fetch that other callers may be waiting for.

        Raises:
            DatasetError: the (possibly memoized) error of the fetch
        """
        entry = self._entries.get(dataset_id)

        if entry is None:
            self._logger.debug(f"start fetching {dataset_id!r}")
            entry = asyncio.ensure_future(fetch(dataset_id))
            entry.add_done_callback(self._on_settled(dataset_id))
            self._entries[dataset_id] = entry
        else:
            state = "settled" if entry.done() else "in-flight"
            self._logger.debug(f"share {state} result for {dataset_id!r}")

        return await asyncio.shield(entry)

    def _on_settled(
        self, dataset_id: str
    ) -> Callable[[asyncio.Future[RawFeatureCollection]], None]:
        def callback(entry: asyncio.Future[RawFeatureCollection]) -> None:
            if entry.cancelled():
                self._logger.warning(f"fetching {dataset_id!r} was cancelled")
                return

            # retrieving the exception also marks it as handled
            if err := entry.exception():
                self._logger.debug(f"memoize failure for {dataset_id!r}: {err}")
            else:
                self._logger.debug(f"memoize {entry.result()}")

        return callback

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, dataset_id: object) -> bool:
        return dataset_id in self._entries

    def __repr__(self) -> str:
        states = ", ".join(f"{k}={self.state(k).name}" for k in self._entries)
        return f"{type(self).__name__}({states})"

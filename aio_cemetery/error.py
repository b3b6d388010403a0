"""
Error types.

```
                            (CemeteryError)
                                  ╷
             ┌────────────────────┼─────────────────────────┐
             ╵                    ╵                         ╵
       (DatasetError)   MalformedGeometryError    UnsupportedCRSError
             ╷
      ┌──────┴──────┐
      ╵             ╵
TransportError  DecodeError
      ╷
      ╵
TransportTimeoutError
```

Dataset errors are fatal to a pipeline run. Malformed geometry is recovered per feature,
and an unsupported CRS is a configuration error that surfaces before anything is fetched.
"""

import asyncio
from dataclasses import dataclass
from json import JSONDecodeError
from typing import TypeAlias, TypeGuard

import aiohttp


__docformat__ = "google"
__all__ = (
    "CemeteryError",
    "DatasetError",
    "TransportError",
    "TransportTimeoutError",
    "DecodeError",
    "DecodeErrorCause",
    "MalformedGeometryError",
    "UnsupportedCRSError",
    "is_dataset_error",
    "is_decode_error",
    "is_transport_error",
    "is_unreachable",
)


class CemeteryError(Exception):
    """Base exception for everything that can go wrong while loading cemetery data."""

    @property
    def should_retry(self) -> bool:
        """Returns ``True`` if it's worth retrying when encountering this error."""
        return False


@dataclass(kw_only=True)
class DatasetError(CemeteryError):
    """
    Base exception for a dataset that could not be retrieved or decoded.

    Attributes:
        dataset_id: the dataset that failed, f.e. ``"grab"``
    """

    dataset_id: str


@dataclass(kw_only=True)
class TransportError(DatasetError):
    """
    Failed to retrieve a dataset.

    Attributes:
        dataset_id: the dataset that failed
        status: the HTTP status of the response, or ``None`` if there was no response
                at all, f.e. because the network is unreachable
        cause: the exception that caused this error, if any
    """

    status: int | None
    cause: BaseException | None = None

    @property
    def is_unreachable(self) -> bool:
        """``True`` if the API could not be reached at all."""
        return self.status is None

    @property
    def should_retry(self) -> bool:
        """Returns ``True`` if it's worth retrying when encountering this error."""
        return self.status is None or self.status >= 500

    def __str__(self) -> str:
        if self.status is None:
            return f"dataset {self.dataset_id!r} unreachable: {self.cause}"
        return f"dataset {self.dataset_id!r} failed with status {self.status}"


@dataclass(kw_only=True)
class TransportTimeoutError(TransportError):
    """
    A dataset request timed out.

    Attributes:
        after_secs: the configured timeout for the request
    """

    cause: asyncio.TimeoutError | None = None
    after_secs: float

    def __str__(self) -> str:
        return f"dataset {self.dataset_id!r} timed out after {self.after_secs:.1f}s"


DecodeErrorCause: TypeAlias = JSONDecodeError | ValueError | aiohttp.ClientResponseError
"""Causes for a ``DecodeError``."""


@dataclass(kw_only=True)
class DecodeError(DatasetError):
    """
    A dataset response is not a well-formed feature collection.

    Attributes:
        dataset_id: the dataset that failed
        reason: what is wrong with the response
        cause: an optional exception that caused this error
    """

    reason: str
    cause: DecodeErrorCause | None = None

    def __str__(self) -> str:
        return f"dataset {self.dataset_id!r} is malformed: {self.reason}"


@dataclass(kw_only=True)
class MalformedGeometryError(CemeteryError):
    """
    The coordinate payload of a single feature is unusable.

    The pipeline recovers from this error by dropping the feature,
    and recording a diagnostic instead.

    Attributes:
        reason: what is wrong with the payload
    """

    reason: str

    def __str__(self) -> str:
        return f"malformed geometry: {self.reason}"


@dataclass(kw_only=True)
class UnsupportedCRSError(CemeteryError):
    """
    A coordinate reference system is not registered.

    Attributes:
        crs: the identifier that was given
    """

    crs: str

    def __str__(self) -> str:
        return f"unsupported coordinate reference system: {self.crs!r}"


def is_dataset_error(err: BaseException | None) -> TypeGuard[DatasetError]:
    """``True`` if this is a ``DatasetError``."""
    return isinstance(err, DatasetError)


def is_transport_error(err: BaseException | None) -> TypeGuard[TransportError]:
    """``True`` if this is a ``TransportError``."""
    return isinstance(err, TransportError)


def is_unreachable(err: BaseException | None) -> TypeGuard[TransportError]:
    """``True`` if this is a ``TransportError`` without any response."""
    return isinstance(err, TransportError) and err.is_unreachable


def is_decode_error(err: BaseException | None) -> TypeGuard[DecodeError]:
    """``True`` if this is a ``DecodeError``."""
    return isinstance(err, DecodeError)

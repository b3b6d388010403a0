"""Interface for making API calls."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from json import JSONDecodeError
from urllib.parse import urljoin

from aio_cemetery import __version__
from aio_cemetery.dataset import RawFeatureCollection
from aio_cemetery.error import DecodeError, TransportError, TransportTimeoutError

import aiohttp
from aiohttp import ClientTimeout


__docformat__ = "google"
__all__ = (
    "Client",
    "DEFAULT_API_URL",
    "DEFAULT_USER_AGENT",
)


DEFAULT_API_URL = "https://wipperfuerth.pgconnect.de/api/v1/webgis/"
"""Web GIS API of the Wipperfürth cemetery administration."""

DEFAULT_USER_AGENT = f"aio-cemetery/{__version__}"
"""User agent that identifies this library."""

_NULL_LOGGER = logging.getLogger("aio_cemetery")
_NULL_LOGGER.addHandler(logging.NullHandler())


class Client:
    """
    A client for a cemetery web GIS API.

    The client itself does not memoize anything: every call to ``fetch()`` makes a request.
    Use a ``DatasetCache`` to retrieve each dataset only once.

    Args:
        url: The base url of the API. Dataset ids are resolved relative to it.
        user_agent: A string used for the User-Agent header.
        timeout_secs: If set, dataset requests will time out after this duration in seconds.
                      Defaults to no timeout.
        logger: The logger to use for all logging output of this client.
    """

    __slots__ = (
        "_logger",
        "_maybe_session",
        "_timeout_secs",
        "_url",
        "_user_agent",
    )

    def __init__(
        self,
        url: str = DEFAULT_API_URL,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout_secs: float | None = None,
        logger: logging.Logger = _NULL_LOGGER,
    ) -> None:
        if timeout_secs is not None and timeout_secs <= 0.0:
            msg = "'timeout_secs' must be > 0"
            raise ValueError(msg)

        # urljoin() would drop the last path segment otherwise
        self._url = url if url.endswith("/") else f"{url}/"
        self._user_agent = user_agent
        self._timeout_secs = timeout_secs
        self._logger = logger

        self._maybe_session: aiohttp.ClientSession | None = None

    @property
    def url(self) -> str:
        """The base url of the API."""
        return self._url

    def endpoint(self, dataset_id: str) -> str:
        """The url of the given dataset."""
        return urljoin(self._url, dataset_id)

    def _session(self) -> aiohttp.ClientSession:
        """The session used for all requests of this client."""
        if not self._maybe_session or self._maybe_session.closed:
            headers = {"User-Agent": self._user_agent, "Accept": "application/json"}
            self._maybe_session = aiohttp.ClientSession(headers=headers)

        return self._maybe_session

    async def close(self) -> None:
        """Close the underlying session."""
        if self._maybe_session and not self._maybe_session.closed:
            # is raised when there are still active requests. that's ok
            with suppress(aiohttp.ServerDisconnectedError):
                await self._maybe_session.close()

    async def fetch(self, dataset_id: str) -> RawFeatureCollection:
        """
        Retrieve the raw feature collection of a dataset.

        Raises:
            TransportError: if the API could not be reached, or responded with a status >= 400
            TransportTimeoutError: if the configured timeout elapsed
            DecodeError: if the response is not a GeoJSON feature collection
        """
        endpoint = self.endpoint(dataset_id)
        timeout = aiohttp.ClientTimeout(total=self._timeout_secs)

        self._logger.info(f"fetch dataset {dataset_id!r} from {endpoint}")

        async with _map_request_error(dataset_id, timeout), self._session().get(
            url=endpoint, timeout=timeout
        ) as response:
            if response.status >= 400:
                self._logger.error(f"dataset {dataset_id!r} responded with {response.status}")
                raise TransportError(dataset_id=dataset_id, status=response.status)

            collection = await _decode(dataset_id, response)

        self._logger.info(f"received {collection}")
        return collection


async def _decode(dataset_id: str, response: aiohttp.ClientResponse) -> RawFeatureCollection:
    """
    Decode a dataset response.

    Raises:
        DecodeError: if the body is not JSON, or not a feature collection
    """
    try:
        obj = await response.json(content_type=None)
    except (JSONDecodeError, UnicodeDecodeError) as err:
        raise DecodeError(dataset_id=dataset_id, reason="response is not JSON", cause=err) from err

    try:
        return RawFeatureCollection.from_json(dataset_id, obj)
    except ValueError as err:
        raise DecodeError(dataset_id=dataset_id, reason=str(err), cause=err) from err


@asynccontextmanager
async def _map_request_error(
    dataset_id: str,
    timeout: ClientTimeout | None = None,
) -> AsyncIterator[None]:
    """Context to make requests in; maps errors to our exception types."""
    try:
        yield
    except aiohttp.ClientResponseError as err:
        raise TransportError(dataset_id=dataset_id, status=err.status, cause=err) from err
    except aiohttp.ClientError as err:
        raise TransportError(dataset_id=dataset_id, status=None, cause=err) from err
    except asyncio.TimeoutError as err:
        assert timeout is not None and timeout.total
        raise TransportTimeoutError(
            dataset_id=dataset_id,
            status=None,
            cause=err,
            after_secs=timeout.total,
        ) from err

"""HTTP transports for the resumable upload protocol.

Both transports speak the same wire protocol and return a
``TransportResponse`` read in full before the underlying response is
released. Connection errors, timeouts and TLS failures are raised as
``TransportError``; HTTP error statuses are returned, not raised.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import aiohttp
import requests

from gcs_uploader.chunk_reader import Chunk
from gcs_uploader.config import UploaderConfig
from gcs_uploader.const import LOG_URI_MAX_CHARS, UPLOAD_PATH
from gcs_uploader.exceptions import TransportError
from gcs_uploader.models import ObjectDestination

logger = logging.getLogger(__name__)

STATUS_QUERY_HEADERS = {"Content-Length": "0", "Content-Range": "bytes */*"}


@dataclass
class TransportResponse:
    """Status, headers and optional JSON body of a store response.

    Header names are stored lower-cased.
    """

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    json_body: Any | None = None
    text: str = ""

    def header(self, name: str) -> str | None:
        """Return a header value by case-insensitive name."""
        return self.headers.get(name.lower())


@dataclass(frozen=True)
class InitiateRequest:
    """Everything needed to start a resumable session."""

    url: str
    params: dict[str, str]
    headers: dict[str, str]
    body: dict[str, Any]


def build_initiate_request(
    config: UploaderConfig,
    destination: ObjectDestination,
    query_params: dict[str, str],
) -> InitiateRequest:
    """Build the session-initiation request for ``destination``.

    Args:
        config: Uploader configuration.
        destination: Object being written.
        query_params: Encoded preconditions and predefined ACL.

    Returns:
        The ``InitiateRequest``.
    """
    bucket = quote(destination.bucket, safe="")
    url = config.api_url + UPLOAD_PATH.format(bucket=bucket)
    params = {"uploadType": "resumable", "name": destination.name}
    params.update(query_params)
    headers = {
        **config.auth_headers(),
        "Content-Type": "application/json; charset=UTF-8",
        "X-Upload-Content-Type": destination.content_type,
    }
    return InitiateRequest(
        url=url, params=params, headers=headers, body=destination.to_resource()
    )


def chunk_headers(config: UploaderConfig, chunk: Chunk) -> dict[str, str]:
    """Return the headers for transmitting ``chunk``."""
    return {
        **config.auth_headers(),
        "Content-Length": str(chunk.length),
        "Content-Range": chunk.content_range(),
    }


def _lower_headers(headers: Any) -> dict[str, str]:
    return {str(key).lower(): str(value) for key, value in headers.items()}


class RequestsTransport:
    """Blocking transport backed by a ``requests.Session``."""

    def __init__(
        self, config: UploaderConfig, session: requests.Session | None = None
    ) -> None:
        """Initialize the transport.

        Args:
            config: Uploader configuration.
            session: Session to reuse; a new one is created if omitted.
        """
        self._config = config
        self._session = session or requests.Session()

    def _send(
        self, method: str, url: str, timeout: float, **kwargs: Any
    ) -> TransportResponse:
        logger.debug("%s %s", method, url[:LOG_URI_MAX_CHARS])
        try:
            response = self._session.request(method, url, timeout=timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            message = f"{method} {url[:LOG_URI_MAX_CHARS]} failed: {e}"
            raise TransportError(message) from e

        json_body = None
        if response.content:
            try:
                json_body = response.json()
            except ValueError:
                json_body = None
        return TransportResponse(
            status=response.status_code,
            headers=_lower_headers(response.headers),
            json_body=json_body,
            text=response.text if json_body is None else "",
        )

    def initiate(self, request: InitiateRequest) -> TransportResponse:
        """Start a resumable session."""
        return self._send(
            "POST",
            request.url,
            self._config.request_timeout_seconds,
            params=request.params,
            headers=request.headers,
            json=request.body,
        )

    def put_chunk(self, session_uri: str, chunk: Chunk) -> TransportResponse:
        """Transmit one chunk to the session."""
        return self._send(
            "PUT",
            session_uri,
            self._config.request_timeout_seconds,
            headers=chunk_headers(self._config, chunk),
            data=chunk.data,
        )

    def query_offset(self, session_uri: str) -> TransportResponse:
        """Ask the store how many bytes it has persisted."""
        return self._send(
            "PUT",
            session_uri,
            self._config.status_timeout_seconds,
            headers={**self._config.auth_headers(), **STATUS_QUERY_HEADERS},
            data=b"",
        )

    def abort(self, session_uri: str) -> TransportResponse:
        """Cancel the session on the store."""
        return self._send(
            "DELETE",
            session_uri,
            self._config.status_timeout_seconds,
            headers=self._config.auth_headers(),
        )

    def close(self) -> None:
        """Close the underlying session."""
        self._session.close()


class AiohttpTransport:
    """Asynchronous transport backed by an ``aiohttp.ClientSession``."""

    def __init__(
        self, config: UploaderConfig, client_session: aiohttp.ClientSession
    ) -> None:
        """Initialize the transport.

        Args:
            config: Uploader configuration.
            client_session: aiohttp ClientSession for HTTP requests.
        """
        self._config = config
        self._session = client_session

    async def _send(
        self, method: str, url: str, timeout: float, **kwargs: Any
    ) -> TransportResponse:
        logger.debug("%s %s", method, url[:LOG_URI_MAX_CHARS])
        try:
            async with self._session.request(
                method,
                url,
                timeout=aiohttp.ClientTimeout(total=timeout),
                **kwargs,
            ) as response:
                try:
                    json_body = await response.json(content_type=None)
                except (ValueError, aiohttp.ContentTypeError):
                    json_body = None
                text = ""
                if json_body is None:
                    text = await response.text()
                return TransportResponse(
                    status=response.status,
                    headers=_lower_headers(response.headers),
                    json_body=json_body,
                    text=text,
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            message = f"{method} {url[:LOG_URI_MAX_CHARS]} failed: {e!r}"
            raise TransportError(message) from e

    async def initiate(self, request: InitiateRequest) -> TransportResponse:
        """Start a resumable session."""
        return await self._send(
            "POST",
            request.url,
            self._config.request_timeout_seconds,
            params=request.params,
            headers=request.headers,
            json=request.body,
        )

    async def put_chunk(self, session_uri: str, chunk: Chunk) -> TransportResponse:
        """Transmit one chunk to the session."""
        return await self._send(
            "PUT",
            session_uri,
            self._config.request_timeout_seconds,
            headers=chunk_headers(self._config, chunk),
            data=chunk.data,
        )

    async def query_offset(self, session_uri: str) -> TransportResponse:
        """Ask the store how many bytes it has persisted."""
        return await self._send(
            "PUT",
            session_uri,
            self._config.status_timeout_seconds,
            headers={**self._config.auth_headers(), **STATUS_QUERY_HEADERS},
            data=b"",
        )

    async def abort(self, session_uri: str) -> TransportResponse:
        """Cancel the session on the store."""
        return await self._send(
            "DELETE",
            session_uri,
            self._config.status_timeout_seconds,
            headers=self._config.auth_headers(),
        )

"""Upload client facade.

``UploadClient`` validates options, wires a ``ChunkReader`` and a
``ProgressReporter`` into an ``UploadSession`` and runs it with the
matching transport: ``requests`` for the blocking API, ``aiohttp`` for the
asynchronous one.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import BinaryIO

import aiohttp
import requests

from gcs_uploader.chunk_reader import ChunkReader
from gcs_uploader.config import UploaderConfig, resolve_config
from gcs_uploader.const import DEFAULT_CONTENT_TYPE
from gcs_uploader.exceptions import Cancelled
from gcs_uploader.models import ObjectDestination, UploadResult
from gcs_uploader.options import UploadOptions
from gcs_uploader.preconditions import PreconditionSet
from gcs_uploader.progress_reporter import (
    ProgressObserver,
    ProgressReporter,
    UploadProgress,
    UploadStatus,
)
from gcs_uploader.transport import AiohttpTransport, RequestsTransport
from gcs_uploader.upload_session import UploadSession

logger = logging.getLogger(__name__)

_STREAM_END = object()


class UploadClient:
    """Upload objects with the resumable chunked protocol.

    The client holds no per-upload state; every call builds its own
    session, so independent uploads may run concurrently from separate
    threads or tasks.
    """

    def __init__(
        self,
        config: UploaderConfig | None = None,
        session: requests.Session | None = None,
        client_session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Uploader configuration; resolved from the environment if
                omitted.
            session: ``requests`` session for blocking uploads.
            client_session: aiohttp session for asynchronous uploads. When
                omitted each asynchronous upload opens and closes its own.
        """
        self.config = config or resolve_config()
        self._transport = RequestsTransport(self.config, session)
        self._client_session = client_session

    def _build_session(
        self,
        destination: ObjectDestination,
        source: BinaryIO,
        options: UploadOptions | None,
        progress_observer: ProgressObserver | None,
    ) -> UploadSession:
        """Validate options and assemble a session; no request is made here.

        Raises:
            ConfigurationError: If the options are contradictory.
        """
        options = options or UploadOptions()
        preconditions = PreconditionSet.from_options(options)
        chunk_size = options.chunk_size or self.config.default_chunk_size
        reader = ChunkReader(source, chunk_size)
        reporter = ProgressReporter()
        if progress_observer is not None:
            reporter.subscribe(progress_observer)
        return UploadSession(
            destination,
            reader,
            self.config,
            preconditions=preconditions,
            predefined_acl=options.predefined_acl,
            reporter=reporter,
        )

    def upload(
        self,
        destination: ObjectDestination,
        source: BinaryIO,
        options: UploadOptions | None = None,
        progress_observer: ProgressObserver | None = None,
    ) -> UploadResult:
        """Upload ``source`` to ``destination``, blocking until done.

        Args:
            destination: Object to write, with its resource fields.
            source: Binary stream read from its current position to the end.
            options: Chunk size, preconditions and predefined ACL.
            progress_observer: Called with an ``UploadProgress`` before the
                first chunk and after every acknowledged chunk.

        Returns:
            The finalized object's ``UploadResult``.

        Raises:
            ConfigurationError: Invalid options; raised before any request.
            PreconditionFailed: A match precondition did not hold.
            NotModified: A no-match precondition hit.
            TransientUploadFailure: Retries were exhausted.
            IntegrityError: The finalized object differs from what was sent.
            UploadRejected: The store refused the upload.
        """
        session = self._build_session(
            destination, source, options, progress_observer
        )
        logger.info("Uploading to %s/%s", destination.bucket, destination.name)
        return session.run(self._transport)

    def upload_object(
        self,
        bucket: str,
        name: str,
        content_type: str | None,
        source: BinaryIO,
        options: UploadOptions | None = None,
        progress_observer: ProgressObserver | None = None,
    ) -> UploadResult:
        """Upload ``source`` as ``bucket/name``; see ``upload``."""
        destination = ObjectDestination(
            bucket=bucket,
            name=name,
            content_type=content_type or DEFAULT_CONTENT_TYPE,
        )
        return self.upload(destination, source, options, progress_observer)

    async def upload_async(
        self,
        destination: ObjectDestination,
        source: BinaryIO,
        options: UploadOptions | None = None,
        cancellation: asyncio.Event | None = None,
        progress_observer: ProgressObserver | None = None,
    ) -> UploadResult:
        """Upload ``source`` to ``destination`` without blocking the loop.

        Semantics match ``upload``. Additionally, ``cancellation`` is checked
        between chunks: once set, the chunk in flight completes, the session
        is aborted on the store and ``Cancelled`` is raised.

        Raises:
            Cancelled: The caller set ``cancellation``.
            UploadError: Any failure ``upload`` can raise.
        """
        session = self._build_session(
            destination, source, options, progress_observer
        )
        logger.info("Uploading to %s/%s", destination.bucket, destination.name)

        if self._client_session is not None:
            transport = AiohttpTransport(self.config, self._client_session)
            return await session.run_async(transport, cancellation)

        async with aiohttp.ClientSession() as client_session:
            transport = AiohttpTransport(self.config, client_session)
            return await session.run_async(transport, cancellation)

    async def upload_object_async(
        self,
        bucket: str,
        name: str,
        content_type: str | None,
        source: BinaryIO,
        options: UploadOptions | None = None,
        cancellation: asyncio.Event | None = None,
        progress_observer: ProgressObserver | None = None,
    ) -> UploadResult:
        """Upload ``source`` as ``bucket/name``; see ``upload_async``."""
        destination = ObjectDestination(
            bucket=bucket,
            name=name,
            content_type=content_type or DEFAULT_CONTENT_TYPE,
        )
        return await self.upload_async(
            destination, source, options, cancellation, progress_observer
        )

    async def stream_upload(
        self,
        destination: ObjectDestination,
        source: BinaryIO,
        options: UploadOptions | None = None,
    ) -> AsyncIterator[UploadProgress]:
        """Upload ``source`` and yield its progress events.

        The last event has status ``COMPLETED`` and carries the
        ``UploadResult``. Failures are raised from the iterator. Closing the
        iterator before the last event cancels the upload between chunks.

        Yields:
            ``UploadProgress`` events in the order they were emitted.
        """
        queue: asyncio.Queue = asyncio.Queue()
        cancellation = asyncio.Event()

        async def run() -> UploadResult:
            try:
                return await self.upload_async(
                    destination,
                    source,
                    options,
                    cancellation=cancellation,
                    progress_observer=queue.put_nowait,
                )
            finally:
                queue.put_nowait(_STREAM_END)

        task = asyncio.create_task(run())
        pending: UploadProgress | None = None
        try:
            while True:
                event = await queue.get()
                if event is _STREAM_END:
                    break
                if pending is not None:
                    yield pending
                pending = event

            result = await task
            if pending is not None:
                yield UploadProgress(
                    UploadStatus.COMPLETED, pending.bytes_sent, result
                )
        finally:
            if not task.done():
                cancellation.set()
                try:
                    await task
                except Cancelled:
                    logger.info(
                        "Upload of %s/%s cancelled by consumer",
                        destination.bucket,
                        destination.name,
                    )

    def close(self) -> None:
        """Release the blocking transport's connections."""
        self._transport.close()

    def __enter__(self) -> "UploadClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

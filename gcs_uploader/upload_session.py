"""Resumable upload session state machine.

A session starts a resumable upload on the store, transmits chunks strictly
in offset order, and on transient failure asks the store for the last
persisted byte before resuming from there. The session state is plain data
(``UploadSessionState``) so that it can be inspected or persisted between
steps; the blocking and asynchronous drivers share every state transition
and differ only in how they perform I/O and sleep.
"""

import asyncio
import base64
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

from gcs_uploader.chunk_reader import Chunk, ChunkReader
from gcs_uploader.config import UploaderConfig
from gcs_uploader.const import (
    FINAL_SUCCESS_CODES,
    LOG_URI_MAX_CHARS,
    NOT_MODIFIED_CODE,
    PRECONDITION_FAILED_CODE,
    RESUME_INCOMPLETE_CODE,
    RETRYABLE_STATUS_CODES,
    SESSION_GONE_CODES,
)
from gcs_uploader.exceptions import (
    Cancelled,
    IntegrityError,
    NotModified,
    PreconditionFailed,
    TransientUploadFailure,
    TransportError,
    UploadError,
    UploadRejected,
)
from gcs_uploader.models import ObjectDestination, UploadResult
from gcs_uploader.options import PredefinedAcl
from gcs_uploader.preconditions import PreconditionSet
from gcs_uploader.progress_reporter import ProgressReporter
from gcs_uploader.transport import (
    AiohttpTransport,
    InitiateRequest,
    RequestsTransport,
    TransportResponse,
    build_initiate_request,
)

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    """States of an upload session."""

    UNINITIATED = "UNINITIATED"
    INITIATING = "INITIATING"
    TRANSFERRING = "TRANSFERRING"
    RESUMING = "RESUMING"
    VERIFYING = "VERIFYING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass
class UploadSessionState:
    """Mutable state of one upload session.

    Attributes:
        status: Current state machine status.
        session_uri: Opaque session handle issued by the store.
        bytes_sent: Bytes confirmed as persisted by the store.
        next_expected_offset: Offset the store expects next.
        terminal: True once the session completed or failed.
        last_status_code: Status of the most recent store response.
        consecutive_failures: Failed round trips since the last progress.
        chunks_sent: Chunk requests transmitted, re-sends included.
    """

    status: SessionStatus = SessionStatus.UNINITIATED
    session_uri: str | None = None
    bytes_sent: int = 0
    next_expected_offset: int = 0
    terminal: bool = False
    last_status_code: int | None = None
    consecutive_failures: int = 0
    chunks_sent: int = 0


class _Step(Enum):
    NEXT = "NEXT"
    RESUME = "RESUME"
    RETRY = "RETRY"
    BACKOFF = "BACKOFF"
    VERIFY = "VERIFY"


def _parse_range_end(range_header: str | None) -> int:
    """Return the persisted byte count from a ``Range: bytes=0-N`` header."""
    if not range_header:
        return 0
    try:
        return int(range_header.rsplit("-", 1)[1]) + 1
    except (IndexError, ValueError):
        raise UploadError(f"Malformed Range header: {range_header!r}") from None


class UploadSession:
    """Drive one resumable upload to completion or failure."""

    def __init__(
        self,
        destination: ObjectDestination,
        reader: ChunkReader,
        config: UploaderConfig,
        preconditions: PreconditionSet | None = None,
        predefined_acl: PredefinedAcl | None = None,
        reporter: ProgressReporter | None = None,
    ) -> None:
        """Initialize the session.

        Args:
            destination: Object being written.
            reader: Reader over the content; owned by this session.
            config: Uploader configuration (retry ceiling and backoff).
            preconditions: Validated preconditions for the initiation request.
            predefined_acl: Predefined ACL for the new object.
            reporter: Progress reporter; a private one is used if omitted.
        """
        self._destination = destination
        self._reader = reader
        self._config = config
        self._preconditions = preconditions or PreconditionSet()
        self._predefined_acl = predefined_acl
        self._reporter = reporter or ProgressReporter()
        self.state = UploadSessionState()

    @property
    def reporter(self) -> ProgressReporter:
        """Progress reporter of this session."""
        return self._reporter

    def _log_uri(self) -> str:
        uri = self.state.session_uri or ""
        if len(uri) > LOG_URI_MAX_CHARS:
            return uri[:LOG_URI_MAX_CHARS] + "..."
        return uri

    # ------------------------------------------------------------------
    # State transitions shared by both drivers
    # ------------------------------------------------------------------

    def _fail(self, error: UploadError) -> UploadError:
        """Move to FAILED and return ``error`` for the caller to raise."""
        self.state.status = SessionStatus.FAILED
        self.state.terminal = True
        logger.error(
            "Upload of %s/%s failed at offset %d: %s",
            self._destination.bucket,
            self._destination.name,
            self.state.bytes_sent,
            error,
        )
        return error

    def _remote_error(
        self, status: int, what: str, session_open: bool = True
    ) -> UploadError:
        """Map a terminal store status onto the error taxonomy.

        404 and 410 mean an expired session only once a session exists; at
        initiation they are rejections (e.g. a missing bucket).
        """
        if status == PRECONDITION_FAILED_CODE:
            return PreconditionFailed(f"{what}: precondition failed", status)
        if status == NOT_MODIFIED_CODE:
            return NotModified(f"{what}: not modified", status)
        if session_open and status in SESSION_GONE_CODES:
            return TransientUploadFailure(f"{what}: upload session expired", status)
        return UploadRejected(f"{what} failed with HTTP {status}", status)

    def _backoff_delay(self, attempt: int) -> float:
        """Exponential backoff for ``attempt`` (0-based), capped."""
        delay = self._config.backoff_base_seconds * 2**attempt
        return min(delay, self._config.max_backoff_seconds)

    def _register_failure(
        self, reason: str, status_code: int | None = None
    ) -> float:
        """Count a failed round trip and return the delay before the next one.

        Raises:
            TransientUploadFailure: If the retry ceiling is exceeded.
        """
        self.state.consecutive_failures += 1
        attempt = self.state.consecutive_failures
        if attempt > self._config.max_retries:
            raise self._fail(
                TransientUploadFailure(
                    f"Upload failed after {self._config.max_retries} attempts: "
                    f"{reason}",
                    status_code,
                )
            )
        logger.warning(
            "Upload round trip failed (attempt %d/%d): %s",
            attempt,
            self._config.max_retries,
            reason,
        )
        return self._backoff_delay(attempt - 1)

    def _initiate_request(self) -> InitiateRequest:
        self.state.status = SessionStatus.INITIATING
        params = self._preconditions.encode()
        if self._predefined_acl is not None:
            params["predefinedAcl"] = self._predefined_acl.value
        return build_initiate_request(self._config, self._destination, params)

    def _on_initiate_response(self, response: TransportResponse) -> _Step:
        """Handle the initiation response.

        Returns:
            ``_Step.NEXT`` when the session was opened, ``_Step.RETRY`` for a
            retryable status.
        """
        status = response.status
        self.state.last_status_code = status
        if status in FINAL_SUCCESS_CODES:
            location = response.header("Location")
            if not location:
                raise self._fail(
                    UploadRejected("Store did not return an upload session URI")
                )
            self.state.session_uri = location
            self.state.status = SessionStatus.TRANSFERRING
            self.state.consecutive_failures = 0
            logger.info(
                "Opened upload session for %s/%s: %s",
                self._destination.bucket,
                self._destination.name,
                self._log_uri(),
            )
            return _Step.NEXT
        if status in RETRYABLE_STATUS_CODES:
            return _Step.RETRY
        raise self._fail(
            self._remote_error(status, "Upload initiation", session_open=False)
        )

    def _confirm(self, persisted: int) -> None:
        """Record ``persisted`` bytes as confirmed by the store.

        Raises:
            IntegrityError: If the store reports fewer bytes than it confirmed
                before, or more than were sent.
        """
        if persisted < self.state.bytes_sent or persisted > self._reader.bytes_read:
            raise self._fail(
                IntegrityError(
                    f"Store reports {persisted} bytes persisted; "
                    f"{self.state.bytes_sent} confirmed, "
                    f"{self._reader.bytes_read} sent"
                )
            )
        if persisted > self.state.bytes_sent:
            self.state.consecutive_failures = 0
        self.state.bytes_sent = persisted
        self.state.next_expected_offset = persisted

    def _on_chunk_response(
        self, chunk: Chunk, response: TransportResponse
    ) -> tuple[_Step, Any]:
        """Handle the store's answer to a chunk request."""
        status = response.status
        self.state.last_status_code = status

        if status in FINAL_SUCCESS_CODES:
            self._confirm(chunk.end)
            self._reporter.chunk_acknowledged(self.state.bytes_sent, is_final=True)
            self.state.status = SessionStatus.VERIFYING
            return _Step.VERIFY, response.json_body

        if status == RESUME_INCOMPLETE_CODE:
            persisted = _parse_range_end(response.header("Range"))
            previous = self.state.bytes_sent
            self._confirm(persisted)
            if persisted != self._reader.offset:
                logger.info(
                    "Store persisted %d of %d bytes sent; rewinding",
                    persisted,
                    chunk.end,
                )
                self._reader.seek(persisted)
            if persisted == previous:
                # A stalled store counts against the retry ceiling
                delay = self._register_failure(
                    f"store persisted nothing from chunk at offset {chunk.offset}",
                    status,
                )
                return _Step.BACKOFF, delay
            self._reporter.chunk_acknowledged(persisted, is_final=False)
            logger.debug(
                "Uploaded chunk: %d bytes confirmed for %s",
                persisted,
                self._destination.name,
            )
            return _Step.NEXT, None

        if status in RETRYABLE_STATUS_CODES:
            logger.warning("Chunk at offset %d got HTTP %d", chunk.offset, status)
            return _Step.RESUME, None

        raise self._fail(self._remote_error(status, "Chunk upload"))

    def _on_query_response(self, response: TransportResponse) -> tuple[_Step, Any]:
        """Handle the answer to an offset query."""
        status = response.status
        self.state.last_status_code = status

        if status in FINAL_SUCCESS_CODES:
            # The store finalized the object; the final acknowledgement was lost
            self._confirm(self._reader.bytes_read)
            self._reporter.chunk_acknowledged(self.state.bytes_sent, is_final=True)
            self.state.status = SessionStatus.VERIFYING
            return _Step.VERIFY, response.json_body

        if status == RESUME_INCOMPLETE_CODE:
            persisted = _parse_range_end(response.header("Range"))
            previous = self.state.bytes_sent
            self._confirm(persisted)
            finished = persisted == self._reader.bytes_read and self._reader.at_end
            if persisted > previous and not finished:
                # The chunk landed but its acknowledgement was lost
                self._reporter.chunk_acknowledged(persisted, is_final=False)
            self._reader.seek(persisted)
            self.state.status = SessionStatus.TRANSFERRING
            logger.info(
                "Resuming upload of %s at offset %d", self._destination.name, persisted
            )
            return _Step.NEXT, None

        if status in RETRYABLE_STATUS_CODES:
            return _Step.RETRY, None

        raise self._fail(self._remote_error(status, "Upload status query"))

    def _verify(self, resource: Any) -> UploadResult:
        """Check the finalized object against what was sent.

        Raises:
            IntegrityError: On size or MD5 mismatch.
        """
        result = UploadResult.from_resource(
            resource if isinstance(resource, dict) else None
        )
        if result.size is None:
            raise self._fail(IntegrityError("Store did not report the object size"))
        if result.size != self.state.bytes_sent:
            raise self._fail(
                IntegrityError(
                    f"Size mismatch after finalization: store has {result.size} "
                    f"bytes, {self.state.bytes_sent} were sent"
                )
            )
        if result.md5_hash:
            try:
                remote_md5 = base64.b64decode(result.md5_hash)
            except ValueError:
                raise self._fail(
                    IntegrityError(f"Malformed md5Hash: {result.md5_hash!r}")
                ) from None
            if remote_md5 != self._reader.md5_digest():
                raise self._fail(IntegrityError("Checksum mismatch after finalization"))

        self.state.status = SessionStatus.COMPLETED
        self.state.terminal = True
        logger.info(
            "Upload complete for %s/%s: %d bytes, generation %s",
            self._destination.bucket,
            self._destination.name,
            self.state.bytes_sent,
            result.generation,
        )
        return result

    def _begin_transfer(self) -> None:
        self._reporter.start()

    def _next_chunk(self) -> Chunk:
        chunk = self._reader.next_chunk()
        self.state.chunks_sent += 1
        return chunk

    def _mark_cancelled(self) -> UploadError:
        return self._fail(
            Cancelled(f"Upload cancelled at offset {self.state.bytes_sent}")
        )

    def _fail_unexpectedly(self, error: Exception) -> None:
        """Fail the session on an error no state handler has accounted for.

        Covers exceptions raised by progress observers and reader I/O.
        """
        if self.state.terminal:
            return
        self.state.status = SessionStatus.FAILED
        self.state.terminal = True
        logger.error(
            "Upload of %s/%s aborted by %s at offset %d: %s",
            self._destination.bucket,
            self._destination.name,
            type(error).__name__,
            self.state.bytes_sent,
            error,
        )

    # ------------------------------------------------------------------
    # Blocking driver
    # ------------------------------------------------------------------

    def run(self, transport: RequestsTransport) -> UploadResult:
        """Run the session to a terminal state.

        Args:
            transport: Blocking transport to the store.

        Returns:
            The finalized object's ``UploadResult``.

        Raises:
            UploadError: A subclass describing the terminal failure.
        """
        try:
            return self._drive(transport)
        except Exception as e:
            self._fail_unexpectedly(e)
            raise

    def _drive(self, transport: RequestsTransport) -> UploadResult:
        self._initiate(transport)
        self._begin_transfer()

        while True:
            chunk = self._next_chunk()
            try:
                response = transport.put_chunk(self.state.session_uri, chunk)
            except TransportError as e:
                logger.warning("Chunk at offset %d failed: %s", chunk.offset, e)
                step, payload, status = _Step.RESUME, None, None
            else:
                step, payload = self._on_chunk_response(chunk, response)
                status = response.status

            if step is _Step.BACKOFF:
                time.sleep(payload)
            if step is _Step.RESUME:
                step, payload = self._resume(
                    transport, f"chunk at offset {chunk.offset}", status
                )
            if step is _Step.VERIFY:
                return self._verify(payload)

    def _initiate(self, transport: RequestsTransport) -> None:
        request = self._initiate_request()
        while True:
            try:
                response = transport.initiate(request)
            except TransportError as e:
                reason, status = str(e), None
            else:
                if self._on_initiate_response(response) is _Step.NEXT:
                    return
                reason, status = f"HTTP {response.status}", response.status
            time.sleep(self._register_failure(f"initiation: {reason}", status))

    def _resume(
        self, transport: RequestsTransport, reason: str, status: int | None
    ) -> tuple[_Step, Any]:
        while True:
            self.state.status = SessionStatus.RESUMING
            time.sleep(self._register_failure(reason, status))
            try:
                response = transport.query_offset(self.state.session_uri)
            except TransportError as e:
                reason, status = f"status query: {e}", None
                continue
            step, resource = self._on_query_response(response)
            if step is not _Step.RETRY:
                return step, resource
            reason, status = f"status query: HTTP {response.status}", response.status

    def abort(self, transport: RequestsTransport) -> None:
        """Cancel the session on the store.

        Failure to reach the store is logged; the session is failed either way.
        """
        if self.state.session_uri is not None:
            try:
                response = transport.abort(self.state.session_uri)
                logger.info("Aborted upload session: HTTP %d", response.status)
            except TransportError as e:
                logger.warning("Failed to abort upload session: %s", e)
        self.state.status = SessionStatus.FAILED
        self.state.terminal = True

    # ------------------------------------------------------------------
    # Asynchronous driver
    # ------------------------------------------------------------------

    async def run_async(
        self,
        transport: AiohttpTransport,
        cancellation: asyncio.Event | None = None,
    ) -> UploadResult:
        """Run the session to a terminal state without blocking the loop.

        ``cancellation`` is checked before every chunk. Once set, no further
        chunk is sent, the session is aborted and ``Cancelled`` is raised.

        Args:
            transport: Asynchronous transport to the store.
            cancellation: Optional event signalling cooperative cancellation.

        Returns:
            The finalized object's ``UploadResult``.

        Raises:
            UploadError: A subclass describing the terminal failure.
        """
        try:
            return await self._drive_async(transport, cancellation)
        except Exception as e:
            self._fail_unexpectedly(e)
            raise

    async def _drive_async(
        self,
        transport: AiohttpTransport,
        cancellation: asyncio.Event | None,
    ) -> UploadResult:
        await self._initiate_async(transport)
        self._begin_transfer()

        while True:
            if cancellation is not None and cancellation.is_set():
                await self.abort_async(transport)
                raise self._mark_cancelled()

            chunk = self._next_chunk()
            try:
                response = await transport.put_chunk(self.state.session_uri, chunk)
            except TransportError as e:
                logger.warning("Chunk at offset %d failed: %s", chunk.offset, e)
                step, payload, status = _Step.RESUME, None, None
            else:
                step, payload = self._on_chunk_response(chunk, response)
                status = response.status

            if step is _Step.BACKOFF:
                await asyncio.sleep(payload)
            if step is _Step.RESUME:
                step, payload = await self._resume_async(
                    transport, f"chunk at offset {chunk.offset}", status
                )
            if step is _Step.VERIFY:
                return self._verify(payload)

    async def _initiate_async(self, transport: AiohttpTransport) -> None:
        request = self._initiate_request()
        while True:
            try:
                response = await transport.initiate(request)
            except TransportError as e:
                reason, status = str(e), None
            else:
                if self._on_initiate_response(response) is _Step.NEXT:
                    return
                reason, status = f"HTTP {response.status}", response.status
            await asyncio.sleep(
                self._register_failure(f"initiation: {reason}", status)
            )

    async def _resume_async(
        self, transport: AiohttpTransport, reason: str, status: int | None
    ) -> tuple[_Step, Any]:
        while True:
            self.state.status = SessionStatus.RESUMING
            await asyncio.sleep(self._register_failure(reason, status))
            try:
                response = await transport.query_offset(self.state.session_uri)
            except TransportError as e:
                reason, status = f"status query: {e}", None
                continue
            step, resource = self._on_query_response(response)
            if step is not _Step.RETRY:
                return step, resource
            reason, status = f"status query: HTTP {response.status}", response.status

    async def abort_async(self, transport: AiohttpTransport) -> None:
        """Cancel the session on the store; see ``abort``."""
        if self.state.session_uri is not None:
            try:
                response = await transport.abort(self.state.session_uri)
                logger.info("Aborted upload session: HTTP %d", response.status)
            except TransportError as e:
                logger.warning("Failed to abort upload session: %s", e)
        self.state.status = SessionStatus.FAILED
        self.state.terminal = True

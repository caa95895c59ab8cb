"""Progress notifications for uploads."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from pyee import EventEmitter
from tqdm import tqdm

if TYPE_CHECKING:
    from gcs_uploader.models import UploadResult

logger = logging.getLogger(__name__)


class UploadStatus(str, Enum):
    """Coarse state of an upload as seen by progress observers."""

    STARTING = "STARTING"
    UPLOADING = "UPLOADING"
    COMPLETED = "COMPLETED"


@dataclass(frozen=True)
class UploadProgress:
    """A single progress notification.

    Attributes:
        status: State of the upload when the notification was emitted.
        bytes_sent: Cumulative bytes acknowledged by the store.
        result: The finalized object, only on the ``COMPLETED`` event of
            ``UploadClient.stream_upload``.
    """

    status: UploadStatus
    bytes_sent: int
    result: "UploadResult | None" = None


ProgressObserver = Callable[[UploadProgress], None]


class ProgressReporter:
    """Emit cumulative byte counts to observers after each acknowledged chunk.

    For an upload of N chunks observers see exactly N + 1 notifications: a
    zero-byte one before the first chunk and one per acknowledged chunk. The
    acknowledgement of the final chunk is the completion notification.
    Observers are called synchronously and nothing is batched.
    """

    PROGRESS = "progress"

    def __init__(self, emitter: EventEmitter | None = None) -> None:
        """Initialize the reporter.

        Args:
            emitter: Emitter to publish on. A private one is created if omitted.
        """
        self._emitter = emitter or EventEmitter()
        self._bytes_sent = 0
        self._notifications = 0

    @property
    def bytes_sent(self) -> int:
        """Cumulative bytes reported so far."""
        return self._bytes_sent

    @property
    def notification_count(self) -> int:
        """Number of notifications emitted so far."""
        return self._notifications

    def subscribe(self, observer: ProgressObserver) -> None:
        """Register an observer for progress notifications."""
        self._emitter.on(self.PROGRESS, observer)

    def _emit(self, status: UploadStatus) -> None:
        self._notifications += 1
        logger.debug("Progress %s: %d bytes", status.value, self._bytes_sent)
        self._emitter.emit(self.PROGRESS, UploadProgress(status, self._bytes_sent))

    def start(self) -> None:
        """Emit the initial zero-byte notification."""
        self._bytes_sent = 0
        self._emit(UploadStatus.STARTING)

    def chunk_acknowledged(self, bytes_sent: int, is_final: bool) -> None:
        """Emit the notification for an acknowledged chunk.

        Args:
            bytes_sent: Cumulative bytes confirmed by the store.
            is_final: Whether the chunk completed the upload.

        Raises:
            ValueError: If ``bytes_sent`` is lower than a previous report.
        """
        if bytes_sent < self._bytes_sent:
            raise ValueError(
                f"Progress must not go backwards: {bytes_sent} < {self._bytes_sent}"
            )
        self._bytes_sent = bytes_sent
        self._emit(UploadStatus.COMPLETED if is_final else UploadStatus.UPLOADING)


class TqdmProgressObserver:
    """Observer that drives a ``tqdm`` progress bar in bytes."""

    def __init__(
        self,
        total: int | None = None,
        desc: str = "Uploading",
        verbose: bool = True,
    ) -> None:
        """Initialize the observer.

        Args:
            total: Expected content length, if known.
            desc: Progress bar label.
            verbose: Show the bar; when False the bar is disabled.
        """
        self._last = 0
        self._pbar = tqdm(
            total=total,
            desc=desc,
            unit="B",
            unit_scale=True,
            disable=not verbose,
        )

    def __call__(self, progress: UploadProgress) -> None:
        """Advance the bar to ``progress.bytes_sent``."""
        self._pbar.update(progress.bytes_sent - self._last)
        self._last = progress.bytes_sent
        if progress.status == UploadStatus.COMPLETED:
            self.close()

    @property
    def position(self) -> int:
        """Bytes shown on the bar."""
        return self._last

    def close(self) -> None:
        """Close the underlying bar."""
        self._pbar.close()

"""Split a byte stream into fixed-size upload chunks.

The reader owns the stream for the lifetime of an upload. It keeps the most
recently produced chunk so that a session can rewind to a server-confirmed
offset inside that chunk even when the stream is not seekable.
"""

import hashlib
import logging
from dataclasses import dataclass
from typing import BinaryIO

from gcs_uploader.exceptions import UploadError
from gcs_uploader.options import check_chunk_size

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Chunk:
    """A contiguous byte range of the source.

    Attributes:
        offset: Position of the first byte in the source.
        data: The bytes of the range.
        is_final: True when the range reaches the end of the source.
    """

    offset: int
    data: bytes
    is_final: bool

    @property
    def length(self) -> int:
        """Number of bytes in the chunk."""
        return len(self.data)

    @property
    def end(self) -> int:
        """Offset one past the last byte of the chunk."""
        return self.offset + len(self.data)

    def content_range(self) -> str:
        """Return the ``Content-Range`` header value for this chunk."""
        total = str(self.end) if self.is_final else "*"
        if not self.data:
            return f"bytes */{total}"
        return f"bytes {self.offset}-{self.end - 1}/{total}"


class ChunkReader:
    """Produce sequential chunks of a binary stream."""

    def __init__(self, stream: BinaryIO, chunk_size: int) -> None:
        """Initialize the reader.

        Args:
            stream: Binary stream positioned at the first byte to upload.
            chunk_size: Size of every non-final chunk.

        Raises:
            ConfigurationError: If ``chunk_size`` is not a positive multiple of
                ``MINIMUM_CHUNK_SIZE``.
        """
        self._chunk_size = check_chunk_size(chunk_size)
        self._stream = stream
        self._offset = 0
        # Bytes read from the stream but not yet handed out, starting at _offset
        self._pending = b""
        self._exhausted = False
        self._retained: Chunk | None = None
        self._read_upto = 0
        self._md5 = hashlib.md5()

        try:
            self._base_position: int | None = stream.tell()
        except (AttributeError, OSError):
            self._base_position = None

    @property
    def chunk_size(self) -> int:
        """Size of every non-final chunk."""
        return self._chunk_size

    @property
    def offset(self) -> int:
        """Offset of the next chunk."""
        return self._offset

    @property
    def bytes_read(self) -> int:
        """Highest offset handed out so far."""
        return self._read_upto

    @property
    def at_end(self) -> bool:
        """True once every byte of the stream has been handed out."""
        return self._exhausted and not self._pending

    def md5_digest(self) -> bytes:
        """Return the MD5 digest of every byte handed out so far."""
        return self._md5.digest()

    def _fill(self, wanted: int) -> None:
        """Read from the stream until ``wanted`` bytes are pending or EOF."""
        parts = [self._pending]
        have = len(self._pending)
        while have < wanted and not self._exhausted:
            data = self._stream.read(wanted - have)
            if not data:
                self._exhausted = True
                break
            parts.append(data)
            have += len(data)
        self._pending = b"".join(parts)

    def next_chunk(self) -> Chunk:
        """Return the next chunk of the stream.

        A chunk is shorter than ``chunk_size`` only when it is final. One byte
        is read ahead so that a chunk ending exactly at end of stream is
        marked final.

        Returns:
            The next ``Chunk``. An empty source produces a single empty final
            chunk.
        """
        self._fill(self._chunk_size + 1)

        if len(self._pending) > self._chunk_size:
            data = self._pending[: self._chunk_size]
            self._pending = self._pending[self._chunk_size :]
            is_final = False
        else:
            data = self._pending
            self._pending = b""
            is_final = True

        chunk = Chunk(offset=self._offset, data=data, is_final=is_final)
        if chunk.end > self._read_upto:
            self._md5.update(data[self._read_upto - chunk.offset :])
            self._read_upto = chunk.end
        self._offset = chunk.end
        self._retained = chunk
        return chunk

    def seek(self, offset: int) -> None:
        """Rewind so that the next chunk starts at ``offset``.

        Args:
            offset: Server-confirmed offset to resume from.

        Raises:
            UploadError: If the offset lies beyond the bytes handed out, or
                before the retained chunk on a stream that cannot seek.
        """
        if offset == self._offset:
            return
        if offset < 0 or offset > self._read_upto:
            raise UploadError(
                f"Cannot seek to offset {offset}; {self._read_upto} bytes read"
            )

        retained = self._retained
        if (
            retained is not None
            and retained.offset <= offset <= retained.end
            and retained.offset <= self._offset <= retained.end
        ):
            tail = retained.data[offset - retained.offset :]
            self._pending = tail + self._pending[retained.end - self._offset :]
            self._offset = offset
            logger.debug("Rewound reader to offset %d within retained chunk", offset)
            return

        if self._base_position is None or not self._stream.seekable():
            raise UploadError(
                f"Cannot rewind a non-seekable stream to offset {offset}"
            )
        self._stream.seek(self._base_position + offset)
        self._pending = b""
        self._exhausted = False
        self._offset = offset
        logger.debug("Seeked stream to offset %d", offset)

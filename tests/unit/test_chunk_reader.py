"""Tests for ChunkReader."""

import hashlib
import io
import math

import pytest

from gcs_uploader.chunk_reader import Chunk, ChunkReader
from gcs_uploader.const import MINIMUM_CHUNK_SIZE
from gcs_uploader.exceptions import ConfigurationError, UploadError
from tests.unit.helpers.fake_gcs import generate_data


class TrickleStream(io.RawIOBase):
    """Non-seekable stream returning at most ``step`` bytes per read."""

    def __init__(self, data: bytes, step: int) -> None:
        self._data = data
        self._pos = 0
        self._step = step

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        if size < 0:
            size = len(self._data)
        size = min(size, self._step)
        out = self._data[self._pos : self._pos + size]
        self._pos += len(out)
        return out


def _read_all(reader: ChunkReader) -> list[Chunk]:
    chunks = []
    while True:
        chunk = reader.next_chunk()
        chunks.append(chunk)
        if chunk.is_final:
            return chunks


@pytest.mark.parametrize("chunk_units", [1, 2, 3])
@pytest.mark.parametrize(
    "length",
    [
        1,
        100,
        MINIMUM_CHUNK_SIZE - 1,
        MINIMUM_CHUNK_SIZE,
        MINIMUM_CHUNK_SIZE + 1,
        3 * MINIMUM_CHUNK_SIZE,
        3 * MINIMUM_CHUNK_SIZE + 17,
    ],
)
def test_chunk_count_and_reassembly(chunk_units: int, length: int) -> None:
    chunk_size = chunk_units * MINIMUM_CHUNK_SIZE
    source = generate_data(length)
    original = source.getvalue()

    chunks = _read_all(ChunkReader(source, chunk_size))

    assert len(chunks) == math.ceil(length / chunk_size)
    assert b"".join(c.data for c in chunks) == original
    assert all(c.length == chunk_size for c in chunks[:-1])
    assert [c.is_final for c in chunks] == [False] * (len(chunks) - 1) + [True]
    assert chunks[-1].end == length


def test_exact_multiple_marks_last_full_chunk_final() -> None:
    reader = ChunkReader(generate_data(2 * MINIMUM_CHUNK_SIZE), MINIMUM_CHUNK_SIZE)

    first = reader.next_chunk()
    second = reader.next_chunk()

    assert not first.is_final
    assert second.is_final
    assert second.length == MINIMUM_CHUNK_SIZE


def test_empty_stream_yields_single_empty_final_chunk() -> None:
    reader = ChunkReader(io.BytesIO(b""), MINIMUM_CHUNK_SIZE)

    chunk = reader.next_chunk()

    assert chunk.is_final
    assert chunk.length == 0
    assert chunk.content_range() == "bytes */0"


def test_short_reads_still_fill_chunks() -> None:
    data = generate_data(2 * MINIMUM_CHUNK_SIZE + 10).getvalue()
    reader = ChunkReader(TrickleStream(data, step=1000), MINIMUM_CHUNK_SIZE)

    chunks = _read_all(reader)

    assert [c.length for c in chunks] == [MINIMUM_CHUNK_SIZE, MINIMUM_CHUNK_SIZE, 10]
    assert b"".join(c.data for c in chunks) == data


@pytest.mark.parametrize("chunk_size", [0, -MINIMUM_CHUNK_SIZE, 1000, 100 * 1024])
def test_invalid_chunk_size_rejected_at_construction(chunk_size: int) -> None:
    with pytest.raises(ConfigurationError):
        ChunkReader(io.BytesIO(b"data"), chunk_size)


def test_content_range_headers() -> None:
    reader = ChunkReader(generate_data(MINIMUM_CHUNK_SIZE + 5), MINIMUM_CHUNK_SIZE)

    first = reader.next_chunk()
    last = reader.next_chunk()

    assert first.content_range() == f"bytes 0-{MINIMUM_CHUNK_SIZE - 1}/*"
    assert last.content_range() == (
        f"bytes {MINIMUM_CHUNK_SIZE}-{MINIMUM_CHUNK_SIZE + 4}/{MINIMUM_CHUNK_SIZE + 5}"
    )


def test_seek_within_retained_chunk_on_non_seekable_stream() -> None:
    data = generate_data(3 * MINIMUM_CHUNK_SIZE).getvalue()
    stream = TrickleStream(data, step=MINIMUM_CHUNK_SIZE)
    reader = ChunkReader(stream, MINIMUM_CHUNK_SIZE)

    reader.next_chunk()
    second = reader.next_chunk()
    reader.seek(second.offset + 100)
    resent = reader.next_chunk()

    assert resent.offset == second.offset + 100
    assert resent.data == data[resent.offset : resent.end]
    assert resent.length == MINIMUM_CHUNK_SIZE
    rest = _read_all(reader)
    assert b"".join(c.data for c in rest) == data[resent.end :]


def test_seek_twice_within_retained_chunk() -> None:
    data = generate_data(2 * MINIMUM_CHUNK_SIZE + 3).getvalue()
    reader = ChunkReader(io.BytesIO(data), MINIMUM_CHUNK_SIZE)

    chunk = reader.next_chunk()
    reader.seek(10)
    reader.seek(20)

    assert reader.offset == 20
    assert b"".join(c.data for c in _read_all(reader)) == data[20:]
    assert chunk.offset == 0


def test_seek_before_retained_chunk_uses_stream_seek() -> None:
    prefix = b"header-not-uploaded"
    data = generate_data(3 * MINIMUM_CHUNK_SIZE).getvalue()
    stream = io.BytesIO(prefix + data)
    stream.seek(len(prefix))
    reader = ChunkReader(stream, MINIMUM_CHUNK_SIZE)

    reader.next_chunk()
    reader.next_chunk()
    reader.seek(5)

    assert b"".join(c.data for c in _read_all(reader)) == data[5:]


def test_seek_before_retained_chunk_fails_on_non_seekable_stream() -> None:
    data = generate_data(3 * MINIMUM_CHUNK_SIZE).getvalue()
    reader = ChunkReader(TrickleStream(data, step=4096), MINIMUM_CHUNK_SIZE)

    reader.next_chunk()
    reader.next_chunk()

    with pytest.raises(UploadError):
        reader.seek(5)


def test_seek_past_read_bytes_fails() -> None:
    reader = ChunkReader(generate_data(2 * MINIMUM_CHUNK_SIZE), MINIMUM_CHUNK_SIZE)
    reader.next_chunk()

    with pytest.raises(UploadError):
        reader.seek(MINIMUM_CHUNK_SIZE + 1)


def test_md5_counts_resent_bytes_once() -> None:
    data = generate_data(2 * MINIMUM_CHUNK_SIZE + 50).getvalue()
    reader = ChunkReader(io.BytesIO(data), MINIMUM_CHUNK_SIZE)

    reader.next_chunk()
    reader.next_chunk()
    reader.seek(MINIMUM_CHUNK_SIZE + 7)
    _read_all(reader)

    assert reader.md5_digest() == hashlib.md5(data).digest()
    assert reader.bytes_read == len(data)


def test_at_end_after_final_chunk_and_after_rewind() -> None:
    reader = ChunkReader(generate_data(MINIMUM_CHUNK_SIZE + 5), MINIMUM_CHUNK_SIZE)

    reader.next_chunk()
    assert not reader.at_end
    final = reader.next_chunk()
    assert reader.at_end

    reader.seek(final.offset + 1)
    assert not reader.at_end

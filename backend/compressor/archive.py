"""Zip creation for "download all". The archive is streamed, never written to disk."""
import logging
import zipfile
from typing import Iterable, Iterator

from compressor.config import ZIP_CHUNK_SIZE, ZIP_COMPRESSION_LEVEL

logger = logging.getLogger("compressor.archive")


class _ChunkSink:
    """Write-only, unseekable file object that buffers zip output until drained."""

    def __init__(self):
        self._chunks: list[bytes] = []
        self._size = 0

    def write(self, data) -> int:
        if data:
            self._chunks.append(bytes(data))
            self._size += len(data)
        return len(data)

    def flush(self) -> None:
        pass

    @property
    def size(self) -> int:
        return self._size

    def drain(self, chunk_size: int) -> Iterator[bytes]:
        data = b"".join(self._chunks)
        self._chunks.clear()
        self._size = 0
        for i in range(0, len(data), chunk_size):
            yield data[i:i + chunk_size]


def iter_zip(
    entries: Iterable[tuple[str, bytes]],
    chunk_size: int = ZIP_CHUNK_SIZE,
    compresslevel: int = ZIP_COMPRESSION_LEVEL,
) -> Iterator[bytes]:
    """Yield a zip archive of (name, payload) entries in order. No entries gives a valid empty archive."""
    sink = _ChunkSink()
    count = 0
    with zipfile.ZipFile(sink, "w", zipfile.ZIP_DEFLATED, compresslevel=compresslevel) as zf:
        for name, payload in entries:
            zf.writestr(name, payload)
            count += 1
            if sink.size >= chunk_size:
                yield from sink.drain(chunk_size)
    yield from sink.drain(chunk_size)
    if count == 0:
        logger.warning("No processed images available for zipping; sent empty archive")
    else:
        logger.info("Zip archive streamed with %s file(s)", count)
